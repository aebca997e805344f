"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class IndexRequest(BaseModel):
    force: bool = Field(default=False, description="Re-embed every document, ignoring stored mtimes")


class IndexSummaryResponse(BaseModel):
    indexed: int
    skipped: int
    failed: int
    chunks: int
    aborted: bool
    message: str


class IndexStatusResponse(BaseModel):
    state: str
    is_indexing: bool
    progress: dict[str, Any] | None = None
    pending: list[str] = Field(default_factory=list)
    circuit_open: bool
    consecutive_failures: int
    last_summary: IndexSummaryResponse | None = None


class IndexStatsResponse(BaseModel):
    document_count: int
    unique_files: int
    total_chunks: int
    db_size_bytes: int


class StatusResponse(BaseModel):
    status: str
    message: str | None = None


class ChatMessageModel(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    query: str = Field(min_length=1)
    history: list[ChatMessageModel] = Field(default_factory=list)


class ToolResultModel(BaseModel):
    success: bool
    message: str
    data: Any = None


class ChatResponse(BaseModel):
    content: str
    context_sources: list[str]
    usage: dict[str, int] | None = None
    tool_results: list[ToolResultModel] | None = None
    tool_summary: str | None = None


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    k: int | None = Field(default=None, ge=1, le=50)


class SearchHitModel(BaseModel):
    id: str
    document_path: str
    chunk_index: int
    score: float
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class SearchResponse(BaseModel):
    results: list[SearchHitModel]


class ProviderStatusModel(BaseModel):
    id: str
    name: str
    kind: str
    enabled: bool
    healthy: bool | None = None
    last_check: int | None = None
    error: str | None = None


class ProviderHealthResponse(BaseModel):
    providers: list[ProviderStatusModel]
    results: dict[str, dict[str, Any]]


class ModelsResponse(BaseModel):
    models: list[str]


class PendingConfirmationModel(BaseModel):
    id: str
    tool: str
    arguments: dict[str, Any]
    destructive: bool
    created_at: int


class ConfirmRequest(BaseModel):
    approved: bool


class ConfirmResponse(BaseModel):
    id: str
    resolved: bool


class MemoryModel(BaseModel):
    id: str
    content: str
    created_at: int
    last_accessed_at: int
    access_count: int
    source: str | None = None


class DeleteResponse(BaseModel):
    status: Literal["ok", "noop"]
    deleted: int = 0


class TagSuggestionModel(BaseModel):
    tag: str
    confidence: float


class TagSuggestionsResponse(BaseModel):
    suggestions: dict[str, list[TagSuggestionModel]]


class TagSuggestRequest(BaseModel):
    path: str = Field(min_length=1)


class TagApplyRequest(BaseModel):
    path: str = Field(min_length=1)
    tags: list[str] = Field(min_length=1)


class TagApplyResponse(BaseModel):
    path: str
    tags: list[str]


__all__ = [
    "IndexRequest",
    "IndexSummaryResponse",
    "IndexStatusResponse",
    "IndexStatsResponse",
    "StatusResponse",
    "ChatMessageModel",
    "ChatRequest",
    "ToolResultModel",
    "ChatResponse",
    "SearchRequest",
    "SearchHitModel",
    "SearchResponse",
    "ProviderStatusModel",
    "ProviderHealthResponse",
    "ModelsResponse",
    "PendingConfirmationModel",
    "ConfirmRequest",
    "ConfirmResponse",
    "MemoryModel",
    "DeleteResponse",
    "TagSuggestionModel",
    "TagSuggestionsResponse",
    "TagSuggestRequest",
    "TagApplyRequest",
    "TagApplyResponse",
]
