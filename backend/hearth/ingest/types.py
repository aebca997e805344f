"""Common indexing data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(slots=True)
class Chunk:
    """Slice of a document's cleaned text; offsets index into that cleaned text."""

    content: str
    start_offset: int
    end_offset: int
    sequence_index: int


@dataclass(slots=True)
class VectorRecord:
    """One embedded chunk as persisted in the vector store."""

    id: str
    document_path: str
    chunk_index: int
    text: str
    embedding: list[float]
    source_modified_at: int
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: int = 0

    @staticmethod
    def make_id(document_path: str, chunk_index: int) -> str:
        return f"{document_path}#{chunk_index}"


@dataclass(slots=True)
class SearchHit:
    record: VectorRecord
    score: float


@dataclass(slots=True)
class VectorStoreStats:
    document_count: int = 0
    unique_files: int = 0
    total_chunks: int = 0
    db_size_bytes: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "document_count": self.document_count,
            "unique_files": self.unique_files,
            "total_chunks": self.total_chunks,
            "db_size_bytes": self.db_size_bytes,
        }


class IndexingState(str, Enum):
    IDLE = "idle"
    HEALTH_CHECKING = "health_checking"
    SCANNING = "scanning"
    PROCESSING = "processing"
    ABORTED = "aborted"


@dataclass(slots=True)
class IndexingProgress:
    """Live counters for the single active indexing run."""

    total: int = 0
    completed: int = 0
    current_item: str | None = None
    error_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "completed": self.completed,
            "current_item": self.current_item,
            "error_count": self.error_count,
        }


@dataclass(slots=True)
class IndexRunSummary:
    """Outcome of one indexing run, reported to the caller as a single message."""

    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    chunks: int = 0
    aborted: bool = False
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "indexed": self.indexed,
            "skipped": self.skipped,
            "failed": self.failed,
            "chunks": self.chunks,
            "aborted": self.aborted,
            "message": self.message,
        }


__all__ = [
    "Chunk",
    "VectorRecord",
    "SearchHit",
    "VectorStoreStats",
    "IndexingState",
    "IndexingProgress",
    "IndexRunSummary",
]
