"""Chat and retrieval API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from hearth.api.dependencies import get_rag_pipeline
from hearth.ingest.types import SearchHit
from hearth.models.dto import (
    ChatRequest,
    ChatResponse,
    SearchHitModel,
    SearchRequest,
    SearchResponse,
    ToolResultModel,
)
from hearth.providers.base import ChatMessage
from hearth.retrieval.search import RAGPipeline

router = APIRouter()


@router.post("/chat", response_model=ChatResponse, summary="Answer a question using note context")
async def chat(request: ChatRequest, pipeline: RAGPipeline = Depends(get_rag_pipeline)) -> ChatResponse:
    history = [ChatMessage(role=message.role, content=message.content) for message in request.history]
    response = await pipeline.chat(request.query, history)
    return ChatResponse(
        content=response.content,
        context_sources=response.context_sources,
        usage=response.usage.to_dict() if response.usage else None,
        tool_results=[ToolResultModel(**result.to_dict()) for result in response.tool_results]
        if response.tool_results
        else None,
        tool_summary=response.tool_summary,
    )


@router.post("/search", response_model=SearchResponse, summary="Semantic search over indexed chunks")
async def search(request: SearchRequest, pipeline: RAGPipeline = Depends(get_rag_pipeline)) -> SearchResponse:
    hits = await pipeline.search(request.query, request.k)
    return SearchResponse(results=[_hit_model(hit) for hit in hits])


@router.get("/similar", response_model=SearchResponse, summary="Notes similar to a given note")
async def similar(
    path: str = Query(..., min_length=1),
    limit: int = Query(5, ge=1, le=50),
    pipeline: RAGPipeline = Depends(get_rag_pipeline),
) -> SearchResponse:
    hits = await pipeline.find_similar(path, limit)
    return SearchResponse(results=[_hit_model(hit) for hit in hits])


def _hit_model(hit: SearchHit) -> SearchHitModel:
    record = hit.record
    return SearchHitModel(
        id=record.id,
        document_path=record.document_path,
        chunk_index=record.chunk_index,
        score=hit.score,
        text=record.text,
        metadata=record.metadata,
    )


__all__ = ["router"]
