"""Indexing API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from hearth.api.dependencies import get_orchestrator, get_vector_store
from hearth.ingest.pipeline import IndexingOrchestrator
from hearth.models.dto import (
    IndexRequest,
    IndexStatsResponse,
    IndexStatusResponse,
    IndexSummaryResponse,
    StatusResponse,
)
from hearth.retrieval.vector_index import VectorStore

router = APIRouter()


@router.post("", response_model=IndexSummaryResponse, summary="Index every changed document")
async def trigger_index(
    request: IndexRequest,
    orchestrator: IndexingOrchestrator = Depends(get_orchestrator),
) -> IndexSummaryResponse:
    summary = await orchestrator.index_all(force=request.force)
    return IndexSummaryResponse(**summary.to_dict())


@router.get("/status", response_model=IndexStatusResponse, summary="Current indexing state")
async def index_status(orchestrator: IndexingOrchestrator = Depends(get_orchestrator)) -> IndexStatusResponse:
    last = orchestrator.last_summary
    return IndexStatusResponse(
        state=orchestrator.state.value,
        is_indexing=orchestrator.is_indexing,
        progress=orchestrator.progress.to_dict() if orchestrator.progress else None,
        pending=orchestrator.pending_paths,
        circuit_open=orchestrator.breaker.is_open,
        consecutive_failures=orchestrator.breaker.consecutive_failures,
        last_summary=IndexSummaryResponse(**last.to_dict()) if last else None,
    )


@router.post("/stop", response_model=StatusResponse, summary="Stop indexing and drop queued paths")
async def stop_index(orchestrator: IndexingOrchestrator = Depends(get_orchestrator)) -> StatusResponse:
    orchestrator.force_stop()
    return StatusResponse(status="ok", message="Indexing will stop after the current document")


@router.post("/reset-circuit", response_model=StatusResponse, summary="Close the circuit breaker")
async def reset_circuit(orchestrator: IndexingOrchestrator = Depends(get_orchestrator)) -> StatusResponse:
    orchestrator.reset_circuit_breaker()
    return StatusResponse(status="ok", message="Circuit breaker reset")


@router.get("/stats", response_model=IndexStatsResponse, summary="Vector store statistics")
async def index_stats(store: VectorStore = Depends(get_vector_store)) -> IndexStatsResponse:
    stats = await store.stats()
    return IndexStatsResponse(**stats.to_dict())


__all__ = ["router"]
