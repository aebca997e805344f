"""Administrative routes: providers, tool confirmations, memories, tags, metrics."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from hearth.api.dependencies import get_auto_tagger, get_confirmation_broker, get_gateway, get_memory_manager
from hearth.core.errors import PathSafetyError
from hearth.core.metrics import metrics_response
from hearth.features.autotag import AutoTagger
from hearth.features.memory import MemoryManager
from hearth.models.dto import (
    ConfirmRequest,
    ConfirmResponse,
    DeleteResponse,
    MemoryModel,
    ModelsResponse,
    PendingConfirmationModel,
    ProviderHealthResponse,
    ProviderStatusModel,
    TagApplyRequest,
    TagApplyResponse,
    TagSuggestionModel,
    TagSuggestionsResponse,
    TagSuggestRequest,
)
from hearth.providers.gateway import ProviderGateway
from hearth.tools.manager import ConfirmationBroker

router = APIRouter()


@router.get("/providers/health", response_model=ProviderHealthResponse, summary="Check every endpoint")
async def providers_health(gateway: ProviderGateway = Depends(get_gateway)) -> ProviderHealthResponse:
    results = await gateway.check_all_health()
    return ProviderHealthResponse(
        providers=[ProviderStatusModel(**status.to_dict()) for status in gateway.statuses()],
        results={provider_id: result.to_dict() for provider_id, result in results.items()},
    )


@router.get("/providers/models", response_model=ModelsResponse, summary="Models served by the active endpoint")
async def providers_models(gateway: ProviderGateway = Depends(get_gateway)) -> ModelsResponse:
    return ModelsResponse(models=await gateway.list_models())


@router.get("/tools/pending", response_model=list[PendingConfirmationModel], summary="Tool calls awaiting approval")
async def pending_tools(broker: ConfirmationBroker = Depends(get_confirmation_broker)) -> list[PendingConfirmationModel]:
    return [PendingConfirmationModel(**entry.to_dict()) for entry in broker.pending()]


@router.post("/tools/confirm/{confirmation_id}", response_model=ConfirmResponse, summary="Approve or reject a tool call")
async def confirm_tool(
    confirmation_id: str,
    request: ConfirmRequest,
    broker: ConfirmationBroker = Depends(get_confirmation_broker),
) -> ConfirmResponse:
    if not broker.resolve(confirmation_id, request.approved):
        raise HTTPException(status_code=404, detail="Confirmation not found")
    return ConfirmResponse(id=confirmation_id, resolved=True)


@router.get("/memories", response_model=list[MemoryModel], summary="List stored memories")
async def list_memories(memory: MemoryManager = Depends(get_memory_manager)) -> list[MemoryModel]:
    return [MemoryModel(**item.to_dict()) for item in memory.all()]


@router.delete("/memories/{memory_id}", response_model=DeleteResponse, summary="Forget a memory")
async def delete_memory(memory_id: str, memory: MemoryManager = Depends(get_memory_manager)) -> DeleteResponse:
    if not memory.delete(memory_id):
        raise HTTPException(status_code=404, detail="Memory not found")
    return DeleteResponse(status="ok", deleted=1)


@router.get("/tags/suggestions", response_model=TagSuggestionsResponse, summary="Tag suggestions awaiting review")
async def tag_suggestions(tagger: AutoTagger = Depends(get_auto_tagger)) -> TagSuggestionsResponse:
    return TagSuggestionsResponse(
        suggestions={
            path: [TagSuggestionModel(**item.to_dict()) for item in items]
            for path, items in sorted(tagger.suggestions.items())
        }
    )


@router.post("/tags/suggest", response_model=list[TagSuggestionModel], summary="Suggest tags for one note now")
async def suggest_tags(
    request: TagSuggestRequest,
    tagger: AutoTagger = Depends(get_auto_tagger),
) -> list[TagSuggestionModel]:
    await _require_note(tagger, request.path)
    suggestions = await tagger.refresh_suggestions(request.path)
    return [TagSuggestionModel(**item.to_dict()) for item in suggestions]


@router.post("/tags/apply", response_model=TagApplyResponse, summary="Write tags into a note's frontmatter")
async def apply_tags(request: TagApplyRequest, tagger: AutoTagger = Depends(get_auto_tagger)) -> TagApplyResponse:
    await _require_note(tagger, request.path)
    tags = await tagger.apply_tags(request.path, request.tags)
    if not tags:
        raise HTTPException(status_code=400, detail="No usable tags given")
    return TagApplyResponse(path=request.path, tags=tags)


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


# Internal helpers -------------------------------------------------


async def _require_note(tagger: AutoTagger, path: str) -> None:
    try:
        found = await tagger.documents.exists(path)
    except PathSafetyError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not found:
        raise HTTPException(status_code=404, detail="Note not found")


__all__ = ["router"]
