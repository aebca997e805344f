"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from hearth.core.config import Settings, get_settings
from hearth.core.resilience import CircuitBreaker
from hearth.db.sqlite import SQLiteDatabase
from hearth.features.autotag import AutoTagger
from hearth.features.memory import MemoryManager
from hearth.ingest.documents import FileSystemDocumentStore
from hearth.ingest.pipeline import IndexingOrchestrator
from hearth.ingest.watcher import Watcher
from hearth.providers.gateway import ProviderGateway
from hearth.retrieval import RAGPipeline, VectorStore
from hearth.tools.executor import ToolExecutor
from hearth.tools.manager import ConfirmationBroker, ToolManager

_DB: SQLiteDatabase | None = None
_VECTOR_STORE: VectorStore | None = None
_DOCUMENTS: FileSystemDocumentStore | None = None
_GATEWAY: ProviderGateway | None = None
_BREAKER: CircuitBreaker | None = None
_ORCHESTRATOR: IndexingOrchestrator | None = None
_MEMORY: MemoryManager | None = None
_BROKER: ConfirmationBroker | None = None
_TOOL_MANAGER: ToolManager | None = None
_RAG: RAGPipeline | None = None
_TAGGER: AutoTagger | None = None
_WATCHER: Watcher | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        _DB = SQLiteDatabase(get_app_settings().db_path)
    return _DB


def get_vector_store() -> VectorStore:
    global _VECTOR_STORE
    if _VECTOR_STORE is None:
        _VECTOR_STORE = VectorStore(get_database(), search_batch_size=get_app_settings().search_batch_size)
    return _VECTOR_STORE


def get_document_store() -> FileSystemDocumentStore:
    global _DOCUMENTS
    if _DOCUMENTS is None:
        _DOCUMENTS = FileSystemDocumentStore(get_app_settings().corpus_root)
    return _DOCUMENTS


def get_gateway() -> ProviderGateway:
    global _GATEWAY
    if _GATEWAY is None:
        _GATEWAY = ProviderGateway(get_app_settings())
    return _GATEWAY


def get_circuit_breaker() -> CircuitBreaker:
    global _BREAKER
    if _BREAKER is None:
        _BREAKER = CircuitBreaker(get_app_settings().circuit_breaker_threshold)
    return _BREAKER


def get_orchestrator() -> IndexingOrchestrator:
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        _ORCHESTRATOR = IndexingOrchestrator(
            settings=get_app_settings(),
            vector_store=get_vector_store(),
            documents=get_document_store(),
            gateway=get_gateway(),
            breaker=get_circuit_breaker(),
        )
    return _ORCHESTRATOR


def get_memory_manager() -> MemoryManager:
    global _MEMORY
    if _MEMORY is None:
        settings = get_app_settings()
        _MEMORY = MemoryManager(settings.memories_path, max_memories=settings.max_memories)
    return _MEMORY


def get_confirmation_broker() -> ConfirmationBroker:
    global _BROKER
    if _BROKER is None:
        _BROKER = ConfirmationBroker(get_app_settings().confirmation_timeout_s)
    return _BROKER


def get_tool_manager() -> ToolManager:
    global _TOOL_MANAGER
    if _TOOL_MANAGER is None:
        documents = get_document_store()
        _TOOL_MANAGER = ToolManager(
            get_app_settings(),
            ToolExecutor(documents, root=documents.root),
            broker=get_confirmation_broker(),
        )
    return _TOOL_MANAGER


def get_rag_pipeline() -> RAGPipeline:
    global _RAG
    if _RAG is None:
        _RAG = RAGPipeline(
            settings=get_app_settings(),
            gateway=get_gateway(),
            vector_store=get_vector_store(),
            memory=get_memory_manager(),
            tools=get_tool_manager(),
        )
    return _RAG


def get_auto_tagger() -> AutoTagger:
    global _TAGGER
    if _TAGGER is None:
        _TAGGER = AutoTagger(
            get_app_settings(),
            get_document_store(),
            get_gateway(),
            get_circuit_breaker(),
        )
    return _TAGGER


def get_watcher() -> Watcher:
    global _WATCHER
    if _WATCHER is None:
        orchestrator = get_orchestrator()
        tagger = get_auto_tagger()

        def dispatch(kind: str, path: str, dest_path: str | None) -> None:
            orchestrator.handle_file_event(kind, path, dest_path)
            if kind in ("created", "modified"):
                tagger.queue_path(path)

        _WATCHER = Watcher(get_app_settings().corpus_root, dispatch)
    return _WATCHER


async def shutdown() -> None:
    """Stop background work and release connections."""
    if _WATCHER is not None:
        _WATCHER.stop()
    if _ORCHESTRATOR is not None:
        _ORCHESTRATOR.force_stop()
    if _TAGGER is not None:
        _TAGGER.force_stop()
    if _BROKER is not None:
        _BROKER.dismiss_all()
    if _GATEWAY is not None:
        await _GATEWAY.aclose()
    if _VECTOR_STORE is not None:
        _VECTOR_STORE.close()


__all__ = [
    "get_app_settings",
    "get_database",
    "get_vector_store",
    "get_document_store",
    "get_gateway",
    "get_circuit_breaker",
    "get_orchestrator",
    "get_memory_manager",
    "get_confirmation_broker",
    "get_tool_manager",
    "get_rag_pipeline",
    "get_auto_tagger",
    "get_watcher",
    "shutdown",
]
