"""Indexing orchestration: scan, chunk, embed, and persist the corpus."""

from __future__ import annotations

import asyncio
import fnmatch
import time
from pathlib import PurePosixPath
from typing import Callable, Sequence

from hearth.core.config import Settings
from hearth.core.errors import ConfigurationError, ProviderError, ProviderErrorCode, StorageError, StorageErrorKind
from hearth.core.logging import get_logger, log_context
from hearth.core.metrics import INDEX_DURATION, INDEX_SIZE, INDEXED_DOCUMENTS
from hearth.core.resilience import CircuitBreaker
from hearth.ingest.chunker import chunk_text, extract_frontmatter
from hearth.ingest.documents import DocumentStore
from hearth.ingest.types import IndexingProgress, IndexingState, IndexRunSummary, VectorRecord
from hearth.providers.base import EmbeddingRequest
from hearth.providers.gateway import ProviderGateway
from hearth.retrieval.vector_index import VectorStore

logger = get_logger(__name__)

ProgressCallback = Callable[[IndexingProgress], None]

_ACTIVE_STATES = frozenset({IndexingState.HEALTH_CHECKING, IndexingState.SCANNING, IndexingState.PROCESSING})
CIRCUIT_OPEN_MESSAGE = "Indexing stopped due to connection errors. Check provider settings."


class IndexingOrchestrator:
    """Keeps the vector store in step with the document store.

    Only one run is active at a time; manual runs and the debounced
    file-change queue share the same guard.
    """

    def __init__(
        self,
        settings: Settings,
        vector_store: VectorStore,
        documents: DocumentStore,
        gateway: ProviderGateway,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self.settings = settings
        self.vector_store = vector_store
        self.documents = documents
        self.gateway = gateway
        self.breaker = breaker or CircuitBreaker(settings.circuit_breaker_threshold)
        self.state = IndexingState.IDLE
        self.progress: IndexingProgress | None = None
        self.last_summary: IndexRunSummary | None = None
        self._pending: dict[str, None] = {}
        self._debounce: asyncio.TimerHandle | None = None
        self._flush_task: asyncio.Task | None = None
        self._stop_requested = False
        self._listeners: list[ProgressCallback] = []

    @property
    def is_indexing(self) -> bool:
        return self.state in _ACTIVE_STATES

    @property
    def pending_paths(self) -> list[str]:
        return list(self._pending)

    def update_settings(self, settings: Settings) -> None:
        self.settings = settings
        self.breaker.threshold = settings.circuit_breaker_threshold
        self.breaker.reset()

    def reset_circuit_breaker(self) -> None:
        self.breaker.reset()

    def force_stop(self) -> None:
        """Stop after the current document and drop everything queued."""
        self._stop_requested = True
        self._pending.clear()
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None
        logger.info("Indexing force-stopped")

    def on_progress(self, callback: ProgressCallback) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def is_excluded(self, path: str) -> bool:
        return matches_patterns(path, self.settings.embedding_exclude)

    async def index_all(self, force: bool = False) -> IndexRunSummary:
        """Index every document whose mtime is newer than its stored chunks."""
        refusal = self._refusal()
        if refusal:
            logger.info("Indexing not started: %s", refusal)
            return IndexRunSummary(aborted=True, message=refusal)

        self.breaker.reset()
        self._stop_requested = False
        started = time.perf_counter()
        try:
            self.state = IndexingState.HEALTH_CHECKING
            problem = await self._check_health()
            if problem:
                return await self._finish(IndexRunSummary(aborted=True, message=problem))

            self.state = IndexingState.SCANNING
            paths, skipped = await self._scan(force)
            await asyncio.sleep(0)
            if not paths:
                return await self._finish(IndexRunSummary(skipped=skipped, message="All files are up to date"))

            summary = await self._process(paths)
            summary.skipped += skipped
            return await self._finish(summary)
        except Exception:
            self._abandon()
            raise
        finally:
            INDEX_DURATION.labels(trigger="manual").observe(time.perf_counter() - started)

    async def index_file(self, path: str) -> IndexRunSummary:
        refusal = self._refusal()
        if refusal:
            return IndexRunSummary(aborted=True, message=refusal)
        self._stop_requested = False
        try:
            return await self._finish(await self._process([path]))
        except Exception:
            self._abandon()
            raise

    def queue_path(self, path: str) -> bool:
        """Queue a changed document for the next debounced pass; must run on the event loop."""
        if not self._accepting_queue():
            logger.debug("Dropping queued path %s", path)
            return False
        if self.is_excluded(path):
            return False
        self._pending[path] = None
        self._schedule_flush()
        return True

    async def process_queue(self) -> IndexRunSummary:
        """Index everything queued so far in one pass."""
        if self.is_indexing:
            self._schedule_flush()
            return IndexRunSummary(aborted=True, message="Indexing already in progress")
        if not self._accepting_queue():
            self._pending.clear()
            return IndexRunSummary(aborted=True, message="Queue dropped")
        paths = list(self._pending)
        self._pending.clear()
        if not paths:
            return IndexRunSummary(message="Nothing queued")
        self._stop_requested = False
        started = time.perf_counter()
        try:
            return await self._finish(await self._process(paths))
        except Exception:
            self._abandon()
            raise
        finally:
            INDEX_DURATION.labels(trigger="queue").observe(time.perf_counter() - started)

    async def remove_path(self, path: str) -> int:
        return await self.vector_store.delete_by_path(path)

    async def rename_path(self, old_path: str, new_path: str) -> int:
        if self.is_excluded(new_path):
            return await self.vector_store.delete_by_path(old_path)
        return await self.vector_store.update_path(old_path, new_path)

    def handle_file_event(self, kind: str, path: str, dest_path: str | None = None) -> None:
        """Route a watcher event; called on the event loop thread."""
        if kind in ("created", "modified"):
            self.queue_path(path)
        elif kind == "deleted":
            asyncio.ensure_future(self._guarded(self.remove_path(path), path))
        elif kind == "moved" and dest_path:
            asyncio.ensure_future(self._guarded(self.rename_path(path, dest_path), path))

    # Internal helpers -------------------------------------------------

    def _refusal(self) -> str | None:
        if self.is_indexing:
            return "Indexing already in progress"
        if not self.settings.enable_embedding:
            return "Embedding is disabled in settings"
        if self.settings.constrained_environment and not self.settings.enable_on_constrained:
            return "Embedding is disabled on this device. Enable it in settings."
        return None

    def _accepting_queue(self) -> bool:
        return (
            self.settings.enable_embedding
            and self.breaker.allow()
            and self.gateway.has_available_provider()
        )

    async def _check_health(self) -> str | None:
        try:
            health = await self.gateway.health_check()
        except ConfigurationError as exc:
            return str(exc)
        if not health.healthy:
            return f"Provider connection failed: {health.error or 'Unknown error'}"
        if not health.embedding_available:
            return "Embedding model not found on server. Check settings."
        logger.info("Health check passed in %s ms", health.latency_ms)
        return None

    async def _scan(self, force: bool) -> tuple[list[str], int]:
        candidates = [path for path in await self.documents.list_documents() if not self.is_excluded(path)]
        if force:
            return candidates, 0
        indexed = await self.vector_store.get_indexed_paths_with_mtime()
        await asyncio.sleep(0)
        selected: list[str] = []
        for path in candidates:
            stored = indexed.get(path)
            if stored is None or await self.documents.get_modified_time(path) > stored:
                selected.append(path)
        return selected, len(candidates) - len(selected)

    async def _process(self, paths: Sequence[str]) -> IndexRunSummary:
        self.state = IndexingState.PROCESSING
        self.progress = IndexingProgress(total=len(paths))
        summary = IndexRunSummary()
        logger.info("Indexing %s documents", len(paths))
        for path in paths:
            if self.breaker.is_open:
                summary.aborted = True
                summary.message = CIRCUIT_OPEN_MESSAGE
                break
            if self._stop_requested:
                summary.aborted = True
                summary.message = "Indexing stopped"
                break
            self.progress.current_item = path
            self._notify()
            try:
                chunk_count = await self._index_document(path)
            except StorageError as exc:
                if exc.kind is StorageErrorKind.NOT_INITIALIZED:
                    raise
                self._record_failure(summary, path, exc)
            except Exception as exc:
                self._record_failure(summary, path, exc)
            else:
                self.breaker.record_success()
                if chunk_count is None:
                    summary.skipped += 1
                    INDEXED_DOCUMENTS.labels(outcome="skipped").inc()
                else:
                    summary.indexed += 1
                    summary.chunks += chunk_count
                    INDEXED_DOCUMENTS.labels(outcome="indexed").inc()
            self.progress.completed += 1
            self._notify()
            await asyncio.sleep(0)

        if not summary.message:
            summary.message = (
                f"Indexed {summary.indexed} files ({summary.chunks} chunks), {summary.failed} errors"
            )
        return summary

    async def _index_document(self, path: str) -> int | None:
        if not await self.documents.exists(path):
            await self.vector_store.delete_by_path(path)
            return None
        content = await self.documents.read_text(path)
        modified_at = await self.documents.get_modified_time(path)
        frontmatter = extract_frontmatter(content) or {}
        chunks = chunk_text(
            content,
            chunk_size=self.settings.chunk_size,
            overlap=self.settings.chunk_overlap,
            respect_headers=self.settings.respect_headers,
            min_chunk_size=self.settings.min_chunk_size,
        )
        await self.vector_store.delete_by_path(path)
        if not chunks:
            return 0

        title = PurePosixPath(path).stem
        records: list[VectorRecord] = []
        batch_size = self.settings.embedding_batch_size
        for offset in range(0, len(chunks), batch_size):
            batch = chunks[offset : offset + batch_size]
            response = await self.gateway.embed(EmbeddingRequest(input=[chunk.content for chunk in batch]))
            if len(response.embeddings) != len(batch):
                raise ProviderError(
                    f"Expected {len(batch)} embeddings, got {len(response.embeddings)}",
                    ProviderErrorCode.INVALID_REQUEST,
                    "gateway",
                )
            for chunk, vector in zip(batch, response.embeddings):
                records.append(
                    VectorRecord(
                        id=VectorRecord.make_id(path, chunk.sequence_index),
                        document_path=path,
                        chunk_index=chunk.sequence_index,
                        text=chunk.content,
                        embedding=vector,
                        source_modified_at=modified_at,
                        metadata={
                            "title": title,
                            "frontmatter": frontmatter,
                            "start_offset": chunk.start_offset,
                            "end_offset": chunk.end_offset,
                        },
                    )
                )
        await self.vector_store.upsert_batch(records)
        return len(records)

    def _record_failure(self, summary: IndexRunSummary, path: str, exc: Exception) -> None:
        summary.failed += 1
        if self.progress is not None:
            self.progress.error_count += 1
        INDEXED_DOCUMENTS.labels(outcome="failed").inc()
        logger.warning("Failed to index %s: %s", path, exc, extra=log_context(path=path))
        if self.breaker.record_failure(exc):
            logger.error(CIRCUIT_OPEN_MESSAGE)

    async def _finish(self, summary: IndexRunSummary) -> IndexRunSummary:
        self.state = IndexingState.ABORTED if summary.aborted else IndexingState.IDLE
        self.progress = None
        self.last_summary = summary
        await self._refresh_index_size()
        logger.info("%s", summary.message, extra=log_context(**summary.to_dict()))
        return summary

    def _abandon(self) -> None:
        self.state = IndexingState.ABORTED
        self.progress = None

    async def _refresh_index_size(self) -> None:
        try:
            INDEX_SIZE.set(await self.vector_store.count())
        except StorageError:  # pragma: no cover - metrics failures should not block indexing
            pass

    def _notify(self) -> None:
        if self.progress is None:
            return
        for callback in list(self._listeners):
            try:
                callback(self.progress)
            except Exception:  # pragma: no cover - listener bugs must not stop indexing
                logger.exception("Progress listener failed")

    def _schedule_flush(self) -> None:
        loop = asyncio.get_running_loop()
        if self._debounce is not None:
            self._debounce.cancel()
        self._debounce = loop.call_later(self.settings.embedding_debounce_ms / 1000, self._start_flush)

    def _start_flush(self) -> None:
        self._debounce = None
        self._flush_task = asyncio.ensure_future(self.process_queue())

    async def _guarded(self, work, path: str) -> None:
        try:
            await work
        except StorageError as exc:
            logger.warning("Could not update index for %s: %s", path, exc)


def matches_patterns(path: str, patterns: Sequence[str]) -> bool:
    return any(fnmatch.fnmatchcase(path, expanded) for pattern in patterns for expanded in _expand_patterns(pattern))


def _expand_patterns(pattern: str) -> list[str]:
    pattern = pattern.strip()
    if "{" in pattern and "}" in pattern:
        prefix = pattern[: pattern.index("{")]
        suffix = pattern[pattern.index("}") + 1 :]
        options = pattern[pattern.index("{") + 1 : pattern.index("}")].split(",")
        return [f"{prefix}{option.strip()}{suffix}" for option in options]
    return [pattern]


__all__ = ["IndexingOrchestrator", "matches_patterns", "CIRCUIT_OPEN_MESSAGE"]
