"""Indexing orchestrator end to end against a fake embedding server."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Callable

import httpx
import pytest

from hearth.core.config import Settings
from hearth.db.sqlite import SQLiteDatabase
from hearth.ingest.documents import FileSystemDocumentStore
from hearth.ingest.pipeline import CIRCUIT_OPEN_MESSAGE, IndexingOrchestrator, matches_patterns
from hearth.ingest.types import IndexingState
from hearth.providers import ProviderGateway
from hearth.retrieval import VectorStore

LONG_NOTE = "# Garden\n" + " ".join(f"Tomatoes need water on day {i}." for i in range(60))


async def _orchestrator(settings: Settings, transport: httpx.AsyncBaseTransport) -> IndexingOrchestrator:
    store = VectorStore(SQLiteDatabase(settings.db_path))
    await store.initialize()
    return IndexingOrchestrator(
        settings,
        store,
        FileSystemDocumentStore(settings.corpus_root),
        ProviderGateway(settings, transport=transport),
    )


def _touch_later(path: Path, seconds: int = 10) -> None:
    stamp = path.stat().st_mtime + seconds
    os.utime(path, (stamp, stamp))


@pytest.mark.asyncio
async def test_index_all_is_idempotent(make_settings, fake_ollama, write_note) -> None:
    write_note("garden.md", LONG_NOTE)
    write_note("Projects/plan.md", "---\ntags: [work]\n---\nShip the thing by Friday.")
    orchestrator = await _orchestrator(make_settings(chunk_size=300, chunk_overlap=50, min_chunk_size=20), fake_ollama.transport())

    first = await orchestrator.index_all()
    assert (first.indexed, first.failed, first.aborted) == (2, 0, False)
    assert first.message == f"Indexed 2 files ({first.chunks} chunks), 0 errors"
    stored = await orchestrator.vector_store.count()
    assert stored == first.chunks > 2
    embeds = fake_ollama.embed_calls

    second = await orchestrator.index_all()
    assert second.message == "All files are up to date"
    assert second.skipped == 2
    assert fake_ollama.embed_calls == embeds

    forced = await orchestrator.index_all(force=True)
    assert forced.indexed == 2
    assert await orchestrator.vector_store.count() == stored
    assert orchestrator.state is IndexingState.IDLE
    assert orchestrator.last_summary is forced


@pytest.mark.asyncio
async def test_records_carry_metadata(make_settings, fake_ollama, write_note) -> None:
    write_note("Projects/plan.md", "---\ntags: [work]\n---\nShip the thing by Friday.")
    orchestrator = await _orchestrator(make_settings(), fake_ollama.transport())
    await orchestrator.index_all()

    [record] = await orchestrator.vector_store.get_by_path("Projects/plan.md")
    assert record.id == "Projects/plan.md#0"
    assert record.text == "Ship the thing by Friday."
    assert record.metadata["title"] == "plan"
    assert record.metadata["frontmatter"] == {"tags": ["work"]}
    assert record.source_modified_at == await orchestrator.documents.get_modified_time("Projects/plan.md")


@pytest.mark.asyncio
async def test_only_changed_files_are_reindexed(make_settings, fake_ollama, write_note) -> None:
    write_note("a.md", "Alpha note about apples.")
    changed = write_note("b.md", "Beta note about bananas.")
    orchestrator = await _orchestrator(make_settings(), fake_ollama.transport())
    await orchestrator.index_all()

    _touch_later(changed)
    fake_ollama.embed_inputs.clear()
    summary = await orchestrator.index_all()

    assert (summary.indexed, summary.skipped) == (1, 1)
    assert fake_ollama.embed_inputs == ["Beta note about bananas."]


@pytest.mark.asyncio
async def test_excluded_and_hidden_paths_are_skipped(make_settings, fake_ollama, write_note) -> None:
    write_note("templates/daily.md", "Template body.")
    write_note(".obsidian/cache.md", "Hidden.")
    write_note("real.md", "A real note.")
    orchestrator = await _orchestrator(make_settings(), fake_ollama.transport())

    summary = await orchestrator.index_all()

    assert summary.indexed == 1
    assert list(await orchestrator.vector_store.get_indexed_paths_with_mtime()) == ["real.md"]
    assert orchestrator.is_excluded("templates/daily.md")
    assert not orchestrator.is_excluded("notes/templates.md")


def test_brace_patterns_expand() -> None:
    assert matches_patterns("Archive/old.md", ["{Archive,Trash}/**"])
    assert matches_patterns("Trash/x.md", ["{Archive,Trash}/**"])
    assert not matches_patterns("Inbox/x.md", ["{Archive,Trash}/**"])


@pytest.mark.asyncio
async def test_refuses_when_embedding_disabled(make_settings, fake_ollama, write_note) -> None:
    write_note("a.md", "Alpha.")
    orchestrator = await _orchestrator(make_settings(enable_embedding=False), fake_ollama.transport())

    summary = await orchestrator.index_all()

    assert summary.aborted is True
    assert summary.message == "Embedding is disabled in settings"
    assert fake_ollama.embed_calls == 0
    assert orchestrator.queue_path("a.md") is False


@pytest.mark.asyncio
async def test_refuses_while_a_run_is_active(make_settings, fake_ollama) -> None:
    orchestrator = await _orchestrator(make_settings(), fake_ollama.transport())
    orchestrator.state = IndexingState.PROCESSING

    summary = await orchestrator.index_all()
    assert (summary.aborted, summary.message) == (True, "Indexing already in progress")


@pytest.mark.asyncio
async def test_health_check_failures_abort_the_run(make_settings, fake_ollama, write_note) -> None:
    write_note("a.md", "Alpha.")
    fake_ollama.down = True
    orchestrator = await _orchestrator(make_settings(), fake_ollama.transport())

    summary = await orchestrator.index_all()

    assert summary.aborted is True
    assert summary.message.startswith("Provider connection failed: No healthy provider.")
    assert orchestrator.state is IndexingState.ABORTED


@pytest.mark.asyncio
async def test_missing_embedding_model_aborts(make_settings, fake_ollama, write_note) -> None:
    write_note("a.md", "Alpha.")
    fake_ollama.models = ["llama3:latest"]
    orchestrator = await _orchestrator(make_settings(), fake_ollama.transport())

    summary = await orchestrator.index_all()
    assert summary.message == "Embedding model not found on server. Check settings."


@pytest.mark.asyncio
async def test_circuit_breaker_stops_the_run(make_settings, fake_ollama, write_note) -> None:
    for index in range(5):
        write_note(f"note-{index}.md", f"Note number {index}.")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/embed":
            raise httpx.ConnectError("connection refused", request=request)
        return fake_ollama.handler(request)

    orchestrator = await _orchestrator(make_settings(circuit_breaker_threshold=3), httpx.MockTransport(handler))

    summary = await orchestrator.index_all()

    assert summary.aborted is True
    assert summary.message == CIRCUIT_OPEN_MESSAGE
    assert summary.failed == 3
    assert orchestrator.breaker.is_open
    assert orchestrator.queue_path("note-4.md") is False

    orchestrator.reset_circuit_breaker()
    orchestrator.settings = make_settings(embedding_debounce_ms=60_000)
    assert orchestrator.queue_path("note-4.md") is True
    orchestrator.force_stop()
    assert orchestrator.pending_paths == []


@pytest.mark.asyncio
async def test_queue_is_processed_in_one_pass(make_settings, fake_ollama, write_note) -> None:
    write_note("a.md", "Alpha note.")
    write_note("b.md", "Beta note.")
    orchestrator = await _orchestrator(make_settings(embedding_debounce_ms=60_000), fake_ollama.transport())
    progress: list[tuple[int, int]] = []
    unsubscribe = orchestrator.on_progress(lambda p: progress.append((p.completed, p.total)))

    orchestrator.queue_path("a.md")
    orchestrator.queue_path("b.md")
    orchestrator.queue_path("a.md")
    orchestrator.queue_path("templates/skip.md")
    assert orchestrator.pending_paths == ["a.md", "b.md"]

    summary = await orchestrator.process_queue()

    assert summary.indexed == 2
    assert orchestrator.pending_paths == []
    assert progress[-1] == (2, 2)
    unsubscribe()
    orchestrator.force_stop()


@pytest.mark.asyncio
async def test_debounced_queue_flushes_itself(make_settings, fake_ollama, write_note) -> None:
    write_note("a.md", "Alpha note.")
    orchestrator = await _orchestrator(make_settings(embedding_debounce_ms=0), fake_ollama.transport())

    orchestrator.queue_path("a.md")
    for _ in range(50):
        await asyncio.sleep(0.01)
        if orchestrator.last_summary is not None:
            break

    assert orchestrator.last_summary is not None
    assert orchestrator.last_summary.indexed == 1


@pytest.mark.asyncio
async def test_file_events_keep_the_store_in_step(make_settings, fake_ollama, write_note, notes_root) -> None:
    write_note("old.md", "Some note.")
    write_note("gone.md", "Another note.")
    orchestrator = await _orchestrator(make_settings(), fake_ollama.transport())
    await orchestrator.index_all()

    (notes_root / "old.md").rename(notes_root / "new.md")
    orchestrator.handle_file_event("moved", "old.md", "new.md")
    (notes_root / "gone.md").unlink()
    orchestrator.handle_file_event("deleted", "gone.md")
    for _ in range(5):
        await asyncio.sleep(0)

    paths = await orchestrator.vector_store.get_indexed_paths_with_mtime()
    assert list(paths) == ["new.md"]
    assert fake_ollama.embed_calls == 2


@pytest.mark.asyncio
async def test_rename_into_excluded_folder_drops_records(make_settings, fake_ollama, write_note) -> None:
    write_note("a.md", "Alpha.")
    orchestrator = await _orchestrator(make_settings(), fake_ollama.transport())
    await orchestrator.index_all()

    await orchestrator.rename_path("a.md", "templates/a.md")
    assert await orchestrator.vector_store.count() == 0


@pytest.mark.asyncio
async def test_index_file_for_missing_document_clears_records(make_settings, fake_ollama, write_note, notes_root) -> None:
    write_note("a.md", "Alpha.")
    orchestrator = await _orchestrator(make_settings(), fake_ollama.transport())
    await orchestrator.index_all()
    (notes_root / "a.md").unlink()

    summary = await orchestrator.index_file("a.md")

    assert (summary.indexed, summary.skipped) == (0, 1)
    assert await orchestrator.vector_store.count() == 0
