"""Vector store behaviour against a real SQLite file."""

from __future__ import annotations

import random
import sqlite3
from contextlib import contextmanager
from pathlib import Path

import pytest

from hearth.core.errors import StorageError, StorageErrorKind
from hearth.db.sqlite import MEMORY_PATH, SQLiteDatabase
from hearth.ingest.types import VectorRecord
from hearth.retrieval import VectorStore, cosine_similarity, euclidean_distance


async def _open_store(tmp_path: Path, search_batch_size: int = 500) -> VectorStore:
    store = VectorStore(SQLiteDatabase(tmp_path / "vectors.db"), search_batch_size=search_batch_size)
    await store.initialize()
    return store


def _record(path: str, index: int, embedding: list[float], mtime: int = 1000) -> VectorRecord:
    return VectorRecord(
        id=VectorRecord.make_id(path, index),
        document_path=path,
        chunk_index=index,
        text=f"{path} chunk {index}",
        embedding=embedding,
        source_modified_at=mtime,
        metadata={"title": path, "frontmatter": {"tags": ["x"]}},
    )


def test_cosine_similarity() -> None:
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    with pytest.raises(ValueError):
        cosine_similarity([1.0], [1.0, 2.0])
    assert euclidean_distance([0.0, 3.0], [4.0, 0.0]) == pytest.approx(5.0)


@pytest.mark.asyncio
async def test_upsert_and_get_round_trip(tmp_path: Path) -> None:
    store = await _open_store(tmp_path)
    await store.upsert(_record("a.md", 0, [0.5, 0.25, 1.0]))

    record = await store.get("a.md#0")
    assert record is not None
    assert record.embedding == [0.5, 0.25, 1.0]
    assert record.metadata == {"title": "a.md", "frontmatter": {"tags": ["x"]}}
    assert record.created_at > 0
    assert await store.get("missing#0") is None

    await store.upsert(_record("a.md", 0, [1.0, 0.0, 0.0]))
    assert await store.count() == 1
    store.close()


@pytest.mark.asyncio
async def test_search_matches_brute_force(tmp_path: Path) -> None:
    store = await _open_store(tmp_path, search_batch_size=7)
    rng = random.Random(7)
    records = [
        _record(f"note-{i % 6}.md", i, [rng.uniform(-1, 1) for _ in range(6)]) for i in range(30)
    ]
    await store.upsert_batch(records)
    query = [rng.uniform(-1, 1) for _ in range(6)]

    hits = await store.search(query, top_k=5, min_score=-1.0)

    stored = await store.get_all()
    expected = sorted(stored, key=lambda r: (-cosine_similarity(query, r.embedding), r.id))[:5]
    assert [hit.record.id for hit in hits] == [record.id for record in expected]
    assert [hit.score for hit in hits] == sorted((hit.score for hit in hits), reverse=True)
    store.close()


@pytest.mark.asyncio
async def test_search_filters(tmp_path: Path) -> None:
    store = await _open_store(tmp_path)
    await store.upsert_batch(
        [
            _record("near.md", 0, [1.0, 0.1]),
            _record("far.md", 0, [-1.0, 0.0]),
            _record("other-dim.md", 0, [1.0, 0.0, 0.0]),
        ]
    )

    hits = await store.search([1.0, 0.0], top_k=10, min_score=0.5)
    assert [hit.record.document_path for hit in hits] == ["near.md"]

    everything = await store.search([1.0, 0.0], top_k=10, min_score=-1.0)
    assert {hit.record.document_path for hit in everything} == {"near.md", "far.md"}

    scoped = await store.search_in_paths([1.0, 0.0], ["far.md"], top_k=10, min_score=-1.0)
    assert [hit.record.document_path for hit in scoped] == ["far.md"]
    assert await store.search([1.0, 0.0], top_k=0) == []
    store.close()


@pytest.mark.asyncio
async def test_ties_prefer_smaller_id(tmp_path: Path) -> None:
    store = await _open_store(tmp_path)
    await store.upsert_batch([_record(name, 0, [1.0, 1.0]) for name in ("c.md", "a.md", "b.md")])
    hits = await store.search([1.0, 1.0], top_k=2)
    assert [hit.record.id for hit in hits] == ["a.md#0", "b.md#0"]
    store.close()


@pytest.mark.asyncio
async def test_path_operations(tmp_path: Path) -> None:
    store = await _open_store(tmp_path)
    await store.upsert_batch([_record("old.md", i, [1.0, 0.0], mtime=500 + i) for i in range(3)])
    await store.upsert(_record("keep.md", 0, [0.0, 1.0], mtime=900))

    assert await store.get_indexed_paths_with_mtime() == {"old.md": 502, "keep.md": 900}
    assert await store.needs_reindex("old.md", 502) is False
    assert await store.needs_reindex("old.md", 503) is True
    assert await store.needs_reindex("never.md", 1) is True

    assert await store.update_path("old.md", "new.md") == 3
    assert await store.get_by_path("old.md") == []
    moved = await store.get_by_path("new.md")
    assert [record.id for record in moved] == ["new.md#0", "new.md#1", "new.md#2"]

    assert await store.delete_by_path("new.md") == 3
    assert await store.delete("keep.md#0") is True
    assert await store.delete("keep.md#0") is False
    stats = await store.stats()
    assert (stats.document_count, stats.unique_files) == (0, 0)

    await store.upsert(_record("again.md", 0, [1.0, 1.0]))
    await store.clear()
    assert await store.count() == 0
    store.close()


@pytest.mark.asyncio
async def test_data_survives_reopen(tmp_path: Path) -> None:
    store = await _open_store(tmp_path)
    await store.upsert(_record("a.md", 0, [1.0, 0.0]))
    store.close()

    reopened = await _open_store(tmp_path)
    assert await reopened.count() == 1
    reopened.close()


@pytest.mark.asyncio
async def test_use_before_initialize_fails(tmp_path: Path) -> None:
    store = VectorStore(SQLiteDatabase(tmp_path / "vectors.db"))
    with pytest.raises(StorageError) as excinfo:
        await store.count()
    assert excinfo.value.kind is StorageErrorKind.NOT_INITIALIZED
    assert excinfo.value.retryable is False


@pytest.mark.asyncio
async def test_in_memory_database() -> None:
    store = VectorStore(SQLiteDatabase(MEMORY_PATH))
    await store.initialize()
    await store.upsert(_record("a.md", 0, [1.0, 0.0]))

    stats = await store.stats()

    assert (stats.unique_files, stats.total_chunks, stats.db_size_bytes) == (1, 1, 0)
    store.close()


class _FullDiskCursor:
    def __init__(self, cursor: sqlite3.Cursor) -> None:
        self._cursor = cursor

    def executemany(self, sql: str, rows) -> None:
        self._cursor.executemany(sql, rows)
        raise sqlite3.OperationalError("database or disk is full")


class _FullDiskDatabase(SQLiteDatabase):
    full = False

    @contextmanager
    def transaction(self):
        with super().transaction() as cursor:
            yield _FullDiskCursor(cursor) if self.full else cursor


@pytest.mark.asyncio
async def test_full_disk_is_quota_error_and_rolls_back(tmp_path: Path) -> None:
    db = _FullDiskDatabase(tmp_path / "vectors.db")
    store = VectorStore(db)
    await store.initialize()
    await store.upsert(_record("a.md", 0, [1.0, 0.0]))
    db.full = True

    with pytest.raises(StorageError) as excinfo:
        await store.upsert_batch([_record("a.md", 0, [0.0, 1.0]), _record("b.md", 0, [1.0, 1.0])])

    assert excinfo.value.kind is StorageErrorKind.QUOTA_EXCEEDED
    db.full = False
    assert await store.count() == 1
    record = await store.get("a.md#0")
    assert record is not None and record.embedding == [1.0, 0.0]
    store.close()
