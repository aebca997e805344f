"""SQLite-backed vector store with brute-force cosine search."""

from __future__ import annotations

import asyncio
import heapq
import math
import sqlite3
from array import array
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

import orjson

from hearth.core.errors import StorageError, StorageErrorKind
from hearth.core.logging import get_logger
from hearth.db.sqlite import SQLiteDatabase, is_quota_error, iter_batches
from hearth.ingest.types import SearchHit, VectorRecord, VectorStoreStats
from hearth.utils.time import now_ms

logger = get_logger(__name__)

STORE_SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS vectors (
  id TEXT PRIMARY KEY,
  document_path TEXT NOT NULL,
  chunk_index INTEGER NOT NULL,
  text TEXT NOT NULL,
  embedding BLOB NOT NULL,
  dim INTEGER NOT NULL,
  source_modified_at INTEGER NOT NULL,
  meta_json TEXT NOT NULL DEFAULT '{}',
  created_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_vectors_document_path ON vectors(document_path);
CREATE TABLE IF NOT EXISTS store_meta (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);
"""

_COLUMNS = "id, document_path, chunk_index, text, embedding, source_modified_at, meta_json, created_at"
_INSERT_SQL = (
    "INSERT OR REPLACE INTO vectors "
    "(id, document_path, chunk_index, text, embedding, dim, source_modified_at, meta_json, created_at) "
    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)"
)


class VectorStore:
    """Durable chunk-id → (embedding, text, metadata) map with a path index.

    All operations are coroutines; `search` scans in batches of
    `search_batch_size` rows and yields to the event loop between batches.
    """

    def __init__(self, database: SQLiteDatabase, search_batch_size: int = 500) -> None:
        self.db = database
        self.search_batch_size = max(1, search_batch_size)
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        with _storage_errors("initialize"):
            self.db.ensure_schema(SCHEMA_SQL)
            with self.db.transaction() as cur:
                cur.execute(
                    "INSERT OR IGNORE INTO store_meta (key, value) VALUES ('schema_version', ?)",
                    [str(STORE_SCHEMA_VERSION)],
                )
        self._initialized = True
        logger.debug("Vector store ready at %s", self.db.db_path)

    def close(self) -> None:
        self.db.close()
        self._initialized = False

    async def upsert(self, record: VectorRecord) -> None:
        await self.upsert_batch([record])

    async def upsert_batch(self, records: Sequence[VectorRecord]) -> None:
        """Replace-by-id; the whole batch commits or none of it does."""
        if not records:
            return
        db = self._ready()
        created = now_ms()
        rows = [_record_to_row(record, created) for record in records]
        with _storage_errors("upsert"):
            with db.transaction() as cur:
                cur.executemany(_INSERT_SQL, rows)

    async def get(self, record_id: str) -> VectorRecord | None:
        db = self._ready()
        with _storage_errors("get"):
            row = db.execute(f"SELECT {_COLUMNS} FROM vectors WHERE id = ?", [record_id]).fetchone()
        return _row_to_record(row) if row else None

    async def get_by_path(self, document_path: str) -> list[VectorRecord]:
        db = self._ready()
        with _storage_errors("get_by_path"):
            rows = db.query(
                f"SELECT {_COLUMNS} FROM vectors WHERE document_path = ? ORDER BY chunk_index",
                [document_path],
            )
        return [_row_to_record(row) for row in rows]

    async def get_all(self) -> list[VectorRecord]:
        db = self._ready()
        with _storage_errors("get_all"):
            rows = db.query(f"SELECT {_COLUMNS} FROM vectors ORDER BY document_path, chunk_index")
        return [_row_to_record(row) for row in rows]

    async def delete(self, record_id: str) -> bool:
        db = self._ready()
        with _storage_errors("delete"):
            with db.transaction() as cur:
                cur.execute("DELETE FROM vectors WHERE id = ?", [record_id])
                return cur.rowcount > 0

    async def delete_by_path(self, document_path: str) -> int:
        db = self._ready()
        with _storage_errors("delete_by_path"):
            with db.transaction() as cur:
                cur.execute("DELETE FROM vectors WHERE document_path = ?", [document_path])
                deleted = cur.rowcount
        if deleted:
            logger.debug("Deleted %s chunks for %s", deleted, document_path)
        return deleted

    async def update_path(self, old_path: str, new_path: str) -> int:
        """Re-key every record of `old_path` under `new_path` in one transaction."""
        if old_path == new_path:
            return 0
        db = self._ready()
        with _storage_errors("update_path"):
            with db.transaction() as cur:
                rows = cur.execute(
                    "SELECT chunk_index, text, embedding, dim, source_modified_at, meta_json, created_at "
                    "FROM vectors WHERE document_path = ?",
                    [old_path],
                ).fetchall()
                cur.execute("DELETE FROM vectors WHERE document_path = ?", [new_path])
                cur.execute("DELETE FROM vectors WHERE document_path = ?", [old_path])
                cur.executemany(
                    _INSERT_SQL,
                    [
                        (
                            VectorRecord.make_id(new_path, row["chunk_index"]),
                            new_path,
                            row["chunk_index"],
                            row["text"],
                            row["embedding"],
                            row["dim"],
                            row["source_modified_at"],
                            row["meta_json"],
                            row["created_at"],
                        )
                        for row in rows
                    ],
                )
        logger.info("Moved %s chunks from %s to %s", len(rows), old_path, new_path)
        return len(rows)

    async def clear(self) -> None:
        db = self._ready()
        with _storage_errors("clear"):
            with db.transaction() as cur:
                cur.execute("DELETE FROM vectors")

    async def count(self) -> int:
        db = self._ready()
        with _storage_errors("count"):
            row = db.execute("SELECT COUNT(*) AS n FROM vectors").fetchone()
        return int(row["n"])

    async def search(
        self,
        vector: Sequence[float],
        top_k: int = 5,
        min_score: float = 0.0,
        paths: Sequence[str] | None = None,
    ) -> list[SearchHit]:
        """Return the `top_k` records most similar to `vector`, best first.

        Records of a different dimensionality are ignored. Ties keep the
        record whose id sorts first.
        """
        db = self._ready()
        if top_k <= 0 or not vector:
            return []
        if paths is not None and not paths:
            return []
        query = [float(value) for value in vector]

        sql = "SELECT id, embedding FROM vectors WHERE dim = ?"
        params: list[Any] = [len(query)]
        if paths is not None:
            unique_paths = list(dict.fromkeys(paths))
            sql += f" AND document_path IN ({','.join('?' for _ in unique_paths)})"
            params.extend(unique_paths)
        sql += " ORDER BY id"

        heap: list[tuple[float, int, str]] = []
        ordinal = 0
        with _storage_errors("search"):
            cursor = db.connect().cursor()
            try:
                cursor.execute(sql, params)
                for batch in iter_batches(cursor, self.search_batch_size):
                    for row in batch:
                        ordinal += 1
                        score = cosine_similarity(query, _decode_vector(row["embedding"]))
                        if score < min_score:
                            continue
                        item = (score, -ordinal, row["id"])
                        if len(heap) < top_k:
                            heapq.heappush(heap, item)
                        elif item > heap[0]:
                            heapq.heapreplace(heap, item)
                    await asyncio.sleep(0)
            finally:
                cursor.close()

        ranked = sorted(heap, reverse=True)
        records = self._fetch_many([record_id for _, _, record_id in ranked])
        return [SearchHit(record=records[record_id], score=score) for score, _, record_id in ranked if record_id in records]

    async def search_in_paths(
        self,
        vector: Sequence[float],
        paths: Sequence[str],
        top_k: int = 5,
        min_score: float = 0.0,
    ) -> list[SearchHit]:
        return await self.search(vector, top_k=top_k, min_score=min_score, paths=paths)

    async def get_indexed_paths_with_mtime(self) -> dict[str, int]:
        """Map each indexed path to the newest source mtime among its chunks."""
        db = self._ready()
        with _storage_errors("get_indexed_paths"):
            rows = db.query(
                "SELECT document_path, MAX(source_modified_at) AS mtime FROM vectors GROUP BY document_path"
            )
        return {row["document_path"]: int(row["mtime"]) for row in rows}

    async def needs_reindex(self, document_path: str, modified_at: int) -> bool:
        db = self._ready()
        with _storage_errors("needs_reindex"):
            row = db.execute(
                "SELECT COUNT(*) AS n, MAX(source_modified_at) AS mtime FROM vectors WHERE document_path = ?",
                [document_path],
            ).fetchone()
        if not row or not row["n"]:
            return True
        return modified_at > int(row["mtime"])

    async def stats(self) -> VectorStoreStats:
        db = self._ready()
        with _storage_errors("stats"):
            row = db.execute(
                "SELECT COUNT(*) AS n, COUNT(DISTINCT document_path) AS files FROM vectors"
            ).fetchone()
            size = db.size_bytes()
        return VectorStoreStats(
            document_count=int(row["n"]),
            unique_files=int(row["files"]),
            total_chunks=int(row["n"]),
            db_size_bytes=size,
        )

    # Internal helpers -------------------------------------------------

    def _ready(self) -> SQLiteDatabase:
        if not self._initialized:
            logger.error("Vector store used before initialize()")
            raise StorageError("Vector store is not initialized", StorageErrorKind.NOT_INITIALIZED)
        return self.db

    def _fetch_many(self, record_ids: Sequence[str]) -> dict[str, VectorRecord]:
        if not record_ids:
            return {}
        placeholders = ",".join("?" for _ in record_ids)
        with _storage_errors("search"):
            rows = self.db.query(f"SELECT {_COLUMNS} FROM vectors WHERE id IN ({placeholders})", list(record_ids))
        return {row["id"]: _row_to_record(row) for row in rows}


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between `a` and `b`; 0.0 if either has zero norm."""
    if len(a) != len(b):
        raise ValueError(f"Vector dimension mismatch: {len(a)} != {len(b)}")
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return max(-1.0, min(1.0, dot / (math.sqrt(norm_a) * math.sqrt(norm_b))))


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Vector dimension mismatch: {len(a)} != {len(b)}")
    return math.sqrt(sum((x - y) ** 2 for x, y in zip(a, b)))


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        if is_quota_error(exc):
            raise StorageError(f"Storage quota exceeded during {operation}", StorageErrorKind.QUOTA_EXCEEDED) from exc
        raise StorageError(f"Vector store {operation} failed: {exc}", StorageErrorKind.IO) from exc


def _encode_vector(vector: Sequence[float]) -> bytes:
    return array("f", vector).tobytes()


def _decode_vector(blob: bytes) -> list[float]:
    floats = array("f")
    floats.frombytes(blob)
    return floats.tolist()


def _record_to_row(record: VectorRecord, created: int) -> tuple[Any, ...]:
    return (
        record.id,
        record.document_path,
        record.chunk_index,
        record.text,
        _encode_vector(record.embedding),
        len(record.embedding),
        int(record.source_modified_at),
        orjson.dumps(record.metadata, default=str).decode("utf-8"),
        record.created_at or created,
    )


def _row_to_record(row: sqlite3.Row) -> VectorRecord:
    return VectorRecord(
        id=row["id"],
        document_path=row["document_path"],
        chunk_index=row["chunk_index"],
        text=row["text"],
        embedding=_decode_vector(row["embedding"]),
        source_modified_at=int(row["source_modified_at"]),
        metadata=orjson.loads(row["meta_json"]) if row["meta_json"] else {},
        created_at=int(row["created_at"]),
    )


__all__ = ["VectorStore", "cosine_similarity", "euclidean_distance", "SCHEMA_SQL"]
