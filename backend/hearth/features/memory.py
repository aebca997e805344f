"""Persistent user memories surfaced into chat context."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Callable

import orjson

from hearth.core.errors import StorageError
from hearth.core.logging import get_logger
from hearth.models.entities import Memory
from hearth.utils.ids import new_id
from hearth.utils.time import now_ms

logger = get_logger(__name__)

MEMORY_SCHEMA_VERSION = 1
DUPLICATE_THRESHOLD = 0.9

_NON_WORD_RE = re.compile(r"[^\w\s]")


class MemoryManager:
    """Facts about the user, stored as a versioned JSON document.

    Capacity is bounded; when full, the least recently used memory is
    evicted to make room. Relevance lookups count as use.
    """

    def __init__(
        self,
        path: Path,
        max_memories: int = 100,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.path = path.expanduser()
        self.max_memories = max_memories
        self._clock = clock
        self._memories: list[Memory] = []
        self._loaded = False

    def load(self) -> None:
        self._loaded = True
        self._memories = []
        if not self.path.exists():
            return
        try:
            data = orjson.loads(self.path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as exc:
            logger.warning("Could not read memories from %s: %s", self.path, exc)
            return
        if not isinstance(data, dict) or data.get("version") != MEMORY_SCHEMA_VERSION:
            logger.warning("Ignoring memories file with unsupported version: %s", self.path)
            return
        for raw in data.get("memories") or []:
            try:
                self._memories.append(Memory.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed memory entry in %s", self.path)

    def save(self) -> None:
        payload = {
            "version": MEMORY_SCHEMA_VERSION,
            "memories": [memory.to_dict() for memory in self._memories],
        }
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StorageError(f"Could not save memories: {exc}") from exc

    def add(self, content: str, source: str | None = None) -> Memory:
        """Store `content`, or refresh the existing memory it nearly duplicates."""
        self._ensure_loaded()
        content = content.strip()
        now = self._clock()
        for existing in self._memories:
            if jaccard_similarity(existing.content, content) > DUPLICATE_THRESHOLD:
                existing.last_accessed_at = now
                existing.access_count += 1
                self.save()
                return existing
        while len(self._memories) >= self.max_memories:
            evicted = min(self._memories, key=lambda memory: (memory.last_accessed_at, memory.access_count))
            self._memories.remove(evicted)
            logger.debug("Evicted memory %s", evicted.id)
        memory = Memory(
            id=new_id("mem"),
            content=content,
            created_at=now,
            last_accessed_at=now,
            source=source,
        )
        self._memories.append(memory)
        self.save()
        return memory

    def get(self, memory_id: str) -> Memory | None:
        self._ensure_loaded()
        return next((memory for memory in self._memories if memory.id == memory_id), None)

    def all(self) -> list[Memory]:
        """Every memory, most recently used first."""
        self._ensure_loaded()
        return sorted(self._memories, key=lambda memory: memory.last_accessed_at, reverse=True)

    def count(self) -> int:
        self._ensure_loaded()
        return len(self._memories)

    def get_relevant(self, query: str, limit: int = 5) -> list[str]:
        """Contents of the memories sharing the most keywords with `query`."""
        self._ensure_loaded()
        if not self._memories or limit <= 0:
            return []
        query_words = tokenize(query)
        scored: list[tuple[float, Memory]] = []
        for memory in self._memories:
            memory_words = set(tokenize(memory.content))
            overlap = sum(1 for word in query_words if word in memory_words)
            score = overlap / max(len(query_words), 1)
            if score > 0:
                scored.append((score, memory))
        scored.sort(key=lambda item: (-item[0], -item[1].access_count))
        relevant = [memory for _, memory in scored[:limit]]
        if relevant:
            now = self._clock()
            for memory in relevant:
                memory.last_accessed_at = now
                memory.access_count += 1
            try:
                self.save()
            except StorageError as exc:
                logger.warning("Could not record memory access: %s", exc)
        return [memory.content for memory in relevant]

    def search(self, query: str) -> list[Memory]:
        needle = query.lower()
        return [memory for memory in self.all() if needle in memory.content.lower()]

    def update(self, memory_id: str, content: str) -> bool:
        memory = self.get(memory_id)
        if memory is None:
            return False
        memory.content = content.strip()
        memory.last_accessed_at = self._clock()
        self.save()
        return True

    def delete(self, memory_id: str) -> bool:
        memory = self.get(memory_id)
        if memory is None:
            return False
        self._memories.remove(memory)
        self.save()
        return True

    def clear(self) -> None:
        self._ensure_loaded()
        self._memories = []
        self.save()

    # Internal helpers -------------------------------------------------

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()


def tokenize(text: str) -> list[str]:
    """Lowercased words longer than two characters."""
    return [word for word in _NON_WORD_RE.sub(" ", text.lower()).split() if len(word) > 2]


def jaccard_similarity(a: str, b: str) -> float:
    words_a = set(tokenize(a))
    words_b = set(tokenize(b))
    if not words_a and not words_b:
        return 1.0
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


__all__ = ["MemoryManager", "MEMORY_SCHEMA_VERSION", "tokenize", "jaccard_similarity"]
