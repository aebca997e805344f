"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class Memory:
    id: str
    content: str
    created_at: int
    last_accessed_at: int
    access_count: int = 1
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "created_at": self.created_at,
            "last_accessed_at": self.last_accessed_at,
            "access_count": self.access_count,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Memory":
        return cls(
            id=str(data["id"]),
            content=str(data["content"]),
            created_at=int(data.get("created_at", 0)),
            last_accessed_at=int(data.get("last_accessed_at", 0)),
            access_count=int(data.get("access_count", 1)),
            source=data.get("source"),
        )


@dataclass(slots=True)
class TagSuggestion:
    tag: str
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {"tag": self.tag, "confidence": self.confidence}


__all__ = ["Memory", "TagSuggestion"]
