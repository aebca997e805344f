"""Model-suggested tags for notes, applied to frontmatter on request or automatically."""

from __future__ import annotations

import asyncio
import re
import time
from typing import Any, Callable

import orjson

from hearth.core.config import Settings
from hearth.core.errors import ParseError, StorageError
from hearth.core.logging import get_logger, log_context
from hearth.core.resilience import CircuitBreaker
from hearth.ingest.documents import DocumentStore, split_frontmatter
from hearth.models.entities import TagSuggestion
from hearth.providers.base import ChatMessage, ChatRequest
from hearth.providers.gateway import ProviderGateway

logger = get_logger(__name__)

MIN_CONFIDENCE = 0.3
CONTENT_PREVIEW_CHARS = 2000
MAX_PROMPT_TAGS = 50
OWN_WRITE_GRACE_S = 5.0

TAG_SYSTEM_PROMPT = (
    "You are a tag suggestion assistant. Analyze the content and suggest relevant tags. "
    'Return ONLY a JSON array of objects with "tag" and "confidence" (0-1) properties.'
)

_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_TAG_SPACE_RE = re.compile(r"\s+")


class AutoTagger:
    """Suggests tags for changed notes through the chat model.

    Changed paths are coalesced by a debounce timer. In ``auto`` mode
    suggestions above the confidence threshold are written to the note's
    frontmatter; in ``suggest`` mode they are only recorded. The queue
    shares the indexing circuit breaker so a dead provider stops both.
    """

    def __init__(
        self,
        settings: Settings,
        documents: DocumentStore,
        gateway: ProviderGateway,
        breaker: CircuitBreaker,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.documents = documents
        self.gateway = gateway
        self.breaker = breaker
        self.suggestions: dict[str, list[TagSuggestion]] = {}
        self._pending: dict[str, None] = {}
        self._own_writes: dict[str, float] = {}
        self._clock = clock
        self._debounce: asyncio.TimerHandle | None = None
        self._processing = False
        self._stop_requested = False

    @property
    def pending_paths(self) -> list[str]:
        return list(self._pending)

    def update_settings(self, settings: Settings) -> None:
        self.settings = settings

    def queue_path(self, path: str) -> bool:
        written_at = self._own_writes.pop(path, None)
        if written_at is not None and self._clock() - written_at < OWN_WRITE_GRACE_S:
            return False
        if not self.settings.enable_auto_tag or self.breaker.is_open:
            return False
        self._pending[path] = None
        self._schedule()
        return True

    def force_stop(self) -> None:
        self._stop_requested = True
        self._pending.clear()
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None

    async def suggest_tags(self, path: str) -> list[TagSuggestion]:
        """Ask the chat model for tags; an unparseable answer yields no suggestions."""
        content = await self.documents.read_text(path)
        existing = await self.corpus_tags()
        response = await self.gateway.chat(
            ChatRequest(
                messages=[
                    ChatMessage(role="system", content=TAG_SYSTEM_PROMPT),
                    ChatMessage(role="user", content=self._build_prompt(content, existing)),
                ],
                temperature=0.3,
                max_tokens=200,
            )
        )
        try:
            suggestions = parse_tag_suggestions(response.content)
        except ParseError as exc:
            logger.warning("Could not parse tag suggestions for %s: %s", path, exc)
            return []
        suggestions.sort(key=lambda suggestion: suggestion.confidence, reverse=True)
        return suggestions[: self.settings.max_tag_suggestions]

    async def apply_tags(self, path: str, tags: list[str]) -> list[str]:
        """Merge `tags` into the note's frontmatter ``tags`` list; returns the resulting list."""
        normalized = [tag for tag in (normalize_tag(raw) for raw in tags) if tag]
        if not normalized:
            return []
        merged: list[str] = []

        def mutate(frontmatter: dict[str, Any]) -> None:
            current = frontmatter.get("tags") or []
            values = list(current) if isinstance(current, list) else [current]
            for tag in normalized:
                if tag not in values:
                    values.append(tag)
            frontmatter["tags"] = values
            merged.extend(values)

        self._own_writes[path] = self._clock()
        await self.documents.read_write_frontmatter(path, mutate)
        self.suggestions.pop(path, None)
        return merged

    async def refresh_suggestions(self, path: str) -> list[TagSuggestion]:
        """Suggest tags for one note now and keep them for later review."""
        suggestions = await self.suggest_tags(path)
        if suggestions:
            self.suggestions[path] = suggestions
        else:
            self.suggestions.pop(path, None)
        return suggestions

    async def corpus_tags(self) -> list[str]:
        """Frontmatter tags already used across the corpus."""
        tags: dict[str, None] = {}
        for path in await self.documents.list_documents():
            try:
                frontmatter, _ = split_frontmatter(await self.documents.read_text(path), source=path)
            except (OSError, ParseError):
                continue
            raw = frontmatter.get("tags") or []
            for value in raw if isinstance(raw, list) else [raw]:
                if isinstance(value, str) and value.strip():
                    tags[value.strip().lstrip("#")] = None
            if len(tags) >= MAX_PROMPT_TAGS:
                break
        return list(tags)[:MAX_PROMPT_TAGS]

    async def process_queue(self) -> dict[str, list[TagSuggestion]]:
        """Tag every queued path; stops early when the circuit opens."""
        if self._processing:
            self._schedule()
            return {}
        self._processing = True
        self._stop_requested = False
        processed: dict[str, list[TagSuggestion]] = {}
        try:
            paths = list(self._pending)
            self._pending.clear()
            for path in paths:
                if self.breaker.is_open or self._stop_requested:
                    logger.warning("Auto-tagging stopped; %s paths skipped", len(paths) - len(processed))
                    break
                try:
                    if not await self.documents.exists(path):
                        continue
                    suggestions = await self.suggest_tags(path)
                except (OSError, StorageError) as exc:
                    logger.warning("Could not read %s for tagging: %s", path, exc)
                    continue
                except Exception as exc:
                    self.breaker.record_failure(exc)
                    logger.warning("Failed to tag %s: %s", path, exc, extra=log_context(path=path))
                    continue
                self.breaker.record_success()
                processed[path] = suggestions
                await self._handle_suggestions(path, suggestions)
                await asyncio.sleep(0)
        finally:
            self._processing = False
            if self._pending and not self._stop_requested:
                self._schedule()
        return processed

    # Internal helpers -------------------------------------------------

    async def _handle_suggestions(self, path: str, suggestions: list[TagSuggestion]) -> None:
        if not suggestions:
            return
        if self.settings.auto_tag_mode == "auto":
            confident = [
                suggestion.tag
                for suggestion in suggestions
                if suggestion.confidence >= self.settings.auto_tag_confidence_threshold
            ]
            if confident:
                await self.apply_tags(path, confident)
                logger.info("Added tags to %s: %s", path, ", ".join(confident))
        else:
            self.suggestions[path] = suggestions
            logger.info("Suggested tags for %s: %s", path, ", ".join(s.tag for s in suggestions))

    def _build_prompt(self, content: str, existing_tags: list[str]) -> str:
        preview = content[:CONTENT_PREVIEW_CHARS]
        if len(content) > CONTENT_PREVIEW_CHARS:
            preview += "..."
        parts = [f"Analyze this note and suggest relevant tags.\n\nNote Content:\n{preview}\n"]
        if existing_tags:
            parts.append(f"\nExisting tags (prefer these when applicable):\n{', '.join(existing_tags)}\n")
        parts.append(
            f"\nSuggest {self.settings.max_tag_suggestions} tags with confidence scores (0-1).\n"
            'Format: [{"tag": "tag-name", "confidence": 0.9}, ...]\n\n'
            "Important:\n"
            "- Tags should be lowercase with hyphens\n"
            "- Focus on topics, categories, and concepts\n"
            "- Confidence should reflect how well the tag fits"
        )
        return "".join(parts)

    def _schedule(self) -> None:
        loop = asyncio.get_running_loop()
        if self._debounce is not None:
            self._debounce.cancel()
        self._debounce = loop.call_later(self.settings.auto_tag_debounce_ms / 1000, self._start)

    def _start(self) -> None:
        self._debounce = None
        asyncio.ensure_future(self.process_queue())


def parse_tag_suggestions(text: str) -> list[TagSuggestion]:
    """Extract ``[{tag, confidence}]`` from free-form model output."""
    match = _JSON_ARRAY_RE.search(text)
    if not match:
        raise ParseError("No JSON array in response")
    try:
        payload = orjson.loads(match.group(0))
    except orjson.JSONDecodeError as exc:
        raise ParseError(f"Invalid JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise ParseError("Expected a JSON array")
    suggestions: list[TagSuggestion] = []
    seen: set[str] = set()
    for item in payload:
        if not isinstance(item, dict):
            continue
        tag = normalize_tag(str(item.get("tag") or ""))
        try:
            confidence = float(item.get("confidence", 0))
        except (TypeError, ValueError):
            continue
        if not tag or tag in seen or confidence < MIN_CONFIDENCE:
            continue
        seen.add(tag)
        suggestions.append(TagSuggestion(tag=tag, confidence=min(confidence, 1.0)))
    return suggestions


def normalize_tag(tag: str) -> str:
    return _TAG_SPACE_RE.sub("-", tag.strip().lstrip("#").strip()).lower()


__all__ = ["AutoTagger", "parse_tag_suggestions", "normalize_tag", "MIN_CONFIDENCE"]
