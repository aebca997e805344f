"""Retrieval-augmented chat over the indexed corpus."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Any, Sequence

import orjson

from hearth.core.config import Settings
from hearth.core.errors import HearthError, ParseError
from hearth.core.logging import get_logger, log_context
from hearth.core.metrics import REQUEST_COUNT, REQUEST_LATENCY
from hearth.features.memory import MemoryManager
from hearth.ingest.types import SearchHit, VectorRecord
from hearth.providers.base import ChatMessage, ChatRequest, EmbeddingRequest, Usage
from hearth.providers.gateway import ProviderGateway
from hearth.retrieval.vector_index import VectorStore
from hearth.tools.definitions import ToolResult
from hearth.tools.manager import ToolManager

logger = get_logger(__name__)

SIMILAR_SEARCH_PADDING = 10
MAX_EXTRACTED_MEMORIES = 5
MAX_MEMORY_CHARS = 300

MEMORY_TRIGGERS = (
    re.compile(r"\b(I am|I'm|my name is|I work|I live|I prefer|I like|I don't like|I always|I never)\b", re.I),
    re.compile(r"\b(remember that|note that|keep in mind|don't forget)\b", re.I),
)
MEMORY_SYSTEM_PROMPT = "You are a memory extraction assistant. Extract personal facts as a JSON array."

_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


@dataclass(slots=True)
class ContextChunk:
    content: str
    source: str
    score: float


@dataclass(slots=True)
class RagResponse:
    content: str
    context_sources: list[str]
    usage: Usage | None = None
    tool_results: list[ToolResult] | None = None
    tool_summary: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "context_sources": self.context_sources,
            "usage": self.usage.to_dict() if self.usage else None,
            "tool_results": [result.to_dict() for result in self.tool_results] if self.tool_results else None,
            "tool_summary": self.tool_summary,
        }


class RAGPipeline:
    """Grounds chat answers in retrieved note excerpts and remembered facts."""

    def __init__(
        self,
        settings: Settings,
        gateway: ProviderGateway,
        vector_store: VectorStore,
        memory: MemoryManager | None = None,
        tools: ToolManager | None = None,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.vector_store = vector_store
        self.memory = memory
        self.tools = tools

    def update_settings(self, settings: Settings) -> None:
        self.settings = settings

    async def chat(self, query: str, history: Sequence[ChatMessage] = ()) -> RagResponse:
        started = time.perf_counter()
        context = await self.retrieve_context(query)
        memories = self._relevant_memories(query)
        included = self._fit_context(context)
        messages = self.build_messages(query, included, memories, history)
        response = await self.gateway.chat(
            ChatRequest(
                messages=messages,
                temperature=self.settings.chat_temperature,
                max_tokens=self.settings.chat_max_tokens,
            )
        )

        content = response.content
        tool_results: list[ToolResult] | None = None
        tool_summary: str | None = None
        if self.tools is not None and self.settings.enable_tool_calling:
            processed = await self.tools.process_response(response.content)
            content = processed.content
            if processed.has_tool_calls:
                tool_results = processed.tool_results
                tool_summary = processed.tool_summary
                content = _with_actions(content, tool_summary)

        await self.extract_memories(query, content)
        sources = list(dict.fromkeys(chunk.source for chunk in included))
        REQUEST_LATENCY.labels(endpoint="chat", method="POST").observe(time.perf_counter() - started)
        return RagResponse(
            content=content,
            context_sources=sources,
            usage=response.usage,
            tool_results=tool_results,
            tool_summary=tool_summary,
        )

    async def retrieve_context(self, query: str) -> list[ContextChunk]:
        """Top-K chunks for `query`; an embedding failure yields no context."""
        try:
            vector = await self._embed_query(query)
            if not vector:
                return []
            hits = await self.vector_store.search(vector, self.settings.rag_top_k, self.settings.rag_min_score)
        except HearthError as exc:
            logger.warning("Continuing without note context: %s", exc)
            return []
        return [
            ContextChunk(content=self._chunk_content(hit.record), source=hit.record.document_path, score=hit.score)
            for hit in hits
        ]

    def build_messages(
        self,
        query: str,
        context: Sequence[ContextChunk],
        memories: Sequence[str],
        history: Sequence[ChatMessage],
    ) -> list[ChatMessage]:
        system = self.settings.system_prompt
        if self.tools is not None and self.settings.enable_tool_calling:
            system += "\n\n" + self.tools.tool_descriptions()
        if memories:
            system += "\n\n## User Memories\nThings you know about the user:\n"
            system += "".join(f"- {memory}\n" for memory in memories)
        if context:
            system += "\n\n## Relevant Vault Context\nHere are relevant excerpts from the user's notes:\n\n"
            for chunk in context:
                system += f"### From: {_display_path(chunk.source)}\n{chunk.content}\n\n---\n\n"
        messages = [ChatMessage(role="system", content=system)]
        messages.extend(self._bounded_history(history))
        messages.append(ChatMessage(role="user", content=query))
        return messages

    async def extract_memories(self, query: str, response: str) -> list[str]:
        """Store personal facts from the exchange; never raises."""
        if self.memory is None or not self.settings.enable_memory:
            return []
        combined = f"{query}\n{response}"
        if not any(pattern.search(combined) for pattern in MEMORY_TRIGGERS):
            return []
        prompt = (
            "Extract any personal facts or preferences from this conversation that should be "
            "remembered for future interactions. Return ONLY a JSON array of short memory strings, "
            "or an empty array if none. Be very selective - only extract clear, factual information "
            f"about the user.\n\nConversation:\nUser: {query}\nAssistant: {response}\n\n"
            'Response format: ["memory 1", "memory 2"] or []'
        )
        stored: list[str] = []
        try:
            extraction = await self.gateway.chat(
                ChatRequest(
                    messages=[
                        ChatMessage(role="system", content=MEMORY_SYSTEM_PROMPT),
                        ChatMessage(role="user", content=prompt),
                    ],
                    temperature=0.1,
                    max_tokens=200,
                )
            )
            for fact in parse_memory_list(extraction.content):
                self.memory.add(fact, source="chat")
                stored.append(fact)
        except ParseError as exc:
            logger.debug("No memories extracted: %s", exc)
        except Exception as exc:
            logger.warning("Memory extraction failed: %s", exc)
        return stored

    async def search(self, query: str, limit: int | None = None) -> list[SearchHit]:
        vector = await self._embed_query(query)
        if not vector:
            return []
        hits = await self.vector_store.search(vector, limit or self.settings.rag_top_k, self.settings.rag_min_score)
        REQUEST_COUNT.labels(endpoint="search", method="POST", status="200").inc()
        return hits

    async def find_similar(self, path: str, limit: int = 5) -> list[SearchHit]:
        """Notes closest to the centroid of `path`'s chunk embeddings."""
        records = await self.vector_store.get_by_path(path)
        if not records:
            return []
        centroid = average_embeddings([record.embedding for record in records])
        hits = await self.vector_store.search(centroid, limit + SIMILAR_SEARCH_PADDING, 0.0)
        similar = [hit for hit in hits if hit.record.document_path != path]
        logger.debug("Similar notes for %s", path, extra=log_context(path=path, hits=len(similar)))
        return similar[:limit]

    # Internal helpers -------------------------------------------------

    async def _embed_query(self, query: str) -> list[float]:
        response = await self.gateway.embed(EmbeddingRequest(input=query))
        return response.embeddings[0] if response.embeddings else []

    def _relevant_memories(self, query: str) -> list[str]:
        if self.memory is None or not self.settings.enable_memory or not self.settings.include_memories_in_context:
            return []
        return self.memory.get_relevant(query, self.settings.memory_context_limit)

    def _fit_context(self, context: Sequence[ContextChunk]) -> list[ContextChunk]:
        """Whole chunks in score order until the character budget would overflow."""
        budget = self.settings.rag_max_context_chars
        used = 0
        included: list[ContextChunk] = []
        for chunk in sorted(context, key=lambda item: item.score, reverse=True):
            if used + len(chunk.content) > budget:
                break
            included.append(chunk)
            used += len(chunk.content)
        return included

    def _bounded_history(self, history: Sequence[ChatMessage]) -> list[ChatMessage]:
        if not self.settings.include_chat_history or self.settings.max_history_messages <= 0:
            return []
        return list(history)[-self.settings.max_history_messages :]

    def _chunk_content(self, record: VectorRecord) -> str:
        if not self.settings.rag_include_frontmatter:
            return record.text
        header = frontmatter_header(record.metadata.get("frontmatter") or {})
        return f"---\n{header}\n---\n\n{record.text}" if header else record.text


def frontmatter_header(frontmatter: dict[str, Any]) -> str:
    lines = []
    for key, value in frontmatter.items():
        if value is None:
            continue
        rendered = ", ".join(str(item) for item in value) if isinstance(value, list) else str(value)
        lines.append(f"{key}: {rendered}")
    return "\n".join(lines)


def parse_memory_list(text: str) -> list[str]:
    match = _JSON_ARRAY_RE.search(text)
    if not match:
        raise ParseError("No JSON array in memory extraction response")
    try:
        payload = orjson.loads(match.group(0))
    except orjson.JSONDecodeError as exc:
        raise ParseError(f"Invalid memory JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise ParseError("Memory extraction did not return a list")
    facts = [item.strip() for item in payload if isinstance(item, str) and item.strip()]
    return [fact[:MAX_MEMORY_CHARS] for fact in facts[:MAX_EXTRACTED_MEMORIES]]


def average_embeddings(embeddings: Sequence[Sequence[float]]) -> list[float]:
    """Component-wise mean; vectors whose length differs from the first are skipped."""
    if not embeddings:
        return []
    dim = len(embeddings[0])
    usable = [vector for vector in embeddings if len(vector) == dim]
    totals = [0.0] * dim
    for vector in usable:
        for index, value in enumerate(vector):
            totals[index] += value
    return [total / len(usable) for total in totals]


def _with_actions(content: str, summary: str) -> str:
    content = content.strip()
    if not summary:
        return content
    if content:
        return f"{content}\n\n**Actions performed:**\n{summary}"
    return f"**Actions performed:**\n{summary}"


def _display_path(path: str) -> str:
    return path[:-3] if path.endswith(".md") else path


__all__ = [
    "RAGPipeline",
    "RagResponse",
    "ContextChunk",
    "average_embeddings",
    "frontmatter_header",
    "parse_memory_list",
]
