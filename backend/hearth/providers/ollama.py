"""Ollama-style local server backend."""

from __future__ import annotations

from contextlib import aclosing
from typing import Any

import orjson

from hearth.core.errors import ProviderErrorCode
from hearth.providers.base import (
    BaseProvider,
    ChatRequest,
    ChatResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    StreamChunk,
    StreamSink,
    Usage,
    emit,
)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2048


class OllamaProvider(BaseProvider):
    """Talks to /api/chat, /api/embed and /api/tags."""

    kind = "ollama"

    async def chat(self, request: ChatRequest) -> ChatResponse:
        payload = await self._request_json("POST", f"{self.base_url}/api/chat", "chat", self._chat_body(request, False))
        message = payload.get("message") or {}
        return ChatResponse(
            content=message.get("content", ""),
            finish_reason="length" if payload.get("done_reason") == "length" else "stop",
            usage=_usage(payload),
        )

    async def chat_stream(self, request: ChatRequest, sink: StreamSink) -> ChatResponse:
        return await self._with_timeout(self._consume_stream(request, sink), "chat_stream")

    async def embed(self, request: EmbeddingRequest) -> EmbeddingResponse:
        texts = request.texts
        model = request.model or self.embedding_model
        payload = await self._request_json(
            "POST", f"{self.base_url}/api/embed", "embed", {"model": model, "input": texts}
        )
        embeddings = payload.get("embeddings") or []
        if len(embeddings) != len(texts):
            raise self._error(
                f"embed returned {len(embeddings)} vectors for {len(texts)} inputs",
                ProviderErrorCode.INVALID_REQUEST,
            )
        prompt_tokens = int(payload.get("prompt_eval_count") or 0)
        return EmbeddingResponse(
            embeddings=[[float(value) for value in vector] for vector in embeddings],
            model=payload.get("model", model),
            usage=Usage(prompt_tokens=prompt_tokens, total_tokens=prompt_tokens),
        )

    async def list_models(self) -> list[str]:
        payload = await self._request_json("GET", f"{self.base_url}/api/tags", "list_models")
        return [model["name"] for model in payload.get("models") or [] if model.get("name")]

    # Internal helpers -------------------------------------------------

    def _chat_body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        return {
            "model": self.chat_model,
            "messages": [message.to_dict() for message in request.messages],
            "stream": stream,
            "options": {
                "temperature": DEFAULT_TEMPERATURE if request.temperature is None else request.temperature,
                "num_predict": DEFAULT_MAX_TOKENS if request.max_tokens is None else request.max_tokens,
            },
        }

    async def _consume_stream(self, request: ChatRequest, sink: StreamSink) -> ChatResponse:
        parts: list[str] = []
        final: dict[str, Any] | None = None
        lines = self._stream_lines(f"{self.base_url}/api/chat", "chat_stream", self._chat_body(request, True))
        async with aclosing(lines):
            async for line in lines:
                try:
                    payload = orjson.loads(line)
                except orjson.JSONDecodeError:
                    continue
                if payload.get("error"):
                    raise self._error(f"Stream error: {payload['error']}", ProviderErrorCode.SERVER_ERROR)
                delta = (payload.get("message") or {}).get("content", "")
                if delta:
                    parts.append(delta)
                    await emit(sink, StreamChunk(content=delta, done=False))
                if payload.get("done"):
                    final = payload
                    break
        if final is None:
            raise self._error("Stream ended before completion", ProviderErrorCode.CONNECTION_FAILED)
        await emit(sink, StreamChunk(content="", done=True))
        return ChatResponse(
            content="".join(parts),
            finish_reason="length" if final.get("done_reason") == "length" else "stop",
            usage=_usage(final),
        )

    def _error_message(self, payload: Any) -> str | None:
        if isinstance(payload, dict) and payload.get("error"):
            return str(payload["error"])
        return None


def _usage(payload: dict[str, Any]) -> Usage:
    prompt = int(payload.get("prompt_eval_count") or 0)
    completion = int(payload.get("eval_count") or 0)
    return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)


__all__ = ["OllamaProvider"]
