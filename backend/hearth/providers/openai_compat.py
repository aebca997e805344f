"""OpenAI-compatible REST backend."""

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

_SSE_PREFIX = "data:"
_SSE_DONE = "[DONE]"


class OpenAICompatibleProvider(BaseProvider):
    """Talks to /v1/chat/completions, /v1/embeddings and /v1/models with bearer auth."""

    kind = "openai"

    @property
    def api_root(self) -> str:
        root = self.base_url
        return root[: -len("/v1")] if root.endswith("/v1") else root

    async def chat(self, request: ChatRequest) -> ChatResponse:
        payload = await self._request_json(
            "POST", f"{self.api_root}/v1/chat/completions", "chat", self._chat_body(request, False)
        )
        choices = payload.get("choices") or []
        if not choices:
            raise self._error("No choices in response", ProviderErrorCode.SERVER_ERROR)
        choice = choices[0]
        return ChatResponse(
            content=(choice.get("message") or {}).get("content") or "",
            finish_reason=_finish_reason(choice.get("finish_reason")),
            usage=_usage(payload.get("usage")),
        )

    async def chat_stream(self, request: ChatRequest, sink: StreamSink) -> ChatResponse:
        return await self._with_timeout(self._consume_stream(request, sink), "chat_stream")

    async def embed(self, request: EmbeddingRequest) -> EmbeddingResponse:
        texts = request.texts
        model = request.model or self.embedding_model
        payload = await self._request_json(
            "POST", f"{self.api_root}/v1/embeddings", "embed", {"model": model, "input": texts}
        )
        data = sorted(payload.get("data") or [], key=lambda item: item.get("index", 0))
        if len(data) != len(texts):
            raise self._error(
                f"embed returned {len(data)} vectors for {len(texts)} inputs",
                ProviderErrorCode.INVALID_REQUEST,
            )
        return EmbeddingResponse(
            embeddings=[[float(value) for value in item["embedding"]] for item in data],
            model=payload.get("model", model),
            usage=_usage(payload.get("usage")),
        )

    async def list_models(self) -> list[str]:
        payload = await self._request_json("GET", f"{self.api_root}/v1/models", "list_models")
        return [model["id"] for model in payload.get("data") or [] if model.get("id")]

    # Internal helpers -------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _chat_body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.chat_model,
            "messages": [message.to_dict() for message in request.messages],
            "stream": stream,
        }
        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.max_tokens is not None:
            body["max_tokens"] = request.max_tokens
        if stream:
            body["stream_options"] = {"include_usage": True}
        return body

    async def _consume_stream(self, request: ChatRequest, sink: StreamSink) -> ChatResponse:
        parts: list[str] = []
        finish_reason: str | None = None
        usage: Usage | None = None
        completed = False
        lines = self._stream_lines(f"{self.api_root}/v1/chat/completions", "chat_stream", self._chat_body(request, True))
        async with aclosing(lines):
            async for line in lines:
                if not line.startswith(_SSE_PREFIX):
                    continue
                data = line[len(_SSE_PREFIX) :].strip()
                if data == _SSE_DONE:
                    completed = True
                    break
                try:
                    payload = orjson.loads(data)
                except orjson.JSONDecodeError:
                    continue
                if payload.get("error"):
                    raise self._error(
                        f"Stream error: {self._error_message(payload) or payload['error']}",
                        ProviderErrorCode.SERVER_ERROR,
                    )
                if payload.get("usage"):
                    usage = _usage(payload["usage"])
                for choice in payload.get("choices") or []:
                    delta = (choice.get("delta") or {}).get("content") or ""
                    if delta:
                        parts.append(delta)
                        await emit(sink, StreamChunk(content=delta, done=False))
                    if choice.get("finish_reason"):
                        finish_reason = choice["finish_reason"]
        if not completed and finish_reason is None:
            raise self._error("Stream ended before completion", ProviderErrorCode.CONNECTION_FAILED)
        await emit(sink, StreamChunk(content="", done=True))
        return ChatResponse(content="".join(parts), finish_reason=_finish_reason(finish_reason), usage=usage)

    def _error_message(self, payload: Any) -> str | None:
        if not isinstance(payload, dict):
            return None
        error = payload.get("error")
        if isinstance(error, dict):
            return error.get("message")
        if isinstance(error, str):
            return error
        return None


def _finish_reason(value: str | None) -> str:
    return "length" if value == "length" else "stop"


def _usage(payload: dict[str, Any] | None) -> Usage | None:
    if not payload:
        return None
    prompt = int(payload.get("prompt_tokens") or 0)
    completion = int(payload.get("completion_tokens") or 0)
    return Usage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=int(payload.get("total_tokens") or prompt + completion),
    )


__all__ = ["OpenAICompatibleProvider"]
