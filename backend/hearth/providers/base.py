"""Provider wire types and the shared HTTP plumbing for backends."""

from __future__ import annotations

import asyncio
import inspect
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Literal, Sequence

import httpx

from hearth.core.config import EndpointConfig
from hearth.core.errors import ProviderError, ProviderErrorCode, error_code_for_status
from hearth.core.logging import get_logger
from hearth.utils.time import elapsed_ms

logger = get_logger(__name__)

Role = Literal["system", "user", "assistant"]
FinishReason = Literal["stop", "length", "error"]


@dataclass(slots=True)
class ChatMessage:
    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class ChatRequest:
    messages: list[ChatMessage]
    temperature: float | None = None
    max_tokens: int | None = None


@dataclass(slots=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(slots=True)
class ChatResponse:
    content: str
    finish_reason: FinishReason | None = "stop"
    usage: Usage | None = None


@dataclass(slots=True)
class StreamChunk:
    content: str
    done: bool


@dataclass(slots=True)
class EmbeddingRequest:
    input: str | list[str]
    model: str | None = None

    @property
    def texts(self) -> list[str]:
        return [self.input] if isinstance(self.input, str) else list(self.input)


@dataclass(slots=True)
class EmbeddingResponse:
    embeddings: list[list[float]]
    model: str
    usage: Usage | None = None


@dataclass(slots=True)
class ModelInfo:
    chat_available: bool
    embedding_available: bool
    chat_model: str
    embedding_model: str


@dataclass(slots=True)
class HealthCheckResult:
    healthy: bool
    latency_ms: int
    error: str | None = None
    model_info: ModelInfo | None = None
    provider_id: str | None = None
    models: list[str] = field(default_factory=list)

    @property
    def embedding_available(self) -> bool:
        return bool(self.model_info and self.model_info.embedding_available)

    @property
    def chat_available(self) -> bool:
        return bool(self.model_info and self.model_info.chat_available)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "latency_ms": self.latency_ms,
            "error": self.error,
            "provider_id": self.provider_id,
            "chat_available": self.chat_available,
            "embedding_available": self.embedding_available,
            "chat_model": self.model_info.chat_model if self.model_info else None,
            "embedding_model": self.model_info.embedding_model if self.model_info else None,
        }


StreamSink = Callable[[StreamChunk], Awaitable[None] | None]


class BaseProvider(ABC):
    """HTTP backend for one endpoint; subclasses supply the wire format."""

    kind: str = "base"

    def __init__(self, config: EndpointConfig, timeout_s: float, client: httpx.AsyncClient) -> None:
        self.config = config
        self.id = config.id
        self.name = config.name
        self.base_url = config.base_url.rstrip("/")
        self.chat_model = config.chat_model
        self.embedding_model = config.embedding_model
        self.timeout_s = timeout_s
        self._client = client

    @abstractmethod
    async def chat(self, request: ChatRequest) -> ChatResponse: ...

    @abstractmethod
    async def chat_stream(self, request: ChatRequest, sink: StreamSink) -> ChatResponse: ...

    @abstractmethod
    async def embed(self, request: EmbeddingRequest) -> EmbeddingResponse: ...

    @abstractmethod
    async def list_models(self) -> list[str]: ...

    async def health_check(self) -> HealthCheckResult:
        """List models, time the round trip, and look for the configured names."""
        started = time.perf_counter()
        try:
            models = await self.list_models()
        except ProviderError as exc:
            return HealthCheckResult(
                healthy=False,
                latency_ms=elapsed_ms(started),
                error=exc.message,
                provider_id=self.id,
            )
        lowered = [model.lower() for model in models]
        return HealthCheckResult(
            healthy=True,
            latency_ms=elapsed_ms(started),
            model_info=ModelInfo(
                chat_available=_model_present(self.chat_model, lowered),
                embedding_available=_model_present(self.embedding_model, lowered),
                chat_model=self.chat_model,
                embedding_model=self.embedding_model,
            ),
            provider_id=self.id,
            models=models,
        )

    # Internal helpers -------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _error_message(self, payload: Any) -> str | None:
        return None

    async def _request_json(self, method: str, url: str, operation: str, body: Any | None = None) -> Any:
        return await self._with_timeout(self._send(method, url, operation, body), operation)

    async def _send(self, method: str, url: str, operation: str, body: Any | None) -> Any:
        try:
            response = await self._client.request(method, url, json=body, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise self._error(f"{operation} timed out", ProviderErrorCode.TIMEOUT, exc) from exc
        except httpx.HTTPError as exc:
            raise self._error(
                f"Connection failed to {self.base_url}: {exc}", ProviderErrorCode.CONNECTION_FAILED, exc
            ) from exc
        if response.status_code >= 400:
            raise self._status_error(response, operation)
        try:
            return response.json()
        except ValueError as exc:
            raise self._error(f"{operation} returned invalid JSON", ProviderErrorCode.UNKNOWN, exc) from exc

    async def _stream_lines(self, url: str, operation: str, body: Any) -> AsyncIterator[str]:
        """POST `body` and yield non-empty response lines as they arrive."""
        try:
            async with self._client.stream("POST", url, json=body, headers=self._headers()) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise self._status_error(response, operation)
                async for line in response.aiter_lines():
                    line = line.strip()
                    if line:
                        yield line
        except httpx.TimeoutException as exc:
            raise self._error(f"{operation} timed out", ProviderErrorCode.TIMEOUT, exc) from exc
        except httpx.HTTPError as exc:
            raise self._error(
                f"Connection failed to {self.base_url}: {exc}", ProviderErrorCode.CONNECTION_FAILED, exc
            ) from exc

    async def _with_timeout(self, awaitable: Awaitable[Any], operation: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_s)
        except asyncio.TimeoutError as exc:
            raise self._error(
                f"{operation} timed out after {int(self.timeout_s * 1000)} ms", ProviderErrorCode.TIMEOUT, exc
            ) from exc

    def _status_error(self, response: httpx.Response, operation: str) -> ProviderError:
        detail: str | None = None
        try:
            detail = self._error_message(response.json())
        except ValueError:
            detail = response.text.strip() or None
        message = detail or f"{operation} failed with status {response.status_code}"
        return self._error(message, error_code_for_status(response.status_code))

    def _error(self, message: str, code: ProviderErrorCode, cause: BaseException | None = None) -> ProviderError:
        return ProviderError(message, code=code, provider=self.name, cause=cause)


async def emit(sink: StreamSink, chunk: StreamChunk) -> None:
    """Deliver `chunk` to a sync or async sink."""
    result = sink(chunk)
    if inspect.isawaitable(result):
        await result


def _model_present(model: str, available: Sequence[str]) -> bool:
    needle = model.lower()
    return bool(needle) and any(needle in candidate for candidate in available)


__all__ = [
    "BaseProvider",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "EmbeddingRequest",
    "EmbeddingResponse",
    "HealthCheckResult",
    "ModelInfo",
    "StreamChunk",
    "StreamSink",
    "Usage",
    "emit",
]
