"""Priority-ordered failover across configured chat/embedding endpoints."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from hearth.core.config import EndpointConfig, Settings
from hearth.core.errors import ConfigurationError, ProviderError, ProviderErrorCode
from hearth.core.logging import get_logger, log_context
from hearth.core.metrics import PROVIDER_REQUESTS
from hearth.core.resilience import RateLimiter
from hearth.providers.base import (
    BaseProvider,
    ChatRequest,
    ChatResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    HealthCheckResult,
    StreamSink,
)
from hearth.providers.ollama import OllamaProvider
from hearth.providers.openai_compat import OpenAICompatibleProvider
from hearth.utils.time import now_ms

logger = get_logger(__name__)

T = TypeVar("T")

PROVIDER_KINDS: dict[str, type[BaseProvider]] = {
    "ollama": OllamaProvider,
    "openai": OpenAICompatibleProvider,
}


@dataclass(slots=True)
class ProviderStatus:
    id: str
    name: str
    kind: str
    enabled: bool
    healthy: bool | None = None
    last_check: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "enabled": self.enabled,
            "healthy": self.healthy,
            "last_check": self.last_check,
            "error": self.error,
        }


def create_provider(config: EndpointConfig, timeout_s: float, client: httpx.AsyncClient) -> BaseProvider:
    try:
        provider_cls = PROVIDER_KINDS[config.kind]
    except KeyError as exc:
        raise ConfigurationError(f"Unknown provider kind: {config.kind}") from exc
    return provider_cls(config, timeout_s=timeout_s, client=client)


class ProviderGateway:
    """Uniform chat/embed surface over every enabled endpoint.

    Each call walks the endpoints in priority order and returns the first
    success; a failing endpoint is marked unhealthy and the next one is
    tried. The gateway owns the token bucket that throttles every
    embedding request regardless of caller.
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings
        self._client = httpx.AsyncClient(transport=transport)
        self.rate_limiter = RateLimiter(settings.rate_limit_rpm)
        self._providers: list[BaseProvider] = []
        self._status: dict[str, ProviderStatus] = {}
        self._build_providers()

    @property
    def providers(self) -> list[BaseProvider]:
        return list(self._providers)

    def update_settings(self, settings: Settings) -> None:
        previous_rpm = self.settings.rate_limit_rpm
        self.settings = settings
        if settings.rate_limit_rpm != previous_rpm:
            self.rate_limiter = RateLimiter(settings.rate_limit_rpm)
        self._build_providers()

    async def aclose(self) -> None:
        await self._client.aclose()

    def statuses(self) -> list[ProviderStatus]:
        return [self._status[provider.id] for provider in self._providers]

    def get_status(self, provider_id: str) -> ProviderStatus | None:
        return self._status.get(provider_id)

    def get_active_provider(self) -> BaseProvider | None:
        """First healthy endpoint, else the highest-priority one."""
        for provider in self._providers:
            if self._status[provider.id].healthy:
                return provider
        return self._providers[0] if self._providers else None

    def has_available_provider(self) -> bool:
        return bool(self._providers)

    async def chat(self, request: ChatRequest) -> ChatResponse:
        return await self._failover("chat", lambda provider: provider.chat(request))

    async def chat_stream(self, request: ChatRequest, sink: StreamSink) -> ChatResponse:
        return await self._failover("chat_stream", lambda provider: provider.chat_stream(request, sink))

    async def embed(self, request: EmbeddingRequest) -> EmbeddingResponse:
        await self.rate_limiter.acquire()
        return await self._failover("embed", lambda provider: provider.embed(request))

    async def list_models(self) -> list[str]:
        try:
            return await self._failover("list_models", lambda provider: provider.list_models())
        except ProviderError as exc:
            logger.warning("Could not list models: %s", exc)
            return []

    async def check_all_health(self) -> dict[str, HealthCheckResult]:
        if not self._providers:
            return {}
        results = await asyncio.gather(*(provider.health_check() for provider in self._providers))
        checked_at = now_ms()
        for provider, result in zip(self._providers, results):
            status = self._status[provider.id]
            status.healthy = result.healthy
            status.error = result.error
            status.last_check = checked_at
        return {provider.id: result for provider, result in zip(self._providers, results)}

    async def health_check(self) -> HealthCheckResult:
        """Result for the first healthy endpoint in priority order."""
        if not self._providers:
            raise ConfigurationError("No providers configured")
        results = await self.check_all_health()
        for provider in self._providers:
            if results[provider.id].healthy:
                return results[provider.id]
        last = results[self._providers[-1].id]
        return HealthCheckResult(
            healthy=False,
            latency_ms=last.latency_ms,
            error=f"No healthy provider. Last error: {last.error}",
            provider_id=last.provider_id,
        )

    # Internal helpers -------------------------------------------------

    def _build_providers(self) -> None:
        timeout_s = self.settings.request_timeout_s
        previous = self._status
        self._providers = [
            create_provider(config, timeout_s, self._client) for config in self.settings.enabled_endpoints()
        ]
        self._status = {}
        for provider in self._providers:
            old = previous.get(provider.id)
            self._status[provider.id] = ProviderStatus(
                id=provider.id,
                name=provider.name,
                kind=provider.kind,
                enabled=True,
                healthy=old.healthy if old else None,
                last_check=old.last_check if old else None,
                error=old.error if old else None,
            )

    async def _failover(self, operation: str, call: Callable[[BaseProvider], Awaitable[T]]) -> T:
        if not self._providers:
            raise ConfigurationError("No providers configured")
        last_error = ProviderError("No provider was attempted", ProviderErrorCode.CONNECTION_FAILED, "gateway")
        for provider in self._providers:
            status = self._status[provider.id]
            try:
                result = await call(provider)
            except ProviderError as exc:
                last_error = exc
            except Exception as exc:
                last_error = ProviderError(str(exc), ProviderErrorCode.UNKNOWN, provider.name, exc)
            else:
                status.healthy = True
                status.error = None
                PROVIDER_REQUESTS.labels(provider=provider.name, operation=operation, outcome="success").inc()
                return result
            status.healthy = False
            status.error = last_error.message
            status.last_check = now_ms()
            PROVIDER_REQUESTS.labels(provider=provider.name, operation=operation, outcome="failure").inc()
            logger.warning(
                "Provider %s %s failed: %s",
                provider.name,
                operation,
                last_error.message,
                extra=log_context(provider=provider.id, code=last_error.code.value),
            )
        raise ProviderError(
            f"All providers failed. Last error: {last_error.message}",
            ProviderErrorCode.CONNECTION_FAILED,
            "gateway",
            last_error,
        )


__all__ = ["ProviderGateway", "ProviderStatus", "create_provider", "PROVIDER_KINDS"]
