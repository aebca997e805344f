"""Chat and embedding backends."""

from .base import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    HealthCheckResult,
    StreamChunk,
    Usage,
)
from .gateway import ProviderGateway, ProviderStatus
from .ollama import OllamaProvider
from .openai_compat import OpenAICompatibleProvider

__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "EmbeddingRequest",
    "EmbeddingResponse",
    "HealthCheckResult",
    "StreamChunk",
    "Usage",
    "ProviderGateway",
    "ProviderStatus",
    "OllamaProvider",
    "OpenAICompatibleProvider",
]
