"""Error taxonomy shared across hearth components."""

from __future__ import annotations

from enum import Enum


class HearthError(Exception):
    """Base class for all domain errors."""


class ConfigurationError(HearthError):
    """Invalid settings or missing endpoints; never retried."""


class ProviderErrorCode(str, Enum):
    CONNECTION_FAILED = "CONNECTION_FAILED"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    INVALID_REQUEST = "INVALID_REQUEST"
    SERVER_ERROR = "SERVER_ERROR"
    UNKNOWN = "UNKNOWN"


class ProviderError(HearthError):
    """Failure reported by (or while talking to) a chat/embedding backend."""

    def __init__(
        self,
        message: str,
        code: ProviderErrorCode = ProviderErrorCode.UNKNOWN,
        provider: str = "unknown",
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.provider = provider
        self.cause = cause

    def __str__(self) -> str:
        return self.message


def error_code_for_status(status: int) -> ProviderErrorCode:
    """Map an HTTP status code onto the provider error taxonomy."""
    if status in (401, 403):
        return ProviderErrorCode.AUTHENTICATION_FAILED
    if status == 404:
        return ProviderErrorCode.MODEL_NOT_FOUND
    if status == 429:
        return ProviderErrorCode.RATE_LIMITED
    if status == 408:
        return ProviderErrorCode.TIMEOUT
    if status == 400:
        return ProviderErrorCode.INVALID_REQUEST
    if status >= 500:
        return ProviderErrorCode.SERVER_ERROR
    return ProviderErrorCode.UNKNOWN


class StorageErrorKind(str, Enum):
    NOT_INITIALIZED = "not_initialized"
    QUOTA_EXCEEDED = "quota_exceeded"
    IO = "io"


class StorageError(HearthError):
    """Vector store failure; `kind` tells callers whether a retry makes sense."""

    def __init__(self, message: str, kind: StorageErrorKind = StorageErrorKind.IO) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind is not StorageErrorKind.NOT_INITIALIZED


class ToolExecutionError(HearthError):
    """Raised inside a tool handler; converted to a failed ToolResult."""


class PathSafetyError(ToolExecutionError):
    """A path argument escaped the corpus root or contained traversal."""


class ParseError(HearthError):
    """Malformed model output (tool blocks, memory or tag JSON)."""


_CONNECTION_CODES = frozenset(
    {
        ProviderErrorCode.CONNECTION_FAILED,
        ProviderErrorCode.TIMEOUT,
        ProviderErrorCode.SERVER_ERROR,
    }
)

_CONNECTION_FINGERPRINTS = (
    "err_cert",
    "certificate",
    "econnrefused",
    "econnreset",
    "enotfound",
    "etimedout",
    "connection refused",
    "connection reset",
    "name or service not known",
    "connection failed",
    "fetch failed",
    "timed out",
    "status 5",
    "all providers failed",
)


def is_connection_error(exc: BaseException) -> bool:
    """Return True when a failure looks like the backend is unreachable."""
    if isinstance(exc, ProviderError) and exc.code in _CONNECTION_CODES:
        return True
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    message = str(exc).lower()
    return any(fingerprint in message for fingerprint in _CONNECTION_FINGERPRINTS)


__all__ = [
    "HearthError",
    "ConfigurationError",
    "ProviderError",
    "ProviderErrorCode",
    "error_code_for_status",
    "StorageError",
    "StorageErrorKind",
    "ToolExecutionError",
    "PathSafetyError",
    "ParseError",
    "is_connection_error",
]
