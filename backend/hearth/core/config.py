"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from hearth.core.errors import ConfigurationError
from hearth.utils.ids import new_id

ENV_PREFIX = "HEARTH_"
DEFAULT_CONFIG_PATH = Path("~/.config/hearth/config.yaml")
SCHEMA_VERSION = 1

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("corpus", "root"): "corpus_root",
    ("storage", "db_path"): "db_path",
    ("storage", "memories_path"): "memories_path",
    ("indexing", "enabled"): "enable_embedding",
    ("indexing", "batch_size"): "embedding_batch_size",
    ("indexing", "debounce_ms"): "embedding_debounce_ms",
    ("indexing", "exclude"): "embedding_exclude",
    ("indexing", "watch"): "watch_enabled",
    ("indexing", "search_batch_size"): "search_batch_size",
    ("chunking", "size"): "chunk_size",
    ("chunking", "overlap"): "chunk_overlap",
    ("chunking", "min_size"): "min_chunk_size",
    ("chunking", "respect_headers"): "respect_headers",
    ("retrieval", "top_k"): "rag_top_k",
    ("retrieval", "min_score"): "rag_min_score",
    ("retrieval", "include_frontmatter"): "rag_include_frontmatter",
    ("retrieval", "max_context_chars"): "rag_max_context_chars",
    ("chat", "system_prompt"): "system_prompt",
    ("chat", "temperature"): "chat_temperature",
    ("chat", "max_tokens"): "chat_max_tokens",
    ("chat", "include_history"): "include_chat_history",
    ("chat", "max_history"): "max_history_messages",
    ("tools", "enabled"): "enable_tool_calling",
    ("tools", "require_confirmation"): "require_tool_confirmation",
    ("tools", "max_calls"): "max_tool_calls_per_response",
    ("tools", "confirmation_timeout_s"): "confirmation_timeout_s",
    ("memory", "enabled"): "enable_memory",
    ("memory", "max_memories"): "max_memories",
    ("memory", "include_in_context"): "include_memories_in_context",
    ("memory", "context_limit"): "memory_context_limit",
    ("autotag", "enabled"): "enable_auto_tag",
    ("autotag", "mode"): "auto_tag_mode",
    ("autotag", "max_suggestions"): "max_tag_suggestions",
    ("autotag", "confidence_threshold"): "auto_tag_confidence_threshold",
    ("autotag", "debounce_ms"): "auto_tag_debounce_ms",
    ("providers", "rate_limit_rpm"): "rate_limit_rpm",
    ("providers", "timeout_ms"): "request_timeout_ms",
    ("providers", "circuit_threshold"): "circuit_breaker_threshold",
    ("platform", "constrained"): "constrained_environment",
    ("platform", "enable_on_constrained"): "enable_on_constrained",
}

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant with access to the user's personal notes. "
    "Use the provided context to answer questions accurately. "
    "If the context doesn't contain relevant information, say so. "
    "Always cite which notes you're drawing information from when relevant."
)


class EndpointConfig(BaseModel):
    """One chat/embedding backend."""

    id: str = Field(default_factory=lambda: new_id("ep"))
    name: str = "Ollama"
    kind: Literal["ollama", "openai"] = "ollama"
    base_url: str = "http://localhost:11434"
    api_key: str | None = None
    chat_model: str = "llama3.2"
    embedding_model: str = "nomic-embed-text"
    enabled: bool = True
    priority: int = 0

    model_config = {"extra": "ignore"}

    @field_validator("base_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"base_url must be an http(s) URL, got {value!r}")
        return value.rstrip("/")

    @field_validator("name", "chat_model", "embedding_model")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("api_key")
    @classmethod
    def _blank_key(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @model_validator(mode="after")
    def _openai_needs_key(self) -> "EndpointConfig":
        if self.kind == "openai" and not self.api_key:
            raise ValueError(f"endpoint {self.name!r}: API key is required for OpenAI-compatible endpoints")
        return self


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    schema_version: int = SCHEMA_VERSION
    corpus_root: Path = Field(default=Path.home() / "notes")
    db_path: Path = Field(default=Path.home() / ".hearth" / "vectors.db")
    memories_path: Path = Field(default=Path.home() / ".hearth" / "memories.json")

    endpoints: list[EndpointConfig] = Field(default_factory=list)
    rate_limit_rpm: int = Field(default=60, ge=1, le=1000)
    request_timeout_ms: int = Field(default=120_000, ge=5_000, le=300_000)
    circuit_breaker_threshold: int = Field(default=3, ge=1)

    enable_embedding: bool = False
    embedding_batch_size: int = Field(default=1, ge=1, le=100)
    embedding_debounce_ms: int = Field(default=5_000, ge=0)
    embedding_exclude: list[str] = Field(default_factory=lambda: ["templates/**", ".obsidian/**", ".trash/**"])
    watch_enabled: bool = False
    search_batch_size: int = Field(default=500, ge=1)
    constrained_environment: bool = False
    enable_on_constrained: bool = False

    chunk_size: int = Field(default=1000, ge=100, le=10_000)
    chunk_overlap: int = Field(default=200, ge=0)
    min_chunk_size: int = Field(default=100, ge=0)
    respect_headers: bool = True

    rag_top_k: int = Field(default=5, ge=1, le=20)
    rag_min_score: float = Field(default=0.5, ge=0.0, le=1.0)
    rag_include_frontmatter: bool = True
    rag_max_context_chars: int = Field(default=8_000, ge=100)

    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    chat_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    chat_max_tokens: int = Field(default=2048, ge=1)
    include_chat_history: bool = True
    max_history_messages: int = Field(default=10, ge=0)

    enable_tool_calling: bool = True
    require_tool_confirmation: bool = False
    max_tool_calls_per_response: int = Field(default=10, ge=1)
    confirmation_timeout_s: float = Field(default=300.0, gt=0)

    enable_memory: bool = True
    max_memories: int = Field(default=100, ge=1)
    include_memories_in_context: bool = True
    memory_context_limit: int = Field(default=5, ge=0)

    enable_auto_tag: bool = False
    auto_tag_mode: Literal["auto", "suggest"] = "suggest"
    max_tag_suggestions: int = Field(default=5, ge=1)
    auto_tag_confidence_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    auto_tag_debounce_ms: int = Field(default=10_000, ge=0)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("corpus_root", "db_path", "memories_path", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("paths must be a path or string")

    @field_validator("embedding_exclude", mode="before")
    @classmethod
    def _split_patterns(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("schema_version")
    @classmethod
    def _check_version(cls, value: int) -> int:
        if value > SCHEMA_VERSION:
            raise ValueError(f"settings schema version {value} is newer than supported version {SCHEMA_VERSION}")
        return value

    @model_validator(mode="after")
    def _check_chunking(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be less than chunk_size")
        return self

    @property
    def request_timeout_s(self) -> float:
        return self.request_timeout_ms / 1000

    def enabled_endpoints(self) -> list[EndpointConfig]:
        """Enabled endpoints, lowest priority first; ties keep insertion order."""
        return sorted((ep for ep in self.endpoints if ep.enabled), key=lambda ep: ep.priority)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Settings":
        """Validate raw settings, raising ConfigurationError on bad input."""
        payload = dict(data)
        if "schema_version" not in payload:
            payload["schema_version"] = SCHEMA_VERSION
        try:
            return cls(**payload)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid settings: {exc}") from exc

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            if not isinstance(raw, Mapping):
                raise ConfigurationError(f"{config_path} does not contain a settings mapping")
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls.from_mapping(data)

    def save_yaml(self, path: Path) -> None:
        path = path.expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = self.model_dump(mode="json")
        payload["schema_version"] = SCHEMA_VERSION
        with path.open("w", encoding="utf-8") as fh:
            yaml.safe_dump(payload, fh, sort_keys=False)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        mapped_key = _YAML_KEY_MAP.get(next_prefix)
        if mapped_key:
            flat[mapped_key] = value
        elif isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        elif key in Settings.model_fields:
            flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with HEARTH_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields and field_name != "endpoints":
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["EndpointConfig", "Settings", "SCHEMA_VERSION", "get_settings"]
