"""Test fixtures for hearth."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Callable

import httpx
import orjson
import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from hearth.core.config import Settings  # noqa: E402

OLLAMA_URL = "http://ollama.test"


def _reset_singletons() -> None:
    from hearth.api import dependencies as deps
    from hearth.core.config import get_settings

    if deps._VECTOR_STORE is not None:
        deps._VECTOR_STORE.close()
    if deps._WATCHER is not None:
        deps._WATCHER.stop()
    get_settings.cache_clear()
    deps.get_app_settings.cache_clear()
    deps._DB = None
    deps._VECTOR_STORE = None
    deps._DOCUMENTS = None
    deps._GATEWAY = None
    deps._BREAKER = None
    deps._ORCHESTRATOR = None
    deps._MEMORY = None
    deps._BROKER = None
    deps._TOOL_MANAGER = None
    deps._RAG = None
    deps._TAGGER = None
    deps._WATCHER = None


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    for key in list(os.environ):
        if key.startswith("HEARTH_"):
            monkeypatch.delenv(key, raising=False)
    (tmp_path / "notes").mkdir()
    monkeypatch.setenv("HEARTH_CONFIG", str(tmp_path / "config.yaml"))
    monkeypatch.setenv("HEARTH_DB_PATH", str(tmp_path / "vectors.db"))
    monkeypatch.setenv("HEARTH_CORPUS_ROOT", str(tmp_path / "notes"))
    monkeypatch.setenv("HEARTH_MEMORIES_PATH", str(tmp_path / "memories.json"))
    _reset_singletons()
    yield
    _reset_singletons()


def fake_embedding(text: str) -> list[float]:
    """Letter histogram folded into 8 buckets; similar texts land close together."""
    vector = [0.1] * 8
    for char in text.lower():
        if "a" <= char <= "z":
            vector[(ord(char) - ord("a")) % 8] += 1.0
    return vector


class FakeOllama:
    """In-process stand-in for an Ollama server, served through httpx.MockTransport."""

    def __init__(self, models: tuple[str, ...] = ("llama3:latest", "nomic-embed-text:latest")) -> None:
        self.models = list(models)
        self.chat_replies: list[str] = []
        self.chat_requests: list[dict[str, Any]] = []
        self.embed_inputs: list[str] = []
        self.down = False
        self.status: int | None = None

    @property
    def embed_calls(self) -> int:
        return len(self.embed_inputs)

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        if self.status is not None:
            return httpx.Response(self.status, json={"error": "server exploded"})
        body = orjson.loads(request.content) if request.content else {}
        path = request.url.path
        if path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": name} for name in self.models]})
        if path == "/api/embed":
            texts = body["input"] if isinstance(body["input"], list) else [body["input"]]
            self.embed_inputs.extend(texts)
            return httpx.Response(
                200,
                json={"model": body["model"], "embeddings": [fake_embedding(text) for text in texts]},
            )
        if path == "/api/chat":
            self.chat_requests.append(body)
            content = self.chat_replies.pop(0) if self.chat_replies else "Sure."
            return httpx.Response(
                200,
                json={
                    "message": {"role": "assistant", "content": content},
                    "done": True,
                    "prompt_eval_count": 12,
                    "eval_count": 4,
                },
            )
        return httpx.Response(404, json={"error": f"unknown path {path}"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_ollama() -> FakeOllama:
    return FakeOllama()


@pytest.fixture
def notes_root(tmp_path: Path) -> Path:
    return tmp_path / "notes"


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    def factory(**overrides: Any) -> Settings:
        data: dict[str, Any] = {
            "corpus_root": tmp_path / "notes",
            "db_path": tmp_path / "vectors.db",
            "memories_path": tmp_path / "memories.json",
            "endpoints": [
                {
                    "id": "ep_local",
                    "name": "local",
                    "kind": "ollama",
                    "base_url": OLLAMA_URL,
                    "chat_model": "llama3",
                    "embedding_model": "nomic-embed-text",
                }
            ],
            "enable_embedding": True,
            "embedding_debounce_ms": 0,
            "rate_limit_rpm": 1000,
            "rag_min_score": 0.0,
            "request_timeout_ms": 5000,
        }
        data.update(overrides)
        return Settings.from_mapping(data)

    return factory


@pytest.fixture
def write_note(notes_root: Path) -> Callable[[str, str], Path]:
    def writer(relative: str, content: str) -> Path:
        target = notes_root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return target

    return writer
