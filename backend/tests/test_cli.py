"""CLI commands against a stubbed backend."""

from __future__ import annotations

from typing import Any

import pytest
import requests
from typer.testing import CliRunner

from hearth.cli import main as cli

runner = CliRunner()


class StubResponse:
    def __init__(self, payload: Any, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code
        self.ok = status_code < 400
        self.text = str(payload)

    def json(self) -> Any:
        return self._payload


@pytest.fixture
def calls(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, str, dict[str, Any]]]:
    recorded: list[tuple[str, str, dict[str, Any]]] = []
    replies: dict[tuple[str, str], StubResponse] = {
        ("POST", "/index"): StubResponse({"message": "Indexed 3 files (9 chunks), 0 errors", "aborted": False}),
        ("POST", "/chat"): StubResponse({"content": "Water daily.", "context_sources": ["garden.md"]}),
        ("GET", "/memories"): StubResponse([{"id": "mem_1", "content": "Lives in Lisbon"}]),
        ("POST", "/tools/confirm/confirm_x"): StubResponse({"detail": "Confirmation not found"}, 404),
        ("GET", "/tags/suggestions"): StubResponse(
            {"suggestions": {"garden.md": [{"tag": "gardening", "confidence": 0.9}]}}
        ),
        ("POST", "/tags/apply"): StubResponse({"path": "garden.md", "tags": ["plants", "gardening"]}),
    }

    def fake_request(method: str, url: str, timeout: float, **kwargs: Any) -> StubResponse:
        path = url.removeprefix("http://backend.test")
        recorded.append((method, path, kwargs))
        return replies[(method, path)]

    monkeypatch.setenv("HEARTH_HOST", "http://backend.test/")
    monkeypatch.setattr(cli.requests, "request", fake_request)
    return recorded


def test_index_prints_summary(calls) -> None:
    result = runner.invoke(cli.app, ["index", "--force"])
    assert result.exit_code == 0
    assert "Indexed 3 files" in result.stdout
    assert calls == [("POST", "/index", {"json": {"force": True}})]


def test_chat_lists_sources(calls) -> None:
    result = runner.invoke(cli.app, ["chat", "How do I water tomatoes?"])
    assert result.exit_code == 0
    assert "Water daily." in result.stdout
    assert "  - garden.md" in result.stdout


def test_memories_list(calls) -> None:
    result = runner.invoke(cli.app, ["memories", "list"])
    assert result.exit_code == 0
    assert "mem_1  Lives in Lisbon" in result.stdout


def test_failed_request_exits_nonzero(calls) -> None:
    result = runner.invoke(cli.app, ["confirm", "confirm_x", "--yes"])
    assert result.exit_code == 1


def test_unreachable_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(*args: Any, **kwargs: Any) -> None:
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(cli.requests, "request", refuse)
    result = runner.invoke(cli.app, ["pending", "--host", "http://nowhere.test"])
    assert result.exit_code == 1


def test_tag_suggestions_and_apply(calls) -> None:
    listed = runner.invoke(cli.app, ["tags", "suggestions"])
    assert listed.exit_code == 0
    assert "garden.md: gardening (0.90)" in listed.stdout

    applied = runner.invoke(cli.app, ["tags", "apply", "garden.md", "gardening"])
    assert applied.exit_code == 0
    assert "garden.md: plants, gardening" in applied.stdout
    assert calls[-1] == ("POST", "/tags/apply", {"json": {"path": "garden.md", "tags": ["gardening"]}})
