"""API integration tests."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from fastapi.testclient import TestClient

from hearth.api import dependencies as deps
from hearth.app import app
from hearth.ingest.documents import split_frontmatter
from hearth.models.entities import TagSuggestion
from hearth.providers import ProviderGateway


@pytest.fixture
def client(tmp_path: Path, fake_ollama) -> TestClient:
    (tmp_path / "config.yaml").write_text(
        yaml.safe_dump(
            {
                "indexing": {"enabled": True, "debounce_ms": 0},
                "retrieval": {"min_score": 0.0},
                "providers": {"rate_limit_rpm": 1000, "timeout_ms": 5000},
                "endpoints": [
                    {
                        "id": "ep_local",
                        "name": "local",
                        "base_url": "http://ollama.test",
                        "chat_model": "llama3",
                        "embedding_model": "nomic-embed-text",
                    }
                ],
            }
        )
    )
    deps._GATEWAY = ProviderGateway(deps.get_app_settings(), transport=fake_ollama.transport())
    with TestClient(app) as test_client:
        yield test_client


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


def test_index_search_and_chat_flow(client: TestClient, write_note, fake_ollama) -> None:
    write_note("garden.md", "# Garden\n\nTomatoes need water and plenty of sun.")
    write_note("Projects/car.md", "The car needs new tyres.")

    index_resp = client.post("/index", json={})
    assert index_resp.status_code == 200
    assert index_resp.json()["indexed"] == 2
    assert index_resp.json()["message"].startswith("Indexed 2 files")

    status = client.get("/index/status").json()
    assert status["is_indexing"] is False
    assert status["circuit_open"] is False
    assert status["last_summary"]["indexed"] == 2

    stats = client.get("/index/stats").json()
    assert stats["unique_files"] == 2
    assert stats["total_chunks"] >= 2

    search_resp = client.post("/search", json={"query": "tomatoes", "k": 1})
    assert search_resp.status_code == 200
    assert len(search_resp.json()["results"]) == 1

    similar = client.get("/similar", params={"path": "garden.md"}).json()
    assert [hit["document_path"] for hit in similar["results"]] == ["Projects/car.md"]

    fake_ollama.chat_replies = ["Water daily.", "[]"]
    chat_resp = client.post("/chat", json={"query": "How do I care for tomatoes?"})
    assert chat_resp.status_code == 200
    payload = chat_resp.json()
    assert payload["content"] == "Water daily."
    assert sorted(payload["context_sources"]) == ["Projects/car.md", "garden.md"]
    assert payload["usage"]["total_tokens"] == 16

    assert "hearth_requests_total" in client.get("/metrics").text


def test_index_refused_when_provider_down(client: TestClient, write_note, fake_ollama) -> None:
    write_note("a.md", "Some text.")
    fake_ollama.down = True

    resp = client.post("/index", json={})

    assert resp.status_code == 200
    assert resp.json()["aborted"] is True
    assert resp.json()["message"].startswith("Provider connection failed")


def test_search_surfaces_provider_failure(client: TestClient, fake_ollama) -> None:
    fake_ollama.down = True
    resp = client.post("/search", json={"query": "anything"})
    assert resp.status_code == 502
    assert resp.json()["code"] == "CONNECTION_FAILED"


def test_provider_health(client: TestClient, fake_ollama) -> None:
    resp = client.get("/providers/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["providers"][0]["id"] == "ep_local"
    assert body["providers"][0]["healthy"] is True
    assert body["results"]["ep_local"]["embedding_available"] is True

    models = client.get("/providers/models").json()
    assert models["models"] == ["llama3:latest", "nomic-embed-text:latest"]


def test_confirmations_and_memories(client: TestClient) -> None:
    assert client.get("/tools/pending").json() == []
    missing = client.post("/tools/confirm/confirm_missing", json={"approved": True})
    assert missing.status_code == 404

    memory = deps.get_memory_manager().add("Lives in Lisbon")
    listed = client.get("/memories").json()
    assert [item["content"] for item in listed] == ["Lives in Lisbon"]
    assert client.delete(f"/memories/{memory.id}").json() == {"status": "ok", "deleted": 1}
    assert client.delete(f"/memories/{memory.id}").status_code == 404


def test_stop_and_reset_circuit(client: TestClient) -> None:
    assert client.post("/index/stop").json()["status"] == "ok"
    assert client.post("/index/reset-circuit").json()["message"] == "Circuit breaker reset"
    assert client.get("/index/status").json()["consecutive_failures"] == 0


def test_review_and_apply_tag_suggestions(client: TestClient, write_note, fake_ollama) -> None:
    target = write_note("garden.md", "---\n---\nTomatoes.")
    tagger = deps.get_auto_tagger()
    tagger.suggestions["garden.md"] = [TagSuggestion(tag="gardening", confidence=0.9)]

    listed = client.get("/tags/suggestions").json()
    assert listed == {"suggestions": {"garden.md": [{"tag": "gardening", "confidence": 0.9}]}}

    applied = client.post("/tags/apply", json={"path": "garden.md", "tags": ["gardening", "Home Grown"]})
    assert applied.json() == {"path": "garden.md", "tags": ["gardening", "home-grown"]}
    assert split_frontmatter(target.read_text()) == ({"tags": ["gardening", "home-grown"]}, "Tomatoes.")
    assert client.get("/tags/suggestions").json() == {"suggestions": {}}

    fake_ollama.chat_replies = ['[{"tag": "vegetables", "confidence": 0.8}]']
    suggested = client.post("/tags/suggest", json={"path": "garden.md"}).json()
    assert suggested == [{"tag": "vegetables", "confidence": 0.8}]
    assert list(client.get("/tags/suggestions").json()["suggestions"]) == ["garden.md"]


def test_tag_routes_reject_unknown_notes(client: TestClient) -> None:
    assert client.post("/tags/apply", json={"path": "missing.md", "tags": ["x"]}).status_code == 404
    assert client.post("/tags/apply", json={"path": "../escape.md", "tags": ["x"]}).status_code == 400
    assert client.post("/tags/suggest", json={"path": "missing.md"}).status_code == 404
