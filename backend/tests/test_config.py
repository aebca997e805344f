"""Settings loading from YAML and environment."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from hearth.core.config import Settings, get_settings
from hearth.core.errors import ConfigurationError


def test_defaults_are_valid() -> None:
    settings = Settings.from_mapping({})
    assert settings.chunk_size == 1000
    assert settings.chunk_overlap == 200
    assert settings.enable_embedding is False
    assert settings.endpoints == []


def test_overlap_must_be_smaller_than_chunk_size() -> None:
    with pytest.raises(ConfigurationError):
        Settings.from_mapping({"chunk_size": 500, "chunk_overlap": 500})


def test_openai_endpoint_needs_key() -> None:
    with pytest.raises(ConfigurationError, match="API key is required"):
        Settings.from_mapping({"endpoints": [{"name": "cloud", "kind": "openai", "base_url": "https://api.example.com/v1"}]})


def test_bad_url_rejected() -> None:
    with pytest.raises(ConfigurationError):
        Settings.from_mapping({"endpoints": [{"base_url": "localhost:11434"}]})


def test_newer_schema_rejected() -> None:
    with pytest.raises(ConfigurationError):
        Settings.from_mapping({"schema_version": 99})


def test_yaml_nested_keys_and_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text(
        yaml.safe_dump(
            {
                "chunking": {"size": 600, "overlap": 50},
                "retrieval": {"top_k": 3},
                "indexing": {"enabled": True, "exclude": ["drafts/**"]},
                "endpoints": [{"name": "box", "base_url": "http://box:11434/"}],
            }
        )
    )
    monkeypatch.setenv("HEARTH_RAG_TOP_K", "7")
    monkeypatch.setenv("HEARTH_EMBEDDING_EXCLUDE", "a/**, b/**,")
    monkeypatch.setenv("HEARTH_ENDPOINTS", "ignored")

    settings = get_settings()

    assert (settings.chunk_size, settings.chunk_overlap) == (600, 50)
    assert settings.rag_top_k == 7
    assert settings.enable_embedding is True
    assert settings.embedding_exclude == ["a/**", "b/**"]
    assert settings.corpus_root == tmp_path / "notes"
    assert settings.endpoints[0].base_url == "http://box:11434"
    assert settings.endpoints[0].name == "box"


def test_non_mapping_yaml_rejected(tmp_path: Path) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("- just\n- a list\n")
    with pytest.raises(ConfigurationError):
        Settings.from_yaml(config)


def test_enabled_endpoints_sorted_by_priority() -> None:
    settings = Settings.from_mapping(
        {
            "endpoints": [
                {"name": "b", "priority": 2},
                {"name": "off", "priority": 0, "enabled": False},
                {"name": "a", "priority": 1},
                {"name": "c", "priority": 2},
            ]
        }
    )
    assert [ep.name for ep in settings.enabled_endpoints()] == ["a", "b", "c"]


def test_save_yaml_round_trip(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("HEARTH_DB_PATH", "HEARTH_CORPUS_ROOT", "HEARTH_MEMORIES_PATH"):
        monkeypatch.delenv(key)
    settings = Settings.from_mapping(
        {
            "corpus_root": tmp_path / "vault",
            "rag_top_k": 4,
            "endpoints": [{"id": "ep_1", "name": "local", "priority": 1}],
        }
    )
    target = tmp_path / "saved" / "config.yaml"

    settings.save_yaml(target)
    loaded = Settings.from_yaml(target)

    assert loaded.corpus_root == tmp_path / "vault"
    assert loaded.rag_top_k == 4
    assert loaded.endpoints[0].id == "ep_1"
    assert loaded.endpoints[0].priority == 1
