"""Configuration loading from TOML files and environment overrides."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from persona_memory.config import DEFAULT_TYPE_KEYWORDS, load_runtime_config

_ENV_KEYS = (
    "PERSONA_MEMORY_CONFIG",
    "EMBEDDINGS_PROVIDER",
    "EMBEDDINGS_DIMENSION",
    "EMBEDDINGS_ALLOW_FALLBACK",
    "STORE_BACKEND",
    "STORE_KEYWORD_FALLBACK",
    "SCORING_ADMISSION_FLOOR",
    "SCORING_MAX_RETRIEVED",
    "SCORING_TYPE_KEYWORDS",
    "DEDUP_THRESHOLD",
    "CONTEXT_TOKEN_BUDGET",
    "CONTEXT_CHARS_PER_TOKEN",
    "OBSERVABILITY_LOG_PATH",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    load_runtime_config.cache_clear()
    yield
    load_runtime_config.cache_clear()


def _write_toml(path: Path, body: str) -> Path:
    path.write_text(body, encoding="utf-8")
    return path


def test_defaults_without_file_or_environment():
    config = load_runtime_config()
    assert config.embeddings.provider == "openai"
    assert config.store.backend == "sqlite"
    assert config.scoring.admission_floor == pytest.approx(0.3)
    assert config.scoring.max_retrieved == 15
    assert config.dedup.threshold == pytest.approx(0.95)
    assert config.context.total_token_budget == 2000
    assert config.conversation.recent_limit == 6
    assert config.scoring.type_keywords == DEFAULT_TYPE_KEYWORDS


def test_toml_file_is_loaded(monkeypatch, tmp_path):
    path = _write_toml(
        tmp_path / "custom.toml",
        """
[embeddings]
provider = "sentence_transformers"
model = "all-MiniLM-L6-v2"
dimension = 384

[store]
backend = "memory"
keyword_fallback = false

[scoring]
admission_floor = 0.4

[scoring.type_keywords]
goal = ["milestone", "Roadmap"]

[observability]
json_log_path = "disabled"
""",
    )
    monkeypatch.setenv("PERSONA_MEMORY_CONFIG", str(path))

    config = load_runtime_config()
    assert config.embeddings.provider == "sentence_transformers"
    assert config.embeddings.dimension == 384
    assert config.store.backend == "memory"
    assert config.store.keyword_fallback is False
    assert config.scoring.admission_floor == pytest.approx(0.4)
    assert config.scoring.type_keywords["goal"] == ("milestone", "roadmap")
    assert config.scoring.type_keywords["personal"] == DEFAULT_TYPE_KEYWORDS["personal"]
    assert config.observability.json_log_path is None


def test_default_file_in_working_directory(tmp_path):
    _write_toml(tmp_path / "persona_memory.toml", "[context]\ntotal_token_budget = 900\n")
    assert load_runtime_config().context.total_token_budget == 900


def test_environment_overrides_file(monkeypatch, tmp_path):
    path = _write_toml(tmp_path / "custom.toml", "[scoring]\nmax_retrieved = 4\n")
    monkeypatch.setenv("PERSONA_MEMORY_CONFIG", str(path))
    monkeypatch.setenv("SCORING_MAX_RETRIEVED", "8")
    monkeypatch.setenv("EMBEDDINGS_ALLOW_FALLBACK", "yes")
    monkeypatch.setenv("STORE_BACKEND", " Memory ")
    monkeypatch.setenv(
        "SCORING_TYPE_KEYWORDS",
        json.dumps({"event": "concert, Festival", "unknown": ["ignored"]}),
    )

    config = load_runtime_config()
    assert config.scoring.max_retrieved == 8
    assert config.embeddings.allow_fallback is True
    assert config.store.backend == "memory"
    assert config.scoring.type_keywords["event"] == ("concert", "festival")
    assert "unknown" not in config.scoring.type_keywords


def test_malformed_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("DEDUP_THRESHOLD", "very high")
    monkeypatch.setenv("CONTEXT_TOKEN_BUDGET", "lots")
    monkeypatch.setenv("CONTEXT_CHARS_PER_TOKEN", "0")
    monkeypatch.setenv("STORE_KEYWORD_FALLBACK", "maybe")
    monkeypatch.setenv("SCORING_TYPE_KEYWORDS", "{not json")

    config = load_runtime_config()
    assert config.dedup.threshold == pytest.approx(0.95)
    assert config.context.total_token_budget == 2000
    assert config.context.chars_per_token == 1
    assert config.store.keyword_fallback is True
    assert config.scoring.type_keywords == DEFAULT_TYPE_KEYWORDS


def test_result_is_cached_until_cleared(monkeypatch):
    first = load_runtime_config()
    monkeypatch.setenv("CONTEXT_TOKEN_BUDGET", "111")
    assert load_runtime_config() is first
    load_runtime_config.cache_clear()
    assert load_runtime_config().context.total_token_budget == 111


def test_invalid_toml_is_reported(monkeypatch, tmp_path):
    import tomllib

    path = _write_toml(tmp_path / "broken.toml", "[store\nbackend = 'memory'\n")
    monkeypatch.setenv("PERSONA_MEMORY_CONFIG", str(path))
    with pytest.raises(tomllib.TOMLDecodeError):
        load_runtime_config()
