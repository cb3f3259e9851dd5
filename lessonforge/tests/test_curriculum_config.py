"""
Configuration parsing: adapter selection, Ollama host validation, pipeline knobs.
"""
from __future__ import annotations

import pytest

from lessonforge.curriculum.config import is_prod_like, load_ai_config, load_pipeline_config


def test_stub_backend_is_default_in_dev(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("AI_BACKEND", raising=False)
    monkeypatch.setenv("LESSONFORGE_ENV", "dev")

    cfg = load_ai_config()

    assert cfg.backend == "stub"
    assert cfg.completion_adapter_path == "lessonforge.curriculum.adapters.stub_vision"


def test_local_backend_and_explicit_adapter_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AI_BACKEND", "local")
    assert load_ai_config().completion_adapter_path == "lessonforge.curriculum.adapters.local_vision"

    monkeypatch.setenv("CURRICULUM_COMPLETION_ADAPTER", "custom.module")
    assert load_ai_config().completion_adapter_path == "custom.module"


def test_stub_backend_is_refused_in_prod(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LESSONFORGE_ENV", "production")
    monkeypatch.setenv("AI_BACKEND", "stub")

    assert is_prod_like()
    with pytest.raises(ValueError):
        load_ai_config()


def test_unknown_backend_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AI_BACKEND", "openai")
    with pytest.raises(ValueError):
        load_ai_config()


@pytest.mark.parametrize(
    "url",
    ["http://localhost:11434", "http://127.0.0.1:11434", "http://ollama:11434", "https://ollama-1:11434"],
)
def test_accepts_local_and_service_hosts(monkeypatch: pytest.MonkeyPatch, url: str) -> None:
    monkeypatch.setenv("AI_BACKEND", "local")
    monkeypatch.setenv("OLLAMA_BASE_URL", url)
    assert load_ai_config().ollama_base_url == url


@pytest.mark.parametrize(
    "url",
    ["http://exa mple:11434", "http://models.example.com:11434", "file:///etc/passwd", "ftp://ollama:21"],
)
def test_rejects_weird_hosts(monkeypatch: pytest.MonkeyPatch, url: str) -> None:
    monkeypatch.setenv("AI_BACKEND", "local")
    monkeypatch.setenv("OLLAMA_BASE_URL", url)
    with pytest.raises(ValueError):
        load_ai_config()


def test_timeouts_are_range_checked(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AI_TIMEOUT_VISION", "0")
    with pytest.raises(ValueError):
        load_ai_config()
    monkeypatch.setenv("AI_TIMEOUT_VISION", "abc")
    with pytest.raises(ValueError):
        load_ai_config()


def test_pipeline_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("PIPELINE_MAX_WORKERS", "PIPELINE_PASS_THRESHOLD", "PIPELINE_QUESTIONS_PER_SECTION", "LESSON_MAX_PAGES"):
        monkeypatch.delenv(name, raising=False)

    cfg = load_pipeline_config()

    assert (cfg.max_workers, cfg.questions_per_section, cfg.pass_threshold) == (8, 10, 70)
    assert (cfg.max_transcript_chars, cfg.lease_seconds) == (20000, 900)
    assert (cfg.lesson_max_pages, cfg.quiz_max_pages) == (200, 40)


def test_pipeline_overrides_and_bounds(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PIPELINE_PASS_THRESHOLD", "100")
    monkeypatch.setenv("PIPELINE_MAX_WORKERS", "2")
    cfg = load_pipeline_config()
    assert (cfg.pass_threshold, cfg.max_workers) == (100, 2)

    monkeypatch.setenv("PIPELINE_PASS_THRESHOLD", "101")
    with pytest.raises(ValueError):
        load_pipeline_config()
