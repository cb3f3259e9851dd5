"""
Configuration parsing and validation for the curriculum pipeline.

Intent:
    Provide a single place to read environment variables that control
    adapter selection (DI), model names, timeouts, the local Ollama URL and
    the pipeline knobs (pool size, truncation, thresholds, leases, limits).

Why:
    Centralising configuration keeps defaults and validation explicit. Tests
    exercise config behaviour without booting the web app or a worker.
"""
from __future__ import annotations

from dataclasses import dataclass
import os
from urllib.parse import urlparse
import re


@dataclass(frozen=True)
class AIConfig:
    backend: str  # "stub" | "local"
    completion_adapter_path: str
    vision_model: str
    structure_model: str
    timeout_vision_seconds: int
    timeout_structure_seconds: int
    ollama_base_url: str


@dataclass(frozen=True)
class PipelineConfig:
    max_workers: int
    max_transcript_chars: int
    questions_per_section: int
    pass_threshold: int
    lease_seconds: int
    render_dpi: int
    lesson_max_pages: int
    quiz_max_pages: int


def _int_env(name: str, default: int, *, low: int = 1, high: int = 600) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw!r}")
    if value < low or value > high:
        raise ValueError(f"{name} out of range ({low}..{high}), got: {value}")
    return value


_HOST_RE = re.compile(r"^[a-z0-9._-]+$")


def _validate_ollama_url(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"}:
        raise ValueError("OLLAMA_BASE_URL must start with http:// or https://")
    host = (parsed.hostname or "").lower()
    if host == "localhost" or host.startswith("127.") or host == "::1":
        return
    # docker compose service names (no dots)
    if "." not in host and _HOST_RE.match(host):
        return
    raise ValueError("OLLAMA_BASE_URL must point to localhost or a valid service hostname without dots")


def current_env() -> str:
    return (os.getenv("LESSONFORGE_ENV") or "dev").strip().lower()


def is_prod_like() -> bool:
    return current_env() in {"prod", "production", "stage", "staging"}


def load_ai_config() -> AIConfig:
    """
    Parse and validate completion-service configuration.

    Behavior:
        - `AI_BACKEND` selects the DI alias: "stub" or "local" (default: stub).
        - An explicit `CURRICULUM_COMPLETION_ADAPTER` module path wins over the alias.
        - Timeouts are validated to 1..600 seconds.
    """
    backend = (os.getenv("AI_BACKEND") or "stub").strip().lower()
    if backend not in {"stub", "local"}:
        raise ValueError("AI_BACKEND must be 'stub' or 'local'")
    if backend == "stub" and is_prod_like():
        raise ValueError("AI_BACKEND=stub is not allowed in production/staging environments.")

    default_adapter = (
        "lessonforge.curriculum.adapters.local_vision"
        if backend == "local"
        else "lessonforge.curriculum.adapters.stub_vision"
    )
    adapter_path = os.getenv("CURRICULUM_COMPLETION_ADAPTER", default_adapter)

    ollama_url = os.getenv("OLLAMA_BASE_URL", "http://ollama:11434")
    _validate_ollama_url(ollama_url)

    return AIConfig(
        backend=backend,
        completion_adapter_path=adapter_path,
        vision_model=os.getenv("AI_VISION_MODEL", "qwen2.5vl:3b"),
        structure_model=os.getenv("AI_STRUCTURE_MODEL", "gpt-oss:latest"),
        timeout_vision_seconds=_int_env("AI_TIMEOUT_VISION", 60),
        timeout_structure_seconds=_int_env("AI_TIMEOUT_STRUCTURE", 120),
        ollama_base_url=ollama_url,
    )


def load_pipeline_config() -> PipelineConfig:
    """Parse pipeline tuning knobs and document limits."""
    return PipelineConfig(
        max_workers=_int_env("PIPELINE_MAX_WORKERS", 8, high=64),
        max_transcript_chars=_int_env("PIPELINE_MAX_TRANSCRIPT_CHARS", 20000, low=1000, high=1_000_000),
        questions_per_section=_int_env("PIPELINE_QUESTIONS_PER_SECTION", 10, high=50),
        pass_threshold=_int_env("PIPELINE_PASS_THRESHOLD", 70, low=0, high=100),
        lease_seconds=_int_env("PIPELINE_LEASE_SECONDS", 900, low=30, high=86_400),
        render_dpi=_int_env("PIPELINE_RENDER_DPI", 150, low=36, high=600),
        lesson_max_pages=_int_env("LESSON_MAX_PAGES", 200, high=2000),
        quiz_max_pages=_int_env("QUIZ_MAX_PAGES", 40, high=500),
    )


__all__ = [
    "AIConfig",
    "PipelineConfig",
    "current_env",
    "is_prod_like",
    "load_ai_config",
    "load_pipeline_config",
]
