"""
Pytest configuration for lessonforge tests.

Why: Force AnyIO to use the asyncio backend, keep every test in a dev-like
environment with the stub completion service, and reset process-wide state
(telemetry counters and gauges) between tests.
"""
from __future__ import annotations

import pytest


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LESSONFORGE_ENV", "test")
    monkeypatch.setenv("AI_BACKEND", "stub")
    monkeypatch.setenv("OLLAMA_BASE_URL", "http://ollama:11434")
    monkeypatch.setenv("LESSONFORGE_ENABLE_DOTENV", "false")
    for name in (
        "CURRICULUM_COMPLETION_ADAPTER",
        "LESSONFORGE_DATABASE_URL",
        "SUPABASE_URL",
        "SUPABASE_SERVICE_ROLE_KEY",
        "AUTH_JWT_SECRET",
        "AUTH_JWKS_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture(autouse=True)
def _reset_process_state():
    from lessonforge.curriculum.workers import telemetry

    telemetry.reset_for_tests()
    yield
    telemetry.reset_for_tests()
