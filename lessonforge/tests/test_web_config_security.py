"""
Startup guard: prod-like environments refuse insecure configuration,
dev stays permissive.
"""
from __future__ import annotations

import pytest

from lessonforge.web.config import ensure_secure_config_on_startup


def _prod(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LESSONFORGE_ENV", "prod")
    monkeypatch.setenv("AI_BACKEND", "local")
    monkeypatch.setenv("DATABASE_URL", "postgresql://lessonforge:pw@db.example.com:5432/app?sslmode=require")
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "REAL_NON_DUMMY")
    monkeypatch.setenv("AUTH_JWKS_URL", "https://project.supabase.co/auth/v1/.well-known/jwks.json")


def test_complete_prod_config_passes(monkeypatch: pytest.MonkeyPatch) -> None:
    _prod(monkeypatch)
    ensure_secure_config_on_startup()


def test_dev_tolerates_missing_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LESSONFORGE_ENV", "dev")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "DUMMY_DO_NOT_USE")
    ensure_secure_config_on_startup()


@pytest.mark.parametrize(
    "name,value",
    [
        ("AI_BACKEND", "stub"),
        ("DATABASE_URL", ""),
        ("DATABASE_URL", "postgresql://u:p@db.example.com/app?sslmode=disable"),
        ("SUPABASE_URL", ""),
        ("SUPABASE_SERVICE_ROLE_KEY", "DUMMY_DO_NOT_USE"),
        ("AUTH_JWKS_URL", "http://project.supabase.co/jwks.json"),
    ],
)
def test_prod_guard_refuses(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    _prod(monkeypatch)
    monkeypatch.setenv(name, value)
    with pytest.raises(SystemExit):
        ensure_secure_config_on_startup()


def test_prod_requires_a_token_key(monkeypatch: pytest.MonkeyPatch) -> None:
    _prod(monkeypatch)
    monkeypatch.delenv("AUTH_JWKS_URL")
    monkeypatch.delenv("AUTH_JWT_SECRET", raising=False)
    with pytest.raises(SystemExit):
        ensure_secure_config_on_startup()

    monkeypatch.setenv("AUTH_JWT_SECRET", "s3cret")
    ensure_secure_config_on_startup()
