"""
Startup security checks for the lessonforge API.

Why: Prevent accidental insecure deployments without burdening local
development. Raises `SystemExit` on fatal misconfiguration in prod-like
environments; dev/test stay permissive.
"""
from __future__ import annotations

import os

from lessonforge.curriculum.config import is_prod_like


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Checks:
    - AI_BACKEND must not be the stub.
    - A Postgres DSN must be configured and must not disable TLS.
    - Supabase storage must be configured with a non-placeholder key.
    - Bearer verification needs AUTH_JWT_SECRET or AUTH_JWKS_URL.
    """
    if not is_prod_like():
        return

    ai_backend = (os.getenv("AI_BACKEND") or "stub").strip().lower()
    if ai_backend == "stub":
        raise SystemExit(
            "Refusing to start: AI_BACKEND=stub is not allowed in production/staging. Configure a real adapter."
        )

    dsn = (os.getenv("LESSONFORGE_DATABASE_URL") or os.getenv("DATABASE_URL") or "").strip()
    if not dsn:
        raise SystemExit("Refusing to start: no DATABASE_URL configured in production.")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    srole = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not (os.getenv("SUPABASE_URL") or "").strip() or not srole or srole.upper() == "DUMMY_DO_NOT_USE":
        raise SystemExit(
            "Refusing to start: SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY are unset or placeholders in production."
        )

    if not (os.getenv("AUTH_JWT_SECRET") or "").strip() and not (os.getenv("AUTH_JWKS_URL") or "").strip():
        raise SystemExit("Refusing to start: configure AUTH_JWT_SECRET or AUTH_JWKS_URL in production.")

    jwks_url = (os.getenv("AUTH_JWKS_URL") or "").strip().lower()
    if jwks_url.startswith("http://"):
        raise SystemExit("Refusing to start: AUTH_JWKS_URL must use https in production (got http).")
