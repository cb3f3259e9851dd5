"""
Centralized storage configuration for buckets, URL lifetimes and upload limits.

Behavior:
    - LESSONS_BUCKET_DEFAULT / QUIZ_BUCKET_DEFAULT are the canonical bucket
      names; LESSONS_STORAGE_BUCKET / QUIZ_STORAGE_BUCKET override them.
    - Upload size limits are clamped to the contract maximum.

Permissions:
    Pure configuration; no external calls or privileges required.
"""
from __future__ import annotations

import os


LESSONS_BUCKET_DEFAULT = "interactive-lessons"
QUIZ_BUCKET_DEFAULT = "mcq-pages"

UPLOAD_CONTRACT_MAX_BYTES = 50 * 1024 * 1024


def get_lessons_bucket() -> str:
    return (os.getenv("LESSONS_STORAGE_BUCKET") or LESSONS_BUCKET_DEFAULT).strip()


def get_quiz_bucket() -> str:
    return (os.getenv("QUIZ_STORAGE_BUCKET") or QUIZ_BUCKET_DEFAULT).strip()


def _parse_int_env(name: str, default: int, *, contract_max: int | None = None) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    if isinstance(contract_max, int) and contract_max > 0:
        value = min(value, contract_max)
    return value


def get_max_upload_bytes() -> int:
    """Maximum source document size (default/clamped 50 MiB)."""
    return _parse_int_env("MAX_UPLOAD_BYTES", UPLOAD_CONTRACT_MAX_BYTES, contract_max=UPLOAD_CONTRACT_MAX_BYTES)


def get_signed_url_ttl_seconds() -> int:
    """Lifetime of signed retrieval URLs handed to callers (default 1h, max 24h)."""
    return _parse_int_env("SIGNED_URL_TTL_SECONDS", 3600, contract_max=86_400)


__all__ = [
    "LESSONS_BUCKET_DEFAULT",
    "QUIZ_BUCKET_DEFAULT",
    "UPLOAD_CONTRACT_MAX_BYTES",
    "get_lessons_bucket",
    "get_quiz_bucket",
    "get_max_upload_bytes",
    "get_signed_url_ttl_seconds",
]
