"""
Dependency wiring for the web adapter.

Why:
    Routes stay thin: `create_app()` builds one `Services` bundle from the
    environment and keeps it on `app.state.services`; routes read it through
    `services_of(request)`. Tests pass an in-memory bundle to `create_app()`.

Behavior:
    - Repository: Postgres when a DSN is configured, otherwise the in-memory
      repository (dev/test only; the startup guard refuses prod without DSN).
    - Object store: Supabase when configured, otherwise in-memory in dev/test
      and the Null store in prod-like environments.
    - Completion service: module path from `load_ai_config()`, instantiated via
      its `build()` factory.
"""
from __future__ import annotations

from dataclasses import dataclass
from importlib import import_module
import logging
import os
import sys
from typing import Any, Callable, Optional

from fastapi import Request

from lessonforge.curriculum.config import PipelineConfig, is_prod_like, load_ai_config, load_pipeline_config
from lessonforge.storage.config import (
    get_lessons_bucket,
    get_max_upload_bytes,
    get_quiz_bucket,
    get_signed_url_ttl_seconds,
)
from lessonforge.storage.ports import NullObjectStore

LOG = logging.getLogger("lessonforge.web")


@dataclass
class Services:
    repo: Any
    store: Any
    completion: Any
    pipeline: PipelineConfig
    lessons_bucket: str
    quiz_bucket: str
    max_upload_bytes: int
    url_ttl_seconds: int
    renderer_factory: Optional[Callable[[bytes], Any]] = None


def _should_load_dotenv() -> bool:
    """Never load .env under pytest; otherwise honour LESSONFORGE_ENABLE_DOTENV."""
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("LESSONFORGE_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


def load_local_env() -> None:
    if _should_load_dotenv():
        from dotenv import load_dotenv

        load_dotenv()


def _build_repo() -> Any:
    dsn = (os.getenv("LESSONFORGE_DATABASE_URL") or os.getenv("DATABASE_URL") or "").strip()
    if dsn:
        from lessonforge.curriculum.repo_db import DBCurriculumRepo

        return DBCurriculumRepo(dsn)
    from lessonforge.curriculum.repo_memory import InMemoryCurriculumRepo

    LOG.warning("lessonforge.wiring repo=memory reason=no_dsn")
    return InMemoryCurriculumRepo()


def _build_store() -> Any:
    from lessonforge.storage.supabase_adapter import build_from_env

    store = build_from_env()
    if store is not None:
        return store
    if is_prod_like():
        return NullObjectStore()
    from lessonforge.storage.memory import InMemoryObjectStore

    LOG.warning("lessonforge.wiring store=memory reason=no_supabase")
    return InMemoryObjectStore()


def build_services() -> Services:
    ai_cfg = load_ai_config()
    completion = import_module(ai_cfg.completion_adapter_path).build()  # type: ignore[attr-defined]
    LOG.info(
        "lessonforge.wiring action=adapters_selected backend=%s adapter=%s",
        ai_cfg.backend,
        ai_cfg.completion_adapter_path,
    )
    return Services(
        repo=_build_repo(),
        store=_build_store(),
        completion=completion,
        pipeline=load_pipeline_config(),
        lessons_bucket=get_lessons_bucket(),
        quiz_bucket=get_quiz_bucket(),
        max_upload_bytes=get_max_upload_bytes(),
        url_ttl_seconds=get_signed_url_ttl_seconds(),
    )


def services_of(request: Request) -> Services:
    return request.app.state.services


__all__ = ["Services", "load_local_env", "build_services", "services_of"]
