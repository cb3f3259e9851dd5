"""
HTTP test helpers: an app wired to in-memory services and signed bearer tokens.
"""
from __future__ import annotations

import time
from typing import Optional

import httpx
from httpx import ASGITransport
from jose import jwt
import pytest

from lessonforge.curriculum.config import PipelineConfig
from lessonforge.curriculum.repo_memory import InMemoryCurriculumRepo
from lessonforge.storage.memory import InMemoryObjectStore
from lessonforge.tests.utils.fakes import FakeCompletion, FakeRendererFactory
from lessonforge.web.wiring import Services

TEST_SECRET = "api-test-secret"


def bearer(sub: str, *, secret: str = TEST_SECRET, expires_in: int = 300) -> dict[str, str]:
    token = jwt.encode(
        {"sub": sub, "aud": "authenticated", "exp": int(time.time()) + expires_in, "email": f"{sub}@example.com"},
        secret,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}


def install_services(
    monkeypatch: pytest.MonkeyPatch,
    *,
    completion: Optional[FakeCompletion] = None,
    questions_per_section: int = 2,
    quiz_max_pages: int = 40,
    max_upload_bytes: int = 50 * 1024 * 1024,
) -> Services:
    """Build in-memory services for `client()` and enable HS256 verification for `bearer()`."""
    monkeypatch.setenv("AUTH_JWT_SECRET", TEST_SECRET)
    services = Services(
        repo=InMemoryCurriculumRepo(),
        store=InMemoryObjectStore(),
        completion=completion or FakeCompletion(),
        pipeline=PipelineConfig(
            max_workers=4,
            max_transcript_chars=20000,
            questions_per_section=questions_per_section,
            pass_threshold=70,
            lease_seconds=900,
            render_dpi=150,
            lesson_max_pages=200,
            quiz_max_pages=quiz_max_pages,
        ),
        lessons_bucket="interactive-lessons",
        quiz_bucket="quiz-sets",
        max_upload_bytes=max_upload_bytes,
        url_ttl_seconds=600,
        renderer_factory=FakeRendererFactory(),
    )
    return services


def client(services: Services) -> httpx.AsyncClient:
    from lessonforge.web.main import create_app

    return httpx.AsyncClient(transport=ASGITransport(app=create_app(services)), base_url="http://test")
