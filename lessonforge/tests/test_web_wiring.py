"""
Wiring selects adapters from the environment; without DSN or Supabase the
dev/test bundle runs fully in memory. The app keeps one bundle on its state.
"""
from __future__ import annotations

import pytest

from lessonforge.curriculum.adapters.stub_vision import StubCompletionAdapter
from lessonforge.curriculum.repo_memory import InMemoryCurriculumRepo
from lessonforge.storage.memory import InMemoryObjectStore
from lessonforge.web import wiring


def test_dev_bundle_is_in_memory(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("LESSONS_STORAGE_BUCKET", "lessons-test")

    services = wiring.build_services()

    assert isinstance(services.repo, InMemoryCurriculumRepo)
    assert isinstance(services.store, InMemoryObjectStore)
    assert isinstance(services.completion, StubCompletionAdapter)
    assert services.lessons_bucket == "lessons-test"
    assert services.renderer_factory is None


def test_app_builds_its_bundle_once(monkeypatch: pytest.MonkeyPatch) -> None:
    from lessonforge.web.main import create_app

    monkeypatch.delenv("DATABASE_URL", raising=False)
    built = []
    real_build = wiring.build_services

    def counting_build():
        built.append(real_build())
        return built[-1]

    monkeypatch.setattr("lessonforge.web.main.build_services", counting_build)

    app = create_app()
    other = create_app()

    assert len(built) == 2
    assert app.state.services is built[0]
    assert other.state.services is built[1]
    assert app.state.services.repo is not other.state.services.repo


def test_app_keeps_a_provided_bundle(monkeypatch: pytest.MonkeyPatch) -> None:
    from lessonforge.web.main import create_app

    monkeypatch.delenv("DATABASE_URL", raising=False)
    services = wiring.build_services()

    assert create_app(services).state.services is services


def test_dotenv_is_never_loaded_under_pytest(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LESSONFORGE_ENABLE_DOTENV", "true")
    assert wiring._should_load_dotenv() is False
