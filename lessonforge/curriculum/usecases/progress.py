"""
Progress state machine: per (user, section) `locked` / `current` / `completed`.

Intent:
    Seed and read a learner's progress through a lesson's ordered sections.
    Transitions on quiz results live in `quiz.py`; both go through repository
    methods that apply each change atomically per (user, section).

Invariants:
    - Order index 0 is implicitly `current` even without a row; every other
      section without a row is `locked`.
    - Nothing ever moves a section back to `locked`, and `completed` stays
      `completed`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence

from lessonforge.curriculum.domain import Lesson, Progress, Section, score_percent
from lessonforge.curriculum.errors import NotFoundError


class LessonLookupProtocol(Protocol):
    def get_lesson(self, lesson_id: str) -> Optional[Lesson]: ...


class ProgressRepoProtocol(LessonLookupProtocol, Protocol):
    def list_sections(self, lesson_id: str) -> List[Section]: ...

    def list_progress(self, *, user_sub: str, lesson_id: str) -> List[Progress]: ...

    def seed_progress(self, *, user_sub: str, lesson_id: str, section_ids: Sequence[str]) -> List[Progress]: ...


@dataclass
class SectionProgressView:
    section_id: str
    order_index: int
    title: str
    status: str
    score: Optional[int]
    attempts: int
    completed_at: Optional[str]


@dataclass
class LessonProgressView:
    lesson_id: str
    lesson_name: str
    overall_progress: int
    completed_sections: int
    total_sections: int
    sections: List[SectionProgressView]


def implicit_status(order_index: int) -> str:
    return "current" if order_index == 0 else "locked"


def effective_progress(sections: Sequence[Section], rows: Sequence[Progress]) -> List[SectionProgressView]:
    """Merge stored rows with the implicit defaults, in section order."""
    by_section: Dict[str, Progress] = {p.section_id: p for p in rows}
    views = []
    for s in sorted(sections, key=lambda s: s.order_index):
        row = by_section.get(s.id)
        views.append(
            SectionProgressView(
                section_id=s.id,
                order_index=s.order_index,
                title=s.title,
                status=row.status if row else implicit_status(s.order_index),
                score=row.score if row else None,
                attempts=row.attempts if row else 0,
                completed_at=row.completed_at if row else None,
            )
        )
    return views


def require_owned_lesson(repo: LessonLookupProtocol, *, lesson_id: str, user_sub: str) -> Lesson:
    lesson = repo.get_lesson(lesson_id)
    if lesson is None or lesson.owner_sub != user_sub:
        raise NotFoundError()
    return lesson


class InitializeProgressUseCase:
    def __init__(self, repo: ProgressRepoProtocol) -> None:
        self._repo = repo

    def execute(self, *, lesson_id: str, user_sub: str) -> List[SectionProgressView]:
        """Create missing progress rows: first section `current`, the rest `locked`.

        Idempotent: existing rows are never touched, so re-initializing after
        some progress keeps completed and current sections as they are.
        """
        require_owned_lesson(self._repo, lesson_id=lesson_id, user_sub=user_sub)
        sections = self._repo.list_sections(lesson_id)
        if not sections:
            return []
        rows = self._repo.seed_progress(
            user_sub=user_sub,
            lesson_id=lesson_id,
            section_ids=[s.id for s in sorted(sections, key=lambda s: s.order_index)],
        )
        return effective_progress(sections, rows)


class GetProgressUseCase:
    def __init__(self, repo: ProgressRepoProtocol) -> None:
        self._repo = repo

    def execute(self, *, lesson_id: str, user_sub: str) -> LessonProgressView:
        lesson = require_owned_lesson(self._repo, lesson_id=lesson_id, user_sub=user_sub)
        sections = self._repo.list_sections(lesson_id)
        views = effective_progress(sections, self._repo.list_progress(user_sub=user_sub, lesson_id=lesson_id))
        completed = sum(1 for v in views if v.status == "completed")
        total = len(views)
        return LessonProgressView(
            lesson_id=lesson.id,
            lesson_name=lesson.name,
            overall_progress=score_percent(completed, total),
            completed_sections=completed,
            total_sections=total,
            sections=views,
        )


__all__ = [
    "LessonLookupProtocol",
    "ProgressRepoProtocol",
    "SectionProgressView",
    "LessonProgressView",
    "implicit_status",
    "effective_progress",
    "require_owned_lesson",
    "InitializeProgressUseCase",
    "GetProgressUseCase",
]
