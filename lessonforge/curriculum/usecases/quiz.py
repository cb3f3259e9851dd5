"""
Quiz scoring engine for section checkpoints.

Intent:
    Score a full submission for one section, record the attempt and, on a
    pass, complete the section and unlock the next one.

Behavior:
    - A question counts as correct only on an exact set match with its
      correct indices; duplicates in a submission are ignored.
    - `score` is the percentage of correct questions rounded half up;
      `passed` is `score >= threshold`.
    - Checks run before anything is written: unknown or foreign lesson or
      section -> NotFoundError, lesson not `ready` -> ValidationError,
      section locked -> AccessDeniedError, any answer missing ->
      IncompleteSubmissionError.
    - Answers for question ids outside the section are ignored.

Permissions:
    Only the lesson owner may submit (lessons are personal).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from lessonforge.curriculum.domain import Lesson, Progress, Section, score_percent
from lessonforge.curriculum.errors import (
    AccessDeniedError,
    IncompleteSubmissionError,
    NotFoundError,
    ValidationError,
)
from lessonforge.curriculum.usecases.progress import effective_progress, require_owned_lesson
from lessonforge.curriculum.workers import telemetry

LOG = logging.getLogger(__name__)


class QuizRepoProtocol(Protocol):
    def get_lesson(self, lesson_id: str) -> Optional[Lesson]: ...

    def list_sections(self, lesson_id: str) -> List[Section]: ...

    def list_progress(self, *, user_sub: str, lesson_id: str) -> List[Progress]: ...

    def record_attempt(
        self,
        *,
        user_sub: str,
        lesson_id: str,
        section_id: str,
        is_first_section: bool,
        score: int,
        passed: bool,
        next_section_id: Optional[str],
        now: datetime,
    ) -> Optional[Progress]: ...


@dataclass
class SubmitQuizInput:
    lesson_id: str
    user_sub: str
    section_id: str
    answers: Mapping[str, Any]


@dataclass
class QuestionResult:
    question_id: str
    correct: bool
    submitted: List[int]
    correct_indices: List[int]
    explanation: Optional[str] = None


@dataclass
class SubmitQuizResult:
    score: int
    passed: bool
    correct_count: int
    total_questions: int
    threshold: int
    attempts: int
    results: List[QuestionResult] = field(default_factory=list)
    next_section_id: Optional[str] = None


def normalize_answer(value: Any) -> Optional[List[int]]:
    """Return the submitted indices, or None when the value is not an answer."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return [value]
    if isinstance(value, (list, tuple)):
        out: List[int] = []
        for item in value:
            if isinstance(item, bool) or not isinstance(item, int):
                raise ValidationError("answers must be choice indices")
            if item not in out:
                out.append(item)
        return out if out else None
    raise ValidationError("answers must be choice indices")


def grade(section: Section, answers: Mapping[str, Any]) -> List[QuestionResult]:
    normalized: Dict[str, List[int]] = {}
    missing: List[str] = []
    for q in section.questions:
        picked = normalize_answer(answers.get(q.id))
        if picked is None:
            missing.append(q.id)
        else:
            normalized[q.id] = picked
    if missing:
        raise IncompleteSubmissionError(missing)
    return [
        QuestionResult(
            question_id=q.id,
            correct=set(normalized[q.id]) == set(q.correct_indices),
            submitted=normalized[q.id],
            correct_indices=list(q.correct_indices),
            explanation=q.explanation,
        )
        for q in section.questions
    ]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubmitQuizUseCase:
    def __init__(self, repo: QuizRepoProtocol, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._repo = repo
        self._clock = clock

    def execute(self, req: SubmitQuizInput) -> SubmitQuizResult:
        lesson = require_owned_lesson(self._repo, lesson_id=req.lesson_id, user_sub=req.user_sub)
        if lesson.status != "ready":
            raise ValidationError("lesson is not ready")
        sections = self._repo.list_sections(req.lesson_id)
        position = next((i for i, s in enumerate(sections) if s.id == req.section_id), None)
        if position is None:
            raise NotFoundError()
        section = sections[position]
        next_section = sections[position + 1] if position + 1 < len(sections) else None

        views = effective_progress(sections, self._repo.list_progress(user_sub=req.user_sub, lesson_id=req.lesson_id))
        if views[position].status == "locked":
            raise AccessDeniedError("section is locked")
        if not section.questions:
            raise ValidationError("section has no questions")

        results = grade(section, req.answers)
        correct = sum(1 for r in results if r.correct)
        total = len(results)
        score = score_percent(correct, total)
        passed = score >= section.pass_threshold

        row = self._repo.record_attempt(
            user_sub=req.user_sub,
            lesson_id=req.lesson_id,
            section_id=section.id,
            is_first_section=section.order_index == 0,
            score=score,
            passed=passed,
            next_section_id=next_section.id if next_section else None,
            now=self._clock(),
        )
        if row is None:
            raise AccessDeniedError("section is locked")
        telemetry.record_quiz_submission(passed)
        LOG.info(
            "curriculum.quiz action=submitted lesson_id=%s section_id=%s score=%s passed=%s attempts=%s",
            req.lesson_id,
            section.id,
            score,
            passed,
            row.attempts,
        )
        return SubmitQuizResult(
            score=score,
            passed=passed,
            correct_count=correct,
            total_questions=total,
            threshold=section.pass_threshold,
            attempts=row.attempts,
            results=results,
            next_section_id=next_section.id if (passed and next_section) else None,
        )


__all__ = [
    "QuizRepoProtocol",
    "SubmitQuizInput",
    "QuestionResult",
    "SubmitQuizResult",
    "normalize_answer",
    "grade",
    "SubmitQuizUseCase",
]
