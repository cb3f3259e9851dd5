"""
Practice sessions over extracted question sets.

Behavior:
    - A session freezes its question ids at creation (all set questions in
      stored order, or the requested subset, optionally capped by
      `totalQuestions`).
    - Recording an answer is one atomic repository call: the answer row, the
      session counters and the question's difficulty counters move together.
    - Correctness is decided here from `selectedOption` labels against the
      question's correct labels; the client's `isCorrect` is only used for
      questions without a known answer.
    - Completed sessions reject further answers with ValidationError.

Permissions:
    Sessions belong to the caller; foreign sets and sessions answer 404.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Callable, List, Optional, Protocol, Sequence

from lessonforge.curriculum.domain import PracticeSession, Question, QuestionSet, SessionAnswer, choice_label, normalize_labels
from lessonforge.curriculum.errors import NotFoundError, ValidationError
from lessonforge.curriculum.usecases.quiz_sets import require_owned_set

LOG = logging.getLogger(__name__)

SESSION_MODES = ("test", "practice", "review")


class SessionRepoProtocol(Protocol):
    def get_set(self, set_id: str) -> Optional[QuestionSet]: ...

    def list_set_questions(self, set_id: str) -> List[Question]: ...

    def create_session(
        self,
        *,
        set_id: str,
        user_sub: str,
        mode: str,
        total_questions: int,
        question_ids: Sequence[str],
        now: datetime,
    ) -> PracticeSession: ...

    def get_session(self, session_id: str) -> Optional[PracticeSession]: ...

    def latest_open_session(self, *, set_id: str, user_sub: str) -> Optional[PracticeSession]: ...

    def record_session_answer(self, *, session_id: str, answer: SessionAnswer) -> bool: ...

    def complete_session(
        self,
        *,
        session_id: str,
        correct_answers: Optional[int],
        total_time_seconds: Optional[int],
        now: datetime,
    ) -> Optional[PracticeSession]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _owned_session(repo: SessionRepoProtocol, *, set_id: str, session_id: str, user_sub: str) -> PracticeSession:
    session = repo.get_session(session_id)
    if session is None or session.set_id != set_id or session.user_sub != user_sub:
        raise NotFoundError()
    return session


@dataclass
class CreateSessionInput:
    set_id: str
    user_sub: str
    mode: str
    total_questions: Optional[int] = None
    question_ids: Optional[Sequence[str]] = None


class CreateSessionUseCase:
    def __init__(self, repo: SessionRepoProtocol, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._repo = repo
        self._clock = clock

    def execute(self, req: CreateSessionInput) -> PracticeSession:
        if req.mode not in SESSION_MODES:
            raise ValidationError("invalid_mode")
        require_owned_set(self._repo, set_id=req.set_id, user_sub=req.user_sub)
        available = [q.id for q in self._repo.list_set_questions(req.set_id)]
        if req.question_ids:
            known = set(available)
            chosen: List[str] = []
            for qid in req.question_ids:
                if qid not in known:
                    raise ValidationError("unknown question id")
                if qid not in chosen:
                    chosen.append(qid)
        else:
            chosen = available
        if req.total_questions is not None:
            if req.total_questions < 1:
                raise ValidationError("totalQuestions must be >= 1")
            chosen = chosen[: req.total_questions]
        if not chosen:
            raise ValidationError("question set has no questions")
        session = self._repo.create_session(
            set_id=req.set_id,
            user_sub=req.user_sub,
            mode=req.mode,
            total_questions=len(chosen),
            question_ids=chosen,
            now=self._clock(),
        )
        LOG.info("curriculum.sessions action=created set_id=%s session_id=%s mode=%s", req.set_id, session.id, req.mode)
        return session


class GetSessionUseCase:
    def __init__(self, repo: SessionRepoProtocol) -> None:
        self._repo = repo

    def execute(self, *, set_id: str, user_sub: str, session_id: Optional[str] = None) -> Optional[PracticeSession]:
        """Return the given session, or the latest incomplete one (or None)."""
        require_owned_set(self._repo, set_id=set_id, user_sub=user_sub)
        if session_id:
            return _owned_session(self._repo, set_id=set_id, session_id=session_id, user_sub=user_sub)
        return self._repo.latest_open_session(set_id=set_id, user_sub=user_sub)


@dataclass
class RecordAnswerInput:
    set_id: str
    user_sub: str
    session_id: str
    question_id: str
    selected_option: str
    is_correct: Optional[bool] = None
    time_spent_seconds: Optional[int] = None


def judge_answer(question: Question, selected_option: str, fallback: Optional[bool]) -> bool:
    """Compare selected labels (e.g. "B" or "A,C") with the correct labels."""
    if not question.correct_indices:
        return bool(fallback)
    selected = normalize_labels([part for part in selected_option.replace(";", ",").split(",")])
    expected = {choice_label(i) for i in question.correct_indices}
    return set(selected) == expected


class RecordAnswerUseCase:
    def __init__(self, repo: SessionRepoProtocol) -> None:
        self._repo = repo

    def execute(self, req: RecordAnswerInput) -> bool:
        session = _owned_session(self._repo, set_id=req.set_id, session_id=req.session_id, user_sub=req.user_sub)
        if session.is_completed:
            raise ValidationError("session is completed")
        if req.question_id not in session.question_ids:
            raise ValidationError("question is not part of this session")
        if not (req.selected_option or "").strip():
            raise ValidationError("selectedOption is required")
        if req.time_spent_seconds is not None and req.time_spent_seconds < 0:
            raise ValidationError("timeSpentSeconds must be >= 0")
        question = next(q for q in self._repo.list_set_questions(req.set_id) if q.id == req.question_id)
        answer = SessionAnswer(
            question_id=req.question_id,
            selected_option=req.selected_option.strip(),
            is_correct=judge_answer(question, req.selected_option, req.is_correct),
            time_spent_seconds=req.time_spent_seconds,
        )
        if not self._repo.record_session_answer(session_id=session.id, answer=answer):
            raise ValidationError("session is completed")
        return answer.is_correct


@dataclass
class CompleteSessionInput:
    set_id: str
    user_sub: str
    session_id: str
    correct_answers: Optional[int] = None
    total_time_seconds: Optional[int] = None


class CompleteSessionUseCase:
    def __init__(self, repo: SessionRepoProtocol, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._repo = repo
        self._clock = clock

    def execute(self, req: CompleteSessionInput) -> PracticeSession:
        _owned_session(self._repo, set_id=req.set_id, session_id=req.session_id, user_sub=req.user_sub)
        for value in (req.correct_answers, req.total_time_seconds):
            if value is not None and value < 0:
                raise ValidationError("counters must be >= 0")
        session = self._repo.complete_session(
            session_id=req.session_id,
            correct_answers=req.correct_answers,
            total_time_seconds=req.total_time_seconds,
            now=self._clock(),
        )
        if session is None:
            raise NotFoundError()
        LOG.info(
            "curriculum.sessions action=completed session_id=%s answered=%s correct=%s",
            session.id,
            session.questions_answered,
            session.correct_answers,
        )
        return session


__all__ = [
    "SESSION_MODES",
    "SessionRepoProtocol",
    "CreateSessionInput",
    "CreateSessionUseCase",
    "GetSessionUseCase",
    "RecordAnswerInput",
    "judge_answer",
    "RecordAnswerUseCase",
    "CompleteSessionInput",
    "CompleteSessionUseCase",
]
