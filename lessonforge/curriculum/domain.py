"""
Domain records for lessons, curricula and learner progress.

Intent:
    Keep the shapes that flow between repositories, use cases and the web
    adapter in one place. Records are plain dataclasses; repositories return
    fresh instances so callers may not mutate shared state by accident.

Invariants:
    - Sections of a lesson are totally ordered by `order_index` (0-based).
    - Page ranges are inclusive and 1-based.
    - A question is single-answer when exactly one index is correct and
      multi-answer otherwise; `correct_indices` keeps first-occurrence order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from .errors import ValidationError

LESSON_STATUSES = ("draft", "processing", "ready", "error")
PROGRESS_STATUSES = ("locked", "current", "completed")
DOCUMENT_CATEGORIES = ("lesson", "answer_key")

CONTENT_CATEGORY = "lesson"

# Allowed lesson state changes; repositories check them on claim and finish.
# `processing -> processing` is a takeover and needs an expired heartbeat.
_LESSON_TRANSITIONS = {
    "draft": {"processing"},
    "processing": {"ready", "error"},
    "ready": {"processing"},
    "error": {"processing"},
}


def ensure_lesson_transition(current: str, target: str) -> None:
    if target not in _LESSON_TRANSITIONS.get(current, set()):
        raise ValidationError(f"invalid lesson transition {current} -> {target}")


@dataclass
class Lesson:
    id: str
    owner_sub: str
    name: str
    status: str = "draft"
    processing_message: Optional[str] = None
    processing_percent: int = 0
    error_message: Optional[str] = None
    heartbeat_at: Optional[datetime] = None
    created_at: Optional[str] = None
    # identifies the run holding the processing lease
    run_id: Optional[str] = None


@dataclass
class Document:
    id: str
    lesson_id: str
    name: str
    category: str
    file_path: str
    mime_type: str = "application/pdf"
    size_bytes: Optional[int] = None
    page_count: int = 0
    created_at: Optional[str] = None


@dataclass
class PageImage:
    document_id: str
    page_number: int
    image_key: str
    width: int
    height: int


@dataclass
class Transcript:
    document_id: str
    page_number: int
    text: str
    has_visual_content: bool = False


@dataclass
class Question:
    id: str
    prompt: str
    choices: List[str]
    correct_indices: List[int]
    explanation: Optional[str] = None
    position: int = 0
    section_id: Optional[str] = None
    set_id: Optional[str] = None
    page_number: Optional[int] = None
    page_question_index: Optional[int] = None
    is_corrected: bool = False
    times_answered: int = 0
    times_correct: int = 0

    @property
    def question_type(self) -> str:
        return "multi" if len(self.correct_indices) > 1 else "single"

    @property
    def labels(self) -> List[str]:
        return [choice_label(i) for i in range(len(self.choices))]


@dataclass
class Section:
    id: str
    lesson_id: str
    order_index: int
    title: str
    start_page: int
    end_page: int
    summary: str
    pass_threshold: int
    questions: List[Question] = field(default_factory=list)


@dataclass
class Progress:
    user_sub: str
    lesson_id: str
    section_id: str
    status: str
    score: Optional[int] = None
    attempts: int = 0
    completed_at: Optional[str] = None


@dataclass
class QuestionSet:
    id: str
    owner_sub: str
    name: str
    is_corrected: bool = False
    created_at: Optional[str] = None


@dataclass
class SessionAnswer:
    question_id: str
    selected_option: str
    is_correct: bool
    time_spent_seconds: Optional[int] = None


@dataclass
class PracticeSession:
    id: str
    set_id: str
    user_sub: str
    mode: str
    total_questions: int
    question_ids: List[str] = field(default_factory=list)
    questions_answered: int = 0
    correct_answers: int = 0
    is_completed: bool = False
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    total_time_seconds: Optional[int] = None
    answers: List[SessionAnswer] = field(default_factory=list)


# --- Drafts produced by synthesis/extraction ---------------------------------


@dataclass(frozen=True)
class QuestionDraft:
    prompt: str
    choices: Sequence[str]
    correct_indices: Sequence[int]
    explanation: Optional[str] = None
    page_number: Optional[int] = None
    page_question_index: Optional[int] = None


@dataclass(frozen=True)
class SectionDraft:
    title: str
    start_page: int
    end_page: int
    summary: str
    questions: Sequence[QuestionDraft]


# --- Helpers ------------------------------------------------------------------


def choice_label(index: int) -> str:
    """Return the letter label for a 0-based choice index (A, B, ..., Z, AA, ...)."""
    if index < 0:
        raise ValueError("index must be >= 0")
    label = ""
    n = index + 1
    while n:
        n, rem = divmod(n - 1, 26)
        label = chr(65 + rem) + label
    return label


def normalize_labels(raw: object) -> List[str]:
    """Uppercase, strip and de-duplicate labels, keeping first-occurrence order."""
    if not isinstance(raw, (list, tuple)):
        return []
    seen: set[str] = set()
    out: List[str] = []
    for item in raw:
        if not isinstance(item, str):
            continue
        label = item.strip().upper()
        if not label or label in seen:
            continue
        seen.add(label)
        out.append(label)
    return out


def score_percent(correct: int, total: int) -> int:
    """Integer percentage rounded half-up."""
    if total <= 0:
        return 0
    return (200 * correct + total) // (2 * total)


def unique_indices(values: Iterable[int]) -> List[int]:
    seen: set[int] = set()
    out: List[int] = []
    for v in values:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


__all__ = [
    "LESSON_STATUSES",
    "PROGRESS_STATUSES",
    "DOCUMENT_CATEGORIES",
    "CONTENT_CATEGORY",
    "ensure_lesson_transition",
    "Lesson",
    "Document",
    "PageImage",
    "Transcript",
    "Question",
    "Section",
    "Progress",
    "QuestionSet",
    "SessionAnswer",
    "PracticeSession",
    "QuestionDraft",
    "SectionDraft",
    "choice_label",
    "normalize_labels",
    "score_percent",
    "unique_indices",
]
