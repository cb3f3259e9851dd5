"""
Answer-key reconciliation for extracted question sets.

Intent:
    Overwrite the correct answers of previously extracted questions with the
    answers read from a separately photographed answer key.

Behavior:
    - The key is parsed into {question number (1-based) -> labels}; labels are
      uppercased and de-duplicated in first-occurrence order, and the first
      entry for a number wins.
    - Question number N addresses the N-th question of the set in its stored
      order (page, index on page, insertion).
    - An entry is applied only when every label exists among the question's
      own choice labels. Otherwise the question stays untouched and is counted
      as `skippedMissing` (no entry) or `skippedInvalid` (unknown labels).
    - Questions are never deleted or reordered, so reconciling the same key
      twice yields the same corrections and the same counts.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError as SchemaError

from lessonforge.curriculum.adapters.ports import CompletionServiceProtocol
from lessonforge.curriculum.domain import Question, QuestionSet, normalize_labels
from lessonforge.curriculum.prompts import ANSWER_KEY_INSTRUCTION
from lessonforge.curriculum.usecases.quiz_sets import PageInput, decode_pages, require_owned_set
from lessonforge.curriculum.usecases.synthesis import extract_json_object
from lessonforge.storage.keys import make_answer_key_page_key
from lessonforge.storage.ports import ObjectStoreProtocol

LOG = logging.getLogger(__name__)


class AnswerKeyRepoProtocol(Protocol):
    def get_set(self, set_id: str) -> Optional[QuestionSet]: ...

    def list_set_questions(self, set_id: str) -> List[Question]: ...

    def update_question_answers(self, question_id: str, correct_indices: Sequence[int]) -> None: ...

    def mark_set_corrected(self, set_id: str) -> None: ...


class _AnswerOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    questionNumber: int = Field(ge=1)
    correctOptions: List[str] = Field(default_factory=list)


def parse_answer_key(raw: str) -> Dict[int, List[str]]:
    """Parse the completion output; unusable output yields an empty mapping."""
    try:
        payload = extract_json_object(raw)
    except json.JSONDecodeError:
        LOG.warning("curriculum.answer_key action=parse_failed reason=invalid_json")
        return {}
    entries = payload.get("answers") if isinstance(payload, dict) else None
    if not isinstance(entries, list):
        LOG.warning("curriculum.answer_key action=parse_failed reason=missing_answers")
        return {}
    mapping: Dict[int, List[str]] = {}
    for entry in entries:
        try:
            item = _AnswerOut.model_validate(entry)
        except SchemaError:
            continue
        labels = normalize_labels(item.correctOptions)
        if labels and item.questionNumber not in mapping:
            mapping[item.questionNumber] = labels
    return mapping


@dataclass
class ReconcileSummary:
    total_questions: int
    extracted_answers: int
    updated: int
    skipped_missing: int
    skipped_invalid: int


def reconcile(
    questions: Sequence[Question], mapping: Dict[int, List[str]]
) -> Tuple[List[Tuple[str, List[int]]], ReconcileSummary]:
    """Return (question id, new correct indices) updates plus the summary."""
    updates: List[Tuple[str, List[int]]] = []
    missing = invalid = 0
    for number, question in enumerate(questions, start=1):
        labels = mapping.get(number)
        if not labels:
            missing += 1
            continue
        own = question.labels
        if any(lbl not in own for lbl in labels):
            invalid += 1
            continue
        updates.append((question.id, [own.index(lbl) for lbl in labels]))
    summary = ReconcileSummary(
        total_questions=len(questions),
        extracted_answers=len(mapping),
        updated=len(updates),
        skipped_missing=missing,
        skipped_invalid=invalid,
    )
    return updates, summary


@dataclass
class RecorrectInput:
    set_id: str
    user_sub: str
    pages: Sequence[PageInput]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecorrectQuizSetUseCase:
    """Extract an answer key from page images and apply it to a set.

    Pages are stored under a per-run prefix for audit; they are not served
    back, so no signed URL is issued.
    """

    def __init__(
        self,
        *,
        repo: AnswerKeyRepoProtocol,
        store: ObjectStoreProtocol,
        completion: CompletionServiceProtocol,
        bucket: str,
        max_pages: int,
        max_image_bytes: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repo
        self._store = store
        self._completion = completion
        self._bucket = bucket
        self._max_pages = max_pages
        self._max_image_bytes = max_image_bytes
        self._clock = clock

    def execute(self, req: RecorrectInput) -> ReconcileSummary:
        qs = require_owned_set(self._repo, set_id=req.set_id, user_sub=req.user_sub)
        pages = decode_pages(req.pages, max_pages=self._max_pages, max_bytes=self._max_image_bytes)
        epoch_ms = int(self._clock().timestamp() * 1000)
        for page in pages:
            key = make_answer_key_page_key(
                owner_sub=qs.owner_sub,
                set_id=qs.id,
                epoch_ms=epoch_ms,
                page_number=page.page_number,
                mime=page.image.mime,
            )
            self._store.put_object(bucket=self._bucket, key=key, body=page.image.data, content_type=page.image.mime)

        raw = self._completion.complete_json(
            task="answer_key",
            instruction=ANSWER_KEY_INSTRUCTION,
            content="",
            images=[p.image.data for p in pages],
        )
        mapping = parse_answer_key(raw)
        questions = self._repo.list_set_questions(qs.id)
        updates, summary = reconcile(questions, mapping)
        for question_id, indices in updates:
            self._repo.update_question_answers(question_id, indices)
        if summary.updated > 0:
            self._repo.mark_set_corrected(qs.id)
        LOG.info(
            "curriculum.answer_key action=reconciled set_id=%s total=%s extracted=%s updated=%s missing=%s invalid=%s",
            qs.id,
            summary.total_questions,
            summary.extracted_answers,
            summary.updated,
            summary.skipped_missing,
            summary.skipped_invalid,
        )
        return summary


__all__ = [
    "AnswerKeyRepoProtocol",
    "parse_answer_key",
    "ReconcileSummary",
    "reconcile",
    "RecorrectInput",
    "RecorrectQuizSetUseCase",
]
