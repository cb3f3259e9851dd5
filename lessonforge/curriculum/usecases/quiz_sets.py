"""
Quiz-set extraction: photographed exam pages -> an ordered question set.

Intent:
    Store each posted page image, ask the completion service for the
    multiple-choice questions printed on it, and persist them keyed by
    (page_number, page_question_index) so the set has a deterministic order
    that answer-key reconciliation can rely on.

Failure semantics:
    Malformed input (bad data URL, too many pages, duplicate page numbers) is
    rejected before anything is written. After that, a page whose upload,
    completion or decoding fails is logged and skipped like a pipeline page.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
import json
import logging
from typing import List, Optional, Protocol, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as SchemaError

from lessonforge.curriculum.adapters.ports import CompletionServiceProtocol
from lessonforge.curriculum.domain import Question, QuestionDraft, QuestionSet, choice_label, normalize_labels
from lessonforge.curriculum.errors import NotFoundError, PayloadTooLargeError, ValidationError
from lessonforge.curriculum.prompts import quiz_set_instruction
from lessonforge.curriculum.usecases.synthesis import extract_json_object
from lessonforge.storage.keys import make_quiz_page_key
from lessonforge.storage.ports import ObjectStoreProtocol
from lessonforge.vision.images import DecodedImage, decode_data_url

LOG = logging.getLogger(__name__)


class QuizSetRepoProtocol(Protocol):
    def create_set(self, *, owner_sub: str, name: str) -> QuestionSet: ...

    def get_set(self, set_id: str) -> Optional[QuestionSet]: ...

    def add_set_questions(self, set_id: str, drafts: Sequence[QuestionDraft]) -> List[Question]: ...

    def list_set_questions(self, set_id: str) -> List[Question]: ...


@dataclass
class PageInput:
    page_number: int
    data_url: str


@dataclass
class DecodedPage:
    page_number: int
    image: DecodedImage


def decode_pages(pages: Sequence[PageInput], *, max_pages: int, max_bytes: Optional[int] = None) -> List[DecodedPage]:
    """Validate and decode posted pages, sorted by page number.

    `max_bytes` caps each decoded image; larger pages answer 413.
    """
    if not pages:
        raise ValidationError("pages must not be empty")
    if len(pages) > max_pages:
        raise PayloadTooLargeError("page count", limit=max_pages, observed=len(pages))
    seen: set[int] = set()
    out: List[DecodedPage] = []
    for p in pages:
        if p.page_number < 1:
            raise ValidationError("pageNumber must be >= 1")
        if p.page_number in seen:
            raise ValidationError(f"duplicate pageNumber {p.page_number}")
        seen.add(p.page_number)
        out.append(DecodedPage(page_number=p.page_number, image=decode_data_url(p.data_url, max_bytes=max_bytes)))
    return sorted(out, key=lambda d: d.page_number)


def require_owned_set(repo: QuizSetRepoProtocol, *, set_id: str, user_sub: str) -> QuestionSet:
    qs = repo.get_set(set_id)
    if qs is None or qs.owner_sub != user_sub:
        raise NotFoundError()
    return qs


# ----------------------------- Output schema ---------------------------------


class OptionOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    label: Optional[str] = None
    text: str


class ExtractedQuestionOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    question: str = Field(min_length=1)
    options: List[Union[OptionOut, str]] = Field(min_length=2)
    correctOptions: List[str] = Field(default_factory=list)
    explanation: Optional[str] = None


class PageQuestionsOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    questions: List[ExtractedQuestionOut] = Field(default_factory=list)


def to_drafts(decoded: PageQuestionsOut, *, page_number: int) -> List[QuestionDraft]:
    """Map labelled options onto positional choices.

    Choices keep their printed order; the stored label of choice *i* is the
    i-th letter, so correct labels are resolved against the printed labels
    first and dropped when they match nothing.
    """
    drafts = []
    for idx, q in enumerate(decoded.questions):
        texts: List[str] = []
        printed: List[str] = []
        for pos, opt in enumerate(q.options):
            if isinstance(opt, str):
                texts.append(opt.strip())
                printed.append(choice_label(pos))
            else:
                texts.append(opt.text.strip())
                printed.append((opt.label or choice_label(pos)).strip().upper())
        indices = [printed.index(lbl) for lbl in normalize_labels(q.correctOptions) if lbl in printed]
        drafts.append(
            QuestionDraft(
                prompt=q.question.strip(),
                choices=tuple(texts),
                correct_indices=tuple(indices),
                explanation=(q.explanation or "").strip() or None,
                page_number=page_number,
                page_question_index=idx,
            )
        )
    return drafts


def parse_page_questions(raw: str, *, page_number: int) -> List[QuestionDraft]:
    try:
        decoded = PageQuestionsOut.model_validate(extract_json_object(raw))
    except (json.JSONDecodeError, SchemaError) as exc:
        raise ValidationError(f"unparseable questions for page {page_number}") from exc
    return to_drafts(decoded, page_number=page_number)


# ----------------------------- Use cases -------------------------------------


@dataclass
class CreateQuizSetInput:
    owner_sub: str
    name: str
    pages: Sequence[PageInput]


@dataclass
class CreateQuizSetResult:
    question_set: QuestionSet
    questions: List[Question]
    pages_processed: int
    pages_failed: List[int] = field(default_factory=list)


class CreateQuizSetUseCase:
    def __init__(
        self,
        *,
        repo: QuizSetRepoProtocol,
        store: ObjectStoreProtocol,
        completion: CompletionServiceProtocol,
        bucket: str,
        max_pages: int,
        max_workers: int,
        max_image_bytes: Optional[int] = None,
    ) -> None:
        self._repo = repo
        self._store = store
        self._completion = completion
        self._bucket = bucket
        self._max_pages = max_pages
        self._max_workers = max_workers
        self._max_image_bytes = max_image_bytes

    def execute(self, req: CreateQuizSetInput) -> CreateQuizSetResult:
        name = (req.name or "").strip()
        if not name or len(name) > 200:
            raise ValidationError("invalid_name")
        pages = decode_pages(req.pages, max_pages=self._max_pages, max_bytes=self._max_image_bytes)
        qs = self._repo.create_set(owner_sub=req.owner_sub, name=name)

        drafts: List[QuestionDraft] = []
        failed: List[int] = []
        workers = max(1, min(self._max_workers, len(pages)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="quizset") as pool:
            futures = {pool.submit(self._extract_page, qs, page): page.page_number for page in pages}
            for future in as_completed(futures):
                page_number = futures[future]
                try:
                    drafts.extend(future.result())
                except Exception as exc:
                    failed.append(page_number)
                    LOG.warning(
                        "curriculum.quiz_sets action=page_failed set_id=%s page=%s error_type=%s",
                        qs.id,
                        page_number,
                        exc.__class__.__name__,
                    )
        drafts.sort(key=lambda d: (d.page_number or 0, d.page_question_index or 0))
        if drafts:
            self._repo.add_set_questions(qs.id, drafts)
        LOG.info(
            "curriculum.quiz_sets action=created set_id=%s pages=%s failed=%s questions=%s",
            qs.id,
            len(pages),
            len(failed),
            len(drafts),
        )
        return CreateQuizSetResult(
            question_set=qs,
            questions=self._repo.list_set_questions(qs.id),
            pages_processed=len(pages) - len(failed),
            pages_failed=sorted(failed),
        )

    def _extract_page(self, qs: QuestionSet, page: DecodedPage) -> List[QuestionDraft]:
        key = make_quiz_page_key(
            owner_sub=qs.owner_sub,
            set_id=qs.id,
            page_number=page.page_number,
            mime=page.image.mime,
        )
        self._store.put_object(bucket=self._bucket, key=key, body=page.image.data, content_type=page.image.mime)
        raw = self._completion.complete_json(
            task="quiz_set",
            instruction=quiz_set_instruction(page.page_number),
            content="",
            images=[page.image.data],
        )
        return parse_page_questions(raw, page_number=page.page_number)


class GetQuizSetUseCase:
    def __init__(self, repo: QuizSetRepoProtocol) -> None:
        self._repo = repo

    def execute(self, *, set_id: str, user_sub: str) -> Tuple[QuestionSet, List[Question]]:
        qs = require_owned_set(self._repo, set_id=set_id, user_sub=user_sub)
        return qs, self._repo.list_set_questions(set_id)


__all__ = [
    "QuizSetRepoProtocol",
    "PageInput",
    "DecodedPage",
    "decode_pages",
    "require_owned_set",
    "to_drafts",
    "parse_page_questions",
    "CreateQuizSetInput",
    "CreateQuizSetResult",
    "CreateQuizSetUseCase",
    "GetQuizSetUseCase",
]
