"""
Structure synthesizer: aggregated transcript in, ordered sections out.

Intent:
    Ask the completion service to split the course into sections with
    summaries and quizzes, then decode its answer with a strict schema into a
    tagged result: `ParsedCurriculum` or `ParseFailure(raw, reason)`.

Design:
    - Input is "Page N:\\n<text>" blocks in page order joined by a rule line,
      cut at a fixed character count so the same transcript always yields the
      same request.
    - Schema checks go beyond shape: the page ranges must tile [1, total]
      without gaps or overlaps and every section must carry exactly the
      configured number of questions. Any violation is a parse failure; the
      caller degrades to zero sections instead of repairing the output.
    - Completion-service failures are not parse failures: they escape as
      `UpstreamServiceError` and fail the run.
"""
from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as SchemaError, model_validator

from lessonforge.curriculum.adapters.ports import CompletionServiceProtocol
from lessonforge.curriculum.domain import QuestionDraft, SectionDraft, unique_indices
from lessonforge.curriculum.errors import CurriculumError, UpstreamServiceError
from lessonforge.curriculum.prompts import curriculum_instruction

LOG = logging.getLogger(__name__)

PAGE_SEPARATOR = "\n\n---\n\n"


# ----------------------------- Tagged result ---------------------------------


@dataclass(frozen=True)
class ParsedCurriculum:
    sections: Tuple[SectionDraft, ...]


@dataclass(frozen=True)
class ParseFailure:
    raw: str
    reason: str


SynthesisOutcome = Union[ParsedCurriculum, ParseFailure]


# ----------------------------- Output schema ---------------------------------


class QuestionOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    question: str = Field(min_length=1)
    options: List[str] = Field(min_length=2)
    correctIndex: Optional[int] = None
    correctIndices: Optional[List[int]] = None
    explanation: Optional[str] = None

    @model_validator(mode="after")
    def _check_answer(self) -> "QuestionOut":
        indices = self.answer_indices()
        if not indices:
            raise ValueError("question has no correct answer")
        for i in indices:
            if i < 0 or i >= len(self.options):
                raise ValueError(f"correct index {i} out of range")
        return self

    def answer_indices(self) -> List[int]:
        if self.correctIndices:
            return unique_indices(self.correctIndices)
        if self.correctIndex is not None:
            return [self.correctIndex]
        return []


class SectionOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1)
    startPage: int = Field(ge=1)
    endPage: int = Field(ge=1)
    summary: str = ""
    questions: List[QuestionOut]


class CurriculumOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sections: List[SectionOut] = Field(min_length=1)


# ----------------------------- Helpers ---------------------------------------


def build_synthesis_input(pages: Sequence[Tuple[int, str]], *, max_chars: int) -> str:
    """Concatenate (page_number, text) pairs in page order and truncate."""
    blocks = [f"Page {n}:\n{text}" for n, text in sorted(pages, key=lambda p: p[0])]
    return PAGE_SEPARATOR.join(blocks)[:max_chars]


def extract_json_object(raw: str) -> object:
    """Decode a JSON object, tolerating code fences or chatter around it."""
    text = (raw or "").strip()
    if text.startswith("```"):
        lines = text.splitlines()
        if len(lines) >= 3 and lines[-1].strip().startswith("```"):
            text = "\n".join(lines[1:-1]).strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise
        return json.loads(text[start : end + 1])


def _coverage_problem(sections: Sequence[SectionOut], total_pages: int) -> Optional[str]:
    expected_start = 1
    for idx, s in enumerate(sections):
        if s.endPage < s.startPage:
            return f"section {idx} has an inverted range"
        if s.startPage < expected_start:
            return f"section {idx} overlaps the previous one"
        if s.startPage > expected_start:
            return f"gap before section {idx} (pages {expected_start}-{s.startPage - 1})"
        expected_start = s.endPage + 1
    if expected_start - 1 != total_pages:
        return f"sections end at page {expected_start - 1}, expected {total_pages}"
    return None


def parse_curriculum(raw: str, *, total_pages: int, questions_per_section: int) -> SynthesisOutcome:
    try:
        payload = extract_json_object(raw)
    except json.JSONDecodeError as exc:
        return ParseFailure(raw=raw, reason=f"invalid_json: {exc.msg}")
    try:
        decoded = CurriculumOut.model_validate(payload)
    except SchemaError as exc:
        return ParseFailure(raw=raw, reason=f"schema: {exc.error_count()} error(s)")
    problem = _coverage_problem(decoded.sections, total_pages)
    if problem:
        return ParseFailure(raw=raw, reason=f"coverage: {problem}")
    for idx, s in enumerate(decoded.sections):
        if len(s.questions) != questions_per_section:
            return ParseFailure(
                raw=raw,
                reason=f"section {idx} has {len(s.questions)} questions, expected {questions_per_section}",
            )
    drafts = tuple(
        SectionDraft(
            title=s.title.strip(),
            start_page=s.startPage,
            end_page=s.endPage,
            summary=s.summary.strip(),
            questions=tuple(
                QuestionDraft(
                    prompt=q.question.strip(),
                    choices=tuple(o.strip() for o in q.options),
                    correct_indices=tuple(q.answer_indices()),
                    explanation=(q.explanation or "").strip() or None,
                )
                for q in s.questions
            ),
        )
        for s in decoded.sections
    )
    return ParsedCurriculum(sections=drafts)


# ----------------------------- Use case --------------------------------------


@dataclass
class SynthesizeInput:
    lesson_id: str
    pages: Sequence[Tuple[int, str]]
    total_pages: int


class SynthesizeCurriculumUseCase:
    def __init__(
        self,
        *,
        completion: CompletionServiceProtocol,
        max_chars: int,
        questions_per_section: int,
    ) -> None:
        self._completion = completion
        self._max_chars = max_chars
        self._questions = questions_per_section

    def execute(self, req: SynthesizeInput) -> SynthesisOutcome:
        content = build_synthesis_input(req.pages, max_chars=self._max_chars)
        instruction = curriculum_instruction(
            questions_per_section=self._questions,
            total_pages=req.total_pages,
        )
        try:
            raw = self._completion.complete_json(task="curriculum", instruction=instruction, content=content)
        except CurriculumError:
            raise
        except Exception as exc:
            raise UpstreamServiceError(f"synthesis_failed:{exc.__class__.__name__}") from exc
        outcome = parse_curriculum(raw, total_pages=req.total_pages, questions_per_section=self._questions)
        if isinstance(outcome, ParseFailure):
            LOG.warning(
                "curriculum.synthesis action=parse_failure lesson_id=%s reason=%s raw_chars=%s",
                req.lesson_id,
                outcome.reason,
                len(outcome.raw or ""),
            )
        return outcome


__all__ = [
    "PAGE_SEPARATOR",
    "ParsedCurriculum",
    "ParseFailure",
    "SynthesisOutcome",
    "build_synthesis_input",
    "extract_json_object",
    "parse_curriculum",
    "SynthesizeInput",
    "SynthesizeCurriculumUseCase",
]
