"""
Question-set API routes: extraction from page images, practice sessions and
answer-key reconciliation.

Permissions:
    Sets are personal to their creator; foreign sets and sessions answer 404.
    Correct answers are included in set reads because the owner reviews and
    recorrects them.
"""
from __future__ import annotations

import asyncio
from typing import List, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field

from lessonforge.curriculum.errors import ValidationError
from lessonforge.curriculum.usecases.answer_key import RecorrectInput, RecorrectQuizSetUseCase
from lessonforge.curriculum.usecases.quiz_sets import (
    CreateQuizSetInput,
    CreateQuizSetUseCase,
    GetQuizSetUseCase,
    PageInput,
)
from lessonforge.curriculum.usecases.sessions import (
    CompleteSessionInput,
    CompleteSessionUseCase,
    CreateSessionInput,
    CreateSessionUseCase,
    GetSessionUseCase,
    RecordAnswerInput,
    RecordAnswerUseCase,
)
from lessonforge.web.routes.security import current_sub, ok
from lessonforge.web.serializers import question_json, question_set_json, session_json
from lessonforge.web.wiring import services_of

sets_router = APIRouter(tags=["Question sets"])


class PageBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    pageNumber: int
    dataUrl: str = Field(min_length=1)


class CreateSetBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    pages: List[PageBody]


class RecorrectBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    pages: List[PageBody]


class CreateSessionBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mode: str = "practice"
    totalQuestions: Optional[int] = None
    questionIds: Optional[List[str]] = None


class AnswerBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    questionId: str
    selectedOption: str
    isCorrect: Optional[bool] = None
    timeSpentSeconds: Optional[int] = None


class UpdateSessionBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sessionId: str
    answer: Optional[AnswerBody] = None
    complete: bool = False
    correctAnswers: Optional[int] = None
    totalTimeSeconds: Optional[int] = None


def _pages(items: List[PageBody]) -> List[PageInput]:
    return [PageInput(page_number=p.pageNumber, data_url=p.dataUrl) for p in items]


@sets_router.post("/sets")
async def create_set(request: Request, body: CreateSetBody):
    """Extract questions from posted page images into a new set.

    Pages that fail extraction are skipped and reported in `pagesFailed`.
    Extraction calls the model per page, so it runs in a worker thread.
    """
    services = services_of(request)
    use_case = CreateQuizSetUseCase(
        repo=services.repo,
        store=services.store,
        completion=services.completion,
        bucket=services.quiz_bucket,
        max_pages=services.pipeline.quiz_max_pages,
        max_workers=services.pipeline.max_workers,
        max_image_bytes=services.max_upload_bytes,
    )
    result = await asyncio.to_thread(
        use_case.execute, CreateQuizSetInput(owner_sub=current_sub(request), name=body.name, pages=_pages(body.pages))
    )
    return ok(
        {
            "set": question_set_json(result.question_set),
            "questions": [question_json(q, include_answers=True) for q in result.questions],
            "pagesProcessed": result.pages_processed,
            "pagesFailed": result.pages_failed,
        },
        status_code=201,
    )


@sets_router.get("/sets/{set_id}")
async def get_set(request: Request, set_id: str):
    qs, questions = GetQuizSetUseCase(services_of(request).repo).execute(set_id=set_id, user_sub=current_sub(request))
    return ok({"set": question_set_json(qs), "questions": [question_json(q, include_answers=True) for q in questions]})


@sets_router.post("/sets/{set_id}/session")
async def create_session(request: Request, set_id: str, body: CreateSessionBody):
    session = CreateSessionUseCase(services_of(request).repo).execute(
        CreateSessionInput(
            set_id=set_id,
            user_sub=current_sub(request),
            mode=body.mode,
            total_questions=body.totalQuestions,
            question_ids=body.questionIds,
        )
    )
    return ok({"session": session_json(session)}, status_code=201)


@sets_router.get("/sets/{set_id}/session")
async def get_session(request: Request, set_id: str, sessionId: Optional[str] = None):
    session = GetSessionUseCase(services_of(request).repo).execute(
        set_id=set_id, user_sub=current_sub(request), session_id=sessionId
    )
    return ok({"session": session_json(session) if session else None})


@sets_router.patch("/sets/{set_id}/session")
async def update_session(request: Request, set_id: str, body: UpdateSessionBody):
    """Record one answer, or complete the session when `complete` is true."""
    repo = services_of(request).repo
    user_sub = current_sub(request)
    if body.complete:
        session = CompleteSessionUseCase(repo).execute(
            CompleteSessionInput(
                set_id=set_id,
                user_sub=user_sub,
                session_id=body.sessionId,
                correct_answers=body.correctAnswers,
                total_time_seconds=body.totalTimeSeconds,
            )
        )
        return ok({"session": session_json(session)})
    if body.answer is None:
        raise ValidationError("answer or complete is required")
    is_correct = RecordAnswerUseCase(repo).execute(
        RecordAnswerInput(
            set_id=set_id,
            user_sub=user_sub,
            session_id=body.sessionId,
            question_id=body.answer.questionId,
            selected_option=body.answer.selectedOption,
            is_correct=body.answer.isCorrect,
            time_spent_seconds=body.answer.timeSpentSeconds,
        )
    )
    return ok({"success": True, "isCorrect": is_correct})


@sets_router.post("/sets/{set_id}/recorrect")
async def recorrect_set(request: Request, set_id: str, body: RecorrectBody):
    services = services_of(request)
    use_case = RecorrectQuizSetUseCase(
        repo=services.repo,
        store=services.store,
        completion=services.completion,
        bucket=services.quiz_bucket,
        max_pages=services.pipeline.quiz_max_pages,
        max_image_bytes=services.max_upload_bytes,
    )
    summary = await asyncio.to_thread(
        use_case.execute, RecorrectInput(set_id=set_id, user_sub=current_sub(request), pages=_pages(body.pages))
    )
    return ok(
        {
            "summary": {
                "totalQuestions": summary.total_questions,
                "extractedAnswers": summary.extracted_answers,
                "updated": summary.updated,
                "skippedMissing": summary.skipped_missing,
                "skippedInvalid": summary.skipped_invalid,
            }
        }
    )
