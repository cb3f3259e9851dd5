"""
Lesson API routes: creation, documents, processing, curriculum data, progress
and quiz submission.

Design:
    Thin adapter. Handlers parse the body, call one use case and serialize the
    result; `CurriculumError`s propagate to the app-level handler, which maps
    them to `{ "error": code, "detail"? }` with no-store cache headers.

Permissions:
    Every route requires an authenticated caller (bearer middleware). Lessons
    are personal; foreign lessons answer 404.
"""
from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Union

from fastapi import APIRouter, BackgroundTasks, Request
from pydantic import BaseModel, ConfigDict, Field

from lessonforge.curriculum.usecases.lessons import (
    CreateLessonUseCase,
    GetLessonDataUseCase,
    GetProcessingStatusUseCase,
    RegisterDocumentInput,
    RegisterDocumentUseCase,
)
from lessonforge.curriculum.usecases.pipeline import ProcessLessonUseCase, StartProcessingInput
from lessonforge.curriculum.usecases.progress import GetProgressUseCase, InitializeProgressUseCase
from lessonforge.curriculum.usecases.quiz import SubmitQuizInput, SubmitQuizUseCase
from lessonforge.web.routes.security import current_sub, ok
from lessonforge.web.serializers import document_json, lesson_json, progress_json, section_json
from lessonforge.web.wiring import services_of

lessons_router = APIRouter(tags=["Lessons"])


class CreateLessonBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str


class RegisterDocumentBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    category: str = "lesson"
    filePath: str
    sizeBytes: Optional[int] = None
    pageCount: Optional[int] = None
    mimeType: Optional[str] = None


class SubmitQuizBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sectionId: str = Field(min_length=1)
    answers: Dict[str, Union[int, List[int], None]]


@lessons_router.post("/lessons")
async def create_lesson(request: Request, body: CreateLessonBody):
    services = services_of(request)
    lesson = CreateLessonUseCase(services.repo).execute(owner_sub=current_sub(request), name=body.name)
    return ok({"lesson": lesson_json(lesson)}, status_code=201)


@lessons_router.post("/lessons/{lesson_id}/documents")
async def register_document(request: Request, lesson_id: str, body: RegisterDocumentBody):
    services = services_of(request)
    use_case = RegisterDocumentUseCase(
        services.repo,
        max_upload_bytes=services.max_upload_bytes,
        max_pages=services.pipeline.lesson_max_pages,
    )
    doc = use_case.execute(
        RegisterDocumentInput(
            lesson_id=lesson_id,
            user_sub=current_sub(request),
            name=body.name,
            category=body.category,
            file_path=body.filePath,
            size_bytes=body.sizeBytes,
            page_count=body.pageCount,
            mime_type=body.mimeType or "application/pdf",
        )
    )
    return ok({"document": document_json(doc)}, status_code=201)


@lessons_router.post("/lessons/{lesson_id}/process")
async def start_processing(request: Request, lesson_id: str, background: BackgroundTasks):
    """Claim the lesson and schedule the run; answers with the page total.

    Validation and the claim happen in the request so conflicts and missing
    content surface as 4xx; the fan-out itself runs after the response.
    Measuring the documents downloads them, so `start` runs off the event loop.
    """
    services = services_of(request)
    use_case = ProcessLessonUseCase(
        repo=services.repo,
        store=services.store,
        completion=services.completion,
        config=services.pipeline,
        bucket=services.lessons_bucket,
        renderer_factory=services.renderer_factory,
        max_document_bytes=services.max_upload_bytes,
    )
    started = await asyncio.to_thread(
        use_case.start, StartProcessingInput(lesson_id=lesson_id, user_sub=current_sub(request))
    )
    background.add_task(use_case.run, started)
    return ok({"totalPages": started.total_pages}, status_code=202)


@lessons_router.get("/lessons/{lesson_id}/processing")
async def processing_status(request: Request, lesson_id: str):
    status = GetProcessingStatusUseCase(services_of(request).repo).execute(lesson_id=lesson_id, user_sub=current_sub(request))
    return ok(
        {
            "status": status.status,
            "message": status.message,
            "percent": status.percent,
            "errorMessage": status.error_message,
        }
    )


@lessons_router.get("/lessons/{lesson_id}/data")
async def lesson_data(request: Request, lesson_id: str):
    services = services_of(request)
    data = GetLessonDataUseCase(
        services.repo,
        store=services.store,
        bucket=services.lessons_bucket,
        url_ttl_seconds=services.url_ttl_seconds,
    ).execute(lesson_id=lesson_id, user_sub=current_sub(request))
    return ok(
        {
            "lesson": lesson_json(data.lesson),
            "documents": [document_json(d) for d in data.documents],
            "sections": [section_json(s) for s in data.sections],
            "progress": [progress_json(v) for v in data.progress],
            "documentUrls": data.document_urls,
            "generatedContent": data.generated_content,
        }
    )


@lessons_router.post("/lessons/{lesson_id}/progress")
async def initialize_progress(request: Request, lesson_id: str):
    views = InitializeProgressUseCase(services_of(request).repo).execute(lesson_id=lesson_id, user_sub=current_sub(request))
    return ok({"sections": [progress_json(v) for v in views]})


@lessons_router.get("/lessons/{lesson_id}/progress")
async def get_progress(request: Request, lesson_id: str):
    view = GetProgressUseCase(services_of(request).repo).execute(lesson_id=lesson_id, user_sub=current_sub(request))
    return ok(
        {
            "lessonId": view.lesson_id,
            "lessonName": view.lesson_name,
            "overallProgress": view.overall_progress,
            "completedSections": view.completed_sections,
            "totalSections": view.total_sections,
            "sections": [progress_json(v) for v in view.sections],
        }
    )


@lessons_router.post("/lessons/{lesson_id}/submit")
async def submit_quiz(request: Request, lesson_id: str, body: SubmitQuizBody):
    result = SubmitQuizUseCase(services_of(request).repo).execute(
        SubmitQuizInput(
            lesson_id=lesson_id,
            user_sub=current_sub(request),
            section_id=body.sectionId,
            answers=body.answers,
        )
    )
    return ok(
        {
            "score": result.score,
            "passed": result.passed,
            "correctCount": result.correct_count,
            "totalQuestions": result.total_questions,
            "threshold": result.threshold,
            "attempts": result.attempts,
            "nextSectionId": result.next_section_id,
            "results": {
                r.question_id: {
                    "correct": r.correct,
                    "submitted": r.submitted,
                    "correctIndices": r.correct_indices,
                    "explanation": r.explanation,
                }
                for r in result.results
            },
        }
    )
