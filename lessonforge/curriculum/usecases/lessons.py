"""
Lesson lifecycle use cases: create, register documents, read data and status.

Permissions:
    Lessons are personal. Every read or write checks `owner_sub` and answers
    NotFoundError for foreign lessons so existence does not leak.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Dict, List, Optional, Protocol

from lessonforge.curriculum.domain import DOCUMENT_CATEGORIES, CONTENT_CATEGORY, Document, Lesson, Progress, Section
from lessonforge.curriculum.errors import PayloadTooLargeError, ValidationError
from lessonforge.curriculum.usecases.progress import SectionProgressView, effective_progress, require_owned_lesson
from lessonforge.storage.ports import ObjectStoreProtocol

LOG = logging.getLogger(__name__)

PDF_MIME = "application/pdf"


class LessonRepoProtocol(Protocol):
    def create_lesson(self, *, owner_sub: str, name: str) -> Lesson: ...

    def get_lesson(self, lesson_id: str) -> Optional[Lesson]: ...

    def add_document(
        self,
        *,
        lesson_id: str,
        name: str,
        category: str,
        file_path: str,
        mime_type: str,
        size_bytes: Optional[int],
        page_count: int,
    ) -> Document: ...

    def list_documents(self, lesson_id: str, *, category: Optional[str] = None) -> List[Document]: ...

    def list_sections(self, lesson_id: str) -> List[Section]: ...

    def list_progress(self, *, user_sub: str, lesson_id: str) -> List[Progress]: ...


class CreateLessonUseCase:
    def __init__(self, repo: LessonRepoProtocol) -> None:
        self._repo = repo

    def execute(self, *, owner_sub: str, name: str) -> Lesson:
        normalized = (name or "").strip()
        if not normalized or len(normalized) > 200:
            raise ValidationError("invalid_name")
        lesson = self._repo.create_lesson(owner_sub=owner_sub, name=normalized)
        LOG.info("curriculum.lessons action=created lesson_id=%s", lesson.id)
        return lesson


@dataclass
class RegisterDocumentInput:
    lesson_id: str
    user_sub: str
    name: str
    category: str
    file_path: str
    size_bytes: Optional[int]
    page_count: Optional[int] = None
    mime_type: str = PDF_MIME


def _valid_object_key(key: str) -> bool:
    if not key or key.startswith("/") or "\\" in key:
        return False
    return all(part not in ("", ".", "..") for part in key.split("/"))


class RegisterDocumentUseCase:
    """Attach an uploaded source file to a lesson.

    Behavior:
        - `category` must be `lesson` or `answer_key`; lesson documents must
          be PDFs.
        - Size and declared page count are checked against the limits and
          answer 413 with the limit and the observed value.
        - A missing page count is stored as 0 and derived when processing.
    """

    def __init__(self, repo: LessonRepoProtocol, *, max_upload_bytes: int, max_pages: int) -> None:
        self._repo = repo
        self._max_bytes = max_upload_bytes
        self._max_pages = max_pages

    def execute(self, req: RegisterDocumentInput) -> Document:
        require_owned_lesson(self._repo, lesson_id=req.lesson_id, user_sub=req.user_sub)
        name = (req.name or "").strip()
        if not name or len(name) > 255:
            raise ValidationError("invalid_document_name")
        if req.category not in DOCUMENT_CATEGORIES:
            raise ValidationError("invalid_category")
        mime = (req.mime_type or "").strip().lower() or PDF_MIME
        if req.category == CONTENT_CATEGORY and mime != PDF_MIME:
            raise ValidationError("lesson documents must be PDF")
        if not _valid_object_key(req.file_path):
            raise ValidationError("invalid_file_path")
        if req.size_bytes is not None:
            if req.size_bytes < 0:
                raise ValidationError("invalid_size")
            if req.size_bytes > self._max_bytes:
                raise PayloadTooLargeError("document size", limit=self._max_bytes, observed=req.size_bytes)
        page_count = req.page_count or 0
        if page_count < 0:
            raise ValidationError("invalid_page_count")
        if page_count > self._max_pages:
            raise PayloadTooLargeError("document page count", limit=self._max_pages, observed=page_count)
        doc = self._repo.add_document(
            lesson_id=req.lesson_id,
            name=name,
            category=req.category,
            file_path=req.file_path,
            mime_type=mime,
            size_bytes=req.size_bytes,
            page_count=page_count,
        )
        LOG.info(
            "curriculum.lessons action=document_added lesson_id=%s document_id=%s category=%s pages=%s",
            req.lesson_id,
            doc.id,
            doc.category,
            doc.page_count,
        )
        return doc


@dataclass
class LessonData:
    lesson: Lesson
    documents: List[Document]
    sections: List[Section]
    progress: List[SectionProgressView]
    document_urls: Dict[str, str] = field(default_factory=dict)
    generated_content: Dict[str, str] = field(default_factory=dict)


class GetLessonDataUseCase:
    """Lesson, ordered sections with ordered questions, progress, signed URLs.

    `generated_content` maps section id to its synthesized summary. Signed
    URLs are issued for content documents only; one failing URL is logged and
    left out rather than failing the whole read.
    """

    def __init__(self, repo: LessonRepoProtocol, *, store: ObjectStoreProtocol, bucket: str, url_ttl_seconds: int) -> None:
        self._repo = repo
        self._store = store
        self._bucket = bucket
        self._ttl = url_ttl_seconds

    def execute(self, *, lesson_id: str, user_sub: str) -> LessonData:
        lesson = require_owned_lesson(self._repo, lesson_id=lesson_id, user_sub=user_sub)
        documents = self._repo.list_documents(lesson_id)
        sections = self._repo.list_sections(lesson_id)
        for s in sections:
            s.questions.sort(key=lambda q: q.position)
        progress = effective_progress(sections, self._repo.list_progress(user_sub=user_sub, lesson_id=lesson_id))
        urls: Dict[str, str] = {}
        for doc in documents:
            if doc.category != CONTENT_CATEGORY:
                continue
            try:
                urls[doc.id] = self._store.presign_download(bucket=self._bucket, key=doc.file_path, expires_in=self._ttl)
            except Exception as exc:
                LOG.warning(
                    "curriculum.lessons action=presign_failed lesson_id=%s document_id=%s error_type=%s",
                    lesson_id,
                    doc.id,
                    exc.__class__.__name__,
                )
        return LessonData(
            lesson=lesson,
            documents=documents,
            sections=sections,
            progress=progress,
            document_urls=urls,
            generated_content={s.id: s.summary for s in sections if s.summary},
        )


@dataclass
class ProcessingStatus:
    status: str
    message: Optional[str]
    percent: int
    error_message: Optional[str]


class GetProcessingStatusUseCase:
    def __init__(self, repo: LessonRepoProtocol) -> None:
        self._repo = repo

    def execute(self, *, lesson_id: str, user_sub: str) -> ProcessingStatus:
        lesson = require_owned_lesson(self._repo, lesson_id=lesson_id, user_sub=user_sub)
        return ProcessingStatus(
            status=lesson.status,
            message=lesson.processing_message,
            percent=lesson.processing_percent,
            error_message=lesson.error_message,
        )


__all__ = [
    "LessonRepoProtocol",
    "CreateLessonUseCase",
    "RegisterDocumentInput",
    "RegisterDocumentUseCase",
    "LessonData",
    "GetLessonDataUseCase",
    "ProcessingStatus",
    "GetProcessingStatusUseCase",
]
