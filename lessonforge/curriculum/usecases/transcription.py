"""
Transcription worker: one page in, one transcript row out.

Intent:
    Obtain the page bitmap, store it under a stable key, hand a signed URL and
    the bytes to the completion service, and upsert the transcript on
    (document_id, page_number). Running it twice for the same page overwrites
    both the stored bitmap and the rows.

Errors:
    Every failure from a collaborator (renderer, object store, completion
    service) leaves this component as `PageTranscriptionError`, which the
    orchestrator treats as "skip this page".
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional, Protocol

from lessonforge.curriculum.adapters.ports import CompletionServiceProtocol
from lessonforge.curriculum.domain import PageImage, Transcript
from lessonforge.curriculum.errors import UpstreamServiceError
from lessonforge.curriculum.prompts import VISUAL_MARKERS
from lessonforge.storage.keys import make_page_image_key
from lessonforge.storage.ports import ObjectStoreProtocol
from lessonforge.vision.pdf_renderer import RenderPage

LOG = logging.getLogger(__name__)

PAGE_URL_TTL_SECONDS = 3600


class PageSourceProtocol(Protocol):
    def render_page(self, page_number: int) -> RenderPage:
        ...


class TranscriptRepoProtocol(Protocol):
    def upsert_page_image(self, image: PageImage) -> None:
        ...

    def upsert_transcript(self, transcript: Transcript) -> None:
        ...


class PageTranscriptionError(UpstreamServiceError):
    code = "page_transcription_failed"

    def __init__(self, page_number: int, stage: str, cause: Exception) -> None:
        super().__init__(f"page {page_number} failed at {stage}: {cause.__class__.__name__}")
        self.page_number = page_number
        self.stage = stage
        self.cause = cause


def detect_visual_content(text: str) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in VISUAL_MARKERS)


@dataclass
class TranscribePageInput:
    lesson_id: str
    document_id: str
    page_number: int
    source: PageSourceProtocol


class TranscribePageUseCase:
    def __init__(
        self,
        *,
        repo: TranscriptRepoProtocol,
        store: ObjectStoreProtocol,
        completion: CompletionServiceProtocol,
        bucket: str,
    ) -> None:
        self._repo = repo
        self._store = store
        self._completion = completion
        self._bucket = bucket

    def execute(self, req: TranscribePageInput) -> Transcript:
        page_number = req.page_number
        stage = "render"
        try:
            page = req.source.render_page(page_number)
            stage = "upload"
            key = make_page_image_key(lesson_id=req.lesson_id, document_id=req.document_id, page_number=page_number)
            self._store.put_object(bucket=self._bucket, key=key, body=page.data, content_type="image/png")
            stage = "presign"
            url: Optional[str] = self._store.presign_download(
                bucket=self._bucket, key=key, expires_in=PAGE_URL_TTL_SECONDS
            )
            stage = "persist_image"
            self._repo.upsert_page_image(
                PageImage(
                    document_id=req.document_id,
                    page_number=page_number,
                    image_key=key,
                    width=page.width,
                    height=page.height,
                )
            )
            stage = "transcribe"
            result = self._completion.transcribe_page(image_png=page.data, image_url=url, page_number=page_number)
            text = (result.text or "").strip()
            if not text:
                raise UpstreamServiceError("empty_transcript")
            has_visual = (
                result.has_visual_content if result.has_visual_content is not None else detect_visual_content(text)
            )
            transcript = Transcript(
                document_id=req.document_id,
                page_number=page_number,
                text=text,
                has_visual_content=bool(has_visual),
            )
            stage = "persist_transcript"
            self._repo.upsert_transcript(transcript)
        except Exception as exc:
            raise PageTranscriptionError(page_number, stage, exc) from exc
        LOG.debug(
            "curriculum.transcription action=page_done document_id=%s page=%s chars=%s visual=%s",
            req.document_id,
            page_number,
            len(text),
            transcript.has_visual_content,
        )
        return transcript


__all__ = [
    "PageSourceProtocol",
    "TranscriptRepoProtocol",
    "PageTranscriptionError",
    "TranscribePageInput",
    "TranscribePageUseCase",
    "detect_visual_content",
]
