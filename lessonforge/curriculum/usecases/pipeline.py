"""
Page pipeline orchestrator: lesson documents -> transcripts -> curriculum.

Intent:
    Drive a lesson from `draft`/`error`/`ready` to `ready` (or `error`):
      1. Claim the processing lease (heartbeat + run id) on the lesson row and
         open every content document once to record its real page count.
      2. For each content document, in creation order: download, open, then
         fan out one transcription task per page on a bounded thread pool and
         wait until every task has settled.
      3. Hand the surviving transcripts (global page numbers) to the
         synthesizer and replace the lesson's sections.

Failure semantics:
    - One page failing is logged and skipped; its transcript is just absent.
    - A document that cannot be downloaded or opened aborts the run and the
      lesson lands in `error` with a sanitized message.
    - A synthesis parse failure is not fatal: zero sections, lesson `ready`.
    - No retry inside a run; a retry is a new run from scratch.
    - Every lesson write carries the run id. Once the run has been reaped or
      taken over, its writes are refused and the run stops (`lease_lost`).

Progress:
    Milestones 10/30/50/80/100 are always written. Per-page messages between
    30 and 50 are advisory; their relative order is not guaranteed.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import re
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from lessonforge.curriculum.adapters.ports import CompletionServiceProtocol
from lessonforge.curriculum.config import PipelineConfig
from lessonforge.curriculum.domain import CONTENT_CATEGORY, Document, Lesson, Section, SectionDraft, Transcript
from lessonforge.curriculum.errors import (
    CurriculumError,
    DocumentProcessingError,
    LeaseLostError,
    NoContentError,
    NotFoundError,
    PayloadTooLargeError,
    ProcessingConflictError,
)
from lessonforge.curriculum.usecases.synthesis import (
    ParsedCurriculum,
    SynthesizeCurriculumUseCase,
    SynthesizeInput,
)
from lessonforge.curriculum.usecases.transcription import (
    PageSourceProtocol,
    PageTranscriptionError,
    TranscribePageInput,
    TranscribePageUseCase,
)
from lessonforge.curriculum.workers import telemetry
from lessonforge.storage.ports import ObjectStoreProtocol
from lessonforge.vision.pdf_renderer import PdfPageRenderer

LOG = logging.getLogger(__name__)

_ERROR_MAX_LENGTH = 256
_SENSITIVE_TOKEN_PATTERN = re.compile(r"(?i)(secret|token|password|key|signature)[-_a-z0-9]*\s*[=:]\s*\S+")
_URL_QUERY_PATTERN = re.compile(r"(https?://\S+?)\?\S+")


def sanitize_error_message(value: Optional[str]) -> Optional[str]:
    """Strip secrets and signed-URL queries, truncate for safe exposure."""
    if not value:
        return None
    collapsed = " ".join(str(value).split())
    if not collapsed:
        return None
    scrubbed = _SENSITIVE_TOKEN_PATTERN.sub("[redacted]", collapsed)
    scrubbed = _URL_QUERY_PATTERN.sub(r"\1?[redacted]", scrubbed)
    if len(scrubbed) > _ERROR_MAX_LENGTH:
        scrubbed = scrubbed[: _ERROR_MAX_LENGTH - 3].rstrip() + "..."
    return scrubbed


class PipelineRepoProtocol(Protocol):
    def get_lesson(self, lesson_id: str) -> Optional[Lesson]: ...

    def claim_processing(self, lesson_id: str, *, now: datetime, lease_seconds: int, message: str) -> Optional[Lesson]: ...

    def update_processing(self, lesson_id: str, *, run_id: str, message: str, percent: int, now: datetime) -> bool: ...

    def finish_processing(
        self,
        lesson_id: str,
        *,
        run_id: str,
        status: str,
        message: str,
        percent: int,
        error_message: Optional[str],
        now: datetime,
    ) -> bool: ...

    def list_documents(self, lesson_id: str, *, category: Optional[str] = None) -> List[Document]: ...

    def set_document_page_count(self, document_id: str, page_count: int) -> None: ...

    def upsert_page_image(self, image) -> None: ...

    def upsert_transcript(self, transcript: Transcript) -> None: ...

    def replace_sections(
        self,
        lesson_id: str,
        drafts: Sequence[SectionDraft],
        *,
        pass_threshold: int,
        run_id: str,
    ) -> Optional[List[Section]]: ...


class RenderedDocument(PageSourceProtocol, Protocol):
    @property
    def page_count(self) -> int: ...

    def close(self) -> None: ...


RendererFactory = Callable[[bytes], RenderedDocument]


@dataclass
class StartProcessingInput:
    lesson_id: str
    user_sub: str


@dataclass
class StartedRun:
    lesson_id: str
    run_id: str
    documents: List[Document]
    total_pages: int


@dataclass
class RunResult:
    lesson_id: str
    status: str
    total_pages: int
    pages_transcribed: int
    pages_failed: int
    sections_created: int
    synthesis_failed: bool = False
    error_message: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProcessLessonUseCase:
    """Orchestrates one processing run for a lesson.

    `start()` validates and claims; `run()` does the work and never raises for
    pipeline failures (they end up on the lesson row). `execute()` does both.
    """

    def __init__(
        self,
        *,
        repo: PipelineRepoProtocol,
        store: ObjectStoreProtocol,
        completion: CompletionServiceProtocol,
        config: PipelineConfig,
        bucket: str,
        renderer_factory: Optional[RendererFactory] = None,
        max_document_bytes: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repo
        self._store = store
        self._cfg = config
        self._bucket = bucket
        self._max_document_bytes = max_document_bytes
        self._clock = clock
        self._renderer_factory = renderer_factory or (lambda data: PdfPageRenderer(data, dpi=config.render_dpi))
        self._transcriber = TranscribePageUseCase(repo=repo, store=store, completion=completion, bucket=bucket)
        self._synthesizer = SynthesizeCurriculumUseCase(
            completion=completion,
            max_chars=config.max_transcript_chars,
            questions_per_section=config.questions_per_section,
        )

    # --- Phase 1: validate + claim -----------------------------------------

    def start(self, req: StartProcessingInput) -> StartedRun:
        """Validate ownership and content, take the lease and measure documents.

        Every content document is opened once so page numbering and the total
        rest on the real page counts, never on the declared ones.

        Raises:
            NotFoundError: unknown lesson or not owned by the caller.
            NoContentError: no content document, or all have zero pages.
            ProcessingConflictError: a run with a live heartbeat holds the lesson.
            DocumentProcessingError / PayloadTooLargeError: a document cannot be
                read or exceeds a limit (the lesson is left in `error`).
        """
        lesson = self._repo.get_lesson(req.lesson_id)
        if lesson is None or lesson.owner_sub != req.user_sub:
            raise NotFoundError()
        documents = self._repo.list_documents(req.lesson_id, category=CONTENT_CATEGORY)
        if not documents:
            raise NoContentError("lesson has no content documents")
        claimed = self._repo.claim_processing(
            req.lesson_id,
            now=self._clock(),
            lease_seconds=self._cfg.lease_seconds,
            message="Starting processing",
        )
        if claimed is None or not claimed.run_id:
            raise ProcessingConflictError("lesson is already being processed")
        run_id = claimed.run_id
        telemetry.adjust_gauge(telemetry.RUNS_INFLIGHT, 1)
        try:
            documents = [self._measure_document(doc) for doc in documents]
            total = sum(d.page_count for d in documents)
            if total <= 0:
                raise NoContentError("lesson documents have no pages")
            self._progress(req.lesson_id, run_id, f"Preparing {total} page(s)", 10)
        except LeaseLostError:
            self._lease_lost(req.lesson_id, run_id)
            raise
        except CurriculumError as exc:
            self._fail(req.lesson_id, run_id, exc)
            telemetry.adjust_gauge(telemetry.RUNS_INFLIGHT, -1)
            raise
        LOG.info(
            "curriculum.pipeline action=claimed lesson_id=%s documents=%s total_pages=%s",
            req.lesson_id,
            len(documents),
            total,
        )
        return StartedRun(lesson_id=req.lesson_id, run_id=run_id, documents=documents, total_pages=total)

    def _measure_document(self, doc: Document) -> Document:
        renderer = self._open_document(doc)
        try:
            count = renderer.page_count
        finally:
            renderer.close()
        if count > self._cfg.lesson_max_pages:
            raise PayloadTooLargeError("document page count", limit=self._cfg.lesson_max_pages, observed=count)
        if count != doc.page_count:
            if doc.page_count > 0:
                LOG.warning(
                    "curriculum.pipeline action=page_count_corrected document_id=%s declared=%s actual=%s",
                    doc.id,
                    doc.page_count,
                    count,
                )
            self._repo.set_document_page_count(doc.id, count)
            doc.page_count = count
        return doc

    def _open_document(self, doc: Document) -> RenderedDocument:
        try:
            data = self._store.get_object(bucket=self._bucket, key=doc.file_path)
        except Exception as exc:
            raise DocumentProcessingError(f"could not download document {doc.name}") from exc
        if self._max_document_bytes and len(data) > self._max_document_bytes:
            raise PayloadTooLargeError("document size", limit=self._max_document_bytes, observed=len(data))
        try:
            return self._renderer_factory(data)
        except Exception as exc:
            raise DocumentProcessingError(f"could not open document {doc.name}") from exc

    # --- Phase 2: fan-out, fan-in, synthesis -------------------------------

    def run(self, started: StartedRun) -> RunResult:
        lesson_id = started.lesson_id
        run_id = started.run_id
        total = started.total_pages
        pages: List[Tuple[int, str]] = []
        failed = 0
        synthesis_failed = False
        try:
            self._progress(lesson_id, run_id, "Transcribing pages", 30)
            offset = 0
            for doc in started.documents:
                ok, bad = self._process_document(
                    lesson_id,
                    run_id,
                    doc,
                    offset=offset,
                    total=total,
                    done_before=len(pages) + failed,
                )
                pages.extend(ok)
                failed += bad
                offset += doc.page_count
            self._progress(lesson_id, run_id, f"Transcribed {len(pages)} of {total} page(s)", 50)

            self._progress(lesson_id, run_id, "Generating curriculum", 80)
            drafts: Sequence[SectionDraft] = ()
            if pages:
                outcome = self._synthesizer.execute(SynthesizeInput(lesson_id=lesson_id, pages=pages, total_pages=total))
                if isinstance(outcome, ParsedCurriculum):
                    drafts = outcome.sections
                    telemetry.record_synthesis("ok")
                else:
                    synthesis_failed = True
                    telemetry.record_synthesis("parse_failure")
            else:
                LOG.warning("curriculum.synthesis action=skipped lesson_id=%s reason=no_transcripts", lesson_id)
                telemetry.record_synthesis("empty_input")
            sections = self._repo.replace_sections(
                lesson_id, drafts, pass_threshold=self._cfg.pass_threshold, run_id=run_id
            )
            if sections is None:
                raise LeaseLostError()
            finished = self._repo.finish_processing(
                lesson_id,
                run_id=run_id,
                status="ready",
                message="Lesson ready",
                percent=100,
                error_message=None,
                now=self._clock(),
            )
            if not finished:
                raise LeaseLostError()
        except LeaseLostError:
            self._lease_lost(lesson_id, run_id)
            return RunResult(
                lesson_id=lesson_id,
                status="lease_lost",
                total_pages=total,
                pages_transcribed=len(pages),
                pages_failed=failed,
                sections_created=0,
            )
        except Exception as exc:
            message = self._fail(lesson_id, run_id, exc)
            telemetry.adjust_gauge(telemetry.RUNS_INFLIGHT, -1)
            return RunResult(
                lesson_id=lesson_id,
                status="error",
                total_pages=total,
                pages_transcribed=len(pages),
                pages_failed=failed,
                sections_created=0,
                error_message=message,
            )

        telemetry.record_run("ready")
        telemetry.adjust_gauge(telemetry.RUNS_INFLIGHT, -1)
        LOG.info(
            "curriculum.pipeline action=ready lesson_id=%s pages=%s failed=%s sections=%s",
            lesson_id,
            len(pages),
            failed,
            len(sections),
        )
        return RunResult(
            lesson_id=lesson_id,
            status="ready",
            total_pages=total,
            pages_transcribed=len(pages),
            pages_failed=failed,
            sections_created=len(sections),
            synthesis_failed=synthesis_failed,
        )

    def _process_document(
        self,
        lesson_id: str,
        run_id: str,
        doc: Document,
        *,
        offset: int,
        total: int,
        done_before: int,
    ) -> Tuple[List[Tuple[int, str]], int]:
        renderer = self._open_document(doc)
        ok: List[Tuple[int, str]] = []
        failed = 0
        try:
            page_count = min(doc.page_count, renderer.page_count)
            if page_count <= 0:
                return ok, failed
            workers = max(1, min(self._cfg.max_workers, page_count))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="transcribe") as pool:
                futures = {
                    pool.submit(
                        self._transcriber.execute,
                        TranscribePageInput(
                            lesson_id=lesson_id,
                            document_id=doc.id,
                            page_number=n,
                            source=renderer,
                        ),
                    ): n
                    for n in range(1, page_count + 1)
                }
                for future in as_completed(futures):
                    local_page = futures[future]
                    try:
                        transcript = future.result()
                    except PageTranscriptionError as exc:
                        failed += 1
                        telemetry.record_page("failed")
                        LOG.warning(
                            "curriculum.pipeline action=page_failed lesson_id=%s document_id=%s page=%s stage=%s error_type=%s",
                            lesson_id,
                            doc.id,
                            local_page,
                            exc.stage,
                            exc.cause.__class__.__name__,
                        )
                    else:
                        ok.append((offset + local_page, transcript.text))
                        telemetry.record_page("transcribed")
                    settled = done_before + len(ok) + failed
                    try:
                        # advisory message, last writer wins
                        self._progress(
                            lesson_id,
                            run_id,
                            f"Transcribed page {settled} of {total}",
                            30 + (20 * settled) // max(total, 1),
                        )
                    except LeaseLostError:
                        for pending in futures:
                            pending.cancel()
                        raise
        finally:
            renderer.close()
        return ok, failed

    # --- Helpers ------------------------------------------------------------

    def execute(self, req: StartProcessingInput) -> RunResult:
        return self.run(self.start(req))

    def _progress(self, lesson_id: str, run_id: str, message: str, percent: int) -> None:
        """Write progress and refresh the heartbeat; raises once the lease is gone."""
        written = self._repo.update_processing(
            lesson_id,
            run_id=run_id,
            message=message,
            percent=min(100, max(0, percent)),
            now=self._clock(),
        )
        if not written:
            raise LeaseLostError()

    def _lease_lost(self, lesson_id: str, run_id: str) -> None:
        telemetry.record_run("lease_lost")
        telemetry.adjust_gauge(telemetry.RUNS_INFLIGHT, -1)
        LOG.warning("curriculum.pipeline action=lease_lost lesson_id=%s run_id=%s", lesson_id, run_id)

    def _fail(self, lesson_id: str, run_id: str, exc: Exception) -> str:
        if isinstance(exc, CurriculumError):
            raw = exc.message
        else:
            raw = f"unexpected {exc.__class__.__name__}"
        message = sanitize_error_message(raw) or "processing failed"
        try:
            written = self._repo.finish_processing(
                lesson_id,
                run_id=run_id,
                status="error",
                message="Processing failed",
                percent=0,
                error_message=message,
                now=self._clock(),
            )
            if not written:
                LOG.warning("curriculum.pipeline action=lease_lost lesson_id=%s run_id=%s", lesson_id, run_id)
        finally:
            telemetry.record_run("error")
            LOG.error(
                "curriculum.pipeline action=failed lesson_id=%s error_type=%s error=%s",
                lesson_id,
                exc.__class__.__name__,
                message,
                exc_info=not isinstance(exc, CurriculumError),
            )
        return message


__all__ = [
    "sanitize_error_message",
    "PipelineRepoProtocol",
    "RenderedDocument",
    "StartProcessingInput",
    "StartedRun",
    "RunResult",
    "ProcessLessonUseCase",
]
