"""
Error taxonomy for the Curriculum context.

Intent:
    Give use cases a small, framework-agnostic vocabulary of failures. The web
    adapter maps each class to an HTTP status via `http_status`; workers and
    the pipeline decide per class whether a failure is fatal or skippable.

Design:
    - Caller errors (validation, auth, access) are surfaced immediately and
      never retried.
    - Upstream errors (rendering, storage, completion service) are raised by
      adapters and converted at the boundary of the component that invoked
      them.
    - Synthesis parse failures are *not* exceptions; see
      `lessonforge.curriculum.usecases.synthesis.ParseFailure`.
"""

from __future__ import annotations

from typing import Sequence


class CurriculumError(Exception):
    """Base class for all expected Curriculum failures."""

    code = "error"
    http_status = 500

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationError(CurriculumError):
    """Missing or malformed request fields."""

    code = "bad_request"
    http_status = 400


class PayloadTooLargeError(ValidationError):
    """A boundary limit (pages, bytes) was exceeded."""

    code = "payload_too_large"
    http_status = 413

    def __init__(self, what: str, *, limit: int, observed: int) -> None:
        super().__init__(f"{what} exceeds the maximum of {limit} (got {observed})")
        self.limit = limit
        self.observed = observed


class AuthError(CurriculumError):
    code = "unauthenticated"
    http_status = 401


class NotFoundError(CurriculumError):
    """Resource missing or not owned by the caller (no existence leak)."""

    code = "not_found"
    http_status = 404


class AccessDeniedError(CurriculumError):
    """Quiz submission against a section that is still locked."""

    code = "section_locked"
    http_status = 403


class IncompleteSubmissionError(CurriculumError):
    code = "incomplete_submission"
    http_status = 400

    def __init__(self, missing_question_ids: Sequence[str]) -> None:
        super().__init__(f"missing answers for {len(missing_question_ids)} question(s)")
        self.missing_question_ids = list(missing_question_ids)


class NoContentError(CurriculumError):
    """Lesson has no content-category document with a positive page count."""

    code = "no_content"
    http_status = 400


class ProcessingConflictError(CurriculumError):
    code = "processing_in_progress"
    http_status = 409


class LeaseLostError(ProcessingConflictError):
    """The run no longer holds the lesson (reaped, or a newer run claimed it)."""

    code = "processing_lease_lost"


class UpstreamServiceError(CurriculumError):
    """Rendering, storage or completion-service failure."""

    code = "upstream_error"
    http_status = 502


class StorageError(UpstreamServiceError):
    code = "storage_error"


class DocumentProcessingError(UpstreamServiceError):
    """A whole source document could not be downloaded or opened (fatal)."""

    code = "document_unreadable"


__all__ = [
    "CurriculumError",
    "ValidationError",
    "PayloadTooLargeError",
    "AuthError",
    "NotFoundError",
    "AccessDeniedError",
    "IncompleteSubmissionError",
    "NoContentError",
    "ProcessingConflictError",
    "LeaseLostError",
    "UpstreamServiceError",
    "StorageError",
    "DocumentProcessingError",
]
