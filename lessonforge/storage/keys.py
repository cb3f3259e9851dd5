"""
Helpers to generate standardized object keys.

Conventions:
    - Lesson page bitmaps: {lesson}/{document}/page-{n}.png
    - Quiz-set page images: {owner}/{set}/page-{n}.{ext}
    - Answer-key page images: {owner}/{set}/answer-key-{epoch_ms}/page-{n}.{ext}

Security:
    Sanitization removes characters outside [A-Za-z0-9._-] from segments so a
    caller-supplied identifier can never introduce a path separator.
"""
from __future__ import annotations

import re
import unicodedata

_SEGMENT_RE = re.compile(r"[^A-Za-z0-9._-]+")

_EXT_BY_MIME = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "application/pdf": ".pdf",
}


def _sanitize_segment(value: str, *, fallback: str = "x") -> str:
    normalized = unicodedata.normalize("NFKD", value or "")
    ascii_value = normalized.encode("ascii", "ignore").decode("ascii")
    sanitized = _SEGMENT_RE.sub("-", ascii_value).strip("-_.")
    return sanitized or fallback


def ext_for_mime(mime: str, default: str = ".png") -> str:
    return _EXT_BY_MIME.get((mime or "").lower(), default)


def make_page_image_key(*, lesson_id: str, document_id: str, page_number: int) -> str:
    """Return {lesson}/{document}/page-{n}.png; stable so re-runs overwrite."""
    lesson = _sanitize_segment(lesson_id, fallback="lesson")
    doc = _sanitize_segment(document_id, fallback="document")
    return f"{lesson}/{doc}/page-{int(page_number)}.png"


def make_quiz_page_key(*, owner_sub: str, set_id: str, page_number: int, mime: str) -> str:
    owner = _sanitize_segment(owner_sub, fallback="owner")
    set_part = _sanitize_segment(set_id, fallback="set")
    return f"{owner}/{set_part}/page-{int(page_number)}{ext_for_mime(mime)}"


def make_answer_key_page_key(*, owner_sub: str, set_id: str, epoch_ms: int, page_number: int, mime: str) -> str:
    owner = _sanitize_segment(owner_sub, fallback="owner")
    set_part = _sanitize_segment(set_id, fallback="set")
    return f"{owner}/{set_part}/answer-key-{int(epoch_ms)}/page-{int(page_number)}{ext_for_mime(mime)}"


__all__ = [
    "ext_for_mime",
    "make_page_image_key",
    "make_quiz_page_key",
    "make_answer_key_page_key",
]
