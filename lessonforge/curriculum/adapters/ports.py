"""
Ports for curriculum adapters: shared result types, protocols, and errors.

Intent:
    Provide framework-agnostic contracts between the pipeline use cases and
    concrete completion-service adapters (local Ollama, deterministic stub).
    Keeping them in a dedicated module avoids circular imports.

Design:
    - Result dataclass: VisionResult
    - Protocol: CompletionServiceProtocol (page transcription + JSON completion)
    - Error taxonomy: transient vs. permanent, both upstream failures
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from lessonforge.curriculum.errors import UpstreamServiceError


# ----------------------------- Result types ---------------------------------


@dataclass
class VisionResult:
    """Transcription of a single page.

    Parameters:
        text: Verbatim text plus descriptions of non-text visual elements.
        has_visual_content: Explicit classification when the service returned
            one; `None` lets the caller derive it from the text.
        raw_metadata: Optional adapter diagnostics (model, adapter name).
    """

    text: str
    has_visual_content: Optional[bool] = None
    raw_metadata: Optional[dict] = None


# ----------------------------- Protocols ------------------------------------


class CompletionServiceProtocol(Protocol):
    """Vision-capable completion service used by the pipeline."""

    def transcribe_page(self, *, image_png: bytes, image_url: Optional[str], page_number: int) -> VisionResult:
        ...

    def complete_json(
        self,
        *,
        task: str,
        instruction: str,
        content: str,
        images: Sequence[bytes] = (),
    ) -> str:
        """Return the raw text of a completion that was asked to be JSON.

        `task` is one of "curriculum", "answer_key" or "quiz_set" and lets an
        adapter pick a model; parsing and validation belong to the caller.
        """
        ...


# ------------------------------ Errors --------------------------------------


class VisionError(UpstreamServiceError):
    """Base class for completion-service failures."""

    code = "completion_failed"


class VisionTransientError(VisionError):
    """Timeouts, empty output, connection problems."""


class VisionPermanentError(VisionError):
    """Rejected input or unknown task; retrying does not help."""


__all__ = [
    "VisionResult",
    "CompletionServiceProtocol",
    "VisionError",
    "VisionTransientError",
    "VisionPermanentError",
]
