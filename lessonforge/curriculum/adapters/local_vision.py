"""
Local completion-service adapter backed by Ollama.

Intent:
    - Transcribe one rendered page with the vision model.
    - Run JSON-mode completions for curriculum synthesis (structure model) and
      for answer-key / quiz-set extraction (vision model, with images).
    - Classify timeouts, connection problems and empty output as
      VisionTransientError; an unknown task is a VisionPermanentError.

Notes:
    - `ollama` is imported lazily inside the call so tests can monkeypatch
      `sys.modules["ollama"]` with a fake client.
    - Logs carry sizes and error types only, never page text or prompts.
"""

from __future__ import annotations

import base64
import logging
from typing import Dict, Optional, Sequence

from lessonforge.curriculum.adapters.ports import (
    VisionPermanentError,
    VisionResult,
    VisionTransientError,
)
from lessonforge.curriculum.config import AIConfig, load_ai_config
from lessonforge.curriculum.prompts import TRANSCRIBE_PAGE

LOG = logging.getLogger(__name__)

_TASKS = {"curriculum", "answer_key", "quiz_set"}


def _response_text(response: object) -> str:
    text = ""
    if isinstance(response, dict):
        text = str(response.get("response", "") or "")
    else:
        text = str(getattr(response, "response", "") or "")
    text = text.strip()
    if text.startswith("```") and text.endswith("```"):
        lines = text.splitlines()
        if len(lines) >= 3 and lines[-1].strip() == "```":
            text = "\n".join(lines[1:-1]).strip()
    return text


def _call_model(
    *,
    prompt: str,
    model: str,
    base_url: str,
    timeout: int,
    images_b64: Optional[list[str]] = None,
    json_mode: bool = False,
) -> str:
    """Invoke an Ollama model and return the stripped response text."""
    try:
        import ollama  # type: ignore
    except Exception as exc:  # pragma: no cover
        raise VisionTransientError(f"ollama client unavailable: {exc.__class__.__name__}")

    kwargs: Dict[str, object] = {
        "model": model,
        "prompt": prompt,
        "options": {"temperature": 0},
    }
    if images_b64:
        kwargs["images"] = images_b64
    if json_mode:
        kwargs["format"] = "json"
    try:
        client = ollama.Client(host=base_url, timeout=timeout)
        response = client.generate(**kwargs)
    except TimeoutError as exc:
        raise VisionTransientError("timeout") from exc
    except Exception as exc:
        raise VisionTransientError(f"ollama_error:{exc.__class__.__name__}") from exc
    return _response_text(response)


class LocalCompletionAdapter:
    """Completion service using local Ollama models."""

    def __init__(self, cfg: AIConfig) -> None:
        self._cfg = cfg

    def transcribe_page(self, *, image_png: bytes, image_url: Optional[str], page_number: int) -> VisionResult:
        # Ollama needs inline images; the signed URL is only informative here.
        if not image_png:
            raise VisionPermanentError("empty_page_image")
        text = _call_model(
            prompt=TRANSCRIBE_PAGE.format(page_number=page_number),
            model=self._cfg.vision_model,
            base_url=self._cfg.ollama_base_url,
            timeout=self._cfg.timeout_vision_seconds,
            images_b64=[base64.b64encode(image_png).decode("ascii")],
        )
        if not text:
            raise VisionTransientError("empty response from local vision")
        LOG.debug("curriculum.vision action=transcribed page=%s chars=%s", page_number, len(text))
        return VisionResult(
            text=text,
            raw_metadata={"adapter": "local", "backend": "ollama", "model": self._cfg.vision_model},
        )

    def complete_json(
        self,
        *,
        task: str,
        instruction: str,
        content: str,
        images: Sequence[bytes] = (),
    ) -> str:
        if task not in _TASKS:
            raise VisionPermanentError(f"unknown_task:{task}")
        if task == "curriculum":
            model = self._cfg.structure_model
            timeout = self._cfg.timeout_structure_seconds
        else:
            model = self._cfg.vision_model
            timeout = self._cfg.timeout_vision_seconds
        prompt = f"{instruction}\n\n{content}" if content else instruction
        images_b64 = [base64.b64encode(b).decode("ascii") for b in images] or None
        text = _call_model(
            prompt=prompt,
            model=model,
            base_url=self._cfg.ollama_base_url,
            timeout=timeout,
            images_b64=images_b64,
            json_mode=True,
        )
        if not text:
            raise VisionTransientError(f"empty response for {task}")
        return text


def build() -> LocalCompletionAdapter:
    """Factory used by the wiring layer to instantiate the adapter."""
    return LocalCompletionAdapter(load_ai_config())


__all__ = ["LocalCompletionAdapter", "build"]
