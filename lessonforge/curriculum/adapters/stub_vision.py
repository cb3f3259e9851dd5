"""
Deterministic completion adapter for local development and tests.

Intent:
    Adhere to `CompletionServiceProtocol` without an external AI service so
    the whole pipeline (render -> transcribe -> synthesize) runs offline.

Behavior:
    - Transcripts are a fixed placeholder mentioning the page number.
    - Curriculum completions group pages into sections of up to five pages
      with the requested number of questions, always covering every page.
    - Answer-key and quiz-set extraction return empty results.
"""

from __future__ import annotations

import json
import re
from typing import Optional, Sequence

from lessonforge.curriculum.adapters.ports import VisionPermanentError, VisionResult

_PAGE_HEADER_RE = re.compile(r"^Page (\d+):$", re.MULTILINE)
_TOTAL_RE = re.compile(r"has (\d+) pages")
_COUNT_RE = re.compile(r"exactly (\d+) multiple-choice")

PAGES_PER_SECTION = 5


class StubCompletionAdapter:
    def transcribe_page(self, *, image_png: bytes, image_url: Optional[str], page_number: int) -> VisionResult:
        text = f"## Page {page_number}\n\n_No OCR performed in stub mode._"
        return VisionResult(text=text, has_visual_content=False, raw_metadata={"adapter": "stub"})

    def complete_json(
        self,
        *,
        task: str,
        instruction: str,
        content: str,
        images: Sequence[bytes] = (),
    ) -> str:
        if task == "curriculum":
            return json.dumps(self._curriculum(instruction, content))
        if task == "answer_key":
            return json.dumps({"answers": []})
        if task == "quiz_set":
            return json.dumps({"questions": []})
        raise VisionPermanentError(f"unknown_task:{task}")

    @staticmethod
    def _curriculum(instruction: str, content: str) -> dict:
        seen = [int(n) for n in _PAGE_HEADER_RE.findall(content)]
        total_match = _TOTAL_RE.search(instruction)
        total = int(total_match.group(1)) if total_match else max(seen, default=0)
        count_match = _COUNT_RE.search(instruction)
        count = int(count_match.group(1)) if count_match else 1
        sections = []
        for start in range(1, total + 1, PAGES_PER_SECTION):
            end = min(total, start + PAGES_PER_SECTION - 1)
            questions = [
                {
                    "question": f"Pages {start}-{end}: question {i + 1}?",
                    "options": ["Option A", "Option B", "Option C", "Option D"],
                    "correctIndex": 0,
                    "explanation": "Stub explanation.",
                }
                for i in range(count)
            ]
            sections.append(
                {
                    "title": f"Pages {start}-{end}",
                    "startPage": start,
                    "endPage": end,
                    "summary": f"Stub summary for pages {start} to {end}.",
                    "questions": questions,
                }
            )
        return {"sections": sections}


def build() -> StubCompletionAdapter:
    """Factory used by the wiring layer to instantiate the adapter."""
    return StubCompletionAdapter()


__all__ = ["StubCompletionAdapter", "build"]
