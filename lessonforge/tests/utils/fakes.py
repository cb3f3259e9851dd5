"""
Fakes for the pipeline collaborators: renderer, completion service, seeded lessons.

The fake renderer encodes "<tag>-page-<n>" into each page bitmap so the fake
completion service can echo it back; tests can then tell from the synthesis
input exactly which pages survived and in which order.
"""
from __future__ import annotations

import base64
import io
import json
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from PIL import Image

from lessonforge.curriculum.adapters.ports import VisionResult, VisionTransientError
from lessonforge.curriculum.adapters.stub_vision import StubCompletionAdapter
from lessonforge.curriculum.domain import Lesson, QuestionDraft, Section, SectionDraft
from lessonforge.curriculum.repo_memory import InMemoryCurriculumRepo
from lessonforge.storage.memory import InMemoryObjectStore
from lessonforge.vision.pdf_renderer import PdfRenderError, RenderPage

OWNER = "user-owner"
STRANGER = "user-stranger"


class FakeRenderer:
    def __init__(self, tag: str, page_count: int, *, fail_pages: Iterable[int] = ()) -> None:
        self.tag = tag
        self._page_count = page_count
        self.fail_pages = set(fail_pages)
        self.rendered: List[int] = []
        self.closed = False
        self._lock = Lock()

    @property
    def page_count(self) -> int:
        return self._page_count

    def render_page(self, page_number: int) -> RenderPage:
        with self._lock:
            self.rendered.append(page_number)
        if page_number in self.fail_pages:
            raise PdfRenderError(f"render_failed_on_page_{page_number}")
        return RenderPage(page_number=page_number, width=10, height=10, data=f"{self.tag}-page-{page_number}".encode())

    def close(self) -> None:
        self.closed = True


class FakeRendererFactory:
    """Maps stored document bytes to a FakeRenderer; unknown bytes fail to open."""

    def __init__(self) -> None:
        self.by_payload: Dict[bytes, FakeRenderer] = {}
        self.opened: List[FakeRenderer] = []

    def register(self, payload: bytes, renderer: FakeRenderer) -> None:
        self.by_payload[payload] = renderer

    def __call__(self, data: bytes) -> FakeRenderer:
        renderer = self.by_payload.get(data)
        if renderer is None:
            raise PdfRenderError("failed_to_open_pdf")
        self.opened.append(renderer)
        return renderer


Response = Union[str, Exception, Callable[..., str]]


class FakeCompletion:
    """Records every call; JSON tasks answer from `responses` or fall back to the stub."""

    def __init__(self, responses: Optional[Dict[str, Response]] = None, *, fail_transcripts: Iterable[str] = ()) -> None:
        self.responses: Dict[str, Response] = dict(responses or {})
        self.fail_transcripts = set(fail_transcripts)
        self.transcribe_calls: List[Tuple[int, Optional[str]]] = []
        self.json_calls: List[dict] = []
        self._stub = StubCompletionAdapter()
        self._lock = Lock()

    def transcribe_page(self, *, image_png: bytes, image_url: Optional[str], page_number: int) -> VisionResult:
        label = image_png.decode(errors="replace")
        with self._lock:
            self.transcribe_calls.append((page_number, image_url))
        if label in self.fail_transcripts:
            raise VisionTransientError("model_timeout")
        return VisionResult(text=f"Transcript of {label}", has_visual_content=None)

    def complete_json(self, *, task: str, instruction: str, content: str, images: Sequence[bytes] = ()) -> str:
        with self._lock:
            self.json_calls.append({"task": task, "instruction": instruction, "content": content, "images": list(images)})
        response = self.responses.get(task)
        if response is None:
            return self._stub.complete_json(task=task, instruction=instruction, content=content, images=images)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(task=task, instruction=instruction, content=content, images=images)
        return response

    def calls_for(self, task: str) -> List[dict]:
        return [c for c in self.json_calls if c["task"] == task]


def curriculum_json(ranges: Sequence[Tuple[int, int]], *, questions: int, correct_index: int = 0) -> str:
    return json.dumps(
        {
            "sections": [
                {
                    "title": f"Part {i + 1}",
                    "startPage": start,
                    "endPage": end,
                    "summary": f"Summary {i + 1}",
                    "questions": [
                        {
                            "question": f"Q{q + 1}?",
                            "options": ["A1", "B1", "C1", "D1"],
                            "correctIndex": correct_index,
                            "explanation": "Because.",
                        }
                        for q in range(questions)
                    ],
                }
                for i, (start, end) in enumerate(ranges)
            ]
        }
    )


def png_data_url(color: str = "red", size: Tuple[int, int] = (4, 4), fmt: str = "PNG") -> str:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    mime = "image/png" if fmt == "PNG" else "image/jpeg"
    return f"data:{mime};base64,{base64.b64encode(buf.getvalue()).decode()}"


def utc(year: int = 2026, month: int = 10, day: int = 18, hour: int = 9, minute: int = 0, second: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


def seed_ready_lesson(
    repo: InMemoryCurriculumRepo,
    *,
    owner: str = OWNER,
    sections: Sequence[Sequence[Sequence[int]]] = (([0], [1], [2], [3]), ([0], [0])),
    pass_threshold: int = 70,
) -> Tuple[Lesson, List[Section]]:
    """Create a `ready` lesson whose sections carry the given correct indices.

    `sections` holds, per section, the correct index list of each question.
    """
    lesson = repo.create_lesson(owner_sub=owner, name="Cells")
    drafts = [
        SectionDraft(
            title=f"Section {i + 1}",
            start_page=i + 1,
            end_page=i + 1,
            summary=f"About part {i + 1}",
            questions=tuple(
                QuestionDraft(
                    prompt=f"S{i + 1}Q{q + 1}?",
                    choices=("w", "x", "y", "z"),
                    correct_indices=tuple(correct),
                    explanation=f"Explanation {q + 1}",
                )
                for q, correct in enumerate(answers)
            ),
        )
        for i, answers in enumerate(sections)
    ]
    run_id = repo.claim_processing(lesson.id, now=utc(), lease_seconds=900, message="Starting processing").run_id
    created = repo.replace_sections(lesson.id, drafts, pass_threshold=pass_threshold, run_id=run_id)
    repo.finish_processing(
        lesson.id, run_id=run_id, status="ready", message="Lesson ready", percent=100, error_message=None, now=utc()
    )
    return repo.get_lesson(lesson.id), created


__all__ = [
    "OWNER",
    "STRANGER",
    "FakeRenderer",
    "FakeRendererFactory",
    "FakeCompletion",
    "InMemoryObjectStore",
    "curriculum_json",
    "png_data_url",
    "utc",
    "seed_ready_lesson",
]
