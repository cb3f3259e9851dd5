"""
The stub completion service must keep the offline pipeline consistent: its
curriculum always passes the synthesizer's coverage and count checks.
"""
from __future__ import annotations

import json

import pytest

from lessonforge.curriculum.adapters.ports import VisionPermanentError
from lessonforge.curriculum.adapters.stub_vision import StubCompletionAdapter, build
from lessonforge.curriculum.usecases.synthesis import (
    ParsedCurriculum,
    SynthesizeCurriculumUseCase,
    SynthesizeInput,
)


@pytest.mark.parametrize("total", [1, 5, 12])
def test_stub_curriculum_parses_for_any_page_count(total):
    use_case = SynthesizeCurriculumUseCase(completion=build(), max_chars=20000, questions_per_section=3)

    outcome = use_case.execute(
        SynthesizeInput(lesson_id="L", pages=[(n, f"text {n}") for n in range(1, total + 1)], total_pages=total)
    )

    assert isinstance(outcome, ParsedCurriculum)
    assert outcome.sections[-1].end_page == total
    assert all(len(s.questions) == 3 for s in outcome.sections)


def test_stub_transcript_and_empty_extractions():
    stub = StubCompletionAdapter()

    result = stub.transcribe_page(image_png=b"x", image_url=None, page_number=4)

    assert "Page 4" in result.text
    assert result.has_visual_content is False
    assert json.loads(stub.complete_json(task="answer_key", instruction="", content="")) == {"answers": []}
    assert json.loads(stub.complete_json(task="quiz_set", instruction="", content="")) == {"questions": []}
    with pytest.raises(VisionPermanentError):
        stub.complete_json(task="other", instruction="", content="")
