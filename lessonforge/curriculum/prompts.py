"""
Instruction texts sent to the completion service.

Kept in one module so the adapters stay prompt-agnostic and tests can assert
on the task wiring without string-matching long prompts.
"""

from __future__ import annotations

TRANSCRIBE_PAGE = (
    "You are an expert document transcriber. Extract all visible text on this page verbatim, "
    "keeping the structure and line breaks. Then briefly describe any non-text visual elements "
    "(diagrams, tables, images, charts) if present. Page {page_number}."
)

# Vocabulary that marks a transcript as describing visual content.
VISUAL_MARKERS = (
    "diagram",
    "diagramme",
    "table",
    "tableau",
    "image",
    "figure",
    "chart",
    "graph",
)


def curriculum_instruction(*, questions_per_section: int, total_pages: int) -> str:
    return (
        "Split the following course transcript into pedagogically coherent sections. "
        f"The course has {total_pages} pages; every page from 1 to {total_pages} must belong to "
        "exactly one section and sections must follow page order without gaps or overlaps. "
        "For each section return a title, the inclusive startPage and endPage, a summary, and "
        f"exactly {questions_per_section} multiple-choice questions with plausible distractors "
        "and one correct answer. Respond with a single JSON object of the form "
        '{"sections": [{"title": str, "startPage": int, "endPage": int, "summary": str, '
        '"questions": [{"question": str, "options": [str, ...], "correctIndex": int, '
        '"explanation": str}]}]}.'
    )


ANSWER_KEY_INSTRUCTION = (
    "These images are an answer key for a multiple-choice exam. For every question number "
    "you can read, return the letter labels of all correct options. Respond with a single "
    'JSON object: {"answers": [{"questionNumber": int, "correctOptions": ["A", ...]}]}.'
)


def quiz_set_instruction(page_number: int) -> str:
    return (
        "Extract every multiple-choice question printed on this page, in reading order. For each "
        "question return its text, its options with their letter labels, the correct option labels "
        "when they are marked on the page, and an explanation if one is printed. Respond with a "
        'single JSON object: {"questions": [{"question": str, "options": [{"label": "A", '
        '"text": str}], "correctOptions": ["A"], "explanation": str | null}]}. '
        f"Page {page_number}."
    )


__all__ = [
    "TRANSCRIBE_PAGE",
    "VISUAL_MARKERS",
    "curriculum_instruction",
    "ANSWER_KEY_INSTRUCTION",
    "quiz_set_instruction",
]
