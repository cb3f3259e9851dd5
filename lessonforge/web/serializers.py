"""JSON shapes (camelCase) for the curriculum API."""
from __future__ import annotations

from typing import Any, Dict, Optional

from lessonforge.curriculum.domain import Document, Lesson, PracticeSession, Question, QuestionSet, Section
from lessonforge.curriculum.usecases.progress import SectionProgressView


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


def lesson_json(lesson: Lesson) -> Dict[str, Any]:
    return {
        "id": lesson.id,
        "name": lesson.name,
        "status": lesson.status,
        "processingMessage": lesson.processing_message,
        "processingPercent": lesson.processing_percent,
        "errorMessage": lesson.error_message,
        "createdAt": _iso(lesson.created_at),
    }


def document_json(doc: Document) -> Dict[str, Any]:
    return {
        "id": doc.id,
        "lessonId": doc.lesson_id,
        "name": doc.name,
        "category": doc.category,
        "filePath": doc.file_path,
        "mimeType": doc.mime_type,
        "sizeBytes": doc.size_bytes,
        "pageCount": doc.page_count,
        "createdAt": _iso(doc.created_at),
    }


def question_json(q: Question, *, include_answers: bool) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "id": q.id,
        "question": q.prompt,
        "options": list(q.choices),
        "labels": q.labels,
        "type": q.question_type,
        "position": q.position,
    }
    if q.set_id is not None:
        out.update(
            {
                "pageNumber": q.page_number,
                "pageQuestionIndex": q.page_question_index,
                "isCorrected": q.is_corrected,
                "timesAnswered": q.times_answered,
                "timesCorrect": q.times_correct,
            }
        )
    if include_answers:
        out["correctIndices"] = list(q.correct_indices)
        out["explanation"] = q.explanation
    return out


def section_json(section: Section, *, include_answers: bool = False) -> Dict[str, Any]:
    return {
        "id": section.id,
        "order": section.order_index,
        "title": section.title,
        "startPage": section.start_page,
        "endPage": section.end_page,
        "summary": section.summary,
        "passThreshold": section.pass_threshold,
        "questions": [question_json(q, include_answers=include_answers) for q in section.questions],
    }


def progress_json(view: SectionProgressView) -> Dict[str, Any]:
    return {
        "id": view.section_id,
        "order": view.order_index,
        "title": view.title,
        "status": view.status,
        "score": view.score,
        "attempts": view.attempts,
        "completedAt": _iso(view.completed_at),
    }


def question_set_json(qs: QuestionSet) -> Dict[str, Any]:
    return {
        "id": qs.id,
        "name": qs.name,
        "isCorrected": qs.is_corrected,
        "createdAt": _iso(qs.created_at),
    }


def session_json(session: PracticeSession) -> Dict[str, Any]:
    return {
        "id": session.id,
        "setId": session.set_id,
        "mode": session.mode,
        "totalQuestions": session.total_questions,
        "questionIds": list(session.question_ids),
        "questionsAnswered": session.questions_answered,
        "correctAnswers": session.correct_answers,
        "isCompleted": session.is_completed,
        "startedAt": _iso(session.started_at),
        "endedAt": _iso(session.ended_at),
        "totalTimeSeconds": session.total_time_seconds,
        "answers": [
            {
                "questionId": a.question_id,
                "selectedOption": a.selected_option,
                "isCorrect": a.is_correct,
                "timeSpentSeconds": a.time_spent_seconds,
            }
            for a in session.answers
        ],
    }
