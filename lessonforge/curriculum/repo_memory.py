"""
In-memory repository for the Curriculum context (dev and tests).

Intent:
    Mirror the Postgres repository method for method so use cases and the web
    layer run without a database. A single re-entrant lock serializes every
    mutation, which gives the same per-key atomicity the DB gets from upserts
    and `x = x + 1` updates.

Notes:
    Records are deep-copied on the way in and out; callers never share state
    with the store.
"""
from __future__ import annotations

from copy import deepcopy
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from .domain import (
    Document,
    Lesson,
    PageImage,
    PracticeSession,
    Progress,
    Question,
    QuestionDraft,
    QuestionSet,
    Section,
    SectionDraft,
    SessionAnswer,
    Transcript,
    ensure_lesson_transition,
    unique_indices,
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryCurriculumRepo:
    def __init__(self) -> None:
        self._lock = RLock()
        self.lessons: Dict[str, Lesson] = {}
        self.documents: Dict[str, Document] = {}
        self.document_ids_by_lesson: Dict[str, List[str]] = {}
        self.page_images: Dict[Tuple[str, int], PageImage] = {}
        self.transcripts: Dict[Tuple[str, int], Transcript] = {}
        self.sections: Dict[str, Section] = {}
        self.section_ids_by_lesson: Dict[str, List[str]] = {}
        # progress[(user_sub, section_id)]
        self.progress: Dict[Tuple[str, str], Progress] = {}
        self.sets: Dict[str, QuestionSet] = {}
        self.set_questions: Dict[str, List[Question]] = {}
        self.sessions: Dict[str, PracticeSession] = {}
        self._seq = 0

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    # --- Lessons ------------------------------------------------------------

    def create_lesson(self, *, owner_sub: str, name: str) -> Lesson:
        lesson = Lesson(id=str(uuid4()), owner_sub=owner_sub, name=name, created_at=_now_iso())
        with self._lock:
            self.lessons[lesson.id] = lesson
            self.document_ids_by_lesson[lesson.id] = []
            return deepcopy(lesson)

    def get_lesson(self, lesson_id: str) -> Optional[Lesson]:
        with self._lock:
            lesson = self.lessons.get(lesson_id)
            return deepcopy(lesson) if lesson else None

    def claim_processing(self, lesson_id: str, *, now: datetime, lease_seconds: int, message: str) -> Optional[Lesson]:
        """Move the lesson to `processing` unless a live run holds it."""
        with self._lock:
            lesson = self.lessons.get(lesson_id)
            if lesson is None:
                return None
            cutoff = now - timedelta(seconds=lease_seconds)
            if lesson.status == "processing":
                if lesson.heartbeat_at is not None and lesson.heartbeat_at >= cutoff:
                    return None
            else:
                ensure_lesson_transition(lesson.status, "processing")
            lesson.status = "processing"
            lesson.processing_message = message
            lesson.processing_percent = 0
            lesson.error_message = None
            lesson.heartbeat_at = now
            lesson.run_id = str(uuid4())
            return deepcopy(lesson)

    def _held(self, lesson_id: str, run_id: str) -> Optional[Lesson]:
        lesson = self.lessons.get(lesson_id)
        if lesson is None or lesson.status != "processing" or lesson.run_id != run_id:
            return None
        return lesson

    def update_processing(self, lesson_id: str, *, run_id: str, message: str, percent: int, now: datetime) -> bool:
        """Write progress and refresh the heartbeat; False when the run lost the lease."""
        with self._lock:
            lesson = self._held(lesson_id, run_id)
            if lesson is None:
                return False
            lesson.processing_message = message
            lesson.processing_percent = percent
            lesson.heartbeat_at = now
            return True

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
    ) -> bool:
        ensure_lesson_transition("processing", status)
        with self._lock:
            lesson = self._held(lesson_id, run_id)
            if lesson is None:
                return False
            lesson.status = status
            lesson.processing_message = message
            lesson.processing_percent = percent
            lesson.error_message = error_message
            lesson.heartbeat_at = now
            return True

    def list_stale_processing(self, *, older_than: datetime) -> List[Lesson]:
        with self._lock:
            return [
                deepcopy(lesson)
                for lesson in self.lessons.values()
                if lesson.status == "processing"
                and (lesson.heartbeat_at is None or lesson.heartbeat_at < older_than)
            ]

    def expire_processing(self, lesson_id: str, *, older_than: datetime, error_message: str, now: datetime) -> bool:
        """Flip a stale run to `error`; False when the heartbeat moved meanwhile."""
        with self._lock:
            lesson = self.lessons.get(lesson_id)
            if lesson is None or lesson.status != "processing":
                return False
            if lesson.heartbeat_at is not None and lesson.heartbeat_at >= older_than:
                return False
            lesson.status = "error"
            lesson.processing_message = "Processing failed"
            lesson.error_message = error_message
            lesson.heartbeat_at = now
            return True

    # --- Documents and pages ------------------------------------------------

    def add_document(
        self,
        *,
        lesson_id: str,
        name: str,
        category: str,
        file_path: str,
        mime_type: str,
        size_bytes: Optional[int],
        page_count: int,
    ) -> Document:
        doc = Document(
            id=str(uuid4()),
            lesson_id=lesson_id,
            name=name,
            category=category,
            file_path=file_path,
            mime_type=mime_type,
            size_bytes=size_bytes,
            page_count=page_count,
            created_at=_now_iso(),
        )
        with self._lock:
            self.documents[doc.id] = doc
            self.document_ids_by_lesson.setdefault(lesson_id, []).append(doc.id)
            return deepcopy(doc)

    def list_documents(self, lesson_id: str, *, category: Optional[str] = None) -> List[Document]:
        with self._lock:
            ids = self.document_ids_by_lesson.get(lesson_id, [])
            docs = [self.documents[i] for i in ids if i in self.documents]
            return [deepcopy(d) for d in docs if category is None or d.category == category]

    def set_document_page_count(self, document_id: str, page_count: int) -> None:
        with self._lock:
            doc = self.documents.get(document_id)
            if doc is not None:
                doc.page_count = int(page_count)

    def upsert_page_image(self, image: PageImage) -> None:
        with self._lock:
            self.page_images[(image.document_id, image.page_number)] = deepcopy(image)

    def upsert_transcript(self, transcript: Transcript) -> None:
        with self._lock:
            self.transcripts[(transcript.document_id, transcript.page_number)] = deepcopy(transcript)

    def list_transcripts(self, document_id: str) -> List[Transcript]:
        with self._lock:
            rows = [t for (doc, _), t in self.transcripts.items() if doc == document_id]
            return [deepcopy(t) for t in sorted(rows, key=lambda t: t.page_number)]

    # --- Sections -----------------------------------------------------------

    def replace_sections(
        self,
        lesson_id: str,
        drafts: Sequence[SectionDraft],
        *,
        pass_threshold: int,
        run_id: str,
    ) -> Optional[List[Section]]:
        """Swap the lesson's curriculum; progress on old sections goes with them.

        Returns None without touching anything when `run_id` no longer holds
        the processing lease.
        """
        with self._lock:
            if self._held(lesson_id, run_id) is None:
                return None
            for old_id in self.section_ids_by_lesson.get(lesson_id, []):
                self.sections.pop(old_id, None)
                for key in [k for k in self.progress if k[1] == old_id]:
                    del self.progress[key]
            new_ids: List[str] = []
            for order, draft in enumerate(drafts):
                section_id = str(uuid4())
                questions = [
                    Question(
                        id=str(uuid4()),
                        prompt=q.prompt,
                        choices=list(q.choices),
                        correct_indices=unique_indices(q.correct_indices),
                        explanation=q.explanation,
                        position=pos,
                        section_id=section_id,
                    )
                    for pos, q in enumerate(draft.questions)
                ]
                self.sections[section_id] = Section(
                    id=section_id,
                    lesson_id=lesson_id,
                    order_index=order,
                    title=draft.title,
                    start_page=draft.start_page,
                    end_page=draft.end_page,
                    summary=draft.summary,
                    pass_threshold=pass_threshold,
                    questions=questions,
                )
                new_ids.append(section_id)
            self.section_ids_by_lesson[lesson_id] = new_ids
            return [deepcopy(self.sections[i]) for i in new_ids]

    def list_sections(self, lesson_id: str) -> List[Section]:
        with self._lock:
            ids = self.section_ids_by_lesson.get(lesson_id, [])
            items = sorted((self.sections[i] for i in ids), key=lambda s: s.order_index)
            return [deepcopy(s) for s in items]

    # --- Progress -----------------------------------------------------------

    def list_progress(self, *, user_sub: str, lesson_id: str) -> List[Progress]:
        with self._lock:
            return [deepcopy(p) for (u, _), p in self.progress.items() if u == user_sub and p.lesson_id == lesson_id]

    def seed_progress(self, *, user_sub: str, lesson_id: str, section_ids: Sequence[str]) -> List[Progress]:
        """Create missing rows: first section `current`, the rest `locked`."""
        with self._lock:
            for index, section_id in enumerate(section_ids):
                key = (user_sub, section_id)
                if key in self.progress:
                    continue
                self.progress[key] = Progress(
                    user_sub=user_sub,
                    lesson_id=lesson_id,
                    section_id=section_id,
                    status="current" if index == 0 else "locked",
                )
            return self.list_progress(user_sub=user_sub, lesson_id=lesson_id)

    def record_attempt(
        self,
        *,
        user_sub: str,
        lesson_id: str,
        section_id: str,
        is_first_section: bool,
        score: int,
        passed: bool,
        next_section_id: Optional[str],
        now: datetime,
    ) -> Optional[Progress]:
        """Record a scored attempt; returns None (no mutation) when locked."""
        with self._lock:
            key = (user_sub, section_id)
            row = self.progress.get(key)
            status = row.status if row else ("current" if is_first_section else "locked")
            if status == "locked":
                return None
            if row is None:
                row = Progress(user_sub=user_sub, lesson_id=lesson_id, section_id=section_id, status=status)
                self.progress[key] = row
            row.attempts += 1
            row.score = score
            if passed and row.status != "completed":
                row.status = "completed"
                row.completed_at = now.isoformat()
            if passed and next_section_id:
                next_key = (user_sub, next_section_id)
                nxt = self.progress.get(next_key)
                if nxt is None:
                    self.progress[next_key] = Progress(
                        user_sub=user_sub, lesson_id=lesson_id, section_id=next_section_id, status="current"
                    )
                elif nxt.status == "locked":
                    nxt.status = "current"
            return deepcopy(row)

    # --- Question sets ------------------------------------------------------

    def create_set(self, *, owner_sub: str, name: str) -> QuestionSet:
        qs = QuestionSet(id=str(uuid4()), owner_sub=owner_sub, name=name, created_at=_now_iso())
        with self._lock:
            self.sets[qs.id] = qs
            self.set_questions[qs.id] = []
            return deepcopy(qs)

    def get_set(self, set_id: str) -> Optional[QuestionSet]:
        with self._lock:
            qs = self.sets.get(set_id)
            return deepcopy(qs) if qs else None

    def add_set_questions(self, set_id: str, drafts: Sequence[QuestionDraft]) -> List[Question]:
        with self._lock:
            bucket = self.set_questions.setdefault(set_id, [])
            added = []
            for draft in drafts:
                question = Question(
                    id=str(uuid4()),
                    prompt=draft.prompt,
                    choices=list(draft.choices),
                    correct_indices=unique_indices(draft.correct_indices),
                    explanation=draft.explanation,
                    position=self._next_seq(),
                    set_id=set_id,
                    page_number=draft.page_number,
                    page_question_index=draft.page_question_index,
                )
                bucket.append(question)
                added.append(deepcopy(question))
            return added

    def list_set_questions(self, set_id: str) -> List[Question]:
        """Ordered by page, then index on page, then insertion order."""
        with self._lock:
            items = list(self.set_questions.get(set_id, []))

        def _key(q: Question) -> tuple:
            return (
                q.page_number if q.page_number is not None else 10**9,
                q.page_question_index if q.page_question_index is not None else 10**9,
                q.position,
                q.id,
            )

        return [deepcopy(q) for q in sorted(items, key=_key)]

    def update_question_answers(self, question_id: str, correct_indices: Sequence[int]) -> None:
        with self._lock:
            for bucket in self.set_questions.values():
                for question in bucket:
                    if question.id == question_id:
                        question.correct_indices = unique_indices(correct_indices)
                        question.is_corrected = True
                        return

    def mark_set_corrected(self, set_id: str) -> None:
        with self._lock:
            qs = self.sets.get(set_id)
            if qs is not None:
                qs.is_corrected = True

    # --- Practice sessions --------------------------------------------------

    def create_session(
        self,
        *,
        set_id: str,
        user_sub: str,
        mode: str,
        total_questions: int,
        question_ids: Sequence[str],
        now: datetime,
    ) -> PracticeSession:
        session = PracticeSession(
            id=str(uuid4()),
            set_id=set_id,
            user_sub=user_sub,
            mode=mode,
            total_questions=total_questions,
            question_ids=list(question_ids),
            started_at=now.isoformat(),
        )
        with self._lock:
            self.sessions[session.id] = session
            return deepcopy(session)

    def get_session(self, session_id: str) -> Optional[PracticeSession]:
        with self._lock:
            session = self.sessions.get(session_id)
            return deepcopy(session) if session else None

    def latest_open_session(self, *, set_id: str, user_sub: str) -> Optional[PracticeSession]:
        with self._lock:
            candidates = [
                s
                for s in self.sessions.values()
                if s.set_id == set_id and s.user_sub == user_sub and not s.is_completed
            ]
            if not candidates:
                return None
            return deepcopy(max(candidates, key=lambda s: s.started_at or ""))

    def record_session_answer(self, *, session_id: str, answer: SessionAnswer) -> bool:
        """Append the answer and bump session and question counters together."""
        with self._lock:
            session = self.sessions.get(session_id)
            if session is None or session.is_completed:
                return False
            session.answers.append(replace(answer))
            session.questions_answered += 1
            if answer.is_correct:
                session.correct_answers += 1
            for question in self.set_questions.get(session.set_id, []):
                if question.id == answer.question_id:
                    question.times_answered += 1
                    if answer.is_correct:
                        question.times_correct += 1
                    break
            return True

    def complete_session(
        self,
        *,
        session_id: str,
        correct_answers: Optional[int],
        total_time_seconds: Optional[int],
        now: datetime,
    ) -> Optional[PracticeSession]:
        with self._lock:
            session = self.sessions.get(session_id)
            if session is None:
                return None
            session.is_completed = True
            session.ended_at = now.isoformat()
            if correct_answers is not None:
                session.correct_answers = int(correct_answers)
            if total_time_seconds is not None:
                session.total_time_seconds = int(total_time_seconds)
            return deepcopy(session)


__all__ = ["InMemoryCurriculumRepo"]
