"""Postgres-backed repository for the Curriculum context.

Concurrency:
    - Page bitmaps and transcripts are upserted on (document_id, page_number).
    - Attempt counters, session counters and question difficulty counters use
      `x = x + 1` in a single statement; related rows change in one transaction.
    - Claiming a lesson for processing is a conditional UPDATE so two starters
      cannot both win the lease. Each claim mints a `run_id`; progress, finish
      and section writes only apply while that run still holds the lesson.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import os
from typing import Any, List, Optional, Sequence

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Json

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


def _dsn() -> str:
    """Resolve the DSN: LESSONFORGE_DATABASE_URL wins over DATABASE_URL."""
    for name in ("LESSONFORGE_DATABASE_URL", "DATABASE_URL"):
        candidate = (os.getenv(name) or "").strip()
        if candidate:
            return candidate
    raise RuntimeError("Database DSN unavailable for curriculum repo")


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


_LESSON_COLS = (
    "id::text as id, owner_sub, name, status, processing_message, processing_percent, "
    "error_message, heartbeat_at, created_at, run_id::text as run_id"
)
_SESSION_COLS = (
    "id::text as id, set_id::text as set_id, user_sub, mode, total_questions, "
    "array(select unnest(question_ids)::text) as question_ids, questions_answered, correct_answers, "
    "is_completed, started_at, ended_at, total_time_seconds"
)


def _row_to_lesson(row: dict) -> Lesson:
    return Lesson(
        id=row["id"],
        owner_sub=row["owner_sub"],
        name=row["name"],
        status=row["status"],
        processing_message=row.get("processing_message"),
        processing_percent=int(row.get("processing_percent") or 0),
        error_message=row.get("error_message"),
        heartbeat_at=row.get("heartbeat_at"),
        created_at=_iso(row.get("created_at")),
        run_id=row.get("run_id"),
    )


def _row_to_document(row: dict) -> Document:
    return Document(
        id=row["id"],
        lesson_id=row["lesson_id"],
        name=row["name"],
        category=row["category"],
        file_path=row["file_path"],
        mime_type=row["mime_type"],
        size_bytes=row.get("size_bytes"),
        page_count=int(row.get("page_count") or 0),
        created_at=_iso(row.get("created_at")),
    )


def _row_to_question(row: dict) -> Question:
    return Question(
        id=row["id"],
        prompt=row["prompt"],
        choices=list(row["choices"] or []),
        correct_indices=list(row["correct_indices"] or []),
        explanation=row.get("explanation"),
        position=int(row.get("position") or 0),
        section_id=row.get("section_id"),
        set_id=row.get("set_id"),
        page_number=row.get("page_number"),
        page_question_index=row.get("page_question_index"),
        is_corrected=bool(row.get("is_corrected") or False),
        times_answered=int(row.get("times_answered") or 0),
        times_correct=int(row.get("times_correct") or 0),
    )


def _row_to_progress(row: dict) -> Progress:
    return Progress(
        user_sub=row["user_sub"],
        lesson_id=row["lesson_id"],
        section_id=row["section_id"],
        status=row["status"],
        score=row.get("score"),
        attempts=int(row.get("attempts") or 0),
        completed_at=_iso(row.get("completed_at")),
    )


def _row_to_session(row: dict) -> PracticeSession:
    return PracticeSession(
        id=row["id"],
        set_id=row["set_id"],
        user_sub=row["user_sub"],
        mode=row["mode"],
        total_questions=int(row["total_questions"] or 0),
        question_ids=list(row.get("question_ids") or []),
        questions_answered=int(row["questions_answered"] or 0),
        correct_answers=int(row["correct_answers"] or 0),
        is_completed=bool(row["is_completed"]),
        started_at=_iso(row.get("started_at")),
        ended_at=_iso(row.get("ended_at")),
        total_time_seconds=row.get("total_time_seconds"),
    )


_PROGRESS_COLS = "user_sub, lesson_id::text as lesson_id, section_id::text as section_id, status, score, attempts, completed_at"


class DBCurriculumRepo:
    """Persistence adapter used by curriculum use cases."""

    def __init__(self, dsn: Optional[str] = None) -> None:
        self._dsn = dsn or _dsn()

    def _connect(self):
        return psycopg.connect(self._dsn, row_factory=dict_row)

    # --- Lessons ------------------------------------------------------------

    def create_lesson(self, *, owner_sub: str, name: str) -> Lesson:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                f"insert into public.lessons (owner_sub, name) values (%s, %s) returning {_LESSON_COLS}",
                (owner_sub, name),
            )
            return _row_to_lesson(cur.fetchone())

    def get_lesson(self, lesson_id: str) -> Optional[Lesson]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(f"select {_LESSON_COLS} from public.lessons where id = %s::uuid", (lesson_id,))
            row = cur.fetchone()
            return _row_to_lesson(row) if row else None

    def claim_processing(self, lesson_id: str, *, now: datetime, lease_seconds: int, message: str) -> Optional[Lesson]:
        cutoff = now - timedelta(seconds=lease_seconds)
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                update public.lessons
                   set status = 'processing', processing_message = %s, processing_percent = 0,
                       error_message = null, heartbeat_at = %s, run_id = gen_random_uuid()
                 where id = %s::uuid
                   and (status <> 'processing' or heartbeat_at is null or heartbeat_at < %s)
                returning {_LESSON_COLS}
                """,
                (message, now, lesson_id, cutoff),
            )
            row = cur.fetchone()
            return _row_to_lesson(row) if row else None

    def update_processing(self, lesson_id: str, *, run_id: str, message: str, percent: int, now: datetime) -> bool:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                update public.lessons
                   set processing_message = %s, processing_percent = %s, heartbeat_at = %s
                 where id = %s::uuid and status = 'processing' and run_id = %s::uuid
                """,
                (message, percent, now, lesson_id, run_id),
            )
            return cur.rowcount == 1

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
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                update public.lessons
                   set status = %s, processing_message = %s, processing_percent = %s,
                       error_message = %s, heartbeat_at = %s
                 where id = %s::uuid and status = 'processing' and run_id = %s::uuid
                """,
                (status, message, percent, error_message, now, lesson_id, run_id),
            )
            return cur.rowcount == 1

    def list_stale_processing(self, *, older_than: datetime) -> List[Lesson]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                select {_LESSON_COLS} from public.lessons
                 where status = 'processing' and (heartbeat_at is null or heartbeat_at < %s)
                 order by heartbeat_at nulls first
                """,
                (older_than,),
            )
            return [_row_to_lesson(r) for r in cur.fetchall()]

    def expire_processing(self, lesson_id: str, *, older_than: datetime, error_message: str, now: datetime) -> bool:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                update public.lessons
                   set status = 'error', processing_message = 'Processing failed',
                       error_message = %s, heartbeat_at = %s
                 where id = %s::uuid and status = 'processing'
                   and (heartbeat_at is null or heartbeat_at < %s)
                """,
                (error_message, now, lesson_id, older_than),
            )
            return cur.rowcount == 1

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
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                insert into public.lesson_documents (lesson_id, name, category, file_path, mime_type, size_bytes, page_count)
                values (%s::uuid, %s, %s, %s, %s, %s, %s)
                returning id::text as id, lesson_id::text as lesson_id, name, category, file_path,
                          mime_type, size_bytes, page_count, created_at
                """,
                (lesson_id, name, category, file_path, mime_type, size_bytes, page_count),
            )
            return _row_to_document(cur.fetchone())

    def list_documents(self, lesson_id: str, *, category: Optional[str] = None) -> List[Document]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                select id::text as id, lesson_id::text as lesson_id, name, category, file_path,
                       mime_type, size_bytes, page_count, created_at
                  from public.lesson_documents
                 where lesson_id = %s::uuid and (%s::text is null or category = %s::text)
                 order by created_at, id
                """,
                (lesson_id, category, category),
            )
            return [_row_to_document(r) for r in cur.fetchall()]

    def set_document_page_count(self, document_id: str, page_count: int) -> None:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                "update public.lesson_documents set page_count = %s where id = %s::uuid",
                (int(page_count), document_id),
            )

    def upsert_page_image(self, image: PageImage) -> None:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                insert into public.lesson_page_images (document_id, page_number, image_key, width, height)
                values (%s::uuid, %s, %s, %s, %s)
                on conflict (document_id, page_number) do update
                   set image_key = excluded.image_key, width = excluded.width,
                       height = excluded.height, updated_at = now()
                """,
                (image.document_id, image.page_number, image.image_key, image.width, image.height),
            )

    def upsert_transcript(self, transcript: Transcript) -> None:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                insert into public.lesson_page_transcripts (document_id, page_number, text_content, has_visual_content)
                values (%s::uuid, %s, %s, %s)
                on conflict (document_id, page_number) do update
                   set text_content = excluded.text_content,
                       has_visual_content = excluded.has_visual_content,
                       updated_at = now()
                """,
                (transcript.document_id, transcript.page_number, transcript.text, transcript.has_visual_content),
            )

    def list_transcripts(self, document_id: str) -> List[Transcript]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                select document_id::text as document_id, page_number, text_content, has_visual_content
                  from public.lesson_page_transcripts
                 where document_id = %s::uuid
                 order by page_number
                """,
                (document_id,),
            )
            return [
                Transcript(
                    document_id=r["document_id"],
                    page_number=int(r["page_number"]),
                    text=r["text_content"],
                    has_visual_content=bool(r["has_visual_content"]),
                )
                for r in cur.fetchall()
            ]

    # --- Sections -----------------------------------------------------------

    def replace_sections(
        self,
        lesson_id: str,
        drafts: Sequence[SectionDraft],
        *,
        pass_threshold: int,
        run_id: str,
    ) -> Optional[List[Section]]:
        """Swap the curriculum in one transaction; None when `run_id` lost the lease."""
        with self._connect() as conn:
            with conn.transaction(), conn.cursor() as cur:
                # row lock keeps the reaper and a takeover out until commit
                cur.execute(
                    """
                    select 1 from public.lessons
                     where id = %s::uuid and status = 'processing' and run_id = %s::uuid
                     for update
                    """,
                    (lesson_id, run_id),
                )
                if cur.fetchone() is None:
                    return None
                # progress rows cascade with their sections
                cur.execute("delete from public.lesson_sections where lesson_id = %s::uuid", (lesson_id,))
                for order, draft in enumerate(drafts):
                    cur.execute(
                        """
                        insert into public.lesson_sections
                            (lesson_id, order_index, title, start_page, end_page, summary, pass_threshold)
                        values (%s::uuid, %s, %s, %s, %s, %s, %s)
                        returning id::text as id
                        """,
                        (lesson_id, order, draft.title, draft.start_page, draft.end_page, draft.summary, pass_threshold),
                    )
                    section_id = cur.fetchone()["id"]
                    for pos, q in enumerate(draft.questions):
                        cur.execute(
                            """
                            insert into public.section_questions
                                (section_id, position, prompt, choices, correct_indices, explanation)
                            values (%s::uuid, %s, %s, %s, %s, %s)
                            """,
                            (
                                section_id,
                                pos,
                                q.prompt,
                                Json(list(q.choices)),
                                unique_indices(q.correct_indices),
                                q.explanation,
                            ),
                        )
        return self.list_sections(lesson_id)

    def _sections_where(self, clause: str, params: tuple) -> List[Section]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                select id::text as id, lesson_id::text as lesson_id, order_index, title,
                       start_page, end_page, summary, pass_threshold
                  from public.lesson_sections
                 where {clause}
                 order by order_index
                """,
                params,
            )
            sections = [
                Section(
                    id=r["id"],
                    lesson_id=r["lesson_id"],
                    order_index=int(r["order_index"]),
                    title=r["title"],
                    start_page=int(r["start_page"]),
                    end_page=int(r["end_page"]),
                    summary=r["summary"],
                    pass_threshold=int(r["pass_threshold"]),
                )
                for r in cur.fetchall()
            ]
            if not sections:
                return []
            cur.execute(
                """
                select id::text as id, section_id::text as section_id, position, prompt, choices,
                       correct_indices, explanation
                  from public.section_questions
                 where section_id = any(%s::uuid[])
                 order by section_id, position
                """,
                ([s.id for s in sections],),
            )
            by_section: dict[str, List[Question]] = {}
            for r in cur.fetchall():
                by_section.setdefault(r["section_id"], []).append(_row_to_question(r))
        for s in sections:
            s.questions = by_section.get(s.id, [])
        return sections

    def list_sections(self, lesson_id: str) -> List[Section]:
        return self._sections_where("lesson_id = %s::uuid", (lesson_id,))

    # --- Progress -----------------------------------------------------------

    def list_progress(self, *, user_sub: str, lesson_id: str) -> List[Progress]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                f"select {_PROGRESS_COLS} from public.lesson_progress where user_sub = %s and lesson_id = %s::uuid",
                (user_sub, lesson_id),
            )
            return [_row_to_progress(r) for r in cur.fetchall()]

    def seed_progress(self, *, user_sub: str, lesson_id: str, section_ids: Sequence[str]) -> List[Progress]:
        with self._connect() as conn:
            with conn.transaction(), conn.cursor() as cur:
                for index, section_id in enumerate(section_ids):
                    cur.execute(
                        """
                        insert into public.lesson_progress (user_sub, lesson_id, section_id, status)
                        values (%s, %s::uuid, %s::uuid, %s)
                        on conflict (user_sub, section_id) do nothing
                        """,
                        (user_sub, lesson_id, section_id, "current" if index == 0 else "locked"),
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
        with self._connect() as conn:
            with conn.transaction(), conn.cursor() as cur:
                cur.execute(
                    """
                    select status from public.lesson_progress
                     where user_sub = %s and section_id = %s::uuid
                     for update
                    """,
                    (user_sub, section_id),
                )
                existing = cur.fetchone()
                status = existing["status"] if existing else ("current" if is_first_section else "locked")
                if status == "locked":
                    return None
                cur.execute(
                    f"""
                    insert into public.lesson_progress
                        (user_sub, lesson_id, section_id, status, score, attempts, completed_at, updated_at)
                    values (%s, %s::uuid, %s::uuid, %s, %s, 1, %s, %s)
                    on conflict (user_sub, section_id) do update
                       set attempts = lesson_progress.attempts + 1,
                           score = excluded.score,
                           status = case when lesson_progress.status = 'completed' then 'completed'
                                         else excluded.status end,
                           completed_at = coalesce(lesson_progress.completed_at, excluded.completed_at),
                           updated_at = excluded.updated_at
                    returning {_PROGRESS_COLS}
                    """,
                    (
                        user_sub,
                        lesson_id,
                        section_id,
                        "completed" if passed else "current",
                        score,
                        now if passed else None,
                        now,
                    ),
                )
                row = cur.fetchone()
                if passed and next_section_id:
                    cur.execute(
                        """
                        insert into public.lesson_progress (user_sub, lesson_id, section_id, status)
                        values (%s, %s::uuid, %s::uuid, 'current')
                        on conflict (user_sub, section_id) do update
                           set status = 'current', updated_at = now()
                         where lesson_progress.status = 'locked'
                        """,
                        (user_sub, lesson_id, next_section_id),
                    )
                return _row_to_progress(row)

    # --- Question sets ------------------------------------------------------

    def create_set(self, *, owner_sub: str, name: str) -> QuestionSet:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                insert into public.question_sets (owner_sub, name) values (%s, %s)
                returning id::text as id, owner_sub, name, is_corrected, created_at
                """,
                (owner_sub, name),
            )
            r = cur.fetchone()
            return QuestionSet(id=r["id"], owner_sub=r["owner_sub"], name=r["name"], created_at=_iso(r["created_at"]))

    def get_set(self, set_id: str) -> Optional[QuestionSet]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                "select id::text as id, owner_sub, name, is_corrected, created_at from public.question_sets where id = %s::uuid",
                (set_id,),
            )
            r = cur.fetchone()
            if not r:
                return None
            return QuestionSet(
                id=r["id"],
                owner_sub=r["owner_sub"],
                name=r["name"],
                is_corrected=bool(r["is_corrected"]),
                created_at=_iso(r["created_at"]),
            )

    def add_set_questions(self, set_id: str, drafts: Sequence[QuestionDraft]) -> List[Question]:
        ids: List[str] = []
        with self._connect() as conn:
            with conn.transaction(), conn.cursor() as cur:
                for q in drafts:
                    cur.execute(
                        """
                        insert into public.set_questions
                            (set_id, page_number, page_question_index, prompt, choices, correct_indices, explanation)
                        values (%s::uuid, %s, %s, %s, %s, %s, %s)
                        returning id::text as id
                        """,
                        (
                            set_id,
                            q.page_number,
                            q.page_question_index,
                            q.prompt,
                            Json(list(q.choices)),
                            unique_indices(q.correct_indices),
                            q.explanation,
                        ),
                    )
                    ids.append(cur.fetchone()["id"])
        wanted = set(ids)
        return [q for q in self.list_set_questions(set_id) if q.id in wanted]

    def list_set_questions(self, set_id: str) -> List[Question]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                select id::text as id, set_id::text as set_id, page_number, page_question_index, prompt,
                       choices, correct_indices, explanation, is_corrected, times_answered, times_correct
                  from public.set_questions
                 where set_id = %s::uuid
                 order by page_number nulls last, page_question_index nulls last, created_at, id
                """,
                (set_id,),
            )
            return [_row_to_question(r) for r in cur.fetchall()]

    def update_question_answers(self, question_id: str, correct_indices: Sequence[int]) -> None:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                "update public.set_questions set correct_indices = %s, is_corrected = true where id = %s::uuid",
                (unique_indices(correct_indices), question_id),
            )

    def mark_set_corrected(self, set_id: str) -> None:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute("update public.question_sets set is_corrected = true where id = %s::uuid", (set_id,))

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
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                insert into public.practice_sessions (set_id, user_sub, mode, total_questions, question_ids, started_at)
                values (%s::uuid, %s, %s, %s, %s::uuid[], %s)
                returning {_SESSION_COLS}
                """,
                (set_id, user_sub, mode, total_questions, list(question_ids), now),
            )
            return _row_to_session(cur.fetchone())

    def get_session(self, session_id: str) -> Optional[PracticeSession]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(f"select {_SESSION_COLS} from public.practice_sessions where id = %s::uuid", (session_id,))
            r = cur.fetchone()
            return _row_to_session(r) if r else None

    def latest_open_session(self, *, set_id: str, user_sub: str) -> Optional[PracticeSession]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                select {_SESSION_COLS} from public.practice_sessions
                 where set_id = %s::uuid and user_sub = %s and not is_completed
                 order by started_at desc
                 limit 1
                """,
                (set_id, user_sub),
            )
            r = cur.fetchone()
            return _row_to_session(r) if r else None

    def record_session_answer(self, *, session_id: str, answer: SessionAnswer) -> bool:
        correct = 1 if answer.is_correct else 0
        with self._connect() as conn:
            with conn.transaction(), conn.cursor() as cur:
                cur.execute(
                    """
                    update public.practice_sessions
                       set questions_answered = questions_answered + 1,
                           correct_answers = correct_answers + %s
                     where id = %s::uuid and not is_completed
                    returning set_id::text as set_id
                    """,
                    (correct, session_id),
                )
                row = cur.fetchone()
                if not row:
                    return False
                cur.execute(
                    """
                    insert into public.session_answers (session_id, question_id, selected_option, is_correct, time_spent_seconds)
                    values (%s::uuid, %s::uuid, %s, %s, %s)
                    """,
                    (session_id, answer.question_id, answer.selected_option, answer.is_correct, answer.time_spent_seconds),
                )
                cur.execute(
                    """
                    update public.set_questions
                       set times_answered = times_answered + 1,
                           times_correct = times_correct + %s
                     where id = %s::uuid and set_id = %s::uuid
                    """,
                    (correct, answer.question_id, row["set_id"]),
                )
                return True

    def complete_session(
        self,
        *,
        session_id: str,
        correct_answers: Optional[int],
        total_time_seconds: Optional[int],
        now: datetime,
    ) -> Optional[PracticeSession]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                update public.practice_sessions
                   set is_completed = true,
                       ended_at = %s,
                       correct_answers = coalesce(%s, correct_answers),
                       total_time_seconds = coalesce(%s, total_time_seconds)
                 where id = %s::uuid
                returning {_SESSION_COLS}
                """,
                (now, correct_answers, total_time_seconds, session_id),
            )
            r = cur.fetchone()
            return _row_to_session(r) if r else None


__all__ = ["DBCurriculumRepo"]
