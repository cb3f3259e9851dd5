"""
Quiz scoring and the progress transitions it triggers.

Seeded lesson: section 1 has four questions whose correct answers are
0, 1, 2, 3; section 2 has two questions both answered by index 0.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import threading

import pytest

from lessonforge.curriculum.errors import (
    AccessDeniedError,
    IncompleteSubmissionError,
    NotFoundError,
    ValidationError,
)
from lessonforge.curriculum.repo_memory import InMemoryCurriculumRepo
from lessonforge.curriculum.usecases.progress import GetProgressUseCase, InitializeProgressUseCase
from lessonforge.curriculum.usecases.quiz import SubmitQuizInput, SubmitQuizUseCase, normalize_answer
from lessonforge.curriculum.workers import telemetry
from lessonforge.tests.utils.fakes import OWNER, STRANGER, seed_ready_lesson, utc


def _submit(repo, lesson, section, picks, *, user=OWNER):
    answers = {q.id: pick for q, pick in zip(section.questions, picks)}
    use_case = SubmitQuizUseCase(repo, clock=utc)
    return use_case.execute(
        SubmitQuizInput(lesson_id=lesson.id, user_sub=user, section_id=section.id, answers=answers)
    )


def _statuses(repo, lesson):
    view = GetProgressUseCase(repo).execute(lesson_id=lesson.id, user_sub=OWNER)
    return [s.status for s in view.sections]


def test_three_of_four_scores_75_and_unlocks_next():
    repo = InMemoryCurriculumRepo()
    lesson, (first, second) = seed_ready_lesson(repo)

    result = _submit(repo, lesson, first, [0, 1, 2, 0])

    assert (result.score, result.passed, result.correct_count, result.total_questions) == (75, True, 3, 4)
    assert result.attempts == 1
    assert result.next_section_id == second.id
    assert [r.correct for r in result.results] == [True, True, True, False]
    assert _statuses(repo, lesson) == ["completed", "current"]
    assert telemetry.counter_value(telemetry.QUIZ_SUBMISSIONS, passed="true") == 1


def test_score_exactly_at_threshold_passes():
    repo = InMemoryCurriculumRepo()
    lesson, (first, _) = seed_ready_lesson(repo, sections=([[0]] * 10, [[0]]))

    result = _submit(repo, lesson, first, [0] * 7 + [1] * 3)

    assert result.score == 70
    assert result.passed is True


def test_failing_attempt_keeps_section_current_and_counts():
    repo = InMemoryCurriculumRepo()
    lesson, (first, _) = seed_ready_lesson(repo)

    _submit(repo, lesson, first, [0, 0, 0, 0])
    result = _submit(repo, lesson, first, [0, 1, 0, 0])

    assert (result.score, result.passed, result.attempts) == (50, False, 2)
    assert result.next_section_id is None
    assert _statuses(repo, lesson) == ["current", "locked"]


def test_threshold_100_requires_every_answer():
    repo = InMemoryCurriculumRepo()
    lesson, (first, _) = seed_ready_lesson(repo, pass_threshold=100)

    assert _submit(repo, lesson, first, [0, 1, 2, 0]).passed is False
    assert _submit(repo, lesson, first, [0, 1, 2, 3]).passed is True


def test_multi_answer_requires_exact_set():
    repo = InMemoryCurriculumRepo()
    lesson, (first, _) = seed_ready_lesson(repo, sections=(([0, 2], [1]), ([0],)))

    subset = _submit(repo, lesson, first, [[0], 1])
    superset = _submit(repo, lesson, first, [[0, 1, 2], 1])
    exact = _submit(repo, lesson, first, [[2, 0, 2], [1]])

    assert [r.correct for r in subset.results] == [False, True]
    assert [r.correct for r in superset.results] == [False, True]
    assert [r.correct for r in exact.results] == [True, True]
    assert exact.results[0].submitted == [2, 0]


def test_locked_section_is_rejected_without_mutation():
    repo = InMemoryCurriculumRepo()
    lesson, (_, second) = seed_ready_lesson(repo)

    with pytest.raises(AccessDeniedError):
        _submit(repo, lesson, second, [0, 0])

    assert repo.list_progress(user_sub=OWNER, lesson_id=lesson.id) == []


def test_incomplete_submission_lists_missing_and_leaves_attempts():
    repo = InMemoryCurriculumRepo()
    lesson, (first, _) = seed_ready_lesson(repo)
    answers = {first.questions[0].id: 0, first.questions[1].id: None}

    with pytest.raises(IncompleteSubmissionError) as info:
        SubmitQuizUseCase(repo, clock=utc).execute(
            SubmitQuizInput(lesson_id=lesson.id, user_sub=OWNER, section_id=first.id, answers=answers)
        )

    assert info.value.missing_question_ids == [q.id for q in first.questions[1:]]
    view = GetProgressUseCase(repo).execute(lesson_id=lesson.id, user_sub=OWNER)
    assert view.sections[0].attempts == 0


def test_lesson_not_ready_is_rejected():
    repo = InMemoryCurriculumRepo()
    lesson, (first, _) = seed_ready_lesson(repo)
    repo.lessons[lesson.id].status = "processing"

    with pytest.raises(ValidationError):
        _submit(repo, lesson, first, [0, 1, 2, 3])


def test_foreign_lesson_and_unknown_section_are_not_found():
    repo = InMemoryCurriculumRepo()
    lesson, (first, _) = seed_ready_lesson(repo)

    with pytest.raises(NotFoundError):
        _submit(repo, lesson, first, [0, 1, 2, 3], user=STRANGER)
    with pytest.raises(NotFoundError):
        SubmitQuizUseCase(repo).execute(
            SubmitQuizInput(lesson_id=lesson.id, user_sub=OWNER, section_id="missing", answers={})
        )


def test_completed_section_is_not_demoted_by_a_later_failure():
    repo = InMemoryCurriculumRepo()
    lesson, (first, _) = seed_ready_lesson(repo)

    _submit(repo, lesson, first, [0, 1, 2, 3])
    retry = _submit(repo, lesson, first, [1, 0, 0, 0])

    assert retry.passed is False
    assert retry.attempts == 2
    view = GetProgressUseCase(repo).execute(lesson_id=lesson.id, user_sub=OWNER)
    assert view.sections[0].status == "completed"
    assert view.sections[0].score == 0
    assert view.sections[1].status == "current"


def test_passing_the_last_section_has_no_next():
    repo = InMemoryCurriculumRepo()
    lesson, (first, second) = seed_ready_lesson(repo)

    _submit(repo, lesson, first, [0, 1, 2, 3])
    result = _submit(repo, lesson, second, [0, 0])

    assert result.passed is True
    assert result.next_section_id is None
    view = GetProgressUseCase(repo).execute(lesson_id=lesson.id, user_sub=OWNER)
    assert (view.completed_sections, view.total_sections, view.overall_progress) == (2, 2, 100)


def test_initialize_progress_is_idempotent():
    repo = InMemoryCurriculumRepo()
    lesson, (first, _) = seed_ready_lesson(repo)
    init = InitializeProgressUseCase(repo)

    assert [v.status for v in init.execute(lesson_id=lesson.id, user_sub=OWNER)] == ["current", "locked"]
    _submit(repo, lesson, first, [0, 1, 2, 3])
    assert [v.status for v in init.execute(lesson_id=lesson.id, user_sub=OWNER)] == ["completed", "current"]


def test_initialize_progress_for_lesson_without_sections():
    repo = InMemoryCurriculumRepo()
    lesson = repo.create_lesson(owner_sub=OWNER, name="Empty")

    assert InitializeProgressUseCase(repo).execute(lesson_id=lesson.id, user_sub=OWNER) == []
    view = GetProgressUseCase(repo).execute(lesson_id=lesson.id, user_sub=OWNER)
    assert (view.overall_progress, view.total_sections) == (0, 0)


@pytest.mark.parametrize(
    "raw,expected",
    [(2, [2]), ([1, 1, 0], [1, 0]), (None, None), ([], None), (True, None)],
)
def test_normalize_answer(raw, expected):
    assert normalize_answer(raw) == expected


def test_normalize_answer_rejects_non_indices():
    with pytest.raises(ValidationError):
        normalize_answer("A")
    with pytest.raises(ValidationError):
        normalize_answer([0, "b"])


def test_concurrent_passing_submissions_count_every_attempt_and_unlock_once():
    repo = InMemoryCurriculumRepo()
    lesson, (first, second, third) = seed_ready_lesson(repo, sections=([[0]], [[0]], [[0]]))
    workers = 8
    barrier = threading.Barrier(workers)

    def submit(_):
        barrier.wait(5)
        return _submit(repo, lesson, first, [0])

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(submit, range(workers)))

    assert all(r.passed and r.next_section_id == second.id for r in results)
    assert sorted(r.attempts for r in results) == list(range(1, workers + 1))
    by_section = {p.section_id: p for p in repo.list_progress(user_sub=OWNER, lesson_id=lesson.id)}
    assert by_section[first.id].attempts == workers
    assert by_section[second.id].status == "current"
    assert third.id not in by_section or by_section[third.id].status == "locked"
    assert _statuses(repo, lesson) == ["completed", "current", "locked"]
