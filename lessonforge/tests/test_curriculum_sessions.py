from __future__ import annotations

import pytest

from lessonforge.curriculum.domain import Question, QuestionDraft
from lessonforge.curriculum.errors import NotFoundError, ValidationError
from lessonforge.curriculum.repo_memory import InMemoryCurriculumRepo
from lessonforge.curriculum.usecases.sessions import (
    CompleteSessionInput,
    CompleteSessionUseCase,
    CreateSessionInput,
    CreateSessionUseCase,
    GetSessionUseCase,
    RecordAnswerInput,
    RecordAnswerUseCase,
    judge_answer,
)
from lessonforge.tests.utils.fakes import OWNER, STRANGER, utc


@pytest.fixture()
def repo_and_set():
    repo = InMemoryCurriculumRepo()
    qs = repo.create_set(owner_sub=OWNER, name="Drill")
    repo.add_set_questions(
        qs.id,
        [
            QuestionDraft(prompt="q1", choices=("a", "b", "c"), correct_indices=(1,), page_number=1, page_question_index=0),
            QuestionDraft(prompt="q2", choices=("a", "b", "c"), correct_indices=(0, 2), page_number=1, page_question_index=1),
            QuestionDraft(prompt="q3", choices=("a", "b"), correct_indices=(), page_number=2, page_question_index=0),
        ],
    )
    return repo, qs, repo.list_set_questions(qs.id)


def _create(repo, qs, **kwargs):
    return CreateSessionUseCase(repo, clock=utc).execute(
        CreateSessionInput(set_id=qs.id, user_sub=kwargs.pop("user", OWNER), mode=kwargs.pop("mode", "practice"), **kwargs)
    )


def test_create_freezes_questions_in_stored_order(repo_and_set):
    repo, qs, questions = repo_and_set

    session = _create(repo, qs)

    assert session.question_ids == [q.id for q in questions]
    assert session.total_questions == 3
    assert session.started_at == utc().isoformat()


def test_create_with_subset_and_cap(repo_and_set):
    repo, qs, questions = repo_and_set

    subset = _create(repo, qs, question_ids=[questions[2].id, questions[0].id, questions[2].id])
    capped = _create(repo, qs, total_questions=2)

    assert subset.question_ids == [questions[2].id, questions[0].id]
    assert capped.question_ids == [questions[0].id, questions[1].id]


@pytest.mark.parametrize(
    "kwargs",
    [{"mode": "exam"}, {"question_ids": ["nope"]}, {"total_questions": 0}],
)
def test_create_rejects_bad_input(repo_and_set, kwargs):
    repo, qs, _ = repo_and_set
    with pytest.raises(ValidationError):
        _create(repo, qs, **kwargs)


def test_create_on_empty_or_foreign_set(repo_and_set):
    repo, qs, _ = repo_and_set
    empty = repo.create_set(owner_sub=OWNER, name="Empty")

    with pytest.raises(ValidationError):
        _create(repo, empty)
    with pytest.raises(NotFoundError):
        _create(repo, qs, user=STRANGER)


@pytest.mark.parametrize(
    "correct,selected,fallback,expected",
    [
        ([1], "B", None, True),
        ([1], " b ", None, True),
        ([1], "A", True, False),
        ([0, 2], "C,A", None, True),
        ([0, 2], "A;C;A", None, True),
        ([0, 2], "A", None, False),
        ([], "A", True, True),
        ([], "A", None, False),
    ],
)
def test_judge_answer(correct, selected, fallback, expected):
    question = Question(id="q", prompt="?", choices=["a", "b", "c"], correct_indices=correct)
    assert judge_answer(question, selected, fallback) is expected


def test_record_answers_then_complete(repo_and_set):
    repo, qs, questions = repo_and_set
    session = _create(repo, qs)
    record = RecordAnswerUseCase(repo)

    def answer(question, option, **kwargs):
        return record.execute(
            RecordAnswerInput(
                set_id=qs.id, user_sub=OWNER, session_id=session.id, question_id=question.id, selected_option=option, **kwargs
            )
        )

    assert answer(questions[0], "B", time_spent_seconds=12) is True
    assert answer(questions[1], "A", is_correct=True) is False
    assert answer(questions[2], "A", is_correct=True) is True

    stored = repo.get_session(session.id)
    assert (stored.questions_answered, stored.correct_answers) == (3, 2)
    assert stored.answers[0].time_spent_seconds == 12
    q1 = repo.list_set_questions(qs.id)[0]
    assert (q1.times_answered, q1.times_correct) == (1, 1)

    done = CompleteSessionUseCase(repo, clock=utc).execute(
        CompleteSessionInput(set_id=qs.id, user_sub=OWNER, session_id=session.id, total_time_seconds=95)
    )
    assert done.is_completed is True
    assert done.correct_answers == 2
    assert done.total_time_seconds == 95

    with pytest.raises(ValidationError):
        answer(questions[0], "B")


def test_record_answer_validation(repo_and_set):
    repo, qs, questions = repo_and_set
    session = _create(repo, qs, question_ids=[questions[0].id])
    record = RecordAnswerUseCase(repo)

    def attempt(**kwargs):
        values = dict(set_id=qs.id, user_sub=OWNER, session_id=session.id, question_id=questions[0].id, selected_option="B")
        values.update(kwargs)
        return record.execute(RecordAnswerInput(**values))

    with pytest.raises(ValidationError):
        attempt(question_id=questions[1].id)
    with pytest.raises(ValidationError):
        attempt(selected_option="  ")
    with pytest.raises(ValidationError):
        attempt(time_spent_seconds=-1)
    with pytest.raises(NotFoundError):
        attempt(user_sub=STRANGER)
    with pytest.raises(NotFoundError):
        attempt(session_id="missing")


def test_get_session_returns_latest_open(repo_and_set):
    repo, qs, _ = repo_and_set
    get = GetSessionUseCase(repo)

    assert get.execute(set_id=qs.id, user_sub=OWNER) is None
    session = _create(repo, qs)
    assert get.execute(set_id=qs.id, user_sub=OWNER).id == session.id
    assert get.execute(set_id=qs.id, user_sub=OWNER, session_id=session.id).id == session.id

    CompleteSessionUseCase(repo, clock=utc).execute(CompleteSessionInput(set_id=qs.id, user_sub=OWNER, session_id=session.id))
    assert get.execute(set_id=qs.id, user_sub=OWNER) is None


def test_complete_rejects_negative_counters(repo_and_set):
    repo, qs, _ = repo_and_set
    session = _create(repo, qs)

    with pytest.raises(ValidationError):
        CompleteSessionUseCase(repo).execute(
            CompleteSessionInput(set_id=qs.id, user_sub=OWNER, session_id=session.id, correct_answers=-1)
        )
