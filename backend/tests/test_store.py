"""Response writer and submission pipeline against the store directly."""
from types import SimpleNamespace

import pytest

from conftest import count_rows
from errors import DuplicateSubmission, StorageFailure, NotFound, Forbidden, InvalidInput
from models import Survey, Question
from store import SurveyStore
from submission import submit_response


@pytest.fixture
def survey(db_session):
    s = Survey(owner_id=500, title="Store Survey", is_active=True)
    db_session.add(s)
    db_session.flush()
    q1 = Question(survey_id=s.id, text="Name?", type="text", is_required=True, order_index=0)
    q2 = Question(survey_id=s.id, text="Score?", type="rating", order_index=1)
    db_session.add_all([q1, q2])
    db_session.commit()
    return SimpleNamespace(id=s.id, q1=q1.id, q2=q2.id)


def test_is_owner(db_session, survey):
    store = SurveyStore(db_session)
    assert store.is_owner(survey.id, 500)
    assert not store.is_owner(survey.id, 501)
    assert not store.is_owner(survey.id, None)
    assert not store.is_owner(987654, 500)


def test_write_response_persists_all_answers(db_session, survey):
    store = SurveyStore(db_session)
    r = store.write_response(survey.id, 501, [(survey.q1, "Ann"), (survey.q2, "9")])
    assert r.id and r.submitted_at is not None
    assert sorted(a.answer_text for a in r.answers) == ["9", "Ann"]
    assert count_rows(db_session, survey.id) == (1, 2)


def test_write_response_rolls_back_on_storage_error(db_session, survey):
    store = SurveyStore(db_session)
    # the second answer points at a question that does not exist → FK violation mid-write
    with pytest.raises(StorageFailure) as exc:
        store.write_response(survey.id, None, [(survey.q1, "Ann"), (987654, "x")])
    assert exc.value.retryable
    assert exc.value.message == "Failed to submit response"
    assert count_rows(db_session, survey.id) == (0, 0)


def test_unique_constraint_reports_duplicate(db_session, survey):
    store = SurveyStore(db_session)
    store.write_response(survey.id, 502, [(survey.q1, "first")])
    # bypasses the pipeline pre-check, so only the constraint can catch it
    with pytest.raises(DuplicateSubmission) as exc:
        store.write_response(survey.id, 502, [(survey.q1, "second")])
    assert exc.value.kind == "Forbidden"
    assert count_rows(db_session, survey.id) == (1, 1)


def test_anonymous_responses_never_collide(db_session, survey):
    store = SurveyStore(db_session)
    store.write_response(survey.id, None, [(survey.q1, "a")])
    store.write_response(survey.id, None, [(survey.q1, "b")])
    stats = store.response_stats(survey.id)
    assert stats == {"total_responses": 2, "unique_respondents": 0, "anonymous_responses": 2}


class FakeStore:
    """In-memory stand-in exposing only what submit_response uses."""

    def __init__(self, survey, questions, responded=()):
        self.survey = survey
        self.questions = questions
        self.responded = set(responded)
        self.written = []

    def get_survey(self, survey_id):
        return self.survey if self.survey and self.survey.id == survey_id else None

    def list_questions(self, survey_id):
        return self.questions

    def has_responded(self, survey_id, respondent_id):
        return respondent_id in self.responded

    def write_response(self, survey_id, respondent_id, answers):
        self.written.append((survey_id, respondent_id, answers))
        return SimpleNamespace(id=len(self.written), answers=answers)


QUESTIONS = [SimpleNamespace(id=1, text="Pick", type="single_choice", is_required=True, options=["Yes", "No"])]


class TestPipelineGates:
    def test_success_reaches_writer(self):
        store = FakeStore(SimpleNamespace(id=1, is_active=True), QUESTIONS)
        submit_response(store, 1, 7, [{"question_id": 1, "answer_text": "Yes"}])
        assert store.written == [(1, 7, [(1, "Yes")])]

    def test_missing_survey(self):
        with pytest.raises(NotFound):
            submit_response(FakeStore(None, QUESTIONS), 1, None, [])

    def test_inactive_survey_checked_before_answers(self):
        store = FakeStore(SimpleNamespace(id=1, is_active=False), QUESTIONS)
        with pytest.raises(Forbidden) as exc:
            submit_response(store, 1, None, "not-a-list")
        assert exc.value.status_code == 403

    def test_already_responded_wins_over_invalid_payload(self):
        store = FakeStore(SimpleNamespace(id=1, is_active=True), QUESTIONS, responded={7})
        with pytest.raises(DuplicateSubmission):
            submit_response(store, 1, 7, None)
        assert store.written == []

    def test_invalid_answers_never_written(self):
        store = FakeStore(SimpleNamespace(id=1, is_active=True), QUESTIONS)
        with pytest.raises(InvalidInput):
            submit_response(store, 1, None, [{"question_id": 1, "answer_text": "Maybe"}])
        assert store.written == []
