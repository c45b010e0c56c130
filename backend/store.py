import logging
from typing import Optional

from sqlalchemy import select, func, case
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from errors import DuplicateSubmission, StorageFailure
from models import Survey, Question, Response, Answer

logger = logging.getLogger(__name__)


class SurveyStore:
    """Survey, question and response access bound to one request's session.

    The submission pipeline only relies on ``get_survey``, ``list_questions``,
    ``has_responded`` and ``write_response``, so any object exposing those can
    stand in for it.
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------
    # Surveys
    # ------------------------
    def get_survey(self, survey_id: int) -> Optional[Survey]:
        return self.db.get(Survey, survey_id)

    def is_owner(self, survey_id: int, user_id: Optional[int]) -> bool:
        if user_id is None:
            return False
        row = self.db.execute(
            select(Survey.id).where(Survey.id == survey_id, Survey.owner_id == user_id)
        ).scalar_one_or_none()
        return row is not None

    def list_surveys(self, owner_id: Optional[int] = None, is_active: Optional[bool] = None,
                     limit: Optional[int] = None, offset: Optional[int] = None) -> list[Survey]:
        q = select(Survey)
        if owner_id is not None:
            q = q.where(Survey.owner_id == owner_id)
        if is_active is not None:
            q = q.where(Survey.is_active == is_active)
        q = q.order_by(Survey.created_at.desc(), Survey.id.desc())
        if limit is not None:
            q = q.limit(limit)
            if offset is not None:
                q = q.offset(offset)
        return list(self.db.execute(q).scalars().all())

    def count_responses(self, survey_id: int) -> int:
        return self.db.execute(
            select(func.count()).select_from(Response).where(Response.survey_id == survey_id)
        ).scalar_one()

    # ------------------------
    # Questions
    # ------------------------
    def list_questions(self, survey_id: int) -> list[Question]:
        return list(self.db.execute(
            select(Question).where(Question.survey_id == survey_id).order_by(Question.order_index, Question.id)
        ).scalars().all())

    def next_order_index(self, survey_id: int) -> int:
        max_index = self.db.execute(
            select(func.max(Question.order_index)).where(Question.survey_id == survey_id)
        ).scalar_one()
        return 0 if max_index is None else max_index + 1

    def reorder_questions(self, survey_id: int, order: list[tuple[int, int]]) -> None:
        """Apply (question_id, order_index) pairs in one transaction."""
        try:
            for question_id, order_index in order:
                row = self.db.get(Question, question_id)
                if row is not None and row.survey_id == survey_id:
                    row.order_index = order_index
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    # ------------------------
    # Responses
    # ------------------------
    def has_responded(self, survey_id: int, respondent_id: int) -> bool:
        row = self.db.execute(
            select(Response.id).where(Response.survey_id == survey_id, Response.respondent_id == respondent_id)
        ).first()
        return row is not None

    def write_response(self, survey_id: int, respondent_id: Optional[int],
                       answers: list[tuple[int, str]]) -> Response:
        """Insert one response and its answers atomically.

        Either every row is committed or the session is rolled back to where
        it started.

        Raises:
            DuplicateSubmission: if the (survey, respondent) pair already exists.
            StorageFailure: on any other database error.
        """
        try:
            response = Response(survey_id=survey_id, respondent_id=respondent_id)
            self.db.add(response)
            self.db.flush()
            for question_id, answer_text in answers:
                self.db.add(Answer(response_id=response.id, question_id=question_id, answer_text=answer_text))
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if respondent_id is not None and self.has_responded(survey_id, respondent_id):
                logger.info("Duplicate submission rejected by constraint (survey=%s respondent=%s)",
                            survey_id, respondent_id)
                raise DuplicateSubmission() from exc
            logger.exception("Integrity error while writing response for survey %s", survey_id)
            raise StorageFailure() from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to write response for survey %s", survey_id)
            raise StorageFailure() from exc
        self.db.refresh(response)
        return response

    def get_response(self, response_id: int) -> Optional[Response]:
        return self.db.execute(
            select(Response).options(selectinload(Response.answers)).where(Response.id == response_id)
        ).scalar_one_or_none()

    def list_responses(self, survey_id: int, limit: Optional[int] = None, offset: Optional[int] = None,
                       include_answers: bool = False) -> list[Response]:
        q = select(Response).where(Response.survey_id == survey_id).order_by(
            Response.submitted_at.desc(), Response.id.desc())
        if include_answers:
            q = q.options(selectinload(Response.answers))
        if limit is not None:
            q = q.limit(limit)
            if offset is not None:
                q = q.offset(offset)
        return list(self.db.execute(q).scalars().all())

    def list_responses_by_respondent(self, respondent_id: int) -> list[Response]:
        return list(self.db.execute(
            select(Response).where(Response.respondent_id == respondent_id)
            .order_by(Response.submitted_at.desc(), Response.id.desc())
        ).scalars().all())

    def detailed_answers(self, response_id: int) -> list[dict]:
        rows = self.db.execute(
            select(Answer, Question.text, Question.type)
            .join(Question, Question.id == Answer.question_id)
            .where(Answer.response_id == response_id)
            .order_by(Question.order_index, Question.id)
        ).all()
        return [{
            "id": a.id, "question_id": a.question_id, "answer_text": a.answer_text,
            "question_text": text, "question_type": qtype, "created_at": a.created_at,
        } for a, text, qtype in rows]

    def delete_response(self, response_id: int) -> bool:
        row = self.db.get(Response, response_id)
        if row is None:
            return False
        self.db.delete(row)
        self.db.commit()
        return True

    def response_stats(self, survey_id: int) -> dict:
        total, unique, anonymous = self.db.execute(
            select(
                func.count(Response.id),
                func.count(func.distinct(Response.respondent_id)),
                func.coalesce(func.sum(case((Response.respondent_id.is_(None), 1), else_=0)), 0),
            ).where(Response.survey_id == survey_id)
        ).one()
        return {"total_responses": total, "unique_respondents": unique, "anonymous_responses": anonymous}
