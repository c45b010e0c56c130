# Aggregated survey results and CSV export, built on pandas.
from typing import Optional

import pandas as pd
from sqlalchemy import select, func
from sqlalchemy.orm import Session

from models import Question, Response, Answer
from validation import split_choices, parse_rating, TRUTHY_VALUES

RECENT_TEXT_ANSWERS = 10
EXPORT_COLUMNS = ["response_id", "respondent_id", "submitted_at", "order_index", "question", "type", "answer_text"]


def _percent(count: int, total: int) -> float:
    return round(count * 100.0 / total, 1) if total else 0.0


def load_answers_frame(db: Session, survey_id: int) -> pd.DataFrame:
    """One row per stored answer of a survey, joined with its response and question."""
    q = (
        select(
            Response.id.label("response_id"),
            Response.respondent_id,
            Response.submitted_at,
            Question.id.label("question_id"),
            Question.order_index,
            Question.text.label("question"),
            Question.type,
            Answer.answer_text,
        )
        .join(Answer, Answer.response_id == Response.id)
        .join(Question, Question.id == Answer.question_id)
        .where(Response.survey_id == survey_id)
        .order_by(Response.id, Question.order_index, Question.id)
    )
    rows = db.execute(q).all()
    frame = pd.DataFrame([dict(r._mapping) for r in rows],
                         columns=["response_id", "respondent_id", "submitted_at", "question_id",
                                  "order_index", "question", "type", "answer_text"])
    # anonymous rows carry no respondent; keep the column integral
    frame["respondent_id"] = frame["respondent_id"].astype("Int64")
    return frame


def _choice_breakdown(question: Question, texts: pd.Series) -> list[dict]:
    if question.type == "multiple_choice":
        tokens = texts.map(split_choices).explode()
    else:
        tokens = texts
    counts = tokens.value_counts()
    total = len(texts)
    return [{"option": opt, "count": int(counts.get(opt, 0)), "percentage": _percent(int(counts.get(opt, 0)), total)}
            for opt in (question.options or [])]


def _rating_summary(texts: pd.Series) -> dict:
    ratings = texts.map(parse_rating).dropna().astype(int)
    if ratings.empty:
        return {"average": None, "distribution": []}
    counts = ratings.value_counts().sort_index()
    total = int(counts.sum())
    return {
        "average": round(float(ratings.mean()), 2),
        "distribution": [{"rating": str(r), "count": int(c), "percentage": _percent(int(c), total)}
                         for r, c in counts.items()],
    }


def _boolean_summary(texts: pd.Series) -> dict:
    truthy = int(texts.str.lower().isin(TRUTHY_VALUES).sum())
    falsy = len(texts) - truthy
    return {"true": truthy, "false": falsy,
            "true_percentage": _percent(truthy, len(texts)), "false_percentage": _percent(falsy, len(texts))}


def summarize_question(question: Question, frame: pd.DataFrame) -> dict:
    """Aggregate the non-empty answers of a single question."""
    texts = frame.loc[frame["question_id"] == question.id, "answer_text"].fillna("")
    texts = texts[texts.str.strip() != ""]
    out = {
        "question_id": question.id,
        "question": question.text,
        "type": question.type,
        "order_index": question.order_index,
        "answered": int(len(texts)),
    }
    if question.type in ("single_choice", "multiple_choice"):
        out["options"] = _choice_breakdown(question, texts)
    elif question.type == "rating":
        out.update(_rating_summary(texts))
    elif question.type == "boolean":
        out.update(_boolean_summary(texts))
    else:
        # answers frame is ordered by response id, newest last
        out["recent"] = texts.tail(RECENT_TEXT_ANSWERS).iloc[::-1].tolist()
    return out


def survey_results(db: Session, survey_id: int, questions: Optional[list] = None) -> dict:
    """Per-question aggregation for the survey results view."""
    if questions is None:
        questions = db.execute(
            select(Question).where(Question.survey_id == survey_id).order_by(Question.order_index, Question.id)
        ).scalars().all()
    frame = load_answers_frame(db, survey_id)
    total = db.execute(
        select(func.count()).select_from(Response).where(Response.survey_id == survey_id)
    ).scalar_one()
    return {
        "survey_id": survey_id,
        "total_responses": total,
        "questions": [summarize_question(q, frame) for q in questions],
    }


def export_csv(db: Session, survey_id: int) -> bytes:
    """CSV with one row per answer, sorted by response then question order."""
    frame = load_answers_frame(db, survey_id)
    return frame[EXPORT_COLUMNS].to_csv(index=False).encode("utf-8")
