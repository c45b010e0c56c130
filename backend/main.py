import logging
from contextlib import asynccontextmanager
from typing import Optional, Annotated

from fastapi import FastAPI, Depends, Path, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import settings
from db import engine, get_db, init_db
from errors import SurveyError, NotFound, Forbidden, InvalidInput
from logging_config import configure_logging
from models import Survey, Question, CHOICE_TYPES
from results import survey_results, export_csv
from schemas import *
from security import verify_admin, issue_token, current_user_id, optional_user_id
from store import SurveyStore
from submission import submit_response

logger = logging.getLogger(__name__)

# ids are bound as SQLite INTEGER (signed 64-bit)
MAX_ID = 2**63 - 1
SurveyId = Annotated[int, Path(gt=0, le=MAX_ID)]
QuestionId = Annotated[int, Path(gt=0, le=MAX_ID)]
ResponseId = Annotated[int, Path(gt=0, le=MAX_ID)]


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.ENVIRONMENT, settings.LOG_LEVEL)
    if settings.SECRET_KEY == "dev-secret" and settings.ENVIRONMENT != "development":
        logger.warning("SECRET_KEY is the development default; set a strong value before deploying")
    init_db()
    logger.info("%s %s started (%s)", settings.PROJECT_NAME, settings.VERSION, settings.ENVIRONMENT)
    yield
    engine.dispose()
    logger.info("Database engine disposed")


app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ------------------------
# Error mapping
# ------------------------
@app.exception_handler(SurveyError)
async def survey_error_handler(request: Request, exc: SurveyError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    message = message.removeprefix("Value error, ")
    return JSONResponse(status_code=400, content={"success": False, "message": message, "error": InvalidInput.kind})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})


# ------------------------
# Helpers
# ------------------------
def get_store(db: Session = Depends(get_db)) -> SurveyStore:
    return SurveyStore(db)


def _survey_out(s: Survey) -> dict:
    return {
        "id": s.id, "owner_id": s.owner_id, "title": s.title, "description": s.description,
        "is_active": bool(s.is_active), "created_at": s.created_at, "updated_at": s.updated_at,
    }


def _question_out(q: Question) -> dict:
    return {
        "id": q.id, "survey_id": q.survey_id, "text": q.text, "type": q.type,
        "options": q.options, "is_required": bool(q.is_required), "order_index": q.order_index,
    }


def _answer_out(a) -> dict:
    return {"id": a.id, "response_id": a.response_id, "question_id": a.question_id,
            "answer_text": a.answer_text, "created_at": a.created_at}


def _response_out(r, answers: Optional[list] = None) -> dict:
    out = {"id": r.id, "survey_id": r.survey_id, "respondent_id": r.respondent_id, "submitted_at": r.submitted_at}
    if answers is not None:
        out["answers"] = answers
    return out


def _require_survey(store: SurveyStore, survey_id: int) -> Survey:
    s = store.get_survey(survey_id)
    if not s:
        raise NotFound("Survey not found")
    return s


def _require_owner(store: SurveyStore, survey_id: int, user_id: int, action: str) -> Survey:
    """Load a survey and check the caller owns it.

    Raises:
        NotFound: if the survey does not exist.
        Forbidden: if the caller is not the survey owner.
    """
    s = _require_survey(store, survey_id)
    if not store.is_owner(survey_id, user_id):
        raise Forbidden(f"You do not have permission to {action}")
    return s


def _clean_title(title: Optional[str]) -> str:
    title = (title or "").strip()
    if not title:
        raise InvalidInput("Title is required and must be a non-empty string")
    return title


def _page(limit: Optional[int], offset: Optional[int]) -> tuple[Optional[int], Optional[int]]:
    if limit is None:
        return None, None
    limit = min(limit if limit > 0 else 20, 100)
    return limit, max(offset or 0, 0)


@app.get("/health")
def health():
    """Basic readiness probe."""
    return {"ok": True}


@app.get("/api")
def api_info():
    return {
        "name": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "endpoints": {
            "surveys": "/api/surveys",
            "questions": "/api/questions",
            "responses": "/api/responses",
        },
    }


# ------------------------
# Admin: user tokens
# ------------------------
@app.post("/admin/tokens", dependencies=[Depends(verify_admin)])
def create_token(body: TokenRequest):
    """Issue a signed bearer token for a user id.

    Args:
        body (TokenRequest): {user_id}.

    Returns:
        dict: {"user_id": int, "token": str}
    """
    return {"user_id": body.user_id, "token": issue_token(body.user_id)}


# ------------------------
# Surveys
# ------------------------
@app.post("/api/surveys", status_code=201)
def create_survey(payload: SurveyCreate, user_id: int = Depends(current_user_id),
                  store: SurveyStore = Depends(get_store)):
    """Create a survey owned by the caller.

    Args:
        payload (SurveyCreate): Title (required), description, is_active.

    Returns:
        dict: {"success", "message", "data": survey}

    Raises:
        InvalidInput: if the title is blank.
    """
    survey = Survey(
        owner_id=user_id,
        title=_clean_title(payload.title),
        description=(payload.description or "").strip() or None,
        is_active=payload.is_active,
    )
    store.db.add(survey)
    store.db.commit()
    store.db.refresh(survey)
    logger.info("Survey %s created by user %s", survey.id, user_id)
    return {"success": True, "message": "Survey created successfully", "data": _survey_out(survey)}


@app.get("/api/surveys")
def list_surveys(is_active: Optional[bool] = None, my_surveys: bool = False,
                 limit: Optional[int] = None, offset: Optional[int] = None,
                 user_id: Optional[int] = Depends(optional_user_id),
                 store: SurveyStore = Depends(get_store)):
    """List surveys, newest first.

    Args:
        is_active (bool|None): Filter on the active flag.
        my_surveys (bool): Only the caller's surveys (ignored when anonymous).
        limit (int|None): Page size, capped at 100.
        offset (int|None): Page offset, used with limit.
    """
    limit, offset = _page(limit, offset)
    owner = user_id if (my_surveys and user_id is not None) else None
    rows = store.list_surveys(owner_id=owner, is_active=is_active, limit=limit, offset=offset)
    return {"success": True, "data": [_survey_out(s) for s in rows], "count": len(rows)}


@app.get("/api/surveys/{survey_id}")
def get_survey(survey_id: SurveyId, store: SurveyStore = Depends(get_store)):
    s = _require_survey(store, survey_id)
    data = _survey_out(s)
    data["response_count"] = store.count_responses(survey_id)
    return {"success": True, "data": data}


@app.get("/api/surveys/{survey_id}/full")
def get_survey_with_questions(survey_id: SurveyId, user_id: Optional[int] = Depends(optional_user_id),
                              store: SurveyStore = Depends(get_store)):
    """Survey plus its ordered questions.

    Inactive surveys are only visible to their owner.

    Raises:
        NotFound: if the survey does not exist.
        Forbidden: if the survey is inactive and the caller is not the owner.
    """
    s = _require_survey(store, survey_id)
    if not s.is_active and not store.is_owner(survey_id, user_id):
        raise Forbidden("This survey is not currently active")
    data = _survey_out(s)
    data["questions"] = [_question_out(q) for q in store.list_questions(survey_id)]
    return {"success": True, "data": data}


@app.put("/api/surveys/{survey_id}")
def update_survey(survey_id: SurveyId, payload: SurveyUpdate, user_id: int = Depends(current_user_id),
                  store: SurveyStore = Depends(get_store)):
    s = _require_owner(store, survey_id, user_id, "update this survey")
    if payload.title is not None:
        s.title = _clean_title(payload.title)
    if payload.description is not None:
        s.description = payload.description.strip() or None
    if payload.is_active is not None:
        s.is_active = payload.is_active
    store.db.commit()
    store.db.refresh(s)
    return {"success": True, "message": "Survey updated successfully", "data": _survey_out(s)}


@app.delete("/api/surveys/{survey_id}")
def delete_survey(survey_id: SurveyId, user_id: int = Depends(current_user_id),
                  store: SurveyStore = Depends(get_store)):
    """Hard-delete a survey; questions, responses and answers go with it via FKs."""
    s = _require_owner(store, survey_id, user_id, "delete this survey")
    store.db.delete(s)
    store.db.commit()
    logger.info("Survey %s deleted by user %s", survey_id, user_id)
    return {"success": True, "message": "Survey deleted successfully"}


# ------------------------
# Questions
# ------------------------
@app.post("/api/surveys/{survey_id}/questions", status_code=201)
def add_question(survey_id: SurveyId, q: QuestionCreate, user_id: int = Depends(current_user_id),
                 store: SurveyStore = Depends(get_store)):
    """Add a question to a survey.

    Args:
        survey_id (int): Survey ID.
        q (QuestionCreate): {text, type, options, is_required, order_index}.

    Returns:
        dict: {"success", "message", "data": question}

    Raises:
        NotFound / Forbidden: survey missing or not owned by the caller.
        InvalidInput: blank question text.
    """
    _require_owner(store, survey_id, user_id, "add questions to this survey")
    text = (q.text or "").strip()
    if not text:
        raise InvalidInput("Question text is required")
    order_index = q.order_index if q.order_index is not None else store.next_order_index(survey_id)
    row = Question(
        survey_id=survey_id,
        text=text,
        type=q.type,
        options=q.options if q.type in CHOICE_TYPES else None,
        is_required=q.is_required,
        order_index=order_index,
    )
    store.db.add(row)
    store.db.commit()
    store.db.refresh(row)
    return {"success": True, "message": "Question created successfully", "data": _question_out(row)}


@app.get("/api/surveys/{survey_id}/questions")
def list_questions(survey_id: SurveyId, store: SurveyStore = Depends(get_store)):
    _require_survey(store, survey_id)
    rows = store.list_questions(survey_id)
    return {"success": True, "data": [_question_out(q) for q in rows], "count": len(rows)}


@app.put("/api/surveys/{survey_id}/questions/reorder")
def reorder_questions(survey_id: SurveyId, body: ReorderQuestions, user_id: int = Depends(current_user_id),
                      store: SurveyStore = Depends(get_store)):
    """Rewrite order_index for several questions in one transaction."""
    _require_owner(store, survey_id, user_id, "reorder questions in this survey")
    store.reorder_questions(survey_id, [(item.question_id, item.order_index) for item in body.questions])
    rows = store.list_questions(survey_id)
    return {"success": True, "message": "Questions reordered successfully", "data": [_question_out(q) for q in rows]}


@app.put("/api/questions/{question_id}")
def update_question(question_id: QuestionId, payload: QuestionUpdate, user_id: int = Depends(current_user_id),
                    store: SurveyStore = Depends(get_store)):
    row = store.db.get(Question, question_id)
    if not row:
        raise NotFound("Question not found")
    _require_owner(store, row.survey_id, user_id, "update this question")

    if payload.text is not None:
        text = payload.text.strip()
        if not text:
            raise InvalidInput("Question text must be a non-empty string")
        row.text = text
    if payload.type is not None:
        row.type = payload.type
    if payload.options is not None:
        row.options = payload.options
    if payload.is_required is not None:
        row.is_required = payload.is_required
    if payload.order_index is not None:
        row.order_index = payload.order_index

    if row.type in CHOICE_TYPES and len(row.options or []) < 2:
        store.db.rollback()
        raise InvalidInput("Choice questions require at least 2 options", question_id=question_id)
    if row.type not in CHOICE_TYPES:
        row.options = None
    store.db.commit()
    store.db.refresh(row)
    return {"success": True, "message": "Question updated successfully", "data": _question_out(row)}


@app.delete("/api/questions/{question_id}")
def delete_question(question_id: QuestionId, user_id: int = Depends(current_user_id),
                    store: SurveyStore = Depends(get_store)):
    """Delete a question; its stored answers are removed via FK cascade."""
    row = store.db.get(Question, question_id)
    if not row:
        raise NotFound("Question not found")
    _require_owner(store, row.survey_id, user_id, "delete this question")
    store.db.delete(row)
    store.db.commit()
    return {"success": True, "message": "Question deleted successfully"}


# ------------------------
# Responses
# ------------------------
@app.post("/api/surveys/{survey_id}/responses", status_code=201)
def submit_survey_response(survey_id: SurveyId, payload: Optional[SubmitResponse] = None,
                           user_id: Optional[int] = Depends(optional_user_id),
                           store: SurveyStore = Depends(get_store)):
    """Submit a response to a survey (anonymous when no token is sent).

    Args:
        survey_id (int): Survey ID.
        payload (SubmitResponse): {answers: [{question_id, answer_text}, ...]}

    Returns:
        dict: {"success", "message", "data": response with answers}

    Raises:
        NotFound: survey missing.
        Forbidden: survey inactive, or the caller already responded (409).
        InvalidInput: answers fail validation.
        StorageFailure: the response could not be written.
    """
    answers = payload.answers if payload is not None else None
    response = submit_response(store, survey_id, user_id, answers)
    return {
        "success": True,
        "message": "Response submitted successfully",
        "data": _response_out(response, [_answer_out(a) for a in response.answers]),
    }


@app.get("/api/surveys/{survey_id}/responses")
def survey_responses(survey_id: SurveyId, limit: Optional[int] = None, offset: Optional[int] = None,
                     include_answers: bool = False, user_id: int = Depends(current_user_id),
                     store: SurveyStore = Depends(get_store)):
    """All responses of a survey, newest first, with summary stats (owner only)."""
    _require_owner(store, survey_id, user_id, "view responses for this survey")
    if include_answers:
        limit = offset = None
    else:
        limit, offset = _page(limit, offset)
    rows = store.list_responses(survey_id, limit=limit, offset=offset, include_answers=include_answers)
    data = [
        _response_out(r, [_answer_out(a) for a in r.answers] if include_answers else None)
        for r in rows
    ]
    return {"success": True, "data": data, "count": len(data), "stats": store.response_stats(survey_id)}


@app.get("/api/responses/my")
def my_responses(user_id: int = Depends(current_user_id), store: SurveyStore = Depends(get_store)):
    rows = store.list_responses_by_respondent(user_id)
    return {"success": True, "data": [_response_out(r) for r in rows], "count": len(rows)}


@app.get("/api/responses/{response_id}")
def get_response(response_id: ResponseId, user_id: int = Depends(current_user_id),
                 store: SurveyStore = Depends(get_store)):
    """One response with answers joined to question text/type.

    Visible to the survey owner and to the respondent who submitted it.
    """
    r = store.get_response(response_id)
    if not r:
        raise NotFound("Response not found")
    s = store.get_survey(r.survey_id)
    if not store.is_owner(r.survey_id, user_id) and r.respondent_id != user_id:
        raise Forbidden("You do not have permission to view this response")
    data = _response_out(r, store.detailed_answers(response_id))
    data["survey_title"] = s.title
    return {"success": True, "data": data}


@app.delete("/api/responses/{response_id}")
def delete_response(response_id: ResponseId, user_id: int = Depends(current_user_id),
                    store: SurveyStore = Depends(get_store)):
    r = store.get_response(response_id)
    if not r:
        raise NotFound("Response not found")
    _require_owner(store, r.survey_id, user_id, "delete this response")
    store.delete_response(response_id)
    logger.info("Response %s deleted by survey owner %s", response_id, user_id)
    return {"success": True, "message": "Response deleted successfully"}


# ------------------------
# Owner: results / export
# ------------------------
@app.get("/api/surveys/{survey_id}/results")
def results(survey_id: SurveyId, user_id: int = Depends(current_user_id), store: SurveyStore = Depends(get_store)):
    """Aggregated per-question results (owner only)."""
    _require_owner(store, survey_id, user_id, "view results for this survey")
    return {"success": True, "data": survey_results(store.db, survey_id, store.list_questions(survey_id))}


@app.get("/api/surveys/{survey_id}/export.csv")
def export_responses_csv(survey_id: SurveyId, user_id: int = Depends(current_user_id),
                         store: SurveyStore = Depends(get_store)):
    """Export survey answers as CSV.

    Returns:
        Response: text/csv attachment `survey_<id>_responses.csv`.
    """
    _require_owner(store, survey_id, user_id, "export responses for this survey")
    return Response(content=export_csv(store.db, survey_id), media_type="text/csv",
                    headers={"Content-Disposition": f"attachment; filename=survey_{survey_id}_responses.csv"})
