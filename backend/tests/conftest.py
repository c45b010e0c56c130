import os, tempfile

# must be set before the app modules read their settings
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ADMIN_API_KEY", "test-key")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from main import app
from db import get_db, init_db, enable_sqlite_foreign_keys
from models import Response, Answer
from security import issue_token

@pytest.fixture(scope="session")
def tmp_db_path():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    return path

@pytest.fixture(scope="session")
def test_engine(tmp_db_path):
    engine = create_engine(f"sqlite:///{tmp_db_path}", connect_args={"check_same_thread": False})
    # SQLite force foreign key constraints
    enable_sqlite_foreign_keys(engine)
    init_db(engine)
    return engine

@pytest.fixture(scope="session")
def TestingSessionLocal(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

@pytest.fixture(scope="session", autouse=True)
def override_di(TestingSessionLocal):
    def _get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()
    app.dependency_overrides[get_db] = _get_db

@pytest.fixture
def client():
    return TestClient(app)

@pytest.fixture
def db_session(TestingSessionLocal):
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

def auth(user_id: int) -> dict:
    return {"Authorization": f"Bearer {issue_token(user_id)}"}

def count_rows(db, survey_id: int) -> tuple[int, int]:
    """(responses, answers) stored for a survey."""
    responses = db.execute(
        select(func.count()).select_from(Response).where(Response.survey_id == survey_id)
    ).scalar_one()
    answers = db.execute(
        select(func.count()).select_from(Answer).join(Response, Response.id == Answer.response_id)
        .where(Response.survey_id == survey_id)
    ).scalar_one()
    return responses, answers

def make_survey(client, owner_id: int, questions: list[dict], **fields) -> tuple[int, list[int]]:
    """Create a survey with questions through the API; returns (survey_id, question_ids)."""
    body = {"title": fields.pop("title", "Test Survey"), **fields}
    r = client.post("/api/surveys", json=body, headers=auth(owner_id))
    assert r.status_code == 201, r.text
    sid = r.json()["data"]["id"]
    qids = []
    for q in questions:
        rq = client.post(f"/api/surveys/{sid}/questions", json=q, headers=auth(owner_id))
        assert rq.status_code == 201, rq.text
        qids.append(rq.json()["data"]["id"])
    return sid, qids
