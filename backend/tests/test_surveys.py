from config import settings
from conftest import auth, make_survey
from security import issue_token

OWNER = 10
OTHER = 11


def test_health_and_api_info(client):
    assert client.get("/health").json() == {"ok": True}
    info = client.get("/api").json()
    assert info["endpoints"]["surveys"] == "/api/surveys"


def test_admin_issues_tokens(client):
    r = client.post("/admin/tokens", json={"user_id": 42}, headers={"X-API-Key": settings.ADMIN_API_KEY})
    assert r.status_code == 200
    token = r.json()["token"]
    # token works as a bearer token
    created = client.post("/api/surveys", json={"title": "Via token"}, headers={"Authorization": f"Bearer {token}"})
    assert created.status_code == 201
    assert created.json()["data"]["owner_id"] == 42

    assert client.post("/admin/tokens", json={"user_id": 42}, headers={"X-API-Key": "nope"}).status_code == 401


def test_auth_required_for_owner_routes(client):
    r = client.post("/api/surveys", json={"title": "No auth"})
    assert r.status_code == 401
    assert r.json() == {"success": False, "message": "Access token is required", "error": "Unauthorized"}

    r2 = client.post("/api/surveys", json={"title": "Bad auth"}, headers={"Authorization": "Bearer garbage"})
    assert r2.status_code == 401


def test_expired_token_rejected(client):
    expired = issue_token(OWNER, expires_in_minutes=-1)
    r = client.post("/api/surveys", json={"title": "Too late"}, headers={"Authorization": f"Bearer {expired}"})
    assert r.status_code == 401
    assert r.json() == {"success": False, "message": "Token has expired", "error": "Unauthorized"}


def test_create_survey_validates_title(client):
    r = client.post("/api/surveys", json={"title": "   "}, headers=auth(OWNER))
    assert r.status_code == 400
    assert r.json()["error"] == "InvalidInput"


def test_survey_crud_and_ownership(client):
    sid, _ = make_survey(client, OWNER, [], title="  Campus Life  ", description=" about campus ")
    d = client.get(f"/api/surveys/{sid}").json()["data"]
    assert d["title"] == "Campus Life"
    assert d["description"] == "about campus"
    assert d["is_active"] is True
    assert d["response_count"] == 0

    # non-owner cannot update or delete
    assert client.put(f"/api/surveys/{sid}", json={"title": "Hijack"}, headers=auth(OTHER)).status_code == 403
    assert client.delete(f"/api/surveys/{sid}", headers=auth(OTHER)).status_code == 403

    up = client.put(f"/api/surveys/{sid}", json={"title": "Renamed", "is_active": False}, headers=auth(OWNER))
    assert up.status_code == 200
    assert up.json()["data"]["title"] == "Renamed"
    assert up.json()["data"]["is_active"] is False

    assert client.delete(f"/api/surveys/{sid}", headers=auth(OWNER)).json()["success"] is True
    assert client.get(f"/api/surveys/{sid}").status_code == 404


def test_list_surveys_filters(client):
    mine_active, _ = make_survey(client, 20, [], title="Mine active")
    mine_closed, _ = make_survey(client, 20, [], title="Mine closed", is_active=False)
    make_survey(client, 21, [], title="Someone else's")

    mine = client.get("/api/surveys", params={"my_surveys": "true"}, headers=auth(20)).json()
    assert {s["id"] for s in mine["data"]} == {mine_active, mine_closed}
    assert mine["count"] == 2

    active_mine = client.get("/api/surveys", params={"my_surveys": "true", "is_active": "true"},
                             headers=auth(20)).json()["data"]
    assert [s["id"] for s in active_mine] == [mine_active]

    page = client.get("/api/surveys", params={"limit": 1}).json()
    assert page["count"] == 1


def test_inactive_survey_full_view_owner_only(client):
    sid, _ = make_survey(client, OWNER, [{"text": "Q", "type": "text"}], is_active=False)
    assert client.get(f"/api/surveys/{sid}/full").status_code == 403
    assert client.get(f"/api/surveys/{sid}/full", headers=auth(OTHER)).status_code == 403
    full = client.get(f"/api/surveys/{sid}/full", headers=auth(OWNER)).json()["data"]
    assert [q["text"] for q in full["questions"]] == ["Q"]


def test_question_management(client):
    sid, (q1, q2) = make_survey(client, OWNER, [
        {"text": "Favourite colour?", "type": "single_choice", "options": ["Red", "Blue"], "is_required": True},
        {"text": "Comments", "type": "text", "options": ["ignored", "too"]},
    ])
    qs = client.get(f"/api/surveys/{sid}/questions").json()
    assert qs["count"] == 2
    first, second = qs["data"]
    assert (first["id"], first["order_index"], first["options"]) == (q1, 0, ["Red", "Blue"])
    # options are dropped for non-choice types, order index appended
    assert (second["id"], second["order_index"], second["options"]) == (q2, 1, None)

    # choice questions need two options
    bad = client.post(f"/api/surveys/{sid}/questions",
                      json={"text": "Pick", "type": "multiple_choice", "options": ["Only"]}, headers=auth(OWNER))
    assert bad.status_code == 400
    assert bad.json()["message"] == "Choice questions require at least 2 options"

    bad_type = client.post(f"/api/surveys/{sid}/questions", json={"text": "Pick", "type": "dropdown"},
                           headers=auth(OWNER))
    assert bad_type.status_code == 400

    assert client.post(f"/api/surveys/{sid}/questions", json={"text": "X"}, headers=auth(OTHER)).status_code == 403

    # reorder
    r = client.put(f"/api/surveys/{sid}/questions/reorder",
                   json={"questions": [{"question_id": q1, "order_index": 5}, {"question_id": q2, "order_index": 1}]},
                   headers=auth(OWNER))
    assert r.status_code == 200
    assert [q["id"] for q in r.json()["data"]] == [q2, q1]

    # update: switching to a choice type without options is rejected and leaves the row alone
    u = client.put(f"/api/questions/{q2}", json={"type": "single_choice"}, headers=auth(OWNER))
    assert u.status_code == 400
    again = client.get(f"/api/surveys/{sid}/questions").json()["data"]
    assert {q["id"]: q["type"] for q in again}[q2] == "text"

    u2 = client.put(f"/api/questions/{q2}", json={"type": "rating", "is_required": True}, headers=auth(OWNER))
    assert u2.json()["data"]["type"] == "rating"
    assert u2.json()["data"]["is_required"] is True

    assert client.delete(f"/api/questions/{q2}", headers=auth(OTHER)).status_code == 403
    assert client.delete(f"/api/questions/{q2}", headers=auth(OWNER)).status_code == 200
    assert client.delete(f"/api/questions/{q2}", headers=auth(OWNER)).status_code == 404
    assert client.get(f"/api/surveys/{sid}/questions").json()["count"] == 1


def test_questions_of_missing_survey(client):
    r = client.get("/api/surveys/999999/questions")
    assert r.status_code == 404
    assert r.json()["error"] == "NotFound"
