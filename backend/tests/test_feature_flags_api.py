import os
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("SECRET_KEY", "secret")
os.environ["SKIP_MIGRATIONS"] = "1"
os.environ.setdefault("DATABASE_URL", f"sqlite:///./flags_api_{uuid4().hex}.db")

from engage_flags.main import app
import engage_flags.api.feature_flags as feature_flags_api
import engage_flags.core.db as db_module
from engage_flags.flags.rollout import is_in_rollout
from engage_flags.models.feature_flags import FeatureFlagEvaluation, OrganizationFeatureFlag
from tests.factories import auth_headers, make_admin, make_flag, make_user


client = TestClient(app)
BASE = "/api/v1/feature-flags"


@pytest.fixture
def SessionLocal():
    db_url = f"sqlite:///./flags_api_{uuid4().hex}.db"
    engine = create_engine(db_url, connect_args={"check_same_thread": False}, future=True)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    db_module.engine = engine
    db_module.SessionLocal = SessionLocal
    db_module.Base.metadata.drop_all(bind=engine)
    db_module.Base.metadata.create_all(bind=engine)
    yield SessionLocal
    engine.dispose()
    path = db_url.replace("sqlite:///", "")
    if os.path.exists(path):
        os.remove(path)


@pytest.fixture
def people(SessionLocal):
    with SessionLocal() as db:
        admin = make_admin(db, username="admin", organization_id=1)
        member = make_user(db, username="member", organization_id=1)
        operator = make_user(db, username="operator", is_admin=True)
        return {
            "admin": auth_headers(admin),
            "member": auth_headers(member),
            "operator": auth_headers(operator),
            "member_id": member.id,
        }


def test_evaluate_requires_authentication(SessionLocal):
    resp = client.post(f"{BASE}/evaluate", json={"flagKeys": ["new_ui"]})
    assert resp.status_code == 401


def test_evaluate_fills_context_from_caller(SessionLocal, people):
    with SessionLocal() as db:
        make_flag(db, flag_key="new_ui", default_value="true")
    resp = client.post(f"{BASE}/evaluate", json={"flagKeys": ["new_ui", "ghost"]}, headers=people["member"])
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["new_ui"] == {"value": True, "reason": "default"}
    assert body["data"]["ghost"] == {"value": None, "reason": "unknown_flag"}
    assert body["context"]["user_id"] == people["member_id"]
    assert body["context"]["organization_id"] == 1
    with SessionLocal() as db:
        assert db.query(FeatureFlagEvaluation).count() == 2


def test_evaluate_honours_explicit_context(SessionLocal, people):
    with SessionLocal() as db:
        make_flag(db, flag_key="new_ui")
    resp = client.post(
        f"{BASE}/evaluate",
        json={"flagKeys": ["new_ui"], "context": {"userId": 99, "organizationId": 5, "environment": "staging"}},
        headers=people["member"],
    )
    assert resp.status_code == 200
    assert resp.json()["context"] == {"user_id": 99, "organization_id": 5, "environment": "staging"}


def test_evaluate_rejects_empty_key_list(SessionLocal, people):
    resp = client.post(f"{BASE}/evaluate", json={"flagKeys": []}, headers=people["member"])
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "validation_error"
    assert "flag_keys" in body["message"] or "flagKeys" in body["message"]
    assert resp.headers["X-Error-Code"] == "validation_error"


def test_admin_routes_reject_non_admins(SessionLocal, people):
    assert client.get(BASE, headers=people["member"]).status_code == 403
    resp = client.post(BASE, json={"flagKey": "x", "name": "X"}, headers=people["member"])
    assert resp.status_code == 403
    resp = client.put(f"{BASE}/organization/1/x", json={"isEnabled": True}, headers=people["member"])
    assert resp.status_code == 403
    assert client.get(f"{BASE}/analytics/x", headers=people["member"]).status_code == 403
    with SessionLocal() as db:
        assert db.query(OrganizationFeatureFlag).count() == 0


def test_is_admin_flag_grants_admin_access(SessionLocal, people):
    assert client.get(BASE, headers=people["operator"]).status_code == 200


def test_create_and_list_flags(SessionLocal, people):
    resp = client.post(
        BASE,
        json={"flagKey": "new_ui", "name": "New UI", "flagType": "boolean", "defaultValue": "false"},
        headers=people["admin"],
    )
    assert resp.status_code == 201
    assert resp.json()["data"]["flag_key"] == "new_ui"
    assert resp.json()["message"] == "Feature flag saved"

    resp = client.get(BASE, headers=people["admin"])
    assert resp.status_code == 200
    body = resp.json()
    assert [flag["flag_key"] for flag in body["data"]] == ["new_ui"]
    assert body["pagination"] == {"current_page": 1, "total_count": 1, "total_pages": 1, "limit": 50}


def test_list_limit_is_capped(SessionLocal, people):
    resp = client.get(f"{BASE}?page=1&limit=500", headers=people["admin"])
    assert resp.status_code == 200
    assert resp.json()["pagination"]["limit"] == 100


def test_create_rejects_invalid_definitions(SessionLocal, people):
    resp = client.post(BASE, json={"flagKey": "x", "name": "X", "flagType": "color"}, headers=people["admin"])
    assert resp.status_code == 400
    resp = client.post(
        BASE,
        json={"flagKey": "x", "name": "X", "flagType": "boolean", "defaultValue": "maybe"},
        headers=people["admin"],
    )
    assert resp.status_code == 400
    assert resp.json()["field"] == "default_value"
    assert client.get(f"{BASE}/x", headers=people["admin"]).status_code == 404


def test_update_flag_by_key(SessionLocal, people):
    with SessionLocal() as db:
        make_flag(db, flag_key="new_ui", name="New UI")
    resp = client.put(f"{BASE}/new_ui", json={"isActive": False}, headers=people["admin"])
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["is_active"] is False
    assert data["name"] == "New UI"

    assert client.put(f"{BASE}/ghost", json={"isActive": False}, headers=people["admin"]).status_code == 404


def test_organization_override_round_trip(SessionLocal, people):
    with SessionLocal() as db:
        make_flag(db, flag_key="new_ui")
    resp = client.put(
        f"{BASE}/organization/1/new_ui",
        json={"isEnabled": True, "rolloutPercentage": 50, "rolloutStrategy": "percentage"},
        headers=people["admin"],
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["rollout_percentage"] == 50
    assert resp.json()["data"]["flag_name"] == "New Ui"

    listing = client.get(f"{BASE}/organization/1", headers=people["admin"]).json()
    assert listing["organization_id"] == 1
    assert [row["flag_key"] for row in listing["data"]] == ["new_ui"]

    resp = client.post(
        f"{BASE}/evaluate",
        json={"flagKeys": ["new_ui"], "context": {"environment": "production"}},
        headers=people["member"],
    )
    result = resp.json()["data"]["new_ui"]
    assert result["reason"] == "org_rollout"
    assert result["value"] is is_in_rollout(people["member_id"], "new_ui", 50)


def test_organization_override_rejects_out_of_range_percentage(SessionLocal, people):
    resp = client.put(
        f"{BASE}/organization/1/new_ui",
        json={"isEnabled": True, "rolloutPercentage": 150},
        headers=people["admin"],
    )
    assert resp.status_code == 400
    assert resp.json()["success"] is False
    with SessionLocal() as db:
        assert db.query(OrganizationFeatureFlag).count() == 0


def test_user_override_lifecycle(SessionLocal, people):
    with SessionLocal() as db:
        make_flag(db, flag_key="new_ui")
    member_id = people["member_id"]
    expires = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
    resp = client.put(
        f"{BASE}/user/{member_id}/new_ui/override",
        json={"overrideValue": True, "reason": "Beta", "expiresAt": expires},
        headers=people["admin"],
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["override_value"] == "true"

    listing = client.get(f"{BASE}/user/{member_id}/overrides", headers=people["admin"]).json()
    assert listing["user_id"] == member_id
    assert listing["data"][0]["reason"] == "Beta"

    evaluated = client.post(f"{BASE}/evaluate", json={"flagKeys": ["new_ui"]}, headers=people["member"]).json()
    assert evaluated["data"]["new_ui"]["reason"] == "user_override"

    for _ in range(2):
        resp = client.delete(f"{BASE}/user/{member_id}/new_ui/override", headers=people["admin"])
        assert resp.status_code == 200
        assert resp.json()["success"] is True


def test_user_override_must_match_flag_type(SessionLocal, people):
    with SessionLocal() as db:
        make_flag(db, flag_key="page_size", flag_type="number", default_value="10")
    resp = client.put(
        f"{BASE}/user/5/page_size/override",
        json={"overrideValue": "lots"},
        headers=people["admin"],
    )
    assert resp.status_code == 400


def test_analytics_window(SessionLocal, people):
    with SessionLocal() as db:
        make_flag(db, flag_key="new_ui")
    client.post(f"{BASE}/evaluate", json={"flagKeys": ["new_ui"]}, headers=people["member"])

    resp = client.get(f"{BASE}/analytics/new_ui", headers=people["admin"])
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["period"] == "30 days"
    assert data["evaluation_stats"] == [
        {"evaluated_value": "false", "evaluation_reason": "default", "count": 1}
    ]
    assert data["daily_stats"][0]["unique_users"] == 1

    assert client.get(f"{BASE}/analytics/new_ui?days=7", headers=people["admin"]).json()["data"]["period"] == "7 days"
    assert client.get(f"{BASE}/analytics/new_ui?days=0", headers=people["admin"]).status_code == 400
    assert client.get(f"{BASE}/analytics/new_ui?days=366", headers=people["admin"]).status_code == 400


def test_analytics_for_unused_flag_is_empty(SessionLocal, people):
    data = client.get(f"{BASE}/analytics/never_used", headers=people["admin"]).json()["data"]
    assert data["evaluation_stats"] == []
    assert data["daily_stats"] == []


def test_legacy_prefix_serves_same_routes(SessionLocal, people):
    with SessionLocal() as db:
        make_flag(db, flag_key="new_ui")
    resp = client.get("/api/feature-flags/new_ui", headers=people["admin"])
    assert resp.status_code == 200
    assert resp.json()["data"]["flag_key"] == "new_ui"


def test_invalid_token_is_rejected(SessionLocal):
    resp = client.get(BASE, headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401


def test_database_failure_on_admin_write_returns_error_envelope(SessionLocal, people, monkeypatch):
    def unavailable(*_args, **_kwargs):
        raise OperationalError("UPDATE organization_feature_flags", {}, Exception("database is locked"))

    monkeypatch.setattr(feature_flags_api, "set_organization_flag", unavailable)
    resp = client.put(
        f"{BASE}/organization/1/new_ui",
        json={"isEnabled": True, "rolloutPercentage": 20},
        headers=people["admin"],
    )
    assert resp.status_code == 500
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "database_error"
    assert resp.headers["X-Error-Code"] == "database_error"
    assert "database is locked" not in body["message"]
