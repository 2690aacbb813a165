import os
import json
from uuid import uuid4

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("SECRET_KEY", "secret")
os.environ["SKIP_MIGRATIONS"] = "1"
os.environ.setdefault("DATABASE_URL", f"sqlite:///./flag_deps_{uuid4().hex}.db")

import engage_flags.core.db as db_module
import engage_flags.flags.middleware as middleware_module
import engage_flags.models  # noqa: F401
from engage_flags.crud.user_overrides import set_user_override
from engage_flags.flags.dependencies import RequestFlags, get_request_flags, require_feature_flag
from engage_flags.flags.middleware import FeatureFlagDebugMiddleware
from engage_flags.models.feature_flags import FeatureFlagEvaluation
from tests.factories import auth_headers, make_flag, make_user


flag_app = FastAPI()
flag_app.add_middleware(FeatureFlagDebugMiddleware)


@flag_app.get("/beta")
def beta_page(flags: RequestFlags = Depends(require_feature_flag("beta"))):
    return {"banner": flags.get_string_value("banner", "none")}


@flag_app.get("/memo")
def memo_page(flags: RequestFlags = Depends(get_request_flags)):
    flags.is_enabled("beta")
    flags.is_enabled("beta")
    flags.preload(["beta", "banner"])
    return {"page_size": flags.get_numeric_value("page_size", 20), "snapshot": flags.snapshot()}


client = TestClient(flag_app)


@pytest.fixture
def SessionLocal():
    db_url = f"sqlite:///./flag_deps_{uuid4().hex}.db"
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
def member(SessionLocal):
    with SessionLocal() as db:
        make_flag(db, flag_key="beta", default_value="false")
        make_flag(db, flag_key="banner", flag_type="string", default_value="Hello")
        user = make_user(db, username="member", organization_id=3)
        return user.id, auth_headers(user)


def test_require_feature_flag_hides_route_when_off(member):
    _, headers = member
    resp = client.get("/beta", headers=headers)
    assert resp.status_code == 404


def test_require_feature_flag_allows_route_when_on(SessionLocal, member):
    user_id, headers = member
    with SessionLocal() as db:
        set_user_override(db, "beta", user_id, "true")
    resp = client.get("/beta", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"banner": "Hello"}


def test_request_flags_evaluate_each_key_once(SessionLocal, member):
    _, headers = member
    resp = client.get("/memo", headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["snapshot"] == {"beta": False, "banner": "Hello", "page_size": None}
    assert body["page_size"] == 20
    with SessionLocal() as db:
        keys = sorted(row.flag_key for row in db.query(FeatureFlagEvaluation).all())
    assert keys == ["banner", "beta", "page_size"]


def test_debug_header_only_when_enabled(member, monkeypatch):
    _, headers = member
    assert "X-Feature-Flags" not in client.get("/memo", headers=headers).headers

    monkeypatch.setattr(middleware_module.settings, "FLAG_DEBUG_HEADERS", True)
    monkeypatch.setattr(middleware_module.settings, "APP_ENV", "development")
    resp = client.get("/memo", headers=headers)
    assert json.loads(resp.headers["X-Feature-Flags"])["banner"] == "Hello"

    monkeypatch.setattr(middleware_module.settings, "APP_ENV", "production")
    assert "X-Feature-Flags" not in client.get("/memo", headers=headers).headers


def test_request_flags_require_authentication(member):
    assert client.get("/memo").status_code == 401
