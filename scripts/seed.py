"""
Deterministic seed script for dev/demo environments.

Creates two organizations' worth of users, a handful of flags and one of
each rollout strategy, then prints a bearer token for the demo admin.
"""

from __future__ import annotations

import os
import sys
from datetime import timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT / "backend"))

from engage_flags.core.db import Base, SessionLocal, engine  # noqa: E402
from engage_flags.core.security import create_access_token  # noqa: E402
from engage_flags.core.time import utcnow  # noqa: E402
from engage_flags.crud.feature_flags import upsert_flag  # noqa: E402
from engage_flags.crud.organization_flags import set_organization_flag  # noqa: E402
from engage_flags.crud.user_overrides import set_user_override  # noqa: E402
from engage_flags.crud.users import create_user, get_user_by_username  # noqa: E402
import engage_flags.models  # noqa: E402,F401


ACME_ORG_ID = 1
UMBRELLA_ORG_ID = 2

DEMO_FLAGS = [
    ("new_ui", "New UI", "boolean", "false", "Redesigned dashboard shell."),
    ("ai_matching", "AI Matching", "boolean", "false", "Suggest interest groups from profile data."),
    ("welcome_banner_text", "Welcome banner text", "string", "Welcome back", None),
    ("posts_page_size", "Posts page size", "number", "20", None),
    ("leave_calendar", "Leave calendar", "boolean", "true", "Calendar view for leave requests."),
]


def ensure_not_production():
    env = os.getenv("APP_ENV", "").lower()
    allow_prod = os.getenv("ALLOW_SEED_PROD", "0").lower() in {"1", "true", "yes"}
    if env == "production" and not allow_prod:
        print("Refusing to seed in production. Set ALLOW_SEED_PROD=1 to override.", file=sys.stderr)
        sys.exit(1)


def get_or_create_user(db, username: str, **fields):
    return get_user_by_username(db, username) or create_user(db, username, **fields)


def seed():
    ensure_not_production()
    Base.metadata.create_all(bind=engine)

    with SessionLocal() as db:
        admin = get_or_create_user(db, "admin", role="corporate_admin", organization_id=ACME_ORG_ID)
        alice = get_or_create_user(db, "alice", organization_id=ACME_ORG_ID)
        bob = get_or_create_user(db, "bob", organization_id=UMBRELLA_ORG_ID)
        get_or_create_user(db, "ops", role="admin", is_admin=True)

        for flag_key, name, flag_type, default_value, description in DEMO_FLAGS:
            upsert_flag(
                db,
                flag_key,
                name=name,
                description=description,
                flag_type=flag_type,
                default_value=default_value,
                created_by=admin.id,
            )

        set_organization_flag(
            db,
            "new_ui",
            ACME_ORG_ID,
            is_enabled=True,
            rollout_percentage=50,
            rollout_strategy="percentage",
            enabled_by=admin.id,
        )
        set_organization_flag(
            db,
            "ai_matching",
            ACME_ORG_ID,
            is_enabled=True,
            rollout_strategy="whitelist",
            rollout_config={"whitelist": [alice.id]},
            enabled_by=admin.id,
        )
        set_organization_flag(
            db,
            "leave_calendar",
            UMBRELLA_ORG_ID,
            is_enabled=False,
            rollout_strategy="all",
            enabled_by=admin.id,
        )
        set_user_override(
            db,
            "new_ui",
            bob.id,
            "true",
            reason="Beta tester",
            expires_at=utcnow() + timedelta(days=30),
            created_by=admin.id,
        )

        token = create_access_token({"sub": admin.username, "user_id": admin.id}, timedelta(days=1))
    print("Seed complete.")
    print(f"Admin bearer token (24h): {token}")


if __name__ == "__main__":
    seed()
