from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from engage_flags.core.time import to_naive_utc, utcnow
from engage_flags.crud.feature_flags import get_flag
from engage_flags.flags.errors import FlagValidationError
from engage_flags.flags.values import validate_raw_value
from engage_flags.models.feature_flags import FeatureFlag, UserFeatureFlagOverride


DEFAULT_OVERRIDE_REASON = "Manual override"


def get_user_override(db: Session, user_id: int, flag_key: str) -> UserFeatureFlagOverride | None:
    return (
        db.query(UserFeatureFlagOverride)
        .filter(
            UserFeatureFlagOverride.user_id == user_id,
            UserFeatureFlagOverride.flag_key == flag_key,
        )
        .first()
    )


def is_override_active(override: UserFeatureFlagOverride, now: datetime | None = None) -> bool:
    expires_at = to_naive_utc(override.expires_at)
    if expires_at is None:
        return True
    return expires_at > (now or utcnow())


def get_active_user_override(
    db: Session,
    user_id: int,
    flag_key: str,
    *,
    now: datetime | None = None,
) -> UserFeatureFlagOverride | None:
    override = get_user_override(db, user_id, flag_key)
    if override is None or not is_override_active(override, now):
        return None
    return override


def list_user_overrides(
    db: Session,
    user_id: int,
) -> list[tuple[UserFeatureFlagOverride, FeatureFlag | None]]:
    return (
        db.query(UserFeatureFlagOverride, FeatureFlag)
        .outerjoin(FeatureFlag, FeatureFlag.flag_key == UserFeatureFlagOverride.flag_key)
        .filter(UserFeatureFlagOverride.user_id == user_id)
        .order_by(UserFeatureFlagOverride.created_at.desc(), UserFeatureFlagOverride.id.desc())
        .all()
    )


def set_user_override(
    db: Session,
    flag_key: str,
    user_id: int,
    override_value: str,
    *,
    reason: str | None = None,
    expires_at: datetime | None = None,
    created_by: int | None = None,
) -> UserFeatureFlagOverride:
    """
    Insert or replace the override for (user, flag). When the flag is known
    the value must parse for its type.
    """
    if not (flag_key or "").strip():
        raise FlagValidationError("flag_key is required", field="flag_key")
    if override_value is None:
        raise FlagValidationError("value is required", field="value")
    flag = get_flag(db, flag_key)
    if flag is not None:
        validate_raw_value(override_value, flag.flag_type, field="value")

    def apply(target: UserFeatureFlagOverride) -> None:
        target.override_value = str(override_value)
        target.reason = reason or DEFAULT_OVERRIDE_REASON
        target.expires_at = to_naive_utc(expires_at)
        target.created_by = created_by

    override = get_user_override(db, user_id, flag_key)
    if override is None:
        override = UserFeatureFlagOverride(user_id=user_id, flag_key=flag_key)
        db.add(override)
    else:
        # A replaced override counts as new for listing order.
        override.created_at = utcnow()
    apply(override)
    try:
        db.commit()
    except IntegrityError:
        # Another writer inserted the same key first; last write wins.
        db.rollback()
        override = get_user_override(db, user_id, flag_key)
        if override is None:
            raise
        override.created_at = utcnow()
        apply(override)
        db.commit()
    db.refresh(override)
    return override


def remove_user_override(db: Session, flag_key: str, user_id: int) -> bool:
    """Delete the override if present. Removing a missing override is a no-op."""
    removed = (
        db.query(UserFeatureFlagOverride)
        .filter(
            UserFeatureFlagOverride.user_id == user_id,
            UserFeatureFlagOverride.flag_key == flag_key,
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    return bool(removed)
