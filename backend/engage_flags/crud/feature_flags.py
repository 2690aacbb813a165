from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from engage_flags.core.cache import invalidate_flag_cache
from engage_flags.flags.errors import FlagValidationError
from engage_flags.flags.values import normalize_flag_type, validate_raw_value
from engage_flags.models.feature_flags import FeatureFlag


def get_flag(db: Session, flag_key: str) -> FeatureFlag | None:
    return db.query(FeatureFlag).filter(FeatureFlag.flag_key == flag_key).first()


def list_flags(db: Session, *, offset: int = 0, limit: int = 50) -> list[FeatureFlag]:
    return (
        db.query(FeatureFlag)
        .order_by(FeatureFlag.created_at.desc(), FeatureFlag.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def count_flags(db: Session) -> int:
    return db.query(FeatureFlag).count()


def _validate_flag_key(flag_key: str | None) -> str:
    key = (flag_key or "").strip()
    if not key:
        raise FlagValidationError("flag_key is required", field="flag_key")
    if len(key) > 128:
        raise FlagValidationError("flag_key must be at most 128 characters", field="flag_key")
    return key


def upsert_flag(
    db: Session,
    flag_key: str,
    *,
    name: str,
    description: str | None = None,
    flag_type: str = "boolean",
    default_value: str = "false",
    is_active: bool = True,
    created_by: int | None = None,
) -> FeatureFlag:
    """Insert or replace the definition for flag_key. Validates before writing."""
    key = _validate_flag_key(flag_key)
    if not (name or "").strip():
        raise FlagValidationError("name is required", field="name")
    kind = normalize_flag_type(flag_type)
    validate_raw_value(default_value, kind, field="default_value")

    def apply(target: FeatureFlag) -> None:
        target.name = name
        target.description = description
        target.flag_type = kind
        target.default_value = default_value
        target.is_active = is_active
        if created_by is not None and target.created_by is None:
            target.created_by = created_by

    flag = get_flag(db, key)
    if flag is None:
        flag = FeatureFlag(flag_key=key)
        db.add(flag)
    apply(flag)
    try:
        db.commit()
    except IntegrityError:
        # Another writer inserted the same key first; last write wins.
        db.rollback()
        flag = get_flag(db, key)
        if flag is None:
            raise
        apply(flag)
        db.commit()
    db.refresh(flag)
    invalidate_flag_cache(key)
    return flag
