from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from engage_flags.core.time import utcnow
from engage_flags.models.feature_flags import FeatureFlagEvaluation


def record_evaluations(db: Session, records: list[dict[str, Any]]) -> int:
    """Append audit rows in one commit. Callers own the failure policy."""
    if not records:
        return 0
    db.add_all(FeatureFlagEvaluation(**record) for record in records)
    db.commit()
    return len(records)


def _window_start(days: int, now: datetime | None) -> datetime:
    return (now or utcnow()) - timedelta(days=days)


def evaluation_stats(
    db: Session,
    flag_key: str,
    days: int,
    *,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    since = _window_start(days, now)
    rows = (
        db.query(
            FeatureFlagEvaluation.evaluated_value,
            FeatureFlagEvaluation.evaluation_reason,
            func.count(FeatureFlagEvaluation.id),
        )
        .filter(
            FeatureFlagEvaluation.flag_key == flag_key,
            FeatureFlagEvaluation.created_at >= since,
        )
        .group_by(
            FeatureFlagEvaluation.evaluated_value,
            FeatureFlagEvaluation.evaluation_reason,
        )
        .order_by(func.count(FeatureFlagEvaluation.id).desc())
        .all()
    )
    return [
        {
            "evaluated_value": value,
            "evaluation_reason": getattr(reason, "value", reason),
            "count": int(count),
        }
        for value, reason, count in rows
    ]


def daily_stats(
    db: Session,
    flag_key: str,
    days: int,
    *,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    since = _window_start(days, now)
    day = func.date(FeatureFlagEvaluation.created_at)
    rows = (
        db.query(
            day.label("date"),
            func.count(FeatureFlagEvaluation.id),
            func.count(func.distinct(FeatureFlagEvaluation.user_id)),
        )
        .filter(
            FeatureFlagEvaluation.flag_key == flag_key,
            FeatureFlagEvaluation.created_at >= since,
        )
        .group_by(day)
        .order_by(day)
        .all()
    )
    return [
        {"date": str(date), "count": int(count), "unique_users": int(unique_users)}
        for date, count, unique_users in rows
    ]


def list_evaluations(db: Session, flag_key: str, *, limit: int = 100) -> list[FeatureFlagEvaluation]:
    return (
        db.query(FeatureFlagEvaluation)
        .filter(FeatureFlagEvaluation.flag_key == flag_key)
        .order_by(FeatureFlagEvaluation.created_at.desc(), FeatureFlagEvaluation.id.desc())
        .limit(limit)
        .all()
    )
