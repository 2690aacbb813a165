from __future__ import annotations

from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from engage_flags.core.config import settings
from engage_flags.core.time import utcnow
from engage_flags.flags.errors import FlagValidationError
from engage_flags.flags.rollout import validate_percentage
from engage_flags.models.enums import RolloutStrategyEnum
from engage_flags.models.feature_flags import FeatureFlag, OrganizationFeatureFlag


def validate_rollout_strategy(strategy) -> RolloutStrategyEnum:
    if isinstance(strategy, RolloutStrategyEnum):
        return strategy
    try:
        return RolloutStrategyEnum(str(strategy).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in RolloutStrategyEnum)
        raise FlagValidationError(
            f"Unsupported rollout_strategy '{strategy}'. Expected one of: {allowed}",
            field="rollout_strategy",
        ) from exc


def validate_rollout_config(config: Any) -> dict | None:
    if config is None:
        return None
    if not isinstance(config, dict):
        raise FlagValidationError("rollout_config must be an object", field="rollout_config")
    for list_key in ("whitelist", "user_ids"):
        if list_key in config and not isinstance(config[list_key], list):
            raise FlagValidationError(
                f"rollout_config.{list_key} must be a list of user ids",
                field="rollout_config",
            )
    return config


def get_organization_flag(
    db: Session,
    organization_id: int,
    flag_key: str,
    environment: str,
) -> OrganizationFeatureFlag | None:
    return (
        db.query(OrganizationFeatureFlag)
        .filter(
            OrganizationFeatureFlag.organization_id == organization_id,
            OrganizationFeatureFlag.flag_key == flag_key,
            OrganizationFeatureFlag.environment == environment,
        )
        .first()
    )


def list_organization_flags(
    db: Session,
    organization_id: int,
) -> list[tuple[OrganizationFeatureFlag, FeatureFlag | None]]:
    return (
        db.query(OrganizationFeatureFlag, FeatureFlag)
        .outerjoin(FeatureFlag, FeatureFlag.flag_key == OrganizationFeatureFlag.flag_key)
        .filter(OrganizationFeatureFlag.organization_id == organization_id)
        .order_by(OrganizationFeatureFlag.flag_key, OrganizationFeatureFlag.environment)
        .all()
    )


def set_organization_flag(
    db: Session,
    flag_key: str,
    organization_id: int,
    *,
    is_enabled: bool,
    rollout_percentage: int | None = None,
    rollout_strategy: str | None = None,
    rollout_config: dict | None = None,
    environment: str | None = None,
    enabled_by: int | None = None,
) -> OrganizationFeatureFlag:
    """
    Insert or replace the row for (organization, flag, environment).
    Omitted settings reset to their defaults, so the row always reflects
    exactly the last write.
    """
    percentage = validate_percentage(0 if rollout_percentage is None else rollout_percentage)
    strategy = validate_rollout_strategy(rollout_strategy or RolloutStrategyEnum.PERCENTAGE)
    config = validate_rollout_config(rollout_config)
    env = (environment or settings.FLAG_DEFAULT_ENVIRONMENT).strip()
    if not env:
        raise FlagValidationError("environment must not be blank", field="environment")
    if not (flag_key or "").strip():
        raise FlagValidationError("flag_key is required", field="flag_key")

    def apply(target: OrganizationFeatureFlag) -> None:
        target.is_enabled = bool(is_enabled)
        target.rollout_percentage = percentage
        target.rollout_strategy = strategy
        target.rollout_config = config
        target.enabled_by = enabled_by
        target.enabled_at = utcnow() if is_enabled else None

    row = get_organization_flag(db, organization_id, flag_key, env)
    if row is None:
        row = OrganizationFeatureFlag(
            organization_id=organization_id,
            flag_key=flag_key,
            environment=env,
        )
        db.add(row)
    apply(row)
    try:
        db.commit()
    except IntegrityError:
        # Another writer inserted the same key first; last write wins.
        db.rollback()
        row = get_organization_flag(db, organization_id, flag_key, env)
        if row is None:
            raise
        apply(row)
        db.commit()
    db.refresh(row)
    return row


def delete_organization_flag(
    db: Session,
    organization_id: int,
    flag_key: str,
    environment: str,
) -> bool:
    removed = (
        db.query(OrganizationFeatureFlag)
        .filter(
            OrganizationFeatureFlag.organization_id == organization_id,
            OrganizationFeatureFlag.flag_key == flag_key,
            OrganizationFeatureFlag.environment == environment,
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    return bool(removed)
