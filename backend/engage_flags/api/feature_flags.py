# Feature flag routes: evaluation for any signed-in caller, plus the admin
# surface for definitions, organization rollouts, user overrides and
# evaluation analytics. Writes go through crud so validation happens
# before anything touches the database.

import json
import logging
from math import ceil
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from engage_flags.api.dependencies import get_current_user, require_admin
from engage_flags.core.config import settings
from engage_flags.core.db import get_db
from engage_flags.crud.feature_flags import count_flags, get_flag, list_flags, upsert_flag
from engage_flags.crud.flag_evaluations import daily_stats, evaluation_stats
from engage_flags.crud.organization_flags import list_organization_flags, set_organization_flag
from engage_flags.crud.user_overrides import list_user_overrides, remove_user_override, set_user_override
from engage_flags.flags.dependencies import build_evaluation_context, get_flag_engine
from engage_flags.flags.engine import FlagEvaluationEngine
from engage_flags.models.users import User
from engage_flags.schemas.feature_flags import (
    EvaluationContextIn,
    FeatureFlagCreate,
    FeatureFlagRead,
    FeatureFlagUpdate,
    FlagEvaluateRequest,
    OrganizationFlagRead,
    OrganizationFlagUpdate,
    UserOverrideRead,
    UserOverrideUpdate,
)


router = APIRouter(prefix="/feature-flags", tags=["feature-flags"])
logger = logging.getLogger(__name__)


def _override_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def _with_flag_metadata(read_model, flag):
    if flag is not None:
        read_model.flag_name = flag.name
        read_model.flag_description = flag.description
        read_model.flag_type = flag.flag_type
    return read_model


@router.post("/evaluate")
def evaluate_flags(
    payload: FlagEvaluateRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    engine: FlagEvaluationEngine = Depends(get_flag_engine),
):
    requested = payload.context or EvaluationContextIn()
    context = build_evaluation_context(
        request,
        current_user,
        user_id=requested.user_id,
        organization_id=requested.organization_id,
        environment=requested.environment,
    )
    results = engine.evaluate(payload.flag_keys, context)
    return {
        "success": True,
        "data": {key: result.to_dict() for key, result in results.items()},
        "context": {
            "user_id": context.user_id,
            "organization_id": context.organization_id,
            "environment": context.environment,
        },
    }


@router.get("")
def list_feature_flags(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin()),
):
    limit = min(limit, settings.FLAG_LIST_MAX_LIMIT)
    total = count_flags(db)
    flags = list_flags(db, offset=(page - 1) * limit, limit=limit)
    return {
        "success": True,
        "data": [FeatureFlagRead.model_validate(flag) for flag in flags],
        "pagination": {
            "current_page": page,
            "total_count": total,
            "total_pages": ceil(total / limit) if total else 0,
            "limit": limit,
        },
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_feature_flag(
    payload: FeatureFlagCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin()),
):
    flag = upsert_flag(
        db,
        payload.flag_key,
        name=payload.name,
        description=payload.description,
        flag_type=payload.flag_type,
        default_value=payload.default_value,
        is_active=payload.is_active,
        created_by=admin.id,
    )
    logger.info("flags.definition_saved", extra={"flag_key": flag.flag_key, "admin_user_id": admin.id})
    return {
        "success": True,
        "data": FeatureFlagRead.model_validate(flag),
        "message": "Feature flag saved",
    }


@router.get("/organization/{organization_id}")
def list_organization_feature_flags(
    organization_id: int,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin()),
):
    rows = list_organization_flags(db, organization_id)
    return {
        "success": True,
        "data": [
            _with_flag_metadata(OrganizationFlagRead.model_validate(row), flag)
            for row, flag in rows
        ],
        "organization_id": organization_id,
    }


@router.put("/organization/{organization_id}/{flag_key}")
def update_organization_feature_flag(
    organization_id: int,
    flag_key: str,
    payload: OrganizationFlagUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin()),
):
    row = set_organization_flag(
        db,
        flag_key,
        organization_id,
        is_enabled=payload.is_enabled,
        rollout_percentage=payload.rollout_percentage,
        rollout_strategy=payload.rollout_strategy,
        rollout_config=payload.rollout_config,
        environment=payload.environment,
        enabled_by=admin.id,
    )
    logger.info(
        "flags.organization_flag_saved",
        extra={
            "flag_key": flag_key,
            "organization_id": organization_id,
            "environment": row.environment,
            "is_enabled": row.is_enabled,
            "admin_user_id": admin.id,
        },
    )
    return {
        "success": True,
        "data": _with_flag_metadata(OrganizationFlagRead.model_validate(row), get_flag(db, flag_key)),
        "message": "Organization feature flag updated",
    }


@router.get("/user/{user_id}/overrides")
def list_user_feature_flag_overrides(
    user_id: int,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin()),
):
    rows = list_user_overrides(db, user_id)
    return {
        "success": True,
        "data": [_with_flag_metadata(UserOverrideRead.model_validate(row), flag) for row, flag in rows],
        "user_id": user_id,
    }


@router.put("/user/{user_id}/{flag_key}/override")
def set_user_feature_flag_override(
    user_id: int,
    flag_key: str,
    payload: UserOverrideUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin()),
):
    override = set_user_override(
        db,
        flag_key,
        user_id,
        _override_text(payload.override_value),
        reason=payload.reason,
        expires_at=payload.expires_at,
        created_by=admin.id,
    )
    logger.info(
        "flags.user_override_saved",
        extra={"flag_key": flag_key, "target_user_id": user_id, "admin_user_id": admin.id},
    )
    return {
        "success": True,
        "data": _with_flag_metadata(UserOverrideRead.model_validate(override), get_flag(db, flag_key)),
        "message": "User override saved",
    }


@router.delete("/user/{user_id}/{flag_key}/override")
def delete_user_feature_flag_override(
    user_id: int,
    flag_key: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin()),
):
    removed = remove_user_override(db, flag_key, user_id)
    logger.info(
        "flags.user_override_removed",
        extra={
            "flag_key": flag_key,
            "target_user_id": user_id,
            "removed": removed,
            "admin_user_id": admin.id,
        },
    )
    return {"success": True, "data": {"removed": removed}, "message": "User override removed"}


@router.get("/analytics/{flag_key}")
def feature_flag_analytics(
    flag_key: str,
    days: Optional[int] = Query(None, ge=1, le=365),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin()),
):
    window = days or settings.FLAG_ANALYTICS_DEFAULT_DAYS
    return {
        "success": True,
        "data": {
            "flag_key": flag_key,
            "period": f"{window} days",
            "evaluation_stats": evaluation_stats(db, flag_key, window),
            "daily_stats": daily_stats(db, flag_key, window),
        },
    }


@router.get("/{flag_key}")
def read_feature_flag(
    flag_key: str,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin()),
):
    flag = get_flag(db, flag_key)
    if flag is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Feature flag not found")
    return {"success": True, "data": FeatureFlagRead.model_validate(flag)}


@router.put("/{flag_key}")
def update_feature_flag(
    flag_key: str,
    payload: FeatureFlagUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin()),
):
    existing = get_flag(db, flag_key)
    changes = payload.model_dump(exclude_unset=True)
    if existing is None and not changes.get("name"):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Feature flag not found")

    def current(field: str, fallback):
        if field in changes and changes[field] is not None:
            return changes[field]
        return getattr(existing, field) if existing is not None else fallback

    flag = upsert_flag(
        db,
        flag_key,
        name=current("name", None),
        description=changes["description"] if "description" in changes else current("description", None),
        flag_type=current("flag_type", "boolean"),
        default_value=current("default_value", "false"),
        is_active=current("is_active", True),
        created_by=admin.id,
    )
    logger.info("flags.definition_saved", extra={"flag_key": flag.flag_key, "admin_user_id": admin.id})
    return {
        "success": True,
        "data": FeatureFlagRead.model_validate(flag),
        "message": "Feature flag updated",
    }
