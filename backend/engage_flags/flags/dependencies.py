"""
Request-level flag access for route handlers.

`get_request_flags` gives a handler the caller's flags with a per-request
memo, so checking the same key twice costs one evaluation and one audit row.
"""

from __future__ import annotations

from typing import Any, Iterable

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from engage_flags.api.dependencies import get_current_user
from engage_flags.core.config import settings
from engage_flags.core.db import get_db
from engage_flags.flags.engine import (
    EvaluationContext,
    FlagEvaluation,
    FlagEvaluationEngine,
    coerce_number,
)
from engage_flags.flags.stores import sql_flag_stores
from engage_flags.models.users import User
from engage_flags.tenancy.context import resolve_organization_id


def get_flag_engine(db: Session = Depends(get_db)) -> FlagEvaluationEngine:
    return FlagEvaluationEngine(sql_flag_stores(db))


def request_details(request: Request | None) -> dict[str, Any] | None:
    if request is None:
        return None
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("User-Agent"),
        "route": request.url.path,
        "request_id": getattr(request.state, "request_id", None),
    }


def build_evaluation_context(
    request: Request | None,
    user: User | None,
    *,
    user_id: int | None = None,
    organization_id: int | None = None,
    environment: str | None = None,
) -> EvaluationContext:
    """Explicit values win; anything missing is taken from the caller."""
    if user_id is None and user is not None:
        user_id = user.id
    if organization_id is None:
        organization_id = resolve_organization_id(request, user)
    return EvaluationContext(
        user_id=user_id,
        organization_id=organization_id,
        environment=environment or settings.APP_ENV,
        request_context=request_details(request),
    )


class RequestFlags:
    def __init__(self, engine: FlagEvaluationEngine, context: EvaluationContext) -> None:
        self.engine = engine
        self.context = context
        self._memo: dict[str, FlagEvaluation] = {}

    def preload(self, flag_keys: Iterable[str]) -> dict[str, FlagEvaluation]:
        keys = list(flag_keys)
        pending = [key for key in dict.fromkeys(keys) if key not in self._memo]
        if pending:
            self._memo.update(self.engine.evaluate(pending, self.context))
        return {key: self._memo[key] for key in keys}

    def evaluation(self, flag_key: str) -> FlagEvaluation:
        return self.preload([flag_key])[flag_key]

    def get_value(self, flag_key: str, default: Any = None) -> Any:
        value = self.evaluation(flag_key).value
        return default if value is None else value

    def is_enabled(self, flag_key: str) -> bool:
        return bool(self.evaluation(flag_key).value)

    def get_string_value(self, flag_key: str, default: str = "") -> str:
        value = self.evaluation(flag_key).value
        if value is None or value == "":
            return default
        return str(value)

    def get_numeric_value(self, flag_key: str, default: int | float = 0) -> int | float:
        return coerce_number(self.evaluation(flag_key).value, default)

    def snapshot(self) -> dict[str, Any]:
        return {key: result.value for key, result in self._memo.items()}


def get_request_flags(
    request: Request,
    current_user: User = Depends(get_current_user),
    engine: FlagEvaluationEngine = Depends(get_flag_engine),
) -> RequestFlags:
    existing = getattr(request.state, "feature_flags", None)
    if isinstance(existing, RequestFlags):
        return existing
    flags = RequestFlags(engine, build_evaluation_context(request, current_user))
    request.state.feature_flags = flags
    return flags


def require_feature_flag(flag_key: str):
    """
    Dependency hiding a route behind a flag. Callers without the flag get a
    plain 404 so unreleased features stay invisible.
    """

    def dependency(flags: RequestFlags = Depends(get_request_flags)) -> RequestFlags:
        if not flags.is_enabled(flag_key):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
        return flags

    return dependency
