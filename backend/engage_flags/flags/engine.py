"""
Feature flag evaluation.

For every requested key the engine looks up the definition, the caller's
user override and their organization's rollout row, then resolves a single
value with a fixed priority:

    user override > organization rollout > global default

Unknown keys resolve to None. Each key is isolated: if resolving one raises
(a malformed rollout_config, a storage error) that key falls back to its
default and the rest of the batch is unaffected. Every evaluated key appends
one audit record, whatever the outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable

from engage_flags.core.cache import build_flag_cache_key, cache_get, cache_set
from engage_flags.core.config import settings
from engage_flags.core.metrics import (
    record_flag_audit_failure,
    record_flag_evaluation,
    record_flag_evaluation_error,
)
from engage_flags.core.time import to_naive_utc, utcnow
from engage_flags.flags.errors import FlagValidationError
from engage_flags.flags.rollout import is_in_rollout
from engage_flags.flags.stores import (
    EvaluationRecord,
    FlagDefinition,
    FlagStores,
    OrganizationOverride,
    UserOverride,
)
from engage_flags.flags.values import encode_value, off_value, on_value, parse_value
from engage_flags.models.enums import EvaluationReasonEnum, RolloutStrategyEnum


logger = logging.getLogger(__name__)

DEFINITION_CACHE_NAME = "flag_definitions"
# Metric label for keys with no definition; callers choose the keys they send.
UNDEFINED_FLAG_LABEL = "unknown"


@dataclass
class EvaluationContext:
    user_id: int | None = None
    organization_id: int | None = None
    environment: str = field(default_factory=lambda: settings.APP_ENV)
    # Free-form request details (ip, user agent, route) kept on audit rows.
    request_context: dict[str, Any] | None = None


@dataclass
class FlagEvaluation:
    flag_key: str
    value: Any
    reason: EvaluationReasonEnum
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"value": self.value, "reason": self.reason.value}
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload


def _metric_label(flag_key: str, definition: FlagDefinition | None) -> str:
    return flag_key if definition is not None else UNDEFINED_FLAG_LABEL


def _whitelist_ids(config: Any) -> set[int]:
    if config is None:
        return set()
    if not isinstance(config, dict):
        raise ValueError("rollout_config must be an object")
    ids = config.get("whitelist")
    if ids is None:
        ids = config.get("user_ids")
    if ids is None:
        return set()
    if not isinstance(ids, list):
        raise ValueError("rollout_config whitelist must be a list")
    whitelist = set()
    for entry in ids:
        if isinstance(entry, bool):
            raise ValueError(f"invalid whitelist entry {entry!r}")
        whitelist.add(int(entry))
    return whitelist


def _resolve_organization(
    definition: FlagDefinition,
    row: OrganizationOverride,
    context: EvaluationContext,
) -> FlagEvaluation:
    key = definition.flag_key
    kind = definition.flag_type
    strategy = RolloutStrategyEnum(row.rollout_strategy)
    metadata = {"strategy": strategy.value, "rollout_percentage": row.rollout_percentage}

    if not row.is_enabled:
        return FlagEvaluation(key, off_value(kind), EvaluationReasonEnum.ORG_DISABLED, metadata)

    if strategy == RolloutStrategyEnum.ALL:
        return FlagEvaluation(key, on_value(kind), EvaluationReasonEnum.ORG_ENABLED, metadata)

    if strategy == RolloutStrategyEnum.WHITELIST:
        whitelist = _whitelist_ids(row.rollout_config)
        if context.user_id is not None and int(context.user_id) in whitelist:
            return FlagEvaluation(key, on_value(kind), EvaluationReasonEnum.ORG_ENABLED, metadata)
        # Not listed means disabled, not "fall back to the global default".
        return FlagEvaluation(key, off_value(kind), EvaluationReasonEnum.ORG_DISABLED, metadata)

    if context.user_id is None:
        # Nothing to bucket on, so the organization switch decides alone.
        return FlagEvaluation(key, on_value(kind), EvaluationReasonEnum.ORG_ENABLED, metadata)

    enabled = is_in_rollout(int(context.user_id), key, row.rollout_percentage)
    value = on_value(kind) if enabled else off_value(kind)
    return FlagEvaluation(key, value, EvaluationReasonEnum.ORG_ROLLOUT, metadata)


def resolve_flag(
    flag_key: str,
    definition: FlagDefinition | None,
    user_override: UserOverride | None,
    organization_override: OrganizationOverride | None,
    context: EvaluationContext,
    *,
    now: datetime | None = None,
) -> FlagEvaluation:
    """Combine the three lookups for one key. Pure; raises on malformed data."""
    if definition is None:
        return FlagEvaluation(flag_key, None, EvaluationReasonEnum.UNKNOWN_FLAG)

    kind = definition.flag_type
    if not definition.is_active:
        return FlagEvaluation(
            flag_key,
            parse_value(definition.default_value, kind),
            EvaluationReasonEnum.DEFAULT,
            {"override_reason": "Flag is disabled"},
        )

    if user_override is not None:
        expires_at = to_naive_utc(user_override.expires_at)
        if expires_at is None or expires_at > (now or utcnow()):
            return FlagEvaluation(
                flag_key,
                parse_value(user_override.override_value, kind),
                EvaluationReasonEnum.USER_OVERRIDE,
                {"override_reason": user_override.reason or "User override"},
            )

    if organization_override is not None:
        return _resolve_organization(definition, organization_override, context)

    return FlagEvaluation(flag_key, parse_value(definition.default_value, kind), EvaluationReasonEnum.DEFAULT)


class FlagEvaluationEngine:
    """
    Resolves flags against injected stores. Definitions go through the shared
    cache; overrides are read fresh on every call so admin changes to them
    apply immediately.
    """

    def __init__(
        self,
        stores: FlagStores,
        *,
        clock: Callable[[], datetime] = utcnow,
        audit_enabled: bool | None = None,
    ) -> None:
        self.stores = stores
        self.clock = clock
        self.audit_enabled = settings.FLAG_AUDIT_ENABLED if audit_enabled is None else audit_enabled

    def _cache_key(self, flag_key: str) -> str:
        return build_flag_cache_key(flag_key, db_scope=self.stores.cache_scope)

    def load_definition(self, flag_key: str) -> FlagDefinition | None:
        cache_key = self._cache_key(flag_key)
        cached = cache_get(cache_key, cache_name=DEFINITION_CACHE_NAME)
        if cached is not None:
            try:
                return FlagDefinition.from_cache(cached)
            except TypeError:
                logger.warning("flags.cache_entry_invalid", extra={"flag_key": flag_key})
        definition = self.stores.flags.get(flag_key)
        if definition is not None:
            cache_set(cache_key, definition.to_cache(), cache_name=DEFINITION_CACHE_NAME)
        return definition

    def _evaluate_one(
        self, flag_key: str, context: EvaluationContext
    ) -> tuple[FlagEvaluation, FlagDefinition | None]:
        definition = None
        try:
            definition = self.load_definition(flag_key)
            user_override = None
            organization_override = None
            if definition is not None and definition.is_active:
                if context.user_id is not None:
                    user_override = self.stores.user_overrides.get(context.user_id, flag_key)
                if context.organization_id is not None:
                    organization_override = self.stores.organization_overrides.get(
                        context.organization_id, flag_key, context.environment
                    )
            result = resolve_flag(
                flag_key,
                definition,
                user_override,
                organization_override,
                context,
                now=self.clock(),
            )
            return result, definition
        except Exception as exc:
            logger.warning(
                "flags.evaluation_failed",
                extra={
                    "flag_key": flag_key,
                    "user_id": context.user_id,
                    "organization_id": context.organization_id,
                    "error": str(exc),
                },
                exc_info=True,
            )
            record_flag_evaluation_error(_metric_label(flag_key, definition))
            self.stores.recover()
            return self._fail_safe(flag_key, definition, exc), definition

    def _fail_safe(self, flag_key: str, definition: FlagDefinition | None, exc: Exception) -> FlagEvaluation:
        value = None
        if definition is not None:
            try:
                value = parse_value(definition.default_value, definition.flag_type)
            except (TypeError, ValueError):
                value = None
        return FlagEvaluation(
            flag_key,
            value,
            EvaluationReasonEnum.DEFAULT,
            {"error": str(exc) or exc.__class__.__name__},
        )

    def _audit_record(
        self,
        result: FlagEvaluation,
        definition: FlagDefinition | None,
        context: EvaluationContext,
    ) -> EvaluationRecord:
        evaluated_value = None
        if result.value is not None and definition is not None:
            evaluated_value = encode_value(result.value, definition.flag_type)
        return EvaluationRecord(
            flag_key=result.flag_key,
            user_id=context.user_id,
            organization_id=context.organization_id,
            evaluated_value=evaluated_value,
            evaluation_reason=result.reason,
            environment=context.environment,
            request_context=context.request_context,
        )

    def _write_audit(self, records: list[EvaluationRecord]) -> None:
        if not self.audit_enabled or not records:
            return
        try:
            self.stores.audit_log.append(records)
        except Exception as exc:
            logger.warning(
                "flags.audit_write_failed",
                extra={"flag_keys": [record.flag_key for record in records], "error": str(exc)},
            )
            record_flag_audit_failure()
            self.stores.recover()

    def evaluate(self, flag_keys: Iterable[str], context: EvaluationContext) -> dict[str, FlagEvaluation]:
        """
        Resolve each key for the context. Raises FlagValidationError only for
        an empty or malformed key list; missing data never raises.
        """
        if isinstance(flag_keys, str):
            raise FlagValidationError("flag_keys must be a list of flag keys", field="flag_keys")
        keys = list(flag_keys or [])
        if not keys:
            raise FlagValidationError("flag_keys must contain at least one flag key", field="flag_keys")
        for key in keys:
            if not isinstance(key, str) or not key.strip():
                raise FlagValidationError("flag_keys must contain non-empty strings", field="flag_keys")

        results: dict[str, FlagEvaluation] = {}
        records: list[EvaluationRecord] = []
        for key in dict.fromkeys(keys):
            result, definition = self._evaluate_one(key, context)
            results[key] = result
            record_flag_evaluation(_metric_label(key, definition), result.reason.value)
            records.append(self._audit_record(result, definition, context))

        self._write_audit(records)
        return results

    def evaluate_flag(self, flag_key: str, context: EvaluationContext) -> FlagEvaluation:
        return self.evaluate([flag_key], context)[flag_key]

    def is_enabled(self, flag_key: str, context: EvaluationContext) -> bool:
        return bool(self.evaluate_flag(flag_key, context).value)

    def get_string_value(self, flag_key: str, context: EvaluationContext, default: str = "") -> str:
        value = self.evaluate_flag(flag_key, context).value
        if value is None or value == "":
            return default
        return str(value)

    def get_numeric_value(self, flag_key: str, context: EvaluationContext, default: int | float = 0) -> int | float:
        return coerce_number(self.evaluate_flag(flag_key, context).value, default)


def coerce_number(value: Any, default: int | float = 0) -> int | float:
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    try:
        number = float(str(value).strip())
    except ValueError:
        return default
    if number != number:
        return default
    return int(number) if number.is_integer() else number
