"""
Typed flag values.

Definitions and overrides store their values as text. Everything inside the
engine works with the parsed value for the flag's type, so a boolean flag
never leaks the string "false" (which is truthy) to callers.
"""

from __future__ import annotations

import json
from typing import Any

from engage_flags.flags.errors import FlagValidationError
from engage_flags.models.enums import FlagTypeEnum


def normalize_flag_type(flag_type) -> FlagTypeEnum:
    if isinstance(flag_type, FlagTypeEnum):
        return flag_type
    try:
        return FlagTypeEnum(str(flag_type).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in FlagTypeEnum)
        raise FlagValidationError(
            f"Unsupported flag_type '{flag_type}'. Expected one of: {allowed}",
            field="flag_type",
        ) from exc


def _parse_number(raw: str) -> int | float:
    text = raw.strip()
    try:
        return int(text)
    except ValueError:
        pass
    number = float(text)
    if number != number or number in (float("inf"), float("-inf")):
        raise ValueError(f"'{raw}' is not a finite number")
    return number


def parse_value(raw: str | None, flag_type) -> Any:
    """
    Decode a stored value. Raises ValueError when the text does not fit the type.
    """
    if raw is None:
        return None
    kind = normalize_flag_type(flag_type)
    if kind == FlagTypeEnum.BOOLEAN:
        return str(raw).strip().lower() == "true"
    if kind == FlagTypeEnum.NUMBER:
        return _parse_number(str(raw))
    if kind == FlagTypeEnum.JSON:
        return json.loads(raw)
    return str(raw)


def encode_value(value: Any, flag_type) -> str:
    kind = normalize_flag_type(flag_type)
    if kind == FlagTypeEnum.BOOLEAN:
        if isinstance(value, str):
            return "true" if value.strip().lower() == "true" else "false"
        return "true" if bool(value) else "false"
    if kind == FlagTypeEnum.JSON:
        if isinstance(value, str):
            return value
        return json.dumps(value, separators=(",", ":"), sort_keys=True)
    if kind == FlagTypeEnum.NUMBER and isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return str(value)


def validate_raw_value(raw: str, flag_type, *, field: str = "value") -> str:
    """Reject text that does not parse for the flag type; returns it unchanged."""
    kind = normalize_flag_type(flag_type)
    if kind == FlagTypeEnum.BOOLEAN:
        if str(raw).strip().lower() not in {"true", "false"}:
            raise FlagValidationError(f"{field} must be 'true' or 'false' for boolean flags", field=field)
        return raw
    try:
        parse_value(raw, kind)
    except (TypeError, ValueError) as exc:
        raise FlagValidationError(f"{field} is not a valid {kind.value} value: {exc}", field=field) from exc
    return raw


def on_value(flag_type) -> Any:
    """The value a flag takes when an organization rollout switches it on."""
    kind = normalize_flag_type(flag_type)
    if kind == FlagTypeEnum.BOOLEAN:
        return True
    if kind == FlagTypeEnum.NUMBER:
        return 1
    if kind == FlagTypeEnum.JSON:
        return True
    return "true"


def off_value(flag_type) -> Any:
    kind = normalize_flag_type(flag_type)
    if kind == FlagTypeEnum.BOOLEAN:
        return False
    if kind == FlagTypeEnum.NUMBER:
        return 0
    if kind == FlagTypeEnum.JSON:
        return False
    return "false"
