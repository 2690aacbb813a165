from __future__ import annotations

import hashlib

from engage_flags.flags.errors import FlagValidationError


def _hash_bucket(key: str, *, modulo: int) -> int:
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
    return int(digest[:12], 16) % modulo


def bucket_for(flag_key: str, subject_id: int) -> int:
    """Deterministic 0-99 slot for a subject within one flag's rollout."""
    return _hash_bucket(f"{flag_key}:{subject_id}", modulo=100)


def validate_percentage(percentage, *, field: str = "rollout_percentage") -> int:
    if isinstance(percentage, bool):
        raise FlagValidationError(f"{field} must be an integer between 0 and 100", field=field)
    try:
        value = int(percentage)
    except (TypeError, ValueError) as exc:
        raise FlagValidationError(f"{field} must be an integer between 0 and 100", field=field) from exc
    if value != percentage and not isinstance(percentage, str):
        raise FlagValidationError(f"{field} must be a whole number", field=field)
    if value < 0 or value > 100:
        raise FlagValidationError(f"{field} must be between 0 and 100, got {value}", field=field)
    return value


def is_in_rollout(subject_id: int, flag_key: str, percentage: int) -> bool:
    """
    A subject's bucket never changes for a flag, so raising the percentage only
    ever adds subjects. The flag key is part of the hash, so one subject can
    land inside one flag's rollout and outside another's.
    """
    percent = validate_percentage(percentage)
    if percent <= 0:
        return False
    if percent >= 100:
        return True
    return bucket_for(flag_key, subject_id) < percent
