import hashlib

import pytest

from engage_flags.flags.errors import FlagValidationError
from engage_flags.flags.rollout import bucket_for, is_in_rollout, validate_percentage


def test_bucket_uses_sha256_prefix_of_flag_and_subject():
    digest = hashlib.sha256(b"new_ui:42").hexdigest()
    assert bucket_for("new_ui", 42) == int(digest[:12], 16) % 100
    assert 0 <= bucket_for("new_ui", 42) < 100


def test_rollout_is_deterministic():
    first = [is_in_rollout(user_id, "new_ui", 37) for user_id in range(500)]
    second = [is_in_rollout(user_id, "new_ui", 37) for user_id in range(500)]
    assert first == second


def test_raising_percentage_only_adds_subjects():
    for user_id in range(300):
        included = False
        for percentage in range(101):
            now_included = is_in_rollout(user_id, "search_v2", percentage)
            if included:
                assert now_included, (user_id, percentage)
            included = included or now_included


def test_zero_and_hundred_percent_are_absolute():
    assert not any(is_in_rollout(user_id, "new_ui", 0) for user_id in range(1000))
    assert all(is_in_rollout(user_id, "new_ui", 100) for user_id in range(1000))


def test_flags_bucket_subjects_independently():
    subjects = set(range(1000))
    in_a = {user_id for user_id in subjects if is_in_rollout(user_id, "flag_a", 50)}
    in_b = {user_id for user_id in subjects if is_in_rollout(user_id, "flag_b", 50)}
    assert in_a != in_b
    assert in_a - in_b
    assert in_b - in_a


def test_half_rollout_over_thousand_users_is_close_to_half_and_reproducible():
    enabled = {user_id for user_id in range(1, 1001) if is_in_rollout(user_id, "new_ui", 50)}
    assert 450 <= len(enabled) <= 550
    again = {user_id for user_id in range(1, 1001) if is_in_rollout(user_id, "new_ui", 50)}
    assert again == enabled


@pytest.mark.parametrize("percentage", [150, -1, 101, True, 12.5, "abc", None])
def test_invalid_percentages_are_rejected(percentage):
    with pytest.raises(FlagValidationError) as exc_info:
        validate_percentage(percentage)
    assert exc_info.value.field == "rollout_percentage"
    assert exc_info.value.status_code == 400


def test_numeric_strings_are_accepted():
    assert validate_percentage("25") == 25
    assert validate_percentage(0) == 0
    assert validate_percentage(100) == 100
