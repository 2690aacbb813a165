import pytest

from engage_flags.flags.errors import FlagValidationError
from engage_flags.flags.values import (
    encode_value,
    normalize_flag_type,
    off_value,
    on_value,
    parse_value,
    validate_raw_value,
)
from engage_flags.models.enums import FlagTypeEnum


def test_boolean_values_parse_case_insensitively():
    assert parse_value("TRUE", "boolean") is True
    assert parse_value("false", "boolean") is False
    assert parse_value("yes", "boolean") is False


def test_number_values_keep_integers_integral():
    assert parse_value("42", "number") == 42
    assert isinstance(parse_value("42", "number"), int)
    assert parse_value("2.5", "number") == 2.5


@pytest.mark.parametrize("raw", ["abc", "nan", "inf", ""])
def test_number_values_reject_non_finite_text(raw):
    with pytest.raises(ValueError):
        parse_value(raw, "number")


def test_json_and_string_values():
    assert parse_value('{"limit": 3}', "json") == {"limit": 3}
    assert parse_value("blue", FlagTypeEnum.STRING) == "blue"
    assert parse_value(None, "string") is None


def test_validate_raw_value_names_the_field():
    with pytest.raises(FlagValidationError) as exc_info:
        validate_raw_value("maybe", "boolean", field="default_value")
    assert exc_info.value.field == "default_value"

    with pytest.raises(FlagValidationError):
        validate_raw_value("{broken", "json")

    assert validate_raw_value("7", "number") == "7"


def test_unknown_flag_type_is_a_validation_error():
    with pytest.raises(FlagValidationError) as exc_info:
        normalize_flag_type("color")
    assert exc_info.value.field == "flag_type"
    assert normalize_flag_type(" Boolean ") == FlagTypeEnum.BOOLEAN


def test_on_and_off_representations():
    assert (on_value("boolean"), off_value("boolean")) == (True, False)
    assert (on_value("number"), off_value("number")) == (1, 0)
    assert (on_value("string"), off_value("string")) == ("true", "false")


def test_encode_value_round_trips_through_parse():
    assert encode_value(True, "boolean") == "true"
    assert encode_value({"b": 1, "a": 2}, "json") == '{"a":2,"b":1}'
    assert parse_value(encode_value(3, "number"), "number") == 3
