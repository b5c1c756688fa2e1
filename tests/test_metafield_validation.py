"""Tests for write-time metafield value validation."""
import pytest

from app.console.modules.metafields.errors import MalformedInput, ValidationFailure
from app.console.modules.metafields.rules import parse_validation_rules
from app.console.modules.metafields.types import MetafieldDefinition, ValueType
from app.console.modules.metafields.validation import REQUIRED_MESSAGE, validate, validation_error


def _definition(value_type, rules=None, *, is_list=False, strict=True, key="field"):
    vt = ValueType.parse(value_type)
    return MetafieldDefinition(
        owner_type="product",
        namespace="custom",
        key=key,
        value_type=vt,
        is_list=is_list,
        validation=parse_validation_rules(vt, rules, strict=strict),
    )


class TestRequired:
    def test_empty_string_fails_when_required(self):
        d = _definition("string", {"required": True})
        assert validation_error(d, "") == REQUIRED_MESSAGE
        assert validation_error(d, "   ") == REQUIRED_MESSAGE
        assert validation_error(d, None) == REQUIRED_MESSAGE

    def test_empty_list_fails_when_required(self):
        d = _definition("string", {"required": True}, is_list=True)
        assert validation_error(d, []) == REQUIRED_MESSAGE
        assert validation_error(d, "[]") == REQUIRED_MESSAGE

    def test_empty_is_ok_when_optional(self):
        d = _definition("number", {"min": 0, "max": 10})
        assert validation_error(d, "") is None
        assert validation_error(d, None) is None

    def test_required_wins_over_other_rules(self):
        d = _definition("enum", {"required": True, "enum": ["a"]})
        assert validation_error(d, "") == REQUIRED_MESSAGE


class TestNumber:
    def test_not_a_number(self):
        d = _definition("number")
        assert validation_error(d, "abc") == "Value must be a number."
        assert validation_error(d, "12abc") == "Value must be a number."
        assert validation_error(d, "inf") == "Value must be a number."
        assert validation_error(d, "NaN") == "Value must be a number."

    def test_within_bounds(self):
        d = _definition("number", {"min": 0, "max": 100})
        assert validation_error(d, "42") is None
        assert validation_error(d, 42) is None
        assert validation_error(d, " 42 ") is None
        assert validation_error(d, "0") is None
        assert validation_error(d, "100") is None
        assert validation_error(d, "1e1") is None

    def test_out_of_bounds(self):
        d = _definition("number", {"min": 0, "max": 100})
        assert validation_error(d, "-1") == "Value must be at least 0."
        assert validation_error(d, "100.5") == "Value must be at most 100."

    def test_fractional_bound_in_message(self):
        d = _definition("number", {"min": 0.5})
        assert validation_error(d, "0.25") == "Value must be at least 0.5."


class TestText:
    def test_regex(self):
        d = _definition("string", {"regex": "^[0-9]+$"})
        assert validation_error(d, "abc123") == "Value does not match the required pattern."
        assert validation_error(d, "123") is None

    def test_regex_matches_anywhere_without_anchors(self):
        d = _definition("string", {"regex": "[0-9]"})
        assert validation_error(d, "abc1") is None

    def test_scalar_is_trimmed_before_checks(self):
        d = _definition("string", {"regex": "^[0-9]+$", "max": 3})
        assert validation_error(d, "  123  ") is None

    def test_length_bounds(self):
        d = _definition("text", {"min": 2, "max": 5})
        assert validation_error(d, "a") == "Value must be at least 2 characters."
        assert validation_error(d, "abcdef") == "Value must be at most 5 characters."
        assert validation_error(d, "abc") is None

    def test_stored_regex_that_does_not_compile_is_ignored(self):
        d = _definition("string", {"regex": "[unclosed"}, strict=False)
        assert d.validation.regex == "[unclosed"
        assert validation_error(d, "anything") is None

    def test_list_value_for_scalar_field(self):
        d = _definition("string")
        with pytest.raises(ValidationFailure) as exc:
            validate(d, ["a", "b"])
        assert exc.value.message == "Value must be a single value, not a list."


class TestEnum:
    def test_membership(self):
        d = _definition("enum", {"enum": ["bronze", "silver", "gold"]})
        assert validation_error(d, "gold") is None
        assert validation_error(d, "platinum") == "Value must be one of: bronze, silver, gold."

    def test_membership_is_case_sensitive(self):
        d = _definition("enum", {"enum": ["S", "M", "L"]})
        assert validation_error(d, "s") == "Value must be one of: S, M, L."

    def test_list_reports_first_bad_item(self):
        d = _definition("enum", {"enum": ["S", "M", "L"]}, is_list=True)
        with pytest.raises(ValidationFailure) as exc:
            validate(d, ["S", "XL"])
        assert exc.value.message == "Item 2: Value must be one of: S, M, L."
        assert exc.value.index == 1
        assert validation_error(d, ["S", "M"]) is None

    def test_list_fails_fast(self):
        d = _definition("enum", {"enum": ["S", "M", "L"]}, is_list=True)
        with pytest.raises(ValidationFailure) as exc:
            validate(d, ["XL", "XXL"])
        assert exc.value.index == 0

    def test_list_as_json_string(self):
        d = _definition("enum", {"enum": ["S", "M", "L"]}, is_list=True)
        assert validation_error(d, '["S","L"]') is None
        assert validation_error(d, '["S","XL"]') == "Item 2: Value must be one of: S, M, L."


class TestDate:
    def test_bounds_inclusive(self):
        d = _definition("date", {"min": "2024-01-01", "max": "2024-12-31"})
        assert validation_error(d, "2023-12-31") == "Date must be on or after 2024-01-01."
        assert validation_error(d, "2024-06-15") is None
        assert validation_error(d, "2024-01-01") is None
        assert validation_error(d, "2024-12-31") is None
        assert validation_error(d, "2025-01-01") == "Date must be on or before 2024-12-31."

    def test_invalid_date(self):
        d = _definition("date")
        assert validation_error(d, "not a date") == "Value must be a valid date."
        assert validation_error(d, "2024-02-30") == "Value must be a valid date."

    def test_date_time_compares_in_utc(self):
        d = _definition("dateTime", {"min": "2024-01-01T00:00:00Z"})
        assert validation_error(d, "2024-01-01T09:00:00+09:00") is None
        assert validation_error(d, "2023-12-31T23:59:59Z") == "Date must be on or after 2024-01-01T00:00:00."

    def test_list_of_dates(self):
        d = _definition("date", {"max": "2024-12-31"}, is_list=True)
        assert validation_error(d, ["2024-01-01", "2025-06-01"]) == "Item 2: Date must be on or before 2024-12-31."


class TestListParsing:
    def test_malformed_list(self):
        d = _definition("number", is_list=True)
        with pytest.raises(MalformedInput) as exc:
            validate(d, "not json")
        assert exc.value.message == "Value must be a JSON array of numbers."

    def test_object_is_not_a_list(self):
        d = _definition("string", is_list=True)
        with pytest.raises(MalformedInput) as exc:
            validate(d, '{"a": 1}')
        assert exc.value.message == "Value must be a JSON array of strings."

    def test_date_list_message(self):
        d = _definition("date", is_list=True)
        assert validation_error(d, "2024-01-01") == "Value must be a JSON array of date strings."

    def test_malformed_is_a_validation_failure(self):
        d = _definition("number", is_list=True)
        with pytest.raises(ValidationFailure):
            validate(d, "nope")

    def test_item_number_in_message(self):
        d = _definition("number", {"max": 10}, is_list=True)
        with pytest.raises(ValidationFailure) as exc:
            validate(d, '[1, "x", 3]')
        assert exc.value.message == "Item 2: Value must be a number."
        assert exc.value.to_dict()["index"] == 1
        assert exc.value.to_dict()["field"] == "field"


class TestUnconstrainedTypes:
    def test_boolean_accepts_anything_non_empty(self):
        d = _definition("boolean")
        assert validation_error(d, True) is None
        assert validation_error(d, "maybe") is None

    def test_required_boolean(self):
        d = _definition("bool", {"required": True})
        assert validation_error(d, "") == REQUIRED_MESSAGE
        assert validation_error(d, False) is None

    def test_color(self):
        d = _definition("color")
        assert validation_error(d, "#ff0000") is None
