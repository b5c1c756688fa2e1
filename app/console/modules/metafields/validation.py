"""
Write-time validation of a candidate metafield value against its definition.

Checks run in a fixed order and stop at the first failure, because the edit
form shows whichever message surfaces first:

1. required / empty
2. boolean fields: nothing else is checked
3. cardinality: list fields must be a list or a JSON array string
4. per element, in input order: type/format, then range/pattern/membership
"""
from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable
from functools import lru_cache
from typing import Any

from app.console.modules.metafields.codec import is_empty, parse_list, stringify
from app.console.modules.metafields.errors import MalformedInput, ValidationFailure
from app.console.modules.metafields.rules import parse_calendar
from app.console.modules.metafields.types import (
    DateRules,
    DateTimeRules,
    EnumRules,
    MetafieldDefinition,
    NumberRules,
    TextRules,
    ValidationRules,
    ValueType,
)

logger = logging.getLogger(__name__)

REQUIRED_MESSAGE = "This field is required."

_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")

_LIST_NOUNS = {
    ValueType.NUMBER: "numbers",
    ValueType.DATE: "date strings",
    ValueType.DATE_TIME: "date strings",
}


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern)
    except re.error as e:
        # Only reachable for rows saved before patterns were checked on save.
        logger.warning("Ignoring metafield regex that does not compile (%r): %s", pattern, e)
        return None


def _format_bound(v: float) -> str:
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


def _check_number(rules: NumberRules, element: str) -> str | None:
    text = element.strip()
    if not _NUMBER_RE.match(text):
        return "Value must be a number."
    number = float(text)
    if not math.isfinite(number):
        return "Value must be a number."
    if rules.min is not None and number < rules.min:
        return f"Value must be at least {_format_bound(rules.min)}."
    if rules.max is not None and number > rules.max:
        return f"Value must be at most {_format_bound(rules.max)}."
    return None


def _calendar_check(value_type: ValueType) -> Callable[[Any, str], str | None]:
    def check(rules: DateRules | DateTimeRules, element: str) -> str | None:
        parsed = parse_calendar(value_type, element)
        if parsed is None:
            return "Value must be a valid date."
        if rules.min is not None and parsed < rules.min:
            return f"Date must be on or after {rules.min.isoformat()}."
        if rules.max is not None and parsed > rules.max:
            return f"Date must be on or before {rules.max.isoformat()}."
        return None

    return check


def _check_text(rules: TextRules, element: str) -> str | None:
    if rules.min is not None and len(element) < rules.min:
        return f"Value must be at least {rules.min} characters."
    if rules.max is not None and len(element) > rules.max:
        return f"Value must be at most {rules.max} characters."
    if rules.regex:
        pattern = _compile(rules.regex)
        if pattern is not None and not pattern.search(element):
            return "Value does not match the required pattern."
    return None


def _check_enum(rules: EnumRules, element: str) -> str | None:
    if element not in rules.values:
        return f"Value must be one of: {', '.join(rules.values)}."
    return None


def _no_check(rules: ValidationRules, element: str) -> str | None:
    return None


_ELEMENT_CHECKS: dict[ValueType, Callable[[Any, str], str | None]] = {
    ValueType.NUMBER: _check_number,
    ValueType.DATE: _calendar_check(ValueType.DATE),
    ValueType.DATE_TIME: _calendar_check(ValueType.DATE_TIME),
    ValueType.STRING: _check_text,
    ValueType.TEXT: _check_text,
    ValueType.JSON: _check_text,
    ValueType.ENUM: _check_enum,
    ValueType.COLOR: _no_check,
}


def _elements(definition: MetafieldDefinition, raw_value: Any) -> list[str]:
    if definition.is_list:
        noun = _LIST_NOUNS.get(definition.value_type, "strings")
        try:
            return parse_list(raw_value)
        except ValueError as e:
            raise MalformedInput(f"Value must be a JSON array of {noun}.", field=definition.key) from e

    if isinstance(raw_value, (list, tuple, dict)):
        raise ValidationFailure("Value must be a single value, not a list.", field=definition.key)
    return [stringify(raw_value).strip()]


def validate(definition: MetafieldDefinition, raw_value: Any) -> None:
    """Raise ValidationFailure (or MalformedInput) if raw_value may not be stored."""
    rules = definition.validation
    if is_empty(raw_value):
        if rules.required:
            raise ValidationFailure(REQUIRED_MESSAGE, field=definition.key)
        return

    if definition.value_type is ValueType.BOOLEAN:
        return

    elements = _elements(definition, raw_value)
    if not elements and rules.required:
        # "[]" submitted as text
        raise ValidationFailure(REQUIRED_MESSAGE, field=definition.key)
    check = _ELEMENT_CHECKS[definition.value_type]
    for index, element in enumerate(elements):
        message = check(rules, element)
        if message is None:
            continue
        if definition.is_list:
            raise ValidationFailure(f"Item {index + 1}: {message}", field=definition.key, index=index)
        raise ValidationFailure(message, field=definition.key)


def validation_error(definition: MetafieldDefinition, raw_value: Any) -> str | None:
    """Message for the first failure, or None when the value is acceptable."""
    try:
        validate(definition, raw_value)
    except ValidationFailure as e:
        return e.message
    return None
