"""
Canonical wire encoding for metafield values (valueJson).

- boolean fields store JSON true/false
- list fields store a JSON array of strings
- every other scalar is stored as a JSON string, numbers and dates included
"""
from __future__ import annotations

import json
import logging
from typing import Any

from app.console.modules.metafields.errors import MalformedInput
from app.console.modules.metafields.types import DecodedValue, MetafieldDefinition, ValueKind, ValueType

logger = logging.getLogger(__name__)


def _dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _format_number(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def stringify(value: Any) -> str:
    """String form of one list element or scalar."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (int, float)):
        return _format_number(value)
    return _dump(value)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def parse_list(raw: Any) -> list[str]:
    """
    Elements of a list-valued input as strings.

    Accepts an in-memory list or a JSON array string; raises ValueError for
    anything else.
    """
    if isinstance(raw, (list, tuple)):
        return [stringify(x) for x in raw]
    if isinstance(raw, str):
        parsed = json.loads(raw)
        if not isinstance(parsed, list):
            raise ValueError("not a JSON array")
        return [stringify(x) for x in parsed]
    raise ValueError(f"expected a list, got {type(raw).__name__}")


def coerce_bool(raw: Any) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() == "true"
    return bool(raw)


def encode(definition: MetafieldDefinition, raw_value: Any) -> str:
    if definition.value_type is ValueType.BOOLEAN:
        return _dump(coerce_bool(raw_value))

    if definition.is_list:
        if is_empty(raw_value):
            return "[]"
        try:
            return _dump(parse_list(raw_value))
        except ValueError as e:
            raise MalformedInput(
                f"Value must be a JSON array for {definition.full_key}.", field=definition.key
            ) from e

    if is_empty(raw_value):
        return '""'
    return _dump(stringify(raw_value).strip())


def decode(value_json: str | None) -> DecodedValue:
    if value_json is None or not value_json.strip():
        return DecodedValue(ValueKind.EMPTY)
    try:
        parsed = json.loads(value_json)
    except json.JSONDecodeError:
        logger.warning("Stored metafield value is not valid JSON; returning it as legacy text")
        return DecodedValue(ValueKind.LEGACY, value_json)

    if isinstance(parsed, list):
        return DecodedValue(ValueKind.LIST, [stringify(x) for x in parsed])
    if isinstance(parsed, bool):
        return DecodedValue(ValueKind.BOOLEAN, parsed)
    if parsed is None or parsed == "":
        return DecodedValue(ValueKind.EMPTY)
    return DecodedValue(ValueKind.STRING, stringify(parsed))
