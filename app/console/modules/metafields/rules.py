"""
Parse and serialize the validationsJson / visibilityJson blobs.

Two modes:
- strict (definition save time): anything malformed raises InvalidDefinition,
  including a regex that does not compile and an enum without values.
- lenient (loading stored rows): malformed entries are dropped with a warning so
  old rows keep working. A stored regex is kept as-is and only checked when used.
"""
from __future__ import annotations

import json
import logging
import math
import re
from datetime import date, datetime, timezone
from typing import Any, Mapping

from app.console.modules.metafields.errors import InvalidDefinition
from app.console.modules.metafields.types import (
    DateRules,
    DateTimeRules,
    EnumRules,
    NumberRules,
    PlainRules,
    TextRules,
    ValidationRules,
    ValueType,
    VisibilityRules,
)

logger = logging.getLogger(__name__)


def load_json_object(raw: str | Mapping[str, Any] | None, label: str) -> dict[str, Any]:
    """Blank means {}; anything that is not a JSON object is rejected."""
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if not isinstance(raw, str):
        raise InvalidDefinition(f"{label} must be a JSON object.")
    if not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidDefinition(f"{label} is invalid JSON: {e}") from e
    if not isinstance(value, dict):
        raise InvalidDefinition(f"{label} must be a JSON object.")
    return value


def parse_calendar(value_type: ValueType, text: str) -> date | datetime | None:
    """
    Parse a date (YYYY-MM-DD) or date-time (ISO 8601) string.

    Aware date-times are converted to naive UTC so every bound and value compares
    on the same clock; naive inputs are taken as given.
    """
    text = (text or "").strip()
    if not text:
        return None
    try:
        if value_type is ValueType.DATE:
            return date.fromisoformat(text)
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)


class _RuleReader:
    def __init__(self, value_type: ValueType, raw: dict[str, Any], *, strict: bool):
        self.value_type = value_type
        self.raw = raw
        self.strict = strict

    def problem(self, message: str) -> None:
        if self.strict:
            raise InvalidDefinition(message)
        logger.warning("Ignoring stored %s validation rule: %s", self.value_type.value, message)

    def required(self) -> bool:
        v = self.raw.get("required")
        if v is None:
            return False
        if not isinstance(v, bool):
            self.problem("'required' must be true or false.")
            return v is True
        return v

    def number(self, name: str) -> float | None:
        v = self.raw.get(name)
        if v is None:
            return None
        if not _is_number(v):
            self.problem(f"'{name}' must be a number for {self.value_type.value} fields.")
            return None
        return v

    def length(self, name: str) -> int | None:
        v = self.number(name)
        if v is None:
            return None
        if v < 0 or float(v) != int(v):
            self.problem(f"'{name}' must be a whole number of characters.")
            return None
        return int(v)

    def calendar(self, name: str) -> date | datetime | None:
        v = self.raw.get(name)
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        parsed = parse_calendar(self.value_type, v) if isinstance(v, str) else None
        if parsed is None:
            kind = "date (YYYY-MM-DD)" if self.value_type is ValueType.DATE else "ISO date-time"
            self.problem(f"'{name}' must be a valid {kind}.")
        return parsed

    def regex(self) -> str | None:
        v = self.raw.get("regex")
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        if not isinstance(v, str):
            self.problem("'regex' must be a string.")
            return None
        if self.strict:
            try:
                re.compile(v)
            except re.error as e:
                raise InvalidDefinition(f"'regex' is not a valid pattern: {e}") from e
        return v

    def enum_values(self) -> tuple[str, ...]:
        v = self.raw.get("enum")
        if v is None:
            v = self.raw.get("enumValues")
        if not isinstance(v, list):
            self.problem("enum fields need a non-empty 'enum' list of allowed values.")
            return ()
        values: list[str] = []
        for item in v:
            text = item.strip() if isinstance(item, str) else None
            if not text:
                self.problem("enum values must be non-empty strings.")
                continue
            if text not in values:
                values.append(text)
        if not values:
            self.problem("enum fields need a non-empty 'enum' list of allowed values.")
        return tuple(values)

    def check_order(self, lo: Any, hi: Any) -> bool:
        if lo is not None and hi is not None and lo > hi:
            self.problem("'min' must not be greater than 'max'.")
            return False
        return True


def parse_validation_rules(
    value_type: ValueType,
    raw: str | Mapping[str, Any] | None,
    *,
    strict: bool = False,
) -> ValidationRules:
    data = load_json_object(raw, "validationsJson")
    r = _RuleReader(value_type, data, strict=strict)
    required = r.required()

    if value_type is ValueType.NUMBER:
        lo, hi = r.number("min"), r.number("max")
        if not r.check_order(lo, hi):
            lo = hi = None
        return NumberRules(required=required, min=lo, max=hi)

    if value_type.is_textual:
        lo, hi = r.length("min"), r.length("max")
        if not r.check_order(lo, hi):
            lo = hi = None
        return TextRules(required=required, min=lo, max=hi, regex=r.regex())

    if value_type.is_calendar:
        lo, hi = r.calendar("min"), r.calendar("max")
        if not r.check_order(lo, hi):
            lo = hi = None
        if value_type is ValueType.DATE:
            return DateRules(required=required, min=lo, max=hi)
        return DateTimeRules(required=required, min=lo, max=hi)

    if value_type is ValueType.ENUM:
        return EnumRules(required=required, values=r.enum_values())

    return PlainRules(required=required)


def dump_validation_rules(rules: ValidationRules) -> str:
    """Canonical validationsJson: only keys that carry a constraint."""
    out: dict[str, Any] = {}
    if rules.required:
        out["required"] = True
    if isinstance(rules, (NumberRules, TextRules)):
        if rules.min is not None:
            out["min"] = rules.min
        if rules.max is not None:
            out["max"] = rules.max
    elif isinstance(rules, (DateRules, DateTimeRules)):
        if rules.min is not None:
            out["min"] = rules.min.isoformat()
        if rules.max is not None:
            out["max"] = rules.max.isoformat()
    if isinstance(rules, TextRules) and rules.regex:
        out["regex"] = rules.regex
    if isinstance(rules, EnumRules) and rules.values:
        out["enum"] = list(rules.values)
    return json.dumps(out, ensure_ascii=False, sort_keys=True)


def parse_visibility_rules(raw: str | Mapping[str, Any] | None, *, strict: bool = False) -> VisibilityRules:
    data = load_json_object(raw, "visibilityJson")

    def flag(name: str) -> bool:
        v = data.get(name)
        if v is None:
            return False
        if not isinstance(v, bool):
            if strict:
                raise InvalidDefinition(f"'{name}' must be true or false.")
            return bool(v)
        return v

    roles = data.get("roles")
    if roles is None:
        role_keys: frozenset[str] = frozenset()
    elif isinstance(roles, list):
        if strict and not all(isinstance(x, str) and x.strip() for x in roles):
            raise InvalidDefinition("'roles' must be a list of role keys.")
        role_keys = frozenset(str(x).strip() for x in roles if str(x).strip())
    else:
        if strict:
            raise InvalidDefinition("'roles' must be a list of role keys.")
        role_keys = frozenset()

    return VisibilityRules(admin_only=flag("adminOnly"), public=flag("public"), roles=role_keys)


def dump_visibility_rules(rules: VisibilityRules) -> str:
    out: dict[str, Any] = {}
    if rules.admin_only:
        out["adminOnly"] = True
    if rules.public:
        out["public"] = True
    if rules.roles:
        out["roles"] = sorted(rules.roles)
    return json.dumps(out, ensure_ascii=False, sort_keys=True)
