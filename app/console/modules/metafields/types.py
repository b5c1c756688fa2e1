"""
Typed shapes for metafield definitions and decoded values.

Validation rules are a tagged union keyed by value type: `NumberRules.min` is a
number, `DateRules.min` is a date, `TextRules.min` is a character count. The
stored wire form (validationsJson) is parsed into one of these by
`rules.parse_validation_rules()`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Union


class ValueType(str, Enum):
    STRING = "string"
    TEXT = "text"
    JSON = "json"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ENUM = "enum"
    DATE = "date"
    DATE_TIME = "dateTime"
    COLOR = "color"

    @classmethod
    def parse(cls, raw: str | None) -> "ValueType":
        v = (raw or "").strip()
        if v == "bool":
            return cls.BOOLEAN
        return cls(v)

    @property
    def is_textual(self) -> bool:
        return self in TEXTUAL_TYPES

    @property
    def is_calendar(self) -> bool:
        return self in (ValueType.DATE, ValueType.DATE_TIME)


TEXTUAL_TYPES = frozenset({ValueType.STRING, ValueType.TEXT, ValueType.JSON})


@dataclass(frozen=True)
class BaseRules:
    required: bool = False


@dataclass(frozen=True)
class NumberRules(BaseRules):
    min: float | None = None
    max: float | None = None


@dataclass(frozen=True)
class TextRules(BaseRules):
    """string / text / json: min and max are character counts."""

    min: int | None = None
    max: int | None = None
    regex: str | None = None


@dataclass(frozen=True)
class DateRules(BaseRules):
    min: date | None = None
    max: date | None = None


@dataclass(frozen=True)
class DateTimeRules(BaseRules):
    min: datetime | None = None
    max: datetime | None = None


@dataclass(frozen=True)
class EnumRules(BaseRules):
    values: tuple[str, ...] = ()


@dataclass(frozen=True)
class PlainRules(BaseRules):
    """boolean / color: only `required` applies."""


ValidationRules = Union[NumberRules, TextRules, DateRules, DateTimeRules, EnumRules, PlainRules]

RULES_BY_TYPE: dict[ValueType, type] = {
    ValueType.STRING: TextRules,
    ValueType.TEXT: TextRules,
    ValueType.JSON: TextRules,
    ValueType.NUMBER: NumberRules,
    ValueType.BOOLEAN: PlainRules,
    ValueType.ENUM: EnumRules,
    ValueType.DATE: DateRules,
    ValueType.DATE_TIME: DateTimeRules,
    ValueType.COLOR: PlainRules,
}


@dataclass(frozen=True)
class VisibilityRules:
    admin_only: bool = False
    public: bool = False
    roles: frozenset[str] = frozenset()


@dataclass(frozen=True)
class MetafieldDefinition:
    owner_type: str
    namespace: str
    key: str
    value_type: ValueType
    is_list: bool = False
    validation: ValidationRules = field(default_factory=PlainRules)
    visibility: VisibilityRules = field(default_factory=VisibilityRules)
    name: str = ""
    description: str = ""
    id: int | None = None

    def __post_init__(self) -> None:
        # Booleans are never lists.
        if self.value_type is ValueType.BOOLEAN and self.is_list:
            object.__setattr__(self, "is_list", False)
        expected = RULES_BY_TYPE[self.value_type]
        if type(self.validation) is not expected:
            if type(self.validation) is not PlainRules:
                raise TypeError(
                    f"{self.value_type.value} fields take {expected.__name__}, not {type(self.validation).__name__}"
                )
            object.__setattr__(self, "validation", expected(required=self.validation.required))

    @property
    def full_key(self) -> str:
        return f"{self.namespace}.{self.key}"


class ValueKind(str, Enum):
    EMPTY = "empty"
    STRING = "string"
    LIST = "list"
    BOOLEAN = "boolean"
    # Stored text that is not valid JSON; kept verbatim so it can be repaired.
    LEGACY = "legacy"


@dataclass(frozen=True)
class DecodedValue:
    kind: ValueKind
    value: str | list[str] | bool | None = None

    @property
    def is_legacy(self) -> bool:
        return self.kind is ValueKind.LEGACY

    @property
    def editable(self) -> str | list[str] | bool:
        """Value to seed an edit form with; empty becomes ""."""
        if self.kind is ValueKind.EMPTY or self.value is None:
            return ""
        return self.value
