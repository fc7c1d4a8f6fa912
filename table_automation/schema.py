"""
Table field schema and field-aware operator catalogue.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .interfaces.schema_provider import SchemaProvider


class FieldType(str, Enum):
    """Declared type of a table field."""
    TEXT = "text"
    LONG_TEXT = "long_text"
    NUMBER = "number"
    CURRENCY = "currency"
    PERCENT = "percent"
    RATING = "rating"
    DATE = "date"
    SINGLE_SELECT = "single_select"
    MULTI_SELECT = "multi_select"
    CHECKBOX = "checkbox"
    EMAIL = "email"
    URL = "url"
    LINK_TO_TABLE = "link_to_table"
    LOOKUP = "lookup"
    FORMULA = "formula"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "FieldType":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


NUMERIC_TYPES = frozenset({FieldType.NUMBER, FieldType.CURRENCY, FieldType.PERCENT, FieldType.RATING})
DATE_TYPES = frozenset({FieldType.DATE})
LIST_TYPES = frozenset({FieldType.MULTI_SELECT, FieldType.LINK_TO_TABLE})


@dataclass
class TableField:
    """A column of a user table."""
    id: str
    name: str
    type: FieldType = FieldType.TEXT
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TableField":
        name = data.get("name") or data.get("id")
        return cls(
            id=str(data.get("id") or name),
            name=str(name),
            type=FieldType.parse(data.get("type")),
            options=data.get("options") or {},
        )


class TableSchema(SchemaProvider):
    """In-memory schema resolving references by field id or display name."""

    def __init__(self, fields: Optional[List[TableField]] = None):
        self.fields: List[TableField] = list(fields or [])

    @classmethod
    def from_list(cls, fields: List[Dict[str, Any]]) -> "TableSchema":
        return cls([TableField.from_dict(f) for f in fields or []])

    def get_field(self, field_ref: str) -> Optional[TableField]:
        for f in self.fields:
            if f.id == field_ref:
                return f
        for f in self.fields:
            if f.name == field_ref:
                return f
        return None

    def get_field_type(self, field_ref: str) -> Optional[FieldType]:
        f = self.get_field(field_ref)
        return f.type if f else None

    def display_name(self, field_ref: str) -> str:
        f = self.get_field(field_ref)
        return f.name if f else field_ref


# ============================================================================
# Field-aware operators
# ============================================================================

@dataclass(frozen=True)
class OperatorOption:
    value: str
    label: str
    requires_value: bool


_EMPTY_OPERATORS = [
    OperatorOption("is_empty", "Is empty", False),
    OperatorOption("is_not_empty", "Is not empty", False),
]

_TEXT_OPERATORS = [
    OperatorOption("contains", "Contains", True),
    OperatorOption("not_contains", "Does not contain", True),
    OperatorOption("equal", "Is exactly", True),
    OperatorOption("not_equal", "Is not exactly", True),
] + _EMPTY_OPERATORS

_NUMBER_OPERATORS = [
    OperatorOption("equal", "Equals", True),
    OperatorOption("not_equal", "Does not equal", True),
    OperatorOption("greater_than", "Greater than", True),
    OperatorOption("greater_than_or_equal", "Greater than or equal", True),
    OperatorOption("less_than", "Less than", True),
    OperatorOption("less_than_or_equal", "Less than or equal", True),
] + _EMPTY_OPERATORS

_DATE_OPERATORS = [
    OperatorOption("date_equal", "Is", True),
    OperatorOption("date_before", "Before", True),
    OperatorOption("date_after", "After", True),
    OperatorOption("date_today", "Today", False),
    OperatorOption("date_next_days", "Next X days", True),
    OperatorOption("date_on_or_before", "On or before", True),
    OperatorOption("date_on_or_after", "On or after", True),
    OperatorOption("date_range", "Is within", True),
] + _EMPTY_OPERATORS

_SELECT_OPERATORS = [
    OperatorOption("equal", "Is", True),
    OperatorOption("not_equal", "Is not", True),
] + _EMPTY_OPERATORS

_MULTI_SELECT_OPERATORS = [
    OperatorOption("equal", "Contains", True),
    OperatorOption("not_equal", "Does not contain", True),
    OperatorOption("contains", "Contains", True),
    OperatorOption("not_contains", "Does not contain", True),
] + _EMPTY_OPERATORS

_CHECKBOX_OPERATORS = [
    OperatorOption("equal", "Is checked", True),
    OperatorOption("not_equal", "Is unchecked", True),
]

_LINK_OPERATORS = [
    OperatorOption("is_empty", "Has no linked records", False),
    OperatorOption("is_not_empty", "Has linked records", False),
    OperatorOption("has", "Has record", True),
    OperatorOption("does_not_have", "Does not have record", True),
]

_LOOKUP_OPERATORS = [
    OperatorOption("equal", "Is", True),
    OperatorOption("not_equal", "Is not", True),
    OperatorOption("contains", "Contains", True),
    OperatorOption("not_contains", "Does not contain", True),
] + _EMPTY_OPERATORS

_DEFAULT_OPERATORS = [
    OperatorOption("equal", "Equals", True),
    OperatorOption("not_equal", "Does not equal", True),
] + _EMPTY_OPERATORS

_OPERATORS_BY_TYPE = {
    FieldType.TEXT: _TEXT_OPERATORS,
    FieldType.LONG_TEXT: _TEXT_OPERATORS,
    FieldType.EMAIL: _TEXT_OPERATORS,
    FieldType.URL: _TEXT_OPERATORS,
    FieldType.NUMBER: _NUMBER_OPERATORS,
    FieldType.CURRENCY: _NUMBER_OPERATORS,
    FieldType.PERCENT: _NUMBER_OPERATORS,
    FieldType.RATING: _NUMBER_OPERATORS,
    FieldType.DATE: _DATE_OPERATORS,
    FieldType.SINGLE_SELECT: _SELECT_OPERATORS,
    FieldType.MULTI_SELECT: _MULTI_SELECT_OPERATORS,
    FieldType.CHECKBOX: _CHECKBOX_OPERATORS,
    FieldType.LINK_TO_TABLE: _LINK_OPERATORS,
    FieldType.LOOKUP: _LOOKUP_OPERATORS,
    FieldType.FORMULA: _SELECT_OPERATORS,
}


def operators_for_field_type(field_type: Any) -> List[OperatorOption]:
    """Operators the builder offers for a field type."""
    return list(_OPERATORS_BY_TYPE.get(FieldType.parse(field_type), _DEFAULT_OPERATORS))


def is_operator_valid_for_field(field_type: Any, operator: str) -> bool:
    return any(op.value == operator for op in operators_for_field_type(field_type))


def default_operator_for_field_type(field_type: Any) -> str:
    operators = operators_for_field_type(field_type)
    return operators[0].value if operators else "equal"
