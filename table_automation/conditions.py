"""
Condition evaluation against a record.

Evaluation is fail-closed: an unresolvable field reference, an unknown
operator or a type-incompatible comparison makes the condition false.
Nothing in this module raises for bad input.
"""

import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo

from . import config
from .filters import (
    AND,
    FilterCondition,
    FilterGroup,
    FilterTree,
    canonical_operator,
    normalize_filter_tree,
)
from .interfaces.schema_provider import SchemaProvider
from .schema import DATE_TYPES, LIST_TYPES, NUMERIC_TYPES, FieldType

logger = logging.getLogger(__name__)

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_MISSING = object()


# ============================================================================
# Value coercion
# ============================================================================

def _reference_tz() -> ZoneInfo:
    try:
        return ZoneInfo(config.DEFAULT_TIMEZONE)
    except Exception:
        logger.warning(f"Invalid reference timezone '{config.DEFAULT_TIMEZONE}', using UTC")
        return ZoneInfo("UTC")


def is_blank(value: Any) -> bool:
    """Empty-cell test shared by is_empty / is_not_empty."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def to_number(value: Any) -> float:
    """Coerce a cell value to float. Raises ValueError/TypeError if not numeric."""
    if isinstance(value, bool):
        raise TypeError("Booleans are not numbers")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        return float(value.strip())
    raise TypeError(f"Cannot convert {type(value).__name__} to number")


def to_datetime(value: Any, tz: Optional[ZoneInfo] = None) -> datetime:
    """
    Coerce a cell value to an aware datetime.

    Naive datetimes and date-only values are read in the reference timezone.
    Raises ValueError/TypeError if the value is not a date.
    """
    tz = tz or _reference_tz()
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=tz)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=tz)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=tz)
    raise TypeError(f"Cannot convert {type(value).__name__} to datetime")


def to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "checked")
    return bool(value)


def day_bounds(day: date, tz: Optional[ZoneInfo] = None) -> Tuple[datetime, datetime]:
    """Start of the day and start of the next day, in the reference timezone."""
    tz = tz or _reference_tz()
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start, datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)


def _is_date_only(value: Any) -> bool:
    return isinstance(value, str) and bool(_DATE_ONLY.match(value.strip()))


def _list_items(value: Any) -> list:
    """Normalize a multi-select/link cell to a list of comparable strings."""
    if value is None:
        return []
    if not isinstance(value, (list, tuple, set)):
        value = [value]
    items = []
    for item in value:
        if isinstance(item, dict):
            for key in ("id", "name", "value", "label"):
                if item.get(key) is not None:
                    items.append(str(item[key]))
        else:
            items.append(str(item))
    return items


def _loose_equal(actual: Any, expected: Any) -> bool:
    """Equality for untyped values: numeric when both sides are numbers, else string."""
    if actual is None or expected is None:
        return actual is None and expected is None
    if isinstance(actual, bool) or isinstance(expected, bool):
        return to_bool(actual) == to_bool(expected)
    if isinstance(actual, (int, float)) or isinstance(expected, (int, float)):
        try:
            return to_number(actual) == to_number(expected)
        except (TypeError, ValueError):
            return False
    return str(actual) == str(expected)


# ============================================================================
# Operators
# ============================================================================

def _compare_dates(actual: Any, op: str, expected: Any, now: datetime) -> bool:
    tz = _reference_tz()
    actual_dt = to_datetime(actual, tz)

    if op == "date_today":
        start, end = day_bounds(now.astimezone(tz).date(), tz)
        return start <= actual_dt < end

    if op == "date_next_days":
        days = int(to_number(expected))
        if days < 0:
            return False
        start, _ = day_bounds(now.astimezone(tz).date(), tz)
        return start <= actual_dt < start + timedelta(days=days + 1)

    if op == "date_range":
        if isinstance(expected, dict) and "start" in expected and "end" in expected:
            start_raw, end_raw = expected["start"], expected["end"]
            start = day_bounds(to_datetime(start_raw, tz).date(), tz)[0] if _is_date_only(start_raw) \
                else to_datetime(start_raw, tz)
            if _is_date_only(end_raw):
                return start <= actual_dt < day_bounds(to_datetime(end_raw, tz).date(), tz)[1]
            return start <= actual_dt <= to_datetime(end_raw, tz)
        op = "date_equal"

    if _is_date_only(expected):
        start, end = day_bounds(to_datetime(expected, tz).date(), tz)
        if op == "date_equal":
            return start <= actual_dt < end
        if op == "date_before":
            return actual_dt < start
        if op == "date_after":
            return actual_dt >= end
        if op == "date_on_or_before":
            return actual_dt < end
        if op == "date_on_or_after":
            return actual_dt >= start

    expected_dt = to_datetime(expected, tz)
    if op == "date_equal":
        return actual_dt == expected_dt
    if op in ("date_before", "less_than"):
        return actual_dt < expected_dt
    if op in ("date_after", "greater_than"):
        return actual_dt > expected_dt
    if op in ("date_on_or_before", "less_than_or_equal"):
        return actual_dt <= expected_dt
    if op in ("date_on_or_after", "greater_than_or_equal"):
        return actual_dt >= expected_dt

    logger.warning(f"Unknown date operator: {op}")
    return False


def compare_values(
    actual: Any,
    op: str,
    expected: Any,
    field_type: Optional[FieldType] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Compare a cell value to a condition value using a filter operator.

    Supported operators:
    - Equality: equal, not_equal
    - Text: contains, not_contains (case-insensitive)
    - Existence: is_empty, is_not_empty
    - Ordering: greater_than, less_than, greater_than_or_equal, less_than_or_equal
    - Dates: date_equal, date_before, date_after, date_on_or_before,
      date_on_or_after, date_range, date_today, date_next_days
    - Lists/links: has, does_not_have

    Raises TypeError/ValueError on incompatible types; evaluate_clause turns
    those into False.
    """
    op = canonical_operator(op)
    now = now or datetime.now(timezone.utc)

    if op == "is_empty":
        return is_blank(actual)
    if op == "is_not_empty":
        return not is_blank(actual)

    if op.startswith("date_"):
        if is_blank(actual):
            return False
        return _compare_dates(actual, op, expected, now)

    is_list = field_type in LIST_TYPES or isinstance(actual, (list, tuple, set))

    if op in ("equal", "not_equal"):
        if is_list:
            matched = str(expected) in _list_items(actual)
        elif field_type == FieldType.CHECKBOX:
            matched = to_bool(actual) == to_bool(expected)
        elif field_type in NUMERIC_TYPES:
            if is_blank(actual) or is_blank(expected):
                matched = is_blank(actual) and is_blank(expected)
            else:
                matched = to_number(actual) == to_number(expected)
        elif field_type in DATE_TYPES:
            matched = not is_blank(actual) and _compare_dates(actual, "date_equal", expected, now)
        elif field_type is None or field_type in (FieldType.UNKNOWN, FieldType.FORMULA, FieldType.LOOKUP):
            matched = _loose_equal(actual, expected)
        else:
            matched = actual is not None and expected is not None and str(actual) == str(expected)
        return matched if op == "equal" else not matched

    if op in ("contains", "not_contains"):
        needle = str(expected if expected is not None else "").lower()
        if is_list:
            found = any(needle in item.lower() for item in _list_items(actual))
        else:
            found = needle in str(actual if actual is not None else "").lower()
        return found if op == "contains" else not found

    if op in ("has", "does_not_have"):
        wanted = _list_items(expected)
        present = _list_items(actual)
        found = bool(wanted) and all(w in present for w in wanted)
        return found if op == "has" else not found

    if op in ("greater_than", "less_than", "greater_than_or_equal", "less_than_or_equal"):
        if is_blank(actual) or is_blank(expected):
            return False
        if field_type in DATE_TYPES:
            return _compare_dates(actual, op, expected, now)
        left, right = to_number(actual), to_number(expected)
        if op == "greater_than":
            return left > right
        if op == "less_than":
            return left < right
        if op == "greater_than_or_equal":
            return left >= right
        return left <= right

    logger.warning(f"Unknown comparison operator: {op}")
    return False


# ============================================================================
# Tree evaluation
# ============================================================================

def resolve_field(
    record: Dict[str, Any],
    field_ref: str,
    schema: Optional[SchemaProvider] = None,
) -> Tuple[Any, Optional[FieldType]]:
    """
    Look up a field's value and declared type.

    With a schema in scope the reference must resolve against it; a field the
    schema knows but the record lacks reads as None. Without a schema the
    record's keys are the schema. Returns (_MISSING, None) when unresolvable.
    """
    record = record or {}
    if schema is not None:
        table_field = schema.get_field(field_ref)
        if table_field is None:
            return _MISSING, None
        for key in (table_field.id, table_field.name):
            if key in record:
                return record[key], table_field.type
        return None, table_field.type

    if field_ref in record:
        return record[field_ref], None
    return _MISSING, None


def evaluate_clause(
    condition: FilterCondition,
    record: Dict[str, Any],
    schema: Optional[SchemaProvider] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Evaluate a single leaf condition. Never raises."""
    value, field_type = resolve_field(record, condition.field_id, schema)
    if value is _MISSING:
        logger.warning(f"Condition references unknown field: {condition.field_id}")
        return False

    try:
        return bool(compare_values(value, condition.operator, condition.value, field_type, now))
    except (TypeError, ValueError, OverflowError) as e:
        logger.warning(
            f"Cannot compare {condition.field_id!r} ({value!r}) "
            f"{condition.operator} {condition.value!r}: {e}"
        )
        return False


def _evaluate_group(
    group: FilterGroup,
    record: Dict[str, Any],
    schema: Optional[SchemaProvider],
    now: Optional[datetime],
) -> bool:
    results = (
        _evaluate_group(child, record, schema, now) if isinstance(child, FilterGroup)
        else evaluate_clause(child, record, schema, now)
        for child in group.children
    )
    # Empty nested groups: all([]) is True for AND, any([]) is False for OR
    if group.operator == AND:
        return all(results)
    return any(results)


def evaluate_condition(
    tree: FilterTree,
    record: Dict[str, Any],
    schema: Optional[SchemaProvider] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Evaluate a filter tree against a record.

    An empty tree (None or a group without children) always matches, which is
    how "run every time" is represented.

    Args:
        tree: Filter tree (normalized here, not mutated)
        record: Field values of the record, keyed by field id or name
        schema: Optional schema for type-aware comparison
        now: Reference instant for relative date operators

    Returns:
        True if the record matches, False otherwise
    """
    normalized = normalize_filter_tree(tree)
    if not normalized.children:
        return True
    try:
        return _evaluate_group(normalized, record or {}, schema, now)
    except Exception:
        logger.exception("Unexpected error evaluating condition; treating as no match")
        return False
