"""
Filter tree to formula / summary conversion.

Conversion is one-way: formulas and summaries are display artefacts and are
never parsed back into filter trees.
"""

import logging
from typing import Any, List, Optional

from .filters import (
    AND,
    FilterCondition,
    FilterGroup,
    FilterNode,
    FilterTree,
    canonical_operator,
    is_empty_filter_tree,
    normalize_filter_tree,
)
from .interfaces.schema_provider import SchemaProvider
from .schema import NUMERIC_TYPES

logger = logging.getLogger(__name__)


RUN_EVERY_TIME = "Run every time"

_COMPARISON_SYMBOLS = {
    "equal": "=",
    "not_equal": "!=",
    "greater_than": ">",
    "less_than": "<",
    "greater_than_or_equal": ">=",
    "less_than_or_equal": "<=",
    "date_equal": "=",
    "date_before": "<",
    "date_after": ">",
    "date_on_or_before": "<=",
    "date_on_or_after": ">=",
}

OPERATOR_LABELS = {
    "equal": "is",
    "not_equal": "is not",
    "contains": "contains",
    "not_contains": "does not contain",
    "is_empty": "is empty",
    "is_not_empty": "is not empty",
    "greater_than": "is greater than",
    "less_than": "is less than",
    "greater_than_or_equal": "is greater than or equal to",
    "less_than_or_equal": "is less than or equal to",
    "date_equal": "is",
    "date_before": "is before",
    "date_after": "is after",
    "date_on_or_before": "is on or before",
    "date_on_or_after": "is on or after",
    "date_range": "is within",
    "date_today": "is today",
    "date_next_days": "is within the next",
    "has": "has",
    "does_not_have": "does not have",
}


def _field_name(field_ref: str, schema: Optional[SchemaProvider]) -> str:
    if schema is None:
        return field_ref
    table_field = schema.get_field(field_ref)
    return table_field.name if table_field else field_ref


def escape_string(text: str) -> str:
    return text.replace('"', '""').replace("\n", "\\n").replace("\r", "\\r")


def format_value(value: Any, field_type: Any = None) -> str:
    """Render a literal for a formula: numbers bare, booleans TRUE/FALSE, strings quoted."""
    if value is None:
        return '""'
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return str(value)
    if field_type in NUMERIC_TYPES and isinstance(value, str):
        try:
            float(value)
            return value.strip()
        except ValueError:
            pass
    if isinstance(value, (list, tuple)):
        return ", ".join(format_value(v, field_type) for v in value)
    return f'"{escape_string(str(value))}"'


# ============================================================================
# Formula
# ============================================================================

def _format_condition(condition: FilterCondition, schema: Optional[SchemaProvider]) -> str:
    field_type = schema.get_field_type(condition.field_id) if schema is not None else None
    ref = "{" + _field_name(condition.field_id, schema) + "}"
    op = canonical_operator(condition.operator)
    value = condition.value

    if op in _COMPARISON_SYMBOLS:
        return f"{ref} {_COMPARISON_SYMBOLS[op]} {format_value(value, field_type)}"

    needle = escape_string("" if value is None else str(value))
    if op == "contains":
        return f'FIND("{needle}", {ref}) > 0'
    if op == "not_contains":
        return f'FIND("{needle}", {ref}) = 0'
    if op == "is_empty":
        return f"ISBLANK({ref})"
    if op == "is_not_empty":
        return f"NOT(ISBLANK({ref}))"
    if op == "has":
        return f'FIND("{needle}", ARRAYJOIN({ref})) > 0'
    if op == "does_not_have":
        return f'FIND("{needle}", ARRAYJOIN({ref})) = 0'
    if op == "date_today":
        return f'IS_SAME({ref}, TODAY(), "day")'
    if op == "date_next_days":
        return f'AND({ref} >= TODAY(), {ref} <= DATEADD(TODAY(), {format_value(value)}, "days"))'
    if op == "date_range" and isinstance(value, dict):
        start = format_value(value.get("start"))
        end = format_value(value.get("end"))
        return f"AND({ref} >= {start}, {ref} <= {end})"
    return f"{ref} = {format_value(value, field_type)}"


def _format_node(node: FilterNode, schema: Optional[SchemaProvider]) -> str:
    if isinstance(node, FilterCondition):
        return _format_condition(node, schema)
    return _format_group(node, schema)


def _format_group(group: FilterGroup, schema: Optional[SchemaProvider]) -> str:
    if not group.children:
        # Keep the evaluator's identities for explicitly emptied subgroups
        return "TRUE()" if group.operator == AND else "FALSE()"
    if len(group.children) == 1:
        return _format_node(group.children[0], schema)
    return f" {group.operator} ".join(f"({_format_node(child, schema)})" for child in group.children)


def filter_tree_to_formula(tree: FilterTree, schema: Optional[SchemaProvider] = None) -> str:
    """
    Render a filter tree as a formula string.

    Examples:
        {Status} = "Approved"
        ({Status} = "Done") AND ({Priority} > 3)

    Returns an empty string for an empty tree. Never raises.
    """
    try:
        normalized = normalize_filter_tree(tree)
        if not normalized.children:
            return ""
        return _format_group(normalized, schema)
    except Exception:
        logger.exception("Failed to render filter formula")
        return ""


# ============================================================================
# Summary
# ============================================================================

def _summary_value(value: Any) -> str:
    if value is None:
        return "empty"
    if isinstance(value, bool):
        return "checked" if value else "unchecked"
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    if isinstance(value, dict) and "start" in value and "end" in value:
        return f"{value['start']} to {value['end']}"
    return str(value)


def _summarize_condition(condition: FilterCondition, schema: Optional[SchemaProvider]) -> str:
    name = _field_name(condition.field_id, schema)
    op = canonical_operator(condition.operator)
    label = OPERATOR_LABELS.get(op, op)

    if op in ("is_empty", "is_not_empty", "date_today"):
        return f"{name} {label}"
    if op == "date_next_days":
        return f"{name} {label} {_summary_value(condition.value)} days"
    return f"{name} {label} {_summary_value(condition.value)}"


def _summarize_group(group: FilterGroup, schema: Optional[SchemaProvider]) -> str:
    parts: List[str] = []
    for child in group.children:
        if isinstance(child, FilterCondition):
            parts.append(_summarize_condition(child, schema))
        elif child.children:
            parts.append(f"({_summarize_group(child, schema)})")
    return f" {group.operator.lower()} ".join(parts)


def filter_tree_to_summary(
    tree: FilterTree,
    schema: Optional[SchemaProvider] = None,
    table_name: Optional[str] = None,
) -> str:
    """
    Render a short sentence describing a filter tree.

    Example: "Email is not empty and Status is Done"
    """
    try:
        normalized = normalize_filter_tree(tree)
        parts = []
        if table_name:
            parts.append(f"When a {table_name} is created")
        if normalized.children:
            parts.append(_summarize_group(normalized, schema))
        return " and ".join(p for p in parts if p) or RUN_EVERY_TIME
    except Exception:
        logger.exception("Failed to render filter summary")
        return RUN_EVERY_TIME


def describe_groups(conditions: List[FilterTree], schema: Optional[SchemaProvider] = None) -> List[str]:
    """
    Builder labels for an ordered list of group conditions.

    The first conditioned group reads "If ...", later ones "Otherwise if ...",
    and a group with no condition reads "Always run".
    """
    labels = []
    seen_if = False
    for condition in conditions:
        if is_empty_filter_tree(condition):
            labels.append("Always run")
            continue
        prefix = "Otherwise if" if seen_if else "If"
        seen_if = True
        labels.append(f"{prefix} {filter_tree_to_summary(condition, schema)}")
    return labels
