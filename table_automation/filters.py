"""
Canonical filter model for automation conditions.

A filter tree is either None or a FilterGroup of AND/OR'd children, where
each child is a nested FilterGroup or a FilterCondition leaf. None and an
empty group both mean "no condition" (run every time).

normalize_filter_tree() and is_empty_filter_tree() are the only supported
ways to test a tree for emptiness.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


AND = "AND"
OR = "OR"

# Known filter operators. The valid subset depends on the field type (see schema.py).
FILTER_OPERATORS = (
    "equal",
    "not_equal",
    "contains",
    "not_contains",
    "is_empty",
    "is_not_empty",
    "greater_than",
    "less_than",
    "greater_than_or_equal",
    "less_than_or_equal",
    "date_equal",
    "date_before",
    "date_after",
    "date_on_or_before",
    "date_on_or_after",
    "date_range",
    "date_today",
    "date_next_days",
    "has",
    "does_not_have",
)

OPERATOR_ALIASES = {
    "before": "date_before",
    "after": "date_after",
}

# Operators that ignore the condition value
UNARY_OPERATORS = frozenset({"is_empty", "is_not_empty", "date_today"})


def canonical_operator(operator: str) -> str:
    """Resolve operator aliases (before/after) to their canonical name."""
    return OPERATOR_ALIASES.get(operator, operator)


@dataclass
class FilterCondition:
    """Leaf condition: <field> <operator> <value>."""
    field_id: str
    operator: str
    value: Any = None


@dataclass
class FilterGroup:
    """AND/OR group of conditions and nested groups."""
    operator: str = AND
    children: List[Union["FilterGroup", FilterCondition]] = field(default_factory=list)


FilterNode = Union[FilterGroup, FilterCondition]
FilterTree = Optional[FilterGroup]


def normalize_filter_tree(tree: FilterTree) -> FilterGroup:
    """
    Return the canonical form of a filter tree.

    None becomes an empty AND group and None children are dropped at every
    level. The input is never mutated; a new tree is returned.
    """
    if tree is None:
        return FilterGroup(operator=AND, children=[])
    return _normalize_group(tree)


def _normalize_group(group: FilterGroup) -> FilterGroup:
    operator = (group.operator or AND).upper()
    if operator not in (AND, OR):
        logger.warning(f"Unknown group operator '{group.operator}', treating as AND")
        operator = AND

    children: List[FilterNode] = []
    for child in group.children or []:
        if child is None:
            continue
        if isinstance(child, FilterGroup):
            children.append(_normalize_group(child))
        elif isinstance(child, FilterCondition):
            children.append(FilterCondition(
                field_id=child.field_id,
                operator=child.operator,
                value=child.value,
            ))
    return FilterGroup(operator=operator, children=children)


def is_empty_filter_tree(tree: FilterTree) -> bool:
    """True if the tree has no conditions (None or a group with no children)."""
    return len(normalize_filter_tree(tree).children) == 0


def conditions_to_filter_tree(
    conditions: List[FilterCondition],
    operator: str = AND
) -> FilterTree:
    """Wrap a flat list of conditions into a single group, or None if empty."""
    conditions = [c for c in conditions or [] if c is not None]
    if not conditions:
        return None
    return FilterGroup(operator=operator.upper(), children=list(conditions))


# ============================================================================
# JSON (de)serialization
# ============================================================================

def filter_tree_from_dict(data: Optional[Dict[str, Any]]) -> FilterTree:
    """
    Load a filter tree from its JSON shape.

    Accepts:
        {"operator": "AND", "children": [...]}
        a bare leaf {"field_id": "Status", "operator": "equal", "value": "Done"}
        a list of leaves (wrapped in an AND group)

    Leaves may name the field with field_id, field or fieldRef. Malformed
    children are dropped with a warning.
    """
    if not data:
        return None

    if isinstance(data, list):
        children = [_node_from_dict(item) for item in data]
        return FilterGroup(operator=AND, children=[c for c in children if c is not None])

    if not isinstance(data, dict):
        logger.warning(f"Ignoring malformed filter tree: {data!r}")
        return None

    node = _node_from_dict(data)
    if node is None:
        return None
    if isinstance(node, FilterCondition):
        return FilterGroup(operator=AND, children=[node])
    return node


def _node_from_dict(data: Any) -> Optional[FilterNode]:
    if not isinstance(data, dict):
        logger.warning(f"Ignoring malformed filter node: {data!r}")
        return None

    if "children" in data:
        children = [_node_from_dict(child) for child in data.get("children") or []]
        return FilterGroup(
            operator=str(data.get("operator") or AND).upper(),
            children=[c for c in children if c is not None],
        )

    field_id = data.get("field_id") or data.get("field") or data.get("fieldRef")
    operator = data.get("operator") or data.get("op")
    if not field_id or not operator:
        logger.warning(f"Ignoring filter condition without field or operator: {data!r}")
        return None

    return FilterCondition(field_id=str(field_id), operator=str(operator), value=data.get("value"))


def filter_tree_to_dict(tree: FilterTree) -> Dict[str, Any]:
    """Serialize a filter tree to its canonical JSON shape."""
    return _node_to_dict(normalize_filter_tree(tree))


def _node_to_dict(node: FilterNode) -> Dict[str, Any]:
    if isinstance(node, FilterGroup):
        return {
            "operator": node.operator,
            "children": [_node_to_dict(child) for child in node.children],
        }
    result = {"field_id": node.field_id, "operator": node.operator}
    if node.value is not None:
        result["value"] = node.value
    return result


def iter_conditions(tree: FilterTree):
    """Yield every leaf condition in the tree, depth first."""
    stack = [normalize_filter_tree(tree)]
    while stack:
        node = stack.pop()
        if isinstance(node, FilterGroup):
            stack.extend(reversed(node.children))
        else:
            yield node
