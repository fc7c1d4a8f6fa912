"""
Conditional routing across action groups.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .conditions import evaluate_condition
from .interfaces.schema_provider import SchemaProvider
from .types import ActionGroup

logger = logging.getLogger(__name__)


class GroupMatchPolicy(str, Enum):
    """How many matching action groups run."""
    # If / otherwise-if: only the first matching group runs
    FIRST_MATCH = "first_match"
    # Every matching group runs, in order
    ALL_MATCHES = "all_matches"


def order_groups(groups: List[ActionGroup]) -> List[ActionGroup]:
    """Sort groups by their order value; ties keep their stored position."""
    return sorted(groups or [], key=lambda g: g.order)


def evaluate_groups(
    groups: List[ActionGroup],
    record: Dict[str, Any],
    schema: Optional[SchemaProvider] = None,
    now: Optional[datetime] = None,
    policy: GroupMatchPolicy = GroupMatchPolicy.FIRST_MATCH,
) -> List[Tuple[ActionGroup, bool]]:
    """
    Evaluate group conditions in order.

    Returns (group, matched) for every group that was evaluated. Under
    FIRST_MATCH evaluation stops at the first match; later groups are not
    evaluated and do not appear in the result.
    """
    evaluated = []
    for group in order_groups(groups):
        matched = evaluate_condition(group.condition, record, schema, now)
        evaluated.append((group, matched))
        if matched and policy == GroupMatchPolicy.FIRST_MATCH:
            break
    return evaluated


def route_action_groups(
    groups: List[ActionGroup],
    record: Dict[str, Any],
    schema: Optional[SchemaProvider] = None,
    now: Optional[datetime] = None,
    policy: GroupMatchPolicy = GroupMatchPolicy.FIRST_MATCH,
) -> List[ActionGroup]:
    """
    Select the action groups to run for a record.

    Groups are considered in ascending order. A group with an empty condition
    always matches.

    Returns:
        Matching groups in order: at most one under FIRST_MATCH
    """
    matched = [g for g, ok in evaluate_groups(groups, record, schema, now, policy) if ok]
    if not matched:
        logger.info("No action group matched")
    return matched
