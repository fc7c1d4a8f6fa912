"""
Trigger evaluation: building the run context from an event and deciding
whether the trigger fires.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .conditions import evaluate_condition
from .filters import filter_tree_from_dict, is_empty_filter_tree
from .interfaces.schema_provider import SchemaProvider
from .types import Automation, TriggerContext, TriggerType

logger = logging.getLogger(__name__)

_ROW_TRIGGERS = (TriggerType.ROW_CREATED, TriggerType.ROW_UPDATED, TriggerType.ROW_DELETED)


def build_trigger_context(
    automation: Automation,
    event: Optional[Dict[str, Any]] = None,
    user: Optional[str] = None,
    triggered_at: Optional[datetime] = None,
) -> TriggerContext:
    """
    Build the trigger context for an inbound event.

    Event shapes by trigger type:
    - row_created / row_deleted / condition: {"record": {...}, "table_id": ...}
    - row_updated: {"record": {...}, "old_record": {...}}
    - webhook: {"payload": {...}} (the payload is exposed as the record)
    - schedule: {} (no record)
    """
    event = event or {}
    triggered_at = triggered_at or datetime.now(timezone.utc)
    table_id = event.get("table_id") or automation.table_id

    if automation.trigger_type == TriggerType.WEBHOOK:
        record = dict(event.get("payload") or {})
    else:
        record = dict(event.get("record") or {})

    record_id = event.get("record_id") or record.get("id")
    return TriggerContext(
        record=record,
        record_id=str(record_id) if record_id is not None else None,
        table_id=table_id,
        triggered_at=triggered_at,
        user=user or event.get("user"),
        trigger_type=automation.trigger_type,
        old_record=event.get("old_record"),
        automation_id=automation.id,
    )


def _changed_fields(old: Dict[str, Any], new: Dict[str, Any]) -> set:
    return {key for key in set(old) | set(new) if old.get(key) != new.get(key)}


def check_trigger(
    automation: Automation,
    context: TriggerContext,
    schema: Optional[SchemaProvider] = None,
) -> Tuple[bool, str]:
    """
    Decide whether the automation's trigger fires for this context.

    Returns:
        (fires, message) where message explains the decision for the trace
    """
    config = automation.trigger_config or {}

    if context.trigger_type is not None and context.trigger_type != automation.trigger_type:
        return False, (
            f"Event type {context.trigger_type.value} does not match "
            f"trigger {automation.trigger_type.value}"
        )

    if automation.trigger_type in _ROW_TRIGGERS or automation.trigger_type == TriggerType.CONDITION:
        if automation.table_id and context.table_id and automation.table_id != context.table_id:
            return False, f"Event is for table {context.table_id}, not {automation.table_id}"

    if automation.trigger_type == TriggerType.ROW_UPDATED:
        watch_fields = config.get("watch_fields") or []
        if watch_fields and context.old_record is not None:
            changed = _changed_fields(context.old_record, context.record)
            watched = [f for f in watch_fields if f in changed]
            if not watched:
                return False, "None of the watched fields changed"
            return True, f"Watched fields changed: {', '.join(watched)}"
        return True, "Record updated"

    if automation.trigger_type == TriggerType.CONDITION:
        condition = filter_tree_from_dict(config.get("condition"))
        if is_empty_filter_tree(condition):
            return False, "Condition trigger has no condition configured"
        if evaluate_condition(condition, context.record, schema, context.triggered_at):
            return True, "Trigger condition matched"
        return False, "Trigger condition not met"

    messages = {
        TriggerType.WEBHOOK: "Webhook received",
        TriggerType.SCHEDULE: "Schedule fired",
        TriggerType.ROW_CREATED: "Record created",
        TriggerType.ROW_DELETED: "Record deleted",
    }
    return True, messages.get(automation.trigger_type, "Trigger fired")
