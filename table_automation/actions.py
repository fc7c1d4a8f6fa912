"""
Action definitions.

Each action kind is its own dataclass; ActionType is the closed set of kinds
the executor dispatches on.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    """Kinds of automation actions."""
    UPDATE_RECORD = "update_record"
    CREATE_RECORD = "create_record"
    DELETE_RECORD = "delete_record"
    SEND_EMAIL = "send_email"
    CALL_WEBHOOK = "call_webhook"
    RUN_SCRIPT = "run_script"
    DELAY = "delay"
    LOG_MESSAGE = "log_message"
    STOP_EXECUTION = "stop_execution"


@dataclass
class BaseAction:
    """Fields shared by every action."""
    type: ClassVar[Optional[ActionType]] = None

    id: Optional[str] = None
    # Name under which the action's output is exposed to later templates
    output_as: Optional[str] = None


@dataclass
class UpdateRecordAction(BaseAction):
    type: ClassVar[ActionType] = ActionType.UPDATE_RECORD

    table_id: Optional[str] = None
    record_id: Optional[str] = None
    field_updates: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CreateRecordAction(BaseAction):
    type: ClassVar[ActionType] = ActionType.CREATE_RECORD

    table_id: Optional[str] = None
    field_updates: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DeleteRecordAction(BaseAction):
    type: ClassVar[ActionType] = ActionType.DELETE_RECORD

    table_id: Optional[str] = None
    record_id: Optional[str] = None


@dataclass
class SendEmailAction(BaseAction):
    type: ClassVar[ActionType] = ActionType.SEND_EMAIL

    to: str = ""
    cc: str = ""
    bcc: str = ""
    subject: str = ""
    body: str = ""


@dataclass
class CallWebhookAction(BaseAction):
    type: ClassVar[ActionType] = ActionType.CALL_WEBHOOK

    url: str = ""
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None


@dataclass
class RunScriptAction(BaseAction):
    type: ClassVar[ActionType] = ActionType.RUN_SCRIPT

    script: str = ""


@dataclass
class DelayAction(BaseAction):
    type: ClassVar[ActionType] = ActionType.DELAY

    # seconds, minutes, hours, days or until
    delay_type: str = "seconds"
    delay_value: float = 0
    until_datetime: Optional[str] = None


@dataclass
class LogMessageAction(BaseAction):
    type: ClassVar[ActionType] = ActionType.LOG_MESSAGE

    message: str = ""
    level: str = "info"


@dataclass
class StopExecutionAction(BaseAction):
    type: ClassVar[ActionType] = ActionType.STOP_EXECUTION

    reason: Optional[str] = None


@dataclass
class InvalidAction(BaseAction):
    """Placeholder for a stored action that could not be loaded; always fails when run."""
    raw_type: Optional[str] = None
    error: str = ""


ActionConfig = Union[
    UpdateRecordAction,
    CreateRecordAction,
    DeleteRecordAction,
    SendEmailAction,
    CallWebhookAction,
    RunScriptAction,
    DelayAction,
    LogMessageAction,
    StopExecutionAction,
    InvalidAction,
]

ACTION_CLASSES = {
    cls.type: cls
    for cls in (
        UpdateRecordAction,
        CreateRecordAction,
        DeleteRecordAction,
        SendEmailAction,
        CallWebhookAction,
        RunScriptAction,
        DelayAction,
        LogMessageAction,
        StopExecutionAction,
    )
}


# ============================================================================
# JSON (de)serialization
# ============================================================================

def _mappings_to_dict(mappings: Any) -> Dict[str, Any]:
    """Convert [{field, value}, ...] into {field: value}, skipping blank fields."""
    result: Dict[str, Any] = {}
    for mapping in mappings or []:
        if not isinstance(mapping, dict) or not isinstance(mapping.get("field"), str):
            continue
        key = mapping["field"].strip()
        if key:
            result[key] = mapping.get("value")
    return result


def _join_recipients(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value if v)
    return value or ""


def action_from_dict(data: Dict[str, Any]) -> ActionConfig:
    """
    Load an action from its stored JSON shape.

    Unknown action types load as InvalidAction so a bad definition fails at
    run time on that action instead of breaking the whole automation load.
    """
    if not isinstance(data, dict):
        return InvalidAction(error=f"Malformed action: {data!r}")

    raw_type = data.get("type")
    try:
        action_type = ActionType(raw_type)
    except ValueError:
        logger.warning(f"Unknown action type: {raw_type}")
        return InvalidAction(
            id=data.get("id"),
            raw_type=raw_type,
            error=f"Unknown action type: {raw_type}",
        )

    cls = ACTION_CLASSES[action_type]
    payload = dict(data)
    payload.pop("type", None)
    if "action_id" in payload and "id" not in payload:
        payload["id"] = payload.pop("action_id")

    if action_type in (ActionType.UPDATE_RECORD, ActionType.CREATE_RECORD):
        if not payload.get("field_updates"):
            payload["field_updates"] = _mappings_to_dict(payload.get("field_update_mappings"))
    if action_type == ActionType.SEND_EMAIL:
        payload.setdefault("body", payload.get("email_body", ""))
        for key in ("to", "cc", "bcc"):
            payload[key] = _join_recipients(payload.get(key))
    if action_type == ActionType.CALL_WEBHOOK:
        if "body" not in payload and "webhook_body" in payload:
            payload["body"] = payload["webhook_body"]
        payload["method"] = str(payload.get("method") or "POST").upper()

    known = {f.name for f in dataclasses.fields(cls)}
    return cls(**{k: v for k, v in payload.items() if k in known})


def action_to_dict(action: ActionConfig) -> Dict[str, Any]:
    """Serialize an action back to its JSON shape."""
    if isinstance(action, InvalidAction):
        return {"type": action.raw_type, "id": action.id}
    result = {"type": action.type.value}
    result.update({k: v for k, v in dataclasses.asdict(action).items() if v is not None})
    return result


def actions_from_list(items: List[Dict[str, Any]]) -> List[ActionConfig]:
    return [action_from_dict(item) for item in items or []]
