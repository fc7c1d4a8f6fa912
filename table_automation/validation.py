"""
Automation Validation

Static checks run when an automation is saved. Errors block saving; warnings
describe things that will quietly evaluate to false or skip at run time
(e.g. a condition on a field that was deleted).
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, List, Optional
from urllib.parse import urlparse

from .actions import (
    CallWebhookAction,
    DelayAction,
    DeleteRecordAction,
    InvalidAction,
    SendEmailAction,
    UpdateRecordAction,
)
from .filters import (
    FILTER_OPERATORS,
    FilterTree,
    canonical_operator,
    filter_tree_from_dict,
    is_empty_filter_tree,
    iter_conditions,
)
from .interfaces import SchemaProvider
from .schedule import ScheduleSpec
from .schema import FieldType, is_operator_valid_for_field
from .templates import find_template_tokens
from .types import Automation, TriggerType

logger = logging.getLogger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_BLOCK_PATTERN = re.compile(r"\{\{[#/][^}]+\}\}")
_TOKEN_PATTERN = re.compile(r"\{\{([^{}]*)\}\}")

_BUILTIN_TOKENS = frozenset({"record_id", "table_id", "NOW()", "USER()", "last_error", "last_record_id"})
_ACTION_RESULT_TOKEN = re.compile(r"^action_\d+_result\b")

# Triggers that carry no trigger record to default record_id from
_RECORDLESS_TRIGGERS = (TriggerType.SCHEDULE, TriggerType.WEBHOOK)


@dataclass
class ValidationResult:
    valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _check_template_syntax(value: Any, path: str = "") -> List[str]:
    """
    Recursively check {{ }} usage in a value.

    Flags block syntax ({{#if}} / {{/if}}), empty tokens and unbalanced braces.
    """
    errors = []

    if isinstance(value, str):
        blocks = _BLOCK_PATTERN.findall(value)
        if blocks:
            errors.append(f"Block template syntax is not supported at '{path}': {blocks}")
        if any(not token.strip() for token in _TOKEN_PATTERN.findall(value)):
            errors.append(f"Empty template variable at '{path}'")
        stripped = _TOKEN_PATTERN.sub("", value)
        if "{{" in stripped or "}}" in stripped:
            errors.append(f"Unbalanced template braces at '{path}'")
    elif isinstance(value, dict):
        for k, v in value.items():
            errors.extend(_check_template_syntax(v, f"{path}.{k}" if path else k))
    elif isinstance(value, list):
        for i, item in enumerate(value):
            errors.extend(_check_template_syntax(item, f"{path}[{i}]"))

    return errors


def _check_condition(
    tree: FilterTree,
    label: str,
    schema: Optional[SchemaProvider],
    result: ValidationResult,
) -> None:
    for condition in iter_conditions(tree):
        operator = canonical_operator(condition.operator)
        if operator not in FILTER_OPERATORS:
            result.errors.append(f"{label}: unknown operator '{condition.operator}'")
            continue
        if schema is None:
            continue
        field_type = schema.get_field_type(condition.field_id)
        if field_type is None:
            result.warnings.append(
                f"{label}: field '{condition.field_id}' no longer exists; this condition will never match"
            )
        elif not is_operator_valid_for_field(field_type, operator):
            result.errors.append(
                f"{label}: operator '{operator}' cannot be used with {FieldType.parse(field_type).value} field '{condition.field_id}'"
            )


def _is_templated(value: str) -> bool:
    return "{{" in (value or "")


def _check_template_variables(
    action,
    path: str,
    schema: Optional[SchemaProvider],
    output_names: set,
    result: ValidationResult,
) -> None:
    """Warn about {{tokens}} that name neither a field nor an earlier output."""
    if schema is None:
        return
    values = {k: v for k, v in vars(action).items() if k not in ("id", "output_as")}
    for token in find_template_tokens(values):
        root = token.split(".")[0].split("[")[0]
        if token in _BUILTIN_TOKENS or _ACTION_RESULT_TOKEN.match(token) or root in output_names:
            continue
        if schema.get_field(token) is None and schema.get_field(root) is None:
            result.warnings.append(f"{path}: '{{{{{token}}}}}' does not match a field or earlier action output")


def _check_action(action, path: str, automation: Automation, result: ValidationResult) -> None:
    if isinstance(action, InvalidAction):
        result.errors.append(f"{path}: {action.error or 'invalid action'}")
        return

    result.errors.extend(
        _check_template_syntax(
            {k: v for k, v in vars(action).items() if k not in ("id", "output_as")},
            path,
        )
    )

    if isinstance(action, (UpdateRecordAction, DeleteRecordAction)):
        if not action.record_id and automation.trigger_type in _RECORDLESS_TRIGGERS:
            result.warnings.append(
                f"{path}: no record_id set and a {automation.trigger_type.value} trigger has no trigger record"
            )
        if isinstance(action, UpdateRecordAction) and not action.field_updates:
            result.warnings.append(f"{path}: no field updates configured")

    elif isinstance(action, SendEmailAction):
        recipients = [r.strip() for r in re.split(r"[,;]", action.to or "") if r.strip()]
        if not recipients:
            result.errors.append(f"{path}: at least one recipient is required")
        for address in recipients:
            if not _is_templated(address) and not _EMAIL_PATTERN.match(address):
                result.errors.append(f"{path}: invalid email address '{address}'")

    elif isinstance(action, CallWebhookAction):
        if not action.url:
            result.errors.append(f"{path}: url is required")
        elif not _is_templated(action.url):
            parsed = urlparse(action.url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                result.errors.append(f"{path}: only http and https URLs are allowed")

    elif isinstance(action, DelayAction):
        if action.delay_type == "until":
            if not action.until_datetime:
                result.errors.append(f"{path}: until_datetime is required")
        else:
            try:
                if float(action.delay_value) < 0:
                    result.errors.append(f"{path}: delay cannot be negative")
            except (TypeError, ValueError):
                if not _is_templated(str(action.delay_value)):
                    result.errors.append(f"{path}: delay value must be a number")


def validate_automation(automation: Automation, schema: Optional[SchemaProvider] = None) -> ValidationResult:
    """
    Validate an automation definition.

    Never raises: unexpected problems are reported as errors.

    Args:
        automation: Automation to validate
        schema: Optional table schema for field and operator checks

    Returns:
        ValidationResult with errors and warnings
    """
    result = ValidationResult()

    try:
        if not (automation.name or "").strip():
            result.errors.append("Automation name is required")

        trigger_config = automation.trigger_config or {}

        if automation.trigger_type == TriggerType.SCHEDULE:
            try:
                ScheduleSpec.from_dict(trigger_config.get("schedule") or trigger_config)
            except (TypeError, ValueError, KeyError) as e:
                result.errors.append(f"Invalid schedule: {e}")

        if automation.trigger_type == TriggerType.ROW_UPDATED and schema is not None:
            for field_ref in trigger_config.get("watch_fields") or []:
                if schema.get_field(field_ref) is None:
                    result.warnings.append(f"Watched field '{field_ref}' no longer exists")

        if automation.trigger_type == TriggerType.CONDITION:
            trigger_condition = filter_tree_from_dict(trigger_config.get("condition"))
            if is_empty_filter_tree(trigger_condition):
                result.errors.append("Condition trigger requires a condition")
            else:
                _check_condition(trigger_condition, "Trigger condition", schema, result)

        _check_condition(automation.condition, "Condition", schema, result)

        orders = Counter(group.order for group in automation.action_groups)
        duplicates = sorted(order for order, count in orders.items() if count > 1)
        if duplicates:
            result.errors.append(f"Action groups share the same order: {duplicates}")

        if not any(group.actions for group in automation.action_groups):
            result.warnings.append("Automation has no actions")

        output_names = set()
        for g, group in enumerate(automation.action_groups):
            _check_condition(group.condition, f"Group '{group.id}' condition", schema, result)
            for a, action in enumerate(group.actions):
                path = f"action_groups[{g}].actions[{a}]"
                _check_action(action, path, automation, result)
                if not isinstance(action, InvalidAction):
                    _check_template_variables(action, path, schema, output_names, result)
                if action.output_as:
                    output_names.add(action.output_as)

    except Exception as e:
        logger.exception(f"Validation of automation {automation.id} failed unexpectedly")
        result.errors.append(f"Validation failed: {e}")

    result.valid = not result.errors
    return result
