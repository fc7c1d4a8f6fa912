"""
Template variable resolution for action parameters.
"""

import dataclasses
import json
import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from .interfaces.schema_provider import SchemaProvider
from .schema import FieldType
from .types import TriggerContext

logger = logging.getLogger(__name__)

TEMPLATE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")

NOW_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Action fields that are identifiers, not user text
_NON_TEMPLATE_FIELDS = frozenset({"id", "output_as"})

_MISSING = object()


def get_nested_value(data: Any, path: str) -> Any:
    """
    Get a nested value from a dict/list using dot notation.
    Supports array indexing: 'data[0].score' or 'data.0.score'

    Examples:
        get_nested_value({'a': {'b': 1}}, 'a.b') -> 1
        get_nested_value({'data': [{'score': 70}]}, 'data[0].score') -> 70
        get_nested_value({'data': [{'score': 70}]}, 'data.0.score') -> 70
    """
    if data is None:
        return None

    # Handle array notation like data[0].score -> data.0.score
    path = re.sub(r"\[(-?\d+)\]", r".\1", path)

    current = data
    for part in path.split("."):
        if current is None:
            return None

        # Support negative indexing (e.g., -1 for last element)
        is_numeric = part.isdigit() or (part.startswith("-") and part[1:].isdigit())
        if is_numeric and isinstance(current, list):
            idx = int(part)
            if -len(current) <= idx < len(current):
                current = current[idx]
            else:
                return None
        elif isinstance(current, dict):
            current = current.get(part)
        else:
            return None

    return current


def format_field_value(value: Any, field_type: Optional[FieldType] = None) -> str:
    """Stringify a record value for insertion into text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        items = []
        for item in value:
            if isinstance(item, dict):
                item = item.get("name") or item.get("label") or item.get("id")
            items.append(format_field_value(item))
        return ", ".join(items)
    if isinstance(value, dict):
        return json.dumps(value, default=str)
    if field_type == FieldType.CHECKBOX:
        return "true" if value else "false"
    return str(value)


def _lookup_record_field(
    token: str,
    context: TriggerContext,
    schema: Optional[SchemaProvider],
) -> Any:
    record = context.record or {}
    if token in record:
        field_type = schema.get_field_type(token) if schema is not None else None
        return format_field_value(record[token], field_type)
    if schema is not None:
        table_field = schema.get_field(token)
        if table_field is not None:
            for key in (table_field.id, table_field.name):
                if key in record:
                    return format_field_value(record[key], table_field.type)
            return ""
    return _MISSING


def _format_now(context: TriggerContext) -> str:
    moment = context.triggered_at
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(NOW_FORMAT)


def resolve_token(
    token: str,
    context: TriggerContext,
    schema: Optional[SchemaProvider] = None,
) -> Optional[str]:
    """
    Resolve a single template token, or return None if it does not bind.

    Resolution order:
    1. Field of the trigger record ({{Status}})
    2. {{record_id}}, {{table_id}}
    3. {{NOW()}} - trigger time, UTC ISO 8601
    4. {{USER()}} - acting user
    5. Prior action results by name or dotted path ({{action_0_result.status}})
    6. Dotted path into the trigger record ({{address.city}})
    """
    value = _lookup_record_field(token, context, schema)
    if value is not _MISSING:
        return value

    if token == "record_id":
        return "" if context.record_id is None else str(context.record_id)
    if token == "table_id":
        return "" if context.table_id is None else str(context.table_id)
    if token == "NOW()":
        return _format_now(context)
    if token == "USER()":
        return context.user or ""

    results = context.action_results
    if token in results:
        value = results[token]
    else:
        value = get_nested_value(results, token)
        if value is None and "." in token:
            value = get_nested_value(context.record, token)
    if value is None:
        return None

    # Convert complex types to JSON strings
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return format_field_value(value)


def resolve_template(
    template: str,
    context: TriggerContext,
    schema: Optional[SchemaProvider] = None,
) -> str:
    """
    Resolve {{variable}} placeholders in a template string.

    Tokens that do not bind are left in place as literal {{token}} text so the
    user can see what failed to resolve.

    Args:
        template: String with {{variable}} placeholders
        context: Trigger context of the current run
        schema: Optional schema for field-name lookups and typed formatting

    Returns:
        Resolved string
    """
    if not isinstance(template, str):
        return template

    def replace_var(match):
        token = match.group(1).strip()
        value = resolve_token(token, context, schema)
        if value is None:
            logger.warning(f"Template variable not found: {token}")
            return match.group(0)
        return value

    return TEMPLATE_PATTERN.sub(replace_var, template)


def resolve_value(value: Any, context: TriggerContext, schema: Optional[SchemaProvider] = None) -> Any:
    """Resolve templates in every string leaf of a value."""
    if isinstance(value, str):
        return resolve_template(value, context, schema)
    if isinstance(value, dict):
        return resolve_parameters(value, context, schema)
    if isinstance(value, list):
        return [resolve_value(item, context, schema) for item in value]
    return value


def resolve_parameters(
    params: Dict[str, Any],
    context: TriggerContext,
    schema: Optional[SchemaProvider] = None,
) -> Dict[str, Any]:
    """Recursively resolve all template variables in a parameters dict."""
    return {key: resolve_value(value, context, schema) for key, value in params.items()}


def interpolate_action(action, context: TriggerContext, schema: Optional[SchemaProvider] = None):
    """Return a copy of an action with templates resolved in all its text fields."""
    changes = {
        f.name: resolve_value(getattr(action, f.name), context, schema)
        for f in dataclasses.fields(action)
        if f.name not in _NON_TEMPLATE_FIELDS
    }
    return dataclasses.replace(action, **changes)


def find_template_tokens(value: Any) -> list:
    """List every {{token}} referenced anywhere in a value."""
    if isinstance(value, str):
        return [m.strip() for m in TEMPLATE_PATTERN.findall(value)]
    if isinstance(value, dict):
        return [t for v in value.values() for t in find_template_tokens(v)]
    if isinstance(value, (list, tuple)):
        return [t for v in value for t in find_template_tokens(v)]
    return []
