"""
table_automation - Rule evaluation and execution for table automations

Evaluates when-this-then-that rules attached to data tables: a trigger, an
optional condition tree, ordered action groups and the actions they run.
"""

__version__ = "0.1.0"

# Core types
from .types import (
    TriggerType,
    ExecutionStatus,
    StepKind,
    StepStatus,
    ActionGroup,
    Automation,
    TriggerContext,
    ActionResult,
    TraceStep,
    ExecutionTrace,
    RunContinuation,
)

from .actions import (
    ActionType,
    action_from_dict,
    action_to_dict,
)

from .errors import (
    AutomationError,
    DataStoreError,
    TransportError,
    ScriptError,
    TraceStateError,
    get_user_friendly_error,
)

# Filter trees and conditions
from .filters import (
    FilterCondition,
    FilterGroup,
    normalize_filter_tree,
    is_empty_filter_tree,
    filter_tree_from_dict,
    filter_tree_to_dict,
)

from .conditions import (
    compare_values,
    evaluate_clause,
    evaluate_condition,
)

from .formula import (
    filter_tree_to_formula,
    filter_tree_to_summary,
)

from .schema import FieldType, TableField, TableSchema, operators_for_field_type

# Template utilities
from .templates import (
    get_nested_value,
    resolve_template,
    resolve_parameters,
)

from .routing import GroupMatchPolicy, route_action_groups
from .triggers import build_trigger_context, check_trigger
from .schedule import ScheduleSpec, next_fire_time, describe_schedule
from .validation import ValidationResult, validate_automation

# Interfaces for extension
from .interfaces import (
    DataStore,
    EmailTransport,
    WebhookTransport,
    WebhookResponse,
    SchemaProvider,
    ScriptRunner,
    AutomationDatabase,
    NotificationHandler,
)

# Executor
from .executor import ExecutionServices, execute_action, run_automation, resume_automation, resume_due_runs

__all__ = [
    "__version__",
    # Types
    "TriggerType",
    "ExecutionStatus",
    "StepKind",
    "StepStatus",
    "ActionGroup",
    "Automation",
    "TriggerContext",
    "ActionResult",
    "TraceStep",
    "ExecutionTrace",
    "RunContinuation",
    "ActionType",
    "action_from_dict",
    "action_to_dict",
    # Errors
    "AutomationError",
    "DataStoreError",
    "TransportError",
    "ScriptError",
    "TraceStateError",
    "get_user_friendly_error",
    # Filters and conditions
    "FilterCondition",
    "FilterGroup",
    "normalize_filter_tree",
    "is_empty_filter_tree",
    "filter_tree_from_dict",
    "filter_tree_to_dict",
    "compare_values",
    "evaluate_clause",
    "evaluate_condition",
    "filter_tree_to_formula",
    "filter_tree_to_summary",
    "FieldType",
    "TableField",
    "TableSchema",
    "operators_for_field_type",
    # Templates
    "get_nested_value",
    "resolve_template",
    "resolve_parameters",
    # Routing, triggers, schedules, validation
    "GroupMatchPolicy",
    "route_action_groups",
    "build_trigger_context",
    "check_trigger",
    "ScheduleSpec",
    "next_fire_time",
    "describe_schedule",
    "ValidationResult",
    "validate_automation",
    # Executor
    "ExecutionServices",
    "execute_action",
    "run_automation",
    "resume_automation",
    "resume_due_runs",
    # Interfaces
    "DataStore",
    "EmailTransport",
    "WebhookTransport",
    "WebhookResponse",
    "SchemaProvider",
    "ScriptRunner",
    "AutomationDatabase",
    "NotificationHandler",
]
