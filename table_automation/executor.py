"""
Automation Executor

Runs an automation for one trigger occurrence: trigger check, top-level
condition, action-group routing, then the routed actions in order. Every
step is recorded in an ExecutionTrace.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlparse

from . import config
from .actions import (
    ActionConfig,
    ActionType,
    CallWebhookAction,
    CreateRecordAction,
    DelayAction,
    DeleteRecordAction,
    InvalidAction,
    LogMessageAction,
    RunScriptAction,
    SendEmailAction,
    StopExecutionAction,
    UpdateRecordAction,
    action_to_dict,
    actions_from_list,
)
from .conditions import evaluate_condition, to_datetime
from .errors import AutomationError, get_user_friendly_error
from .filters import is_empty_filter_tree
from .formula import describe_groups, filter_tree_to_formula
from .interfaces import (
    AutomationDatabase,
    DataStore,
    EmailTransport,
    NotificationHandler,
    SchemaProvider,
    ScriptRunner,
    WebhookTransport,
)
from .routing import GroupMatchPolicy, evaluate_groups, order_groups
from .schema import NUMERIC_TYPES, FieldType
from .templates import interpolate_action
from .triggers import check_trigger
from .types import (
    ActionResult,
    Automation,
    ExecutionStatus,
    ExecutionTrace,
    RunContinuation,
    StepKind,
    TriggerContext,
)

logger = logging.getLogger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_DELAY_UNITS = {
    "seconds": 1,
    "minutes": 60,
    "hours": 60 * 60,
    "days": 24 * 60 * 60,
}

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ExecutionServices:
    """External collaborators available to a run. Any of them may be absent."""
    data_store: Optional[DataStore] = None
    email_transport: Optional[EmailTransport] = None
    webhook_transport: Optional[WebhookTransport] = None
    script_runner: Optional[ScriptRunner] = None
    schema: Optional[SchemaProvider] = None
    database: Optional[AutomationDatabase] = None
    notification_handler: Optional[NotificationHandler] = None
    clock: Callable[[], datetime] = _utc_now
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep


@dataclass
class HandlerResult:
    """What an action handler reports back to the executor."""
    success: bool
    output: Any = None
    error: Optional[str] = None
    message: Optional[str] = None
    stop: bool = False
    resume_at: Optional[datetime] = None


def _failed(error: str) -> HandlerResult:
    return HandlerResult(success=False, error=error)


def _split_recipients(value: str) -> List[str]:
    return [part.strip() for part in re.split(r"[,;]", value or "") if part.strip()]


def _coerce_field_updates(fields: Dict[str, Any], schema: Optional[SchemaProvider]) -> Dict[str, Any]:
    """Convert interpolated text back to numbers/booleans for typed fields."""
    if schema is None:
        return dict(fields)
    coerced = {}
    for name, value in fields.items():
        field_type = schema.get_field_type(name)
        if isinstance(value, str) and field_type in NUMERIC_TYPES:
            try:
                number = float(value)
                value = int(number) if number.is_integer() else number
            except ValueError:
                pass
        elif isinstance(value, str) and field_type == FieldType.CHECKBOX:
            value = value.strip().lower() in ("true", "1", "yes", "checked")
        coerced[name] = value
    return coerced


# ============================================================================
# Action handlers
# ============================================================================

async def _update_record(action: UpdateRecordAction, context: TriggerContext,
                         services: ExecutionServices, dry_run: bool) -> HandlerResult:
    table_id = action.table_id or context.table_id
    record_id = action.record_id or context.record_id
    if not table_id:
        return _failed("table_id is required for update_record")
    if not record_id:
        return _failed("record_id is required for update_record")

    fields = _coerce_field_updates(action.field_updates, services.schema)
    if dry_run:
        return HandlerResult(
            success=True,
            output={"table_id": table_id, "record_id": record_id, "fields": fields},
            message=f"Would update record {record_id}",
        )
    if services.data_store is None:
        return _failed("No data store configured")

    row_id = await services.data_store.update_record(table_id, record_id, fields)
    return HandlerResult(
        success=True,
        output={"record_id": row_id, "updated": True},
        message=f"Updated record {row_id}",
    )


async def _create_record(action: CreateRecordAction, context: TriggerContext,
                         services: ExecutionServices, dry_run: bool) -> HandlerResult:
    table_id = action.table_id or context.table_id
    if not table_id:
        return _failed("table_id is required for create_record")

    fields = _coerce_field_updates(action.field_updates, services.schema)
    if dry_run:
        return HandlerResult(
            success=True,
            output={"table_id": table_id, "fields": fields},
            message=f"Would create a record in table {table_id}",
        )
    if services.data_store is None:
        return _failed("No data store configured")

    row_id = await services.data_store.create_record(table_id, fields)
    return HandlerResult(
        success=True,
        output={"record_id": row_id, "created": True},
        message=f"Created record {row_id}",
    )


async def _delete_record(action: DeleteRecordAction, context: TriggerContext,
                         services: ExecutionServices, dry_run: bool) -> HandlerResult:
    table_id = action.table_id or context.table_id
    record_id = action.record_id or context.record_id
    if not table_id:
        return _failed("table_id is required for delete_record")
    if not record_id:
        return _failed("record_id is required for delete_record")

    if dry_run:
        return HandlerResult(
            success=True,
            output={"table_id": table_id, "record_id": record_id},
            message=f"Would delete record {record_id}",
        )
    if services.data_store is None:
        return _failed("No data store configured")

    row_id = await services.data_store.delete_record(table_id, record_id)
    return HandlerResult(
        success=True,
        output={"record_id": row_id, "deleted": True},
        message=f"Deleted record {row_id}",
    )


async def _send_email(action: SendEmailAction, context: TriggerContext,
                      services: ExecutionServices, dry_run: bool) -> HandlerResult:
    to = _split_recipients(action.to)
    cc = _split_recipients(action.cc)
    bcc = _split_recipients(action.bcc)
    if not to:
        return _failed("At least one recipient is required for send_email")
    for address in to + cc + bcc:
        if not _EMAIL_PATTERN.match(address):
            return _failed(f"Invalid email address: {address}")

    output = {"to": to, "cc": cc, "bcc": bcc, "subject": action.subject}
    if dry_run:
        return HandlerResult(success=True, output=output,
                             message=f"Email would be sent to {', '.join(to)}: {action.subject}")
    if services.email_transport is None:
        return _failed("No email transport configured")

    await services.email_transport.send_email(to, cc, bcc, action.subject, action.body)
    return HandlerResult(success=True, output={**output, "sent": True},
                         message=f"Email sent to {', '.join(to)}")


async def _call_webhook(action: CallWebhookAction, context: TriggerContext,
                        services: ExecutionServices, dry_run: bool) -> HandlerResult:
    if not action.url:
        return _failed("url is required for call_webhook")
    parsed = urlparse(action.url)
    if parsed.scheme not in ("http", "https"):
        return _failed("Only HTTP and HTTPS URLs are allowed")
    if not parsed.netloc:
        return _failed("Invalid URL format")

    if dry_run:
        return HandlerResult(
            success=True,
            output={"url": action.url, "method": action.method, "body": action.body},
            message=f"Would call {action.method} {action.url}",
        )
    if services.webhook_transport is None:
        return _failed("No webhook transport configured")

    response = await services.webhook_transport.call_webhook(
        action.url, action.method, action.body, action.headers
    )
    output = {"status": response.status, "body": response.body}
    if not response.ok:
        return HandlerResult(success=False, output=output, error=f"Webhook returned {response.status}")
    return HandlerResult(success=True, output=output, message=f"Webhook returned {response.status}")


async def _run_script(action: RunScriptAction, context: TriggerContext,
                      services: ExecutionServices, dry_run: bool) -> HandlerResult:
    if not action.script:
        return _failed("script is required for run_script")
    if dry_run:
        return HandlerResult(success=True, output={"script": action.script},
                             message="Script would run in the sandbox")
    if services.script_runner is None:
        return _failed("No script runner configured")

    result = await services.script_runner.run(action.script, {
        "record": context.record,
        "record_id": context.record_id,
        "table_id": context.table_id,
        "action_results": dict(context.action_results),
    })
    return HandlerResult(success=True, output={"result": result}, message="Script completed")


async def _delay(action: DelayAction, context: TriggerContext,
                 services: ExecutionServices, dry_run: bool) -> HandlerResult:
    now = services.clock()
    if action.delay_type == "until":
        if not action.until_datetime:
            return _failed("until_datetime is required for a delay until a date")
        try:
            until = to_datetime(action.until_datetime)
        except (TypeError, ValueError):
            return _failed(f"Invalid until_datetime: {action.until_datetime}")
        seconds = (until - now).total_seconds()
    elif action.delay_type in _DELAY_UNITS:
        try:
            seconds = float(action.delay_value or 0) * _DELAY_UNITS[action.delay_type]
        except (TypeError, ValueError):
            return _failed(f"Invalid delay value: {action.delay_value}")
    else:
        return _failed(f"Unknown delay type: {action.delay_type}")

    if seconds <= 0:
        return HandlerResult(success=True, output={"delayed_seconds": 0}, message="No delay needed")
    if dry_run:
        return HandlerResult(success=True, output={"delayed_seconds": seconds},
                             message=f"Would wait {seconds:g} seconds")

    if seconds <= config.MAX_INLINE_DELAY_SECONDS:
        await services.sleep(seconds)
        return HandlerResult(success=True, output={"delayed_seconds": seconds},
                             message=f"Waited {seconds:g} seconds")

    resume_at = now + timedelta(seconds=seconds)
    return HandlerResult(
        success=True,
        output={"resume_at": resume_at.isoformat()},
        message=f"Run suspended until {resume_at.isoformat()}",
        resume_at=resume_at,
    )


async def _log_message(action: LogMessageAction, context: TriggerContext,
                       services: ExecutionServices, dry_run: bool) -> HandlerResult:
    level = (action.level or "info").lower()
    logger.log(_LOG_LEVELS.get(level, logging.INFO),
               f"[automation {context.automation_id}] {action.message}")
    return HandlerResult(success=True, output={"message": action.message, "level": level},
                         message=str(action.message))


async def _stop_execution(action: StopExecutionAction, context: TriggerContext,
                          services: ExecutionServices, dry_run: bool) -> HandlerResult:
    return HandlerResult(
        success=True,
        output={"stopped": True, "reason": action.reason},
        message=action.reason or "Execution stopped",
        stop=True,
    )


ACTION_HANDLERS: Dict[ActionType, Callable[..., Awaitable[HandlerResult]]] = {
    ActionType.UPDATE_RECORD: _update_record,
    ActionType.CREATE_RECORD: _create_record,
    ActionType.DELETE_RECORD: _delete_record,
    ActionType.SEND_EMAIL: _send_email,
    ActionType.CALL_WEBHOOK: _call_webhook,
    ActionType.RUN_SCRIPT: _run_script,
    ActionType.DELAY: _delay,
    ActionType.LOG_MESSAGE: _log_message,
    ActionType.STOP_EXECUTION: _stop_execution,
}


def _action_type_name(action: ActionConfig) -> str:
    if isinstance(action, InvalidAction):
        return str(action.raw_type or "unknown")
    return action.type.value


# ============================================================================
# Single action
# ============================================================================

async def execute_action(
    action: ActionConfig,
    context: TriggerContext,
    services: Optional[ExecutionServices] = None,
    dry_run: bool = False,
    index: int = 0,
    timeout: float = config.ACTION_TIMEOUT_SECONDS,
) -> ActionResult:
    """
    Execute one action.

    Templates in the action are resolved against the context right before it
    runs, so earlier action results are visible. Collaborator errors and
    timeouts become a failed ActionResult; nothing is raised.

    Args:
        action: Action definition (uninterpolated)
        context: Trigger context of the run
        services: Collaborators
        dry_run: Simulate collaborator-backed actions
        index: Position of the action in the run
        timeout: Timeout in seconds (not applied to delay actions)

    Returns:
        ActionResult with duration, output and error
    """
    services = services or ExecutionServices()
    action_id = action.id or f"action_{index}"
    action_type = _action_type_name(action)
    start_time = time.time()

    def result(outcome: HandlerResult) -> ActionResult:
        return ActionResult(
            action_id=action_id,
            action_type=action_type,
            success=outcome.success,
            duration_ms=int((time.time() - start_time) * 1000),
            output=outcome.output,
            error=outcome.error,
            stop=outcome.stop,
            message=outcome.message,
            resume_at=outcome.resume_at,
        )

    if isinstance(action, InvalidAction):
        return result(_failed(action.error or f"Unknown action type: {action_type}"))

    handler = ACTION_HANDLERS.get(action.type)
    if handler is None:
        return result(_failed(f"Unknown action type: {action_type}"))

    resolved = interpolate_action(action, context, services.schema)

    try:
        if action.type == ActionType.DELAY:
            outcome = await handler(resolved, context, services, dry_run)
        else:
            outcome = await asyncio.wait_for(handler(resolved, context, services, dry_run), timeout=timeout)
    except asyncio.TimeoutError:
        outcome = _failed(f"Action timed out after {timeout:g}s")
    except AutomationError as e:
        outcome = _failed(str(e))
    except Exception as e:
        logger.exception(f"Action execution error: {action_type}")
        outcome = _failed(str(e) or e.__class__.__name__)

    return result(outcome)


# ============================================================================
# Runs
# ============================================================================

def _store_action_output(context: TriggerContext, action: ActionConfig, index: int, result: ActionResult) -> None:
    """Expose an action's output to later templates."""
    results = context.action_results
    results[f"action_{index}_result"] = result.output
    if action.output_as:
        results[action.output_as] = result.output
    if (
        action.type == ActionType.CREATE_RECORD
        and isinstance(result.output, dict)
        and result.output.get("record_id")
    ):
        results["last_record_id"] = result.output["record_id"]


async def _run_actions(
    automation: Automation,
    actions: List[ActionConfig],
    context: TriggerContext,
    services: ExecutionServices,
    trace: ExecutionTrace,
    dry_run: bool,
    start_index: int,
    timeout: float,
) -> ExecutionTrace:
    # Every routed action is listed up front so pending steps show in the trace
    steps = [
        trace.add_step(StepKind.ACTION, f"Action {start_index + i + 1}: {_action_type_name(action)}")
        for i, action in enumerate(actions)
    ]

    for offset, (action, step) in enumerate(zip(actions, steps)):
        index = start_index + offset
        action_type = _action_type_name(action)
        step.start(f"Executing {action_type}...")
        logger.info(f"Automation {automation.id}: executing action {index + 1} ({action_type})")

        result = await execute_action(action, context, services, dry_run, index, timeout)
        trace.action_results.append(result)

        if not result.success:
            friendly = get_user_friendly_error(result.error, action_type)
            step.fail(result.error, friendly.message, friendly.suggestion, result.duration_ms)
            context.action_results["last_error"] = result.error
            logger.warning(f"Automation {automation.id}: action {index + 1} ({action_type}) failed: {result.error}")
            return trace.finish(ExecutionStatus.FAILED, f"Action {index + 1} ({action_type}) failed: {result.error}")

        _store_action_output(context, action, index, result)
        step.complete(result.message, result.output, result.duration_ms)

        if result.stop:
            return trace.finish(ExecutionStatus.STOPPED)

        if result.resume_at is not None:
            continuation = RunContinuation(
                run_id=trace.run_id,
                automation_id=automation.id,
                resume_at=result.resume_at,
                remaining_actions=[action_to_dict(a) for a in actions[offset + 1:]],
                context=context.to_dict(),
                next_action_index=index + 1,
            )
            trace.continuation = continuation
            if services.database is not None:
                await services.database.save_continuation(continuation.to_dict())
            logger.info(f"Automation {automation.id}: run {trace.run_id} suspended until {result.resume_at.isoformat()}")
            return trace.finish(ExecutionStatus.SUSPENDED)

    return trace.finish(ExecutionStatus.COMPLETED)


async def _finalize(
    automation: Automation,
    trace: ExecutionTrace,
    services: ExecutionServices,
    start_time: float,
) -> ExecutionTrace:
    trace.duration_ms = int((time.time() - start_time) * 1000)
    logger.info(f"Automation {automation.id} run {trace.run_id} finished: {trace.status.value}")

    if trace.dry_run:
        return trace

    if services.database is not None:
        try:
            await services.database.log_run(automation.id, trace.to_dict())
        except Exception as e:
            logger.error(f"Failed to log run {trace.run_id}: {e}")

    if trace.status == ExecutionStatus.FAILED and services.notification_handler is not None:
        try:
            await services.notification_handler.notify_automation_failed(
                automation.id, automation.name, trace.error
            )
        except Exception as e:
            logger.error(f"Failed to send failure notification for {automation.id}: {e}")

    return trace


async def run_automation(
    automation: Automation,
    context: TriggerContext,
    services: Optional[ExecutionServices] = None,
    dry_run: bool = False,
    policy: GroupMatchPolicy = GroupMatchPolicy.FIRST_MATCH,
    timeout_per_action: float = config.ACTION_TIMEOUT_SECONDS,
) -> ExecutionTrace:
    """
    Run an automation for one trigger occurrence.

    Args:
        automation: Automation definition
        context: Trigger context (record, ids, trigger time, user)
        services: Collaborators for actions, run logging and notifications
        dry_run: Simulate side-effecting actions instead of performing them
        policy: Action-group match policy
        timeout_per_action: Timeout in seconds for each action

    Returns:
        ExecutionTrace for the run. Errors never propagate out of this call;
        they end the run with status FAILED.
    """
    services = services or ExecutionServices()
    schema = services.schema
    start_time = time.time()
    trace = ExecutionTrace(automation_id=automation.id, dry_run=dry_run)
    logger.info(f"Starting automation {automation.id} ({automation.name}), run {trace.run_id}")

    # Trigger
    step = trace.add_step(StepKind.TRIGGER, f"Trigger: {automation.trigger_type.value}")
    step.start("Checking trigger...")
    if not automation.enabled:
        step.complete("Automation is disabled")
        trace.finish(ExecutionStatus.SKIPPED)
        return await _finalize(automation, trace, services, start_time)

    fires, message = check_trigger(automation, context, schema)
    step.complete(message, {"fired": fires})
    if not fires:
        trace.finish(ExecutionStatus.SKIPPED)
        return await _finalize(automation, trace, services, start_time)

    # Top-level condition
    if not is_empty_filter_tree(automation.condition):
        step = trace.add_step(StepKind.CONDITION, "Check conditions")
        step.start("Evaluating conditions...")
        matched = evaluate_condition(automation.condition, context.record, schema, context.triggered_at)
        step.complete(
            "Conditions met" if matched else "Conditions not met",
            {"matched": matched, "formula": filter_tree_to_formula(automation.condition, schema)},
        )
        if not matched:
            trace.finish(ExecutionStatus.SKIPPED)
            return await _finalize(automation, trace, services, start_time)

    # Action-group routing
    ordered = order_groups(automation.action_groups)
    labels = dict(zip(
        (id(g) for g in ordered),
        describe_groups([g.condition for g in ordered], schema),
    ))
    evaluated = evaluate_groups(ordered, context.record, schema, context.triggered_at, policy)
    for group, matched in evaluated:
        if is_empty_filter_tree(group.condition):
            continue
        step = trace.add_step(StepKind.CONDITION, labels[id(group)])
        step.start("Evaluating group condition...")
        step.complete("Matched" if matched else "Not matched", {"group_id": group.id, "matched": matched})

    selected = [group for group, matched in evaluated if matched]
    if not selected:
        logger.info(f"Automation {automation.id}: no action group matched")
        trace.finish(ExecutionStatus.SKIPPED)
        return await _finalize(automation, trace, services, start_time)

    actions = [action for group in selected for action in group.actions]
    try:
        await _run_actions(automation, actions, context, services, trace, dry_run, 0, timeout_per_action)
    except Exception as e:
        logger.exception(f"Automation {automation.id} run {trace.run_id} aborted")
        context.action_results["last_error"] = str(e)
        trace.finish(ExecutionStatus.FAILED, str(e))

    return await _finalize(automation, trace, services, start_time)


async def resume_automation(
    automation: Automation,
    continuation: RunContinuation,
    services: Optional[ExecutionServices] = None,
    timeout_per_action: float = config.ACTION_TIMEOUT_SECONDS,
) -> ExecutionTrace:
    """
    Resume a run that a long delay suspended.

    The automation is re-checked first: if it was disabled while the run was
    suspended the run is cancelled and no further action executes.
    """
    services = services or ExecutionServices()
    start_time = time.time()
    context = TriggerContext.from_dict(continuation.context)
    trace = ExecutionTrace(automation_id=automation.id, run_id=continuation.run_id)

    step = trace.add_step(StepKind.TRIGGER, "Resume after delay")
    step.start("Checking automation...")
    if not automation.enabled:
        step.complete("Automation was disabled while the run was suspended")
        trace.finish(ExecutionStatus.CANCELLED, "Run cancelled: automation disabled")
    else:
        step.complete(f"Resuming at action {continuation.next_action_index + 1}")
        actions = actions_from_list(continuation.remaining_actions)
        try:
            await _run_actions(
                automation, actions, context, services, trace, False,
                continuation.next_action_index, timeout_per_action,
            )
        except Exception as e:
            logger.exception(f"Automation {automation.id} run {trace.run_id} aborted on resume")
            trace.finish(ExecutionStatus.FAILED, str(e))

    # A second long delay has already saved a new continuation under this run_id
    if services.database is not None and trace.status != ExecutionStatus.SUSPENDED:
        try:
            await services.database.delete_continuation(continuation.run_id)
        except Exception as e:
            logger.error(f"Failed to delete continuation {continuation.run_id}: {e}")

    return await _finalize(automation, trace, services, start_time)


async def resume_due_runs(
    load_automation: Callable[[str], Awaitable[Optional[Automation]]],
    services: ExecutionServices,
    now: Optional[datetime] = None,
) -> List[ExecutionTrace]:
    """
    Resume every persisted run whose delay has elapsed.

    Args:
        load_automation: Async lookup of the current automation definition by ID
        services: Collaborators; services.database is required
        now: Reference instant (defaults to services.clock())

    Returns:
        Traces of the resumed runs
    """
    if services.database is None:
        raise AutomationError("resume_due_runs requires an AutomationDatabase")

    now = now or services.clock()
    traces = []
    for data in await services.database.due_continuations(now):
        continuation = RunContinuation.from_dict(data)
        automation = await load_automation(continuation.automation_id)
        if automation is None:
            logger.warning(f"Automation {continuation.automation_id} no longer exists, dropping run {continuation.run_id}")
            await services.database.delete_continuation(continuation.run_id)
            continue
        traces.append(await resume_automation(automation, continuation, services))
    return traces
