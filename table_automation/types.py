"""
Data types for automation definitions, trigger context and execution traces.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .actions import ActionConfig, action_to_dict, actions_from_list
from .errors import TraceStateError
from .filters import FilterTree, filter_tree_from_dict, filter_tree_to_dict


class TriggerType(str, Enum):
    """Event classes that start an automation run."""
    ROW_CREATED = "row_created"
    ROW_UPDATED = "row_updated"
    ROW_DELETED = "row_deleted"
    SCHEDULE = "schedule"
    WEBHOOK = "webhook"
    CONDITION = "condition"


class ExecutionStatus(str, Enum):
    """Overall outcome of an automation run."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"
    SKIPPED = "skipped"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class StepKind(str, Enum):
    TRIGGER = "trigger"
    CONDITION = "condition"
    ACTION = "action"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# ============================================================================
# Definitions
# ============================================================================

@dataclass
class ActionGroup:
    """Independently conditioned, ordered bundle of actions."""
    id: str
    condition: FilterTree = None
    actions: List[ActionConfig] = field(default_factory=list)
    # Routing precedence only, never identity
    order: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int = 0) -> "ActionGroup":
        return cls(
            id=str(data.get("id") or f"group_{index}"),
            condition=filter_tree_from_dict(data.get("condition")),
            actions=actions_from_list(data.get("actions")),
            order=int(data.get("order", index)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "condition": filter_tree_to_dict(self.condition),
            "actions": [action_to_dict(a) for a in self.actions],
            "order": self.order,
        }


@dataclass
class Automation:
    """An automation definition. The engine never mutates it."""
    id: str
    name: str
    trigger_type: TriggerType
    trigger_config: Dict[str, Any] = field(default_factory=dict)
    # Top-level "only run when" condition
    condition: FilterTree = None
    action_groups: List[ActionGroup] = field(default_factory=list)
    enabled: bool = True
    table_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Automation":
        """
        Load an automation from its stored JSON shape.

        A legacy definition with a flat "actions" list and no "action_groups"
        loads as a single unconditioned group.
        """
        groups_data = data.get("action_groups")
        if groups_data:
            groups = [ActionGroup.from_dict(g, i) for i, g in enumerate(groups_data)]
        elif data.get("actions"):
            groups = [ActionGroup(id="default", actions=actions_from_list(data["actions"]))]
        else:
            groups = []

        trigger_config = dict(data.get("trigger_config") or {})
        return cls(
            id=str(data.get("id") or ""),
            name=data.get("name") or "",
            trigger_type=TriggerType(data.get("trigger_type")),
            trigger_config=trigger_config,
            condition=filter_tree_from_dict(data.get("condition") or data.get("conditions")),
            action_groups=groups,
            enabled=bool(data.get("enabled", True)),
            table_id=data.get("table_id") or trigger_config.get("table_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "trigger_type": self.trigger_type.value,
            "trigger_config": self.trigger_config,
            "condition": filter_tree_to_dict(self.condition),
            "action_groups": [g.to_dict() for g in self.action_groups],
            "enabled": self.enabled,
            "table_id": self.table_id,
        }


# ============================================================================
# Run context
# ============================================================================

@dataclass(frozen=True)
class TriggerContext:
    """
    Snapshot passed through a whole run.

    Everything is fixed at trigger time except action_results, which fills up
    as actions complete so later templates can read earlier outputs.
    """
    record: Dict[str, Any] = field(default_factory=dict)
    record_id: Optional[str] = None
    table_id: Optional[str] = None
    triggered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    user: Optional[str] = None
    trigger_type: Optional[TriggerType] = None
    old_record: Optional[Dict[str, Any]] = None
    automation_id: Optional[str] = None
    action_results: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record": self.record,
            "record_id": self.record_id,
            "table_id": self.table_id,
            "triggered_at": self.triggered_at.isoformat(),
            "user": self.user,
            "trigger_type": self.trigger_type.value if self.trigger_type else None,
            "old_record": self.old_record,
            "automation_id": self.automation_id,
            "action_results": self.action_results,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriggerContext":
        trigger_type = data.get("trigger_type")
        return cls(
            record=data.get("record") or {},
            record_id=data.get("record_id"),
            table_id=data.get("table_id"),
            triggered_at=datetime.fromisoformat(data["triggered_at"]),
            user=data.get("user"),
            trigger_type=TriggerType(trigger_type) if trigger_type else None,
            old_record=data.get("old_record"),
            automation_id=data.get("automation_id"),
            action_results=dict(data.get("action_results") or {}),
        )


# ============================================================================
# Results and traces
# ============================================================================

@dataclass
class ActionResult:
    """Result of a single action execution."""
    action_id: str
    action_type: str
    success: bool
    duration_ms: int
    output: Optional[Any] = None
    error: Optional[str] = None
    message: Optional[str] = None
    # Set by stop_execution: end the run without failing it
    stop: bool = False
    # Set by a delay that suspends the run
    resume_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_id": self.action_id,
            "action_type": self.action_type,
            "success": self.success,
            "duration_ms": self.duration_ms,
            "output": self.output,
            "error": self.error,
        }


_TERMINAL = (StepStatus.COMPLETED, StepStatus.FAILED)


@dataclass
class TraceStep:
    """One entry of an execution trace."""
    step: int
    kind: StepKind
    name: str
    status: StepStatus = StepStatus.PENDING
    message: Optional[str] = None
    data: Optional[Any] = None
    error: Optional[str] = None
    suggestion: Optional[str] = None
    duration_ms: Optional[int] = None

    def _transition(self, status: StepStatus) -> None:
        if self.status in _TERMINAL:
            raise TraceStateError(
                f"Step {self.step} is already {self.status.value}, cannot move to {status.value}"
            )
        self.status = status

    def start(self, message: Optional[str] = None) -> None:
        if self.status != StepStatus.PENDING:
            raise TraceStateError(f"Step {self.step} already started")
        self._transition(StepStatus.RUNNING)
        self.message = message

    def complete(self, message: Optional[str] = None, data: Any = None, duration_ms: Optional[int] = None) -> None:
        self._transition(StepStatus.COMPLETED)
        self.message = message
        self.data = data
        self.duration_ms = duration_ms

    def fail(
        self,
        error: str,
        message: Optional[str] = None,
        suggestion: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> None:
        self._transition(StepStatus.FAILED)
        self.error = error
        self.message = message
        self.suggestion = suggestion
        self.duration_ms = duration_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "kind": self.kind.value,
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "data": self.data,
            "error": self.error,
            "suggestion": self.suggestion,
            "duration_ms": self.duration_ms,
        }


@dataclass
class RunContinuation:
    """
    Everything needed to resume a run suspended by a delay.

    remaining_actions holds the not-yet-run actions (uninterpolated) in order.
    """
    run_id: str
    automation_id: str
    resume_at: datetime
    remaining_actions: List[Dict[str, Any]]
    context: Dict[str, Any]
    next_action_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "automation_id": self.automation_id,
            "resume_at": self.resume_at.isoformat(),
            "remaining_actions": self.remaining_actions,
            "context": self.context,
            "next_action_index": self.next_action_index,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunContinuation":
        return cls(
            run_id=data["run_id"],
            automation_id=data["automation_id"],
            resume_at=datetime.fromisoformat(data["resume_at"]),
            remaining_actions=list(data.get("remaining_actions") or []),
            context=dict(data.get("context") or {}),
            next_action_index=int(data.get("next_action_index", 0)),
        )


@dataclass
class ExecutionTrace:
    """Append-only log of one automation run."""
    automation_id: str
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: ExecutionStatus = ExecutionStatus.RUNNING
    success: bool = True
    error: Optional[str] = None
    steps: List[TraceStep] = field(default_factory=list)
    action_results: List[ActionResult] = field(default_factory=list)
    continuation: Optional[RunContinuation] = None
    dry_run: bool = False
    duration_ms: int = 0

    def add_step(self, kind: StepKind, name: str) -> TraceStep:
        step = TraceStep(step=len(self.steps) + 1, kind=kind, name=name)
        self.steps.append(step)
        return step

    def finish(self, status: ExecutionStatus, error: Optional[str] = None) -> "ExecutionTrace":
        self.status = status
        self.error = error
        self.success = status not in (ExecutionStatus.FAILED, ExecutionStatus.CANCELLED)
        return self

    @property
    def actions_executed(self) -> int:
        return len(self.action_results)

    @property
    def actions_failed(self) -> int:
        return sum(1 for r in self.action_results if not r.success)

    def summary(self) -> Dict[str, Any]:
        """Overall {success, error} summary of the run."""
        result: Dict[str, Any] = {"success": self.success, "status": self.status.value}
        if self.error:
            result["error"] = self.error
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {
            "automation_id": self.automation_id,
            "run_id": self.run_id,
            "status": self.status.value,
            "success": self.success,
            "error": self.error,
            "dry_run": self.dry_run,
            "duration_ms": self.duration_ms,
            "steps": [s.to_dict() for s in self.steps],
            "action_results": [r.to_dict() for r in self.action_results],
            "continuation": self.continuation.to_dict() if self.continuation else None,
        }
