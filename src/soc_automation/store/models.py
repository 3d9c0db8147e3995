"""
Data Models for the Automation Core

Defines the data structures shared by the event bus, trigger engine,
executor and repositories: events, playbooks, executions and action results.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional
import uuid

from soc_automation.exceptions import ErrorCode, PlaybookValidationError


# Weight of the newest sample in the execution-time moving average
EWMA_WEIGHT = 0.3

# Upper bound on per-step retries
MAX_STEP_RETRIES = 5


class Severity(str, Enum):
    """Alert severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


def severity_rank(value: Any) -> int:
    """Rank a severity (1 = low .. 4 = critical); unknown values rank as low."""
    try:
        return SEVERITY_ORDER.index(Severity(str(value).lower())) + 1
    except ValueError:
        return 1


class TriggerSource(str, Enum):
    """What started a playbook execution."""
    MANUAL = "manual"
    ALERT = "alert"
    INCIDENT = "incident"
    SCHEDULE = "schedule"


class ExecutionStatus(str, Enum):
    """Lifecycle of a playbook execution."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def generate_id(prefix: str = "") -> str:
    """Generate a unique ID with optional prefix."""
    uid = uuid.uuid4().hex[:12]
    return f"{prefix}_{uid}" if prefix else uid


def now_iso() -> str:
    """Get current timestamp in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Event:
    """A domain event published by the data layer."""
    type: str
    entity_id: Any = None
    entity_type: str = ""
    organization_id: Any = None
    timestamp: str = field(default_factory=now_iso)
    data: Mapping[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: generate_id("evt"))

    def __post_init__(self) -> None:
        # Events are shared across subscribers; expose the payload read-only
        object.__setattr__(self, "data", MappingProxyType(dict(self.data)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "entity_id": self.entity_id,
            "entity_type": self.entity_type,
            "organization_id": self.organization_id,
            "timestamp": self.timestamp,
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        kwargs: dict[str, Any] = {
            "type": data["type"],
            "entity_id": data.get("entity_id"),
            "entity_type": data.get("entity_type", ""),
            "organization_id": data.get("organization_id"),
            "data": data.get("data") or {},
        }
        if data.get("timestamp"):
            kwargs["timestamp"] = data["timestamp"]
        if data.get("id"):
            kwargs["id"] = data["id"]
        return cls(**kwargs)


@dataclass(frozen=True)
class ActionResult:
    """Outcome of a single action invocation."""
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    data: dict[str, Any] = field(default_factory=dict)
    abort_playbook: bool = False

    @classmethod
    def ok(cls, message: Optional[str] = None, data: Optional[dict[str, Any]] = None) -> "ActionResult":
        return cls(success=True, message=message, data=data or {})

    @classmethod
    def fail(
        cls,
        error: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_CALL_FAILED,
        data: Optional[dict[str, Any]] = None,
        abort_playbook: bool = False,
    ) -> "ActionResult":
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            data=data or {},
            abort_playbook=abort_playbook,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success}
        if self.message is not None:
            result["message"] = self.message
        if self.error is not None:
            result["error"] = self.error
        if self.error_code is not None:
            result["error_code"] = self.error_code.value
        if self.data:
            result["data"] = self.data
        if self.abort_playbook:
            result["abort_playbook"] = True
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActionResult":
        code = data.get("error_code")
        return cls(
            success=bool(data.get("success")),
            message=data.get("message"),
            error=data.get("error"),
            error_code=ErrorCode(code) if code else None,
            data=data.get("data") or {},
            abort_playbook=bool(data.get("abort_playbook", False)),
        )


@dataclass
class StepResult:
    """Result of one playbook step inside an execution."""
    index: int
    action_name: str
    result: ActionResult
    started_at: str = field(default_factory=now_iso)
    completed_at: Optional[str] = None
    duration_ms: float = 0.0
    skipped: bool = False
    attempts: int = 1

    @property
    def success(self) -> bool:
        return self.result.success

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "index": self.index,
            "action": self.action_name,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_ms": round(self.duration_ms, 1),
            **self.result.to_dict(),
        }
        if self.skipped:
            result["skipped"] = True
        if self.attempts != 1:
            result["attempts"] = self.attempts
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StepResult":
        return cls(
            index=data["index"],
            action_name=data["action"],
            result=ActionResult.from_dict(data),
            started_at=data.get("started_at") or now_iso(),
            completed_at=data.get("completed_at"),
            duration_ms=data.get("duration_ms", 0.0),
            skipped=bool(data.get("skipped", False)),
            attempts=data.get("attempts", 1),
        )


@dataclass
class PlaybookExecution:
    """One run of a playbook."""
    playbook_id: str
    organization_id: Any = None
    id: str = field(default_factory=lambda: generate_id("exec"))
    status: ExecutionStatus = ExecutionStatus.RUNNING
    trigger_source: TriggerSource = TriggerSource.MANUAL
    triggered_by: Optional[str] = None
    trigger_entity_id: Any = None
    started_at: str = field(default_factory=now_iso)
    completed_at: Optional[str] = None
    step_results: list[StepResult] = field(default_factory=list)
    error: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.status != ExecutionStatus.RUNNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "playbook_id": self.playbook_id,
            "organization_id": self.organization_id,
            "status": self.status.value,
            "trigger_source": self.trigger_source.value,
            "triggered_by": self.triggered_by,
            "trigger_entity_id": self.trigger_entity_id,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "step_results": [s.to_dict() for s in self.step_results],
            "error": self.error,
            "duration_ms": round(self.duration_ms, 1),
        }


@dataclass
class PlaybookStep:
    """One ordered step of a playbook: an action plus its parameter template."""
    action_name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    name: Optional[str] = None
    abort_on_failure: bool = False
    timeout: Optional[float] = None
    condition: Any = None
    retries: int = 0

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "action": self.action_name,
            "parameters": self.parameters,
        }
        if self.name:
            result["name"] = self.name
        if self.abort_on_failure:
            result["abort_on_failure"] = True
        if self.timeout is not None:
            result["timeout"] = self.timeout
        if self.condition is not None and not callable(self.condition):
            result["if"] = self.condition
        if self.retries:
            result["retries"] = self.retries
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlaybookStep":
        return cls(
            action_name=data.get("action") or data["action_name"],
            parameters=dict(data.get("parameters") or data.get("with") or {}),
            name=data.get("name"),
            abort_on_failure=bool(data.get("abort_on_failure", False)),
            timeout=data.get("timeout"),
            condition=data.get("if", data.get("condition")),
            retries=int(data.get("retries") or 0),
        )


@dataclass
class Playbook:
    """
    Automation playbook definition.

    A playbook fires when an event of ``trigger_type`` arrives and its
    ``trigger_conditions`` hold against the event data; its steps then
    run in order.
    """
    id: str
    name: str
    trigger_type: str
    steps: list[PlaybookStep] = field(default_factory=list)
    trigger_conditions: Any = None
    is_active: bool = True
    organization_id: Any = None
    description: str = ""
    execution_count: int = 0
    avg_execution_time_ms: float = 0.0

    def validate(self) -> None:
        """Check playbook invariants.

        Raises:
            PlaybookValidationError: If an active playbook has no steps,
                or a step asks for more than MAX_STEP_RETRIES retries.
        """
        if self.is_active and not self.steps:
            raise PlaybookValidationError(f"Active playbook '{self.id}' has no steps")
        if not self.trigger_type:
            raise PlaybookValidationError(f"Playbook '{self.id}' has no trigger type")
        for index, step in enumerate(self.steps):
            if not 0 <= step.retries <= MAX_STEP_RETRIES:
                raise PlaybookValidationError(
                    f"Step {index} of playbook '{self.id}' has retries={step.retries}, "
                    f"expected 0..{MAX_STEP_RETRIES}"
                )

    def record_execution(self, duration_ms: float, weight: float = EWMA_WEIGHT) -> None:
        """Fold one execution time into the running statistics.

        The first sample seeds the average; later samples are blended with
        an exponentially weighted moving average so recent runs dominate.
        """
        if self.execution_count == 0:
            self.avg_execution_time_ms = float(duration_ms)
        else:
            self.avg_execution_time_ms = (
                self.avg_execution_time_ms * (1 - weight) + duration_ms * weight
            )
        self.execution_count += 1

    def to_dict(self) -> dict[str, Any]:
        conditions = self.trigger_conditions
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "trigger_type": self.trigger_type,
            "trigger_conditions": None if callable(conditions) else conditions,
            "steps": [s.to_dict() for s in self.steps],
            "is_active": self.is_active,
            "organization_id": self.organization_id,
            "execution_count": self.execution_count,
            "avg_execution_time_ms": round(self.avg_execution_time_ms, 1),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Playbook":
        return cls(
            id=str(data["id"]),
            name=data.get("name", str(data["id"])),
            description=data.get("description", ""),
            trigger_type=data["trigger_type"],
            trigger_conditions=data.get("trigger_conditions"),
            steps=[PlaybookStep.from_dict(s) for s in data.get("steps", [])],
            is_active=bool(data.get("is_active", True)),
            organization_id=data.get("organization_id"),
            execution_count=int(data.get("execution_count", 0)),
            avg_execution_time_ms=float(data.get("avg_execution_time_ms", 0.0)),
        )
