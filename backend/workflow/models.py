"""Runtime models for workflow definitions and execution records."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from core.constants import ExecutionStatus, RoutingKind, StepStatus, StepType
from core.exceptions import ConfigurationError

SKIP_TO_PREFIX = "skip_to:"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─── Definitions ──────────────────────────────────────────────

@dataclass(frozen=True)
class RoutingAction:
    """Parsed onSuccess / onError action."""

    kind: RoutingKind
    target_order: Optional[int] = None

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["RoutingAction"]:
        """Parse ``continue``, ``end`` or ``skip_to:<order>``; empty means unset."""
        if value is None or not str(value).strip():
            return None
        text = str(value).strip().lower()
        if text == RoutingKind.CONTINUE.value:
            return cls(RoutingKind.CONTINUE)
        if text == RoutingKind.END.value:
            return cls(RoutingKind.END)
        if text.startswith(SKIP_TO_PREFIX):
            target = text[len(SKIP_TO_PREFIX):].strip()
            try:
                return cls(RoutingKind.SKIP_TO, int(target))
            except ValueError:
                raise ConfigurationError(f"Invalid skip_to target: {value!r}")
        raise ConfigurationError(f"Unknown routing action: {value!r}")

    def __str__(self) -> str:
        if self.kind == RoutingKind.SKIP_TO:
            return f"{SKIP_TO_PREFIX}{self.target_order}"
        return self.kind.value


@dataclass(frozen=True)
class WorkflowStepDefinition:
    """One step of a workflow. Identity within a run is ``order``."""

    order: int
    name: str
    step_type: StepType
    configuration: Any = field(default_factory=dict)
    on_success: Optional[RoutingAction] = None
    on_error: Optional[RoutingAction] = None
    max_retries: int = 0
    timeout_seconds: int = 300

    def __post_init__(self):
        if self.max_retries < 0:
            raise ConfigurationError(f"Step {self.order}: max_retries must be >= 0")
        if self.timeout_seconds <= 0:
            raise ConfigurationError(f"Step {self.order}: timeout_seconds must be > 0")

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_timeout: int = 300) -> "WorkflowStepDefinition":
        """Build a step from its wire form (camelCase or snake_case keys)."""
        raw_type = data.get("stepType", data.get("step_type", data.get("type")))
        try:
            step_type = StepType.parse(raw_type)
        except ValueError as e:
            raise ConfigurationError(str(e))
        timeout = data.get("timeoutSeconds", data.get("timeout_seconds"))
        return cls(
            order=int(data["order"]),
            name=data.get("name") or f"Step {data['order']}",
            step_type=step_type,
            configuration=data.get("configuration", data.get("config", {})),
            on_success=RoutingAction.parse(data.get("onSuccess", data.get("on_success"))),
            on_error=RoutingAction.parse(data.get("onError", data.get("on_error"))),
            max_retries=int(data.get("maxRetries", data.get("max_retries", 0)) or 0),
            timeout_seconds=int(timeout) if timeout else default_timeout,
        )


@dataclass(frozen=True)
class WorkflowDefinition:
    """A workflow and its steps in execution order.

    Steps are sorted by ``order``; ties keep their given sequence.
    """

    id: int
    name: str
    is_active: bool = True
    steps: tuple[WorkflowStepDefinition, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "steps", tuple(sorted(self.steps, key=lambda s: s.order)))

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_timeout: int = 300) -> "WorkflowDefinition":
        return cls(
            id=data.get("id", 0),
            name=data.get("name", ""),
            is_active=data.get("isActive", data.get("is_active", True)),
            steps=tuple(
                WorkflowStepDefinition.from_dict(s, default_timeout)
                for s in data.get("steps", [])
            ),
        )

    def index_of(self, order: int) -> Optional[int]:
        """Position of the first step with the given order."""
        for i, step in enumerate(self.steps):
            if step.order == order:
                return i
        return None


# ─── Results ──────────────────────────────────────────────────

@dataclass
class StepResult:
    """Result of executing a single step.

    ``retryable`` is engine bookkeeping and is not persisted.
    """

    order: int
    name: str
    start_time: datetime = field(default_factory=_utcnow)
    end_time: Optional[datetime] = None
    status: StepStatus = StepStatus.RUNNING
    error_message: Optional[str] = None
    records_processed: int = 0
    records_failed: int = 0
    log_details: Optional[str] = None
    retry_count: int = 0
    retryable: bool = True

    @classmethod
    def start(cls, step: WorkflowStepDefinition) -> "StepResult":
        return cls(order=step.order, name=step.name)

    @property
    def success(self) -> bool:
        return self.status == StepStatus.SUCCEEDED

    @property
    def duration_seconds(self) -> float:
        end = self.end_time or _utcnow()
        return (end - self.start_time).total_seconds()

    def succeed(self, log_details: Optional[str] = None) -> "StepResult":
        self.status = StepStatus.SUCCEEDED
        self.end_time = _utcnow()
        if log_details is not None:
            self.log_details = log_details
        return self

    def fail(
        self,
        message: str,
        status: StepStatus = StepStatus.FAILED,
        retryable: bool = True,
        log_details: Optional[str] = None,
    ) -> "StepResult":
        self.status = status
        self.error_message = message
        self.retryable = retryable
        self.end_time = _utcnow()
        if log_details is not None:
            self.log_details = log_details
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": self.order,
            "name": self.name,
            "status": self.status.value,
            "success": self.success,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "error_message": self.error_message,
            "records_processed": self.records_processed,
            "records_failed": self.records_failed,
            "log_details": self.log_details,
            "retry_count": self.retry_count,
        }


@dataclass
class WorkflowExecutionResult:
    """Audit record of one workflow run, built incrementally by the engine."""

    workflow_id: int
    run_id: str = field(default_factory=lambda: str(uuid4()))
    id: Optional[int] = None
    start_time: datetime = field(default_factory=_utcnow)
    end_time: Optional[datetime] = None
    success: bool = False
    error_message: Optional[str] = None
    total_steps: int = 0
    completed_steps: int = 0
    step_results: list[StepResult] = field(default_factory=list)
    cancelled: bool = False
    abort_reason: Optional[str] = None

    @property
    def status(self) -> ExecutionStatus:
        if self.end_time is None:
            return ExecutionStatus.RUNNING
        if self.cancelled:
            return ExecutionStatus.CANCELLED
        if self.success:
            return ExecutionStatus.COMPLETED
        return ExecutionStatus.PARTIAL_FAILURE

    @property
    def duration_seconds(self) -> float:
        end = self.end_time or _utcnow()
        return (end - self.start_time).total_seconds()

    @property
    def failed_steps(self) -> list[StepResult]:
        return [r for r in self.step_results if not r.success]

    def finalize(self) -> None:
        """Compute the run outcome once no more steps will execute."""
        self.success = (
            all(r.success for r in self.step_results)
            and self.completed_steps == self.total_steps
        )
        self.end_time = _utcnow()
        if self.success:
            self.error_message = None
            return

        parts = []
        failed = self.failed_steps
        if failed:
            parts.append(
                f"{len(failed)} step(s) failed: "
                + ", ".join(f"{r.name} (step {r.order})" for r in failed)
            )
        if self.abort_reason:
            parts.append(self.abort_reason)
        if not parts:
            parts.append(
                f"Workflow stopped after {self.completed_steps} of {self.total_steps} steps"
            )
        self.error_message = "; ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "success": self.success,
            "error_message": self.error_message,
            "total_steps": self.total_steps,
            "completed_steps": self.completed_steps,
            "step_results": [r.to_dict() for r in self.step_results],
        }
