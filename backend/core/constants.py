"""Constants and enums for the workflow engine."""

from enum import Enum


class StepType(str, Enum):
    """Workflow step type. Selects both the configuration shape and the executor."""

    EXECUTE_QUERY = "ExecuteQuery"
    DATA_TRANSFER = "DataTransfer"
    WEB_SERVICE_CALL = "WebServiceCall"
    TRANSFORMATION = "Transformation"
    VALIDATION = "Validation"
    NOTIFICATION = "Notification"

    @classmethod
    def parse(cls, value: "str | StepType") -> "StepType":
        """Resolve a step type case-insensitively."""
        if isinstance(value, cls):
            return value
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        raise ValueError(f"Unknown step type: {value}")


class StepStatus(str, Enum):
    """Outcome of a single step execution."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class ExecutionStatus(str, Enum):
    """Final state of a workflow run."""

    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL_FAILURE = "partial_failure"
    CANCELLED = "cancelled"


class RoutingKind(str, Enum):
    """What the engine does after a step finishes."""

    CONTINUE = "continue"
    END = "end"
    SKIP_TO = "skip_to"


class TransferMode(str, Enum):
    """How a data transfer writes into its destination table."""

    APPEND = "Append"
    TRUNCATE = "Truncate"
    UPSERT = "Upsert"


class LoadMode(str, Enum):
    """Table load strategies supported by the tabular backend."""

    APPEND = "append"
    TRUNCATE = "truncate"
    UPSERT = "upsert"
    REPLACE = "replace"


class WebServiceMode(str, Enum):
    """Web service invocation granularity."""

    PER_RECORD = "PerRecord"
    BATCH = "Batch"


SUPPORTED_HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
HTTP_METHODS_WITH_BODY = ("POST", "PUT", "PATCH")
