"""Custom exceptions for the workflow engine."""


class DataflowException(Exception):
    """Base exception for the workflow engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code for API consumers
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(DataflowException):
    """Workflow or query definition not found."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class ValidationError(DataflowException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)


class ConfigurationError(ValidationError):
    """Invalid step configuration, routing action or missing executor.

    Fatal to the step and never retried.
    """


class ConflictError(DataflowException):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource conflict"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409)


class WorkflowInactiveError(ConflictError):
    """The requested workflow exists but is not active."""


class TransientCallError(DataflowException):
    """A database or HTTP call failed; the operation may succeed if retried."""

    def __init__(self, message: str = "External call failed"):
        """Initialize TransientCallError with 503 status code."""
        super().__init__(message, 503)


class PersistenceError(DataflowException):
    """An execution record could not be saved."""

    def __init__(self, message: str = "Failed to persist execution result"):
        super().__init__(message, 500)
