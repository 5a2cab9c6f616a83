"""Custom exceptions for the workflow automation engine."""

from typing import Optional


class WorkflowEngineError(Exception):
    """Base exception for the workflow automation engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(WorkflowEngineError):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, 404)


class UnauthorizedError(WorkflowEngineError):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, 401)


class ValidationError(WorkflowEngineError):
    """Validation error exception."""

    def __init__(self, message: str = "Validation failed"):
        super().__init__(message, 422)


class ConflictError(WorkflowEngineError):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource conflict"):
        super().__init__(message, 409)


class InvalidStateTransition(ConflictError):
    """An execution was asked to move to a status its current status forbids."""

    def __init__(self, current: str, requested: str, message: Optional[str] = None):
        self.current = current
        self.requested = requested
        super().__init__(
            message or f"Cannot move execution from '{current}' to '{requested}'"
        )


class WorkflowValidationFailed(ValidationError):
    """Activation was refused because the workflow graph has problems."""

    def __init__(
        self,
        errors: list[str],
        warnings: Optional[list[str]] = None,
        message: str = "Workflow has validation errors",
    ):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__(message)


class StepExecutionError(WorkflowEngineError):
    """Raised by step handlers when a step cannot be completed.

    ``retryable`` tells the scheduler whether another attempt could succeed
    (network hiccup) or is pointless (missing recipient, bad config).
    """

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message, 500)
