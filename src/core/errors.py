"""Task error types and error classification utilities."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel


class TaskValidationError(ValueError):
    """Raised synchronously when a mutation request is malformed (never retried)."""


class TaskGatewayError(RuntimeError):
    """Raised when the persistence gateway fails to complete a call."""


class TaskNotFoundError(TaskGatewayError, KeyError):
    """Raised when the persistence gateway has no record for the requested id."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""


class ErrorCategory(Enum):
    """Categories of errors that can occur while mutating tasks."""

    TASK_NOT_FOUND = "task_not_found"
    INVALID_TASK_ID = "invalid_task_id"
    INVALID_COMPLETION_VALUE = "invalid_completion_value"
    INVALID_DATE_RANGE = "invalid_date_range"
    NETWORK_ERROR = "network_error"
    PERSISTENCE_FAILED = "persistence_failed"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    # Validation errors
    ERR_INVALID_TASK_ID = "ERR_INVALID_TASK_ID"
    ERR_INVALID_COMPLETION_VALUE = "ERR_INVALID_COMPLETION_VALUE"
    ERR_INVALID_DATE_RANGE = "ERR_INVALID_DATE_RANGE"

    # Task errors
    ERR_TASK_NOT_FOUND = "ERR_TASK_NOT_FOUND"

    # Gateway errors
    ERR_NETWORK_ERROR = "ERR_NETWORK_ERROR"
    ERR_PERSISTENCE_FAILED = "ERR_PERSISTENCE_FAILED"

    # Generic errors
    ERR_UNKNOWN = "ERR_UNKNOWN"


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity


_NETWORK_PATTERNS: dict[Literal["phrases", "exception_types"], set[str]] = {
    "phrases": {"connection", "timeout", "timed out", "network", "503", "502", "504", "unreachable"},
    "exception_types": {"ConnectionError", "TimeoutError", "ConnectError", "ReadTimeout", "ConnectTimeout"},
}


def _is_network_error(*, error_str: str, exception: BaseException) -> bool:
    """Return True if the exception (or its cause) looks like a transport failure."""
    exception_types = {type(exception).__name__}
    if exception.__cause__ is not None:
        exception_types.add(type(exception.__cause__).__name__)
    return any(phrase in error_str for phrase in _NETWORK_PATTERNS["phrases"]) or bool(
        exception_types & _NETWORK_PATTERNS["exception_types"]
    )


def classify_error_with_response(exception: Exception) -> ErrorResponse:  # noqa: PLR0911
    """Classify a task mutation error and return a structured response with recovery suggestions.

    Args:
        exception: The exception raised by a task operation

    Returns:
        ErrorResponse with code, message, suggestion, and severity
    """
    error_str = str(exception).lower()

    if isinstance(exception, TaskNotFoundError):
        return ErrorResponse(
            code=ErrorCode.ERR_TASK_NOT_FOUND,
            message="That task no longer exists.",
            suggestion="Reload the task list to see the current tasks.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, TaskValidationError):
        if "completed" in error_str:
            return ErrorResponse(
                code=ErrorCode.ERR_INVALID_COMPLETION_VALUE,
                message="The completion value must be true or false.",
                suggestion="Toggle the task again.",
                severity=ErrorSeverity.LOW,
            )
        if "date" in error_str:
            return ErrorResponse(
                code=ErrorCode.ERR_INVALID_DATE_RANGE,
                message="The start date must not be after the due date.",
                suggestion="Pick a start date on or before the due date.",
                severity=ErrorSeverity.LOW,
            )
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_TASK_ID,
            message="The task identifier is not valid.",
            suggestion="Select the task again and retry.",
            severity=ErrorSeverity.LOW,
        )

    if _is_network_error(error_str=error_str, exception=exception):
        return ErrorResponse(
            code=ErrorCode.ERR_NETWORK_ERROR,
            message="Network error occurred.",
            suggestion="Please check your connection and try again.",
            severity=ErrorSeverity.MEDIUM,
        )

    if isinstance(exception, TaskGatewayError):
        return ErrorResponse(
            code=ErrorCode.ERR_PERSISTENCE_FAILED,
            message="The change could not be saved.",
            suggestion="Reload the task list and try again.",
            severity=ErrorSeverity.HIGH,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact support.",
        severity=ErrorSeverity.MEDIUM,
    )


def classify_error(exception: Exception) -> ErrorCategory:
    """Map an exception raised by a task operation onto an ErrorCategory."""
    code_to_category = {
        ErrorCode.ERR_TASK_NOT_FOUND: ErrorCategory.TASK_NOT_FOUND,
        ErrorCode.ERR_INVALID_TASK_ID: ErrorCategory.INVALID_TASK_ID,
        ErrorCode.ERR_INVALID_COMPLETION_VALUE: ErrorCategory.INVALID_COMPLETION_VALUE,
        ErrorCode.ERR_INVALID_DATE_RANGE: ErrorCategory.INVALID_DATE_RANGE,
        ErrorCode.ERR_NETWORK_ERROR: ErrorCategory.NETWORK_ERROR,
        ErrorCode.ERR_PERSISTENCE_FAILED: ErrorCategory.PERSISTENCE_FAILED,
    }
    return code_to_category.get(classify_error_with_response(exception).code, ErrorCategory.UNKNOWN)
