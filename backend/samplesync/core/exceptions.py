"""Custom exceptions for the sample sync backend."""

import logging
from typing import Any

logger = logging.getLogger(__name__)

# Exception type → safe user-facing message mapping
_SAFE_MESSAGES: dict[str, str] = {
    "NotFoundError": "The requested resource was not found.",
    "AuthenticationError": "Authentication failed. Please log in again.",
    "AuthorizationError": "You do not have permission to perform this action.",
    "LimsValidationError": "The LIMS rejected the sample fields. Please check and try again.",
    "ValidationError": "The provided input is invalid. Please check and try again.",
    "ConflictError": "A conflict occurred. Please refresh and try again.",
    "DatabaseError": "A database error occurred. Please try again.",
    "LimsTransportError": "The LIMS is temporarily unavailable.",
    "TaskFailedError": "The LIMS rejected the bulk operation.",
    "TaskTimeoutError": "The LIMS bulk operation did not finish in time; it has been re-queued.",
    "CircuitBreakerOpen": "A service dependency is temporarily unavailable. Please try again in a moment.",
    "ValueError": "The provided value is invalid.",
}

_DEFAULT_MESSAGE = "An error occurred. Please try again."


def sanitize_error(e: Exception) -> str:
    """Map an exception to a safe, user-facing error message.

    Logs nothing itself; callers log the full exception server-side and
    return only the generic message in HTTP responses so that LIMS payloads
    and database details never reach the client.

    Args:
        e: The exception to sanitize.

    Returns:
        A safe, generic error message string.
    """
    # Walk the MRO to find the most specific matching type
    for cls in type(e).__mro__:
        safe_msg = _SAFE_MESSAGES.get(cls.__name__)
        if safe_msg:
            return safe_msg

    return _DEFAULT_MESSAGE


def is_retryable(e: BaseException) -> bool:
    """Return whether a failed sync operation may be attempted again.

    Unknown exception types are treated as transient so that a bug in a
    single item cannot silently drop queued work before max attempts.
    """
    return bool(getattr(e, "retryable", True))


class SampleSyncException(Exception):
    """Base exception for all sample-sync errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize sample sync exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            status_code: HTTP status code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class NotFoundError(SampleSyncException):
    """Resource not found error (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        """Initialize not found error.

        Args:
            resource: Name of the resource that was not found.
            resource_id: Optional ID of the resource.
        """
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details={"resource": resource, "resource_id": resource_id},
        )


class LimsNotFoundError(NotFoundError):
    """LIMS entity absent (404). Recoverable: there is nothing to sync."""

    def __init__(self, external_id: str) -> None:
        super().__init__(resource="LIMS entity", resource_id=external_id)


class AuthenticationError(SampleSyncException):
    """Authentication failed error (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            message=message,
            code="AUTHENTICATION_ERROR",
            status_code=401,
        )


class AuthorizationError(SampleSyncException):
    """Authorization/permission denied error (403)."""

    def __init__(self, message: str = "Permission denied") -> None:
        super().__init__(
            message=message,
            code="AUTHORIZATION_ERROR",
            status_code=403,
        )


class ValidationError(SampleSyncException):
    """Input validation error (400). Requires a manual fix, never retried."""

    def __init__(
        self, message: str, field: str | None = None, details: dict[str, Any] | None = None
    ) -> None:
        """Initialize validation error.

        Args:
            message: Error message.
            field: Name of the invalid field.
            details: Additional validation details.
        """
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=error_details,
        )


class LimsValidationError(ValidationError):
    """The LIMS rejected a request with a 4xx response."""

    def __init__(self, message: str, status_code: int, payload: Any = None) -> None:
        """Initialize LIMS validation error.

        Args:
            message: Error message extracted from the response.
            status_code: HTTP status code returned by the LIMS.
            payload: Decoded response body, if any.
        """
        super().__init__(
            message=f"LIMS rejected request: {message}",
            details={"lims_status": status_code, "payload": payload},
        )
        self.lims_status = status_code


class ConflictError(SampleSyncException):
    """Resource conflict error (409).

    Also raised when an optimistic ``sync_version`` check loses a race; a
    retry re-reads the record, so queued work treats it as retryable.
    """

    retryable = True

    def __init__(self, message: str, resource: str | None = None) -> None:
        """Initialize conflict error.

        Args:
            message: Error message.
            resource: Name of the conflicting resource.
        """
        details = {}
        if resource:
            details["resource"] = resource
        super().__init__(
            message=message,
            code="CONFLICT",
            status_code=409,
            details=details,
        )


class DatabaseError(SampleSyncException):
    """Database operation error (500)."""

    retryable = True

    def __init__(self, message: str = "A database error occurred") -> None:
        super().__init__(
            message=message,
            code="DATABASE_ERROR",
            status_code=500,
        )


class LimsTransportError(SampleSyncException):
    """Network failure, open circuit or 5xx from the LIMS (502). Retryable."""

    retryable = True

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize LIMS transport error.

        Args:
            message: Error message.
            status_code: Upstream HTTP status code, when a response was received.
        """
        details: dict[str, Any] = {}
        if status_code is not None:
            details["lims_status"] = status_code
        super().__init__(
            message=message,
            code="LIMS_TRANSPORT_ERROR",
            status_code=502,
            details=details,
        )


class TaskFailedError(SampleSyncException):
    """A LIMS bulk task reported FAILED (502). Never re-polled or retried."""

    def __init__(self, task_id: str, payload: Any = None) -> None:
        """Initialize task failed error.

        Args:
            task_id: The LIMS task id.
            payload: The server's failure payload.
        """
        super().__init__(
            message=f"LIMS task '{task_id}' failed: {payload}",
            code="LIMS_TASK_FAILED",
            status_code=502,
            details={"task_id": task_id, "payload": payload},
        )
        self.task_id = task_id
        self.payload = payload


class TaskTimeoutError(SampleSyncException):
    """A LIMS bulk task did not finish within the polling budget (504).

    Retryable only by starting a fresh task; the same task id is never
    polled again.
    """

    retryable = True

    def __init__(self, task_id: str, attempts: int) -> None:
        """Initialize task timeout error.

        Args:
            task_id: The LIMS task id.
            attempts: Number of polls made before giving up.
        """
        super().__init__(
            message=f"LIMS task '{task_id}' did not complete within {attempts} attempts",
            code="LIMS_TASK_TIMEOUT",
            status_code=504,
            details={"task_id": task_id, "attempts": attempts},
        )
        self.task_id = task_id
        self.attempts = attempts
