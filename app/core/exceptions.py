"""Domain error taxonomy shared by services and the HTTP layer"""

from typing import Any, Dict, Iterable, Optional


class AppError(Exception):
    """Base class for errors raised by the billing pipeline."""

    status_code = 400
    code = "APP_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(AppError):
    """Malformed or out-of-range input. Never retried."""

    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(AppError):
    status_code = 404
    code = "RESOURCE_NOT_FOUND"


class PermissionDeniedError(AppError):
    """Caller does not belong to the company that owns the resource."""

    status_code = 403
    code = "PERMISSION_DENIED"


class ConflictError(AppError):
    """
    Invalid state transition or duplicate.

    Carries the current state and the transitions that would have been
    accepted so the caller can correct the request.
    """

    status_code = 409
    code = "CONFLICT"

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        allowed_transitions: Optional[Iterable[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = dict(details or {})
        if current_status is not None:
            details["current_status"] = current_status
        if allowed_transitions is not None:
            details["allowed_transitions"] = sorted(allowed_transitions)
        super().__init__(message, details)
        self.current_status = current_status
        self.allowed_transitions = details.get("allowed_transitions")


class TransientError(AppError):
    """Storage or channel I/O failure; the caller may resubmit."""

    status_code = 503
    code = "TRANSIENT_ERROR"
