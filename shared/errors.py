"""
Shared error handling for the policy decision service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for the service."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(AccessLayerException):
    """No authenticated principal. Never resolved fail-open."""

    status_code = 401

    def __init__(self, message: str = "User not authenticated", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(AccessLayerException):
    """Authorization-related errors."""

    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class PermissionDeniedError(AuthorizationError):
    """A policy evaluated to Deny.

    Callers must treat every Deny the same way; ``failed_check`` is carried
    for logging and messaging only.
    """

    def __init__(
        self,
        message: str = "You do not have permission to perform this action",
        upgrade_hint: Optional[Dict[str, Any]] = None,
        failed_check: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        merged = dict(details or {})
        if upgrade_hint:
            merged["upgrade_hint"] = upgrade_hint
        if failed_check:
            merged["failed_check"] = failed_check
        super().__init__(message, merged)
        self.code = "PERMISSION_DENIED"
        self.upgrade_hint = upgrade_hint
        self.failed_check = failed_check


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ResourceNotFoundError(AccessLayerException):
    """Referenced entity does not exist."""

    status_code = 404

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ServiceError(AccessLayerException):
    """Service-related errors."""

    status_code = 500

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)


class InternalEvaluationError(ServiceError):
    """A sub-check could not be evaluated (store unavailable, malformed policy)."""

    def __init__(self, check: str, message: str = "Policy evaluation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, {"check": check, **(details or {})})
        self.code = "INTERNAL_EVALUATION_ERROR"
        self.check = check


class ExternalServiceError(AccessLayerException):
    """Backing store errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)
