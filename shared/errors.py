"""
Shared error handling for the tenant analytics gateway.

Every exception carries two faces: ``code``/``message``/``details`` for logs
and ``category``/``status_code`` for the client. The client only ever sees
``{"error": category}``.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Opaque error envelope returned to clients."""

    error: str


class AccessLayerException(Exception):
    """Base exception for gateway services."""

    category = "internal_error"
    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(error=self.category)


class AuthenticationError(AccessLayerException):
    """Authentication-related errors."""

    category = "unauthenticated"
    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class ValidationError(AccessLayerException):
    """Malformed request payloads."""

    category = "invalid_request"
    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class InvalidRangeError(ValidationError):
    """Time range is not a closed interval with start <= end."""

    def __init__(self, message: str = "Invalid time range", details: Optional[Dict[str, Any]] = None):
        AccessLayerException.__init__(self, "INVALID_RANGE", message, details)


class MissingScopeError(AccessLayerException):
    """A caller that must pick an organization did not."""

    category = "missing_scope"
    status_code = 400

    def __init__(self, message: str = "Organization scope required", details: Optional[Dict[str, Any]] = None):
        super().__init__("MISSING_SCOPE", message, details)


class AuthorizationError(AccessLayerException):
    """Authorization-related errors."""

    category = "forbidden"
    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class ForbiddenError(AuthorizationError):
    """Caller requested an organization outside its membership and agency links."""

    def __init__(self, message: str = "Organization not accessible", details: Optional[Dict[str, Any]] = None):
        AccessLayerException.__init__(self, "FORBIDDEN", message, details)


class AccessDeniedError(AuthorizationError):
    """Resolution succeeded but produced an empty application set."""

    def __init__(self, message: str = "No accessible applications", details: Optional[Dict[str, Any]] = None):
        AccessLayerException.__init__(self, "ACCESS_DENIED", message, details)


class UpstreamError(AccessLayerException):
    """Warehouse call failed or exceeded its time bound."""

    category = "upstream_error"
    status_code = 502

    def __init__(self, message: str = "Warehouse query failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_ERROR", message, details)


class ExternalServiceError(AccessLayerException):
    """External service errors."""

    category = "upstream_error"
    status_code = 503

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class AuditWriteError(AccessLayerException):
    """Audit sink could not persist a record. Never reaches a client."""

    def __init__(self, message: str = "Audit write failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUDIT_WRITE_FAILURE", message, details)
