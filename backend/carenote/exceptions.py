"""
CareNote Backend — Custom Exception Hierarchy
===============================================

What:  Application-specific exceptions for every error the API reports.
How:   Each exception carries a message and an optional context dict.
       Global exception handlers (registered in main.py) map them to HTTP
       status codes and a structured JSON body.
Who:   Raised by services, dependencies and middleware; caught by handlers.

Exception Hierarchy:
    CareNoteError (base)
    ├── ValidationError          → 400 Bad Request
    ├── AuthenticationError      → 401 Unauthorized
    ├── PaymentRequiredError     → 402 Payment Required (subscription gate)
    ├── ForbiddenError           → 403 Forbidden
    ├── NotFoundError            → 404 Not Found
    ├── ConflictError            → 409 Conflict
    ├── RateLimitExceededError   → 429 Too Many Requests
    ├── UpstreamServiceError     → 502 Bad Gateway (Corti, SMTP)
    ├── CircuitBreakerOpenError  → 503 Service Unavailable
    ├── DatabaseError            → 500 Internal Server Error
    └── InvariantViolationError  → 500 Internal Server Error (programming error)

Validation and conflict errors are raised before any write. Multi-step
workflows compensate only the step they control and then re-raise.
"""

from typing import Any, Dict, Optional


class CareNoteError(Exception):
    """
    Base exception for all CareNote application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info returned as `details` where the
                  handler allows it
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(CareNoteError):
    """
    Raised when client input fails a business rule.

    HTTP: 400 Bad Request. Schema-level problems stay with FastAPI's 422.

    Example response:
        {
            "error": "validation_error",
            "message": "License count must be at least the current member count (3)",
            "details": {"field": "num_licenses"}
        }
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(CareNoteError):
    """Missing, invalid or expired credentials. HTTP 401."""

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PaymentRequiredError(CareNoteError):
    """
    Raised by the subscription gate when the billing owner has no access.

    HTTP: 402 Payment Required. Kept apart from ForbiddenError so the
    frontend can route the user to the billing page.
    """

    def __init__(
        self,
        message: str = "An active subscription is required",
        reason: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if reason:
            ctx["reason"] = reason
        super().__init__(message=message, context=ctx)
        self.reason = reason


class ForbiddenError(CareNoteError):
    """Caller lacks the role or tenancy relation for the action. HTTP 403."""

    def __init__(
        self,
        message: str = "You do not have permission to perform this action",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(CareNoteError):
    """
    Raised when a requested resource does not exist or is not visible.

    Ownership-filtered lookups raise this rather than ForbiddenError so the
    API never confirms that somebody else's record exists.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class ConflictError(CareNoteError):
    """Duplicate email, existing subscription and similar clashes. HTTP 409."""

    def __init__(
        self,
        message: str = "The resource already exists",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class UpstreamServiceError(CareNoteError):
    """
    Raised when a third-party collaborator fails (Corti API, SMTP server).

    The failing service and operation are always named so that, for
    example, an invitation reports "email failed" rather than a generic
    server error.
    HTTP: 502 Bad Gateway
    """

    def __init__(
        self,
        service: str,
        operation: str,
        message: Optional[str] = None,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["service"] = service
        ctx["operation"] = operation
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(
            message=message or f"The {service} service failed during '{operation}'",
            context=ctx,
        )
        self.service = service
        self.operation = operation
        self.retry_after = retry_after


class CircuitBreakerOpenError(CareNoteError):
    """
    Raised when the Corti circuit breaker is OPEN.

    CLOSED → (threshold failures) → OPEN → (recovery timeout) → HALF_OPEN
    → success closes, failure re-opens.
    HTTP: 503 Service Unavailable
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"The clinical AI service is temporarily unavailable due to repeated failures. "
            f"Please retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time


class DatabaseError(CareNoteError):
    """
    Raised when database operations fail unexpectedly.

    The client always receives a generic message; the context is logged
    server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class InvariantViolationError(CareNoteError):
    """A programming error such as negative license math. Never corrected silently."""

    def __init__(
        self,
        message: str = "Internal invariant violated",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(CareNoteError):
    """Client exceeded the per-IP request rate limit. HTTP 429."""

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
