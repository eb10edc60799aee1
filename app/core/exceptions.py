"""Exception taxonomy for the subscription and entitlement engine."""

from typing import Any


class BaseAPIException(Exception):
    """Base exception class for all API exceptions."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationException(BaseAPIException):
    """Malformed input. Raised before anything is written."""

    def __init__(
        self,
        message: str = "Validation failed",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            status_code=422,
            details=details,
        )


class NotFoundException(BaseAPIException):
    """Exception for resource not found errors."""

    def __init__(self, resource: str = "Resource", resource_id: str | None = None):
        message = f"{resource} not found"
        if resource_id:
            message += f" with ID: {resource_id}"

        super().__init__(message=message, error_code="NOT_FOUND", status_code=404)


class InvalidTransitionException(BaseAPIException):
    """A lifecycle operation was attempted from a state that does not allow it."""

    def __init__(
        self,
        operation: str,
        current_status: str,
        allowed: tuple[str, ...] | list[str] = (),
    ):
        message = f"Cannot {operation} a subscription in status '{current_status}'"
        super().__init__(
            message=message,
            error_code="INVALID_TRANSITION",
            status_code=409,
            details={
                "operation": operation,
                "current_status": current_status,
                "allowed_statuses": list(allowed),
            },
        )


class UnresolvedReferenceException(BaseAPIException):
    """A plan or add-on id no longer resolves in its catalog."""

    def __init__(self, resource: str, resource_id: str | None = None):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            message=f"{resource} reference could not be resolved",
            error_code="UNRESOLVED_REFERENCE",
            status_code=404,
            details={"resource": resource, "resource_id": resource_id},
        )


class ConcurrentModificationException(BaseAPIException):
    """A conditional write lost a race against another writer."""

    def __init__(self, resource: str = "Subscription", resource_id: str | None = None):
        super().__init__(
            message=f"{resource} was modified concurrently",
            error_code="CONCURRENT_MODIFICATION",
            status_code=409,
            details={"resource": resource, "resource_id": resource_id},
        )


class AuthenticationException(BaseAPIException):
    """Exception for authentication errors."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message, error_code="AUTHENTICATION_ERROR", status_code=401
        )


class UnauthorizedException(BaseAPIException):
    """Exception for unauthorized access errors."""

    def __init__(self, message: str = "Unauthorized access"):
        super().__init__(message=message, error_code="UNAUTHORIZED", status_code=401)


class AuthorizationException(BaseAPIException):
    """Exception for authorization errors."""

    def __init__(self, message: str = "Access denied"):
        super().__init__(
            message=message, error_code="AUTHORIZATION_ERROR", status_code=403
        )


class EntitlementDeniedException(BaseAPIException):
    """The caller's entitlements do not cover the requested capability."""

    def __init__(
        self,
        gate: str,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message or f"Your current plan does not include {gate}",
            error_code="ENTITLEMENT_DENIED",
            status_code=403,
            details={"gate": gate, **(details or {})},
        )
