"""
Custom Exceptions

Centralized exception definitions for better error handling.
FastAPI automatically converts these to appropriate HTTP responses;
main.py adds a stable "type" field to the body.

NOTE: NotFoundError is raised both for missing rows and for rows owned by
another tenant. The two cases must stay indistinguishable to the caller.
"""
from typing import Optional
from fastapi import HTTPException, status


class AuthenticationError(HTTPException):
    """Raised when there is no valid session."""
    error_type = "authentication_error"

    def __init__(self, detail: str = "Not authenticated"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail
        )


class PermissionDenied(HTTPException):
    """Raised when the caller's role lacks a permission."""
    error_type = "permission_denied"

    def __init__(self, detail: str = "Permission denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )


class TenantIsolationError(HTTPException):
    """
    Raised when a tenant isolation violation is detected.

    This is a CRITICAL security error and should be logged/alerted on.
    Also raised when a tenant-scoped query runs with no scope bound.
    """
    error_type = "tenant_isolation_error"

    def __init__(self, detail: str = "Tenant isolation violation"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )


class NotFoundError(HTTPException):
    """Raised when a row is absent or belongs to another tenant."""
    error_type = "not_found"
    entity = "Resource"

    def __init__(self, entity_id: str = ""):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{self.entity} not found: {entity_id}" if entity_id else f"{self.entity} not found"
        )


class TenantNotFoundError(NotFoundError):
    entity = "Organization"


class UserNotFoundError(NotFoundError):
    entity = "User"


class VoucherNotFoundError(NotFoundError):
    entity = "Voucher"


class ClientNotFoundError(NotFoundError):
    entity = "Client"


class AgencyNotFoundError(NotFoundError):
    entity = "Agency"


class CenterNotFoundError(NotFoundError):
    entity = "Center"


class PlanNotFoundError(NotFoundError):
    entity = "Plan"


class InvitationNotFoundError(NotFoundError):
    entity = "Invitation"


class TenantUnavailableError(HTTPException):
    """Raised when a tenant route is hit without a resolved tenant."""
    error_type = "tenant_unavailable"

    def __init__(self, detail: str = "Organization context not available"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail
        )


class ConflictError(HTTPException):
    """
    Raised on an invalid state transition.

    current_status carries the state the row is actually in, so clients
    can tell "already redeemed" from "already expired".
    """
    error_type = "conflict"

    def __init__(self, detail: str = "Conflict", current_status: Optional[str] = None):
        self.current_status = current_status
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail
        )


class PlanLimitExceeded(HTTPException):
    """Raised when the subscription plan does not admit another resource."""
    error_type = "payment_required"

    def __init__(self, detail: str = "Plan limit reached"):
        super().__init__(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=detail
        )


class InvalidInputError(HTTPException):
    """Raised when input validation fails."""
    error_type = "invalid_input"

    def __init__(self, detail: str = "Invalid input"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail
        )


class RateLimitExceeded(HTTPException):
    """Raised when rate limit is exceeded."""
    error_type = "rate_limit_exceeded"

    def __init__(self, retry_after: int = 60):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Please try again later.",
            headers={"Retry-After": str(retry_after)}
        )


class RlsBindingError(HTTPException):
    """
    Raised when the isolation scope could not be set on the connection.

    The request is aborted; there is no unscoped fallback.
    """
    error_type = "isolation_unavailable"

    def __init__(self, detail: str = "Could not establish data isolation"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail
        )
