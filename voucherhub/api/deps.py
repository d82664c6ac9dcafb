"""
API Dependencies

Reusable FastAPI dependencies for authentication and isolation binding.

Every tenant route depends on get_tenant_context(), which:
1. Reads the session cookie and resolves it to an active user
2. Requires the organization resolved by TenantMiddleware
3. Rejects a tenant user on another organization's host
4. Binds the request's database session to that organization

The resulting RequestContext is what services receive. Platform routes
use get_platform_context() instead.

Dependencies that touch the database are plain ``def`` so FastAPI runs
them in its threadpool.
"""
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from voucherhub.config import get_settings
from voucherhub.core.context import RequestContext
from voucherhub.core.exceptions import AuthenticationError, PermissionDenied, TenantUnavailableError
from voucherhub.core.permissions import Permission, require_permission
from voucherhub.core.rls import bind_platform_context, bind_tenant_context
from voucherhub.database import get_db
from voucherhub.models.tenant import Tenant
from voucherhub.models.user import User
from voucherhub.services.session_store import resolve_session
from voucherhub.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)

__all__ = [
    "get_db",
    "get_request_tenant",
    "get_current_tenant",
    "get_session_token",
    "get_current_user",
    "get_current_user_optional",
    "get_tenant_context",
    "get_platform_context",
]


def get_request_tenant(request: Request) -> Optional[Tenant]:
    """Organization resolved by TenantMiddleware, or None on the platform domain."""
    return getattr(request.state, "tenant", None)


def get_current_tenant(request: Request) -> Tenant:
    """
    Require a resolved organization.

    The middleware already answered 404 for unknown subdomains, so reaching
    here without one means the request came in on the platform domain.
    """
    tenant = get_request_tenant(request)
    if tenant is None:
        raise TenantUnavailableError()
    return tenant


def get_session_token(request: Request) -> Optional[str]:
    return request.cookies.get(get_settings().SESSION_COOKIE_NAME)


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the session cookie to an active user.

    Missing, unknown and expired sessions all answer the same 401.
    """
    user = resolve_session(db, get_session_token(request))
    if user is None:
        raise AuthenticationError()
    return user


def get_current_user_optional(
    request: Request,
    db: Session = Depends(get_db),
) -> Optional[User]:
    return resolve_session(db, get_session_token(request))


def get_tenant_context(
    user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
) -> RequestContext:
    """
    Authenticated user + resolved organization + bound session.

    Platform users may act on any organization's host; tenant users only
    on their own.
    """
    if user.tenant_id is not None and user.tenant_id != tenant.id:
        log_security_event(
            "tenant_mismatch",
            {"user_id": user.id, "tenant_id": tenant.id, "reason": "session used on another organization"},
            logger,
        )
        raise PermissionDenied("Forbidden")

    scope = bind_tenant_context(db, tenant.id)
    return RequestContext(db=db, user=user, tenant=tenant, scope=scope)


def get_platform_context(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RequestContext:
    """Platform administrators only; the session is bound to the platform scope."""
    if not user.is_platform_user:
        raise PermissionDenied("Platform administrators only")
    require_permission(user, Permission.ORGANIZATION_VIEW)

    scope = bind_platform_context(db)
    return RequestContext(db=db, user=user, tenant=None, scope=scope)
