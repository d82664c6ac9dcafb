"""
Authentication Endpoints

Cookie sessions: login issues an opaque token in an HTTP-only cookie,
logout deletes it server-side, /auth/session reports who is logged in.
"""
from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from voucherhub.api.deps import get_current_user, get_request_tenant, get_session_token
from voucherhub.config import get_settings
from voucherhub.core.exceptions import AuthenticationError, PermissionDenied
from voucherhub.core.permissions import permissions_for
from voucherhub.core.rls import RlsScope, elevated
from voucherhub.core.security import verify_password
from voucherhub.database import get_db
from voucherhub.models.audit import AuditAction
from voucherhub.models.user import User
from voucherhub.schemas.auth import LoginRequest, SessionResponse
from voucherhub.schemas.user import UserResponse
from voucherhub.services import audit
from voucherhub.services.session_store import create_session, delete_session, resolve_session
from voucherhub.utils.clock import utcnow
from voucherhub.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


def _scope_for(user: User) -> RlsScope:
    if user.tenant_id is None:
        return RlsScope.platform()
    return RlsScope.tenant(user.tenant_id)


def _session_response(user: User, request: Request) -> SessionResponse:
    tenant = get_request_tenant(request)
    return SessionResponse(
        user=UserResponse.model_validate(user),
        tenant_id=tenant.id if tenant else user.tenant_id,
        tenant_slug=tenant.slug if tenant else None,
        permissions=sorted(p.value for p in permissions_for(user.role)),
    )


@router.post("/login", response_model=SessionResponse)
def login(
    credentials: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    """
    Verify email and password, then set the session cookie.

    SECURITY: unknown email, wrong password, suspended account and a
    tenant user logging in on another organization's host all answer the
    same 401.
    """
    settings = get_settings()
    email = credentials.email.strip().lower()
    tenant = get_request_tenant(request)

    # Emails are unique platform-wide and the tenant is not known yet
    with elevated(db):
        user = db.query(User).filter(User.email == email).first()

    reason = None
    if user is None:
        reason = "user_not_found"
    elif not verify_password(credentials.password, user.hashed_password):
        reason = "wrong_password"
    elif not user.is_active:
        reason = "user_inactive"
    elif tenant is not None and user.tenant_id is not None and user.tenant_id != tenant.id:
        reason = "wrong_organization"

    if reason is not None:
        log_security_event(
            "failed_login",
            {"reason": reason, "tenant_id": tenant.id if tenant else None},
            logger,
        )
        raise AuthenticationError("Invalid email or password")

    token = create_session(db, user.id)
    with elevated(db):
        user.last_login_at = utcnow()
        db.commit()

    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_MAX_AGE_SECONDS,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )

    logger.info(f"User logged in: {user.id}", extra={"user_id": user.id, "tenant_id": user.tenant_id})
    audit.record(_scope_for(user), user.id, AuditAction.LOGIN, "User", user.id)

    return _session_response(user, request)


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    """Delete the server-side session and clear the cookie. Always succeeds."""
    settings = get_settings()
    token = get_session_token(request)
    user = resolve_session(db, token)
    delete_session(db, token)
    response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/")

    if user is not None:
        audit.record(_scope_for(user), user.id, AuditAction.LOGOUT, "User", user.id)
    return {"detail": "Logged out"}


@router.get("/session", response_model=SessionResponse, status_code=status.HTTP_200_OK)
def get_session(
    request: Request,
    current_user: User = Depends(get_current_user),
):
    """Who is logged in, for which organization, with which permissions."""
    tenant = get_request_tenant(request)
    if tenant is not None and current_user.tenant_id is not None and current_user.tenant_id != tenant.id:
        raise PermissionDenied("Forbidden")
    return _session_response(current_user, request)
