"""
Join Endpoints

Public onboarding: check an invitation token, then accept it to create the
organization and its first admin. No session is required; the token is
the credential.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from voucherhub.config import get_settings
from voucherhub.core.rls import RlsScope
from voucherhub.database import get_db
from voucherhub.models.audit import AuditAction
from voucherhub.schemas.invitation import InvitationCheck, JoinRequest, JoinResponse
from voucherhub.services import audit, onboarding

router = APIRouter(prefix="/join", tags=["onboarding"])


@router.get("/validate", response_model=InvitationCheck)
def validate_invitation(
    token: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
):
    invitation = onboarding.open_invitation(db, token)
    return InvitationCheck(
        email=invitation.email,
        organization_name=invitation.organization_name,
        slug=invitation.slug,
        expires_at=invitation.expires_at,
    )


@router.post("", response_model=JoinResponse, status_code=status.HTTP_201_CREATED)
def join(
    join_data: JoinRequest,
    db: Session = Depends(get_db),
):
    tenant = onboarding.accept_invitation(db, join_data)
    audit.record(RlsScope.tenant(tenant.id), None, AuditAction.CREATE, "Tenant", tenant.id, {
        "slug": tenant.slug,
        "source": "invitation",
    })
    return JoinResponse(
        tenant_id=tenant.id,
        slug=tenant.slug,
        status=tenant.status,
        login_url=f"https://{tenant.slug}.{get_settings().APP_DOMAIN}/login",
    )
