"""
Invitation and Join Schemas
"""
from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime
from voucherhub.models.invitation import InvitationStatus
from voucherhub.models.tenant import TenantStatus
from voucherhub.schemas.tenant import COLOR_REGEX, SLUG_REGEX


class InvitationCreate(BaseModel):
    email: EmailStr
    organization_name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=63, pattern=SLUG_REGEX)


class InvitationResponse(BaseModel):
    id: str
    email: str
    organization_name: str
    slug: str
    # Handed to the mail collaborator as part of the join link
    token: str
    status: InvitationStatus
    expires_at: datetime
    created_by_id: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class InvitationCheck(BaseModel):
    """What the join form may show before the invitee signs up."""
    valid: bool = True
    email: str
    organization_name: str
    slug: str
    expires_at: datetime


class JoinRequest(BaseModel):
    token: str = Field(..., min_length=1)
    # The invitation's values apply when these are left out
    organization_name: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = Field(None, min_length=1, max_length=63, pattern=SLUG_REGEX)
    admin_email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    logo_url: Optional[str] = Field(None, max_length=500)
    primary_color: Optional[str] = Field(None, pattern=COLOR_REGEX)
    secondary_color: Optional[str] = Field(None, pattern=COLOR_REGEX)
    create_as_active: bool = False


class JoinResponse(BaseModel):
    tenant_id: str
    slug: str
    status: TenantStatus
    login_url: str
