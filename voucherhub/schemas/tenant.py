"""
Tenant and Platform Schemas

Branding updates by tenant admins; organization, plan and subscription
management by platform admins.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from voucherhub.models.tenant import BrandingDisplay, SubscriptionStatus, TenantStatus

SLUG_REGEX = "^[a-z0-9]([a-z0-9-]*[a-z0-9])?$"
COLOR_REGEX = "^#[0-9A-Fa-f]{3,8}$"


def reject_null(value):
    """PATCH fields backed by NOT NULL columns may be omitted but not nulled."""
    if value is None:
        raise ValueError("may be omitted but not null")
    return value


class BrandingUpdate(BaseModel):
    logo_url: Optional[str] = Field(None, max_length=500)
    primary_color: Optional[str] = Field(None, pattern=COLOR_REGEX)
    secondary_color: Optional[str] = Field(None, pattern=COLOR_REGEX)
    description: Optional[str] = Field(None, max_length=2000)
    branding_display: Optional[BrandingDisplay] = None

    @field_validator("branding_display")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class OrganizationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=63, pattern=SLUG_REGEX)
    status: TenantStatus = TenantStatus.PENDING


class OrganizationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = Field(None, min_length=1, max_length=63, pattern=SLUG_REGEX)
    status: Optional[TenantStatus] = None

    @field_validator("name", "slug", "status")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class SubscriptionFacts(BaseModel):
    """What the billing collaborator knows: plan, status, period end."""
    plan_id: Optional[str] = None
    # Provider vocabulary is accepted too ("canceled", "unpaid", ...)
    status: Optional[str] = None
    period_end: Optional[datetime] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None


class TenantResponse(BaseModel):
    id: str
    slug: str
    name: str
    status: TenantStatus
    logo_url: Optional[str]
    primary_color: Optional[str]
    secondary_color: Optional[str]
    description: Optional[str]
    branding_display: BrandingDisplay
    subscription_plan_id: Optional[str]
    subscription_status: SubscriptionStatus
    subscription_ends_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class PlanCreate(BaseModel):
    slug: str = Field(..., min_length=1, max_length=50, pattern=SLUG_REGEX)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    active: bool = True
    max_users: Optional[int] = Field(None, ge=0)
    max_agencies: Optional[int] = Field(None, ge=0)
    max_vouchers_per_month: Optional[int] = Field(None, ge=0)


class PlanResponse(BaseModel):
    id: str
    slug: str
    name: str
    description: Optional[str]
    active: bool
    max_users: Optional[int]
    max_agencies: Optional[int]
    max_vouchers_per_month: Optional[int]

    class Config:
        from_attributes = True
