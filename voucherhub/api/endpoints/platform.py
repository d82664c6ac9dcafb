"""
Platform Endpoints

Organization, plan, subscription and invitation management for platform
administrators (super_admin, no organization). The request's session is
bound to the platform scope, so nothing here is tenant-filtered.

Subscription facts normally arrive from the billing collaborator; the
PUT endpoint lets an operator record them by hand.
"""
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import IntegrityError

from voucherhub.api.deps import get_platform_context
from voucherhub.core.context import RequestContext
from voucherhub.core.exceptions import ConflictError, InvalidInputError, TenantNotFoundError
from voucherhub.core.permissions import Permission
from voucherhub.core.tenancy import RESERVED_SUBDOMAINS
from voucherhub.models.audit import AuditAction
from voucherhub.models.invitation import Invitation
from voucherhub.models.tenant import SubscriptionPlan, Tenant
from voucherhub.schemas.invitation import InvitationCreate, InvitationResponse
from voucherhub.schemas.tenant import (
    OrganizationCreate,
    OrganizationUpdate,
    PlanCreate,
    PlanResponse,
    SubscriptionFacts,
    TenantResponse,
)
from voucherhub.services import audit, onboarding
from voucherhub.services.subscription import ensure_default_plan, record_subscription_facts
from voucherhub.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/platform", tags=["platform"])


def _check_slug(slug: str) -> None:
    if slug in RESERVED_SUBDOMAINS:
        raise InvalidInputError(f"'{slug}' is reserved")


def _commit_or_conflict(ctx: RequestContext, detail: str) -> None:
    try:
        ctx.db.commit()
    except IntegrityError:
        ctx.db.rollback()
        raise ConflictError(detail)


@router.get("/organizations", response_model=List[TenantResponse])
def list_organizations(ctx: RequestContext = Depends(get_platform_context)):
    return ctx.db.query(Tenant).order_by(Tenant.name).all()


@router.post("/organizations", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
def create_organization(
    org_data: OrganizationCreate,
    ctx: RequestContext = Depends(get_platform_context),
):
    """Create an organization and put it on the default plan."""
    ctx.require(Permission.ORGANIZATION_MANAGE)
    _check_slug(org_data.slug)

    tenant = Tenant(name=org_data.name, slug=org_data.slug, status=org_data.status)
    ctx.db.add(tenant)
    _commit_or_conflict(ctx, "Slug already in use")
    ensure_default_plan(ctx.db, tenant)
    ctx.db.refresh(tenant)

    logger.info(f"Organization created: {tenant.slug} by {ctx.user.id}")
    audit.record_for(ctx, AuditAction.CREATE, "Tenant", tenant.id, {"slug": tenant.slug})
    return tenant


@router.patch("/organizations/{tenant_id}", response_model=TenantResponse)
def update_organization(
    tenant_id: str,
    org_data: OrganizationUpdate,
    ctx: RequestContext = Depends(get_platform_context),
):
    """Rename, re-slug, activate or suspend an organization."""
    ctx.require(Permission.ORGANIZATION_MANAGE)
    tenant = ctx.db.get(Tenant, tenant_id)
    if tenant is None:
        raise TenantNotFoundError()

    changes = org_data.model_dump(exclude_unset=True)
    if changes.get("slug"):
        _check_slug(changes["slug"])
    for field, value in changes.items():
        setattr(tenant, field, value)
    _commit_or_conflict(ctx, "Slug already in use")
    ctx.db.refresh(tenant)

    logger.info(f"Organization updated: {tenant.slug} by {ctx.user.id}")
    audit.record_for(ctx, AuditAction.UPDATE, "Tenant", tenant.id, {
        k: (v.value if hasattr(v, "value") else v) for k, v in changes.items()
    })
    return tenant


@router.put("/organizations/{tenant_id}/subscription", response_model=TenantResponse)
def put_subscription(
    tenant_id: str,
    facts: SubscriptionFacts,
    ctx: RequestContext = Depends(get_platform_context),
):
    ctx.require(Permission.PLAN_MANAGE)
    tenant = record_subscription_facts(
        ctx.db,
        tenant_id,
        plan_id=facts.plan_id,
        status=facts.status,
        period_end=facts.period_end,
        stripe_customer_id=facts.stripe_customer_id,
        stripe_subscription_id=facts.stripe_subscription_id,
    )
    audit.record_for(ctx, AuditAction.UPDATE, "Tenant", tenant.id, {
        "subscription_plan_id": tenant.subscription_plan_id,
        "subscription_status": tenant.subscription_status.value,
    })
    return tenant


@router.get("/plans", response_model=List[PlanResponse])
def list_plans(ctx: RequestContext = Depends(get_platform_context)):
    return ctx.db.query(SubscriptionPlan).order_by(SubscriptionPlan.name).all()


@router.post("/plans", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
def create_plan(
    plan_data: PlanCreate,
    ctx: RequestContext = Depends(get_platform_context),
):
    ctx.require(Permission.PLAN_MANAGE)
    plan = SubscriptionPlan(**plan_data.model_dump())
    ctx.db.add(plan)
    _commit_or_conflict(ctx, "Plan slug already in use")
    ctx.db.refresh(plan)

    logger.info(f"Plan created: {plan.slug} by {ctx.user.id}")
    audit.record_for(ctx, AuditAction.CREATE, "SubscriptionPlan", plan.id, {"slug": plan.slug})
    return plan


@router.get("/invitations", response_model=List[InvitationResponse])
def list_invitations(ctx: RequestContext = Depends(get_platform_context)):
    ctx.require(Permission.INVITATION_MANAGE)
    return ctx.db.query(Invitation).order_by(Invitation.created_at.desc()).all()


@router.post("/invitations", response_model=InvitationResponse, status_code=status.HTTP_201_CREATED)
def create_invitation(
    invitation_data: InvitationCreate,
    ctx: RequestContext = Depends(get_platform_context),
):
    """Invite someone to open an organization under the given subdomain."""
    ctx.require(Permission.INVITATION_MANAGE)
    invitation = onboarding.create_invitation(ctx.db, invitation_data, ctx.user.id)
    audit.record_for(ctx, AuditAction.CREATE, "Invitation", invitation.id, {"slug": invitation.slug})
    return invitation
