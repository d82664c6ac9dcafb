"""
Subscription Gate

Admits or rejects the creation of plan-limited resources: users,
agencies and vouchers per calendar month.

Rules, in order:
1. Platform administrators bypass every limit.
2. With SUBSCRIPTION_ENABLED off, everything is admitted.
3. A subscription status other than active/trialing rejects.
4. A live count that has already reached the plan cap rejects.
   A NULL cap is unlimited.

KNOWN RACE: the check and the insert that follows it are separate
statements, not one serializable transaction. Two requests arriving
together at the boundary can both pass the check and end one over the
cap. This is accepted; the counts are billing facts, not safety
invariants.

Plan/status/period-end facts are written by the billing collaborator
through record_subscription_facts(). Nothing here talks to the payment
provider.
"""
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from voucherhub.config import get_settings
from voucherhub.core.exceptions import PlanLimitExceeded, PlanNotFoundError, TenantNotFoundError
from voucherhub.core.rls import elevated
from voucherhub.models.agency import Agency
from voucherhub.models.tenant import SubscriptionPlan, SubscriptionStatus, Tenant
from voucherhub.models.user import User
from voucherhub.models.voucher import Voucher
from voucherhub.utils.clock import as_naive_utc, start_of_month, utcnow
from voucherhub.utils.logging import get_logger

logger = get_logger(__name__)


class ResourceKind(str, enum.Enum):
    USER = "user"
    AGENCY = "agency"
    VOUCHER_PER_MONTH = "voucher-per-month"


USABLE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)

INACTIVE_MESSAGE = "Subscription is not active. Please contact the platform to activate your plan."

LIMIT_MESSAGES = {
    ResourceKind.USER: "User limit reached ({cap}). Upgrade your plan or contact the platform.",
    ResourceKind.AGENCY: "Agency limit reached ({cap}). Upgrade your plan or contact the platform.",
    ResourceKind.VOUCHER_PER_MONTH: "Monthly voucher limit reached ({cap}). Upgrade your plan or contact the platform.",
}

# Payment-provider status -> SubscriptionStatus
PROVIDER_STATUS_MAP = {
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
    "cancelled": SubscriptionStatus.CANCELLED,
    "unpaid": SubscriptionStatus.CANCELLED,
    "incomplete": SubscriptionStatus.CANCELLED,
    "incomplete_expired": SubscriptionStatus.CANCELLED,
}


@dataclass(frozen=True)
class PlanLimits:
    max_users: Optional[int] = None
    max_agencies: Optional[int] = None
    max_vouchers_per_month: Optional[int] = None

    @classmethod
    def from_plan(cls, plan: Optional[SubscriptionPlan]) -> "PlanLimits":
        if plan is None:
            return cls()
        return cls(plan.max_users, plan.max_agencies, plan.max_vouchers_per_month)

    def cap_for(self, kind: ResourceKind) -> Optional[int]:
        return {
            ResourceKind.USER: self.max_users,
            ResourceKind.AGENCY: self.max_agencies,
            ResourceKind.VOUCHER_PER_MONTH: self.max_vouchers_per_month,
        }[kind]


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: Optional[str] = None


ADMITTED = GateDecision(allowed=True)


def map_provider_status(status) -> SubscriptionStatus:
    if isinstance(status, SubscriptionStatus):
        return status
    return PROVIDER_STATUS_MAP.get(str(status).lower(), SubscriptionStatus.NONE)


def get_default_plan(db: Session) -> Optional[SubscriptionPlan]:
    slug = get_settings().DEFAULT_PLAN_SLUG
    return (
        db.query(SubscriptionPlan)
        .filter(SubscriptionPlan.slug == slug, SubscriptionPlan.active.is_(True))
        .first()
    )


def ensure_default_plan(db: Session, tenant: Tenant) -> None:
    """
    Give a tenant that has never had a plan the default free plan.

    Tenants with a plan but a lapsed status are left alone; reactivation
    is a billing decision.
    """
    if tenant.subscription_plan_id is not None:
        return
    plan = get_default_plan(db)
    if plan is None:
        return
    with elevated(db):
        tenant.subscription_plan_id = plan.id
        tenant.subscription_status = SubscriptionStatus.ACTIVE
        tenant.plan = plan
        db.commit()
    logger.info(f"Assigned default plan {plan.slug} to tenant {tenant.slug}")


def get_plan_limits(db: Session, tenant_id: str):
    """
    Return (PlanLimits, SubscriptionStatus) for a tenant, read fresh.
    """
    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        raise TenantNotFoundError()
    if get_settings().SUBSCRIPTION_ENABLED:
        ensure_default_plan(db, tenant)
    return PlanLimits.from_plan(tenant.plan), tenant.subscription_status


def count_usage(db: Session, tenant_id: str, kind: ResourceKind, now: Optional[datetime] = None) -> int:
    if kind == ResourceKind.USER:
        stmt = select(func.count(User.id)).where(User.tenant_id == tenant_id)
    elif kind == ResourceKind.AGENCY:
        stmt = select(func.count(Agency.id)).where(Agency.tenant_id == tenant_id)
    else:
        since = start_of_month(now or utcnow())
        stmt = select(func.count(Voucher.id)).where(
            Voucher.tenant_id == tenant_id,
            Voucher.created_at >= since,
        )
    return db.scalar(stmt) or 0


def check_limit(
    db: Session,
    tenant_id: str,
    kind: ResourceKind,
    is_platform_admin: bool = False,
) -> GateDecision:
    """Decide whether the tenant may create one more ``kind``."""
    if is_platform_admin:
        return ADMITTED
    if not get_settings().SUBSCRIPTION_ENABLED:
        return ADMITTED

    limits, status = get_plan_limits(db, tenant_id)
    if status not in USABLE_STATUSES:
        return GateDecision(allowed=False, reason=INACTIVE_MESSAGE)

    cap = limits.cap_for(kind)
    if cap is None:
        return ADMITTED

    used = count_usage(db, tenant_id, kind)
    if used >= cap:
        return GateDecision(allowed=False, reason=LIMIT_MESSAGES[kind].format(cap=cap))
    return ADMITTED


def enforce_limit(
    db: Session,
    tenant_id: str,
    kind: ResourceKind,
    is_platform_admin: bool = False,
) -> None:
    """check_limit(), raising PlanLimitExceeded on rejection."""
    decision = check_limit(db, tenant_id, kind, is_platform_admin)
    if not decision.allowed:
        logger.info(
            f"Plan limit rejected {kind.value} for tenant {tenant_id}: {decision.reason}",
            extra={"tenant_id": tenant_id},
        )
        raise PlanLimitExceeded(decision.reason)


def record_subscription_facts(
    db: Session,
    tenant_id: str,
    plan_id: Optional[str] = None,
    status=None,
    period_end: Optional[datetime] = None,
    stripe_customer_id: Optional[str] = None,
    stripe_subscription_id: Optional[str] = None,
) -> Tenant:
    """
    Apply the facts delivered by the billing collaborator.

    Arguments left as None are not touched. Runs elevated.
    """
    with elevated(db):
        tenant = db.get(Tenant, tenant_id)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)
        if plan_id is not None:
            plan = db.get(SubscriptionPlan, plan_id)
            if plan is None:
                raise PlanNotFoundError(plan_id)
            tenant.subscription_plan_id = plan.id
            tenant.plan = plan
        if status is not None:
            tenant.subscription_status = map_provider_status(status)
        if period_end is not None:
            tenant.subscription_ends_at = as_naive_utc(period_end)
        if stripe_customer_id is not None:
            tenant.stripe_customer_id = stripe_customer_id
        if stripe_subscription_id is not None:
            tenant.stripe_subscription_id = stripe_subscription_id
        db.commit()

    logger.info(
        f"Subscription facts recorded for tenant {tenant.slug}: "
        f"plan={tenant.subscription_plan_id} status={tenant.subscription_status.value}"
    )
    return tenant
