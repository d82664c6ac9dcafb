"""
Tenant Model

The tenant (organization) is the primary isolation boundary. Each tenant is
served from its own subdomain and owns its users, agencies, centers, clients
and vouchers, all stored in the shared schema with a tenant_id column.

Tenants are never hard-deleted; they move through TenantStatus instead.
Only ACTIVE and PENDING tenants resolve from a subdomain.

Subscription facts (plan, status, period end, Stripe ids) are written by the
billing collaborator and only read by the subscription gate.
"""
from sqlalchemy import Column, String, Boolean, DateTime, Integer, Text, ForeignKey, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship
from voucherhub.database import Base
from voucherhub.models.mixins import enum_values
from voucherhub.utils.clock import utcnow
import uuid
import enum


class TenantStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class SubscriptionStatus(str, enum.Enum):
    NONE = "none"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


class BrandingDisplay(str, enum.Enum):
    LOGO = "logo"
    NAME = "name"
    BOTH = "both"


class SubscriptionPlan(Base):
    """
    Plan limits. Global reference data, readable from any scope.

    A NULL cap means unlimited.
    """
    __tablename__ = "subscription_plans"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    slug = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    active = Column(Boolean, default=True, nullable=False)

    max_users = Column(Integer, nullable=True)
    max_agencies = Column(Integer, nullable=True)
    max_vouchers_per_month = Column(Integer, nullable=True)

    stripe_price_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<SubscriptionPlan {self.slug}>"


class Tenant(Base):
    __tablename__ = "tenants"

    # UUIDs avoid enumeration across tenants
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    name = Column(String(255), nullable=False)
    # Doubles as the subdomain (acme.example.org)
    slug = Column(String(63), unique=True, nullable=False, index=True)

    status = Column(
        SQLEnum(TenantStatus, native_enum=False, values_callable=enum_values, length=20),
        default=TenantStatus.PENDING,
        nullable=False,
        index=True
    )

    # Branding, editable by the tenant admin
    logo_url = Column(String(500), nullable=True)
    primary_color = Column(String(20), nullable=True)
    secondary_color = Column(String(20), nullable=True)
    description = Column(Text, nullable=True)
    branding_display = Column(
        SQLEnum(BrandingDisplay, native_enum=False, values_callable=enum_values, length=10),
        default=BrandingDisplay.NAME,
        nullable=False
    )

    # Subscription facts
    subscription_plan_id = Column(
        String(36),
        ForeignKey("subscription_plans.id", ondelete="SET NULL"),
        nullable=True
    )
    subscription_status = Column(
        SQLEnum(SubscriptionStatus, native_enum=False, values_callable=enum_values, length=20),
        default=SubscriptionStatus.NONE,
        nullable=False
    )
    subscription_ends_at = Column(DateTime, nullable=True)
    stripe_customer_id = Column(String(255), nullable=True, unique=True)
    stripe_subscription_id = Column(String(255), nullable=True, unique=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    plan = relationship("SubscriptionPlan", lazy="joined")

    __table_args__ = (
        Index('idx_tenant_status_slug', 'status', 'slug'),
    )

    def __repr__(self):
        return f"<Tenant {self.slug}>"

    @property
    def is_resolvable(self) -> bool:
        """Only active and pending tenants are served."""
        return self.status in (TenantStatus.ACTIVE, TenantStatus.PENDING)
