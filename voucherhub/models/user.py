"""
User Model

Users normally belong to one tenant. A user with tenant_id NULL is a
platform user (super_admin) and operates under the platform scope only.

Emails are globally unique and stored lower-cased: login happens before we
know which tenant the credentials belong to.
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Index, Enum as SQLEnum
from voucherhub.database import Base
from voucherhub.models.mixins import TenantScopedMixin, enum_values
from voucherhub.utils.clock import utcnow
import uuid
import enum


class UserRole(str, enum.Enum):
    """
    Roles for RBAC. Each role maps to a fixed permission set in
    voucherhub.core.permissions.

    SUPER_ADMIN: platform operator, no tenant permissions at all
    ADMIN: every tenant permission
    THIRD_PARTY: referral agency staff, issue and view own agency's vouchers
    BACK_OFFICE: food bank staff, view all and redeem vouchers
    """
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    THIRD_PARTY = "third_party"
    BACK_OFFICE = "back_office"


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class User(TenantScopedMixin, Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Overrides the mixin: NULL means platform user
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id"),
        nullable=True,
        index=True
    )
    agency_id = Column(
        String(36),
        ForeignKey("agencies.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)

    role = Column(
        SQLEnum(UserRole, native_enum=False, values_callable=enum_values, length=20),
        default=UserRole.THIRD_PARTY,
        nullable=False,
        index=True
    )
    status = Column(
        SQLEnum(UserStatus, native_enum=False, values_callable=enum_values, length=20),
        default=UserStatus.ACTIVE,
        nullable=False
    )

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    last_login_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('idx_user_tenant_role', 'tenant_id', 'role'),
    )

    def __repr__(self):
        return f"<User {self.email} (tenant={self.tenant_id})>"

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    @property
    def is_platform_user(self) -> bool:
        return self.tenant_id is None

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)
