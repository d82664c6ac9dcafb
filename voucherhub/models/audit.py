"""
Audit Log Model

Append-only. tenant_id is NULL for platform actions.
"""
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, Index, Enum as SQLEnum
from voucherhub.database import Base
from voucherhub.models.mixins import TenantScopedMixin, enum_values
from voucherhub.utils.clock import utcnow
import uuid
import enum


class AuditAction(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ISSUE_VOUCHER = "issue_voucher"
    REDEEM_VOUCHER = "redeem_voucher"
    UNFULFILLED_VOUCHER = "unfulfilled_voucher"
    LOGIN = "login"
    LOGOUT = "logout"


class AuditLog(TenantScopedMixin, Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=True, index=True)
    user_id = Column(String(36), nullable=True, index=True)

    action = Column(
        SQLEnum(AuditAction, native_enum=False, values_callable=enum_values, length=30),
        nullable=False
    )
    entity = Column(String(50), nullable=False)
    entity_id = Column(String(36), nullable=True)
    changes = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('idx_audit_tenant_created', 'tenant_id', 'created_at'),
    )

    def __repr__(self):
        return f"<AuditLog {self.action.value} {self.entity}:{self.entity_id}>"
