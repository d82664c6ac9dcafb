"""
Voucher and Redemption Models

Voucher status only changes through voucherhub.services.vouchers:

    issued -> redeemed     (creates exactly one Redemption)
    issued -> expired      (manual invalidation)
    issued -> unfulfilled

All three targets are terminal.

CRITICAL: redemptions.voucher_id is unique. Together with the
compare-and-set on vouchers.status this keeps "status == redeemed" and
"one Redemption row exists" in lockstep.
"""
from sqlalchemy import Column, String, DateTime, Text, Numeric, ForeignKey, Index, Enum as SQLEnum
from voucherhub.database import Base
from voucherhub.models.mixins import TenantScopedMixin, enum_values
from voucherhub.utils.clock import utcnow
import uuid
import enum


class VoucherStatus(str, enum.Enum):
    ISSUED = "issued"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    UNFULFILLED = "unfulfilled"


class Voucher(TenantScopedMixin, Base):
    __tablename__ = "vouchers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # Human-readable, globally unique: E-XXXXX-XXXXXX
    code = Column(String(20), unique=True, nullable=False, index=True)

    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False, index=True)
    food_bank_center_id = Column(String(36), ForeignKey("food_bank_centers.id"), nullable=True)
    issued_by_id = Column(String(36), ForeignKey("users.id"), nullable=False)

    status = Column(
        SQLEnum(VoucherStatus, native_enum=False, values_callable=enum_values, length=20),
        default=VoucherStatus.ISSUED,
        nullable=False,
        index=True
    )
    issue_date = Column(DateTime, default=utcnow, nullable=False)
    expiry_date = Column(DateTime, nullable=False)

    notes = Column(Text, nullable=True)
    collection_notes = Column(Text, nullable=True)
    more_than_3_reason = Column(Text, nullable=True)
    unfulfilled_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index('idx_voucher_tenant_status', 'tenant_id', 'status'),
        Index('idx_voucher_tenant_created', 'tenant_id', 'created_at'),
        Index('idx_voucher_client_issue', 'client_id', 'issue_date'),
    )

    def __repr__(self):
        return f"<Voucher {self.code} ({self.status.value})>"


class Redemption(TenantScopedMixin, Base):
    __tablename__ = "redemptions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    voucher_id = Column(
        String(36),
        ForeignKey("vouchers.id"),
        unique=True,
        nullable=False
    )
    redeemed_by_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    center_id = Column(String(36), ForeignKey("food_bank_centers.id"), nullable=False)
    redeemed_at = Column(DateTime, default=utcnow, nullable=False)

    failure_reason = Column(Text, nullable=True)
    weight_kg = Column(Numeric(8, 2), nullable=True)

    __table_args__ = (
        Index('idx_redemption_tenant_redeemed', 'tenant_id', 'redeemed_at'),
    )

    def __repr__(self):
        return f"<Redemption voucher={self.voucher_id}>"
