"""
Agency and Food Bank Center Models

Tenant-scoped master data. Agencies refer clients and issue vouchers;
centers are where vouchers get redeemed.
"""
from sqlalchemy import Column, String, Boolean, DateTime, Text, JSON, Index
from voucherhub.database import Base
from voucherhub.models.mixins import TenantScopedMixin
from voucherhub.utils.clock import utcnow
import uuid


class Agency(TenantScopedMixin, Base):
    __tablename__ = "agencies"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    contact_phone = Column(String(50), nullable=True)
    contact_email = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index('idx_agency_tenant_name', 'tenant_id', 'name'),
    )

    def __repr__(self):
        return f"<Agency {self.name} (tenant={self.tenant_id})>"


class FoodBankCenter(TenantScopedMixin, Base):
    __tablename__ = "food_bank_centers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=True)
    postcode = Column(String(20), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    # {"monday": "9:00-17:00", ...}
    opening_hours = Column(JSON, nullable=True)
    can_deliver = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index('idx_center_tenant_name', 'tenant_id', 'name'),
    )

    def __repr__(self):
        return f"<FoodBankCenter {self.name} (tenant={self.tenant_id})>"
