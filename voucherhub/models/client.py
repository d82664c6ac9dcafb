"""
Client Model

A person referred for food support. Tenant-scoped.
"""
from sqlalchemy import Column, String, Boolean, DateTime, Integer, Text, JSON, Index
from voucherhub.database import Base
from voucherhub.models.mixins import TenantScopedMixin
from voucherhub.utils.clock import utcnow
import uuid


class Client(TenantScopedMixin, Base):
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    first_name = Column(String(100), nullable=False)
    surname = Column(String(100), nullable=False)

    # postcode is NULL when no_fixed_address is set
    postcode = Column(String(20), nullable=True)
    no_fixed_address = Column(Boolean, default=False, nullable=False)
    address = Column(Text, nullable=True)
    year_of_birth = Column(Integer, nullable=True)

    # Age-band counts, e.g. {"18-24": 1, "25-64": 2}
    household_adults = Column(JSON, nullable=True)
    household_children = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        # Search is by surname + postcode within a tenant
        Index('idx_client_tenant_surname', 'tenant_id', 'surname'),
        Index('idx_client_tenant_postcode', 'tenant_id', 'postcode'),
    )

    def __repr__(self):
        return f"<Client {self.first_name} {self.surname} (tenant={self.tenant_id})>"
