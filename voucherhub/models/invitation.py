"""
Invitation Model

A platform administrator invites someone to open an organization; the
invitee accepts through the public join flow, which creates the tenant and
its first admin. Platform data: no tenant isolation applies.
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Enum as SQLEnum
from voucherhub.database import Base
from voucherhub.models.mixins import enum_values
from voucherhub.utils.clock import utcnow
import uuid
import enum


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    USED = "used"
    EXPIRED = "expired"


class Invitation(Base):
    __tablename__ = "invitations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), nullable=False, index=True)
    organization_name = Column(String(255), nullable=False)
    slug = Column(String(63), nullable=False)
    token = Column(String(128), unique=True, nullable=False, index=True)

    status = Column(
        SQLEnum(InvitationStatus, native_enum=False, values_callable=enum_values, length=20),
        default=InvitationStatus.PENDING,
        nullable=False
    )
    expires_at = Column(DateTime, nullable=False)
    created_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Invitation {self.slug} ({self.status.value})>"
