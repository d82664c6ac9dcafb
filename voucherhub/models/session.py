"""
Session Model

Opaque session token -> user id with a fixed expiry. This table carries no
tenant isolation: it has to be readable before the tenant is known.
"""
from sqlalchemy import Column, String, DateTime, ForeignKey
from voucherhub.database import Base
from voucherhub.utils.clock import utcnow
import uuid


class UserSession(Base):
    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    token = Column(String(128), unique=True, nullable=False, index=True)
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<UserSession user={self.user_id} expires={self.expires_at}>"
