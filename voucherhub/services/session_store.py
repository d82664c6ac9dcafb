"""
Session Store

Durable opaque-token sessions kept in the application database, so any
process can authenticate any request and restarts log nobody out.

The sessions table has no isolation policy: it must be readable before the
tenant is known. The user row behind a session is tenant-scoped, so it is
read under the elevated scope, inside the same transaction as the session
lookup.

Lifetime is fixed from creation (SESSION_MAX_AGE_SECONDS). Activity does
not extend a session; logging in again does.
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from voucherhub.config import get_settings
from voucherhub.core.rls import elevated
from voucherhub.core.security import generate_session_token
from voucherhub.models.session import UserSession
from voucherhub.models.user import User
from voucherhub.utils.clock import utcnow
from voucherhub.utils.logging import get_logger

logger = get_logger(__name__)


def default_expiry() -> datetime:
    return utcnow() + timedelta(seconds=get_settings().SESSION_MAX_AGE_SECONDS)


def create_session(
    db: Session,
    user_id: str,
    expires_at: Optional[datetime] = None,
    token: Optional[str] = None,
) -> str:
    """
    Persist a session and return its token.

    An existing row for the same token value is replaced.
    """
    token = token or generate_session_token()
    expires_at = expires_at or default_expiry()

    with elevated(db):
        existing = db.query(UserSession).filter(UserSession.token == token).first()
        if existing is not None:
            existing.user_id = user_id
            existing.expires_at = expires_at
        else:
            db.add(UserSession(token=token, user_id=user_id, expires_at=expires_at))
        db.commit()

    logger.debug(f"Session created for user {user_id}")
    return token


def resolve_session(db: Session, token: Optional[str]) -> Optional[User]:
    """
    Return the active user behind ``token``, or None.

    Expired sessions are deleted as they are found, so a second lookup of
    the same token finds nothing at all.
    """
    if not token:
        return None

    session_row = db.query(UserSession).filter(UserSession.token == token).first()
    if session_row is None:
        return None

    if session_row.expires_at <= utcnow():
        db.delete(session_row)
        db.commit()
        logger.info(f"Expired session reclaimed for user {session_row.user_id}")
        return None

    with elevated(db):
        user = db.get(User, session_row.user_id)

    if user is None or not user.is_active:
        return None
    return user


def delete_session(db: Session, token: Optional[str]) -> None:
    """Delete a session. Unknown tokens are ignored."""
    if not token:
        return
    with elevated(db):
        db.query(UserSession).filter(UserSession.token == token).delete(synchronize_session=False)
        db.commit()


def purge_expired_sessions(db: Session) -> int:
    """Housekeeping: delete every expired session, return how many."""
    with elevated(db):
        removed = (
            db.query(UserSession)
            .filter(UserSession.expires_at <= utcnow())
            .delete(synchronize_session=False)
        )
        db.commit()
    if removed:
        logger.info(f"Purged {removed} expired sessions")
    return removed
