"""
Audit Logger

Best-effort, append-only record of state changes.

Entries are written in their own short-lived session bound to the same
scope as the request, after the primary transaction has committed. A
failure here is logged and swallowed: it can neither fail the request
nor roll back the change being audited.

Do not put secrets (passwords, tokens) in ``changes``.
"""
from typing import Any, Dict, Optional

from voucherhub.core.rls import RlsScope, bind_scope
from voucherhub.database import SessionLocal
from voucherhub.models.audit import AuditAction, AuditLog
from voucherhub.utils.logging import get_logger

logger = get_logger("voucherhub.audit")


def record(
    scope: RlsScope,
    actor_id: Optional[str],
    action: AuditAction,
    entity: str,
    entity_id: Optional[str] = None,
    changes: Optional[Dict[str, Any]] = None,
) -> None:
    db = SessionLocal()
    try:
        bind_scope(db, scope)
        db.add(AuditLog(
            tenant_id=scope.tenant_id,
            user_id=actor_id,
            action=action,
            entity=entity,
            entity_id=entity_id,
            changes=changes,
        ))
        db.commit()
    except Exception as e:
        logger.error(
            f"Failed to write audit log {action.value} {entity}:{entity_id}: {e}",
            extra={"tenant_id": scope.tenant_id, "user_id": actor_id},
        )
    finally:
        db.close()


def record_for(ctx, action: AuditAction, entity: str, entity_id: Optional[str] = None,
               changes: Optional[Dict[str, Any]] = None) -> None:
    """Shorthand taking a RequestContext."""
    record(ctx.scope, ctx.user.id, action, entity, entity_id, changes)
