"""
Request Context

The value threaded through every service call: the database session with
its bound isolation scope, the authenticated user and the resolved tenant.

Services never look at ambient state. If they need the tenant, they read
it from here, and the session they use is already bound to ctx.scope.
"""
from dataclasses import dataclass
from typing import FrozenSet, Optional

from sqlalchemy.orm import Session

from voucherhub.core.permissions import Permission, permissions_for, require_permission
from voucherhub.core.rls import RlsScope
from voucherhub.models.tenant import Tenant
from voucherhub.models.user import User


@dataclass(frozen=True)
class RequestContext:
    db: Session
    user: User
    tenant: Optional[Tenant]
    scope: RlsScope

    @property
    def tenant_id(self) -> Optional[str]:
        return self.tenant.id if self.tenant is not None else None

    @property
    def is_platform_admin(self) -> bool:
        return self.user.tenant_id is None

    @property
    def permissions(self) -> FrozenSet[Permission]:
        return permissions_for(self.user.role)

    def require(self, permission: Permission) -> None:
        require_permission(self.user, permission)
