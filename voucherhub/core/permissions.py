"""
Permission System (RBAC)

Fixed role -> permission-set mapping. The check itself is plain set
membership; there are no per-user overrides.

super_admin holds platform permissions only and deliberately none of the
tenant operational ones. A platform operator who needs to see tenant data
does it through the platform endpoints, not by acting as a tenant admin.

NOTE: RBAC is necessary but not sufficient for vouchers. A third_party
user with VOUCHER_VIEW_OWN must also own the voucher's agency; see
can_view_voucher().
"""
import enum
from typing import FrozenSet

from voucherhub.core.exceptions import PermissionDenied
from voucherhub.models.user import User, UserRole


class Permission(str, enum.Enum):
    DASHBOARD_READ = "DASHBOARD_READ"
    CLIENT_READ = "CLIENT_READ"
    CLIENT_CREATE = "CLIENT_CREATE"
    CLIENT_UPDATE = "CLIENT_UPDATE"
    VOUCHER_ISSUE = "VOUCHER_ISSUE"
    VOUCHER_VIEW_OWN = "VOUCHER_VIEW_OWN"
    VOUCHER_VIEW_ALL = "VOUCHER_VIEW_ALL"
    VOUCHER_REDEEM = "VOUCHER_REDEEM"
    REPORTS_READ = "REPORTS_READ"
    USER_MANAGE = "USER_MANAGE"
    SETTINGS_READ = "SETTINGS_READ"
    AUDIT_VIEW = "AUDIT_VIEW"

    # Platform only
    ORGANIZATION_VIEW = "ORGANIZATION_VIEW"
    ORGANIZATION_MANAGE = "ORGANIZATION_MANAGE"
    PLAN_MANAGE = "PLAN_MANAGE"
    INVITATION_MANAGE = "INVITATION_MANAGE"


PLATFORM_PERMISSIONS: FrozenSet[Permission] = frozenset({
    Permission.ORGANIZATION_VIEW,
    Permission.ORGANIZATION_MANAGE,
    Permission.PLAN_MANAGE,
    Permission.INVITATION_MANAGE,
})

TENANT_PERMISSIONS: FrozenSet[Permission] = frozenset(
    p for p in Permission if p not in PLATFORM_PERMISSIONS
)

ROLE_PERMISSIONS = {
    UserRole.SUPER_ADMIN: PLATFORM_PERMISSIONS,
    UserRole.ADMIN: TENANT_PERMISSIONS,
    UserRole.THIRD_PARTY: frozenset({
        Permission.DASHBOARD_READ,
        Permission.CLIENT_READ,
        Permission.CLIENT_CREATE,
        Permission.CLIENT_UPDATE,
        Permission.VOUCHER_ISSUE,
        Permission.VOUCHER_VIEW_OWN,
    }),
    UserRole.BACK_OFFICE: frozenset({
        Permission.DASHBOARD_READ,
        Permission.CLIENT_READ,
        Permission.VOUCHER_VIEW_OWN,
        Permission.VOUCHER_VIEW_ALL,
        Permission.VOUCHER_REDEEM,
    }),
}


def permissions_for(role) -> FrozenSet[Permission]:
    """Permission set of a role. Unknown roles get nothing."""
    try:
        return ROLE_PERMISSIONS.get(UserRole(role), frozenset())
    except ValueError:
        return frozenset()


def has_permission(role, permission: Permission) -> bool:
    return permission in permissions_for(role)


def require_permission(user: User, permission: Permission) -> None:
    """
    Raise PermissionDenied unless the user's role grants ``permission``.

    The message never mentions the target resource, so a denial reveals
    nothing about what exists.
    """
    if not has_permission(user.role, permission):
        raise PermissionDenied()


def require_any_permission(user: User, *permissions: Permission) -> None:
    granted = permissions_for(user.role)
    if not any(p in granted for p in permissions):
        raise PermissionDenied()


def can_view_voucher(user: User, voucher) -> bool:
    """
    View-all, or view-own plus ownership of the voucher's agency.
    """
    granted = permissions_for(user.role)
    if Permission.VOUCHER_VIEW_ALL in granted:
        return True
    if Permission.VOUCHER_VIEW_OWN in granted:
        return user.agency_id is not None and user.agency_id == voucher.agency_id
    return False


def can_manage_user(current_user: User, target_user: User) -> bool:
    """
    Admins manage users of their own tenant; nobody touches platform users
    from a tenant.
    """
    if not has_permission(current_user.role, Permission.USER_MANAGE):
        return False
    if target_user.tenant_id is None:
        return False
    return target_user.tenant_id == current_user.tenant_id
