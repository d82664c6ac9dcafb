import pytest

from voucherhub.core.exceptions import PermissionDenied
from voucherhub.core.permissions import (
    PLATFORM_PERMISSIONS,
    TENANT_PERMISSIONS,
    Permission,
    can_manage_user,
    can_view_voucher,
    has_permission,
    permissions_for,
    require_any_permission,
    require_permission,
)
from voucherhub.models import User, UserRole, Voucher


def _user(role, tenant_id="t-1", agency_id=None) -> User:
    return User(id=f"u-{role.value}", tenant_id=tenant_id, agency_id=agency_id, role=role)


def test_admin_holds_every_tenant_permission() -> None:
    assert permissions_for(UserRole.ADMIN) == TENANT_PERMISSIONS
    assert not (permissions_for(UserRole.ADMIN) & PLATFORM_PERMISSIONS)


def test_super_admin_holds_platform_permissions_only() -> None:
    granted = permissions_for(UserRole.SUPER_ADMIN)
    assert granted == PLATFORM_PERMISSIONS
    assert not has_permission(UserRole.SUPER_ADMIN, Permission.VOUCHER_REDEEM)


@pytest.mark.parametrize(
    "role, permission, expected",
    [
        (UserRole.THIRD_PARTY, Permission.VOUCHER_ISSUE, True),
        (UserRole.THIRD_PARTY, Permission.VOUCHER_VIEW_OWN, True),
        (UserRole.THIRD_PARTY, Permission.VOUCHER_VIEW_ALL, False),
        (UserRole.THIRD_PARTY, Permission.VOUCHER_REDEEM, False),
        (UserRole.THIRD_PARTY, Permission.USER_MANAGE, False),
        (UserRole.BACK_OFFICE, Permission.VOUCHER_REDEEM, True),
        (UserRole.BACK_OFFICE, Permission.VOUCHER_VIEW_ALL, True),
        (UserRole.BACK_OFFICE, Permission.VOUCHER_ISSUE, False),
        (UserRole.BACK_OFFICE, Permission.CLIENT_CREATE, False),
    ],
)
def test_role_matrix(role, permission, expected) -> None:
    assert has_permission(role, permission) is expected


def test_unknown_role_has_nothing() -> None:
    assert permissions_for("janitor") == frozenset()


def test_require_permission_raises_403() -> None:
    with pytest.raises(PermissionDenied) as exc_info:
        require_permission(_user(UserRole.THIRD_PARTY), Permission.VOUCHER_REDEEM)
    assert exc_info.value.status_code == 403

    require_permission(_user(UserRole.BACK_OFFICE), Permission.VOUCHER_REDEEM)


def test_require_any_permission() -> None:
    third_party = _user(UserRole.THIRD_PARTY)
    require_any_permission(third_party, Permission.VOUCHER_VIEW_ALL, Permission.VOUCHER_VIEW_OWN)
    with pytest.raises(PermissionDenied):
        require_any_permission(third_party, Permission.VOUCHER_REDEEM, Permission.USER_MANAGE)


def test_voucher_visibility_follows_agency_for_view_own() -> None:
    voucher = Voucher(agency_id="a-1")
    assert can_view_voucher(_user(UserRole.THIRD_PARTY, agency_id="a-1"), voucher)
    assert not can_view_voucher(_user(UserRole.THIRD_PARTY, agency_id="a-2"), voucher)
    assert not can_view_voucher(_user(UserRole.THIRD_PARTY, agency_id=None), voucher)
    assert can_view_voucher(_user(UserRole.BACK_OFFICE), voucher)
    assert not can_view_voucher(_user(UserRole.SUPER_ADMIN, tenant_id=None), voucher)


def test_user_management_stays_inside_tenant() -> None:
    admin = _user(UserRole.ADMIN, tenant_id="t-1")
    assert can_manage_user(admin, _user(UserRole.THIRD_PARTY, tenant_id="t-1"))
    assert not can_manage_user(admin, _user(UserRole.THIRD_PARTY, tenant_id="t-2"))
    assert not can_manage_user(admin, _user(UserRole.SUPER_ADMIN, tenant_id=None))
    assert not can_manage_user(_user(UserRole.BACK_OFFICE), _user(UserRole.THIRD_PARTY))
