"""
User Management Endpoints

Users of the current organization. Platform users are never listed or
touched from here.

RBAC:
- List / get / create / update / delete: USER_MANAGE
- Nobody deletes their own account; users with voucher history are kept
- Nobody can grant super_admin from a tenant
"""
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from voucherhub.api.deps import get_tenant_context
from voucherhub.core.context import RequestContext
from voucherhub.core.exceptions import (
    AgencyNotFoundError,
    ConflictError,
    InvalidInputError,
    PermissionDenied,
    UserNotFoundError,
)
from voucherhub.core.permissions import Permission, can_manage_user
from voucherhub.core.rls import elevated
from voucherhub.core.security import get_password_hash
from voucherhub.models.agency import Agency
from voucherhub.models.audit import AuditAction
from voucherhub.models.session import UserSession
from voucherhub.models.user import User, UserRole, UserStatus
from voucherhub.models.voucher import Redemption, Voucher
from voucherhub.schemas.user import UserCreate, UserResponse, UserUpdate
from voucherhub.services import audit
from voucherhub.services.subscription import ResourceKind, enforce_limit
from voucherhub.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


def _check_agency(ctx: RequestContext, agency_id) -> None:
    if agency_id is not None and ctx.db.get(Agency, agency_id) is None:
        raise AgencyNotFoundError()


def _load_managed_user(ctx: RequestContext, user_id: str) -> User:
    user = ctx.db.get(User, user_id)
    if user is None or user.tenant_id != ctx.tenant_id:
        raise UserNotFoundError()
    if not can_manage_user(ctx.user, user):
        raise PermissionDenied()
    return user


@router.get("", response_model=List[UserResponse])
def list_users(ctx: RequestContext = Depends(get_tenant_context)):
    ctx.require(Permission.USER_MANAGE)
    return (
        ctx.db.query(User)
        .filter(User.tenant_id == ctx.tenant_id)
        .order_by(User.email)
        .all()
    )


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    user_data: UserCreate,
    ctx: RequestContext = Depends(get_tenant_context),
):
    """
    Create a user in the current organization.

    Subject to the plan's user limit. Emails are unique across the whole
    platform, since login happens before the organization is known.
    """
    ctx.require(Permission.USER_MANAGE)
    if user_data.role == UserRole.SUPER_ADMIN:
        raise PermissionDenied("Cannot create platform administrators")
    _check_agency(ctx, user_data.agency_id)

    email = user_data.email.strip().lower()
    with elevated(ctx.db):
        taken = ctx.db.query(User.id).filter(User.email == email).first()
    if taken:
        raise InvalidInputError("User with this email already exists")

    enforce_limit(ctx.db, ctx.tenant_id, ResourceKind.USER, ctx.is_platform_admin)

    new_user = User(
        tenant_id=ctx.tenant_id,
        agency_id=user_data.agency_id,
        email=email,
        hashed_password=get_password_hash(user_data.password),
        first_name=user_data.first_name,
        last_name=user_data.last_name,
        role=user_data.role,
        status=UserStatus.ACTIVE,
    )
    ctx.db.add(new_user)
    ctx.db.commit()
    ctx.db.refresh(new_user)

    logger.info(f"User created: {new_user.id} by {ctx.user.id}", extra={"tenant_id": ctx.tenant_id})
    audit.record_for(ctx, AuditAction.CREATE, "User", new_user.id, {
        "email": new_user.email,
        "role": new_user.role.value,
    })
    return new_user


@router.patch("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: str,
    user_data: UserUpdate,
    ctx: RequestContext = Depends(get_tenant_context),
):
    ctx.require(Permission.USER_MANAGE)
    user = _load_managed_user(ctx, user_id)

    update_data = user_data.model_dump(exclude_unset=True)
    if update_data.get("role") == UserRole.SUPER_ADMIN:
        raise PermissionDenied("Cannot grant platform administrator")
    if "agency_id" in update_data:
        _check_agency(ctx, update_data["agency_id"])

    for field, value in update_data.items():
        setattr(user, field, value)
    ctx.db.commit()
    ctx.db.refresh(user)

    logger.info(f"User updated: {user.id} by {ctx.user.id}", extra={"tenant_id": ctx.tenant_id})
    audit.record_for(ctx, AuditAction.UPDATE, "User", user.id, {
        k: (v.value if hasattr(v, "value") else v) for k, v in update_data.items()
    })
    return user


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: str,
    ctx: RequestContext = Depends(get_tenant_context),
):
    ctx.require(Permission.USER_MANAGE)
    return _load_managed_user(ctx, user_id)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: str,
    ctx: RequestContext = Depends(get_tenant_context),
):
    """
    Remove a user and their sessions. Users who issued or redeemed vouchers
    stay for the record; suspend them instead.
    """
    ctx.require(Permission.USER_MANAGE)
    user = _load_managed_user(ctx, user_id)
    if user.id == ctx.user.id:
        raise InvalidInputError("You cannot delete your own account")

    referenced = ctx.db.scalar(
        select(func.count(Voucher.id)).where(Voucher.issued_by_id == user.id)
    ) + ctx.db.scalar(
        select(func.count(Redemption.id)).where(Redemption.redeemed_by_id == user.id)
    )
    if referenced:
        raise ConflictError("User has voucher history; suspend the account instead")

    ctx.db.query(UserSession).filter(UserSession.user_id == user.id).delete(synchronize_session=False)
    ctx.db.delete(user)
    try:
        ctx.db.commit()
    except IntegrityError:
        ctx.db.rollback()
        raise ConflictError("User has voucher history; suspend the account instead")

    logger.info(f"User deleted: {user_id} by {ctx.user.id}", extra={"tenant_id": ctx.tenant_id})
    audit.record_for(ctx, AuditAction.DELETE, "User", user_id)
