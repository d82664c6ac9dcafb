"""
Agency and Food Bank Center Endpoints

Master data of an organization. Referral agencies issue vouchers; food
bank centers redeem them.

RBAC:
- List agencies: USER_MANAGE sees all; VOUCHER_ISSUE sees only the own agency
- List centers: anyone who issues, redeems or views vouchers
- Get a center: same as listing; get an agency: USER_MANAGE
- Create, update, delete either: USER_MANAGE (agencies count against the plan)
- Deleting an agency or center that vouchers still reference is a 409
"""
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from voucherhub.api.deps import get_tenant_context
from voucherhub.core.context import RequestContext
from voucherhub.core.exceptions import AgencyNotFoundError, CenterNotFoundError, ConflictError
from voucherhub.core.permissions import Permission, require_any_permission
from voucherhub.models.agency import Agency, FoodBankCenter
from voucherhub.models.audit import AuditAction
from voucherhub.models.voucher import Redemption, Voucher
from voucherhub.schemas.agency import (
    AgencyCreate,
    AgencyResponse,
    AgencyUpdate,
    CenterCreate,
    CenterResponse,
    CenterUpdate,
)
from voucherhub.services import audit
from voucherhub.services.subscription import ResourceKind, enforce_limit
from voucherhub.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["agencies"])


@router.get("/agencies", response_model=List[AgencyResponse])
def list_agencies(ctx: RequestContext = Depends(get_tenant_context)):
    require_any_permission(ctx.user, Permission.USER_MANAGE, Permission.VOUCHER_ISSUE)

    query = ctx.db.query(Agency)
    if Permission.USER_MANAGE not in ctx.permissions:
        query = query.filter(Agency.id == ctx.user.agency_id)
    return query.order_by(Agency.name).all()


@router.post("/agencies", response_model=AgencyResponse, status_code=status.HTTP_201_CREATED)
def create_agency(
    agency_data: AgencyCreate,
    ctx: RequestContext = Depends(get_tenant_context),
):
    """Create a referral agency. Subject to the plan's agency limit."""
    ctx.require(Permission.USER_MANAGE)
    enforce_limit(ctx.db, ctx.tenant_id, ResourceKind.AGENCY, ctx.is_platform_admin)

    agency = Agency(tenant_id=ctx.tenant_id, **agency_data.model_dump())
    ctx.db.add(agency)
    ctx.db.commit()
    ctx.db.refresh(agency)

    logger.info(f"Agency created: {agency.id} by {ctx.user.id}", extra={"tenant_id": ctx.tenant_id})
    audit.record_for(ctx, AuditAction.CREATE, "Agency", agency.id, {"name": agency.name})
    return agency


@router.get("/centers", response_model=List[CenterResponse])
def list_centers(ctx: RequestContext = Depends(get_tenant_context)):
    require_any_permission(
        ctx.user,
        Permission.USER_MANAGE,
        Permission.VOUCHER_ISSUE,
        Permission.VOUCHER_REDEEM,
        Permission.VOUCHER_VIEW_OWN,
        Permission.VOUCHER_VIEW_ALL,
    )
    return ctx.db.query(FoodBankCenter).order_by(FoodBankCenter.name).all()


@router.post("/centers", response_model=CenterResponse, status_code=status.HTTP_201_CREATED)
def create_center(
    center_data: CenterCreate,
    ctx: RequestContext = Depends(get_tenant_context),
):
    ctx.require(Permission.USER_MANAGE)

    center = FoodBankCenter(tenant_id=ctx.tenant_id, **center_data.model_dump())
    ctx.db.add(center)
    ctx.db.commit()
    ctx.db.refresh(center)

    logger.info(f"Center created: {center.id} by {ctx.user.id}", extra={"tenant_id": ctx.tenant_id})
    audit.record_for(ctx, AuditAction.CREATE, "FoodBankCenter", center.id, {"name": center.name})
    return center


def _load_agency(ctx: RequestContext, agency_id: str) -> Agency:
    agency = ctx.db.get(Agency, agency_id)
    if agency is None:
        raise AgencyNotFoundError()
    return agency


def _load_center(ctx: RequestContext, center_id: str) -> FoodBankCenter:
    center = ctx.db.get(FoodBankCenter, center_id)
    if center is None:
        raise CenterNotFoundError()
    return center


def _delete_unreferenced(ctx: RequestContext, obj, in_use: bool, detail: str) -> None:
    """Delete a master-data row; rows that vouchers still point at answer 409."""
    if in_use:
        raise ConflictError(detail)
    ctx.db.delete(obj)
    try:
        ctx.db.commit()
    except IntegrityError:
        ctx.db.rollback()
        raise ConflictError(detail)


@router.get("/agencies/{agency_id}", response_model=AgencyResponse)
def get_agency(
    agency_id: str,
    ctx: RequestContext = Depends(get_tenant_context),
):
    ctx.require(Permission.USER_MANAGE)
    return _load_agency(ctx, agency_id)


@router.patch("/agencies/{agency_id}", response_model=AgencyResponse)
def update_agency(
    agency_id: str,
    agency_data: AgencyUpdate,
    ctx: RequestContext = Depends(get_tenant_context),
):
    ctx.require(Permission.USER_MANAGE)
    agency = _load_agency(ctx, agency_id)

    changes = agency_data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(agency, field, value)
    ctx.db.commit()
    ctx.db.refresh(agency)

    logger.info(f"Agency updated: {agency.id} by {ctx.user.id}", extra={"tenant_id": ctx.tenant_id})
    audit.record_for(ctx, AuditAction.UPDATE, "Agency", agency.id, changes)
    return agency


@router.delete("/agencies/{agency_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_agency(
    agency_id: str,
    ctx: RequestContext = Depends(get_tenant_context),
):
    """
    Delete an agency nobody issued vouchers through. Its users stay, with
    no agency.
    """
    ctx.require(Permission.USER_MANAGE)
    agency = _load_agency(ctx, agency_id)

    issued = ctx.db.scalar(select(func.count(Voucher.id)).where(Voucher.agency_id == agency.id))
    _delete_unreferenced(ctx, agency, issued > 0, "Agency has issued vouchers")

    logger.info(f"Agency deleted: {agency_id} by {ctx.user.id}", extra={"tenant_id": ctx.tenant_id})
    audit.record_for(ctx, AuditAction.DELETE, "Agency", agency_id)


@router.get("/centers/{center_id}", response_model=CenterResponse)
def get_center(
    center_id: str,
    ctx: RequestContext = Depends(get_tenant_context),
):
    require_any_permission(
        ctx.user,
        Permission.USER_MANAGE,
        Permission.VOUCHER_ISSUE,
        Permission.VOUCHER_REDEEM,
        Permission.VOUCHER_VIEW_OWN,
        Permission.VOUCHER_VIEW_ALL,
    )
    return _load_center(ctx, center_id)


@router.patch("/centers/{center_id}", response_model=CenterResponse)
def update_center(
    center_id: str,
    center_data: CenterUpdate,
    ctx: RequestContext = Depends(get_tenant_context),
):
    ctx.require(Permission.USER_MANAGE)
    center = _load_center(ctx, center_id)

    changes = center_data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(center, field, value)
    ctx.db.commit()
    ctx.db.refresh(center)

    logger.info(f"Center updated: {center.id} by {ctx.user.id}", extra={"tenant_id": ctx.tenant_id})
    audit.record_for(ctx, AuditAction.UPDATE, "FoodBankCenter", center.id, changes)
    return center


@router.delete("/centers/{center_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_center(
    center_id: str,
    ctx: RequestContext = Depends(get_tenant_context),
):
    """Delete a center that no voucher or redemption points at."""
    ctx.require(Permission.USER_MANAGE)
    center = _load_center(ctx, center_id)

    assigned = ctx.db.scalar(
        select(func.count(Voucher.id)).where(Voucher.food_bank_center_id == center.id)
    )
    redeemed = ctx.db.scalar(
        select(func.count(Redemption.id)).where(Redemption.center_id == center.id)
    )
    _delete_unreferenced(ctx, center, assigned + redeemed > 0, "Center is referenced by vouchers")

    logger.info(f"Center deleted: {center_id} by {ctx.user.id}", extra={"tenant_id": ctx.tenant_id})
    audit.record_for(ctx, AuditAction.DELETE, "FoodBankCenter", center_id)
