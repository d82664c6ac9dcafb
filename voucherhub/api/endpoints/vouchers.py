"""
Voucher Endpoints

Thin HTTP layer over voucherhub.services.vouchers. Every handler receives a
RequestContext whose session is already bound to the request's
organization.

RBAC:
- List / get: VOUCHER_VIEW_ALL, or VOUCHER_VIEW_OWN for the own agency
- Issue: VOUCHER_ISSUE (monthly plan limit applies)
- Redeem / mark unfulfilled: VOUCHER_REDEEM
- Invalidate / delete: same visibility as get
"""
from typing import List

from fastapi import APIRouter, Depends, status

from voucherhub.api.deps import get_tenant_context
from voucherhub.core.context import RequestContext
from voucherhub.schemas.voucher import (
    RedemptionResponse,
    VoucherFilters,
    VoucherIssue,
    VoucherRedeem,
    VoucherRedeemResponse,
    VoucherResponse,
    VoucherUnfulfilled,
)
from voucherhub.services import vouchers as voucher_service

router = APIRouter(prefix="/vouchers", tags=["vouchers"])


@router.get("", response_model=List[VoucherResponse])
def list_vouchers(
    filters: VoucherFilters = Depends(),
    ctx: RequestContext = Depends(get_tenant_context),
):
    """Vouchers of the organization, newest first."""
    return voucher_service.list_vouchers(ctx, filters)


@router.post("", response_model=VoucherResponse, status_code=status.HTTP_201_CREATED)
def issue_voucher(
    data: VoucherIssue,
    ctx: RequestContext = Depends(get_tenant_context),
):
    return voucher_service.issue_voucher(ctx, data)


@router.get("/{voucher_id}", response_model=VoucherResponse)
def get_voucher(
    voucher_id: str,
    ctx: RequestContext = Depends(get_tenant_context),
):
    return voucher_service.get_voucher(ctx, voucher_id)


@router.post("/{voucher_id}/redeem", response_model=VoucherRedeemResponse)
def redeem_voucher(
    voucher_id: str,
    data: VoucherRedeem,
    ctx: RequestContext = Depends(get_tenant_context),
):
    """
    Redeem an issued voucher at a center.

    409 with current_status when the voucher is no longer issued or has
    passed its expiry date.
    """
    voucher, redemption = voucher_service.redeem_voucher(ctx, voucher_id, data)
    return VoucherRedeemResponse(
        voucher=VoucherResponse.model_validate(voucher),
        redemption=RedemptionResponse.model_validate(redemption),
    )


@router.post("/{voucher_id}/invalidate", response_model=VoucherResponse)
def invalidate_voucher(
    voucher_id: str,
    ctx: RequestContext = Depends(get_tenant_context),
):
    return voucher_service.invalidate_voucher(ctx, voucher_id)


@router.patch("/{voucher_id}/unfulfilled", response_model=VoucherResponse)
def mark_unfulfilled(
    voucher_id: str,
    data: VoucherUnfulfilled,
    ctx: RequestContext = Depends(get_tenant_context),
):
    return voucher_service.mark_unfulfilled(ctx, voucher_id, data.reason)


@router.delete("/{voucher_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_voucher(
    voucher_id: str,
    ctx: RequestContext = Depends(get_tenant_context),
):
    """Administrative correction; refused once the voucher is redeemed."""
    voucher_service.delete_voucher(ctx, voucher_id)
    return None
