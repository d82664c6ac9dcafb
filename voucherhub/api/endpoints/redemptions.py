"""
Redemption Endpoints

Read-only history of redeemed vouchers, for back-office reporting.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from voucherhub.api.deps import get_tenant_context
from voucherhub.core.context import RequestContext
from voucherhub.schemas.voucher import RedemptionResponse
from voucherhub.services import vouchers as voucher_service

router = APIRouter(prefix="/redemptions", tags=["vouchers"])


@router.get("", response_model=List[RedemptionResponse])
def list_redemptions(
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
    ctx: RequestContext = Depends(get_tenant_context),
):
    return voucher_service.list_redemptions(ctx, from_date, to_date)
