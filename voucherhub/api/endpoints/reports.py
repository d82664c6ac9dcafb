"""
Report Endpoints

RBAC: REPORTS_READ (tenant admins).
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from voucherhub.api.deps import get_tenant_context
from voucherhub.core.context import RequestContext
from voucherhub.schemas.report import ReportResponse
from voucherhub.services import reports as report_service

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("", response_model=ReportResponse)
def get_report(
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    ctx: RequestContext = Depends(get_tenant_context),
):
    """Voucher activity over a date range, per agency and per center."""
    return report_service.build_report(ctx, from_date, to_date)
