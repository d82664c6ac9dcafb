"""
Reporting Service

Voucher activity over a date range, for the organization the context is
bound to. Counts come from grouped queries, so the isolation criteria
apply to them like to any other read.

Vouchers are counted by issue date, redemptions by redemption date.
"""
from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy import func

from voucherhub.core.context import RequestContext
from voucherhub.core.exceptions import InvalidInputError
from voucherhub.core.permissions import Permission
from voucherhub.models.agency import Agency, FoodBankCenter
from voucherhub.models.voucher import Redemption, Voucher, VoucherStatus
from voucherhub.schemas.report import AgencyActivity, CenterActivity, ReportResponse
from voucherhub.utils.clock import utcnow

DEFAULT_RANGE = timedelta(days=30)


def report_range(from_date: Optional[date], to_date: Optional[date]):
    """
    Resolve the requested days into a half-open datetime window.

    Both ends are inclusive days; a missing start means 30 days before
    the end, a missing end means today.
    """
    to_date = to_date or utcnow().date()
    from_date = from_date or to_date - DEFAULT_RANGE
    if from_date > to_date:
        raise InvalidInputError("From date must be on or before to date")
    start = datetime.combine(from_date, time.min)
    end = datetime.combine(to_date + timedelta(days=1), time.min)
    return from_date, to_date, start, end


def build_report(ctx: RequestContext, from_date: Optional[date] = None,
                 to_date: Optional[date] = None) -> ReportResponse:
    ctx.require(Permission.REPORTS_READ)
    from_date, to_date, start, end = report_range(from_date, to_date)
    db = ctx.db

    by_status = dict(
        db.query(Voucher.status, func.count(Voucher.id))
        .filter(Voucher.issue_date >= start, Voucher.issue_date < end)
        .group_by(Voucher.status)
        .all()
    )

    agency_names = dict(db.query(Agency.id, Agency.name).all())
    agency_rows = {}
    for agency_id, voucher_status, count in (
        db.query(Voucher.agency_id, Voucher.status, func.count(Voucher.id))
        .filter(Voucher.issue_date >= start, Voucher.issue_date < end)
        .group_by(Voucher.agency_id, Voucher.status)
        .all()
    ):
        row = agency_rows.setdefault(agency_id, AgencyActivity(
            agency_id=agency_id,
            agency_name=agency_names.get(agency_id, "Unknown"),
        ))
        row.issued += count
        if voucher_status == VoucherStatus.REDEEMED:
            row.redeemed += count

    center_names = dict(db.query(FoodBankCenter.id, FoodBankCenter.name).all())
    by_center = [
        CenterActivity(
            center_id=center_id,
            center_name=center_names.get(center_id, "Unknown"),
            redeemed=count,
        )
        for center_id, count in (
            db.query(Redemption.center_id, func.count(Redemption.id))
            .filter(Redemption.redeemed_at >= start, Redemption.redeemed_at < end)
            .group_by(Redemption.center_id)
            .all()
        )
    ]

    return ReportResponse(
        from_date=from_date,
        to_date=to_date,
        issued_count=sum(by_status.values()),
        redeemed_count=by_status.get(VoucherStatus.REDEEMED, 0),
        expired_count=by_status.get(VoucherStatus.EXPIRED, 0),
        unfulfilled_count=by_status.get(VoucherStatus.UNFULFILLED, 0),
        outstanding_count=by_status.get(VoucherStatus.ISSUED, 0),
        by_agency=sorted(agency_rows.values(), key=lambda r: (-(r.issued + r.redeemed), r.agency_name)),
        by_center=sorted(by_center, key=lambda r: (-r.redeemed, r.center_name)),
    )
