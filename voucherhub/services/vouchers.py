"""
Voucher Lifecycle

    issued -> redeemed      redeem_voucher()      (+ one Redemption row)
    issued -> expired       invalidate_voucher()
    issued -> unfulfilled   mark_unfulfilled()

All three targets are terminal. A transition out of a terminal state is
a ConflictError carrying the current status, never a silent no-op.
Passing the expiry date does not change the status by itself.

Every transition is a compare-and-set:

    UPDATE vouchers SET status = :target
    WHERE id = :id AND status = 'issued' [AND tenant_id = :tenant]

The tenant predicate is appended by the isolation layer. Whoever gets
rowcount 1 owns the transition; everyone else gets 409. For redemption the
CAS and the Redemption insert share one transaction, and the unique index
on redemptions.voucher_id backs it up.

Every operation takes a RequestContext whose session is already bound to
the tenant. Voucher ids from another tenant simply do not load, so they
surface as VoucherNotFoundError.
"""
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from voucherhub.config import get_settings
from voucherhub.core.context import RequestContext
from voucherhub.core.exceptions import (
    AgencyNotFoundError,
    CenterNotFoundError,
    ClientNotFoundError,
    ConflictError,
    InvalidInputError,
    PermissionDenied,
    VoucherNotFoundError,
)
from voucherhub.core.permissions import Permission, can_view_voucher, require_any_permission
from voucherhub.core.rls import elevated
from voucherhub.core.security import random_string
from voucherhub.models.agency import Agency, FoodBankCenter
from voucherhub.models.audit import AuditAction
from voucherhub.models.client import Client
from voucherhub.models.user import UserRole
from voucherhub.models.voucher import Redemption, Voucher, VoucherStatus
from voucherhub.schemas.voucher import VoucherFilters, VoucherIssue, VoucherRedeem
from voucherhub.services import audit
from voucherhub.services.subscription import ResourceKind, enforce_limit
from voucherhub.utils.clock import as_naive_utc, utcnow
from voucherhub.utils.logging import get_logger

logger = get_logger(__name__)

# No 0/O or 1/I, read aloud over the phone
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_ATTEMPTS = 20

RECENT_WINDOW = timedelta(days=180)
RECENT_VOUCHER_THRESHOLD = 3
MORE_THAN_3_MESSAGE = (
    "This client has received 3 or more vouchers in the last 6 months. "
    "Please provide a reason for issuing another voucher."
)


def generate_voucher_code() -> str:
    """E-XXXXX-XXXXXX"""
    return f"E-{random_string(CODE_ALPHABET, 5)}-{random_string(CODE_ALPHABET, 6)}"


def _unique_voucher_code(ctx: RequestContext) -> str:
    # Codes are unique across tenants, so the check looks at every tenant
    with elevated(ctx.db):
        for _ in range(CODE_ATTEMPTS):
            code = generate_voucher_code()
            taken = ctx.db.scalar(select(Voucher.id).where(Voucher.code == code))
            if taken is None:
                return code
    logger.error(f"No free voucher code after {CODE_ATTEMPTS} attempts")
    raise ConflictError("Could not generate a unique voucher code")


def _load_voucher(ctx: RequestContext, voucher_id: str) -> Voucher:
    voucher = ctx.db.get(Voucher, voucher_id)
    if voucher is None:
        raise VoucherNotFoundError()
    return voucher


def _load_visible_voucher(ctx: RequestContext, voucher_id: str) -> Voucher:
    """Load a voucher the caller may see: view-all, or view-own on their agency."""
    require_any_permission(ctx.user, Permission.VOUCHER_VIEW_ALL, Permission.VOUCHER_VIEW_OWN)
    voucher = _load_voucher(ctx, voucher_id)
    if not can_view_voucher(ctx.user, voucher):
        raise PermissionDenied()
    return voucher


def _current_status(ctx: RequestContext, voucher_id: str) -> Optional[str]:
    status = ctx.db.scalar(select(Voucher.status).where(Voucher.id == voucher_id))
    return status.value if status is not None else None


def _not_issued(voucher_id: str, status: Optional[str]) -> ConflictError:
    return ConflictError(f"Voucher is {status}, not issued", current_status=status)


def _compare_and_set(ctx: RequestContext, voucher_id: str, target: VoucherStatus, **values) -> bool:
    """Flip issued -> target. True when this call won the transition."""
    result = ctx.db.execute(
        update(Voucher)
        .where(Voucher.id == voucher_id, Voucher.status == VoucherStatus.ISSUED)
        .values(status=target, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _finish_transition(ctx: RequestContext, voucher: Voucher, target: VoucherStatus, **values) -> Voucher:
    voucher_id = voucher.id
    if not _compare_and_set(ctx, voucher_id, target, **values):
        ctx.db.rollback()
        raise _not_issued(voucher_id, _current_status(ctx, voucher_id))
    ctx.db.commit()
    ctx.db.refresh(voucher)
    return voucher


def count_recent_vouchers(ctx: RequestContext, client_id: str) -> int:
    since = utcnow() - RECENT_WINDOW
    return ctx.db.scalar(
        select(func.count(Voucher.id)).where(
            Voucher.client_id == client_id,
            Voucher.issue_date >= since,
        )
    ) or 0


def issue_voucher(ctx: RequestContext, data: VoucherIssue) -> Voucher:
    """
    Create a voucher in state issued.

    Checks, in order: permission, client/agency/center belong to the
    tenant, third_party issues only for their own agency, dates, the
    three-in-six-months rule, then the monthly plan limit.
    """
    ctx.require(Permission.VOUCHER_ISSUE)
    db = ctx.db

    client = db.get(Client, data.client_id)
    if client is None:
        raise ClientNotFoundError()
    agency = db.get(Agency, data.agency_id)
    if agency is None:
        raise AgencyNotFoundError()
    if ctx.user.role == UserRole.THIRD_PARTY and ctx.user.agency_id != agency.id:
        raise PermissionDenied("You can only issue vouchers for your own agency")
    if data.food_bank_center_id and db.get(FoodBankCenter, data.food_bank_center_id) is None:
        raise CenterNotFoundError()

    issue_date = as_naive_utc(data.issue_date) or utcnow()
    expiry_date = as_naive_utc(data.expiry_date) or issue_date + timedelta(days=get_settings().VOUCHER_VALIDITY_DAYS)
    if expiry_date <= issue_date:
        raise InvalidInputError("Expiry date must be after the issue date")

    reason = (data.more_than_3_reason or "").strip() or None
    if reason is None and count_recent_vouchers(ctx, client.id) >= RECENT_VOUCHER_THRESHOLD:
        raise InvalidInputError(MORE_THAN_3_MESSAGE)

    enforce_limit(db, ctx.tenant_id, ResourceKind.VOUCHER_PER_MONTH, ctx.is_platform_admin)

    voucher = Voucher(
        tenant_id=ctx.tenant_id,
        code=_unique_voucher_code(ctx),
        client_id=client.id,
        agency_id=agency.id,
        food_bank_center_id=data.food_bank_center_id,
        issued_by_id=ctx.user.id,
        status=VoucherStatus.ISSUED,
        issue_date=issue_date,
        expiry_date=expiry_date,
        notes=data.notes,
        collection_notes=data.collection_notes,
        more_than_3_reason=reason,
    )
    db.add(voucher)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Voucher insert rejected: {e}")
        raise ConflictError("Voucher code already in use, please retry")

    logger.info(f"Voucher {voucher.code} issued", extra={"tenant_id": ctx.tenant_id, "user_id": ctx.user.id})
    audit.record_for(ctx, AuditAction.ISSUE_VOUCHER, "Voucher", voucher.id, {
        "code": voucher.code,
        "client_id": client.id,
        "agency_id": agency.id,
    })
    return voucher


def redeem_voucher(ctx: RequestContext, voucher_id: str, data: VoucherRedeem):
    """
    issued -> redeemed, plus the Redemption row, in one transaction.

    Returns (voucher, redemption). Under concurrent attempts exactly one
    caller succeeds; the rest get ConflictError.
    """
    ctx.require(Permission.VOUCHER_REDEEM)
    db = ctx.db

    voucher = _load_voucher(ctx, voucher_id)
    if voucher.status != VoucherStatus.ISSUED:
        raise _not_issued(voucher.id, voucher.status.value)
    now = utcnow()
    if voucher.expiry_date <= now:
        raise ConflictError("Voucher has expired", current_status=voucher.status.value)

    center = db.get(FoodBankCenter, data.center_id)
    if center is None:
        raise CenterNotFoundError()

    voucher_id = voucher.id
    try:
        if not _compare_and_set(ctx, voucher_id, VoucherStatus.REDEEMED):
            db.rollback()
            raise _not_issued(voucher_id, _current_status(ctx, voucher_id))
        redemption = Redemption(
            tenant_id=ctx.tenant_id,
            voucher_id=voucher_id,
            redeemed_by_id=ctx.user.id,
            center_id=center.id,
            redeemed_at=now,
            failure_reason=data.failure_reason,
            weight_kg=data.weight_kg,
        )
        db.add(redemption)
        db.commit()
    except IntegrityError as e:
        # Unique redemptions.voucher_id: someone else got there first
        db.rollback()
        logger.warning(f"Redemption insert rejected for voucher {voucher_id}: {e}")
        raise ConflictError("Voucher already redeemed", current_status=VoucherStatus.REDEEMED.value)

    db.refresh(voucher)
    logger.info(f"Voucher {voucher.code} redeemed", extra={"tenant_id": ctx.tenant_id, "user_id": ctx.user.id})
    audit.record_for(ctx, AuditAction.REDEEM_VOUCHER, "Voucher", voucher.id, {
        "center_id": center.id,
        "failure_reason": data.failure_reason,
        "weight_kg": str(data.weight_kg) if data.weight_kg is not None else None,
    })
    return voucher, redemption


def invalidate_voucher(ctx: RequestContext, voucher_id: str) -> Voucher:
    """issued -> expired. The manual way to retire an unused voucher."""
    voucher = _load_visible_voucher(ctx, voucher_id)
    if voucher.status != VoucherStatus.ISSUED:
        raise _not_issued(voucher.id, voucher.status.value)

    voucher = _finish_transition(ctx, voucher, VoucherStatus.EXPIRED)
    audit.record_for(ctx, AuditAction.UPDATE, "Voucher", voucher.id, {"status": VoucherStatus.EXPIRED.value})
    return voucher


def mark_unfulfilled(ctx: RequestContext, voucher_id: str, reason: Optional[str] = None) -> Voucher:
    """issued -> unfulfilled, e.g. the client never came to collect."""
    ctx.require(Permission.VOUCHER_REDEEM)
    voucher = _load_voucher(ctx, voucher_id)
    if voucher.status != VoucherStatus.ISSUED:
        raise _not_issued(voucher.id, voucher.status.value)

    reason = (reason or "").strip() or None
    voucher = _finish_transition(ctx, voucher, VoucherStatus.UNFULFILLED, unfulfilled_reason=reason)
    audit.record_for(ctx, AuditAction.UNFULFILLED_VOUCHER, "Voucher", voucher.id, {
        "status": VoucherStatus.UNFULFILLED.value,
        "unfulfilled_reason": reason,
    })
    return voucher


def delete_voucher(ctx: RequestContext, voucher_id: str) -> None:
    """
    Administrative correction. Refused once a Redemption exists.
    """
    db = ctx.db
    voucher = _load_visible_voucher(ctx, voucher_id)

    redeemed = db.scalar(
        select(func.count(Redemption.id)).where(Redemption.voucher_id == voucher.id)
    )
    if redeemed:
        raise ConflictError(
            "Cannot delete a voucher that has been redeemed",
            current_status=voucher.status.value,
        )

    code = voucher.code
    try:
        result = db.execute(
            delete(Voucher)
            .where(Voucher.id == voucher.id, Voucher.status != VoucherStatus.REDEEMED)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise ConflictError(
                "Cannot delete a voucher that has been redeemed",
                current_status=_current_status(ctx, voucher_id),
            )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(
            "Cannot delete a voucher that has been redeemed",
            current_status=VoucherStatus.REDEEMED.value,
        )
    db.expunge(voucher)

    audit.record_for(ctx, AuditAction.DELETE, "Voucher", voucher_id, {"code": code})


def get_voucher(ctx: RequestContext, voucher_id: str) -> Voucher:
    return _load_visible_voucher(ctx, voucher_id)


def list_vouchers(ctx: RequestContext, filters: Optional[VoucherFilters] = None) -> List[Voucher]:
    """
    Vouchers of the tenant, newest first. third_party users only ever see
    their own agency's vouchers.
    """
    require_any_permission(ctx.user, Permission.VOUCHER_VIEW_ALL, Permission.VOUCHER_VIEW_OWN)
    filters = filters or VoucherFilters()

    query = ctx.db.query(Voucher)
    if Permission.VOUCHER_VIEW_ALL not in ctx.permissions:
        query = query.filter(Voucher.agency_id == ctx.user.agency_id)

    now = utcnow()
    if filters.validity == "valid":
        query = query.filter(Voucher.status == VoucherStatus.ISSUED, Voucher.expiry_date > now)
    elif filters.validity == "expired":
        query = query.filter(or_(
            Voucher.status == VoucherStatus.EXPIRED,
            and_(Voucher.status == VoucherStatus.ISSUED, Voucher.expiry_date <= now),
        ))
    elif filters.status is not None:
        query = query.filter(Voucher.status == filters.status)

    if filters.client_id:
        query = query.filter(Voucher.client_id == filters.client_id)
    if filters.code:
        query = query.filter(Voucher.code == filters.code.strip().upper())
    if filters.from_date:
        query = query.filter(Voucher.issue_date >= as_naive_utc(filters.from_date))
    if filters.to_date:
        query = query.filter(Voucher.issue_date <= as_naive_utc(filters.to_date))

    return query.order_by(Voucher.created_at.desc()).all()


def list_redemptions(ctx: RequestContext, from_date=None, to_date=None) -> List[Redemption]:
    require_any_permission(ctx.user, Permission.VOUCHER_REDEEM, Permission.VOUCHER_VIEW_ALL)
    query = ctx.db.query(Redemption)
    if from_date:
        query = query.filter(Redemption.redeemed_at >= as_naive_utc(from_date))
    if to_date:
        query = query.filter(Redemption.redeemed_at <= as_naive_utc(to_date))
    return query.order_by(Redemption.redeemed_at.desc()).all()
