import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from voucherhub.core.exceptions import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    PermissionDenied,
    VoucherNotFoundError,
)
from voucherhub.core.rls import bind_platform_context
from voucherhub.models import Redemption, Voucher, VoucherStatus
from voucherhub.schemas.voucher import VoucherFilters, VoucherIssue, VoucherRedeem
from voucherhub.services import vouchers as voucher_service
from voucherhub.services.vouchers import MORE_THAN_3_MESSAGE, generate_voucher_code
from voucherhub.utils.clock import utcnow


def _platform_view(make_session):
    db = make_session()
    bind_platform_context(db)
    return db


def _redemptions_for(make_session, voucher_id):
    db = _platform_view(make_session)
    return db.query(Redemption).filter(Redemption.voucher_id == voucher_id).all()


def _status_of(make_session, voucher_id):
    return _platform_view(make_session).get(Voucher, voucher_id).status


@pytest.fixture
def issued(factory, org):
    return factory.voucher(org.tenant, org.client, org.agency, org.third_party)


# ---------------------------------------------------------------------------
# issue
# ---------------------------------------------------------------------------

def test_issue_creates_issued_voucher_with_defaults(org, context_for) -> None:
    ctx = context_for(org.third_party, org.tenant)
    voucher = voucher_service.issue_voucher(ctx, VoucherIssue(
        client_id=org.client.id,
        agency_id=org.agency.id,
        food_bank_center_id=org.center.id,
        notes="Two adults, one child",
    ))

    assert voucher.status == VoucherStatus.ISSUED
    assert voucher.tenant_id == org.tenant.id
    assert voucher.issued_by_id == org.third_party.id
    assert voucher.expiry_date - voucher.issue_date == timedelta(days=28)
    assert voucher.code.startswith("E-")


def test_generated_codes_have_expected_shape() -> None:
    code = generate_voucher_code()
    prefix, first, second = code.split("-")
    assert prefix == "E"
    assert len(first) == 5 and len(second) == 6
    assert not set(first + second) & set("01IO")


def test_third_party_issues_only_for_own_agency(factory, org, context_for) -> None:
    other_agency = factory.agency(org.tenant)
    ctx = context_for(org.third_party, org.tenant)
    with pytest.raises(PermissionDenied):
        voucher_service.issue_voucher(ctx, VoucherIssue(client_id=org.client.id, agency_id=other_agency.id))


def test_back_office_cannot_issue(org, context_for) -> None:
    ctx = context_for(org.back_office, org.tenant)
    with pytest.raises(PermissionDenied):
        voucher_service.issue_voucher(ctx, VoucherIssue(client_id=org.client.id, agency_id=org.agency.id))


def test_issue_for_other_tenants_client_is_not_found(org, other_org, context_for) -> None:
    ctx = context_for(org.admin, org.tenant)
    with pytest.raises(NotFoundError):
        voucher_service.issue_voucher(ctx, VoucherIssue(client_id=other_org.client.id, agency_id=org.agency.id))


def test_expiry_must_follow_issue_date(org, context_for) -> None:
    ctx = context_for(org.admin, org.tenant)
    now = utcnow()
    with pytest.raises(InvalidInputError):
        voucher_service.issue_voucher(ctx, VoucherIssue(
            client_id=org.client.id,
            agency_id=org.agency.id,
            issue_date=now,
            expiry_date=now - timedelta(days=1),
        ))


def test_fourth_voucher_in_six_months_needs_a_reason(factory, org, context_for) -> None:
    for days_ago in (10, 50, 100):
        factory.voucher(org.tenant, org.client, org.agency, org.admin,
                        issue_date=utcnow() - timedelta(days=days_ago))
    ctx = context_for(org.third_party, org.tenant)

    with pytest.raises(InvalidInputError) as exc_info:
        voucher_service.issue_voucher(ctx, VoucherIssue(client_id=org.client.id, agency_id=org.agency.id))
    assert exc_info.value.detail == MORE_THAN_3_MESSAGE

    voucher = voucher_service.issue_voucher(ctx, VoucherIssue(
        client_id=org.client.id,
        agency_id=org.agency.id,
        more_than_3_reason="Benefits delayed",
    ))
    assert voucher.more_than_3_reason == "Benefits delayed"


def test_old_vouchers_do_not_trigger_the_reason_rule(factory, org, context_for) -> None:
    for days_ago in (200, 300, 400):
        factory.voucher(org.tenant, org.client, org.agency, org.admin,
                        issue_date=utcnow() - timedelta(days=days_ago))
    ctx = context_for(org.third_party, org.tenant)
    voucher = voucher_service.issue_voucher(ctx, VoucherIssue(client_id=org.client.id, agency_id=org.agency.id))
    assert voucher.status == VoucherStatus.ISSUED


# ---------------------------------------------------------------------------
# redeem
# ---------------------------------------------------------------------------

def test_redeem_creates_exactly_one_redemption(org, issued, context_for, make_session) -> None:
    ctx = context_for(org.back_office, org.tenant)
    voucher, redemption = voucher_service.redeem_voucher(
        ctx, issued.id, VoucherRedeem(center_id=org.center.id, weight_kg=Decimal("12.50")),
    )

    assert voucher.status == VoucherStatus.REDEEMED
    assert redemption.voucher_id == issued.id
    assert redemption.redeemed_by_id == org.back_office.id
    assert redemption.tenant_id == org.tenant.id
    assert len(_redemptions_for(make_session, issued.id)) == 1


def test_second_redeem_conflicts_and_adds_nothing(org, issued, context_for, make_session) -> None:
    data = VoucherRedeem(center_id=org.center.id)
    voucher_service.redeem_voucher(context_for(org.back_office, org.tenant), issued.id, data)

    with pytest.raises(ConflictError) as exc_info:
        voucher_service.redeem_voucher(context_for(org.admin, org.tenant), issued.id, data)

    assert exc_info.value.status_code == 409
    assert exc_info.value.current_status == "redeemed"
    assert len(_redemptions_for(make_session, issued.id)) == 1


def test_interleaved_redeems_only_one_wins(org, issued, context_for, make_session) -> None:
    """Both callers load the voucher while it is still issued."""
    first = context_for(org.back_office, org.tenant)
    second = context_for(org.admin, org.tenant)
    assert first.db.get(Voucher, issued.id).status == VoucherStatus.ISSUED
    assert second.db.get(Voucher, issued.id).status == VoucherStatus.ISSUED

    data = VoucherRedeem(center_id=org.center.id)
    voucher_service.redeem_voucher(first, issued.id, data)
    with pytest.raises(ConflictError) as exc_info:
        voucher_service.redeem_voucher(second, issued.id, data)

    assert exc_info.value.current_status == "redeemed"
    assert len(_redemptions_for(make_session, issued.id)) == 1
    assert _status_of(make_session, issued.id) == VoucherStatus.REDEEMED


def test_concurrent_redeems_yield_one_success(org, issued, context_for, make_session) -> None:
    contexts = [context_for(org.back_office, org.tenant) for _ in range(4)]
    data = VoucherRedeem(center_id=org.center.id)
    outcomes = []
    lock = threading.Lock()
    start = threading.Barrier(len(contexts))

    def attempt(ctx):
        start.wait()
        try:
            voucher_service.redeem_voucher(ctx, issued.id, data)
            result = "ok"
        except ConflictError:
            result = "conflict"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt, args=(ctx,)) for ctx in contexts]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert sorted(outcomes) == ["conflict", "conflict", "conflict", "ok"]
    assert len(_redemptions_for(make_session, issued.id)) == 1


def test_redeem_past_expiry_conflicts(factory, org, context_for, make_session) -> None:
    stale = factory.voucher(
        org.tenant, org.client, org.agency, org.admin,
        issue_date=utcnow() - timedelta(days=40),
        expiry_date=utcnow() - timedelta(days=12),
    )
    ctx = context_for(org.back_office, org.tenant)
    with pytest.raises(ConflictError) as exc_info:
        voucher_service.redeem_voucher(ctx, stale.id, VoucherRedeem(center_id=org.center.id))

    assert exc_info.value.detail == "Voucher has expired"
    assert _status_of(make_session, stale.id) == VoucherStatus.ISSUED
    assert _redemptions_for(make_session, stale.id) == []


def test_third_party_cannot_redeem(org, issued, context_for) -> None:
    ctx = context_for(org.third_party, org.tenant)
    with pytest.raises(PermissionDenied):
        voucher_service.redeem_voucher(ctx, issued.id, VoucherRedeem(center_id=org.center.id))


def test_redeem_at_other_tenants_center_is_not_found(org, other_org, issued, context_for, make_session) -> None:
    ctx = context_for(org.back_office, org.tenant)
    with pytest.raises(NotFoundError):
        voucher_service.redeem_voucher(ctx, issued.id, VoucherRedeem(center_id=other_org.center.id))
    assert _status_of(make_session, issued.id) == VoucherStatus.ISSUED


def test_cross_tenant_voucher_is_not_found(org, other_org, issued, context_for, make_session) -> None:
    ctx = context_for(other_org.back_office, other_org.tenant)
    with pytest.raises(VoucherNotFoundError):
        voucher_service.redeem_voucher(ctx, issued.id, VoucherRedeem(center_id=other_org.center.id))
    with pytest.raises(VoucherNotFoundError):
        voucher_service.get_voucher(ctx, issued.id)
    assert _status_of(make_session, issued.id) == VoucherStatus.ISSUED


# ---------------------------------------------------------------------------
# invalidate / unfulfilled
# ---------------------------------------------------------------------------

def test_invalidate_issued_voucher(org, issued, context_for) -> None:
    voucher = voucher_service.invalidate_voucher(context_for(org.admin, org.tenant), issued.id)
    assert voucher.status == VoucherStatus.EXPIRED


def test_invalidate_redeemed_voucher_conflicts_and_changes_nothing(org, issued, context_for, make_session) -> None:
    voucher_service.redeem_voucher(
        context_for(org.back_office, org.tenant), issued.id, VoucherRedeem(center_id=org.center.id),
    )

    with pytest.raises(ConflictError) as exc_info:
        voucher_service.invalidate_voucher(context_for(org.admin, org.tenant), issued.id)

    assert exc_info.value.current_status == "redeemed"
    assert _status_of(make_session, issued.id) == VoucherStatus.REDEEMED
    assert len(_redemptions_for(make_session, issued.id)) == 1


def test_mark_unfulfilled_records_reason(org, issued, context_for) -> None:
    voucher = voucher_service.mark_unfulfilled(
        context_for(org.back_office, org.tenant), issued.id, "  Client did not attend  ",
    )
    assert voucher.status == VoucherStatus.UNFULFILLED
    assert voucher.unfulfilled_reason == "Client did not attend"


def test_terminal_states_are_final(org, issued, context_for) -> None:
    voucher_service.mark_unfulfilled(context_for(org.back_office, org.tenant), issued.id)
    with pytest.raises(ConflictError) as exc_info:
        voucher_service.redeem_voucher(
            context_for(org.back_office, org.tenant), issued.id, VoucherRedeem(center_id=org.center.id),
        )
    assert exc_info.value.current_status == "unfulfilled"


def test_third_party_sees_only_own_agency(factory, org, issued, context_for) -> None:
    other_agency = factory.agency(org.tenant)
    foreign = factory.voucher(org.tenant, org.client, other_agency, org.admin)
    ctx = context_for(org.third_party, org.tenant)

    assert voucher_service.get_voucher(ctx, issued.id).id == issued.id
    with pytest.raises(PermissionDenied):
        voucher_service.get_voucher(ctx, foreign.id)
    assert [v.id for v in voucher_service.list_vouchers(ctx)] == [issued.id]


# ---------------------------------------------------------------------------
# delete
# ---------------------------------------------------------------------------

def test_delete_unredeemed_voucher(org, issued, context_for, make_session) -> None:
    voucher_service.delete_voucher(context_for(org.admin, org.tenant), issued.id)
    assert _platform_view(make_session).get(Voucher, issued.id) is None


def test_delete_redeemed_voucher_conflicts(org, issued, context_for, make_session) -> None:
    voucher_service.redeem_voucher(
        context_for(org.back_office, org.tenant), issued.id, VoucherRedeem(center_id=org.center.id),
    )
    with pytest.raises(ConflictError):
        voucher_service.delete_voucher(context_for(org.admin, org.tenant), issued.id)

    assert _status_of(make_session, issued.id) == VoucherStatus.REDEEMED
    assert len(_redemptions_for(make_session, issued.id)) == 1


def test_delete_other_tenants_voucher_is_not_found(org, other_org, issued, context_for, make_session) -> None:
    with pytest.raises(VoucherNotFoundError):
        voucher_service.delete_voucher(context_for(other_org.admin, other_org.tenant), issued.id)
    assert _platform_view(make_session).get(Voucher, issued.id) is not None


# ---------------------------------------------------------------------------
# listing
# ---------------------------------------------------------------------------

def test_list_filters(factory, org, other_org, context_for) -> None:
    fresh = factory.voucher(org.tenant, org.client, org.agency, org.admin)
    lapsed = factory.voucher(
        org.tenant, org.client, org.agency, org.admin,
        issue_date=utcnow() - timedelta(days=60),
        expiry_date=utcnow() - timedelta(days=30),
    )
    invalidated = factory.voucher(org.tenant, org.client, org.agency, org.admin, status=VoucherStatus.EXPIRED)
    factory.voucher(other_org.tenant, other_org.client, other_org.agency, other_org.admin)

    ctx = context_for(org.back_office, org.tenant)
    assert len(voucher_service.list_vouchers(ctx)) == 3
    assert [v.id for v in voucher_service.list_vouchers(ctx, VoucherFilters(validity="valid"))] == [fresh.id]
    assert {v.id for v in voucher_service.list_vouchers(ctx, VoucherFilters(validity="expired"))} == {
        lapsed.id, invalidated.id,
    }
    by_code = voucher_service.list_vouchers(ctx, VoucherFilters(code=fresh.code.lower()))
    assert [v.id for v in by_code] == [fresh.id]


def test_list_redemptions_is_tenant_scoped(org, other_org, factory, context_for) -> None:
    mine = factory.voucher(org.tenant, org.client, org.agency, org.admin)
    theirs = factory.voucher(other_org.tenant, other_org.client, other_org.agency, other_org.admin)
    voucher_service.redeem_voucher(context_for(org.back_office, org.tenant), mine.id,
                                   VoucherRedeem(center_id=org.center.id))
    voucher_service.redeem_voucher(context_for(other_org.back_office, other_org.tenant), theirs.id,
                                   VoucherRedeem(center_id=other_org.center.id))

    redemptions = voucher_service.list_redemptions(context_for(org.back_office, org.tenant))
    assert [r.voucher_id for r in redemptions] == [mine.id]

    with pytest.raises(PermissionDenied):
        voucher_service.list_redemptions(context_for(org.third_party, org.tenant))
