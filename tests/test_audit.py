import logging

from voucherhub.core.rls import RlsScope, bind_platform_context
from voucherhub.models import AuditAction, AuditLog, VoucherStatus
from voucherhub.schemas.voucher import VoucherIssue, VoucherRedeem
from voucherhub.services import audit
from voucherhub.services import vouchers as voucher_service


def _audit_rows(make_session):
    db = make_session()
    bind_platform_context(db)
    return db.query(AuditLog).order_by(AuditLog.created_at).all()


def test_record_writes_entry_in_scope(org, make_session) -> None:
    audit.record(RlsScope.tenant(org.tenant.id), org.admin.id, AuditAction.UPDATE, "Tenant",
                 org.tenant.id, {"primary_color": "#112233"})

    rows = _audit_rows(make_session)
    assert len(rows) == 1
    assert rows[0].tenant_id == org.tenant.id
    assert rows[0].user_id == org.admin.id
    assert rows[0].action == AuditAction.UPDATE
    assert rows[0].changes == {"primary_color": "#112233"}


def test_platform_entries_have_no_tenant(make_session) -> None:
    audit.record(RlsScope.platform(), "u-root", AuditAction.CREATE, "SubscriptionPlan", "p-1")
    rows = _audit_rows(make_session)
    assert rows[0].tenant_id is None


def test_transitions_are_audited(org, context_for, make_session) -> None:
    ctx = context_for(org.third_party, org.tenant)
    voucher = voucher_service.issue_voucher(ctx, VoucherIssue(client_id=org.client.id, agency_id=org.agency.id))
    voucher_service.redeem_voucher(context_for(org.back_office, org.tenant), voucher.id,
                                   VoucherRedeem(center_id=org.center.id))

    actions = [(row.action, row.entity_id) for row in _audit_rows(make_session)]
    assert (AuditAction.ISSUE_VOUCHER, voucher.id) in actions
    assert (AuditAction.REDEEM_VOUCHER, voucher.id) in actions


def test_audit_failure_does_not_fail_the_operation(org, context_for, make_session, monkeypatch, caplog) -> None:
    def broken(**kwargs):
        raise RuntimeError("audit store is down")

    monkeypatch.setattr(audit, "AuditLog", broken)
    ctx = context_for(org.third_party, org.tenant)

    with caplog.at_level(logging.ERROR, logger="voucherhub.audit"):
        voucher = voucher_service.issue_voucher(
            ctx, VoucherIssue(client_id=org.client.id, agency_id=org.agency.id),
        )

    assert voucher.status == VoucherStatus.ISSUED
    assert "Failed to write audit log" in caplog.text
    assert _audit_rows(make_session) == []


def test_audit_write_outside_scope_is_swallowed(org, other_org, make_session, monkeypatch, caplog) -> None:
    # A tenant-bound audit session refuses rows for another tenant
    original = audit.AuditLog

    def cross_tenant(**kwargs):
        kwargs["tenant_id"] = other_org.tenant.id
        return original(**kwargs)

    monkeypatch.setattr(audit, "AuditLog", cross_tenant)
    with caplog.at_level(logging.ERROR, logger="voucherhub.audit"):
        audit.record(RlsScope.tenant(org.tenant.id), org.admin.id, AuditAction.DELETE, "Voucher", "v-1")

    assert _audit_rows(make_session) == []
    assert "Failed to write audit log" in caplog.text
