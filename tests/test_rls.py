import threading
from contextlib import contextmanager
from types import SimpleNamespace

import pytest
from sqlalchemy import func, insert, select, text, update
from sqlalchemy.exc import DBAPIError

from voucherhub.core.exceptions import RlsBindingError, TenantIsolationError
from voucherhub.core.rls import (
    ORGANIZATION_SETTING,
    ROLE_SETTING,
    RlsScope,
    ScopeKind,
    _apply_settings,
    _policy_statements,
    bind_platform_context,
    bind_tenant_context,
    current_scope,
    elevated,
    install_row_security,
)
from voucherhub.database import SessionLocal
from voucherhub.models import Agency, Client, Redemption, Tenant, User, UserSession, Voucher, VoucherStatus


def _seed_two_tenants(factory, org, other_org):
    factory.voucher(org.tenant, org.client, org.agency, org.admin)
    factory.voucher(org.tenant, org.client, org.agency, org.admin)
    factory.voucher(other_org.tenant, other_org.client, other_org.agency, other_org.admin)


def test_tenant_reads_are_disjoint(factory, org, other_org, make_session) -> None:
    _seed_two_tenants(factory, org, other_org)

    db_a = make_session()
    bind_tenant_context(db_a, org.tenant.id)
    db_b = make_session()
    bind_tenant_context(db_b, other_org.tenant.id)

    ids_a = {v.id for v in db_a.query(Voucher).all()}
    ids_b = {v.id for v in db_b.query(Voucher).all()}

    assert len(ids_a) == 2
    assert len(ids_b) == 1
    assert ids_a.isdisjoint(ids_b)
    assert {v.tenant_id for v in db_a.query(Voucher).all()} == {org.tenant.id}


def test_explicit_predicate_cannot_widen_scope(factory, org, other_org, make_session) -> None:
    _seed_two_tenants(factory, org, other_org)

    db = make_session()
    bind_tenant_context(db, org.tenant.id)
    leaked = db.query(Voucher).filter(Voucher.tenant_id == other_org.tenant.id).all()
    assert leaked == []
    assert db.get(Client, other_org.client.id) is None


def test_core_style_select_and_count_are_scoped(factory, org, other_org, make_session) -> None:
    _seed_two_tenants(factory, org, other_org)

    db = make_session()
    bind_tenant_context(db, other_org.tenant.id)
    assert db.scalar(select(func.count(Voucher.id))) == 1
    assert db.scalars(select(Agency.id)).all() == [other_org.agency.id]


def test_tenant_table_shows_only_own_row(org, other_org, make_session) -> None:
    db = make_session()
    bind_tenant_context(db, org.tenant.id)
    assert [t.id for t in db.query(Tenant).all()] == [org.tenant.id]


def test_platform_scope_sees_everything(factory, org, other_org, make_session) -> None:
    _seed_two_tenants(factory, org, other_org)

    db = make_session()
    bind_platform_context(db)
    assert db.query(Voucher).count() == 3


def test_unbound_session_fails_closed(org, make_session) -> None:
    db = make_session()
    with pytest.raises(TenantIsolationError):
        db.query(Voucher).all()
    with pytest.raises(TenantIsolationError):
        db.scalar(select(func.count(User.id)))


def test_unbound_session_may_read_unscoped_tables(make_session) -> None:
    db = make_session()
    assert db.query(UserSession).all() == []


def test_new_rows_are_stamped_with_bound_tenant(org, make_session) -> None:
    db = make_session()
    bind_tenant_context(db, org.tenant.id)
    agency = Agency(name="Stamped")
    db.add(agency)
    db.commit()
    assert agency.tenant_id == org.tenant.id


def test_insert_for_other_tenant_is_rejected(org, other_org, make_session) -> None:
    db = make_session()
    bind_tenant_context(db, org.tenant.id)
    db.add(Agency(tenant_id=other_org.tenant.id, name="Smuggled"))
    with pytest.raises(TenantIsolationError):
        db.flush()
    db.rollback()

    check = make_session()
    bind_platform_context(check)
    assert check.query(Agency).filter(Agency.name == "Smuggled").count() == 0


def test_moving_a_row_to_another_tenant_is_rejected(org, other_org, make_session) -> None:
    db = make_session()
    bind_tenant_context(db, org.tenant.id)
    agency = db.get(Agency, org.agency.id)
    agency.tenant_id = other_org.tenant.id
    with pytest.raises(TenantIsolationError):
        db.flush()


def test_unbound_write_is_rejected(org, make_session) -> None:
    db = make_session()
    db.add(Agency(tenant_id=org.tenant.id, name="Nobody bound me"))
    with pytest.raises(TenantIsolationError):
        db.flush()


def test_tenant_cannot_create_tenants(org, make_session) -> None:
    db = make_session()
    bind_tenant_context(db, org.tenant.id)
    db.add(Tenant(name="Rogue", slug="rogue"))
    with pytest.raises(TenantIsolationError):
        db.flush()


def test_bulk_update_is_restricted_to_scope(factory, org, other_org, make_session) -> None:
    _seed_two_tenants(factory, org, other_org)

    db = make_session()
    bind_tenant_context(db, org.tenant.id)
    result = db.execute(
        update(Voucher)
        .values(status=VoucherStatus.EXPIRED)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    assert result.rowcount == 2

    check = make_session()
    bind_platform_context(check)
    statuses = {
        v.tenant_id: v.status for v in check.query(Voucher).filter(Voucher.tenant_id == other_org.tenant.id)
    }
    assert statuses == {other_org.tenant.id: VoucherStatus.ISSUED}


def test_elevated_restores_previous_scope(org, make_session) -> None:
    db = make_session()
    scope = bind_tenant_context(db, org.tenant.id)
    with elevated(db):
        assert current_scope(db).is_platform
    assert current_scope(db) == scope

    unbound = make_session()
    with elevated(unbound):
        pass
    assert current_scope(unbound) is None


def test_scope_values() -> None:
    assert RlsScope.tenant("t-1") == RlsScope(ScopeKind.TENANT, "t-1")
    assert RlsScope.platform().is_platform
    with pytest.raises(ValueError):
        RlsScope.tenant("")


# ---------------------------------------------------------------------------
# statements that bypass the mapped classes
# ---------------------------------------------------------------------------

def test_unbound_counts_over_unscoped_tables(make_session) -> None:
    db = make_session()
    assert db.query(UserSession).count() == 0
    assert db.scalar(select(func.count()).select_from(select(UserSession.id).subquery())) == 0


def test_unbound_count_over_scoped_subquery_fails_closed(org, make_session) -> None:
    db = make_session()
    with pytest.raises(TenantIsolationError):
        db.query(Voucher).count()
    with pytest.raises(TenantIsolationError):
        db.scalar(select(func.count()).select_from(select(Voucher.id).subquery()))


def test_scoped_subquery_count_is_filtered(factory, org, other_org, make_session) -> None:
    _seed_two_tenants(factory, org, other_org)
    db = make_session()
    bind_tenant_context(db, org.tenant.id)
    assert db.query(Voucher).count() == 2


def test_table_level_select_is_refused(factory, org, other_org, make_session) -> None:
    _seed_two_tenants(factory, org, other_org)
    db = make_session()
    bind_tenant_context(db, org.tenant.id)
    with pytest.raises(TenantIsolationError):
        db.execute(select(Voucher.__table__)).all()


def test_table_level_update_is_refused(factory, org, other_org, make_session) -> None:
    _seed_two_tenants(factory, org, other_org)
    db = make_session()
    bind_tenant_context(db, org.tenant.id)
    with pytest.raises(TenantIsolationError):
        db.execute(Voucher.__table__.update().values(status="expired"))
    db.rollback()

    check = make_session()
    bind_platform_context(check)
    assert {v.status for v in check.query(Voucher)} == {VoucherStatus.ISSUED}


def test_table_level_delete_is_refused(factory, org, other_org, make_session) -> None:
    _seed_two_tenants(factory, org, other_org)
    db = make_session()
    bind_tenant_context(db, org.tenant.id)
    with pytest.raises(TenantIsolationError):
        db.execute(Voucher.__table__.delete())
    db.rollback()

    check = make_session()
    bind_platform_context(check)
    assert check.query(Voucher).count() == 3


def test_join_to_unmapped_table_is_refused(factory, org, other_org, make_session) -> None:
    _seed_two_tenants(factory, org, other_org)
    redemptions = Redemption.__table__
    db = make_session()
    bind_tenant_context(db, org.tenant.id)
    with pytest.raises(TenantIsolationError):
        db.execute(
            select(Voucher).join(redemptions, redemptions.c.voucher_id == Voucher.id)
        ).all()


def test_bulk_inserts_are_refused(org, other_org, make_session) -> None:
    db = make_session()
    bind_tenant_context(db, org.tenant.id)
    with pytest.raises(TenantIsolationError):
        db.execute(insert(Agency).values(id="a-smuggled", tenant_id=other_org.tenant.id, name="Smuggled"))
    with pytest.raises(TenantIsolationError):
        db.execute(
            Agency.__table__.insert().values(id="a-core", tenant_id=other_org.tenant.id, name="Core")
        )
    db.rollback()

    check = make_session()
    bind_platform_context(check)
    assert check.query(Agency).filter(Agency.name.in_(["Smuggled", "Core"])).count() == 0


def test_raw_sql_needs_platform_scope(factory, org, other_org, make_session) -> None:
    _seed_two_tenants(factory, org, other_org)

    tenant_db = make_session()
    bind_tenant_context(tenant_db, org.tenant.id)
    with pytest.raises(TenantIsolationError):
        tenant_db.execute(text("SELECT id FROM vouchers")).all()

    unbound = make_session()
    with pytest.raises(TenantIsolationError):
        unbound.execute(text("SELECT id FROM vouchers")).all()

    platform_db = make_session()
    bind_platform_context(platform_db)
    assert platform_db.execute(text("SELECT count(*) FROM vouchers")).scalar() == 3
    assert len(platform_db.execute(select(Voucher.__table__)).all()) == 3


# ---------------------------------------------------------------------------
# concurrency
# ---------------------------------------------------------------------------

def test_concurrent_sessions_of_two_tenants_stay_disjoint(factory, org, other_org) -> None:
    _seed_two_tenants(factory, org, other_org)
    tenant_ids = [org.tenant.id, other_org.tenant.id] * 3
    rounds = 5
    start = threading.Barrier(len(tenant_ids))
    problems = []
    lock = threading.Lock()

    def work(worker, tenant_id):
        # One session per worker, all drawing on the shared engine pool
        db = SessionLocal()
        try:
            bind_tenant_context(db, tenant_id)
            start.wait()
            for i in range(rounds):
                vouchers = {v.tenant_id for v in db.query(Voucher).all()}
                db.add(Agency(name=f"Worker {worker}-{i}"))
                db.commit()
                agencies = {a.tenant_id for a in db.query(Agency).all()}
                if vouchers != {tenant_id} or agencies != {tenant_id}:
                    with lock:
                        problems.append((tenant_id, vouchers, agencies))
        except Exception as e:
            with lock:
                problems.append((tenant_id, repr(e)))
        finally:
            db.close()

    threads = [threading.Thread(target=work, args=(n, tid)) for n, tid in enumerate(tenant_ids)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert problems == []
    check = SessionLocal()
    try:
        bind_platform_context(check)
        for tenant_id in (org.tenant.id, other_org.tenant.id):
            # the fixture agency plus three workers times five rounds
            assert check.query(Agency).filter(Agency.tenant_id == tenant_id).count() == 1 + 3 * rounds
    finally:
        check.close()


# ---------------------------------------------------------------------------
# PostgreSQL binding and policies
# ---------------------------------------------------------------------------

class RecordingConnection:
    def __init__(self, dialect="postgresql", fail=False):
        self.dialect = SimpleNamespace(name=dialect)
        self.fail = fail
        self.executed = []

    def execute(self, statement, params=None):
        if self.fail:
            raise DBAPIError(str(statement), params, Exception("permission denied"))
        self.executed.append((str(statement), params))


class RecordingEngine:
    def __init__(self):
        self.connection = RecordingConnection()

    @contextmanager
    def begin(self):
        yield self.connection


def test_tenant_scope_is_set_transaction_local() -> None:
    conn = RecordingConnection()
    _apply_settings(conn, RlsScope.tenant("t-1"))

    sql, params = conn.executed[0]
    assert "set_config(:org_key, :org, true)" in sql
    assert "set_config(:role_key, :role, true)" in sql
    assert params == {
        "org_key": ORGANIZATION_SETTING,
        "org": "t-1",
        "role_key": ROLE_SETTING,
        "role": "tenant",
    }


def test_platform_scope_sets_role_only() -> None:
    conn = RecordingConnection()
    _apply_settings(conn, RlsScope.platform())
    assert conn.executed[0][1]["org"] == ""
    assert conn.executed[0][1]["role"] == "super_admin"


def test_settings_are_skipped_off_postgresql() -> None:
    conn = RecordingConnection(dialect="sqlite", fail=True)
    _apply_settings(conn, RlsScope.tenant("t-1"))
    assert conn.executed == []


def test_failed_binding_aborts() -> None:
    with pytest.raises(RlsBindingError) as exc_info:
        _apply_settings(RecordingConnection(fail=True), RlsScope.tenant("t-1"))
    assert exc_info.value.status_code == 503


def test_policy_statements() -> None:
    statements = _policy_statements("vouchers", "tenant_id")

    assert statements[:3] == [
        "ALTER TABLE vouchers ENABLE ROW LEVEL SECURITY",
        "ALTER TABLE vouchers FORCE ROW LEVEL SECURITY",
        "DROP POLICY IF EXISTS tenant_isolation ON vouchers",
    ]
    policy = statements[3]
    assert policy.startswith("CREATE POLICY tenant_isolation ON vouchers USING (")
    assert "WITH CHECK (" in policy
    assert "tenant_id = current_setting('app.current_organization', true)" in policy
    assert "current_setting('app.current_role', true) = 'super_admin'" in policy


def test_install_row_security_covers_every_scoped_table() -> None:
    engine = RecordingEngine()
    install_row_security(engine)

    executed = [sql for sql, _ in engine.connection.executed]
    enabled = {
        sql.split()[2] for sql in executed if sql.endswith("ENABLE ROW LEVEL SECURITY")
    }
    assert enabled == {
        "tenants", "users", "agencies", "food_bank_centers", "clients",
        "vouchers", "redemptions", "audit_logs",
    }
    assert any("ON tenants USING (" in sql and "OR id = current_setting" in sql for sql in executed)
    assert len(executed) == 4 * len(enabled)
