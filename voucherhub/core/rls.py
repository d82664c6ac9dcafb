"""
Row-Level Isolation

Binds a SQLAlchemy Session to an isolation scope and enforces it on every
statement that session runs.

Two scopes exist:

    RlsScope.tenant(id)   rows of tenant-scoped tables are restricted to id
    RlsScope.platform()   no restriction; platform admins plus the two
                          bootstrap lookups (session and tenant resolution)

The scope lives on the Session (session.info), not on a pooled connection.
Whenever the session begins a transaction, the scope is written to that
transaction's own connection with transaction-local set_config() calls, so
a connection returned to the pool never carries a scope into its next
checkout. PostgreSQL row-security policies (install_row_security) read
those settings.

Independently of the database, the session listeners below:
- inject a tenant predicate into every ORM SELECT (with_loader_criteria)
- append it to ORM bulk UPDATE/DELETE statements
- check every flushed tenant-scoped object against the bound tenant
- refuse, under a tenant scope, raw SQL, bulk INSERTs and any statement
  naming a scoped table through Table metadata instead of its mapped class
- refuse statements on scoped tables outright when no scope is bound

SECURITY: There is no fallback path. A failure to bind raises
RlsBindingError and the request aborts.
"""
import enum
from contextlib import contextmanager
from dataclasses import dataclass
from itertools import chain
from typing import Iterator, Optional

from sqlalchemy import TableClause, TextClause, event, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, with_loader_criteria
from sqlalchemy.sql import visitors
from sqlalchemy.sql.util import find_tables

from voucherhub.core.exceptions import RlsBindingError, TenantIsolationError
from voucherhub.database import Base
from voucherhub.models.mixins import TenantScopedMixin
from voucherhub.models.tenant import Tenant
from voucherhub.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)

SCOPE_KEY = "rls_scope"

ORGANIZATION_SETTING = "app.current_organization"
ROLE_SETTING = "app.current_role"
PLATFORM_ROLE = "super_admin"
TENANT_ROLE = "tenant"


class ScopeKind(str, enum.Enum):
    TENANT = "tenant"
    PLATFORM = "platform"


@dataclass(frozen=True)
class RlsScope:
    kind: ScopeKind
    tenant_id: Optional[str] = None

    @classmethod
    def tenant(cls, tenant_id: str) -> "RlsScope":
        if not tenant_id:
            raise ValueError("tenant scope requires a tenant id")
        return cls(ScopeKind.TENANT, tenant_id)

    @classmethod
    def platform(cls) -> "RlsScope":
        return cls(ScopeKind.PLATFORM)

    @property
    def is_platform(self) -> bool:
        return self.kind == ScopeKind.PLATFORM


def _scoped_table_names():
    names = {mapper.local_table.name for mapper in _scoped_mappers()}
    names.add(Tenant.__tablename__)
    return names


def _scoped_mappers():
    return [
        mapper for mapper in Base.registry.mappers
        if issubclass(mapper.class_, TenantScopedMixin)
    ]


def current_scope(db: Session) -> Optional[RlsScope]:
    return db.info.get(SCOPE_KEY)


def _apply_settings(connection, scope: Optional[RlsScope]) -> None:
    """Write the scope onto one connection, for the current transaction only."""
    if connection.dialect.name != "postgresql":
        return
    if scope is None:
        organization, role = "", ""
    elif scope.is_platform:
        organization, role = "", PLATFORM_ROLE
    else:
        organization, role = scope.tenant_id, TENANT_ROLE
    try:
        connection.execute(
            text(
                "SELECT set_config(:org_key, :org, true), "
                "set_config(:role_key, :role, true)"
            ),
            {
                "org_key": ORGANIZATION_SETTING,
                "org": organization,
                "role_key": ROLE_SETTING,
                "role": role,
            },
        )
    except DBAPIError as e:
        logger.error(f"Failed to bind isolation scope: {e}")
        raise RlsBindingError() from e


def _bind(db: Session, scope: Optional[RlsScope]) -> None:
    if scope is None:
        db.info.pop(SCOPE_KEY, None)
    else:
        db.info[SCOPE_KEY] = scope
    # A transaction already in progress gets the new scope on its own connection
    transaction = db.get_transaction()
    if transaction is not None and transaction.is_active:
        _apply_settings(db.connection(), scope)


def bind_tenant_context(db: Session, tenant_id: str) -> RlsScope:
    """Restrict everything ``db`` does to rows owned by ``tenant_id``."""
    scope = RlsScope.tenant(tenant_id)
    _bind(db, scope)
    return scope


def bind_platform_context(db: Session) -> RlsScope:
    """Lift tenant restrictions. Platform administrators only."""
    scope = RlsScope.platform()
    _bind(db, scope)
    return scope


def bind_scope(db: Session, scope: RlsScope) -> RlsScope:
    _bind(db, scope)
    return scope


@contextmanager
def elevated(db: Session) -> Iterator[Session]:
    """
    Temporarily bind the platform scope, restoring the previous scope
    (or no scope) on exit.

    Used for lookups that must cross tenants: session resolution, tenant
    resolution and the global voucher-code uniqueness check.
    """
    previous = current_scope(db)
    _bind(db, RlsScope.platform())
    try:
        yield db
    finally:
        _bind(db, previous)


# ---------------------------------------------------------------------------
# Session listeners
# ---------------------------------------------------------------------------

def _scoped_references(statement):
    """
    Split the scoped tables a statement names into all of them and those
    reached through a mapped entity.

    Only mapped references receive the tenant criteria; a scoped table
    named through plain Table metadata would be read or written unfiltered.
    """
    scoped = _scoped_table_names()
    tables = find_tables(statement, check_columns=True, include_crud=True)
    # Columns of subqueries and bare expressions have no Table
    referenced = {t.name for t in tables if isinstance(t, TableClause) and t.name in scoped}

    mapped = set()
    for element in visitors.iterate(statement):
        entity = getattr(element, "_annotations", {}).get("parententity")
        mapper = getattr(entity, "mapper", None)
        if mapper is not None and mapper.local_table.name in scoped:
            mapped.add(mapper.local_table.name)
    return referenced, mapped


def _refuse(scope: Optional[RlsScope], reason: str):
    log_security_event(
        "tenant_isolation_violation",
        {"reason": reason, "tenant_id": scope.tenant_id if scope else None},
        logger,
    )
    raise TenantIsolationError("Statement outside the bound organization")


@event.listens_for(Session, "after_begin")
def _set_scope_on_begin(session, transaction, connection):
    scope = session.info.get(SCOPE_KEY)
    if scope is not None:
        _apply_settings(connection, scope)


@event.listens_for(Session, "do_orm_execute")
def _restrict_to_scope(execute_state):
    # Attribute refreshes and lazy loads inherit the criteria of the parent load
    if execute_state.is_column_load or execute_state.is_relationship_load:
        return

    scope = execute_state.session.info.get(SCOPE_KEY)
    if scope is not None and scope.is_platform:
        return

    statement = execute_state.statement
    if isinstance(statement, TextClause):
        _refuse(scope, "raw SQL outside the platform scope")

    referenced, mapped = _scoped_references(statement)
    if not referenced:
        return
    if scope is None:
        _refuse(None, "statement on tenant-scoped table without a bound scope")
    if execute_state.is_insert:
        _refuse(scope, "bulk insert into a tenant-scoped table")
    unfiltered = referenced - mapped
    if unfiltered or not execute_state.is_orm_statement:
        names = ", ".join(sorted(unfiltered or referenced))
        _refuse(scope, f"table-level statement on {names}")

    tenant_id = scope.tenant_id
    if execute_state.is_select:
        execute_state.statement = statement.options(
            with_loader_criteria(
                TenantScopedMixin,
                lambda cls: cls.tenant_id == tenant_id,
                include_aliases=True,
            ),
            with_loader_criteria(Tenant, Tenant.id == tenant_id, include_aliases=True),
        )
        return

    # Bulk UPDATE/DELETE: only the target table gets the predicate
    mapper = execute_state.bind_mapper
    if mapper is None or referenced != {mapper.local_table.name}:
        _refuse(scope, "bulk statement reaching beyond its target table")
    target = mapper.class_
    if issubclass(target, TenantScopedMixin):
        execute_state.statement = statement.where(target.tenant_id == tenant_id)
    else:
        execute_state.statement = statement.where(Tenant.id == tenant_id)


@event.listens_for(Session, "before_flush")
def _check_writes(session, flush_context, instances):
    scope = session.info.get(SCOPE_KEY)
    if scope is not None and scope.is_platform:
        return

    for obj in chain(session.new, session.dirty, session.deleted):
        if isinstance(obj, TenantScopedMixin):
            owner = obj.tenant_id
            if scope is not None and owner is None and obj in session.new:
                obj.tenant_id = owner = scope.tenant_id
        elif isinstance(obj, Tenant):
            owner = obj.id
            if obj in session.new or obj in session.deleted:
                owner = None
        else:
            continue

        if scope is None:
            _violation(obj, None, "write to tenant-scoped table without a bound scope")
        if owner != scope.tenant_id:
            _violation(obj, scope.tenant_id, "write outside the bound tenant")


def _violation(obj, tenant_id: Optional[str], reason: str):
    log_security_event(
        "tenant_isolation_violation",
        {"reason": reason, "entity": type(obj).__name__, "tenant_id": tenant_id},
        logger,
    )
    raise TenantIsolationError("Write outside the bound organization")


# ---------------------------------------------------------------------------
# PostgreSQL row security
# ---------------------------------------------------------------------------

def _policy_statements(table_name: str, key_column: str):
    predicate = (
        f"current_setting('{ROLE_SETTING}', true) = '{PLATFORM_ROLE}' "
        f"OR {key_column} = current_setting('{ORGANIZATION_SETTING}', true)"
    )
    return [
        f"ALTER TABLE {table_name} ENABLE ROW LEVEL SECURITY",
        f"ALTER TABLE {table_name} FORCE ROW LEVEL SECURITY",
        f"DROP POLICY IF EXISTS tenant_isolation ON {table_name}",
        f"CREATE POLICY tenant_isolation ON {table_name} "
        f"USING ({predicate}) WITH CHECK ({predicate})",
    ]


def install_row_security(engine) -> None:
    """
    Enable and force row security on every tenant-scoped table.

    Policies admit a row when the transaction is bound to the platform
    role, or when its tenant column equals the bound organization. With
    neither setting present nothing is visible.
    """
    statements = _policy_statements(Tenant.__tablename__, "id")
    for mapper in _scoped_mappers():
        statements.extend(_policy_statements(mapper.local_table.name, "tenant_id"))
    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))
    logger.info(f"Row security installed on {len(statements) // 4} tables")
