"""
Shared fixtures.

The environment is configured before anything from voucherhub is imported:
settings are cached on first use and the engine is built at import time.
Each test session gets its own SQLite file; every table is emptied
between tests.
"""
import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="voucherhub-tests-")

os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'voucherhub.db')}"
os.environ["APP_DOMAIN"] = "example.org"
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SUBSCRIPTION_ENABLED"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import timedelta  # noqa: E402
from itertools import count  # noqa: E402

import pytest  # noqa: E402

from voucherhub.config import get_settings  # noqa: E402
from voucherhub.core.context import RequestContext  # noqa: E402
from voucherhub.core.rls import bind_platform_context, bind_tenant_context  # noqa: E402
from voucherhub.core.security import get_password_hash  # noqa: E402
from voucherhub.database import Base, SessionLocal, engine  # noqa: E402
from voucherhub.models import (  # noqa: E402
    Agency,
    Client,
    FoodBankCenter,
    SubscriptionPlan,
    SubscriptionStatus,
    Tenant,
    TenantStatus,
    User,
    UserRole,
    Voucher,
    VoucherStatus,
)
from voucherhub.utils.clock import utcnow  # noqa: E402

PASSWORD = "correct-horse-battery"
# Hashing is the slow part of user creation; do it once
PASSWORD_HASH = get_password_hash(PASSWORD)

_seq = count(1)


@pytest.fixture(scope="session", autouse=True)
def create_schema():
    Base.metadata.create_all(bind=engine)
    yield
    engine.dispose()


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    # Core statements on a raw connection bypass the ORM isolation listeners
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def settings_override(monkeypatch):
    """Set environment variables and refresh the cached settings."""
    def apply(**values):
        for key, value in values.items():
            monkeypatch.setenv(key, str(value))
        get_settings.cache_clear()

    yield apply
    get_settings.cache_clear()


@pytest.fixture
def seed_db():
    """A platform-bound session for arranging test data."""
    db = SessionLocal()
    bind_platform_context(db)
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def make_session():
    """Factory for fresh, unbound sessions; all are closed at teardown."""
    sessions = []

    def factory():
        db = SessionLocal()
        sessions.append(db)
        return db

    yield factory
    for db in sessions:
        db.close()


@pytest.fixture
def context_for(make_session):
    """Build a RequestContext on a fresh session bound to the user's tenant."""
    def build(user, tenant):
        db = make_session()
        scope = bind_tenant_context(db, tenant.id)
        return RequestContext(db=db, user=user, tenant=tenant, scope=scope)

    return build


@pytest.fixture
def factory(seed_db):
    return Factory(seed_db)


class Factory:
    """Creates committed rows through a platform-bound session."""

    def __init__(self, db):
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def plan(self, slug="starter", **limits):
        return self._save(SubscriptionPlan(slug=slug, name=slug.title(), **limits))

    def tenant(self, slug=None, status=TenantStatus.ACTIVE, plan=None,
               subscription_status=SubscriptionStatus.NONE):
        slug = slug or f"org{next(_seq)}"
        return self._save(Tenant(
            name=slug.title(),
            slug=slug,
            status=status,
            subscription_plan_id=plan.id if plan else None,
            subscription_status=subscription_status,
        ))

    def agency(self, tenant, name=None):
        return self._save(Agency(tenant_id=tenant.id, name=name or f"Agency {next(_seq)}"))

    def center(self, tenant, name=None):
        return self._save(FoodBankCenter(tenant_id=tenant.id, name=name or f"Center {next(_seq)}"))

    def client(self, tenant, surname="Smith", postcode="SW1A 1AA"):
        return self._save(Client(
            tenant_id=tenant.id,
            first_name="Sam",
            surname=surname,
            postcode=postcode,
        ))

    def user(self, tenant=None, role=UserRole.ADMIN, agency=None, email=None):
        return self._save(User(
            tenant_id=tenant.id if tenant else None,
            agency_id=agency.id if agency else None,
            email=email or f"user{next(_seq)}@acme.org",
            hashed_password=PASSWORD_HASH,
            first_name="Test",
            last_name="User",
            role=role,
        ))

    def voucher(self, tenant, client, agency, issued_by, status=VoucherStatus.ISSUED,
                issue_date=None, expiry_date=None):
        issue_date = issue_date or utcnow()
        return self._save(Voucher(
            tenant_id=tenant.id,
            code=f"E-TEST{next(_seq):04d}",
            client_id=client.id,
            agency_id=agency.id,
            issued_by_id=issued_by.id,
            status=status,
            issue_date=issue_date,
            expiry_date=expiry_date or issue_date + timedelta(days=28),
        ))


@pytest.fixture
def org(factory):
    """One organization with an agency, a center, a client and one user per role."""
    tenant = factory.tenant(slug="acme")
    agency = factory.agency(tenant)
    center = factory.center(tenant)
    client = factory.client(tenant)
    return _Org(
        tenant=tenant,
        agency=agency,
        center=center,
        client=client,
        admin=factory.user(tenant, UserRole.ADMIN),
        third_party=factory.user(tenant, UserRole.THIRD_PARTY, agency=agency),
        back_office=factory.user(tenant, UserRole.BACK_OFFICE),
    )


@pytest.fixture
def other_org(factory):
    tenant = factory.tenant(slug="globex")
    agency = factory.agency(tenant)
    center = factory.center(tenant)
    client = factory.client(tenant, surname="Jones")
    return _Org(
        tenant=tenant,
        agency=agency,
        center=center,
        client=client,
        admin=factory.user(tenant, UserRole.ADMIN),
        third_party=factory.user(tenant, UserRole.THIRD_PARTY, agency=agency),
        back_office=factory.user(tenant, UserRole.BACK_OFFICE),
    )


class _Org:
    def __init__(self, **fields):
        self.__dict__.update(fields)
