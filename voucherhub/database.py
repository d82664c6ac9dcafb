"""
Database Configuration and Session Management

SQLAlchemy engine, session factory and declarative base.

Sessions handed out here are unscoped. Tenant isolation is attached to a
session by voucherhub.core.rls (bind_tenant_context / bind_platform_context);
any query against a tenant-scoped table on an unbound session is refused.
"""
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import QueuePool
from voucherhub.config import get_settings
import logging

logger = logging.getLogger(__name__)

settings = get_settings()

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

if _is_sqlite:
    # SQLite is only used for local runs and the test suite
    engine = create_engine(
        settings.DATABASE_URL,
        connect_args={"check_same_thread": False, "timeout": 30},
        echo=settings.DEBUG,
    )
else:
    engine = create_engine(
        settings.DATABASE_URL,
        poolclass=QueuePool,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
        echo=settings.DEBUG,
    )

# expire_on_commit=False so request handlers can read attributes after commit
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,
)

Base = declarative_base()


@event.listens_for(engine, "connect")
def configure_connection(dbapi_connection, connection_record):
    """Set connection-level configuration on new connections."""
    cursor = dbapi_connection.cursor()
    if _is_sqlite:
        cursor.execute("PRAGMA foreign_keys=ON")
    else:
        cursor.execute("SET TIME ZONE 'UTC'")
    cursor.close()
    logger.debug("New database connection established")


def get_db() -> Session:
    """
    Dependency function that provides a database session.

    Closing the session rolls back whatever transaction is still open,
    so a request abandoned mid-transition leaves no partial state.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ping_database() -> bool:
    """Return True when the database answers a trivial query."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database ping failed: {e}")
        return False


def init_db():
    """
    Create tables (dev/test only) and, on PostgreSQL, install the
    row-security policies used for tenant isolation.
    """
    # Import models so every table is registered on Base.metadata
    import voucherhub.models  # noqa: F401
    from voucherhub.core.rls import install_row_security

    logger.warning("init_db() called - creating tables directly")
    Base.metadata.create_all(bind=engine)
    if engine.dialect.name == "postgresql":
        install_row_security(engine)
