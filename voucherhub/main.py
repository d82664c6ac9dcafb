"""
Main FastAPI Application

Entry point for the multi-tenant voucher platform.
Configures middleware, routes, error handlers, and startup/shutdown events.

Middleware order (outermost first):
    CORS -> request id/timing -> TenantMiddleware -> RateLimitMiddleware
The rate limiter needs the organization the tenant middleware resolved.
"""
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from voucherhub.api.endpoints import (
    agencies,
    auth,
    clients,
    join,
    platform,
    redemptions,
    reports,
    tenant,
    users,
    vouchers,
)
from voucherhub.config import get_settings
from voucherhub.core.exceptions import (
    AuthenticationError,
    ConflictError,
    InvalidInputError,
    NotFoundError,
    PermissionDenied,
    PlanLimitExceeded,
    RateLimitExceeded,
    RlsBindingError,
    TenantIsolationError,
    TenantUnavailableError,
)
from voucherhub.database import SessionLocal, engine, init_db, ping_database
from voucherhub.middleware.rate_limit import RateLimitMiddleware
from voucherhub.middleware.tenant import TenantMiddleware
from voucherhub.services.session_store import purge_expired_sessions
from voucherhub.utils.logging import get_logger, setup_logging

settings = get_settings()

setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.is_production
)
logger = get_logger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info(f"Starting application in {settings.ENVIRONMENT} mode")

    # Initialize database tables (dev only - use migrations in production)
    if settings.ENVIRONMENT == "development":
        logger.warning("Initializing database tables (dev mode)")
        init_db()

    db = SessionLocal()
    try:
        purge_expired_sessions(db)
    except SQLAlchemyError as e:
        logger.error(f"Session purge at startup failed: {e}")
    finally:
        db.close()

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")
    engine.dispose()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="VoucherHub",
    description="Multi-tenant food bank voucher platform with row-level tenant isolation",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


# ============================================================================
# MIDDLEWARE CONFIGURATION
# ============================================================================

# Added innermost first: Starlette runs the last added middleware first
app.add_middleware(RateLimitMiddleware)
app.add_middleware(TenantMiddleware)


@app.middleware("http")
async def add_request_id_and_timing(request: Request, call_next):
    """Tag every response with X-Request-ID and X-Process-Time."""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    start_time = time.time()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(time.time() - start_time)
    return response


# Session cookies need credentials; origins are the tenant subdomains
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"https?://([a-z0-9-]+\.)*" + settings.APP_DOMAIN.replace(".", r"\.") + r"(:\d+)?",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

def _log_extra(request: Request) -> dict:
    tenant = getattr(request.state, "tenant", None)
    return {
        "path": request.url.path,
        "method": request.method,
        "tenant_id": tenant.id if tenant is not None else None,
        "request_id": getattr(request.state, "request_id", None),
    }


async def domain_error_handler(request: Request, exc):
    """Render domain exceptions as {"detail", "type"} with their status."""
    content = {"detail": exc.detail, "type": exc.error_type}
    if isinstance(exc, ConflictError) and exc.current_status is not None:
        content["current_status"] = exc.current_status
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.detail}", extra=_log_extra(request))
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=exc.headers or {}
    )


for _exc_class in (
    AuthenticationError,
    PermissionDenied,
    NotFoundError,
    TenantUnavailableError,
    ConflictError,
    PlanLimitExceeded,
    InvalidInputError,
    RateLimitExceeded,
    RlsBindingError,
):
    app.add_exception_handler(_exc_class, domain_error_handler)


@app.exception_handler(TenantIsolationError)
async def tenant_isolation_error_handler(request: Request, exc: TenantIsolationError):
    """
    Handle tenant isolation violations.

    CRITICAL: these mean code tried to read or write outside its bound
    organization. Log loudly.
    """
    logger.error(f"TENANT ISOLATION VIOLATION: {exc.detail}", extra=_log_extra(request))
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "type": exc.error_type}
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error: {type(exc).__name__}: {exc}", exc_info=True, extra=_log_extra(request))
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Service temporarily unavailable", "type": "database_unavailable"}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Catch-all exception handler.

    SECURITY: Don't expose internal errors in production.
    Log full details but return generic error to client.
    """
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {str(exc)}",
        exc_info=True,
        extra=_log_extra(request)
    )

    if settings.DEBUG:
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc), "type": type(exc).__name__}
        )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": "internal_error"}
    )


# ============================================================================
# ROUTES
# ============================================================================

@app.get("/health", tags=["health"])
def health_check():
    """Health check for load balancers, including a database probe."""
    database_ok = ping_database()
    body = {
        "status": "healthy" if database_ok else "degraded",
        "database": "ok" if database_ok else "unavailable",
        "environment": settings.ENVIRONMENT,
        "version": VERSION,
    }
    return JSONResponse(
        status_code=status.HTTP_200_OK if database_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body
    )


@app.get("/", tags=["root"])
async def root():
    return {
        "message": "VoucherHub API",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health"
    }


app.include_router(auth.router, prefix="/api/v1")
app.include_router(vouchers.router, prefix="/api/v1")
app.include_router(redemptions.router, prefix="/api/v1")
app.include_router(agencies.router, prefix="/api/v1")
app.include_router(clients.router, prefix="/api/v1")
app.include_router(users.router, prefix="/api/v1")
app.include_router(tenant.router, prefix="/api/v1")
app.include_router(reports.router, prefix="/api/v1")
app.include_router(platform.router, prefix="/api/v1")
app.include_router(join.router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    logger.info(f"VoucherHub {VERSION} ({settings.ENVIRONMENT}), debug={settings.DEBUG}")
    uvicorn.run(
        "voucherhub.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
