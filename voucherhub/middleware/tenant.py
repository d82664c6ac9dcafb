"""
Tenant Middleware

Resolves the tenant for every request and stores it on request.state.
This is the first line of defense for tenant isolation.

- request.state.tenant is the resolved Tenant, or None on the platform
  domain (example.org, www.example.org, ...).
- A tenant subdomain that does not resolve (unknown, suspended,
  cancelled) is answered with 404 here; it never falls through to a
  default tenant.
- A database failure during resolution is answered with 503.

No caching: a suspended tenant stops resolving on the very next request.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from voucherhub.database import SessionLocal
from voucherhub.core.tenancy import candidate_slug, find_tenant_by_slug, host_from_headers
from voucherhub.utils.logging import get_logger

logger = get_logger(__name__)


class TenantMiddleware(BaseHTTPMiddleware):
    """
    Middleware to resolve and validate the tenant of a request.

    Runs on every request except docs and health checks.
    """

    def __init__(self, app):
        super().__init__(app)
        self.excluded_paths = [
            "/docs",
            "/redoc",
            "/openapi.json",
            "/health",
        ]

    async def dispatch(self, request: Request, call_next):
        """Process each request and inject tenant context."""
        request.state.tenant = None

        if any(request.url.path.startswith(path) for path in self.excluded_paths):
            return await call_next(request)

        host = host_from_headers(request.headers)
        slug = candidate_slug(host, request.query_params.get("tenant"))

        if slug is None:
            # Platform domain
            return await call_next(request)

        db = SessionLocal()
        try:
            tenant = find_tenant_by_slug(db, slug)
        except SQLAlchemyError as e:
            logger.error(f"Tenant resolution failed for {slug}: {e}")
            return JSONResponse(
                status_code=503,
                content={"detail": "Service temporarily unavailable", "type": "tenant_unavailable"}
            )
        finally:
            db.close()

        if tenant is None:
            logger.warning(f"Unresolved tenant subdomain: {slug}")
            return JSONResponse(
                status_code=404,
                content={"detail": "Organization not found", "type": "not_found"}
            )

        request.state.tenant = tenant
        logger.debug(f"Request for tenant: {tenant.slug} ({tenant.id})")

        return await call_next(request)
