"""
Tenant Resolution

Maps a request's host (and, on a bare development host only, an explicit
?tenant=<slug> parameter) to a Tenant row.

ARCHITECTURE: subdomain-based routing.
- acme.example.org      -> tenant "acme"
- example.org, www.*    -> platform domain, no tenant
- acme.localhost        -> tenant "acme" (local development)
- localhost?tenant=acme -> tenant "acme" (local development)

Resolution is a pure function of host, parameter and database state. There
is no cache and no default tenant: anything that does not resolve to an
ACTIVE or PENDING tenant is None, and callers must fail closed.
"""
import re
from typing import Mapping, Optional

from sqlalchemy.orm import Session

from voucherhub.config import get_settings
from voucherhub.core.rls import elevated
from voucherhub.models.tenant import Tenant, TenantStatus
from voucherhub.utils.logging import get_logger

logger = get_logger(__name__)

RESERVED_SUBDOMAINS = frozenset({"www", "app", "api", "admin", "platform", "mail"})

SLUG_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")

RESOLVABLE_STATUSES = (TenantStatus.ACTIVE, TenantStatus.PENDING)

DEV_SUFFIX = ".localhost"


def _strip_port(host: str) -> str:
    return host.split(":")[0].strip().lower()


def host_from_headers(headers: Mapping[str, str]) -> str:
    """
    Pick the request host. X-Forwarded-Host (set by the proxy) wins over
    Host; only the first value of a comma-separated list counts.
    """
    raw = headers.get("x-forwarded-host") or headers.get("host") or ""
    host = _strip_port(raw.split(",")[0])
    return host or "localhost"


def is_development_host(host: str) -> bool:
    host = _strip_port(host)
    return host == "localhost" or host.startswith("127.")


def extract_subdomain(host: str, app_domain: Optional[str] = None) -> Optional[str]:
    """
    Return the tenant label of ``host``, or None when the host carries none.

    For foo.bar.example.org the label directly left of the apex ("bar")
    is used.
    """
    host = _strip_port(host)
    if not host:
        return None

    if host.endswith(DEV_SUFFIX):
        prefix = host[:-len(DEV_SUFFIX)]
        return prefix.split(".")[-1] or None
    if is_development_host(host):
        return None

    domain = _strip_port(app_domain or get_settings().APP_DOMAIN)
    if host == domain or not host.endswith("." + domain):
        return None
    prefix = host[:-(len(domain) + 1)].rstrip(".")
    if not prefix:
        return None
    return prefix.split(".")[-1] or None


def candidate_slug(
    host: str,
    tenant_param: Optional[str] = None,
    app_domain: Optional[str] = None,
) -> Optional[str]:
    """
    The slug a request asks for, or None for the platform domain.
    """
    slug = extract_subdomain(host, app_domain)
    if slug is None and tenant_param and is_development_host(host):
        param = tenant_param.strip().lower()
        if SLUG_PATTERN.match(param):
            slug = param
    if slug is None or slug in RESERVED_SUBDOMAINS:
        return None
    return slug


def is_platform_domain(
    host: str,
    tenant_param: Optional[str] = None,
    app_domain: Optional[str] = None,
) -> bool:
    return candidate_slug(host, tenant_param, app_domain) is None


def find_tenant_by_slug(db: Session, slug: str) -> Optional[Tenant]:
    """Look up a servable tenant. Runs elevated: no tenant is bound yet."""
    with elevated(db):
        return (
            db.query(Tenant)
            .filter(Tenant.slug == slug, Tenant.status.in_(RESOLVABLE_STATUSES))
            .first()
        )


def resolve_tenant(
    db: Session,
    host: str,
    tenant_param: Optional[str] = None,
) -> Optional[Tenant]:
    """
    Resolve the tenant for a request.

    Returns None for the platform domain, unknown slugs and tenants that
    are suspended or cancelled.
    """
    slug = candidate_slug(host, tenant_param)
    if slug is None:
        return None
    tenant = find_tenant_by_slug(db, slug)
    if tenant is None:
        logger.info(f"No servable tenant for slug: {slug}")
    return tenant
