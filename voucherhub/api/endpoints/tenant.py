"""
Organization Settings Endpoints

The current organization's own row: read by anyone with SETTINGS_READ,
branding changed by USER_MANAGE.
"""
from fastapi import APIRouter, Depends

from voucherhub.api.deps import get_tenant_context
from voucherhub.core.context import RequestContext
from voucherhub.core.exceptions import TenantNotFoundError
from voucherhub.core.permissions import Permission
from voucherhub.models.audit import AuditAction
from voucherhub.models.tenant import Tenant
from voucherhub.schemas.tenant import BrandingUpdate, TenantResponse
from voucherhub.services import audit
from voucherhub.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/tenant", tags=["tenant"])


def _load_own_tenant(ctx: RequestContext) -> Tenant:
    # The middleware's copy is detached; work on a row of this session
    tenant = ctx.db.get(Tenant, ctx.tenant_id)
    if tenant is None:
        raise TenantNotFoundError()
    return tenant


@router.get("", response_model=TenantResponse)
def get_tenant(ctx: RequestContext = Depends(get_tenant_context)):
    ctx.require(Permission.SETTINGS_READ)
    return _load_own_tenant(ctx)


@router.patch("/branding", response_model=TenantResponse)
def update_branding(
    branding: BrandingUpdate,
    ctx: RequestContext = Depends(get_tenant_context),
):
    ctx.require(Permission.USER_MANAGE)
    tenant = _load_own_tenant(ctx)

    changes = branding.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(tenant, field, value)
    ctx.db.commit()
    ctx.db.refresh(tenant)

    logger.info(f"Branding updated for {tenant.slug} by {ctx.user.id}", extra={"tenant_id": tenant.id})
    audit.record_for(ctx, AuditAction.UPDATE, "Tenant", tenant.id, {
        k: (v.value if hasattr(v, "value") else v) for k, v in changes.items()
    })
    return tenant
