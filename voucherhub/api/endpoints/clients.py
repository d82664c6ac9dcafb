"""
Client Endpoints

Clients are the households vouchers are issued to. Search is by surname
plus postcode (or "no fixed address"), the way referral staff look people
up on the phone.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func

from voucherhub.api.deps import get_tenant_context
from voucherhub.core.context import RequestContext
from voucherhub.core.exceptions import ClientNotFoundError, InvalidInputError
from voucherhub.core.permissions import Permission, require_any_permission
from voucherhub.models.audit import AuditAction
from voucherhub.models.client import Client
from voucherhub.models.voucher import Voucher
from voucherhub.schemas.client import (
    ClientCreate,
    ClientResponse,
    ClientSearchResult,
    ClientUpdate,
    normalize_postcode,
)
from voucherhub.services import audit
from voucherhub.services.vouchers import RECENT_WINDOW
from voucherhub.utils.clock import utcnow
from voucherhub.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/clients", tags=["clients"])

SEARCH_LIMIT = 50


def _with_history(ctx: RequestContext, clients: List[Client]) -> List[ClientSearchResult]:
    """Attach last issue date and the 6-month voucher count to each hit."""
    if not clients:
        return []
    ids = [c.id for c in clients]
    since = utcnow() - RECENT_WINDOW

    last_issued = dict(
        ctx.db.query(Voucher.client_id, func.max(Voucher.issue_date))
        .filter(Voucher.client_id.in_(ids))
        .group_by(Voucher.client_id)
        .all()
    )
    recent = dict(
        ctx.db.query(Voucher.client_id, func.count(Voucher.id))
        .filter(Voucher.client_id.in_(ids), Voucher.issue_date >= since)
        .group_by(Voucher.client_id)
        .all()
    )

    results = []
    for client in clients:
        result = ClientSearchResult.model_validate(client)
        result.last_voucher_issued = last_issued.get(client.id)
        result.vouchers_in_last_6_months = recent.get(client.id, 0)
        results.append(result)
    return results


@router.get("", response_model=List[ClientSearchResult])
def search_clients(
    surname: str = Query(..., min_length=1),
    postcode: Optional[str] = Query(None),
    no_fixed_address: bool = Query(False),
    ctx: RequestContext = Depends(get_tenant_context),
):
    """
    Find clients by surname (case-insensitive prefix) and either postcode
    or no_fixed_address=true.
    """
    require_any_permission(ctx.user, Permission.CLIENT_READ, Permission.CLIENT_CREATE)

    query = ctx.db.query(Client).filter(func.lower(Client.surname).like(f"{surname.strip().lower()}%"))
    if no_fixed_address:
        query = query.filter(Client.no_fixed_address.is_(True))
    elif postcode and postcode.strip():
        query = query.filter(Client.postcode == normalize_postcode(postcode))
    else:
        raise InvalidInputError("Provide a postcode or no_fixed_address=true")

    clients = query.order_by(Client.surname, Client.first_name).limit(SEARCH_LIMIT).all()
    return _with_history(ctx, clients)


@router.post("", response_model=ClientResponse, status_code=status.HTTP_201_CREATED)
def create_client(
    client_data: ClientCreate,
    ctx: RequestContext = Depends(get_tenant_context),
):
    ctx.require(Permission.CLIENT_CREATE)

    client = Client(tenant_id=ctx.tenant_id, **client_data.model_dump())
    ctx.db.add(client)
    ctx.db.commit()
    ctx.db.refresh(client)

    logger.info(f"Client created: {client.id} by {ctx.user.id}", extra={"tenant_id": ctx.tenant_id})
    # Identifiers only; names and addresses stay out of the audit trail
    audit.record_for(ctx, AuditAction.CREATE, "Client", client.id)
    return client


@router.get("/{client_id}", response_model=ClientResponse)
def get_client(
    client_id: str,
    ctx: RequestContext = Depends(get_tenant_context),
):
    ctx.require(Permission.CLIENT_READ)
    client = ctx.db.get(Client, client_id)
    if client is None:
        raise ClientNotFoundError()
    return client


@router.patch("/{client_id}", response_model=ClientResponse)
def update_client(
    client_id: str,
    client_data: ClientUpdate,
    ctx: RequestContext = Depends(get_tenant_context),
):
    """
    Correct a client's details. Setting no_fixed_address clears the
    postcode; clearing it requires one.
    """
    ctx.require(Permission.CLIENT_UPDATE)
    client = ctx.db.get(Client, client_id)
    if client is None:
        raise ClientNotFoundError()

    changes = client_data.model_dump(exclude_unset=True)
    if changes.get("no_fixed_address"):
        changes["postcode"] = None
    no_fixed_address = changes.get("no_fixed_address", client.no_fixed_address)
    postcode = changes.get("postcode", client.postcode)
    if not no_fixed_address and not postcode:
        raise InvalidInputError("Postcode is required unless the client has no fixed address")

    for field, value in changes.items():
        setattr(client, field, value)
    ctx.db.commit()
    ctx.db.refresh(client)

    logger.info(f"Client updated: {client.id} by {ctx.user.id}", extra={"tenant_id": ctx.tenant_id})
    audit.record_for(ctx, AuditAction.UPDATE, "Client", client.id, {"fields": sorted(changes)})
    return client
