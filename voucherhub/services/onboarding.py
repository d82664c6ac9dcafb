"""
Onboarding Service

Invitations and the public join flow. Joining creates an organization, its
first admin and its default plan in one go, so it runs under the platform
scope: the new tenant does not exist yet when the request starts.

Email delivery belongs to the mail collaborator; this service only hands
it the invitation (and its token) through the log.
"""
from datetime import timedelta

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from voucherhub.config import get_settings
from voucherhub.core.exceptions import ConflictError, InvalidInputError, InvitationNotFoundError
from voucherhub.core.rls import elevated
from voucherhub.core.security import generate_session_token, get_password_hash
from voucherhub.core.tenancy import RESERVED_SUBDOMAINS
from voucherhub.models.invitation import Invitation, InvitationStatus
from voucherhub.models.tenant import Tenant, TenantStatus
from voucherhub.models.user import User, UserRole, UserStatus
from voucherhub.schemas.invitation import InvitationCreate, JoinRequest
from voucherhub.services.subscription import ensure_default_plan
from voucherhub.utils.clock import utcnow
from voucherhub.utils.logging import get_logger

logger = get_logger(__name__)


def _check_slug_free(db: Session, slug: str) -> None:
    if slug in RESERVED_SUBDOMAINS:
        raise InvalidInputError(f"'{slug}' is reserved")
    if db.query(Tenant.id).filter(Tenant.slug == slug).first():
        raise ConflictError("An organization with this subdomain already exists")


def create_invitation(db: Session, data: InvitationCreate, created_by_id: str) -> Invitation:
    """The caller's session is already bound to the platform scope."""
    _check_slug_free(db, data.slug)

    invitation = Invitation(
        email=data.email.strip().lower(),
        organization_name=data.organization_name.strip(),
        slug=data.slug,
        token=generate_session_token(),
        status=InvitationStatus.PENDING,
        expires_at=utcnow() + timedelta(days=get_settings().INVITATION_EXPIRY_DAYS),
        created_by_id=created_by_id,
    )
    db.add(invitation)
    db.commit()
    db.refresh(invitation)

    logger.info(f"Invitation {invitation.id} created for {invitation.slug}; queued for delivery")
    return invitation


def open_invitation(db: Session, token: str) -> Invitation:
    """
    Return the pending invitation behind ``token``.

    An invitation found past its expiry is marked expired on the way out.
    """
    with elevated(db):
        invitation = db.query(Invitation).filter(Invitation.token == token.strip()).first()
        if invitation is None:
            raise InvitationNotFoundError()
        if invitation.status != InvitationStatus.PENDING:
            raise InvalidInputError("This invitation has already been used")
        if invitation.expires_at < utcnow():
            invitation.status = InvitationStatus.EXPIRED
            db.commit()
            raise InvalidInputError("This invitation has expired")
    return invitation


def accept_invitation(db: Session, data: JoinRequest) -> Tenant:
    """
    Create the organization and its admin, then consume the invitation.

    Two concurrent accepts of one token cannot both succeed: the invitation
    is claimed with a conditional UPDATE before anything is committed.
    """
    invitation = open_invitation(db, data.token)
    admin_email = data.admin_email.strip().lower()
    if admin_email != invitation.email:
        raise InvalidInputError("Admin email must match the invitation")

    slug = data.slug or invitation.slug
    name = (data.organization_name or invitation.organization_name).strip()

    with elevated(db):
        _check_slug_free(db, slug)
        if db.query(User.id).filter(User.email == admin_email).first():
            raise InvalidInputError("User with this email already exists")

        claimed = db.execute(
            update(Invitation)
            .where(Invitation.id == invitation.id, Invitation.status == InvitationStatus.PENDING)
            .values(status=InvitationStatus.USED)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            db.rollback()
            raise InvalidInputError("This invitation has already been used")

        tenant = Tenant(
            name=name,
            slug=slug,
            status=TenantStatus.ACTIVE if data.create_as_active else TenantStatus.PENDING,
            logo_url=data.logo_url,
            primary_color=data.primary_color,
            secondary_color=data.secondary_color,
        )
        db.add(tenant)
        db.flush()
        db.add(User(
            tenant_id=tenant.id,
            email=admin_email,
            hashed_password=get_password_hash(data.password),
            first_name=data.first_name.strip(),
            last_name=data.last_name.strip(),
            role=UserRole.ADMIN,
            status=UserStatus.ACTIVE,
        ))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError("An organization with this subdomain already exists")
        ensure_default_plan(db, tenant)
        db.refresh(tenant)

    logger.info(f"Organization {tenant.slug} created from invitation {invitation.id}")
    return tenant
