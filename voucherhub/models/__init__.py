"""
Database Models

Every tenant-owned model inherits TenantScopedMixin; isolation is enforced
by the session listeners in voucherhub.core.rls (and by row-security
policies on PostgreSQL).
"""
from voucherhub.models.tenant import Tenant, TenantStatus, SubscriptionPlan, SubscriptionStatus, BrandingDisplay
from voucherhub.models.user import User, UserRole, UserStatus
from voucherhub.models.session import UserSession
from voucherhub.models.agency import Agency, FoodBankCenter
from voucherhub.models.client import Client
from voucherhub.models.voucher import Voucher, VoucherStatus, Redemption
from voucherhub.models.audit import AuditLog, AuditAction
from voucherhub.models.invitation import Invitation, InvitationStatus

__all__ = [
    "Tenant", "TenantStatus", "SubscriptionPlan", "SubscriptionStatus", "BrandingDisplay",
    "User", "UserRole", "UserStatus",
    "UserSession",
    "Agency", "FoodBankCenter",
    "Client",
    "Voucher", "VoucherStatus", "Redemption",
    "AuditLog", "AuditAction",
    "Invitation", "InvitationStatus",
]

# Registers the isolation listeners on every Session; must come after the models
from voucherhub.core import rls  # noqa: E402,F401
