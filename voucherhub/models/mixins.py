"""
Model Mixins

TenantScopedMixin marks a model as tenant-partitioned. Every class that
inherits it is picked up by the isolation listeners in voucherhub.core.rls:
reads get a tenant predicate injected and writes are checked against the
scope bound to the session.

IMPORTANT: Do not add a tenant-owned table without this mixin. Queries on
scoped models are refused outright when no scope is bound.
"""
from sqlalchemy import Column, String, ForeignKey
from sqlalchemy.orm import declared_attr


class TenantScopedMixin:
    """Adds a non-null, indexed ``tenant_id`` column."""

    @declared_attr
    def tenant_id(cls):
        return Column(
            String(36),
            ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
            index=True
        )


def enum_values(enum_cls):
    """Persist str enums by value rather than member name."""
    return [member.value for member in enum_cls]
