"""Company (tenant) context and data isolation services."""

from __future__ import annotations

from typing import Optional

from flask import g
from sqlalchemy import event

from errors import NotFoundError, PermissionDeniedError
from extensions import db


def activate_tenant(company) -> None:
    """Make *company* the active tenant for the rest of this context."""
    g.current_tenant = company
    g._tenant_id = company.id if company else None


def get_current_tenant():
    """Return the active Company object from ``g``, or None."""
    return getattr(g, "current_tenant", None)


def get_current_tenant_id() -> Optional[int]:
    """Return the active company id from ``g``, or None."""
    tenant = get_current_tenant()
    return tenant.id if tenant else None


def require_tenant() -> int:
    """Return the current company id or raise ``PermissionDeniedError``."""
    tid = get_current_tenant_id()
    if tid is None:
        raise PermissionDeniedError("No company selected.")
    return tid


def tenant_query(model):
    """Return a query on *model* filtered to the current company.

    Usage::

        customers = tenant_query(Customer).order_by(Customer.name).all()
    """
    tid = require_tenant()
    return model.query.filter_by(company_id=tid)


def stamp_tenant(obj):
    """Set ``company_id`` on *obj* to the current company.

    Call before ``db.session.add()``.  Returns *obj* for chaining.
    """
    if hasattr(obj, "company_id"):
        obj.company_id = require_tenant()
    return obj


def tenant_get(model, obj_id, label: Optional[str] = None):
    """Fetch a single object by PK, verifying it belongs to the current company.

    Raises ``NotFoundError`` for missing rows and rows of other companies
    alike, so callers cannot detect foreign ids.
    """
    tid = require_tenant()
    obj = db.session.get(model, obj_id) if obj_id is not None else None
    if obj is None or getattr(obj, "company_id", tid) != tid:
        name = label or model.__name__
        raise NotFoundError(f"{name} {obj_id} not found.")
    return obj


class TenantSecurityError(Exception):
    """Raised when a cross-company write is attempted."""


def _enforce_tenant_on_flush(session, flush_context, instances):
    """Verify that all new/dirty company-scoped objects match the active company.

    This is a safety net; the primary isolation is ``tenant_query()`` and
    ``stamp_tenant()``.  This guard catches programming errors that bypass
    those helpers.
    """
    try:
        tid = getattr(g, "_tenant_id", None)
    except RuntimeError:
        # Outside application context (CLI bootstrap, migrations)
        return

    if tid is None:
        return

    for obj in list(session.new) + list(session.dirty):
        obj_tid = getattr(obj, "company_id", None)
        if obj_tid is not None and obj_tid != tid:
            raise TenantSecurityError(
                f"Cross-company write blocked: {type(obj).__name__} "
                f"has company_id={obj_tid}, active company is {tid}"
            )


def register_tenant_guards(app):
    """Register the before_flush event listener.  Call once during app init."""
    if not event.contains(db.session, "before_flush", _enforce_tenant_on_flush):
        event.listen(db.session, "before_flush", _enforce_tenant_on_flush)
