"""Audit logging service."""

from __future__ import annotations

import logging
from typing import Optional

from extensions import db
from models import AuditLog
from services.auth import get_current_user
from services.tenant import get_current_tenant_id

logger = logging.getLogger(__name__)


def log_action(
    action: str,
    entity_type: str,
    entity_id: Optional[int],
    details: str = "",
) -> None:
    """Record an audit log entry.

    NOTE: This does NOT commit; the entry joins the caller's transaction
    and disappears with it on rollback.
    """
    user = get_current_user()
    logger.info("%s %s id=%s %s", action, entity_type, entity_id, details)
    db.session.add(
        AuditLog(
            company_id=get_current_tenant_id(),
            user_id=user.id if user else None,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
        )
    )
