"""Audit trail for state changes on jobs, proposals, deals and offers."""

import json

from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.models.audit_log import AuditLog


async def log_audit(
    db: AsyncSession,
    *,
    action: str,
    entity_type: str,
    entity_id: int | None = None,
    user_id: int | None = None,
    details: dict | None = None,
) -> AuditLog:
    """Add an audit entry to the caller's transaction.

    It commits or rolls back together with the change it records. ``user_id``
    is None for system actions such as reconciliation.
    """
    entry = AuditLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=json.dumps(details, default=str) if details else None,
    )
    db.add(entry)
    return entry
