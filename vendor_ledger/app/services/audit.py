"""
Audit logging service for ledger writes and operational actions.

Provides centralized logging for compliance and audit trails.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from vendor_ledger.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    LEDGER_ENTRY_CREATED = "LEDGER_ENTRY_CREATED"
    RECURRING_TEMPLATE_CREATED = "RECURRING_TEMPLATE_CREATED"
    RECURRENCE_MATERIALIZED = "RECURRENCE_MATERIALIZED"
    RECURRENCE_RUN_TRIGGERED = "RECURRENCE_RUN_TRIGGERED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    actor_username: Optional[str] = None,
    vendor_id: Optional[int] = None,
    entry_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Log a ledger or operational event to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action (None for the system)
        actor_username: Username of actor
        vendor_id: Vendor whose ledger was touched
        entry_id: Ledger entry created, if any
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_username=actor_username,
        action=action,
        vendor_id=vendor_id,
        entry_id=entry_id,
        meta_data=metadata,
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    vendor_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if vendor_id:
        query = query.where(AuditLog.vendor_id == vendor_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
