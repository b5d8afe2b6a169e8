"""
Audit Log Database Model.

Tracks ledger writes and operational actions for compliance.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from vendor_ledger.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for ledger activity.

    Events logged:
    - LEDGER_ENTRY_CREATED / RECURRING_TEMPLATE_CREATED
    - RECURRENCE_MATERIALIZED (actor is None: system)
    - RECURRENCE_RUN_TRIGGERED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Which vendor ledger and entry were affected
    vendor_id = Column(Integer, index=True, nullable=True)
    entry_id = Column(Integer, index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_username}, entry={self.entry_id})>"
