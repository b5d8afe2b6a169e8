"""
Recurrence Schedule database model.

Holds the mutable "next due" pointer for a recurring template, so the
template row itself never changes.
"""

from sqlalchemy import Column, Integer, Date, Text, DateTime, Enum, ForeignKey
from sqlalchemy.sql import func
from vendor_ledger.app.db.session import Base
from vendor_ledger.app.db.types import UTCDateTime
from vendor_ledger.app.models.ledger_enums import RecurrencePattern, ScheduleStatus


class RecurrenceSchedule(Base):
    """
    Recurrence Schedule model.

    One row per recurring template: Scheduled -> Materialized -> Scheduled,
    until end_date is passed (COMPLETED). Open-ended schedules stay ACTIVE.
    """
    __tablename__ = "recurrence_schedules"

    template_id = Column(Integer, ForeignKey("ledger_entries.id"), primary_key=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)

    pattern = Column(Enum(RecurrencePattern), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)

    # Pointer
    next_due_date = Column(Date, nullable=True, index=True)
    occurrences_materialized = Column(Integer, default=0, nullable=False)
    status = Column(Enum(ScheduleStatus), default=ScheduleStatus.ACTIVE, nullable=False, index=True)

    # Failure tracking (retried on the next run)
    failure_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    last_run_at = Column(UTCDateTime, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return (
            f"<RecurrenceSchedule(template={self.template_id}, pattern='{self.pattern.value}', "
            f"next_due={self.next_due_date}, status='{self.status.value}')>"
        )
