"""
Ledger Entry database model.

Append-only record of vendor money movements.
"""

from sqlalchemy import (
    Column, Integer, String, Text, Date, Boolean, JSON, Enum, ForeignKey, Index, UniqueConstraint
)
from vendor_ledger.app.db.session import Base
from vendor_ledger.app.db.types import Money, UTCDateTime
from vendor_ledger.app.models.ledger_enums import (
    EntryType, PaymentMethod, RecurrencePattern, ReferenceType
)


class LedgerEntry(Base):
    """
    Ledger Entry model.

    Immutable record of a single money movement. Rows are inserted once and
    never updated or deleted; corrections are new entries.

    An entry carrying a recurrence pattern is a template: it is listed in
    history but contributes to balances only through its materialized
    clones, which point back at it via (template_id, occurrence_date).
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index("ix_ledger_vendor_txn_date", "vendor_id", "transaction_date"),
        Index("ix_ledger_vendor_customer_txn_date", "vendor_id", "customer_id", "transaction_date"),
        UniqueConstraint("template_id", "occurrence_date", name="uq_ledger_template_occurrence"),
        UniqueConstraint("vendor_id", "idempotency_key", name="uq_ledger_vendor_idempotency_key"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Ownership
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)
    customer_id = Column(Integer, nullable=True, index=True)  # Weak reference, no FK

    # Financials
    entry_type = Column(Enum(EntryType), nullable=False)
    amount = Column(Money, nullable=False)
    transaction_date = Column(Date, nullable=False)
    category = Column(String(30), nullable=False)
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    exclude_from_balance = Column(Boolean, default=False, nullable=False)

    # Free text
    description = Column(String(500), nullable=True)
    note = Column(Text, nullable=True)  # Vendor-private

    # Upload references (owned by the upload subsystem)
    attachments = Column(JSON, nullable=False, default=list)

    # Recurrence (templates only)
    recurrence_pattern = Column(Enum(RecurrencePattern), nullable=True)
    recurrence_start_date = Column(Date, nullable=True)
    recurrence_end_date = Column(Date, nullable=True)

    # Back-reference (materialized clones only)
    template_id = Column(Integer, nullable=True, index=True)
    occurrence_date = Column(Date, nullable=True)

    # Originating business document
    reference_type = Column(Enum(ReferenceType), nullable=True)
    reference_id = Column(String(100), nullable=True)

    created_by = Column(Integer, nullable=True)
    idempotency_key = Column(String(64), nullable=True)  # Caller-supplied, unique per vendor

    # Timestamps (Immutable - no updated_at)
    created_at = Column(UTCDateTime, nullable=False, index=True)

    @property
    def is_template(self) -> bool:
        return self.recurrence_pattern is not None

    @property
    def recurrence(self):
        if self.recurrence_pattern is None:
            return None
        return {
            "pattern": self.recurrence_pattern,
            "start_date": self.recurrence_start_date,
            "end_date": self.recurrence_end_date,
        }

    def __repr__(self):
        return (
            f"<LedgerEntry(id={self.id}, vendor={self.vendor_id}, type='{self.entry_type.value}', "
            f"amount={self.amount}, date={self.transaction_date})>"
        )
