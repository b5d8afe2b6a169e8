"""
Ledger Schemas.

Request bodies forbid unknown fields, so a client cannot supply id or
created_at. Amounts are serialized as decimal strings.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from vendor_ledger.app.core.exceptions import LedgerValidationError
from vendor_ledger.app.domain.ledger.entry import NewEntry, Recurrence, parse_category
from vendor_ledger.app.models.ledger_enums import (
    EntryType, PaymentMethod, RecurrencePattern, ReferenceType, ScheduleStatus
)


class RecurrenceCreate(BaseModel):
    """Recurrence attached to a template entry."""
    pattern: RecurrencePattern
    start_date: date
    end_date: Optional[date] = None

    class Config:
        extra = "forbid"


class LedgerEntryCreate(BaseModel):
    """Schema for recording a ledger entry. Server-assigned fields are rejected."""
    type: EntryType
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    transaction_date: date
    category: str = Field(..., min_length=1, max_length=30)
    payment_method: PaymentMethod
    customer_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=500)
    note: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)
    recurrence: Optional[RecurrenceCreate] = None
    reference_type: Optional[ReferenceType] = None
    reference_id: Optional[str] = Field(default=None, max_length=100)
    exclude_from_balance: bool = False

    class Config:
        extra = "forbid"

    @field_validator("category")
    @classmethod
    def category_matches_type(cls, value: str, info):
        entry_type = info.data.get("type")
        if entry_type is None:
            return value
        try:
            return parse_category(entry_type, value).value
        except LedgerValidationError as e:
            raise ValueError(e.message)

    def to_new_entry(
        self, vendor_id: int, created_by: Optional[int] = None, idempotency_key: Optional[str] = None
    ) -> NewEntry:
        recurrence = None
        if self.recurrence is not None:
            recurrence = Recurrence(
                pattern=self.recurrence.pattern,
                start_date=self.recurrence.start_date,
                end_date=self.recurrence.end_date,
            )
        return NewEntry(
            vendor_id=vendor_id,
            entry_type=self.type,
            amount=self.amount,
            transaction_date=self.transaction_date,
            category=self.category,
            payment_method=self.payment_method,
            customer_id=self.customer_id,
            description=self.description,
            note=self.note,
            attachments=tuple(self.attachments),
            recurrence=recurrence,
            reference_type=self.reference_type,
            reference_id=self.reference_id,
            exclude_from_balance=self.exclude_from_balance,
            created_by=created_by,
            idempotency_key=idempotency_key,
        )


class RecurrenceResponse(BaseModel):
    pattern: RecurrencePattern
    start_date: date
    end_date: Optional[date] = None

    class Config:
        from_attributes = True


class LedgerEntryResponse(BaseModel):
    """Schema for displaying a ledger entry."""
    id: int
    vendor_id: int
    customer_id: Optional[int] = None
    type: EntryType = Field(validation_alias=AliasChoices("entry_type", "type"))
    amount: Decimal
    transaction_date: date
    category: str
    payment_method: PaymentMethod
    description: Optional[str] = None
    note: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)
    recurrence: Optional[RecurrenceResponse] = None
    is_template: bool = False
    template_id: Optional[int] = None
    occurrence_date: Optional[date] = None
    reference_type: Optional[ReferenceType] = None
    reference_id: Optional[str] = None
    exclude_from_balance: bool = False
    idempotency_key: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LedgerPageResponse(BaseModel):
    """One page of history plus the cursor for the next page."""
    items: List[LedgerEntryResponse]
    next_cursor: Optional[str] = None


class LedgerSummaryResponse(BaseModel):
    """Schema for displaying a period summary."""
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    total_in: Decimal
    total_out: Decimal
    net_balance: Decimal
    by_category: Dict[str, Decimal] = Field(
        ..., description="Gross amount per category; 'other' is split into 'in:other' and 'out:other'"
    )
    by_payment_method: Dict[str, Decimal]
    transaction_count: int

    class Config:
        from_attributes = True


class CustomerLedgerEntryResponse(LedgerEntryResponse):
    """Entry plus the customer's balance right after it (None if it does not move the balance)."""
    running_balance: Optional[Decimal] = None


class CustomerLedgerResponse(BaseModel):
    vendor_id: int
    customer_id: int
    items: List[CustomerLedgerEntryResponse]
    next_cursor: Optional[str] = None
    total_in: Decimal
    total_out: Decimal
    balance: Decimal
    transaction_count: int


class RecurrenceRunRequest(BaseModel):
    """Optional overrides for a manually triggered generator pass."""
    as_of: Optional[date] = None
    vendor_id: Optional[int] = None

    class Config:
        extra = "forbid"


class RecurrenceFailureResponse(BaseModel):
    template_id: int
    occurrence_date: date
    error: str

    class Config:
        from_attributes = True


class RecurrenceRunResponse(BaseModel):
    as_of: date
    templates_scanned: int
    occurrences_materialized: int
    occurrences_skipped: int
    failures: List[RecurrenceFailureResponse]

    class Config:
        from_attributes = True


class RecurrenceScheduleResponse(BaseModel):
    template_id: int
    vendor_id: int
    pattern: RecurrencePattern
    start_date: date
    end_date: Optional[date] = None
    next_due_date: Optional[date] = None
    occurrences_materialized: int
    status: ScheduleStatus
    failure_count: int
    last_error: Optional[str] = None
    last_run_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AuditLogResponse(BaseModel):
    id: int
    action: str
    actor_id: Optional[int] = None
    actor_username: Optional[str] = None
    vendor_id: Optional[int] = None
    entry_id: Optional[int] = None
    meta_data: Optional[dict] = None
    timestamp: datetime

    class Config:
        from_attributes = True
