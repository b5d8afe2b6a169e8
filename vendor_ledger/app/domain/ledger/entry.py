"""
Ledger entry construction rules.

``NewEntry`` is the only way to describe an entry to be appended. Building
one validates every entry invariant, so an invalid entry cannot reach the
store: amount strictly positive with at most two decimals, category drawn
from the set that matches the direction, clones never recurring.
"""

import enum
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional, Tuple, Union

from vendor_ledger.app.core.config import settings
from vendor_ledger.app.core.exceptions import LedgerValidationError
from vendor_ledger.app.db.types import to_money
from vendor_ledger.app.models.ledger_enums import (
    CATEGORIES_BY_TYPE, EntryType, InCategory, OutCategory, PaymentMethod,
    RecurrencePattern, ReferenceType,
)

Category = Union[InCategory, OutCategory]

DESCRIPTION_MAX_LENGTH = 500
REFERENCE_ID_MAX_LENGTH = 100
IDEMPOTENCY_KEY_MAX_LENGTH = 64


def _coerce(enum_cls, value, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise LedgerValidationError(field_name, f"Invalid {field_name} '{value}'. Allowed: {allowed}")


def parse_entry_type(value) -> EntryType:
    return _coerce(EntryType, value, "type")


def parse_category(entry_type, value) -> Category:
    """
    Resolve a category against the set allowed for ``entry_type``.

    An enum member of the other direction is rejected even when its value
    (``other``) exists in both sets.
    """
    entry_type = parse_entry_type(entry_type)
    expected = CATEGORIES_BY_TYPE[entry_type]
    if isinstance(value, enum.Enum) and not isinstance(value, expected):
        raise LedgerValidationError(
            "category", f"Category '{value.value}' is not allowed for '{entry_type.value}' entries"
        )
    try:
        return expected(value)
    except ValueError:
        allowed = ", ".join(m.value for m in expected)
        raise LedgerValidationError(
            "category",
            f"Category '{value}' is not allowed for '{entry_type.value}' entries. Allowed: {allowed}"
        )


def parse_amount(value) -> Decimal:
    try:
        amount = to_money(value)
    except ValueError as e:
        raise LedgerValidationError("amount", str(e))
    if amount <= 0:
        raise LedgerValidationError("amount", "Amount must be greater than zero")
    return amount


@dataclass(frozen=True)
class Recurrence:
    pattern: RecurrencePattern
    start_date: date
    end_date: Optional[date] = None

    def __post_init__(self):
        object.__setattr__(self, "pattern", _coerce(RecurrencePattern, self.pattern, "recurrence.pattern"))
        if self.start_date is None:
            raise LedgerValidationError("recurrence.start_date", "Recurring entries need a start date")
        if self.end_date is not None and self.end_date < self.start_date:
            raise LedgerValidationError("recurrence.end_date", "Recurrence end date is before its start date")


@dataclass(frozen=True)
class NewEntry:
    """A validated, not yet persisted ledger entry."""

    vendor_id: int
    entry_type: EntryType
    amount: Decimal
    transaction_date: date
    category: Category
    payment_method: PaymentMethod
    customer_id: Optional[int] = None
    description: Optional[str] = None
    note: Optional[str] = None
    attachments: Tuple[str, ...] = field(default_factory=tuple)
    recurrence: Optional[Recurrence] = None
    template_id: Optional[int] = None
    occurrence_date: Optional[date] = None
    reference_type: Optional[ReferenceType] = None
    reference_id: Optional[str] = None
    exclude_from_balance: bool = False
    created_by: Optional[int] = None
    idempotency_key: Optional[str] = None

    def __post_init__(self):
        entry_type = parse_entry_type(self.entry_type)
        object.__setattr__(self, "entry_type", entry_type)
        object.__setattr__(self, "amount", parse_amount(self.amount))
        object.__setattr__(self, "category", parse_category(entry_type, self.category))
        object.__setattr__(self, "payment_method", _coerce(PaymentMethod, self.payment_method, "payment_method"))

        if self.vendor_id is None:
            raise LedgerValidationError("vendor_id", "Every entry belongs to a vendor")
        if self.transaction_date is None:
            raise LedgerValidationError("transaction_date", "Transaction date is required")
        if self.description is not None and len(self.description) > DESCRIPTION_MAX_LENGTH:
            raise LedgerValidationError("description", f"Description exceeds {DESCRIPTION_MAX_LENGTH} characters")

        attachments = tuple(self.attachments or ())
        if len(attachments) > settings.max_attachments_per_entry:
            raise LedgerValidationError(
                "attachments", f"At most {settings.max_attachments_per_entry} attachments per entry"
            )
        if any(not isinstance(ref, str) or not ref.strip() for ref in attachments):
            raise LedgerValidationError("attachments", "Attachment references must be non-empty strings")
        object.__setattr__(self, "attachments", attachments)

        if (self.template_id is None) != (self.occurrence_date is None):
            raise LedgerValidationError("template_id", "template_id and occurrence_date go together")
        if self.template_id is not None and self.recurrence is not None:
            raise LedgerValidationError("recurrence", "Materialized occurrences cannot recur")

        if (self.reference_type is None) != (self.reference_id is None):
            raise LedgerValidationError("reference_id", "reference_type and reference_id go together")
        if self.reference_type is not None:
            object.__setattr__(
                self, "reference_type", _coerce(ReferenceType, self.reference_type, "reference_type")
            )
            if len(self.reference_id) > REFERENCE_ID_MAX_LENGTH:
                raise LedgerValidationError("reference_id", "Reference id is too long")

        if self.idempotency_key is not None:
            if not self.idempotency_key.strip() or len(self.idempotency_key) > IDEMPOTENCY_KEY_MAX_LENGTH:
                raise LedgerValidationError(
                    "idempotency_key", f"Idempotency key must be 1-{IDEMPOTENCY_KEY_MAX_LENGTH} characters"
                )
            if self.template_id is not None:
                raise LedgerValidationError("idempotency_key", "Materialized occurrences are keyed by their template")

    @property
    def is_template(self) -> bool:
        return self.recurrence is not None

    @classmethod
    def clone_of(cls, template, occurrence_date: date) -> "NewEntry":
        """Plain, non-recurring copy of a template for one occurrence."""
        return cls(
            vendor_id=template.vendor_id,
            entry_type=template.entry_type,
            amount=template.amount,
            transaction_date=occurrence_date,
            category=template.category,
            payment_method=template.payment_method,
            customer_id=template.customer_id,
            description=template.description,
            note=template.note,
            attachments=tuple(template.attachments or ()),
            recurrence=None,
            template_id=template.id,
            occurrence_date=occurrence_date,
            reference_type=template.reference_type,
            reference_id=template.reference_id,
            exclude_from_balance=template.exclude_from_balance,
        )


@dataclass(frozen=True)
class EntryFilter:
    """History/summary filter. Date bounds are inclusive; None means open."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    entry_type: Optional[EntryType] = None
    category: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    customer_id: Optional[int] = None
    include_templates: bool = True

    def __post_init__(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise LedgerValidationError("end_date", "End date is before start date")
        if self.entry_type is not None:
            object.__setattr__(self, "entry_type", parse_entry_type(self.entry_type))
        if self.payment_method is not None:
            object.__setattr__(self, "payment_method", _coerce(PaymentMethod, self.payment_method, "payment_method"))
        if self.category is not None:
            if self.entry_type is not None:
                category = parse_category(self.entry_type, self.category).value
            elif any(self.category == m.value for m in (*InCategory, *OutCategory)):
                category = self.category
            else:
                raise LedgerValidationError("category", f"Unknown category '{self.category}'")
            object.__setattr__(self, "category", category)
