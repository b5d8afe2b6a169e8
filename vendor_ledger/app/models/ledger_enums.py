"""
Ledger enumerations.

Categories are split per direction: an ``in`` entry can only carry an
``InCategory`` and an ``out`` entry only an ``OutCategory``.
"""

import enum


class EntryType(str, enum.Enum):
    """Direction of money flow from the vendor's perspective."""
    IN = "in"  # Money received by the vendor
    OUT = "out"  # Money paid out by the vendor


class InCategory(str, enum.Enum):
    PRODUCT_SALE = "product_sale"
    SERVICE = "service"
    LOAN_RECEIVED = "loan_received"
    ADVANCE = "advance"
    SUBSCRIPTION = "subscription"
    OTHER = "other"


class OutCategory(str, enum.Enum):
    EXPENSE = "expense"
    PURCHASE = "purchase"
    REFUND = "refund"
    SALARY = "salary"
    RENT = "rent"
    UTILITY = "utility"
    OTHER = "other"


CATEGORIES_BY_TYPE = {
    EntryType.IN: InCategory,
    EntryType.OUT: OutCategory,
}

# Category values that exist in both directions
SHARED_CATEGORIES = frozenset(m.value for m in InCategory) & frozenset(m.value for m in OutCategory)


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    UPI = "upi"
    BANK = "bank"
    CARD = "card"


class RecurrencePattern(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class ReferenceType(str, enum.Enum):
    """Business document an entry was recorded for."""
    ORDER = "order"
    POS_SALE = "pos_sale"
    APPOINTMENT = "appointment"
    INVOICE = "invoice"
    MANUAL = "manual"


class ScheduleStatus(str, enum.Enum):
    """Recurrence schedule status enumeration."""
    ACTIVE = "ACTIVE"  # More occurrences may become due
    COMPLETED = "COMPLETED"  # end_date passed and every occurrence materialized
