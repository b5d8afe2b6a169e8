"""
Balance Calculator.

Derives summaries and running balances from entries on every read; there
is no stored balance to drift. All arithmetic is Decimal.

Conventions:
    - Recurring templates never count; their clones do.
    - ``summarize`` counts every non-template entry in the period,
      including ones flagged ``exclude_from_balance`` (they are real cash
      movements, just not part of a counterparty's balance).
    - ``running_balance`` skips ``exclude_from_balance`` entries and orders
      by (transaction_date, created_at, id) ascending.
    - ``by_category`` is keyed by category; ``other`` exists in both
      directions and is reported as ``in:other`` and ``out:other``.
    - Sign: balance = sum(in) - sum(out). For a customer sub-ledger a
      positive balance means the customer is a net payer to the vendor,
      negative means the vendor owes the customer.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from vendor_ledger.app.models.ledger_enums import SHARED_CATEGORIES, EntryType

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class LedgerSummary:
    period_start: Optional[date]
    period_end: Optional[date]
    total_in: Decimal
    total_out: Decimal
    net_balance: Decimal
    by_category: Dict[str, Decimal] = field(default_factory=dict)
    by_payment_method: Dict[str, Decimal] = field(default_factory=dict)
    transaction_count: int = 0

    def to_dict(self) -> dict:
        return {
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "total_in": str(self.total_in),
            "total_out": str(self.total_out),
            "net_balance": str(self.net_balance),
            "by_category": {k: str(v) for k, v in self.by_category.items()},
            "by_payment_method": {k: str(v) for k, v in self.by_payment_method.items()},
            "transaction_count": self.transaction_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LedgerSummary":
        return cls(
            period_start=date.fromisoformat(data["period_start"]) if data["period_start"] else None,
            period_end=date.fromisoformat(data["period_end"]) if data["period_end"] else None,
            total_in=Decimal(data["total_in"]),
            total_out=Decimal(data["total_out"]),
            net_balance=Decimal(data["net_balance"]),
            by_category={k: Decimal(v) for k, v in data["by_category"].items()},
            by_payment_method={k: Decimal(v) for k, v in data["by_payment_method"].items()},
            transaction_count=data["transaction_count"],
        )


@dataclass(frozen=True)
class BalancePoint:
    entry_id: int
    transaction_date: date
    balance: Decimal


def _value(member) -> str:
    return getattr(member, "value", member)


def category_key(entry) -> str:
    """Breakdown key; a category both directions share is split as ``in:other`` / ``out:other``."""
    category = _value(entry.category)
    if category in SHARED_CATEGORIES:
        return f"{_value(entry.entry_type)}:{category}"
    return category


def _in_period(entry, period_start: Optional[date], period_end: Optional[date]) -> bool:
    if period_start is not None and entry.transaction_date < period_start:
        return False
    if period_end is not None and entry.transaction_date > period_end:
        return False
    return True


def signed_amount(entry) -> Decimal:
    return entry.amount if entry.entry_type == EntryType.IN else -entry.amount


class SummaryAccumulator:
    """
    Single-pass summary builder.

    Entries can be fed in batches (the service streams a bounded window
    through it); the result does not depend on feed order.
    """

    def __init__(self, period_start: Optional[date] = None, period_end: Optional[date] = None):
        self.period_start = period_start
        self.period_end = period_end
        self._total_in = ZERO
        self._total_out = ZERO
        self._by_category = defaultdict(lambda: ZERO)
        self._by_payment_method = defaultdict(lambda: ZERO)
        self._count = 0

    def add(self, entry) -> None:
        if entry.is_template or not _in_period(entry, self.period_start, self.period_end):
            return
        if entry.entry_type == EntryType.IN:
            self._total_in += entry.amount
        else:
            self._total_out += entry.amount
        self._by_category[category_key(entry)] += entry.amount
        self._by_payment_method[_value(entry.payment_method)] += entry.amount
        self._count += 1

    def add_all(self, entries: Iterable) -> None:
        for entry in entries:
            self.add(entry)

    def result(self) -> LedgerSummary:
        return LedgerSummary(
            period_start=self.period_start,
            period_end=self.period_end,
            total_in=self._total_in,
            total_out=self._total_out,
            net_balance=self._total_in - self._total_out,
            by_category=dict(sorted(self._by_category.items())),
            by_payment_method=dict(sorted(self._by_payment_method.items())),
            transaction_count=self._count,
        )


def summarize(entries: Iterable, period_start: Optional[date] = None, period_end: Optional[date] = None) -> LedgerSummary:
    """Summarize entries whose transaction_date lies in [period_start, period_end]."""
    acc = SummaryAccumulator(period_start, period_end)
    acc.add_all(entries)
    return acc.result()


def balance_order_key(entry):
    return (entry.transaction_date, entry.created_at, entry.id)


def running_balance(entries: Iterable) -> List[BalancePoint]:
    """Cumulative in-minus-out after each balance-relevant entry, oldest first."""
    points = []
    balance = ZERO
    relevant = [e for e in entries if not e.is_template and not e.exclude_from_balance]
    for entry in sorted(relevant, key=balance_order_key):
        balance += signed_amount(entry)
        points.append(BalancePoint(entry.id, entry.transaction_date, balance))
    return points


def final_balance(entries: Iterable) -> Decimal:
    points = running_balance(entries)
    return points[-1].balance if points else ZERO
