"""
Ledger Service.

The facade every caller goes through: request-level validation, then the
entry store, balance calculator and summary cache. There is no update or
delete here; a correction is a new entry.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from vendor_ledger.app.core.clock import Clock
from vendor_ledger.app.core.config import settings
from vendor_ledger.app.core.exceptions import (
    DuplicateIdempotencyKeyError, ResourceNotFoundError, SummaryWindowTooLargeError
)
from vendor_ledger.app.core.reliability import retry_with_backoff
from vendor_ledger.app.domain.ledger.balance import (
    SummaryAccumulator, LedgerSummary, ZERO, final_balance, running_balance, signed_amount
)
from vendor_ledger.app.domain.ledger.entry import EntryFilter, NewEntry
from vendor_ledger.app.models.ledger_entry import LedgerEntry
from vendor_ledger.app.services.audit import AuditAction, log_event
from vendor_ledger.app.services.entry_store import EntryPage, EntryStore
from vendor_ledger.app.services.summary_cache import SummaryCache

logger = logging.getLogger("vendor_ledger.service")


@dataclass
class CustomerLedger:
    vendor_id: int
    customer_id: int
    items: List[LedgerEntry]
    running_balances: Dict[int, Decimal]
    next_cursor: Optional[str]
    total_in: Decimal
    total_out: Decimal
    balance: Decimal
    transaction_count: int


class LedgerService:

    def __init__(self, store: EntryStore, cache: SummaryCache, clock: Clock):
        self.store = store
        self.cache = cache
        self.clock = clock

    @staticmethod
    def _page_size(limit: Optional[int]) -> int:
        if not limit:
            return settings.default_page_size
        return max(1, min(limit, settings.max_page_size))

    async def create_entry(self, vendor_id: int, new_entry: NewEntry, actor: Optional[dict] = None) -> LedgerEntry:
        """
        Append a validated entry and audit it.

        With an idempotency key, transient store failures are retried with
        backoff up to ``write_retry_attempts``: every attempt first looks the
        key up, so a commit that timed out is picked up instead of written
        twice. A repeated key returns the original entry. Without a key the
        append is attempted once.
        """
        actor = actor or {}
        key = new_entry.idempotency_key
        if key is None:
            entry = await self.store.append(new_entry)
        else:
            existing = await self.store.find_by_idempotency_key(vendor_id, key)
            if existing is not None:
                logger.info("Replaying ledger entry %s for idempotency key %s", existing.id, key)
                return existing
            try:
                entry = await retry_with_backoff(
                    lambda: self._append_keyed(new_entry),
                    attempts=settings.write_retry_attempts,
                    base_delay=settings.write_retry_backoff_seconds,
                )
            except DuplicateIdempotencyKeyError:
                # A concurrent request with the same key committed first
                return await self.store.find_by_idempotency_key(vendor_id, key)

        action = AuditAction.RECURRING_TEMPLATE_CREATED if entry.is_template else AuditAction.LEDGER_ENTRY_CREATED
        await log_event(
            self.store.db,
            action=action,
            actor_id=actor.get("user_id"),
            actor_username=actor.get("sub"),
            vendor_id=vendor_id,
            entry_id=entry.id,
            metadata={
                "type": entry.entry_type.value,
                "amount": str(entry.amount),
                "category": entry.category,
                "transaction_date": entry.transaction_date.isoformat(),
            },
        )
        logger.info(
            "Ledger entry %s created for vendor %s (%s %s)",
            entry.id, vendor_id, entry.entry_type.value, entry.amount,
        )
        return entry

    async def _append_keyed(self, new_entry: NewEntry) -> LedgerEntry:
        existing = await self.store.find_by_idempotency_key(new_entry.vendor_id, new_entry.idempotency_key)
        if existing is not None:
            return existing
        return await self.store.append(new_entry)

    async def get_entry(self, vendor_id: int, entry_id: int) -> LedgerEntry:
        entry = await self.store.get(vendor_id, entry_id)
        if entry is None:
            raise ResourceNotFoundError("Ledger entry", entry_id)
        return entry

    async def get_history(
        self,
        vendor_id: int,
        entry_filter: Optional[EntryFilter] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> EntryPage:
        await self.store.directory.require_vendor(vendor_id)
        return await self.store.list_by_vendor(vendor_id, entry_filter, self._page_size(limit), cursor)

    async def get_summary(
        self,
        vendor_id: int,
        period_start: date,
        period_end: date,
        entry_type=None,
        category: Optional[str] = None,
        payment_method=None,
        customer_id: Optional[int] = None,
    ) -> LedgerSummary:
        """
        Summarize the inclusive period [period_start, period_end].

        The window is streamed in keyset batches and must not exceed
        ``summary_max_entries``; an oversized window is rejected rather than
        summarized partially.
        """
        entry_filter = EntryFilter(
            start_date=period_start,
            end_date=period_end,
            entry_type=entry_type,
            category=category,
            payment_method=payment_method,
            customer_id=customer_id,
            include_templates=False,
        )
        await self.store.directory.require_vendor(vendor_id)

        marker = await self.store.latest_marker(vendor_id)
        key = self.cache.key(vendor_id, marker, {
            "start": period_start,
            "end": period_end,
            "type": entry_filter.entry_type,
            "category": entry_filter.category,
            "payment_method": entry_filter.payment_method,
            "customer_id": customer_id,
        })
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        matching = await self.store.count(vendor_id, entry_filter)
        if matching > settings.summary_max_entries:
            raise SummaryWindowTooLargeError(settings.summary_max_entries)

        acc = SummaryAccumulator(period_start, period_end)
        async for batch in self.store.iter_window(vendor_id, entry_filter):
            acc.add_all(batch)
        summary = acc.result()

        await self.cache.set(key, summary)
        return summary

    async def _customer_entries(self, vendor_id: int, customer_id: int) -> List[LedgerEntry]:
        entry_filter = EntryFilter(customer_id=customer_id, include_templates=False)
        if await self.store.count(vendor_id, entry_filter) > settings.summary_max_entries:
            raise SummaryWindowTooLargeError(settings.summary_max_entries)
        entries = []
        async for batch in self.store.iter_window(vendor_id, entry_filter):
            entries.extend(batch)
        return entries

    async def get_customer_ledger(
        self,
        vendor_id: int,
        customer_id: int,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> CustomerLedger:
        """
        One page of the customer's sub-ledger plus balances.

        ``running_balances`` maps entry id to the customer balance right
        after that entry. Templates and ``exclude_from_balance`` entries do
        not move the balance and have no mapping. The customer itself is not
        required to still exist; its history outlives it.
        """
        await self.store.directory.require_vendor(vendor_id)
        page = await self.store.list_by_customer(vendor_id, customer_id, self._page_size(limit), cursor)

        entries = await self._customer_entries(vendor_id, customer_id)
        points = running_balance(entries)
        total_in = total_out = ZERO
        for entry in entries:
            if entry.exclude_from_balance:
                continue
            if signed_amount(entry) > 0:
                total_in += entry.amount
            else:
                total_out += entry.amount

        return CustomerLedger(
            vendor_id=vendor_id,
            customer_id=customer_id,
            items=page.items,
            running_balances={p.entry_id: p.balance for p in points},
            next_cursor=page.next_cursor,
            total_in=total_in,
            total_out=total_out,
            balance=final_balance(entries),
            transaction_count=len(points),
        )

    async def customer_balance(self, vendor_id: int, customer_id: int) -> Decimal:
        """Final running balance of the customer; positive means the customer is a net payer."""
        return final_balance(await self._customer_entries(vendor_id, customer_id))
