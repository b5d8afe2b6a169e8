"""
Entry Store.

Append-only persistence and retrieval of ledger entries, scoped by vendor
and optionally by customer. There is no update or delete here.

Reads are ordered newest first by (transaction_date, created_at, id) and
paginated with an opaque keyset cursor, so a page sequence can be resumed
without re-reading.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import date, datetime
from typing import AsyncIterator, List, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vendor_ledger.app.core.clock import Clock
from vendor_ledger.app.core.config import settings
from vendor_ledger.app.core.exceptions import (
    DuplicateIdempotencyKeyError, DuplicateOccurrenceError, LedgerValidationError, StoreUnavailableError
)
from vendor_ledger.app.core.reliability import bounded
from vendor_ledger.app.domain.ledger.entry import EntryFilter, NewEntry
from vendor_ledger.app.models.ledger_entry import LedgerEntry
from vendor_ledger.app.models.ledger_enums import ScheduleStatus
from vendor_ledger.app.models.recurrence_schedule import RecurrenceSchedule
from vendor_ledger.app.services.tenant_directory import TenantDirectory


@dataclass(frozen=True)
class EntryCursor:
    """Position of the last row returned: (transaction_date, created_at, id)."""

    transaction_date: date
    created_at: datetime
    entry_id: int

    @classmethod
    def after(cls, entry: LedgerEntry) -> "EntryCursor":
        return cls(entry.transaction_date, entry.created_at, entry.id)

    def encode(self) -> str:
        raw = json.dumps({
            "d": self.transaction_date.isoformat(),
            "c": self.created_at.isoformat(),
            "i": self.entry_id,
        })
        return base64.urlsafe_b64encode(raw.encode()).decode().rstrip("=")

    @classmethod
    def decode(cls, token: str) -> "EntryCursor":
        try:
            padded = token + "=" * (-len(token) % 4)
            data = json.loads(base64.urlsafe_b64decode(padded.encode()))
            return cls(
                transaction_date=date.fromisoformat(data["d"]),
                created_at=datetime.fromisoformat(data["c"]),
                entry_id=int(data["i"]),
            )
        except (binascii.Error, ValueError, KeyError, TypeError):
            raise LedgerValidationError("cursor", "Malformed pagination cursor")


@dataclass
class EntryPage:
    items: List[LedgerEntry]
    next_cursor: Optional[str] = None


class EntryStore:

    def __init__(self, db: AsyncSession, directory: TenantDirectory, clock: Clock, timeout: float = None):
        self.db = db
        self.directory = directory
        self.clock = clock
        self.timeout = timeout or settings.store_timeout_seconds

    # Writes

    async def append(self, new_entry: NewEntry) -> LedgerEntry:
        """
        Insert one validated entry atomically.

        A recurring template gets its schedule row in the same transaction.

        Raises:
            ResourceNotFoundError: vendor or customer does not resolve
            DuplicateOccurrenceError: (template_id, occurrence_date) exists
            DuplicateIdempotencyKeyError: (vendor_id, idempotency_key) exists
            StoreUnavailableError: timeout or transient database failure
        """
        await self.directory.require_vendor(new_entry.vendor_id)
        if new_entry.customer_id is not None:
            await self.directory.require_customer(new_entry.vendor_id, new_entry.customer_id)

        entry = self._to_row(new_entry)
        try:
            await bounded("append", self._insert(entry, new_entry), self.timeout)
        except IntegrityError:
            await self.db.rollback()
            if new_entry.template_id is not None:
                raise DuplicateOccurrenceError(new_entry.template_id, new_entry.occurrence_date)
            if new_entry.idempotency_key is not None:
                raise DuplicateIdempotencyKeyError(new_entry.vendor_id, new_entry.idempotency_key)
            raise
        except StoreUnavailableError:
            await self.db.rollback()
            raise
        return entry

    def _to_row(self, new_entry: NewEntry) -> LedgerEntry:
        recurrence = new_entry.recurrence
        return LedgerEntry(
            vendor_id=new_entry.vendor_id,
            customer_id=new_entry.customer_id,
            entry_type=new_entry.entry_type,
            amount=new_entry.amount,
            transaction_date=new_entry.transaction_date,
            category=new_entry.category.value,
            payment_method=new_entry.payment_method,
            exclude_from_balance=new_entry.exclude_from_balance,
            description=new_entry.description,
            note=new_entry.note,
            attachments=list(new_entry.attachments),
            recurrence_pattern=recurrence.pattern if recurrence else None,
            recurrence_start_date=recurrence.start_date if recurrence else None,
            recurrence_end_date=recurrence.end_date if recurrence else None,
            template_id=new_entry.template_id,
            occurrence_date=new_entry.occurrence_date,
            reference_type=new_entry.reference_type,
            reference_id=new_entry.reference_id,
            created_by=new_entry.created_by,
            idempotency_key=new_entry.idempotency_key,
            created_at=self.clock.now(),
        )

    async def _insert(self, entry: LedgerEntry, new_entry: NewEntry) -> None:
        self.db.add(entry)
        await self.db.flush()  # Assigns entry.id; raises IntegrityError on duplicate occurrence
        if new_entry.recurrence is not None:
            self.db.add(RecurrenceSchedule(
                template_id=entry.id,
                vendor_id=entry.vendor_id,
                pattern=new_entry.recurrence.pattern,
                start_date=new_entry.recurrence.start_date,
                end_date=new_entry.recurrence.end_date,
                next_due_date=new_entry.recurrence.start_date,
                occurrences_materialized=0,
                status=ScheduleStatus.ACTIVE,
                failure_count=0,
            ))
        await self.db.commit()

    # Reads

    async def get(self, vendor_id: int, entry_id: int) -> Optional[LedgerEntry]:
        result = await bounded(
            "get",
            self.db.execute(
                select(LedgerEntry).where(LedgerEntry.id == entry_id, LedgerEntry.vendor_id == vendor_id)
            ),
            self.timeout,
        )
        return result.scalar_one_or_none()

    async def find_by_idempotency_key(self, vendor_id: int, idempotency_key: str) -> Optional[LedgerEntry]:
        result = await bounded(
            "idempotency",
            self.db.execute(
                select(LedgerEntry).where(
                    LedgerEntry.vendor_id == vendor_id,
                    LedgerEntry.idempotency_key == idempotency_key,
                )
            ),
            self.timeout,
        )
        return result.scalar_one_or_none()

    async def list_by_vendor(
        self,
        vendor_id: int,
        entry_filter: Optional[EntryFilter] = None,
        limit: int = None,
        cursor: Optional[str] = None,
    ) -> EntryPage:
        """One page of a vendor's entries, newest first."""
        limit = limit or settings.default_page_size
        stmt = self._filtered(vendor_id, entry_filter or EntryFilter())
        if cursor:
            stmt = stmt.where(self._before(EntryCursor.decode(cursor)))
        stmt = stmt.order_by(
            LedgerEntry.transaction_date.desc(),
            LedgerEntry.created_at.desc(),
            LedgerEntry.id.desc(),
        ).limit(limit + 1)

        result = await bounded("list", self.db.execute(stmt), self.timeout)
        rows = list(result.scalars().all())

        next_cursor = None
        if len(rows) > limit:
            rows = rows[:limit]
            next_cursor = EntryCursor.after(rows[-1]).encode()
        return EntryPage(items=rows, next_cursor=next_cursor)

    async def list_by_customer(
        self,
        vendor_id: int,
        customer_id: int,
        limit: int = None,
        cursor: Optional[str] = None,
    ) -> EntryPage:
        """One page of a customer's sub-ledger, same ordering as the vendor ledger."""
        return await self.list_by_vendor(vendor_id, EntryFilter(customer_id=customer_id), limit, cursor)

    async def count(self, vendor_id: int, entry_filter: Optional[EntryFilter] = None) -> int:
        inner = self._filtered(vendor_id, entry_filter or EntryFilter()).with_only_columns(LedgerEntry.id)
        result = await bounded(
            "count", self.db.execute(select(func.count()).select_from(inner.subquery())), self.timeout
        )
        return result.scalar_one()

    async def iter_window(
        self,
        vendor_id: int,
        entry_filter: Optional[EntryFilter] = None,
        batch_size: int = None,
    ) -> AsyncIterator[List[LedgerEntry]]:
        """Batches of matching entries, oldest first, read with a keyset."""
        batch_size = batch_size or settings.summary_scan_batch_size
        base = self._filtered(vendor_id, entry_filter or EntryFilter())
        position = None
        while True:
            stmt = base
            if position is not None:
                stmt = stmt.where(self._after(position))
            stmt = stmt.order_by(
                LedgerEntry.transaction_date.asc(),
                LedgerEntry.created_at.asc(),
                LedgerEntry.id.asc(),
            ).limit(batch_size)
            result = await bounded("scan", self.db.execute(stmt), self.timeout)
            batch = list(result.scalars().all())
            if not batch:
                return
            yield batch
            if len(batch) < batch_size:
                return
            position = EntryCursor.after(batch[-1])

    async def latest_marker(self, vendor_id: int) -> str:
        """
        Changes whenever an entry commits to the vendor's ledger.

        ``count:max_id``. Ids are not committed in order: a transaction that
        took a lower id can commit after one with a higher id, leaving the
        max unchanged. Rows are never deleted, so the count still rises.
        """
        result = await bounded(
            "marker",
            self.db.execute(
                select(func.count(LedgerEntry.id), func.max(LedgerEntry.id))
                .where(LedgerEntry.vendor_id == vendor_id)
            ),
            self.timeout,
        )
        count, max_id = result.one()
        return f"{count}:{max_id or 0}"

    # Recurrence support

    async def get_template(self, template_id: int) -> Optional[LedgerEntry]:
        result = await bounded(
            "template",
            self.db.execute(
                select(LedgerEntry).where(
                    LedgerEntry.id == template_id,
                    LedgerEntry.recurrence_pattern.is_not(None),
                )
            ),
            self.timeout,
        )
        return result.scalar_one_or_none()

    async def find_occurrence(self, template_id: int, occurrence_date: date) -> Optional[LedgerEntry]:
        result = await bounded(
            "occurrence",
            self.db.execute(
                select(LedgerEntry).where(
                    LedgerEntry.template_id == template_id,
                    LedgerEntry.occurrence_date == occurrence_date,
                )
            ),
            self.timeout,
        )
        return result.scalar_one_or_none()

    async def list_due_schedules(self, as_of: date, vendor_id: Optional[int] = None) -> List[int]:
        """Template ids whose next occurrence is on or before ``as_of``."""
        stmt = select(RecurrenceSchedule.template_id).where(
            RecurrenceSchedule.status == ScheduleStatus.ACTIVE,
            RecurrenceSchedule.next_due_date <= as_of,
        )
        if vendor_id is not None:
            stmt = stmt.where(RecurrenceSchedule.vendor_id == vendor_id)
        result = await bounded("due", self.db.execute(stmt.order_by(RecurrenceSchedule.template_id)), self.timeout)
        return list(result.scalars().all())

    async def get_schedule(self, template_id: int) -> Optional[RecurrenceSchedule]:
        return await bounded("schedule", self.db.get(RecurrenceSchedule, template_id), self.timeout)

    # Query helpers

    @staticmethod
    def _filtered(vendor_id: int, entry_filter: EntryFilter):
        stmt = select(LedgerEntry).where(LedgerEntry.vendor_id == vendor_id)
        if entry_filter.start_date is not None:
            stmt = stmt.where(LedgerEntry.transaction_date >= entry_filter.start_date)
        if entry_filter.end_date is not None:
            stmt = stmt.where(LedgerEntry.transaction_date <= entry_filter.end_date)
        if entry_filter.entry_type is not None:
            stmt = stmt.where(LedgerEntry.entry_type == entry_filter.entry_type)
        if entry_filter.category is not None:
            stmt = stmt.where(LedgerEntry.category == entry_filter.category)
        if entry_filter.payment_method is not None:
            stmt = stmt.where(LedgerEntry.payment_method == entry_filter.payment_method)
        if entry_filter.customer_id is not None:
            stmt = stmt.where(LedgerEntry.customer_id == entry_filter.customer_id)
        if not entry_filter.include_templates:
            stmt = stmt.where(LedgerEntry.recurrence_pattern.is_(None))
        return stmt

    @staticmethod
    def _before(cursor: EntryCursor):
        return or_(
            LedgerEntry.transaction_date < cursor.transaction_date,
            and_(
                LedgerEntry.transaction_date == cursor.transaction_date,
                or_(
                    LedgerEntry.created_at < cursor.created_at,
                    and_(LedgerEntry.created_at == cursor.created_at, LedgerEntry.id < cursor.entry_id),
                ),
            ),
        )

    @staticmethod
    def _after(cursor: EntryCursor):
        return or_(
            LedgerEntry.transaction_date > cursor.transaction_date,
            and_(
                LedgerEntry.transaction_date == cursor.transaction_date,
                or_(
                    LedgerEntry.created_at > cursor.created_at,
                    and_(LedgerEntry.created_at == cursor.created_at, LedgerEntry.id > cursor.entry_id),
                ),
            ),
        )
