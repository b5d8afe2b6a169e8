"""
Concurrency Tests.

Parallel writers and generator runs against a file-backed database, where
every session holds its own connection and SQLite serializes the writers.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from vendor_ledger.app.db.session import Base
from vendor_ledger.app.domain.ledger.entry import NewEntry, Recurrence
from vendor_ledger.app.models.ledger_entry import LedgerEntry
from vendor_ledger.app.models.ledger_enums import RecurrencePattern
from vendor_ledger.app.models.tenant import Vendor
from vendor_ledger.app.services.entry_store import EntryStore
from vendor_ledger.app.services.ledger_service import LedgerService
from vendor_ledger.app.services.recurrence_generator import RecurrenceGenerator
from vendor_ledger.app.services.summary_cache import SummaryCache
from vendor_ledger.app.services.tenant_directory import TenantDirectory


@pytest.fixture
async def shared_factory(tmp_path):
    """Database file shared by independent connections."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"timeout": 30},
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def shop_id(shared_factory):
    async with shared_factory() as session:
        vendor = Vendor(name="Kulkarni Provisions", is_active=True)
        session.add(vendor)
        await session.commit()
        return vendor.id


def sale(vendor_id, amount="100.00", **kwargs):
    return NewEntry(
        vendor_id=vendor_id,
        entry_type="in",
        amount=Decimal(amount),
        transaction_date=date(2024, 1, 5),
        category="product_sale",
        payment_method="upi",
        **kwargs,
    )


async def create_in_own_session(factory, clock, new_entry):
    async with factory() as db:
        service = LedgerService(EntryStore(db, TenantDirectory(db), clock), SummaryCache(None), clock)
        return await service.create_entry(new_entry.vendor_id, new_entry)


async def test_parallel_creates_all_land(shared_factory, shop_id, clock):
    created = await asyncio.gather(*(
        create_in_own_session(shared_factory, clock, sale(shop_id, f"{n}.00"))
        for n in range(1, 11)
    ))

    assert len({entry.id for entry in created}) == 10
    async with shared_factory() as db:
        service = LedgerService(EntryStore(db, TenantDirectory(db), clock), SummaryCache(None), clock)
        summary = await service.get_summary(shop_id, date(2024, 1, 1), date(2024, 1, 31))
    assert summary.transaction_count == 10
    assert summary.total_in == Decimal("55.00")
    assert summary.net_balance == Decimal("55.00")


async def test_parallel_creates_with_same_key_write_once(shared_factory, shop_id, clock):
    created = await asyncio.gather(*(
        create_in_own_session(shared_factory, clock, sale(shop_id, idempotency_key="upi-txn-40017"))
        for _ in range(5)
    ))

    assert len({entry.id for entry in created}) == 1
    async with shared_factory() as db:
        count = await db.scalar(select(func.count(LedgerEntry.id)).where(LedgerEntry.vendor_id == shop_id))
    assert count == 1


async def test_parallel_generator_runs_write_each_occurrence_once(shared_factory, shop_id, clock):
    async with shared_factory() as db:
        template = await EntryStore(db, TenantDirectory(db), clock).append(NewEntry(
            vendor_id=shop_id,
            entry_type="out",
            amount=Decimal("18000.00"),
            transaction_date=date(2024, 1, 31),
            category="rent",
            payment_method="bank",
            recurrence=Recurrence(RecurrencePattern.MONTHLY, date(2024, 1, 31)),
        ))

    reports = await asyncio.gather(
        RecurrenceGenerator(shared_factory, clock).run(as_of=date(2024, 6, 30)),
        RecurrenceGenerator(shared_factory, clock).run(as_of=date(2024, 6, 30)),
    )

    assert all(report.failures == [] for report in reports)
    assert sum(report.occurrences_materialized for report in reports) == 6

    async with shared_factory() as db:
        result = await db.execute(
            select(LedgerEntry.occurrence_date)
            .where(LedgerEntry.template_id == template.id)
            .order_by(LedgerEntry.occurrence_date)
        )
        dates = list(result.scalars().all())
    assert dates == [
        date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31),
        date(2024, 4, 30), date(2024, 5, 31), date(2024, 6, 30),
    ]


async def commit_with_id(store, new_entry, entry_id):
    """Insert a row under a chosen id, as a transaction that took its id earlier would."""
    row = store._to_row(new_entry)
    row.id = entry_id
    store.db.add(row)
    await store.db.commit()
    return row


async def test_summary_cache_sees_entry_committed_after_higher_id(service, store, vendor_id):
    await commit_with_id(store, sale(vendor_id, "500.00"), entry_id=11)
    before = await service.get_summary(vendor_id, date(2024, 1, 1), date(2024, 1, 31))
    assert before.total_in == Decimal("500.00")

    # Took id 10 before id 11 was handed out, but committed after the summary was cached
    await commit_with_id(store, sale(vendor_id, "75.00"), entry_id=10)
    after = await service.get_summary(vendor_id, date(2024, 1, 1), date(2024, 1, 31))

    assert after.total_in == Decimal("575.00")
    assert after.transaction_count == 2
