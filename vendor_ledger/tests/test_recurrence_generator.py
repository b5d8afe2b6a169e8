"""
Recurrence Generator tests.

Backfill, idempotent re-runs, the uniqueness backstop for racing runners,
and per-template failure isolation.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError

from vendor_ledger.app.core.exceptions import StoreUnavailableError
from vendor_ledger.app.domain.ledger.entry import NewEntry, Recurrence
from vendor_ledger.app.models.audit_log import AuditLog
from vendor_ledger.app.models.ledger_entry import LedgerEntry
from vendor_ledger.app.models.ledger_enums import RecurrencePattern, ScheduleStatus
from vendor_ledger.app.models.recurrence_schedule import RecurrenceSchedule
from vendor_ledger.app.services.entry_store import EntryStore
from vendor_ledger.app.services import recurrence_generator
from vendor_ledger.app.services.recurrence_generator import RecurrenceGenerator


def rent_template(vendor_id, start=date(2024, 1, 31), end=None, amount="15000.00"):
    return NewEntry(
        vendor_id=vendor_id,
        entry_type="out",
        amount=Decimal(amount),
        transaction_date=start,
        category="rent",
        payment_method="bank",
        description="Shop rent",
        recurrence=Recurrence(RecurrencePattern.MONTHLY, start, end),
    )


async def clones_of(session_factory, template_id):
    async with session_factory() as session:
        result = await session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.template_id == template_id)
            .order_by(LedgerEntry.occurrence_date)
        )
        return list(result.scalars().all())


async def schedule_of(session_factory, template_id):
    async with session_factory() as session:
        return await session.get(RecurrenceSchedule, template_id)


async def test_monthly_backfill_clamps_month_end(store, session_factory, clock, vendor_id):
    template = await store.append(rent_template(vendor_id))
    generator = RecurrenceGenerator(session_factory, clock)

    report = await generator.run(as_of=date(2024, 3, 31))

    assert report.templates_scanned == 1
    assert report.occurrences_materialized == 3
    assert report.failures == []
    clones = await clones_of(session_factory, template.id)
    assert [c.transaction_date for c in clones] == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)]
    assert all(c.recurrence_pattern is None for c in clones)
    assert all(c.amount == Decimal("15000.00") and c.category == "rent" for c in clones)

    schedule = await schedule_of(session_factory, template.id)
    assert schedule.occurrences_materialized == 3
    assert schedule.next_due_date == date(2024, 4, 30)
    assert schedule.status == ScheduleStatus.ACTIVE


async def test_template_row_is_never_mutated(store, session_factory, clock, vendor_id):
    template = await store.append(rent_template(vendor_id))
    await RecurrenceGenerator(session_factory, clock).run(as_of=date(2024, 6, 30))

    async with session_factory() as session:
        fresh = await session.get(LedgerEntry, template.id)
    assert fresh.transaction_date == date(2024, 1, 31)
    assert fresh.recurrence_pattern == RecurrencePattern.MONTHLY
    assert fresh.created_at == template.created_at


async def test_rerun_is_idempotent(store, session_factory, clock, vendor_id):
    template = await store.append(rent_template(vendor_id))
    generator = RecurrenceGenerator(session_factory, clock)

    await generator.run(as_of=date(2024, 3, 31))
    second = await generator.run(as_of=date(2024, 3, 31))

    assert second.templates_scanned == 0
    assert second.occurrences_materialized == 0
    assert len(await clones_of(session_factory, template.id)) == 3


async def test_lost_pointer_does_not_double_write(store, session_factory, clock, vendor_id):
    template = await store.append(rent_template(vendor_id))
    generator = RecurrenceGenerator(session_factory, clock)
    await generator.run(as_of=date(2024, 3, 31))

    # Simulate a crash after materializing but before the pointer moved
    async with session_factory() as session:
        await session.execute(
            update(RecurrenceSchedule)
            .where(RecurrenceSchedule.template_id == template.id)
            .values(occurrences_materialized=0, next_due_date=date(2024, 1, 31))
        )
        await session.commit()

    report = await generator.run(as_of=date(2024, 3, 31))
    assert report.occurrences_materialized == 0
    assert report.occurrences_skipped == 3
    assert len(await clones_of(session_factory, template.id)) == 3
    assert (await schedule_of(session_factory, template.id)).occurrences_materialized == 3


async def test_racing_runner_is_stopped_by_unique_constraint(store, session_factory, clock, vendor_id, mocker):
    template = await store.append(rent_template(vendor_id))
    generator = RecurrenceGenerator(session_factory, clock)
    await generator.run(as_of=date(2024, 2, 29))

    async with session_factory() as session:
        await session.execute(
            update(RecurrenceSchedule)
            .where(RecurrenceSchedule.template_id == template.id)
            .values(occurrences_materialized=0, next_due_date=date(2024, 1, 31))
        )
        await session.commit()

    # Both runners passed check-before-write; only the store constraint is left
    mocker.patch.object(EntryStore, "find_occurrence", return_value=None)

    report = await generator.run(as_of=date(2024, 2, 29))
    assert report.occurrences_skipped == 2
    assert report.failures == []
    assert len(await clones_of(session_factory, template.id)) == 2


async def test_bounded_schedule_completes(store, session_factory, clock, vendor_id):
    template = await store.append(rent_template(vendor_id, start=date(2024, 1, 15), end=date(2024, 3, 15)))
    report = await RecurrenceGenerator(session_factory, clock).run(as_of=date(2024, 12, 31))

    assert report.occurrences_materialized == 3
    schedule = await schedule_of(session_factory, template.id)
    assert schedule.status == ScheduleStatus.COMPLETED

    again = await RecurrenceGenerator(session_factory, clock).run(as_of=date(2025, 12, 31))
    assert again.templates_scanned == 0


async def test_default_as_of_is_clock_today(store, session_factory, clock, vendor_id):
    template = await store.append(rent_template(vendor_id, start=date(2023, 12, 1)))
    report = await RecurrenceGenerator(session_factory, clock).run()

    # Clock is 2024-01-01: Dec 1 and Jan 1 are due
    assert report.as_of == date(2024, 1, 1)
    assert report.occurrences_materialized == 2
    assert len(await clones_of(session_factory, template.id)) == 2


async def test_failure_is_isolated_per_template(store, session_factory, clock, vendor_id, mocker):
    failing = await store.append(rent_template(vendor_id, amount="100.00"))
    healthy = await store.append(rent_template(vendor_id, amount="200.00"))

    original_append = EntryStore.append

    async def flaky_append(self, new_entry):
        if new_entry.template_id == failing.id:
            raise StoreUnavailableError("append", "connection reset")
        return await original_append(self, new_entry)

    mocker.patch.object(EntryStore, "append", flaky_append)
    report = await RecurrenceGenerator(session_factory, clock).run(as_of=date(2024, 2, 29))

    assert report.templates_scanned == 2
    assert report.occurrences_materialized == 2
    assert len(report.failures) == 1
    assert report.failures[0].template_id == failing.id
    assert report.failures[0].occurrence_date == date(2024, 1, 31)

    assert len(await clones_of(session_factory, healthy.id)) == 2
    assert await clones_of(session_factory, failing.id) == []

    schedule = await schedule_of(session_factory, failing.id)
    assert schedule.failure_count == 1
    assert "connection reset" in schedule.last_error
    assert schedule.next_due_date == date(2024, 1, 31)

    # Next run retries the failed template once the store recovers
    mocker.patch.object(EntryStore, "append", original_append)
    retry = await RecurrenceGenerator(session_factory, clock).run(as_of=date(2024, 2, 29))
    assert retry.occurrences_materialized == 2
    assert retry.failures == []
    assert len(await clones_of(session_factory, failing.id)) == 2
    assert (await schedule_of(session_factory, failing.id)).last_error is None


async def test_materializations_are_audited(store, session_factory, clock, vendor_id):
    template = await store.append(rent_template(vendor_id))
    await RecurrenceGenerator(session_factory, clock).run(as_of=date(2024, 2, 29))

    async with session_factory() as session:
        result = await session.execute(select(AuditLog).where(AuditLog.action == "RECURRENCE_MATERIALIZED"))
        logs = result.scalars().all()
    assert len(logs) == 2
    assert {log.meta_data["template_id"] for log in logs} == {template.id}
    assert all(log.actor_id is None for log in logs)


async def test_audit_failure_does_not_stop_later_templates(store, session_factory, clock, vendor_id, mocker):
    failing = await store.append(rent_template(vendor_id, amount="100.00"))
    healthy = await store.append(rent_template(vendor_id, amount="200.00"))

    original_log_event = recurrence_generator.log_event

    async def flaky_log_event(db, **kwargs):
        if kwargs["metadata"]["template_id"] == failing.id:
            raise OperationalError("INSERT INTO audit_logs", {}, Exception("disk I/O error"))
        return await original_log_event(db, **kwargs)

    mocker.patch("vendor_ledger.app.services.recurrence_generator.log_event", flaky_log_event)
    report = await RecurrenceGenerator(session_factory, clock).run(as_of=date(2024, 2, 29))

    assert report.templates_scanned == 2
    assert [f.template_id for f in report.failures] == [failing.id]
    assert report.failures[0].occurrence_date == date(2024, 1, 31)
    assert len(await clones_of(session_factory, healthy.id)) == 2

    # The clone was committed before its audit row failed; the pointer moved past it
    assert len(await clones_of(session_factory, failing.id)) == 1
    schedule = await schedule_of(session_factory, failing.id)
    assert schedule.failure_count == 1
    assert schedule.next_due_date == date(2024, 2, 29)

    mocker.patch("vendor_ledger.app.services.recurrence_generator.log_event", original_log_event)
    retry = await RecurrenceGenerator(session_factory, clock).run(as_of=date(2024, 2, 29))
    assert retry.failures == []
    assert len(await clones_of(session_factory, failing.id)) == 2


async def test_clock_moving_forward_makes_next_occurrence_due(store, session_factory, clock, vendor_id):
    template = await store.append(rent_template(vendor_id, start=date(2024, 1, 1)))
    generator = RecurrenceGenerator(session_factory, clock)

    assert (await generator.run()).occurrences_materialized == 1

    clock.set_time(datetime(2024, 2, 1, 6, 0))
    report = await generator.run()
    assert report.as_of == date(2024, 2, 1)
    assert report.occurrences_materialized == 1
    assert [c.transaction_date for c in await clones_of(session_factory, template.id)] == [
        date(2024, 1, 1), date(2024, 2, 1),
    ]
