"""
Entry Store tests.

Append-only persistence, ordering, keyset pagination and tenancy scoping.
"""

from datetime import date
from decimal import Decimal

import pytest

from vendor_ledger.app.core.exceptions import (
    DuplicateOccurrenceError, LedgerValidationError, ResourceNotFoundError
)
from vendor_ledger.app.domain.ledger.entry import EntryFilter, NewEntry, Recurrence
from vendor_ledger.app.models.ledger_enums import EntryType, RecurrencePattern, ScheduleStatus
from vendor_ledger.app.services.entry_store import EntryCursor, EntryStore


def entry(vendor_id, kind="in", amount="100.00", day=date(2024, 1, 10), category=None, **kwargs):
    category = category or ("product_sale" if kind == "in" else "expense")
    return NewEntry(
        vendor_id=vendor_id,
        entry_type=kind,
        amount=Decimal(amount),
        transaction_date=day,
        category=category,
        payment_method=kwargs.pop("payment_method", "cash"),
        **kwargs,
    )


async def test_append_assigns_server_fields(store, vendor_id, clock):
    created = await store.append(entry(vendor_id, amount="499.99"))
    assert created.id is not None
    assert created.created_at == clock.now()
    assert created.amount == Decimal("499.99")

    fetched = await store.get(vendor_id, created.id)
    assert fetched.id == created.id
    assert fetched.entry_type == EntryType.IN


async def test_append_unknown_vendor_is_not_found(store):
    with pytest.raises(ResourceNotFoundError):
        await store.append(entry(9999))


async def test_append_customer_of_other_vendor_is_not_found(store, vendor_id, other_vendor_id, customer_id):
    with pytest.raises(ResourceNotFoundError):
        await store.append(entry(other_vendor_id, customer_id=customer_id))


async def test_store_has_no_mutation_operations():
    assert not hasattr(EntryStore, "update")
    assert not hasattr(EntryStore, "delete")


async def test_entries_are_scoped_by_vendor(store, vendor_id, other_vendor_id):
    mine = await store.append(entry(vendor_id))
    await store.append(entry(other_vendor_id))

    assert await store.get(other_vendor_id, mine.id) is None
    page = await store.list_by_vendor(vendor_id)
    assert [e.id for e in page.items] == [mine.id]


async def test_history_is_newest_transaction_first(store, vendor_id, clock):
    old = await store.append(entry(vendor_id, day=date(2024, 1, 1)))
    clock.tick()
    new_same_day_first = await store.append(entry(vendor_id, day=date(2024, 1, 20)))
    clock.tick()
    new_same_day_second = await store.append(entry(vendor_id, day=date(2024, 1, 20)))
    clock.tick()
    # Backdated entry recorded last still sorts by its transaction date
    middle = await store.append(entry(vendor_id, day=date(2024, 1, 10)))

    page = await store.list_by_vendor(vendor_id)
    assert [e.id for e in page.items] == [new_same_day_second.id, new_same_day_first.id, middle.id, old.id]
    assert page.next_cursor is None


async def test_cursor_pages_through_everything_once(store, vendor_id, clock):
    ids = []
    for day in range(1, 8):
        for _ in range(2):
            created = await store.append(entry(vendor_id, day=date(2024, 3, day)))
            ids.append(created.id)
            clock.tick()

    seen = []
    cursor = None
    while True:
        page = await store.list_by_vendor(vendor_id, limit=3, cursor=cursor)
        seen.extend(e.id for e in page.items)
        if page.next_cursor is None:
            break
        cursor = page.next_cursor

    assert len(seen) == len(ids)
    assert set(seen) == set(ids)
    assert seen == sorted(ids, reverse=True)


async def test_filters_narrow_history(store, vendor_id, customer_id):
    await store.append(entry(vendor_id, "in", day=date(2024, 1, 5), payment_method="upi"))
    rent = await store.append(entry(vendor_id, "out", category="rent", day=date(2024, 1, 6), payment_method="bank"))
    linked = await store.append(entry(vendor_id, "in", day=date(2024, 2, 1), customer_id=customer_id))

    by_type = await store.list_by_vendor(vendor_id, EntryFilter(entry_type="out"))
    assert [e.id for e in by_type.items] == [rent.id]

    by_method = await store.list_by_vendor(vendor_id, EntryFilter(payment_method="bank"))
    assert [e.id for e in by_method.items] == [rent.id]

    by_dates = await store.list_by_vendor(vendor_id, EntryFilter(start_date=date(2024, 2, 1), end_date=date(2024, 2, 1)))
    assert [e.id for e in by_dates.items] == [linked.id]

    by_customer = await store.list_by_customer(vendor_id, customer_id)
    assert [e.id for e in by_customer.items] == [linked.id]

    assert await store.count(vendor_id, EntryFilter(category="rent")) == 1


async def test_iter_window_streams_oldest_first_in_batches(store, vendor_id, clock):
    for day in (5, 1, 3, 2, 4):
        await store.append(entry(vendor_id, day=date(2024, 1, day)))
        clock.tick()

    batches = [batch async for batch in store.iter_window(vendor_id, EntryFilter(), batch_size=2)]
    assert [len(b) for b in batches] == [2, 2, 1]
    days = [e.transaction_date.day for b in batches for e in b]
    assert days == [1, 2, 3, 4, 5]


async def test_malformed_cursor_is_a_validation_error(store, vendor_id):
    with pytest.raises(LedgerValidationError) as exc:
        await store.list_by_vendor(vendor_id, cursor="not-a-cursor")
    assert exc.value.field == "cursor"


async def test_cursor_encoding_is_opaque_and_stable(store, vendor_id):
    created = await store.append(entry(vendor_id))
    token = EntryCursor.after(created).encode()
    assert "=" not in token
    assert EntryCursor.decode(token) == EntryCursor.after(created)


async def test_latest_marker_moves_on_append(store, vendor_id):
    assert await store.latest_marker(vendor_id) == "0:0"
    created = await store.append(entry(vendor_id))
    assert await store.latest_marker(vendor_id) == f"1:{created.id}"


async def test_template_gets_schedule_in_same_transaction(store, vendor_id):
    template = await store.append(entry(
        vendor_id, "out", "15000.00", category="rent",
        recurrence=Recurrence(RecurrencePattern.MONTHLY, date(2024, 1, 31)),
    ))
    assert template.is_template
    schedule = await store.get_schedule(template.id)
    assert schedule.next_due_date == date(2024, 1, 31)
    assert schedule.status == ScheduleStatus.ACTIVE
    assert schedule.occurrences_materialized == 0


async def test_duplicate_occurrence_is_rejected_by_store(store, vendor_id):
    template = await store.append(entry(
        vendor_id, "out", "15000.00", category="rent",
        recurrence=Recurrence(RecurrencePattern.MONTHLY, date(2024, 1, 31)),
    ))
    clone = NewEntry.clone_of(template, date(2024, 1, 31))
    first = await store.append(clone)
    assert (await store.find_occurrence(template.id, date(2024, 1, 31))).id == first.id

    with pytest.raises(DuplicateOccurrenceError):
        await store.append(clone)

    # Session stays usable after the rejected insert
    page = await store.list_by_vendor(vendor_id)
    assert len(page.items) == 2
