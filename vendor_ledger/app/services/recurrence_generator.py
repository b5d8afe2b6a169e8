"""
Recurrence Generator.

Periodic task that turns recurring templates into concrete, dated clone
entries. Each run:

1. Lists schedules whose next due date is on or before ``as_of``.
2. For every due occurrence, checks for an existing clone with the same
   (template_id, occurrence_date) and appends one if absent.
3. Advances the schedule pointer past the occurrence.

Re-running never double-writes: the check-before-write step skips existing
clones, and the store's unique (template_id, occurrence_date) constraint
catches two runners that both passed the check.

Every template is processed in its own session. A failure stops that
template at the failed occurrence (retried on the next run) and is recorded
on its schedule; other templates carry on.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from vendor_ledger.app.core.clock import Clock
from vendor_ledger.app.core.config import settings
from vendor_ledger.app.core.exceptions import (
    AppException, DuplicateOccurrenceError, RecurrenceMaterializationError, StoreUnavailableError,
)
from vendor_ledger.app.core.reliability import bounded
from vendor_ledger.app.domain.ledger.entry import NewEntry
from vendor_ledger.app.domain.ledger.recurrence import due_occurrences, is_exhausted, occurrence_date
from vendor_ledger.app.models.ledger_enums import ScheduleStatus
from vendor_ledger.app.models.recurrence_schedule import RecurrenceSchedule
from vendor_ledger.app.services.audit import AuditAction, log_event
from vendor_ledger.app.services.entry_store import EntryStore
from vendor_ledger.app.services.tenant_directory import TenantDirectory

logger = logging.getLogger("vendor_ledger.recurrence")


@dataclass
class OccurrenceFailure:
    template_id: int
    occurrence_date: date
    error: str


@dataclass
class RunReport:
    as_of: date
    templates_scanned: int = 0
    occurrences_materialized: int = 0
    occurrences_skipped: int = 0
    failures: List[OccurrenceFailure] = field(default_factory=list)


class RecurrenceGenerator:

    def __init__(self, session_factory: async_sessionmaker, clock: Clock, timeout: float = None):
        self.session_factory = session_factory
        self.clock = clock
        self.timeout = timeout or settings.store_timeout_seconds

    def _store(self, db) -> EntryStore:
        return EntryStore(db, TenantDirectory(db, self.timeout), self.clock, self.timeout)

    async def run(self, as_of: Optional[date] = None, vendor_id: Optional[int] = None) -> RunReport:
        """
        Materialize every occurrence due on or before ``as_of`` (default: today).

        Missed occurrences are backfilled oldest first. Returns a report of
        what was written, skipped and failed.
        """
        as_of = as_of or self.clock.today()
        report = RunReport(as_of=as_of)

        async with self.session_factory() as db:
            template_ids = await self._store(db).list_due_schedules(as_of, vendor_id)

        for template_id in template_ids:
            report.templates_scanned += 1
            try:
                await self._process_template(template_id, as_of, report)
            except RecurrenceMaterializationError as e:
                logger.error(
                    "Recurrence failed for template %s on %s: %s",
                    e.template_id, e.occurrence_date, e.message,
                )
                report.failures.append(OccurrenceFailure(e.template_id, e.occurrence_date, e.message))
                await self._record_failure(template_id, e.message)

        logger.info(
            "Recurrence run as of %s: %d templates, %d materialized, %d skipped, %d failed",
            as_of, report.templates_scanned, report.occurrences_materialized,
            report.occurrences_skipped, len(report.failures),
        )
        return report

    async def _process_template(self, template_id: int, as_of: date, report: RunReport) -> None:
        """
        Materialize the due occurrences of one template in its own session.

        Any store, audit or database error ends the template's work at the
        current occurrence as a RecurrenceMaterializationError.
        """
        when = as_of
        async with self.session_factory() as db:
            store = self._store(db)
            try:
                schedule = await store.get_schedule(template_id)
                template = await store.get_template(template_id)
                if schedule is None or template is None:
                    logger.warning("Schedule for template %s has no template row; skipping", template_id)
                    return

                start, pattern, end_date = schedule.start_date, schedule.pattern, schedule.end_date
                from_index = schedule.occurrences_materialized
                when = start
                prototype = NewEntry.clone_of(template, start)

                for index, when in due_occurrences(start, pattern, end_date, from_index, as_of):
                    created = await self._materialize(store, prototype, when)
                    next_due = occurrence_date(start, pattern, index + 1)
                    await self._advance(db, template_id, index + 1, next_due, is_exhausted(end_date, next_due))

                    if created is None:
                        report.occurrences_skipped += 1
                        continue

                    report.occurrences_materialized += 1
                    await bounded(
                        "audit",
                        log_event(
                            db,
                            action=AuditAction.RECURRENCE_MATERIALIZED,
                            vendor_id=created.vendor_id,
                            entry_id=created.id,
                            metadata={"template_id": template_id, "occurrence_date": when.isoformat()},
                        ),
                        self.timeout,
                    )
                    logger.info("Materialized template %s for %s as entry %s", template_id, when, created.id)
            except AppException as e:
                raise RecurrenceMaterializationError(template_id, when, e.message)
            except SQLAlchemyError as e:
                raise RecurrenceMaterializationError(template_id, when, f"{e.__class__.__name__}: {e}")

    async def _materialize(self, store: EntryStore, prototype: NewEntry, when: date):
        """Append the clone for ``when``; None if it already exists."""
        if await store.find_occurrence(prototype.template_id, when) is not None:
            return None
        clone = dataclasses.replace(prototype, transaction_date=when, occurrence_date=when)
        try:
            return await store.append(clone)
        except DuplicateOccurrenceError:
            # Another runner wrote it between the check and the insert
            return None

    async def _advance(self, db, template_id: int, materialized: int, next_due: date, exhausted: bool) -> None:
        """Move the pointer forward; never backwards if a concurrent run got further."""
        values = {
            "occurrences_materialized": materialized,
            "next_due_date": next_due,
            "last_run_at": self.clock.now(),
            "last_error": None,
        }
        if exhausted:
            values["status"] = ScheduleStatus.COMPLETED
        stmt = (
            update(RecurrenceSchedule)
            .where(
                RecurrenceSchedule.template_id == template_id,
                RecurrenceSchedule.occurrences_materialized < materialized,
            )
            .values(**values)
        )
        await bounded("schedule.advance", db.execute(stmt), self.timeout)
        await bounded("schedule.commit", db.commit(), self.timeout)

    async def _record_failure(self, template_id: int, error: str) -> None:
        async with self.session_factory() as db:
            stmt = (
                update(RecurrenceSchedule)
                .where(RecurrenceSchedule.template_id == template_id)
                .values(
                    failure_count=RecurrenceSchedule.failure_count + 1,
                    last_error=error[:1000],
                    last_run_at=self.clock.now(),
                )
            )
            try:
                await bounded("schedule.failure", db.execute(stmt), self.timeout)
                await bounded("schedule.commit", db.commit(), self.timeout)
            except StoreUnavailableError as e:
                logger.error("Could not record failure for template %s: %s", template_id, e.message)


async def run_scheduler(generator: RecurrenceGenerator, interval_seconds: int) -> None:
    """Run the generator every ``interval_seconds`` until cancelled."""
    logger.info("Recurrence scheduler started (every %ss)", interval_seconds)
    while True:
        try:
            await generator.run()
        except StoreUnavailableError as e:
            logger.warning("Recurrence run skipped, store unavailable: %s", e.message)
        except Exception:
            logger.exception("Recurrence run crashed")
        await asyncio.sleep(interval_seconds)
