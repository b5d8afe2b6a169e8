"""
Admin Operations API Endpoints.

Manual control over the recurrence generator and visibility into its
schedules and the audit trail.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vendor_ledger.app.core.clock import Clock, get_clock
from vendor_ledger.app.core.guards import require_role
from vendor_ledger.app.db.session import get_db, get_session_factory
from vendor_ledger.app.models.enums import UserRole
from vendor_ledger.app.models.ledger_enums import ScheduleStatus
from vendor_ledger.app.models.recurrence_schedule import RecurrenceSchedule
from vendor_ledger.app.schemas.ledger import (
    AuditLogResponse, RecurrenceRunRequest, RecurrenceRunResponse, RecurrenceScheduleResponse,
)
from vendor_ledger.app.services.audit import AuditAction, get_audit_trail, log_event
from vendor_ledger.app.services.recurrence_generator import RecurrenceGenerator

router = APIRouter(prefix="/admin/ops", tags=["Admin - Ops"])


@router.post("/recurrence/run", response_model=RecurrenceRunResponse)
async def trigger_recurrence_run(
    run_request: Optional[RecurrenceRunRequest] = None,
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    clock: Clock = Depends(get_clock),
):
    """
    Run one recurrence generator pass now.

    Safe to repeat: already materialized occurrences are skipped.
    """
    run_request = run_request or RecurrenceRunRequest()
    generator = RecurrenceGenerator(session_factory, clock)
    report = await generator.run(as_of=run_request.as_of, vendor_id=run_request.vendor_id)

    await log_event(
        db,
        action=AuditAction.RECURRENCE_RUN_TRIGGERED,
        actor_id=current_user.get("user_id"),
        actor_username=current_user.get("sub"),
        vendor_id=run_request.vendor_id,
        metadata={
            "as_of": report.as_of.isoformat(),
            "materialized": report.occurrences_materialized,
            "failures": len(report.failures),
        },
    )
    return RecurrenceRunResponse.model_validate(report)


@router.get("/recurrence/schedules", response_model=List[RecurrenceScheduleResponse])
async def list_recurrence_schedules(
    schedule_status: Optional[ScheduleStatus] = Query(None, alias="status"),
    vendor_id: Optional[int] = Query(None),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db),
):
    """List recurrence schedules with their failure counters."""
    query = select(RecurrenceSchedule).order_by(RecurrenceSchedule.template_id)
    if schedule_status:
        query = query.where(RecurrenceSchedule.status == schedule_status)
    if vendor_id:
        query = query.where(RecurrenceSchedule.vendor_id == vendor_id)
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/audit", response_model=List[AuditLogResponse])
async def list_audit_trail(
    vendor_id: Optional[int] = Query(None),
    action: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db),
):
    """Most recent audit events first."""
    return await get_audit_trail(db, vendor_id=vendor_id, action=action, limit=limit)
