"""
Vendor Ledger API Endpoints.

Create, list and summarize a vendor's ledger entries. There are no update or
delete routes: a correction is recorded as a new entry.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Header, Path, Query, status

from vendor_ledger.app.core.config import settings
from vendor_ledger.app.core.dependencies import get_ledger_service
from vendor_ledger.app.core.guards import require_vendor_access
from vendor_ledger.app.domain.ledger.entry import EntryFilter
from vendor_ledger.app.models.ledger_enums import EntryType, PaymentMethod
from vendor_ledger.app.schemas.ledger import (
    CustomerLedgerEntryResponse, CustomerLedgerResponse, LedgerEntryCreate,
    LedgerEntryResponse, LedgerPageResponse, LedgerSummaryResponse,
)
from vendor_ledger.app.services.ledger_service import LedgerService

router = APIRouter(prefix="/vendors/{vendor_id}", tags=["Vendor - Ledger"])


@router.post("/ledger-entries", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_ledger_entry(
    entry_data: LedgerEntryCreate,
    vendor_id: int = Path(..., description="Vendor ID"),
    idempotency_key: Optional[str] = Header(
        None, alias="Idempotency-Key", max_length=64,
        description="Client-chosen key; repeating it returns the original entry instead of writing again",
    ),
    current_user: dict = Depends(require_vendor_access),
    service: LedgerService = Depends(get_ledger_service),
):
    """
    Record a money movement for the vendor.

    Validates:
    - category belongs to the entry type
    - amount is positive with at most two decimals
    - vendor and (if given) customer exist
    - id / created_at are server-assigned and cannot be sent

    Send an Idempotency-Key header to make retries of this request safe.
    """
    new_entry = entry_data.to_new_entry(
        vendor_id, created_by=current_user.get("user_id"), idempotency_key=idempotency_key
    )
    entry = await service.create_entry(vendor_id, new_entry, actor=current_user)
    return LedgerEntryResponse.model_validate(entry)


@router.get("/ledger-entries", response_model=LedgerPageResponse)
async def list_ledger_entries(
    vendor_id: int = Path(..., description="Vendor ID"),
    start_date: Optional[date] = Query(None, description="Inclusive lower bound on transaction_date"),
    end_date: Optional[date] = Query(None, description="Inclusive upper bound on transaction_date"),
    entry_type: Optional[EntryType] = Query(None, alias="type"),
    category: Optional[str] = Query(None),
    payment_method: Optional[PaymentMethod] = Query(None),
    customer_id: Optional[int] = Query(None),
    cursor: Optional[str] = Query(None, description="Opaque cursor from a previous page"),
    limit: Optional[int] = Query(None, ge=1, le=settings.max_page_size),
    current_user: dict = Depends(require_vendor_access),
    service: LedgerService = Depends(get_ledger_service),
):
    """Paginated history, newest transaction first."""
    entry_filter = EntryFilter(
        start_date=start_date,
        end_date=end_date,
        entry_type=entry_type,
        category=category,
        payment_method=payment_method,
        customer_id=customer_id,
    )
    page = await service.get_history(vendor_id, entry_filter, limit, cursor)
    return LedgerPageResponse(
        items=[LedgerEntryResponse.model_validate(e) for e in page.items],
        next_cursor=page.next_cursor,
    )


@router.get("/ledger-entries/{entry_id}", response_model=LedgerEntryResponse)
async def get_ledger_entry(
    vendor_id: int = Path(..., description="Vendor ID"),
    entry_id: int = Path(..., description="Ledger entry ID"),
    current_user: dict = Depends(require_vendor_access),
    service: LedgerService = Depends(get_ledger_service),
):
    entry = await service.get_entry(vendor_id, entry_id)
    return LedgerEntryResponse.model_validate(entry)


@router.get("/ledger-summary", response_model=LedgerSummaryResponse)
async def get_ledger_summary(
    vendor_id: int = Path(..., description="Vendor ID"),
    period_start: date = Query(..., description="First day of the period (inclusive)"),
    period_end: date = Query(..., description="Last day of the period (inclusive)"),
    entry_type: Optional[EntryType] = Query(None, alias="type"),
    category: Optional[str] = Query(None),
    payment_method: Optional[PaymentMethod] = Query(None),
    customer_id: Optional[int] = Query(None),
    current_user: dict = Depends(require_vendor_access),
    service: LedgerService = Depends(get_ledger_service),
):
    """Totals in/out, net balance and breakdowns for the period."""
    summary = await service.get_summary(
        vendor_id,
        period_start,
        period_end,
        entry_type=entry_type,
        category=category,
        payment_method=payment_method,
        customer_id=customer_id,
    )
    return LedgerSummaryResponse.model_validate(summary)


@router.get("/customers/{customer_id}/ledger", response_model=CustomerLedgerResponse)
async def get_customer_ledger(
    vendor_id: int = Path(..., description="Vendor ID"),
    customer_id: int = Path(..., description="Customer ID"),
    cursor: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=settings.max_page_size),
    current_user: dict = Depends(require_vendor_access),
    service: LedgerService = Depends(get_ledger_service),
):
    """
    A customer's sub-ledger.

    Positive balance: the customer has paid the vendor more than the vendor
    paid out to them. Negative: the vendor owes the customer.
    """
    ledger = await service.get_customer_ledger(vendor_id, customer_id, limit, cursor)
    items = []
    for entry in ledger.items:
        item = CustomerLedgerEntryResponse.model_validate(entry)
        item.running_balance = ledger.running_balances.get(entry.id)
        items.append(item)
    return CustomerLedgerResponse(
        vendor_id=vendor_id,
        customer_id=customer_id,
        items=items,
        next_cursor=ledger.next_cursor,
        total_in=ledger.total_in,
        total_out=ledger.total_out,
        balance=ledger.balance,
        transaction_count=ledger.transaction_count,
    )
