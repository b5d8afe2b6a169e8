"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from vendor_ledger.app.api.v1.endpoints import ledger, admin_ops

router = APIRouter()

# Vendor ledger endpoints
router.include_router(ledger.router)

# Ops endpoints
router.include_router(admin_ops.router)
