"""
Tenant/Customer directory lookups.

Resolves vendor and customer references at write time.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vendor_ledger.app.core.config import settings
from vendor_ledger.app.core.exceptions import ResourceNotFoundError
from vendor_ledger.app.core.reliability import bounded
from vendor_ledger.app.models.tenant import Customer, Vendor


class TenantDirectory:

    def __init__(self, db: AsyncSession, timeout: float = None):
        self.db = db
        self.timeout = timeout or settings.store_timeout_seconds

    async def vendor_exists(self, vendor_id: int) -> bool:
        result = await bounded(
            "directory.vendor",
            self.db.execute(select(Vendor.id).where(Vendor.id == vendor_id, Vendor.is_active.is_(True))),
            self.timeout,
        )
        return result.scalar_one_or_none() is not None

    async def customer_exists(self, vendor_id: int, customer_id: int) -> bool:
        """A customer only resolves within the vendor that owns it."""
        result = await bounded(
            "directory.customer",
            self.db.execute(
                select(Customer.id).where(Customer.id == customer_id, Customer.vendor_id == vendor_id)
            ),
            self.timeout,
        )
        return result.scalar_one_or_none() is not None

    async def require_vendor(self, vendor_id: int) -> None:
        if not await self.vendor_exists(vendor_id):
            raise ResourceNotFoundError("Vendor", vendor_id)

    async def require_customer(self, vendor_id: int, customer_id: int) -> None:
        if not await self.customer_exists(vendor_id, customer_id):
            raise ResourceNotFoundError("Customer", customer_id)
