"""
Database seeding script for a demo vendor.

Creates one vendor with one customer and prints bearer tokens for local use.
Run this script after database is set up but before first use.
"""

import asyncio

from sqlalchemy import select

from vendor_ledger.app.core.jwt import create_access_token
from vendor_ledger.app.db.session import AsyncSessionLocal, Base, engine
from vendor_ledger.app.models.enums import UserRole
from vendor_ledger.app.models.tenant import Customer, Vendor

# Registered with Base for create_all
from vendor_ledger.app.models.ledger_entry import LedgerEntry  # noqa: F401
from vendor_ledger.app.models.recurrence_schedule import RecurrenceSchedule  # noqa: F401
from vendor_ledger.app.models.audit_log import AuditLog  # noqa: F401


async def seed_vendors():
    """
    Seed a demo tenant.

    Creates:
    - 1 vendor ("Demo Salon")
    - 1 customer of that vendor
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting vendor seeding...")

        result = await db.execute(select(Vendor).where(Vendor.name == "Demo Salon"))
        vendor = result.scalar_one_or_none()

        if vendor:
            print("ℹ️  Demo vendor already exists, skipping seeding")
        else:
            vendor = Vendor(name="Demo Salon", is_active=True)
            db.add(vendor)
            await db.flush()

            db.add(Customer(vendor_id=vendor.id, name="Walk-in Customer", phone="9999999999"))
            await db.commit()
            print(f"✅ Created vendor 'Demo Salon' (id: {vendor.id}) with one customer")

        vendor_token = create_access_token(
            data={"sub": "demo_vendor", "user_id": 1, "role": UserRole.VENDOR.value, "vendor_id": vendor.id}
        )
        admin_token = create_access_token(
            data={"sub": "admin", "user_id": 2, "role": UserRole.ADMIN.value}
        )

        print("\n🎉 Seeding completed successfully!")
        print(f"\nVENDOR token (vendor {vendor.id}):\n  {vendor_token}")
        print(f"\nADMIN token:\n  {admin_token}")


if __name__ == "__main__":
    asyncio.run(seed_vendors())
