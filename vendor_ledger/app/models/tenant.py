"""
Tenant directory models.

Vendors and customers are owned by the platform's account and CRM
subsystems. The ledger only reads these tables to resolve references at
write time.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func
from vendor_ledger.app.db.session import Base


class Vendor(Base):
    """A tenant of the platform; every ledger entry belongs to exactly one."""
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Vendor(id={self.id}, name='{self.name}')>"


class Customer(Base):
    """A vendor's customer. Ledger entries refer to it weakly (no FK)."""
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    phone = Column(String(30), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Customer(id={self.id}, vendor_id={self.vendor_id}, name='{self.name}')>"
