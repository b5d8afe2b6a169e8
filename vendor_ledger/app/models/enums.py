"""
User roles enumeration.

Defines the caller roles carried in tokens issued by the auth service.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Platform operator with access to every vendor
        VENDOR: Vendor owner, scoped to their own vendor_id
        STAFF: Vendor employee (POS, storefront), scoped to their vendor_id
    """
    ADMIN = "ADMIN"
    VENDOR = "VENDOR"
    STAFF = "STAFF"
