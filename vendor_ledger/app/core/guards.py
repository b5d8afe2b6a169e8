"""
Security guards for role-based and vendor-scoped access control.

Provides dependencies for protecting endpoints.
"""

from typing import List
from fastapi import Depends, Path
from vendor_ledger.app.models.enums import UserRole
from vendor_ledger.app.core.dependencies import get_current_user
from vendor_ledger.app.core.exceptions import InsufficientPermissionsError


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/admin/ops/recurrence/run")
        async def run(current_user: dict = Depends(require_role([UserRole.ADMIN]))):
            ...

    Raises:
        InsufficientPermissionsError (403) if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        try:
            user_role = UserRole(current_user.get("role"))
        except ValueError:
            raise InsufficientPermissionsError("Invalid role in token")

        if user_role not in allowed_roles:
            raise InsufficientPermissionsError(
                f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}",
                details={"role": user_role.value},
            )

        return current_user

    return role_checker


def verify_vendor_access(vendor_id: int, current_user: dict) -> bool:
    """
    Check whether the caller may act on the given vendor's ledger.

    Admins can access every vendor; VENDOR and STAFF tokens only their own.
    """
    user_role = current_user.get("role")

    if user_role == UserRole.ADMIN.value:
        return True

    if user_role in (UserRole.VENDOR.value, UserRole.STAFF.value):
        return current_user.get("vendor_id") == vendor_id

    return False


async def require_vendor_access(
    vendor_id: int = Path(..., description="Vendor ID"),
    current_user: dict = Depends(get_current_user),
) -> dict:
    """
    Dependency for /vendors/{vendor_id}/... routes.

    Raises:
        InsufficientPermissionsError (403) if the token is scoped to another vendor
    """
    if not verify_vendor_access(vendor_id, current_user):
        raise InsufficientPermissionsError(
            "Access denied. You do not have permission to access this vendor's ledger.",
            details={"vendor_id": vendor_id},
        )
    return current_user
