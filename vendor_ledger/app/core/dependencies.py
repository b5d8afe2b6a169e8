"""
Authentication and service dependencies for FastAPI.

This module provides dependencies for protecting routes with JWT authentication
and for wiring the ledger service onto a request.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from vendor_ledger.app.core.clock import Clock, get_clock
from vendor_ledger.app.core.exceptions import AuthenticationError
from vendor_ledger.app.core.jwt import decode_access_token
from vendor_ledger.app.core.redis_client import get_redis
from vendor_ledger.app.db.session import get_db
from vendor_ledger.app.services.entry_store import EntryStore
from vendor_ledger.app.services.ledger_service import LedgerService
from vendor_ledger.app.services.summary_cache import SummaryCache
from vendor_ledger.app.services.tenant_directory import TenantDirectory

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Validates the token signature and expiry and requires a user_id and role
    in the payload. Vendor scoping is enforced by the guards.

    Raises:
        AuthenticationError: 401 if authentication fails for any reason
    """
    token = credentials.credentials

    payload = decode_access_token(token)
    if payload is None:
        raise AuthenticationError("Could not validate credentials")

    if not payload.get("user_id") or not payload.get("role"):
        raise AuthenticationError("Invalid token payload")

    return payload


async def get_ledger_service(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    redis=Depends(get_redis),
) -> LedgerService:
    """Build the ledger facade for one request."""
    return LedgerService(
        store=EntryStore(db, TenantDirectory(db), clock),
        cache=SummaryCache(redis),
        clock=clock,
    )
