"""
Centralized Test Configuration.
"""

from datetime import datetime, timezone

import pytest
from httpx import AsyncClient, ASGITransport
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from vendor_ledger.app.main import app
from vendor_ledger.app.db.session import get_db, get_session_factory, Base
from vendor_ledger.app.core.clock import DeterministicClock, get_clock
from vendor_ledger.app.core.jwt import create_access_token
from vendor_ledger.app.core.redis_client import get_redis
from vendor_ledger.app.models.enums import UserRole
from vendor_ledger.app.models.tenant import Customer, Vendor
from vendor_ledger.app.services.entry_store import EntryStore
from vendor_ledger.app.services.ledger_service import LedgerService
from vendor_ledger.app.services.summary_cache import SummaryCache
from vendor_ledger.app.services.tenant_directory import TenantDirectory

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("Redis is down")

    async def ping(self):
        self._check()
        return True

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value
        return True

    async def delete(self, key):
        self._check()
        return 1 if self.store.pop(key, None) is not None else 0

    async def flushdb(self):
        self.store = {}


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def redis():
    return MockRedis()


@pytest.fixture
async def session_factory():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory, redis, clock):
    """Async client with database, cache and clock overridden."""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_redis] = lambda: redis
    app.dependency_overrides[get_clock] = lambda: clock

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}


@pytest.fixture
def store(db_session, clock):
    return EntryStore(db_session, TenantDirectory(db_session), clock)


@pytest.fixture
def service(store, redis, clock):
    return LedgerService(store=store, cache=SummaryCache(redis, enabled=True), clock=clock)


# Tenant fixtures

async def _create_vendor(session_factory, name: str) -> int:
    async with session_factory() as session:
        vendor = Vendor(name=name, is_active=True)
        session.add(vendor)
        await session.commit()
        return vendor.id


@pytest.fixture
async def vendor_id(session_factory):
    return await _create_vendor(session_factory, "Sharma General Store")


@pytest.fixture
async def other_vendor_id(session_factory):
    return await _create_vendor(session_factory, "Mehta Salon")


@pytest.fixture
async def customer_id(session_factory, vendor_id):
    async with session_factory() as session:
        customer = Customer(vendor_id=vendor_id, name="Asha Rao", phone="9876543210")
        session.add(customer)
        await session.commit()
        return customer.id


# Tokens

def make_headers(role: UserRole, vendor_id: int = None, user_id: int = 1) -> dict:
    data = {"sub": f"{role.value.lower()}_{user_id}", "user_id": user_id, "role": role.value}
    if vendor_id is not None:
        data["vendor_id"] = vendor_id
    return {"Authorization": f"Bearer {create_access_token(data)}"}


@pytest.fixture
def headers_for():
    return make_headers


@pytest.fixture
def vendor_headers(vendor_id):
    return make_headers(UserRole.VENDOR, vendor_id, user_id=10)


@pytest.fixture
def admin_headers():
    return make_headers(UserRole.ADMIN, user_id=1)
