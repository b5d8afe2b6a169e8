"""
FastAPI Application Entry Point.

This is the main application file for the Vendor Ledger service.
"""

import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from vendor_ledger.app.core.config import settings
from vendor_ledger.app.api.v1.router import router as api_v1_router
from vendor_ledger.app.core.clock import system_clock
from vendor_ledger.app.core.observability import ObservabilityMiddleware, configure_logging
from vendor_ledger.app.core.redis_client import ping_redis
from vendor_ledger.app.db.session import engine, Base, AsyncSessionLocal
from vendor_ledger.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from vendor_ledger.app.services.recurrence_generator import RecurrenceGenerator, run_scheduler

# Import models to ensure they are registered with Base
from vendor_ledger.app.models.tenant import Vendor, Customer
from vendor_ledger.app.models.ledger_entry import LedgerEntry
from vendor_ledger.app.models.recurrence_schedule import RecurrenceSchedule
from vendor_ledger.app.models.audit_log import AuditLog


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Configures logging and creates database tables on startup.
    2. Starts the periodic recurrence generator when enabled.
    3. Cancels the generator on shutdown.
    """
    configure_logging(settings.log_level)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    scheduler_task = None
    if settings.recurrence_scheduler_enabled:
        generator = RecurrenceGenerator(AsyncSessionLocal, system_clock)
        scheduler_task = asyncio.create_task(
            run_scheduler(generator, settings.recurrence_interval_seconds)
        )
    yield
    if scheduler_task is not None:
        scheduler_task.cancel()
        try:
            await scheduler_task
        except asyncio.CancelledError:
            pass

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Append-only vendor ledger: entries, balances, summaries and recurring entries",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "cache": "up" if await ping_redis() else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to the Vendor Ledger API",
        "docs": "/docs",
        "health": "/health",
    }
