"""
FastAPI Application Entry Point.

This is the main application file for the Fleet Tracker service.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fleet_tracker.app.core.config import settings
from fleet_tracker.app.core.observability import ObservabilityMiddleware, configure_logging
from fleet_tracker.app.core.redis_client import ping_redis, redis_client
from fleet_tracker.app.api.v1.router import router as api_v1_router
from fleet_tracker.app.db.session import engine, Base
from fleet_tracker.app.services.broadcast import get_broadcaster, stop_listener
from fleet_tracker.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from fleet_tracker.app.models.location import LocationRecord

logger = logging.getLogger("fleet_tracker")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.
    
    1. Creates database tables on startup.
    2. Starts the Redis fan-out listener.
    3. Stops the listener and closes connections on shutdown.
    """
    configure_logging(settings.log_level)
    
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    
    listener = None
    if settings.fanout_enabled:
        if not await ping_redis():
            logger.warning("Redis unreachable at startup, fan-out listener will keep retrying")
        listener = asyncio.create_task(
            get_broadcaster().listen(retry_delay=settings.fanout_retry_seconds)
        )
    
    yield
    
    await stop_listener(listener)
    await redis_client.aclose()
    await engine.dispose()

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Truck location ingestion and live tracking",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
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
        "message": "Welcome to the Fleet Tracker API",
        "docs": "/docs",
        "health": "/health",
    }
