"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from fleet_tracker.app.api.v1.endpoints import locations, live

router = APIRouter()

# Location ingestion and queries
router.include_router(locations.router)

# Driver and dashboard WebSockets
router.include_router(live.router)
