"""
Location API Endpoints.

Ingest location pings and query stored locations.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Path, Query, Body
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_tracker.app.db.session import get_db
from fleet_tracker.app.core.clock import Clock, ensure_utc, get_clock
from fleet_tracker.app.schemas.location import (
    LocationPing, LocationResponse, TruckHistoryResponse, FleetPositionsResponse
)
from fleet_tracker.app.services.broadcast import LocationBroadcaster, get_broadcaster
from fleet_tracker.app.services.ingestion import ingest_ping
from fleet_tracker.app.services import location_store

router = APIRouter(tags=["Locations"])


@router.post("/locations", response_model=LocationResponse, status_code=status.HTTP_201_CREATED)
async def record_location(
    ping: LocationPing = Body(...),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    broadcaster: LocationBroadcaster = Depends(get_broadcaster),
):
    """
    Record a location ping.
    
    Omit ``timestamp`` to use the server receipt time as observation time.
    """
    return await ingest_ping(db, ping, clock, broadcaster)


@router.get("/locations/{location_id}", response_model=LocationResponse)
async def get_location(
    location_id: int = Path(..., description="Location ID"),
    db: AsyncSession = Depends(get_db),
):
    record = await location_store.get_location(db, location_id)
    return LocationResponse.model_validate(record)


@router.get("/trucks/positions", response_model=FleetPositionsResponse)
async def get_fleet_positions(db: AsyncSession = Depends(get_db)):
    """Latest known position of every truck."""
    records = await location_store.latest_positions(db)
    return FleetPositionsResponse(
        positions=[LocationResponse.model_validate(r) for r in records],
        count=len(records),
    )


@router.get("/trucks/{truck_id}/locations", response_model=TruckHistoryResponse)
async def get_truck_history(
    truck_id: str = Path(..., description="Truck ID"),
    since: Optional[datetime] = Query(None, description="Earliest observation time"),
    until: Optional[datetime] = Query(None, description="Latest observation time"),
    limit: int = Query(100, ge=1, description="Maximum locations returned; large values are capped"),
    db: AsyncSession = Depends(get_db),
):
    """
    Location history for a truck, newest first.
    """
    if since is not None and until is not None and ensure_utc(since) > ensure_utc(until):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="'since' must not be after 'until'"
        )
    
    records = await location_store.list_truck_locations(
        db, truck_id, since=since, until=until, limit=limit
    )
    return TruckHistoryResponse(
        truck_id=truck_id,
        locations=[LocationResponse.model_validate(r) for r in records],
        count=len(records),
    )


@router.get("/trucks/{truck_id}/locations/latest", response_model=LocationResponse)
async def get_latest_location(
    truck_id: str = Path(..., description="Truck ID"),
    db: AsyncSession = Depends(get_db),
):
    record = await location_store.latest_truck_location(db, truck_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No locations recorded for truck {truck_id}"
        )
    return LocationResponse.model_validate(record)
