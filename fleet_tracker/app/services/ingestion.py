"""
Location ingestion service.

Turns an inbound ping into a stored LocationRecord and fans it out.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from fleet_tracker.app.core.clock import Clock, utc_now
from fleet_tracker.app.models.location import LocationRecord, new_location_record
from fleet_tracker.app.schemas.location import LocationPing, LocationResponse
from fleet_tracker.app.services.broadcast import LocationBroadcaster
from fleet_tracker.app.services.location_store import save_location

logger = logging.getLogger("fleet_tracker.ingestion")


def record_from_ping(ping: LocationPing, clock: Clock = utc_now) -> LocationRecord:
    """
    Populate a new record from a ping.
    
    server_received_at is always the receipt time. timestamp is the
    client-reported time when the ping carries one, else the receipt time.
    """
    record = new_location_record(
        clock,
        truck_id=ping.truck_id,
        latitude=ping.latitude,
        longitude=ping.longitude,
        speed=ping.speed,
        battery=ping.battery,
        status=ping.status,
    )
    if ping.timestamp is not None:
        record.timestamp = ping.timestamp
    return record


async def ingest_ping(
    db: AsyncSession,
    ping: LocationPing,
    clock: Clock,
    broadcaster: LocationBroadcaster,
) -> LocationResponse:
    """Store a ping and push it to live listeners."""
    record = await save_location(db, record_from_ping(ping, clock))
    response = LocationResponse.model_validate(record)
    
    lag = (response.server_received_at - response.timestamp).total_seconds()
    if lag > 60:
        logger.info("Late ping from truck %s (%.0fs after observation)", record.truck_id, lag)
    
    await broadcaster.publish(response.model_dump(mode="json", by_alias=True))
    return response
