"""
Location storage service.

Validates location records, writes them and reads them back. Records are
append-only: there is no update path once a record has an id.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_tracker.app.core.clock import ensure_utc
from fleet_tracker.app.core.config import settings
from fleet_tracker.app.core.exceptions import (
    LocationValidationError,
    RecordAlreadyPersistedError,
    ResourceNotFoundError,
)
from fleet_tracker.app.models.location import LocationRecord

logger = logging.getLogger("fleet_tracker.location_store")

# attribute name -> wire name
REQUIRED_FIELDS = {
    "truck_id": "truckId",
    "latitude": "latitude",
    "longitude": "longitude",
    "timestamp": "timestamp",
}


def validate_for_persistence(record: LocationRecord) -> None:
    """
    Check that a record can be written.
    
    Raises:
        RecordAlreadyPersistedError: record already carries an id
        LocationValidationError: one or more required fields are None
    """
    if record.id is not None:
        raise RecordAlreadyPersistedError(record.id)
    
    missing = [wire for attr, wire in REQUIRED_FIELDS.items() if getattr(record, attr) is None]
    if missing:
        raise LocationValidationError(missing)


async def save_location(db: AsyncSession, record: LocationRecord) -> LocationRecord:
    """Validate and persist a record. The database assigns its id."""
    validate_for_persistence(record)
    
    db.add(record)
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.error("Failed to store location for truck %s", record.truck_id)
        raise
    await db.refresh(record)
    
    logger.debug("Stored location %s for truck %s", record.id, record.truck_id)
    return record


async def get_location(db: AsyncSession, location_id: int) -> LocationRecord:
    result = await db.execute(
        select(LocationRecord).where(LocationRecord.id == location_id)
    )
    record = result.scalar_one_or_none()
    if record is None:
        raise ResourceNotFoundError("Location", location_id)
    return record


def clamp_limit(limit: int) -> int:
    return max(1, min(limit, settings.max_history_limit))


async def list_truck_locations(
    db: AsyncSession,
    truck_id: str,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = 100,
) -> List[LocationRecord]:
    """
    Location history for a truck, newest observation first.
    
    ``since`` and ``until`` bound the observation time inclusively.
    """
    query = select(LocationRecord).where(LocationRecord.truck_id == truck_id)
    if since is not None:
        query = query.where(LocationRecord.timestamp >= ensure_utc(since))
    if until is not None:
        query = query.where(LocationRecord.timestamp <= ensure_utc(until))
    query = query.order_by(
        LocationRecord.timestamp.desc(), LocationRecord.id.desc()
    ).limit(clamp_limit(limit))
    
    result = await db.execute(query)
    return list(result.scalars().all())


async def latest_truck_location(db: AsyncSession, truck_id: str) -> Optional[LocationRecord]:
    result = await db.execute(
        select(LocationRecord)
        .where(LocationRecord.truck_id == truck_id)
        .order_by(LocationRecord.timestamp.desc(), LocationRecord.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def latest_positions(db: AsyncSession) -> List[LocationRecord]:
    """Most recent record of every truck, ordered by truck id."""
    ranked = select(
        LocationRecord.id,
        func.row_number().over(
            partition_by=LocationRecord.truck_id,
            order_by=(LocationRecord.timestamp.desc(), LocationRecord.id.desc()),
        ).label("position_rank"),
    ).subquery()
    
    result = await db.execute(
        select(LocationRecord)
        .join(ranked, LocationRecord.id == ranked.c.id)
        .where(ranked.c.position_rank == 1)
        .order_by(LocationRecord.truck_id)
    )
    return list(result.scalars().all())
