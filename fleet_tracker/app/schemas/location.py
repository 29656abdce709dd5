"""
Location ping schemas.

Wire format uses camelCase (truckId, serverReceivedAt); snake_case keys
are accepted on input as well.
"""

from pydantic import BaseModel, Field, AliasChoices, field_validator
from datetime import datetime
from typing import Optional, List

from fleet_tracker.app.core.clock import ensure_utc


class LocationPing(BaseModel):
    """Inbound location observation from a truck."""
    truck_id: str = Field(
        ...,
        min_length=1,
        max_length=64,
        validation_alias=AliasChoices("truckId", "truck_id"),
    )
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    speed: Optional[float] = Field(None, ge=0)  # km/h
    battery: Optional[int] = Field(None, ge=0, le=100)  # percent
    status: Optional[str] = Field(None, max_length=50)
    timestamp: Optional[datetime] = None  # client-reported observation time
    
    @field_validator("truck_id")
    @classmethod
    def strip_truck_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("truckId must not be blank")
        return value
    
    @field_validator("timestamp")
    @classmethod
    def timestamp_to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None


class LocationResponse(BaseModel):
    """Stored location record."""
    id: int
    truck_id: str = Field(
        validation_alias=AliasChoices("truck_id", "truckId"),
        serialization_alias="truckId",
    )
    latitude: float
    longitude: float
    speed: Optional[float] = None
    battery: Optional[int] = None
    status: Optional[str] = None
    timestamp: datetime
    server_received_at: datetime = Field(
        validation_alias=AliasChoices("server_received_at", "serverReceivedAt"),
        serialization_alias="serverReceivedAt",
    )
    
    @field_validator("timestamp", "server_received_at")
    @classmethod
    def datetimes_to_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive datetimes
        return ensure_utc(value)
    
    class Config:
        from_attributes = True


class TruckHistoryResponse(BaseModel):
    """Location history for one truck, newest first."""
    truck_id: str = Field(
        validation_alias=AliasChoices("truck_id", "truckId"),
        serialization_alias="truckId",
    )
    locations: List[LocationResponse]
    count: int


class FleetPositionsResponse(BaseModel):
    """Latest known position of every truck."""
    positions: List[LocationResponse]
    count: int
