"""
Location record database model.

One row per location ping reported by a truck.
"""

from sqlalchemy import Column, Integer, Float, String, DateTime, Index
from fleet_tracker.app.core.clock import Clock, utc_now
from fleet_tracker.app.db.session import Base


class LocationRecord(Base):
    """
    Location Record model.
    
    Holds a single observation: where a truck was, how fast it was going,
    its battery level and reported status. Two timestamps are kept:
    ``timestamp`` is when the observation happened on the device,
    ``server_received_at`` is when the server learned about it. Buffered
    uploads from devices that were offline arrive with an old ``timestamp``
    and a fresh ``server_received_at``.
    
    Attributes are plain and unvalidated; the storage layer checks
    required fields before writing.
    """
    __tablename__ = "locations"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    truck_id = Column(String(64), nullable=False, index=True)
    
    # GPS coordinates
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    
    # Telemetry
    speed = Column(Float, nullable=True)
    battery = Column(Integer, nullable=True)
    status = Column(String(50), nullable=True)
    
    # Timing
    timestamp = Column("timestamp", DateTime(timezone=True), nullable=False)  # When the ping was observed
    server_received_at = Column("server_received_at", DateTime(timezone=True), nullable=False)  # When the server got it
    
    __table_args__ = (
        Index("ix_locations_truck_id_timestamp", "truck_id", "timestamp"),
    )
    
    def __init__(self, **kwargs):
        now = utc_now()
        kwargs.setdefault("timestamp", now)
        kwargs.setdefault("server_received_at", now)
        super().__init__(**kwargs)
    
    def __repr__(self):
        return f"<LocationRecord(id={self.id}, truck_id='{self.truck_id}', lat={self.latitude}, lng={self.longitude})>"


def new_location_record(clock: Clock = utc_now, **fields) -> LocationRecord:
    """
    Create a LocationRecord stamped by the given clock.
    
    Both timestamps come from a single clock reading unless supplied
    in ``fields``.
    """
    now = clock()
    fields.setdefault("timestamp", now)
    fields.setdefault("server_received_at", now)
    return LocationRecord(**fields)
