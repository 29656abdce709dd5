"""
Live WebSocket Endpoints.

Drivers stream pings in; dashboards receive every stored ping.
Sockets never hold a database session while idle: each ping and the
dashboard snapshot get their own short session.
"""

import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from fleet_tracker.app.db.session import get_session_factory
from fleet_tracker.app.core.clock import Clock, get_clock
from fleet_tracker.app.core.exceptions import AppException, validation_error_details
from fleet_tracker.app.schemas.location import LocationPing, LocationResponse
from fleet_tracker.app.services.broadcast import LocationBroadcaster, get_broadcaster
from fleet_tracker.app.services.ingestion import ingest_ping
from fleet_tracker.app.services.location_store import latest_positions

router = APIRouter(prefix="/ws", tags=["Live"])
logger = logging.getLogger("fleet_tracker.live")


def _error(message: str, **details) -> dict:
    return {"type": "error", "message": message, **details}


@router.websocket("/driver/{truck_id}")
async def driver_socket(
    websocket: WebSocket,
    truck_id: str,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    clock: Clock = Depends(get_clock),
    broadcaster: LocationBroadcaster = Depends(get_broadcaster),
):
    """
    Driver location stream.
    
    Each message is a location ping; truckId defaults to the path value.
    Bad messages are answered with an error and the socket stays open.
    """
    await websocket.accept()
    logger.info("Driver %s connected", truck_id)
    try:
        while True:
            raw = await websocket.receive_text()
            
            try:
                payload = json.loads(raw)
            except ValueError:
                await websocket.send_json(_error("Message is not valid JSON"))
                continue
            if not isinstance(payload, dict):
                await websocket.send_json(_error("Message must be a JSON object"))
                continue
            if "truckId" not in payload and "truck_id" not in payload:
                payload["truckId"] = truck_id
            
            try:
                ping = LocationPing.model_validate(payload)
            except ValidationError as e:
                await websocket.send_json(_error("Validation error", errors=validation_error_details(e.errors())))
                continue
            
            try:
                async with session_factory() as db:
                    stored = await ingest_ping(db, ping, clock, broadcaster)
            except AppException as e:
                await websocket.send_json(_error(e.message, error_code=e.error_code))
                continue
            except SQLAlchemyError:
                logger.exception("Failed to store ping from driver %s", truck_id)
                await websocket.send_json(_error("Location could not be stored"))
                continue
            
            await websocket.send_json({"type": "ack", "id": stored.id})
    except WebSocketDisconnect:
        logger.info("Driver %s disconnected", truck_id)


@router.websocket("/dashboard")
async def dashboard_socket(
    websocket: WebSocket,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    broadcaster: LocationBroadcaster = Depends(get_broadcaster),
):
    """
    Dashboard feed.
    
    Starts with a snapshot of the latest position per truck, then one
    location-update message per stored ping. The socket only joins the
    broadcast after its snapshot is sent, so no update can precede it.
    """
    manager = broadcaster.manager
    if not await manager.accept(websocket):
        return
    try:
        async with session_factory() as db:
            records = await latest_positions(db)
        await websocket.send_json({
            "type": "snapshot",
            "data": [
                LocationResponse.model_validate(r).model_dump(mode="json", by_alias=True)
                for r in records
            ],
        })
        manager.register(websocket)
        while True:
            # Dashboards only listen; reading detects the disconnect
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)
