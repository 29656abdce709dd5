"""
Live fan-out of stored locations.

Dashboards connected to this instance get every stored ping over their
WebSocket. Pings are also published on a Redis channel so dashboards
attached to other instances see them; the listener relays messages
published by other instances to local dashboards.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import WebSocket

from fleet_tracker.app.core import redis_client as redis_client_module
from fleet_tracker.app.core.config import settings
from fleet_tracker.app.core.reliability import CircuitBreaker, CircuitOpenError

logger = logging.getLogger("fleet_tracker.broadcast")

LOCATION_UPDATE = "location-update"


class ConnectionManager:
    def __init__(self, max_connections: int = 100):
        self.max_connections = max_connections
        self.active_connections: List[WebSocket] = []

    async def accept(self, websocket: WebSocket) -> bool:
        """Accept the socket unless the limit is reached. Does not register it."""
        if len(self.active_connections) >= self.max_connections:
            await websocket.close(code=1013, reason="Connection limit reached")
            return False
        await websocket.accept()
        return True

    def register(self, websocket: WebSocket):
        """Start delivering broadcasts to an accepted socket."""
        if websocket not in self.active_connections:
            self.active_connections.append(websocket)

    async def connect(self, websocket: WebSocket) -> bool:
        if not await self.accept(websocket):
            return False
        self.register(websocket)
        return True

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, message: Dict[str, Any]) -> int:
        """Send to every dashboard; drop the ones that fail. Returns deliveries."""
        delivered = 0
        for websocket in list(self.active_connections):
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.info("Dropping dashboard connection: %s", e)
                self.disconnect(websocket)
        return delivered


class LocationBroadcaster:
    """Pushes stored locations to local dashboards and to Redis."""

    def __init__(
        self,
        manager: ConnectionManager,
        redis=None,
        channel: str = LOCATION_UPDATE,
        breaker: Optional[CircuitBreaker] = None,
        instance_id: Optional[str] = None,
    ):
        self.manager = manager
        self.redis = redis
        self.channel = channel
        self.breaker = breaker or CircuitBreaker(failure_threshold=3, reset_timeout=30)
        self.instance_id = instance_id or uuid.uuid4().hex

    async def publish(self, location: Dict[str, Any]) -> None:
        """
        Fan a stored location out.
        
        Redis problems are logged and swallowed: a location that made it
        into the database counts as ingested.
        """
        await self.manager.broadcast({"type": LOCATION_UPDATE, "data": location})
        
        if self.redis is None:
            return
        message = json.dumps({"origin": self.instance_id, "data": location})
        try:
            await self.breaker.call(self.redis.publish, self.channel, message)
        except CircuitOpenError:
            logger.debug("Redis fan-out circuit open, skipping publish")
        except Exception as e:
            logger.warning("Redis publish failed (ignoring): %s", e)

    async def relay(self, raw: str) -> bool:
        """
        Forward a message from the Redis channel to local dashboards.
        
        Returns False for malformed messages and for our own publishes,
        which local dashboards already received.
        """
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed fan-out message")
            return False
        if not isinstance(message, dict) or "data" not in message:
            logger.warning("Ignoring malformed fan-out message")
            return False
        if message.get("origin") == self.instance_id:
            return False
        await self.manager.broadcast({"type": LOCATION_UPDATE, "data": message["data"]})
        return True

    async def listen(self, retry_delay: float = 5.0) -> None:
        """
        Relay the Redis channel until cancelled.
        
        A lost Redis connection is logged and the channel is resubscribed
        after ``retry_delay`` seconds.
        """
        while True:
            try:
                await self._listen_once()
                logger.warning("Fan-out subscription on %s ended", self.channel)
            except Exception as e:
                logger.warning("Fan-out listener lost Redis (%s), resubscribing in %.0fs", e, retry_delay)
            await asyncio.sleep(retry_delay)

    async def _listen_once(self) -> None:
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(self.channel)
            logger.info("Listening for fan-out on channel %s", self.channel)
            async for message in pubsub.listen():
                if message.get("type") == "message":
                    await self.relay(message["data"])
        finally:
            await self._close_pubsub(pubsub)

    async def _close_pubsub(self, pubsub) -> None:
        try:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()
        except Exception as e:
            # The connection is usually already gone when this runs
            logger.debug("Error closing fan-out subscription: %s", e)


async def stop_listener(task: Optional[asyncio.Task]) -> None:
    """Cancel the fan-out listener; a task that already failed is logged, not raised."""
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.exception("Fan-out listener stopped with an error")


dashboard_manager = ConnectionManager(max_connections=settings.max_dashboard_connections)
_broadcaster: Optional[LocationBroadcaster] = None


def get_broadcaster() -> LocationBroadcaster:
    """
    FastAPI dependency returning the process-wide broadcaster.
    
    Built on first use so tests can swap the Redis client beforehand.
    """
    global _broadcaster
    if _broadcaster is None:
        redis = redis_client_module.redis_client if settings.fanout_enabled else None
        _broadcaster = LocationBroadcaster(
            dashboard_manager, redis=redis, channel=settings.location_channel
        )
    return _broadcaster
