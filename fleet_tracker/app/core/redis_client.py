"""
Redis client initialization and connection management.

This module provides the Redis client used for cross-instance fan-out.
"""

import redis.asyncio as redis
from fleet_tracker.app.core.config import settings


# Create async Redis client
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def ping_redis() -> bool:
    """
    Test Redis connection.
    
    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await redis_client.ping()
    except Exception:
        return False
