"""
Redis Connection

Holds the shared async client behind cross-process record locks.
``redis_client`` stays None whenever Redis is unreachable; callers
check it and fall back to in-process locking.
"""

import logging

from redis.asyncio import Redis, from_url
from redis.exceptions import RedisError

from maktab.core.config import settings

logger = logging.getLogger(__name__)

redis_client: Redis | None = None


async def init_redis() -> Redis:
    """
    Connect to Redis and verify the connection with a ping.

    Raises:
        RedisError: If the server cannot be reached; the client is left unset
    """
    global redis_client
    client = from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=settings.redis_connect_timeout_seconds,
    )
    try:
        await client.ping()
    except RedisError:
        await client.aclose()
        redis_client = None
        raise

    redis_client = client
    logger.info("Redis connected; record locks are shared across workers")
    return client


async def redis_status() -> dict[str, str]:
    """Connection state for the debug endpoint."""
    if redis_client is None:
        return {"redis": "not initialized", "locks": "in-process"}
    try:
        await redis_client.ping()
    except RedisError as e:
        return {"redis": "error", "locks": "in-process fallback", "message": str(e)}
    return {"redis": "connected", "locks": "redis"}


async def close_redis() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
