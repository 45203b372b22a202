"""
Redis async client: singleton pool with graceful fallback.

Redis only carries the cross-process event fan-out.  If it is unreachable
the service keeps working and events are delivered to sockets connected to
this process only.
"""

import logging

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

_pool: aioredis.ConnectionPool | None = None
_client: aioredis.Redis | None = None


async def init_redis(url: str) -> None:
    """Create the connection pool.  Call once at activation."""
    global _pool, _client
    if not url:
        logger.info("REDIS_URL is empty, Redis disabled, broadcasting in-process only")
        return
    try:
        _pool = aioredis.ConnectionPool.from_url(url, decode_responses=True, max_connections=20)
        _client = aioredis.Redis(connection_pool=_pool)
        await _client.ping()
        logger.info("Redis connected: %s", redis_target(_pool))
    except Exception as exc:
        logger.warning("Redis unavailable (%s), broadcasting in-process only", exc)
        _client = None


async def close_redis() -> None:
    """Close the pool.  Call once at deactivation."""
    global _pool, _client
    if _client:
        await _client.aclose()
        _client = None
    if _pool:
        await _pool.aclose()
        _pool = None


def redis_target(pool: aioredis.ConnectionPool) -> str:
    """Host/port/db (or socket path) of *pool*, without credentials."""
    kwargs = pool.connection_kwargs
    if kwargs.get("path"):
        return f"unix:{kwargs['path']}/{kwargs.get('db', 0)}"
    return f"{kwargs.get('host', 'localhost')}:{kwargs.get('port', 6379)}/{kwargs.get('db', 0)}"


def get_redis() -> aioredis.Redis | None:
    """Return the live Redis client, or None if unavailable."""
    return _client
