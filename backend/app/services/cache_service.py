"""
Redis caching service for public workshop listings.

CACHING STRATEGY
================

What we cache:
  - Public workshop listing responses (paginated, JSON-serialized)
  - Cache key pattern: "workshops:list:page={page}&size={size}&upcoming={upcoming}"

Invalidation strategy:
  - Any committed reserve / cancel / status change (remaining seats changed)
  - Any workshop or slot mutation by an operator
  - TTL-based expiry as safety net (REDIS_CACHE_TTL)

  All listing keys share the "workshops:list:" prefix so they can be
  SCANned and deleted together.

What we never cache:
  - Slot availability and booking reads. The reservation coordinator always
    reads the counter from the database inside its transaction; the cache is
    a display aid only and may be briefly stale.

Redis is optional: when it is disabled or unreachable every function here
degrades to a no-op and requests go to the database.
"""

import json
from typing import Optional

import redis.asyncio as redis
from app.core.config import get_settings
from app.core.metrics import record_cache_operation, redis_connection_errors
from app.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

LIST_KEY_PREFIX = "workshops:list:"

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except redis.RedisError as e:
            redis_connection_errors.inc()
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def _make_list_key(page: int, page_size: int, upcoming_only: bool) -> str:
    return f"{LIST_KEY_PREFIX}page={page}&size={page_size}&upcoming={upcoming_only}"


async def get_cached_workshops(page: int, page_size: int, upcoming_only: bool) -> Optional[dict]:
    """Retrieve cached workshop list response."""
    client = await get_redis()
    if not client:
        return None

    key = _make_list_key(page, page_size, upcoming_only)
    try:
        data = await client.get(key)
        record_cache_operation("get", hit=data is not None)
        if data:
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        logger.debug("cache_miss", key=key)
    except redis.RedisError as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_workshops(
    page: int,
    page_size: int,
    upcoming_only: bool,
    data: dict,
) -> None:
    """Cache workshop list response with TTL."""
    client = await get_redis()
    if not client:
        return

    key = _make_list_key(page, page_size, upcoming_only)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except redis.RedisError as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_workshop_cache() -> None:
    """Invalidate all cached workshop listings."""
    client = await get_redis()
    if not client:
        return

    try:
        deleted = 0
        async for key in client.scan_iter(match=f"{LIST_KEY_PREFIX}*", count=100):
            await client.delete(key)
            deleted += 1
        logger.info("cache_invalidated", keys_deleted=deleted)
    except redis.RedisError as e:
        logger.error("cache_invalidation_error", error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for the health endpoint."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except redis.RedisError as e:
        return {"status": "error", "error": str(e)}
