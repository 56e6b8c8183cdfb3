"""
Redis Caching Service

Short-lived cache for AI search results, so an identical search (same
query over the same candidate posts) is not billed twice by the ranking
service.

Features:
- Single shared Redis connection pool
- JSON serialization of cached values
- Graceful degradation: when Redis is down or CACHE_ENABLED=false every
  call is a no-op miss
- After a failed connect, no reconnect is attempted for
  RECONNECT_BACKOFF_SECONDS, so an outage does not add a connect timeout
  to every request
"""

import hashlib
import json
import logging
import time
from typing import Any, Optional

import redis
from redis.exceptions import RedisError

from bookshare.config import get_settings

logger = logging.getLogger(__name__)

RECONNECT_BACKOFF_SECONDS = 30.0

_redis_client: Optional[redis.Redis] = None
_last_failure_at: Optional[float] = None


def get_redis_client() -> Optional[redis.Redis]:
    """
    Get or create the Redis client.

    Returns:
        Redis client instance, or None if caching is disabled or Redis is
        unreachable
    """
    global _redis_client, _last_failure_at

    settings = get_settings()
    if not settings.cache_enabled:
        return None

    if _redis_client is not None:
        return _redis_client

    if (
        _last_failure_at is not None
        and time.monotonic() - _last_failure_at < RECONNECT_BACKOFF_SECONDS
    ):
        return None

    try:
        _redis_client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        _redis_client.ping()
        _last_failure_at = None
        logger.info("Successfully connected to Redis")
        return _redis_client
    except RedisError as e:
        logger.warning(
            f"Failed to connect to Redis: {e}. "
            f"Caching disabled for {RECONNECT_BACKOFF_SECONDS:.0f}s."
        )
        _redis_client = None
        _last_failure_at = time.monotonic()
        return None


def close_redis_connection() -> None:
    """Close the Redis connection on shutdown."""
    global _redis_client
    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None
        logger.info("Redis connection closed")


def make_cache_key(prefix: str, *parts: str) -> str:
    """
    Build a fixed-length cache key from arbitrary text parts.

    Parts are hashed together so long queries and candidate lists make
    short keys.

    Example:
        make_cache_key("search", "dune", "1:Loved it") -> "search:3f5a..."
    """
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part.encode())
        digest.update(b"\x00")
    return f"{prefix}:{digest.hexdigest()}"


def cache_get(key: str) -> Optional[Any]:
    """
    Get a value from the cache.

    Returns:
        Deserialized value, or None on miss or error
    """
    client = get_redis_client()
    if client is None:
        return None

    try:
        value = client.get(key)
        if value is not None:
            logger.debug(f"Cache HIT: {key}")
            return json.loads(value)
        logger.debug(f"Cache MISS: {key}")
        return None
    except RedisError as e:
        logger.warning(f"Cache get error for {key}: {e}")
        return None
    except json.JSONDecodeError as e:
        logger.warning(f"Cache JSON decode error for {key}: {e}")
        return None


def cache_set(key: str, value: Any, ttl: int) -> bool:
    """
    Set a value in the cache with a TTL in seconds.

    Returns:
        True if cached, False otherwise
    """
    client = get_redis_client()
    if client is None:
        return False

    try:
        client.setex(key, ttl, json.dumps(value))
        logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
        return True
    except RedisError as e:
        logger.warning(f"Cache set error for {key}: {e}")
        return False
    except (TypeError, ValueError) as e:
        logger.warning(f"Cache serialization error for {key}: {e}")
        return False


def get_cache_stats() -> dict:
    """Cache statistics for the health endpoint."""
    client = get_redis_client()
    if client is None:
        return {"status": "disconnected"}

    try:
        info = client.info("stats")
        return {
            "status": "connected",
            "hits": info.get("keyspace_hits", 0),
            "misses": info.get("keyspace_misses", 0),
            "keys": client.dbsize(),
        }
    except RedisError:
        return {"status": "error"}
