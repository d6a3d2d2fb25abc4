"""
Redis Connection
Shared connection for the RQ generation queue. Only the `rq` job backend
opens it; the inline backend never touches Redis.
"""

import logging
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from redis import Redis
from redis.exceptions import RedisError

from app.core.config import settings

logger = logging.getLogger(__name__)

_client: Optional[Redis] = None


class Queues:
    """RQ queue names, highest priority first."""
    GENERATION = "generation"
    DEFAULT = "default"


def mask_url(url: str) -> str:
    """Redis URL with the password replaced, for logs and health output."""
    parts = urlsplit(url)
    if not parts.password:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"***@{host}", parts.path, parts.query, parts.fragment))


def get_redis() -> Redis:
    """Process-wide Redis client (bytes responses, as RQ expects)."""
    global _client
    if _client is None:
        _client = Redis.from_url(
            settings.REDIS_URL,
            max_connections=10,
            socket_connect_timeout=5,
            retry_on_timeout=True,
            decode_responses=False,
        )
        logger.info(f"[Redis] Connection pool for {mask_url(settings.REDIS_URL)}")
    return _client


def redis_health_check() -> dict:
    """Ping Redis and report its version."""
    url = mask_url(settings.REDIS_URL)
    try:
        client = get_redis()
        client.ping()
        info = client.info("server")
        return {"connected": True, "redis_version": info.get("redis_version", "unknown"), "url": url}
    except (RedisError, OSError) as e:
        logger.error(f"[Redis] Health check failed: {e}")
        return {"connected": False, "error": str(e), "url": url}


def close_redis():
    """Drop the pooled connections (worker shutdown)."""
    global _client
    if _client is not None:
        _client.connection_pool.disconnect()
        _client = None
        logger.info("[Redis] Connection pool closed")


__all__ = ["Queues", "mask_url", "get_redis", "redis_health_check", "close_redis"]
