# ruff: noqa: PLW0603
"""Redis client lifecycle.

Only used when ``realtime_backend=redis``: comment events then travel
between API workers over pub/sub channels named by :func:`comment_channel`.
"""

import redis.asyncio as redis

from threadcast.config import Settings, get_settings
from threadcast.core.logging import get_logger


logger = get_logger(__name__)

_redis_client: redis.Redis | None = None


def _client_from_settings(settings: Settings) -> redis.Redis:
    return redis.from_url(
        settings.redis_url,
        decode_responses=True,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_connect_timeout,
        retry_on_timeout=settings.redis_retry_on_timeout,
        health_check_interval=settings.redis_health_check_interval,
    )


async def init_redis() -> redis.Redis:
    """Create the shared client; raises if the server does not answer PING."""
    global _redis_client

    settings = get_settings()
    client = _client_from_settings(settings)
    try:
        await client.ping()
    except redis.ConnectionError as e:
        logger.warning("redis_connection_failed", url=settings.redis_url, error=str(e))
        await client.aclose()
        raise

    _redis_client = client
    logger.info("redis_connected", url=settings.redis_url)
    return client


async def shutdown_redis() -> None:
    global _redis_client

    if _redis_client is None:
        return
    await _redis_client.aclose()
    _redis_client = None
    logger.info("redis_disconnected")


def comment_channel(room: str) -> str:
    """Pub/sub channel carrying the events of one room."""
    return f"comments:{room}"
