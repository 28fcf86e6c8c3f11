"""Process-wide async Redis client for the primary session store.

Built on first use from settings and closed by close_redis() at shutdown.
Only factories call get_redis(); components receive the client through
their constructors.
"""

from __future__ import annotations

import redis.asyncio as aioredis

from dialog_core.config import get_settings
from dialog_core.core.logging import get_logger

logger = get_logger(__name__)

_client: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    global _client
    if _client is None:
        s = get_settings()
        # Raw bytes; RedisSessionBackend decodes session payloads itself.
        _client = aioredis.from_url(
            s.redis_url,
            decode_responses=False,
            socket_timeout=s.redis_socket_timeout_seconds,
            socket_connect_timeout=s.redis_socket_timeout_seconds,
        )
        logger.debug("redis_client_created")
    return _client


async def close_redis() -> None:
    global _client
    if _client is None:
        return
    await _client.aclose()
    _client = None
