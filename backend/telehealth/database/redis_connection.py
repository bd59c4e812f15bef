"""Redis connection lifecycle.

Redis is optional for the call server: when it is unreachable the relay keeps
working and connection quality reports are only logged. Key layouts live with
the code that owns them (see quality_cache.py).

Environment:
    REDIS_URL: connection URL (default ``redis://localhost:6379``)
    REDIS_SOCKET_TIMEOUT: seconds before a command gives up (default 2)
"""

import os
import logging
from typing import Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class RedisManager:
    """Process wide Redis client, created by the app lifespan.

    Attributes:
        client: ``redis.asyncio.Redis`` once initialize() succeeded, else None
    """

    _instance: Optional["RedisManager"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance.client = None
        return cls._instance

    @property
    def is_initialized(self) -> bool:
        return self.client is not None

    async def initialize(self) -> bool:
        """Connect and verify with PING; failures are logged and return False."""
        if self.client is not None:
            return True

        url = os.getenv("REDIS_URL", "redis://localhost:6379")
        timeout = float(os.getenv("REDIS_SOCKET_TIMEOUT", "2"))
        client = redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        try:
            await client.ping()
        except Exception as e:
            logger.error(f"[Redis] unavailable at {url}: {e}")
            await client.aclose()
            return False

        self.client = client
        logger.info(f"[Redis] connected: {url}")
        return True

    async def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.warning(f"[Redis] ping failed: {e}")
            return False

    async def close(self):
        client, self.client = self.client, None
        if client is not None:
            await client.aclose()
            logger.info("[Redis] connection closed")


def get_redis_manager() -> RedisManager:
    return RedisManager()
