"""Redis-backed TTL cache."""

import json
from datetime import timedelta
from typing import Any, Optional

import redis.asyncio as redis
import structlog

from ..services.ports import CachePort

logger = structlog.get_logger(__name__)


class RedisCache(CachePort):
    """JSON values stored in Redis with per-key expiry."""

    def __init__(self, url: str):
        self.url = url
        self.client: Optional[redis.Redis] = None

    async def connect(self):
        """Connect to Redis."""
        try:
            self.client = redis.from_url(self.url, decode_responses=True)
            await self.client.ping()
            logger.info("Connected to Redis")
        except Exception as e:
            logger.error("Redis connection failed", error=str(e))
            raise

    async def disconnect(self):
        """Disconnect from Redis."""
        try:
            if self.client:
                await self.client.aclose()
                logger.info("Disconnected from Redis")
        except Exception as e:
            logger.error("Redis disconnection failed", error=str(e))

    async def get(self, key: str) -> Optional[Any]:
        raw = await self.client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: timedelta) -> None:
        # Redis rejects a zero expiry
        seconds = max(int(ttl.total_seconds()), 1)
        await self.client.set(key, json.dumps(value), ex=seconds)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self.client.delete(*keys)
