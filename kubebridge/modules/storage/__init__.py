"""
Storage Module - Black Box Interface

Purpose: Own the Redis connection used by the cluster store
Interface: connect(), disconnect()
Hidden: Redis specifics, connection pooling, serialization

Can be replaced with any storage backend without affecting other modules.
"""

import logging
import re
from typing import Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


def mask_url(url: str) -> str:
    """Hide credentials embedded in a connection URL."""
    return re.sub(r"//([^:/@]*):([^@]+)@", r"//\1:***@", url)


class StorageModule:
    """Black box storage abstraction."""

    def __init__(self, connection_url: str, password: Optional[str] = None):
        """Initialize storage with connection URL."""
        self.url = connection_url
        self.password = password
        self._client: Optional[redis.Redis] = None

    @classmethod
    def from_config(cls, config) -> "StorageModule":
        """Build the storage module from configuration keys."""
        url = f"redis://{config.get('redis_host')}:{config.get('redis_port')}/{config.get('redis_db')}"
        # Password passed separately to avoid URL encoding issues
        return cls(url, password=config.get("redis_password"))

    async def connect(self) -> redis.Redis:
        """Get storage connection."""
        if not self._client:
            logger.info(f"Connecting to Redis: {mask_url(self.url)}")
            self._client = redis.from_url(
                self.url,
                password=self.password,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    async def disconnect(self) -> None:
        """Close storage connection."""
        if self._client:
            await self._client.aclose()
            self._client = None


__all__ = ["StorageModule", "mask_url"]
