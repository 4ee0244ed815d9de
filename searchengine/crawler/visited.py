"""
Run-scoped set of URLs already claimed by a walker task.

A fresh instance is created for every crawl run and discarded when the run
ends, so links seen in one run never suppress crawling in the next.
"""

import logging
import uuid
from typing import Set

import redis.asyncio as redis

from ..utils.config import RedisConfig


class VisitedSet:
    """In-process visited set."""

    def __init__(self):
        self._urls: Set[str] = set()

    async def add_if_absent(self, url: str) -> bool:
        """Claim `url`; returns False when it was already claimed."""
        # No await between the check and the add, so this is atomic on the event loop.
        if url in self._urls:
            return False
        self._urls.add(url)
        return True

    async def size(self) -> int:
        return len(self._urls)

    async def close(self):
        self._urls.clear()


class RedisVisitedSet(VisitedSet):
    """Visited set kept in a Redis set under a key unique to one run."""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "searchengine:visited"):
        super().__init__()
        self.redis_client = redis_client
        self.key = f"{key_prefix}:{uuid.uuid4().hex}"
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config: RedisConfig) -> 'RedisVisitedSet':
        client = redis.Redis(
            host=config.host,
            port=config.port,
            db=config.db,
            password=config.password,
            decode_responses=True
        )
        return cls(client, config.visited_key_prefix)

    async def add_if_absent(self, url: str) -> bool:
        # SADD reports how many members were new
        return await self.redis_client.sadd(self.key, url) == 1

    async def size(self) -> int:
        return await self.redis_client.scard(self.key)

    async def close(self):
        try:
            await self.redis_client.delete(self.key)
        except redis.RedisError as e:
            self.logger.error(f"Error deleting visited set {self.key}: {e}")
        await self.redis_client.aclose()


def create_visited_set(config: RedisConfig) -> VisitedSet:
    if config.enabled:
        return RedisVisitedSet.from_config(config)
    return VisitedSet()
