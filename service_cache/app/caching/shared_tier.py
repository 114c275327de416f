"""
Redis client for the shared cache tier.
"""

import asyncio
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger
from shared.errors import TierUnavailableError


TIER_NAME = "redis"


class RedisSharedTier:
    """Thin async wrapper over Redis that reports failures as ``TierUnavailableError``."""

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = 5.0,
        connect_timeout: float = 10.0,
        health_check_interval: int = 30,
    ):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.connect_timeout = connect_timeout
        self.health_check_interval = health_check_interval
        self.logger = get_logger("cache.shared_tier")
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.connect_timeout,
                socket_timeout=self.socket_timeout,
                retry_on_timeout=True,
                health_check_interval=self.health_check_interval,
            )
        return self._redis

    async def _call(self, operation: str, func: Callable[[redis.Redis], Awaitable[Any]]) -> Any:
        try:
            client = await self._get_redis()
            return await func(client)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise TierUnavailableError(
                TIER_NAME,
                f"{operation} failed: {exc}",
                {"operation": operation},
            ) from exc

    async def start(self) -> None:
        """Open the connection and verify it with a ping."""
        await self._call("ping", lambda client: client.ping())
        self.logger.info("Shared cache tier connected")

    async def stop(self) -> None:
        """Close the connection pool."""
        if self._redis is not None:
            client, self._redis = self._redis, None
            await client.aclose()
            self.logger.info("Shared cache tier closed")

    async def get(self, key: str) -> Optional[str]:
        return await self._call("get", lambda client: client.get(key))

    async def set(self, key: str, raw: str, ttl_seconds: int) -> bool:
        return await self._call("set", lambda client: client.set(key, raw, ex=ttl_seconds))

    async def mget(self, keys: Sequence[str]) -> List[Optional[str]]:
        if not keys:
            return []
        return await self._call("mget", lambda client: client.mget(list(keys)))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._call("delete", lambda client: client.delete(*keys))

    async def keys(self, pattern: str) -> List[str]:
        return await self._call("keys", lambda client: client.keys(pattern))

    async def pipeline(self) -> Any:
        """Non-transactional pipeline for batched writes."""

        async def _open(client: redis.Redis) -> Any:
            return client.pipeline(transaction=False)

        return await self._call("pipeline", _open)

    async def set_many(self, items: Iterable[Tuple[str, str]], ttl_seconds: int) -> List[Any]:
        """Write every ``(key, raw)`` pair in a single round trip."""

        async def _execute(client: redis.Redis) -> List[Any]:
            async with client.pipeline(transaction=False) as pipe:
                for key, raw in items:
                    pipe.set(key, raw, ex=ttl_seconds)
                return await pipe.execute()

        return await self._call("pipeline", _execute)

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self._call("ping", lambda client: client.ping())
            return True
        except TierUnavailableError:
            return False
