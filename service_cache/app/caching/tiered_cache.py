"""
Two-tier get-or-populate over the in-process cache and the shared Redis tier.

Lookups go local -> shared -> producer and write fresh values back through
both tiers. Tier failures only ever cost a cache miss; the single error that
reaches callers is the producer's own.
"""

import asyncio
import inspect
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union, TYPE_CHECKING

from shared.logging import get_logger
from shared.errors import DeserializationError, PartialBatchError
from .memory_cache import MemoryCache
from .serializers import JsonSerializer
from .ttl_policy import (
    DEFAULT_CATEGORY,
    DEFAULT_LOCAL_TTL_CAP,
    DEFAULT_LOCAL_TTL_FACTOR,
    TTLPolicy,
    TTLSpec,
    local_ttl,
)

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector
    from .shared_tier import RedisSharedTier


TIER_SHARED = "redis"

Producer = Callable[[], Union[Any, Awaitable[Any]]]

LOG_LEVELS = {
    "debug": 10,
    "info": 20,
    "warn": 30,
    "warning": 30,
    "error": 40,
    "none": 100,
}


@dataclass
class BatchFetchOptions:
    """Behaviour switches for ``batch_fetch_with_cache``."""

    use_parallel: bool = True
    continue_on_error: bool = False
    log_level: str = "info"


class _BatchLogger:
    """Gates one batch call's log output by its requested verbosity."""

    def __init__(self, logger, level: str):
        self._logger = logger
        self._threshold = LOG_LEVELS.get(level.lower(), LOG_LEVELS["info"])

    def debug(self, event: str, **kw):
        if self._threshold <= LOG_LEVELS["debug"]:
            self._logger.debug(event, **kw)

    def info(self, event: str, **kw):
        if self._threshold <= LOG_LEVELS["info"]:
            self._logger.info(event, **kw)

    def warning(self, event: str, **kw):
        if self._threshold <= LOG_LEVELS["warning"]:
            self._logger.warning(event, **kw)

    def error(self, event: str, **kw):
        if self._threshold <= LOG_LEVELS["error"]:
            self._logger.error(event, **kw)


async def _call_producer(producer: Producer) -> Any:
    result = producer()
    if inspect.isawaitable(result):
        result = await result
    return result


class TieredCache:
    """Local-then-shared cache with producer fallback and write-through."""

    def __init__(
        self,
        shared: "RedisSharedTier",
        local: Optional[MemoryCache] = None,
        *,
        enabled_local: bool = True,
        ttl_factor: float = DEFAULT_LOCAL_TTL_FACTOR,
        local_ttl_cap: float = DEFAULT_LOCAL_TTL_CAP,
        ttl_policy: Optional[TTLPolicy] = None,
        serializer: Optional[JsonSerializer] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.shared = shared
        self.local = local if local is not None else (MemoryCache(metrics=metrics) if enabled_local else None)
        self.local_enabled = enabled_local and self.local is not None
        self.ttl_factor = ttl_factor
        self.local_ttl_cap = local_ttl_cap
        self.ttl_policy = ttl_policy or TTLPolicy()
        self.serializer = serializer or JsonSerializer()
        self.metrics = metrics
        self.logger = get_logger("cache.tiered")

    async def start(self) -> None:
        """Connect the shared tier and start the local sweep."""
        try:
            await self.shared.start()
        except Exception as exc:
            self.logger.warning("Shared tier unavailable at startup; serving from local tier and producers", error=str(exc))
        if self.local_enabled:
            await self.local.start()

    async def stop(self) -> None:
        """Stop the local sweep and close the shared tier."""
        if self.local is not None:
            await self.local.stop()
        try:
            await self.shared.stop()
        except Exception as exc:
            self.logger.warning("Error closing shared tier", error=str(exc))

    async def __aenter__(self) -> "TieredCache":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    def resolve_ttl(self, ttl: TTLSpec) -> int:
        return self.ttl_policy.resolve(ttl)

    async def fetch_with_cache(
        self,
        key: str,
        producer: Producer,
        ttl: TTLSpec = DEFAULT_CATEGORY,
        *,
        force_refresh: bool = False,
    ) -> Any:
        """
        Return the value for ``key`` from the cheapest tier that has it.

        On a full miss the producer is called and its result written through
        both tiers before it is returned. ``force_refresh`` skips both reads.
        Producer exceptions propagate unchanged; tier errors never do.
        """
        ttl_seconds = self.resolve_ttl(ttl)

        if not force_refresh:
            if self.local_enabled:
                value, found = self.local.lookup(key)
                if found:
                    self.logger.debug("Memory cache hit", key=key)
                    self._record("record_hit", "memory")
                    return value

            found, value = await self._shared_get(key)
            if found:
                self.logger.debug("Shared cache hit", key=key)
                self._record("record_hit", TIER_SHARED)
                self._set_local(key, value, ttl_seconds)
                return value

            self.logger.debug("Cache miss, fetching data", key=key)
            self._record("record_miss")

        data = await self._produce(key, producer)
        await self._shared_set(key, data, ttl_seconds)
        self._set_local(key, data, ttl_seconds)
        return data

    async def batch_fetch_with_cache(
        self,
        items: Iterable[Tuple[str, Producer]],
        ttl: TTLSpec = DEFAULT_CATEGORY,
        options: Optional[BatchFetchOptions] = None,
    ) -> List[Any]:
        """
        Fetch many keys, returning values in the order of ``items``.

        Local hits cost nothing, remaining keys are read from the shared tier
        in one multi-get, and whatever is still missing is produced. With
        ``continue_on_error`` a failed producer leaves a ``PartialBatchError``
        at its index; otherwise the first failure aborts the batch.
        """
        options = options or BatchFetchOptions()
        log = _BatchLogger(self.logger, options.log_level)
        ttl_seconds = self.resolve_ttl(ttl)
        items = list(items)

        if not items:
            return []

        results: List[Any] = [None] * len(items)
        missing: List[int] = []

        if self.local_enabled:
            for index, (key, _) in enumerate(items):
                value, found = self.local.lookup(key)
                if found:
                    results[index] = value
                    self._record("record_hit", "memory")
                else:
                    missing.append(index)
            memory_hits = len(items) - len(missing)
            if memory_hits:
                log.debug("Memory cache hits", hits=memory_hits, total=len(items))
        else:
            missing = list(range(len(items)))

        if not missing:
            log.info("All items were in memory cache", total=len(items))
            return results

        log.debug("Batch fetching keys from shared tier", count=len(missing))
        raw_values = await self._shared_mget([items[index][0] for index in missing], log)

        to_produce: List[int] = []
        for index, raw in zip(missing, raw_values):
            key = items[index][0]
            if raw is None:
                log.debug("Cache miss", key=key)
                to_produce.append(index)
                continue
            try:
                value = self.serializer.loads(raw)
            except DeserializationError as exc:
                log.warning("Error parsing cached data", key=key, error=exc.details.get("error"))
                to_produce.append(index)
                continue
            results[index] = value
            self._record("record_hit", TIER_SHARED)
            self._set_local(key, value, ttl_seconds)

        if not to_produce:
            log.info("All items were cached", total=len(items))
            return results

        log.info("Fetching missing items", missing=len(to_produce), total=len(items))
        for _ in to_produce:
            self._record("record_miss")

        if options.use_parallel:
            produced, errors, failure = await self._produce_parallel(items, to_produce, options.continue_on_error, log)
        else:
            produced, errors, failure = await self._produce_sequential(items, to_produce, options.continue_on_error, log)

        for index, value in produced.items():
            results[index] = value
        if produced:
            await self._write_back([(items[index][0], value) for index, value in sorted(produced.items())], ttl_seconds, log)

        if failure is not None:
            raise failure

        for index, exc in errors.items():
            results[index] = PartialBatchError(items[index][0], index, exc)
        if errors:
            log.warning("Batch completed with failed items", failed=len(errors), total=len(items))

        return results

    async def batch_cache_set(self, items: Iterable[Tuple[str, Any]], ttl: TTLSpec = DEFAULT_CATEGORY) -> None:
        """Write many values to both tiers; the shared tier gets one pipelined round trip."""
        items = list(items)
        if not items:
            return

        ttl_seconds = self.resolve_ttl(ttl)
        for key, value in items:
            self._set_local(key, value, ttl_seconds)

        if await self._shared_set_many(items, ttl_seconds):
            self.logger.info("Batch cached items", count=len(items), ttl=ttl_seconds)

    async def invalidate_keys(self, keys: Sequence[str]) -> None:
        """Delete keys from both tiers. Safe to repeat; never raises."""
        keys = list(keys)
        if not keys:
            return

        if self.local_enabled:
            removed = sum(1 for key in keys if self.local.delete(key))
            self.logger.info("Invalidated keys from memory cache", requested=len(keys), removed=removed)

        try:
            deleted = await self.shared.delete(*keys)
            self.logger.info("Invalidated keys from shared tier", requested=len(keys), removed=deleted)
        except Exception as exc:
            self._record("record_tier_error", TIER_SHARED, "delete")
            self.logger.warning("Error invalidating keys in shared tier", count=len(keys), error=str(exc))

    async def invalidate_pattern(self, pattern: str) -> None:
        """
        Delete every key matching ``pattern`` from both tiers.

        The shared tier resolves the pattern to concrete keys which are then
        deleted from both tiers; the local tier also applies the pattern to
        its own keys since the two tiers need not hold the same set.
        """
        if self.local_enabled:
            deleted = self.local.delete_pattern(pattern)
            if deleted:
                self.logger.info("Invalidated keys matching pattern from memory cache", pattern=pattern, count=deleted)

        try:
            keys = await self.shared.keys(pattern)
            if keys:
                await self.shared.delete(*keys)
                if self.local_enabled:
                    for key in keys:
                        self.local.delete(key)
                self.logger.info("Invalidated keys matching pattern from shared tier", pattern=pattern, count=len(keys))
        except Exception as exc:
            self._record("record_tier_error", TIER_SHARED, "invalidate_pattern")
            self.logger.warning("Error invalidating pattern in shared tier", pattern=pattern, error=str(exc))

    async def get_stats(self) -> Dict[str, Any]:
        """Local occupancy plus shared tier health."""
        try:
            shared_healthy = await self.shared.health_check()
        except Exception as exc:
            self.logger.warning("Shared tier health check failed", error=str(exc))
            shared_healthy = False

        return {
            "memory_cache_enabled": self.local_enabled,
            "memory": self.local.stats() if self.local_enabled else None,
            "shared": {"healthy": shared_healthy},
            "ttl_factor": self.ttl_factor,
            "local_ttl_cap": self.local_ttl_cap,
        }

    async def _produce(self, key: str, producer: Producer) -> Any:
        timer = self.metrics.time_producer() if self.metrics else nullcontext()
        try:
            with timer:
                return await _call_producer(producer)
        except Exception as exc:
            self.logger.error("Error fetching data", key=key, error=str(exc))
            raise

    async def _produce_parallel(
        self,
        items: List[Tuple[str, Producer]],
        indices: List[int],
        continue_on_error: bool,
        log: _BatchLogger,
    ) -> Tuple[Dict[int, Any], Dict[int, BaseException], Optional[BaseException]]:
        tasks = {
            index: asyncio.ensure_future(self._produce(items[index][0], items[index][1]))
            for index in indices
        }
        try:
            if continue_on_error:
                await asyncio.wait(list(tasks.values()))
            else:
                _, pending = await asyncio.wait(list(tasks.values()), return_when=asyncio.FIRST_EXCEPTION)
                if pending:
                    log.debug("Cancelling pending producers after failure", pending=len(pending))
                    for task in pending:
                        task.cancel()
                    await asyncio.gather(*pending, return_exceptions=True)
        finally:
            for task in tasks.values():
                if not task.done():
                    task.cancel()

        produced: Dict[int, Any] = {}
        errors: Dict[int, BaseException] = {}
        for index, task in tasks.items():
            if task.cancelled():
                continue
            exc = task.exception()
            if exc is None:
                produced[index] = task.result()
            else:
                errors[index] = exc

        failure = None
        if errors and not continue_on_error:
            failure = errors[min(errors)]
        return produced, errors, failure

    async def _produce_sequential(
        self,
        items: List[Tuple[str, Producer]],
        indices: List[int],
        continue_on_error: bool,
        log: _BatchLogger,
    ) -> Tuple[Dict[int, Any], Dict[int, BaseException], Optional[BaseException]]:
        produced: Dict[int, Any] = {}
        errors: Dict[int, BaseException] = {}
        for index in indices:
            key, producer = items[index]
            try:
                produced[index] = await self._produce(key, producer)
            except Exception as exc:
                errors[index] = exc
                if not continue_on_error:
                    log.debug("Aborting batch after failure", key=key)
                    return produced, errors, exc
        return produced, errors, None

    async def _write_back(self, pairs: List[Tuple[str, Any]], ttl_seconds: int, log: _BatchLogger) -> None:
        if await self._shared_set_many(pairs, ttl_seconds):
            log.debug("Cached produced items in shared tier", count=len(pairs), ttl=ttl_seconds)
        for key, value in pairs:
            self._set_local(key, value, ttl_seconds)

    async def _shared_get(self, key: str) -> Tuple[bool, Any]:
        try:
            raw = await self.shared.get(key)
        except Exception as exc:
            self._record("record_tier_error", TIER_SHARED, "get")
            self.logger.warning("Shared tier error, treating as miss", key=key, error=str(exc))
            return False, None

        if raw is None:
            return False, None

        try:
            return True, self.serializer.loads(raw)
        except DeserializationError as exc:
            self.logger.warning("Error parsing cached data", key=key, error=exc.details.get("error"))
            return False, None

    async def _shared_mget(self, keys: List[str], log: _BatchLogger) -> List[Optional[str]]:
        try:
            raw_values = await self.shared.mget(keys)
        except Exception as exc:
            self._record("record_tier_error", TIER_SHARED, "mget")
            log.warning("Error batch fetching from shared tier", count=len(keys), error=str(exc))
            return [None] * len(keys)

        raw_values = list(raw_values or [])
        if len(raw_values) != len(keys):
            log.warning("Shared tier returned a short multi-get", expected=len(keys), received=len(raw_values))
            raw_values = (raw_values + [None] * len(keys))[:len(keys)]
        return raw_values

    async def _shared_set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        try:
            await self.shared.set(key, self.serializer.dumps(value), ttl_seconds)
            self.logger.debug("Cached data", key=key, ttl=ttl_seconds)
            return True
        except Exception as exc:
            self._record("record_tier_error", TIER_SHARED, "set")
            self.logger.warning("Failed to cache data", key=key, error=str(exc))
            return False

    async def _shared_set_many(self, pairs: List[Tuple[str, Any]], ttl_seconds: int) -> bool:
        try:
            payload = [(key, self.serializer.dumps(value)) for key, value in pairs]
            await self.shared.set_many(payload, ttl_seconds)
            return True
        except Exception as exc:
            self._record("record_tier_error", TIER_SHARED, "set_many")
            self.logger.warning("Error batch caching data in shared tier", count=len(pairs), error=str(exc))
            return False

    def _set_local(self, key: str, value: Any, ttl_seconds: int) -> None:
        if not self.local_enabled:
            return
        try:
            self.local.set(key, value, local_ttl(ttl_seconds, self.ttl_factor, self.local_ttl_cap))
        except Exception as exc:
            self.logger.warning("Failed to cache data in memory", key=key, error=str(exc))

    def _record(self, method: str, *args) -> None:
        if not self.metrics:
            return
        try:
            getattr(self.metrics, method)(*args)
        except Exception as exc:  # pragma: no cover - metrics failures should never break caching
            self.logger.debug("Failed to record cache metrics", error=str(exc))

