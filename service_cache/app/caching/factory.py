"""
Construction of the process-wide cache from configuration.
"""

from typing import Optional

from prometheus_client import CollectorRegistry

from shared.config import CacheConfig
from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from .memory_cache import MemoryCache
from .shared_tier import RedisSharedTier
from .tiered_cache import TieredCache


logger = get_logger("cache.factory")


def build_metrics(config: CacheConfig, registry: Optional[CollectorRegistry] = None) -> Optional[MetricsCollector]:
    """Metrics collector on its own registry, or ``None`` when disabled."""
    if not config.metrics_enabled:
        return None
    return get_metrics_collector("fpl_cache", registry or CollectorRegistry())


def build_tiered_cache(config: CacheConfig, metrics: Optional[MetricsCollector] = None) -> TieredCache:
    """
    Build the cache once at process start and hand it to every consumer.

    Call ``await cache.start()`` before use and ``await cache.stop()`` on
    shutdown so the sweep task and Redis pool are released.
    """
    shared = RedisSharedTier(
        config.redis_url,
        socket_timeout=config.redis_socket_timeout,
        connect_timeout=config.redis_connect_timeout,
    )

    local = None
    if config.memory_cache_enabled:
        local = MemoryCache(
            default_ttl=config.memory_cache_default_ttl,
            max_entries=config.memory_cache_max_entries,
            max_memory_mb=config.memory_cache_max_memory_mb,
            namespace=config.memory_cache_namespace,
            sweep_interval=config.memory_cache_sweep_interval,
            debug=config.debug_memory_cache,
            metrics=metrics,
        )

    logger.info(
        "Built tiered cache",
        memory_cache_enabled=config.memory_cache_enabled,
        max_entries=config.memory_cache_max_entries,
        max_memory_mb=config.memory_cache_max_memory_mb,
        ttl_factor=config.memory_cache_ttl_factor,
    )

    return TieredCache(
        shared,
        local,
        enabled_local=config.memory_cache_enabled,
        ttl_factor=config.memory_cache_ttl_factor,
        local_ttl_cap=config.memory_cache_ttl_cap,
        metrics=metrics,
    )
