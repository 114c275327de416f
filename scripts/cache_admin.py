#!/usr/bin/env python3
"""
Invalidate or inspect the shared FPL data cache from the command line.

Refresh jobs and operators use this after an upstream data change to drop
stale keys (``fpl:players:*`` after a price update, for example). Only the
shared tier is reachable from here; per-process local copies age out on
their own scaled-down TTL.
"""

import argparse
import asyncio
import json
from typing import Any, Dict, List, Optional
import sys
import os

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from shared.config import get_config  # noqa: E402
from shared.errors import CacheLayerException, ConfigurationError  # noqa: E402
from shared.logging import configure_logging, set_job_context  # noqa: E402
from service_cache.app.caching.shared_tier import RedisSharedTier  # noqa: E402
from service_cache.app.caching.tiered_cache import TieredCache  # noqa: E402


async def invalidate(
    *,
    redis_url: str,
    keys: Optional[List[str]] = None,
    patterns: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Invalidate explicit keys and/or patterns and return removed counts."""
    if not keys and not patterns:
        raise ConfigurationError("Nothing to invalidate: pass --key or --pattern")

    # TieredCache absorbs tier errors; an operator run must fail on them instead
    shared = RedisSharedTier(redis_url)
    summary: Dict[str, Any] = {"keys": {"requested": keys or [], "removed": 0}, "patterns": {}}

    try:
        await shared.start()
        if keys:
            summary["keys"]["removed"] = await shared.delete(*keys)
        for pattern in patterns or []:
            matched = await shared.keys(pattern)
            summary["patterns"][pattern] = await shared.delete(*matched)
    finally:
        await shared.stop()

    return summary


async def stats(*, redis_url: str) -> Dict[str, Any]:
    """Report shared tier health."""
    cache = TieredCache(RedisSharedTier(redis_url), enabled_local=False)
    async with cache:
        return await cache.get_stats()


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    config = get_config()
    parser = argparse.ArgumentParser(description="Invalidate or inspect the shared FPL data cache.")
    parser.add_argument("--redis-url", default=config.redis_url, help="Redis connection URL")
    parser.add_argument("--job-id", default=None, help="Refresh job identifier (for observability)")
    parser.add_argument("--log-level", default=config.log_level, help="Log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    invalidate_parser = subparsers.add_parser("invalidate", help="Delete keys from the cache")
    invalidate_parser.add_argument("--key", dest="keys", action="append", default=[], help="Exact key (repeatable)")
    invalidate_parser.add_argument("--pattern", dest="patterns", action="append", default=[], help="Glob pattern, e.g. 'fpl:players:*' (repeatable)")

    subparsers.add_parser("stats", help="Show cache health")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    configure_logging("cache_admin", args.log_level, stream=sys.stderr)
    set_job_context(args.job_id)

    try:
        if args.command == "invalidate":
            summary = asyncio.run(invalidate(redis_url=args.redis_url, keys=args.keys, patterns=args.patterns))
        else:
            summary = asyncio.run(stats(redis_url=args.redis_url))
    except KeyboardInterrupt:
        return 130
    except CacheLayerException as exc:
        print(json.dumps(exc.to_response().model_dump(), indent=2), file=sys.stderr)
        return 1

    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
