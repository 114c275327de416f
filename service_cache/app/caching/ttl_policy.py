"""
TTL policy: semantic data categories to shared-tier lifetimes.
"""

import math
from typing import Dict, Optional, Union

from shared.logging import get_logger


logger = get_logger("cache.ttl_policy")


class TTL:
    """Shared-tier lifetimes in seconds."""

    BOOTSTRAP = 4 * 60 * 60
    FIXTURES = 12 * 60 * 60
    GAMEWEEK = 60 * 60
    LIVE = 15 * 60
    PLAYER = 2 * 60 * 60


CATEGORY_TTLS: Dict[str, int] = {
    "bootstrap-static": TTL.BOOTSTRAP,
    "fixtures": TTL.FIXTURES,
    "gameweek": TTL.GAMEWEEK,
    "events": TTL.GAMEWEEK,
    "live": TTL.LIVE,
    "player-detail": TTL.PLAYER,
}

DEFAULT_CATEGORY = "bootstrap-static"
DEFAULT_LOCAL_TTL_FACTOR = 0.8
DEFAULT_LOCAL_TTL_CAP = 30 * 60
MIN_LOCAL_TTL = 1.0
MIN_SHARED_TTL = 1

TTLSpec = Union[int, float, str]


class TTLPolicy:
    """Resolves a category name or raw seconds value to a TTL."""

    def __init__(self, overrides: Optional[Dict[str, int]] = None, default_category: str = DEFAULT_CATEGORY):
        self.table: Dict[str, int] = {**CATEGORY_TTLS, **(overrides or {})}
        if default_category not in self.table:
            raise ValueError(f"Unknown default TTL category: {default_category}")
        self.default_category = default_category

    @property
    def default_ttl(self) -> int:
        return self.table[self.default_category]

    def resolve(self, ttl: TTLSpec) -> int:
        """
        Return TTL seconds for the shared tier. Never raises.

        Numbers are rounded up to whole seconds, minimum one (Redis rejects
        ``EX 0``). Unknown categories, non-finite values and anything else
        that is not a duration fall back to the default category.
        """
        # bool is an int subclass but never a duration
        if isinstance(ttl, bool):
            return self._fallback(ttl)

        if isinstance(ttl, (int, float)):
            seconds = _to_seconds(ttl)
            return self._fallback(ttl) if seconds is None else seconds

        if not isinstance(ttl, str):
            return self._fallback(ttl)

        category = ttl.strip()
        if category in self.table:
            return self.table[category]

        # Callers sometimes pass seconds through config as strings
        try:
            seconds = _to_seconds(float(category))
        except ValueError:
            seconds = None
        if seconds is not None:
            return seconds

        return self._fallback(ttl)

    def _fallback(self, ttl) -> int:
        logger.warning(
            "Unknown TTL type, using default",
            ttl_type=ttl,
            default_category=self.default_category,
            default_ttl=self.default_ttl,
        )
        return self.default_ttl


def _to_seconds(value: float) -> Optional[int]:
    try:
        if not math.isfinite(value):
            return None
    except OverflowError:
        return None
    return max(MIN_SHARED_TTL, math.ceil(value))


_default_policy = TTLPolicy()


def get_ttl_value(ttl: TTLSpec) -> int:
    """Resolve ``ttl`` against the built-in category table."""
    return _default_policy.resolve(ttl)


def local_ttl(
    ttl_seconds: float,
    factor: float = DEFAULT_LOCAL_TTL_FACTOR,
    cap: float = DEFAULT_LOCAL_TTL_CAP,
) -> float:
    """Local copies live for a fraction of the shared TTL so they expire first."""
    return max(MIN_LOCAL_TTL, min(ttl_seconds * factor, cap))
