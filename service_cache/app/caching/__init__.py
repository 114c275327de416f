"""
Two-tier caching package.

Provides the in-process LRU tier, the shared Redis tier and the orchestrator
that shields upstream lookups behind both. Prefer get-or-populate through
``TieredCache`` and explicit invalidation over reaching into a tier directly.
"""
