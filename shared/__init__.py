"""
Shared utilities for the FPL data cache.

This package aggregates the ambient building blocks used by the cache and
its tooling:

- config: Cache configuration via pydantic-settings
- logging: Structured logging with job/request correlation
- metrics: Prometheus metrics helpers
- errors: Cache error types and responses

Do not import from service_cache into shared/.
"""
