"""
Shared error handling for the FPL data cache.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class CacheLayerException(Exception):
    """Base exception for the caching layer."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class TierUnavailableError(CacheLayerException):
    """Shared tier connection or timeout failure."""

    def __init__(self, tier: str, message: str = "Cache tier unavailable", details: Optional[Dict[str, Any]] = None):
        self.tier = tier
        super().__init__("TIER_UNAVAILABLE", f"{tier}: {message}", details)


class DeserializationError(CacheLayerException):
    """Cached payload could not be decoded."""

    def __init__(self, message: str = "Malformed cached payload", details: Optional[Dict[str, Any]] = None):
        super().__init__("DESERIALIZATION_ERROR", message, details)


class PartialBatchError(CacheLayerException):
    """
    Per-item failure marker for batch fetches.

    Placed in the result list at the index whose producer failed when the
    caller opted into ``continue_on_error``. Never raised by the cache itself.
    """

    def __init__(self, key: str, index: int, cause: BaseException):
        self.key = key
        self.index = index
        self.cause = cause
        super().__init__(
            "PARTIAL_BATCH_ERROR",
            f"Producer failed for {key}: {cause}",
            {"key": key, "index": index, "error_type": type(cause).__name__},
        )


class ConfigurationError(CacheLayerException):
    """Invalid cache configuration."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)
