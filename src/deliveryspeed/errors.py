"""Custom exception types for the GitHub delivery-speed analyzer."""

from __future__ import annotations

from typing import Optional


class DeliverySpeedError(Exception):
    """Base exception for all recoverable delivery-speed analyzer errors."""


class ConfigurationError(DeliverySpeedError):
    """Raised when runtime configuration values are missing or invalid."""


class AuthenticationError(DeliverySpeedError):
    """Raised when GitHub authentication credentials are unavailable."""


class ApiError(DeliverySpeedError):
    """Raised when a GitHub API request fails or returns an unexpected response."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(ApiError):
    """Raised when GitHub rejects a request because the rate limit is exhausted.

    ``reset_at`` is the epoch second at which the quota is restored.
    """

    def __init__(self, message: str, reset_at: int, status_code: Optional[int] = None) -> None:
        super().__init__(message, status_code=status_code)
        self.reset_at = reset_at


class PartialRecordError(ApiError):
    """Raised when one sub-resource of a batch item could not be fetched."""


class CacheCorruptionError(DeliverySpeedError):
    """Raised internally when a cache entry cannot be decoded."""
