"""Exception hierarchy for the shrinker batch."""

from __future__ import annotations


class ShrinkerError(Exception):
    """Base exception for attachment shrinker operations."""


class ConfigurationError(ShrinkerError):
    pass


class RecordStoreError(ShrinkerError):
    """Transport failure or non-2xx response from the record store."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class QuotaExhaustedError(ShrinkerError):
    """Raised instead of issuing a remote call that would exceed the run quota."""

    def __init__(self, consumed: int, ceiling: int):
        super().__init__(f"API call quota exhausted ({consumed}/{ceiling})")
        self.consumed = consumed
        self.ceiling = ceiling


class ImageProcessingError(ShrinkerError):
    pass


__all__ = [
    "ShrinkerError",
    "ConfigurationError",
    "RecordStoreError",
    "QuotaExhaustedError",
    "ImageProcessingError",
]
