"""Scanning backend clients."""

from .thunderstorm import (
    RetryExceeded,
    ScanError,
    ScanResponseError,
    ScanTransportError,
    ThunderstormClient,
)

__all__ = [
    "RetryExceeded",
    "ScanError",
    "ScanResponseError",
    "ScanTransportError",
    "ThunderstormClient",
]
