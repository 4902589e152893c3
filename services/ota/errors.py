"""Error hierarchy raised by the OTA package store."""

from __future__ import annotations


class OtaError(RuntimeError):
    """Base class for every failure surfaced by the update engine."""


class ContentIntegrityError(OtaError):
    """Raised when the received byte count differs from the declared length."""

    def __init__(self, expected: int, received: int) -> None:
        self.expected = expected
        self.received = received
        super().__init__(f"Received {received} bytes, expected {expected}")


class MalformedDescriptorError(OtaError):
    """Raised when an update descriptor is missing or has invalid fields."""


class InvalidUpdateError(OtaError):
    """Raised when downloaded contents cannot form an installable package."""


class StorageError(OtaError):
    """Raised when a filesystem operation on the package store fails."""


class DownloadError(OtaError):
    """Raised when the payload cannot be fetched from the network."""


class DownloadCancelledError(OtaError):
    """Raised when a caller cancels a download that is in flight."""


class PersistedStateCorruption(ValueError):
    """Signals a malformed locally stored record.

    Only used between decoding helpers and their callers; the tracker recovers
    from it instead of letting it escape.
    """


__all__ = [
    "ContentIntegrityError",
    "DownloadCancelledError",
    "DownloadError",
    "InvalidUpdateError",
    "MalformedDescriptorError",
    "OtaError",
    "PersistedStateCorruption",
    "StorageError",
]
