"""Public API for the OTA bundle update package."""

from __future__ import annotations

from services.ota.builder import build_updater, schedule_download
from services.ota.client import OtaUpdater
from services.ota.constants import (
    DEFAULT_BUNDLE_FILE_NAME,
    DOWNLOAD_BUFFER_SIZE,
    MAX_ARCHIVE_ENTRIES,
    MAX_ARCHIVE_FILE_SIZE,
    MAX_ARCHIVE_TOTAL_BYTES,
    MAX_COMPRESSION_RATIO,
    PACKAGE_FILE_NAME,
    STATUS_FILE,
)
from services.ota.downloader import PayloadDownloader
from services.ota.errors import (
    ContentIntegrityError,
    DownloadCancelledError,
    DownloadError,
    InvalidUpdateError,
    MalformedDescriptorError,
    OtaError,
    StorageError,
)
from services.ota.models import Package, PendingUpdate, StatusRecord, UpdateDescriptor
from services.ota.state import (
    JsonFileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    UpdateStateTracker,
)
from services.ota.store import PackageStore

__all__ = [
    "DEFAULT_BUNDLE_FILE_NAME",
    "DOWNLOAD_BUFFER_SIZE",
    "MAX_ARCHIVE_ENTRIES",
    "MAX_ARCHIVE_FILE_SIZE",
    "MAX_ARCHIVE_TOTAL_BYTES",
    "MAX_COMPRESSION_RATIO",
    "PACKAGE_FILE_NAME",
    "STATUS_FILE",
    "ContentIntegrityError",
    "DownloadCancelledError",
    "DownloadError",
    "InvalidUpdateError",
    "MalformedDescriptorError",
    "OtaError",
    "StorageError",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "OtaUpdater",
    "Package",
    "PackageStore",
    "PayloadDownloader",
    "PendingUpdate",
    "StatusRecord",
    "UpdateDescriptor",
    "UpdateStateTracker",
    "build_updater",
    "schedule_download",
]
