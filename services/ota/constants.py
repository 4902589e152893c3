"""Constants shared across the OTA package store modules."""

from __future__ import annotations

PACKAGE_ROOT_DIRNAME = "OTAUpdates"
STATE_FILE_NAME = "OTAUpdater.json"
DEFAULT_BUNDLE_FILE_NAME = "index.android.bundle"

STATUS_FILE = "ota.json"
PACKAGE_FILE_NAME = "app.json"
DOWNLOAD_FILE_NAME = "download.zip"
UNZIPPED_FOLDER_NAME = "unzipped"
STAGING_PREFIX = ".staging-"
RESERVED_NAMES = frozenset({STATUS_FILE, DOWNLOAD_FILE_NAME, UNZIPPED_FOLDER_NAME})

DOWNLOAD_BUFFER_SIZE = 256 * 1024
ZIP_HEADER_SIGNATURE = b"PK\x03\x04"
UNKNOWN_LENGTH = -1

# Package metadata keys
DOWNLOAD_URL_KEY = "downloadUrl"
VERSION_NAME_KEY = "versionName"
PACKAGE_HASH_KEY = "packageHash"
RELATIVE_BUNDLE_PATH_KEY = "bundlePath"

# Status record keys
CURRENT_PACKAGE_KEY = "currentPackage"
PREVIOUS_PACKAGE_KEY = "previousPackage"

# Key-value store entries
PENDING_UPDATE_KEY = "OTA_PENDING_UPDATE"
PENDING_UPDATE_HASH_KEY = "hash"
PENDING_UPDATE_IS_LOADING_KEY = "isLoading"
FAILED_UPDATES_KEY = "OTA_FAILED_UPDATES"

MAX_ARCHIVE_TOTAL_BYTES = 500 * 1024 * 1024  # 500 MiB
MAX_ARCHIVE_FILE_SIZE = 250 * 1024 * 1024  # 250 MiB per file
MAX_ARCHIVE_ENTRIES = 2000
MAX_COMPRESSION_RATIO = 100  # Uncompressed vs compressed bytes
