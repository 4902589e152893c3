"""Data models used by the OTA package store."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from services.ota import constants
from services.ota.errors import MalformedDescriptorError, PersistedStateCorruption

_KNOWN_PACKAGE_KEYS = frozenset(
    {
        constants.DOWNLOAD_URL_KEY,
        constants.VERSION_NAME_KEY,
        constants.PACKAGE_HASH_KEY,
        constants.RELATIVE_BUNDLE_PATH_KEY,
    }
)
_SAFE_HASH_PATTERN = re.compile(r"[A-Za-z0-9._-]+")


def validate_package_hash(value: str) -> str:
    """Return ``value`` when it is usable as a package folder name."""

    if (
        not _SAFE_HASH_PATTERN.fullmatch(value)
        or value in {".", ".."}
        or value.startswith(constants.STAGING_PREFIX)
        or value in constants.RESERVED_NAMES
    ):
        raise MalformedDescriptorError(f"Package hash {value!r} is not a valid folder name")
    return value


def _optional_text(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise MalformedDescriptorError(f"Field {key!r} must be a string")
    return value


def _extras(data: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if key not in _KNOWN_PACKAGE_KEYS}


@dataclass(frozen=True)
class UpdateDescriptor:
    """Server-supplied description of an update that can be downloaded."""

    download_url: str
    version_name: str | None = None
    package_hash: str | None = None
    extras: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UpdateDescriptor":
        if not isinstance(data, Mapping):
            raise MalformedDescriptorError("Update descriptor must be a JSON object")
        download_url = _optional_text(data, constants.DOWNLOAD_URL_KEY)
        if not download_url or not download_url.strip():
            raise MalformedDescriptorError("Download URL is missing from update package")
        package_hash = _optional_text(data, constants.PACKAGE_HASH_KEY)
        if package_hash is not None:
            validate_package_hash(package_hash)
        return cls(
            download_url=download_url.strip(),
            version_name=_optional_text(data, constants.VERSION_NAME_KEY),
            package_hash=package_hash,
            extras=_extras(data),
        )

    def to_package(self, package_hash: str, relative_bundle_path: str | None = None) -> "Package":
        return Package(
            hash=package_hash,
            download_url=self.download_url,
            version_name=self.version_name,
            relative_bundle_path=relative_bundle_path,
            extras=dict(self.extras),
        )


@dataclass(frozen=True)
class Package:
    """A downloaded, hash-identified package as recorded in its metadata file."""

    hash: str
    download_url: str | None = None
    version_name: str | None = None
    relative_bundle_path: str | None = None
    extras: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Package":
        if not isinstance(data, Mapping):
            raise MalformedDescriptorError("Package metadata must be a JSON object")
        package_hash = _optional_text(data, constants.PACKAGE_HASH_KEY)
        if not package_hash:
            raise MalformedDescriptorError("Package metadata is missing its hash")
        return cls(
            hash=package_hash,
            download_url=_optional_text(data, constants.DOWNLOAD_URL_KEY),
            version_name=_optional_text(data, constants.VERSION_NAME_KEY),
            relative_bundle_path=_optional_text(data, constants.RELATIVE_BUNDLE_PATH_KEY),
            extras=_extras(data),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extras)
        if self.download_url is not None:
            data[constants.DOWNLOAD_URL_KEY] = self.download_url
        if self.version_name is not None:
            data[constants.VERSION_NAME_KEY] = self.version_name
        data[constants.PACKAGE_HASH_KEY] = self.hash
        if self.relative_bundle_path is not None:
            data[constants.RELATIVE_BUNDLE_PATH_KEY] = self.relative_bundle_path
        return data


@dataclass(frozen=True)
class StatusRecord:
    """Pointers to the current and previous package generations."""

    current_package: str | None = None
    previous_package: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> "StatusRecord":
        if not isinstance(data, Mapping):
            raise PersistedStateCorruption("Status record must be a JSON object")
        current = data.get(constants.CURRENT_PACKAGE_KEY)
        previous = data.get(constants.PREVIOUS_PACKAGE_KEY)
        for value in (current, previous):
            if value is not None and not isinstance(value, str):
                raise PersistedStateCorruption("Status record pointers must be strings")
        return cls(current_package=current or None, previous_package=previous or None)

    def to_dict(self) -> dict[str, str | None]:
        return {
            constants.CURRENT_PACKAGE_KEY: self.current_package,
            constants.PREVIOUS_PACKAGE_KEY: self.previous_package,
        }


@dataclass(frozen=True)
class PendingUpdate:
    """An installed package that the host has not yet confirmed as running."""

    hash: str
    is_loading: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> "PendingUpdate":
        if not isinstance(data, Mapping):
            raise PersistedStateCorruption("Pending update must be a JSON object")
        package_hash = data.get(constants.PENDING_UPDATE_HASH_KEY)
        is_loading = data.get(constants.PENDING_UPDATE_IS_LOADING_KEY)
        if not isinstance(package_hash, str) or not isinstance(is_loading, bool):
            raise PersistedStateCorruption("Pending update fields have unexpected types")
        return cls(hash=package_hash, is_loading=is_loading)

    def to_dict(self) -> dict[str, Any]:
        return {
            constants.PENDING_UPDATE_HASH_KEY: self.hash,
            constants.PENDING_UPDATE_IS_LOADING_KEY: self.is_loading,
        }


@dataclass(frozen=True)
class DownloadResult:
    """Outcome of streaming a payload to local storage."""

    path: Path
    total_bytes: int
    received_bytes: int
    sha256: str
    is_archive: bool


__all__ = [
    "DownloadResult",
    "Package",
    "PendingUpdate",
    "StatusRecord",
    "UpdateDescriptor",
    "validate_package_hash",
]
