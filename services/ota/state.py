"""Persisted bookkeeping for pending and failed updates."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from services.ota import constants
from services.ota.errors import MalformedDescriptorError, PersistedStateCorruption, StorageError
from services.ota.models import Package, PendingUpdate


_LOGGER = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Synchronous string key-value storage.

    ``set`` and ``remove`` return only once the change is durable, and later
    reads in the same process observe it.
    """

    def get(self, key: str) -> str | None:
        """Return the stored value for ``key`` or ``None``."""

    def set(self, key: str, value: str) -> None:
        """Persist ``value`` under ``key``."""

    def remove(self, key: str) -> None:
        """Delete ``key`` if present."""


class MemoryKeyValueStore:
    """In-process store used by tests and embedders without persistence."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)


class JsonFileKeyValueStore:
    """Store every key in a single JSON object on disk."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> str | None:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._write(data)

    def _load(self) -> dict[str, Any]:
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return {}
        except OSError:
            _LOGGER.warning("Unable to read update state from %s", self._path, exc_info=True)
            return {}
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            _LOGGER.warning("Discarding unreadable update state file %s", self._path)
            return {}
        if not isinstance(data, dict):
            _LOGGER.warning("Discarding update state file %s with unexpected layout", self._path)
            return {}
        return data

    def _write(self, data: dict[str, Any]) -> None:
        write_json_atomically(self._path, data)


def write_json_atomically(path: Path, data: Any) -> None:
    """Write ``data`` as JSON to ``path`` via a synced temporary file and rename."""

    payload = json.dumps(data, indent=2, sort_keys=True) + "\n"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handle, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(handle, "w", encoding="utf-8") as stream:
                stream.write(payload)
                stream.flush()
                os.fsync(stream.fileno())
            os.replace(temp_name, path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise StorageError(f"Unable to write {path}: {exc}") from exc


class UpdateStateTracker:
    """Track the pending update and the list of hashes known to fail."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    # Pending update ---------------------------------------------------
    def save_pending_update(self, package_hash: str, is_loading: bool) -> None:
        pending = PendingUpdate(hash=package_hash, is_loading=is_loading)
        self._store.set(constants.PENDING_UPDATE_KEY, json.dumps(pending.to_dict()))
        _LOGGER.debug("Recorded pending update %s (loading=%s)", package_hash, is_loading)

    def get_pending_update(self) -> PendingUpdate | None:
        raw = self._store.get(constants.PENDING_UPDATE_KEY)
        if raw is None:
            return None
        try:
            return PendingUpdate.from_dict(json.loads(raw))
        except (json.JSONDecodeError, PersistedStateCorruption):
            _LOGGER.warning("Unable to parse pending update metadata %r", raw)
            return None

    def remove_pending_update(self) -> None:
        self._store.remove(constants.PENDING_UPDATE_KEY)

    def is_pending_update(self, package_hash: str | None = None) -> bool:
        """Return ``True`` for a confirmed-install-pending record matching ``package_hash``.

        ``None`` matches any pending hash. Records still flagged as loading do
        not count.
        """

        pending = self.get_pending_update()
        return (
            pending is not None
            and not pending.is_loading
            and (package_hash is None or pending.hash == package_hash)
        )

    # Failed updates ---------------------------------------------------
    def get_failed_updates(self) -> list[Package]:
        packages: list[Package] = []
        for entry in self._read_failed_entries():
            try:
                packages.append(Package.from_dict(entry))
            except MalformedDescriptorError:
                _LOGGER.debug("Skipping failed update entry without a hash: %r", entry)
        return packages

    def is_failed_hash(self, package_hash: str | None) -> bool:
        if package_hash is None:
            return False
        return any(
            isinstance(entry, dict) and entry.get(constants.PACKAGE_HASH_KEY) == package_hash
            for entry in self._read_failed_entries()
        )

    def save_failed_update(self, package: Package) -> None:
        entries = self._read_failed_entries()
        if any(
            isinstance(entry, dict) and entry.get(constants.PACKAGE_HASH_KEY) == package.hash
            for entry in entries
        ):
            return
        entries.append(package.to_dict())
        self._store.set(constants.FAILED_UPDATES_KEY, json.dumps(entries))
        _LOGGER.info("Recorded failed update %s", package.hash)

    def remove_failed_updates(self) -> None:
        self._store.remove(constants.FAILED_UPDATES_KEY)

    def _read_failed_entries(self) -> list[Any]:
        raw = self._store.get(constants.FAILED_UPDATES_KEY)
        if raw is None:
            return []
        try:
            entries = json.loads(raw)
            if not isinstance(entries, list):
                raise PersistedStateCorruption("Failed updates record is not a list")
        except (json.JSONDecodeError, PersistedStateCorruption):
            _LOGGER.warning("Resetting unreadable failed updates record %r", raw)
            self._store.set(constants.FAILED_UPDATES_KEY, json.dumps([]))
            return []
        return entries


__all__ = [
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "UpdateStateTracker",
    "write_json_atomically",
]
