"""On-disk package store holding the current and previous update generations.

Layout under the package root::

    ota.json              status record (current / previous pointers)
    download.zip          payload being downloaded
    unzipped/             scratch directory for archive extraction
    .staging-*/           package folders being assembled
    <hash>/app.json       metadata for an installed or downloadable package
    <hash>/...            bundle and assets

A package folder only receives its final name once its metadata has been
written, and the status record is only ever pointed at such folders. None of
the operations are synchronised; at most one download or install may run per
package root at a time.
"""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Any

from services.ota import constants
from services.ota.archive import extract_archive, find_bundle, merge_tree
from services.ota.downloader import PayloadDownloader, ProgressCallback
from services.ota.errors import (
    InvalidUpdateError,
    MalformedDescriptorError,
    PersistedStateCorruption,
    StorageError,
)
from services.ota.models import DownloadResult, Package, StatusRecord, UpdateDescriptor, validate_package_hash
from services.ota.state import write_json_atomically
from shared.result import Result


_LOGGER = logging.getLogger(__name__)


class PackageStore:
    """Own the package folders and the status record under ``root``."""

    def __init__(
        self,
        root: Path,
        *,
        bundle_file_name: str = constants.DEFAULT_BUNDLE_FILE_NAME,
        downloader: PayloadDownloader | None = None,
    ) -> None:
        self._root = Path(root)
        self._bundle_file_name = bundle_file_name
        self._downloader = downloader or PayloadDownloader()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def bundle_file_name(self) -> str:
        return self._bundle_file_name

    @property
    def status_path(self) -> Path:
        return self._root / constants.STATUS_FILE

    @property
    def download_path(self) -> Path:
        return self._root / constants.DOWNLOAD_FILE_NAME

    def package_folder(self, package_hash: str) -> Path:
        return self._root / package_hash

    # Status record ----------------------------------------------------
    def get_current_package_info(self) -> dict[str, Any]:
        """Return the raw status record, or an empty mapping when unavailable."""

        data = self._read_status_json()
        return data if isinstance(data, dict) else {}

    def read_status(self) -> StatusRecord:
        data = self._read_status_json()
        if data is None:
            return StatusRecord()
        try:
            return StatusRecord.from_dict(data)
        except PersistedStateCorruption:
            _LOGGER.warning("Ignoring malformed status record at %s", self.status_path)
            return StatusRecord()

    def get_current_package_hash(self) -> str | None:
        return self.read_status().current_package

    def get_previous_package_hash(self) -> str | None:
        return self.read_status().previous_package

    def _read_status_json(self) -> Any:
        try:
            raw = self.status_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError:
            _LOGGER.warning("Unable to read status record %s", self.status_path, exc_info=True)
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            _LOGGER.warning("Status record %s is not valid JSON", self.status_path)
            return None

    def _write_status(self, status: StatusRecord) -> None:
        write_json_atomically(self.status_path, status.to_dict())
        _LOGGER.debug(
            "Status record updated: current=%s previous=%s",
            status.current_package,
            status.previous_package,
        )

    # Package lookup ---------------------------------------------------
    def load_package(self, package_hash: str) -> Result[Package, Exception]:
        """Read the metadata for ``package_hash``.

        Distinguishes a package that does not exist (missing) from one whose
        metadata cannot be read or parsed (error).
        """

        try:
            validate_package_hash(package_hash)
        except MalformedDescriptorError:
            return Result.missing()
        metadata_path = self.package_folder(package_hash) / constants.PACKAGE_FILE_NAME
        try:
            raw = metadata_path.read_bytes()
        except FileNotFoundError:
            return Result.missing()
        except OSError as exc:
            return Result.err(StorageError(f"Unable to read {metadata_path}: {exc}"))
        try:
            package = Package.from_dict(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, MalformedDescriptorError) as exc:
            return Result.err(PersistedStateCorruption(f"Malformed metadata {metadata_path}: {exc}"))
        if package.hash != package_hash:
            return Result.err(
                PersistedStateCorruption(
                    f"Metadata in {metadata_path} describes package {package.hash}"
                )
            )
        return Result.ok(package)

    def get_package(self, package_hash: str | None) -> Package | None:
        if package_hash is None:
            return None
        result = self.load_package(package_hash)
        if result.is_missing():
            return None
        if result.is_err():
            _LOGGER.warning("Treating package %s as absent: %s", package_hash, result.error)
            return None
        return result.unwrap()

    def get_current_package(self) -> Package | None:
        return self.get_package(self.get_current_package_hash())

    def get_previous_package(self) -> Package | None:
        return self.get_package(self.get_previous_package_hash())

    def resolve_bundle_path(
        self, package_hash: str | None, bundle_file_name: str | None = None
    ) -> Path | None:
        package = self.get_package(package_hash)
        if package is None:
            return None
        relative = package.relative_bundle_path or bundle_file_name or self._bundle_file_name
        return self.package_folder(package.hash).joinpath(*relative.split("/"))

    def get_current_bundle_path(self, bundle_file_name: str | None = None) -> Path | None:
        return self.resolve_bundle_path(self.get_current_package_hash(), bundle_file_name)

    # Activation -------------------------------------------------------
    def install_package(self, package: Package, remove_pending_update: bool = False) -> bool:
        """Make ``package`` current.

        Returns ``False`` when it already is. With ``remove_pending_update``
        the outgoing current package is discarded instead of being kept as
        the previous generation.
        """

        status = self.read_status()
        if package.hash == status.current_package:
            _LOGGER.debug("Package %s is already current", package.hash)
            return False
        if self.get_package(package.hash) is None:
            raise InvalidUpdateError(f"Package {package.hash} has not been downloaded")

        stale: list[str] = []
        if remove_pending_update:
            previous = status.previous_package
            if status.current_package is not None:
                stale.append(status.current_package)
        else:
            previous = status.current_package
            if status.previous_package is not None and status.previous_package != package.hash:
                stale.append(status.previous_package)
        if previous == package.hash:
            previous = None

        updated = StatusRecord(current_package=package.hash, previous_package=previous)
        self._write_status(updated)
        _LOGGER.info(
            "Installed package %s (previous=%s)", package.hash, updated.previous_package
        )
        for package_hash in stale:
            if package_hash not in (updated.current_package, updated.previous_package):
                self._delete_package_folder(package_hash)
        return True

    def rollback(self) -> Package | None:
        """Return to the previous package, discarding the current one.

        Returns the package that is current afterwards, or ``None`` when the
        host should fall back to its built-in bundle.
        """

        status = self.read_status()
        if status.current_package is None:
            _LOGGER.debug("Nothing to roll back")
            return None
        previous = self.get_package(status.previous_package)
        updated = StatusRecord(
            current_package=previous.hash if previous is not None else None,
            previous_package=None,
        )
        self._write_status(updated)
        _LOGGER.warning(
            "Rolled back package %s to %s",
            status.current_package,
            updated.current_package or "the built-in bundle",
        )
        self._delete_package_folder(status.current_package)
        return previous

    def clear_updates(self) -> None:
        """Remove every package and the status record."""

        _LOGGER.info("Clearing all downloaded updates under %s", self._root)
        try:
            shutil.rmtree(self._root)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"Unable to clear updates at {self._root}: {exc}") from exc

    def _delete_package_folder(self, package_hash: str) -> None:
        folder = self.package_folder(package_hash)
        _LOGGER.debug("Deleting package folder %s", folder)
        try:
            shutil.rmtree(folder)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"Unable to delete package folder {folder}: {exc}") from exc

    # Download ---------------------------------------------------------
    def download_package(
        self,
        descriptor: UpdateDescriptor,
        expected_bundle_file_name: str | None = None,
        *,
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Package:
        """Download, unpack and register the package described by ``descriptor``.

        The package folder only appears under its hash once every step has
        succeeded; failures leave the store as it was.
        """

        bundle_file_name = expected_bundle_file_name or self._bundle_file_name
        staging: Path | None = None
        try:
            download = self._downloader.download(
                descriptor.download_url,
                self.download_path,
                on_progress=on_progress,
                cancel_event=cancel_event,
            )
            package_hash = descriptor.package_hash or download.sha256
            if package_hash == self.get_current_package_hash():
                existing = self.get_package(package_hash)
                if existing is not None:
                    _LOGGER.info("Package %s is already current; keeping stored copy", package_hash)
                    return existing

            staging = self._create_staging_folder()
            relative_bundle_path = self._place_payload(download, staging, bundle_file_name)
            package = descriptor.to_package(package_hash, relative_bundle_path)
            write_json_atomically(staging / constants.PACKAGE_FILE_NAME, package.to_dict())
            self._promote_folder(staging, package_hash)
            staging = None
        finally:
            _discard(self.download_path)
            _discard(self._root / constants.UNZIPPED_FOLDER_NAME)
            if staging is not None:
                _discard(staging)

        _LOGGER.info(
            "Downloaded package %s (version=%s, bundle=%s)",
            package.hash,
            package.version_name,
            package.relative_bundle_path or bundle_file_name,
        )
        return package

    def _create_staging_folder(self) -> Path:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            return Path(tempfile.mkdtemp(prefix=constants.STAGING_PREFIX, dir=self._root))
        except OSError as exc:
            raise StorageError(f"Unable to create staging folder in {self._root}: {exc}") from exc

    def _place_payload(
        self, download: DownloadResult, staging: Path, bundle_file_name: str
    ) -> str | None:
        if download.is_archive:
            scratch = extract_archive(download.path, self._root / constants.UNZIPPED_FOLDER_NAME)
            merge_tree(scratch, staging)
            relative_bundle_path = find_bundle(staging, bundle_file_name)
            if relative_bundle_path is None:
                raise InvalidUpdateError(
                    f'Update is invalid - A bundle file named "{bundle_file_name}" '
                    "could not be found within the downloaded contents."
                )
            return relative_bundle_path

        try:
            shutil.move(str(download.path), str(staging / bundle_file_name))
        except OSError as exc:
            raise StorageError(f"Unable to move downloaded bundle into place: {exc}") from exc
        return None

    def _promote_folder(self, staging: Path, package_hash: str) -> None:
        target = self.package_folder(package_hash)
        try:
            if target.exists():
                _LOGGER.debug("Replacing existing package folder %s", target)
                shutil.rmtree(target)
            staging.rename(target)
        except OSError as exc:
            raise StorageError(f"Unable to move package {package_hash} into place: {exc}") from exc


def _discard(path: Path) -> None:
    try:
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()
    except FileNotFoundError:
        return
    except OSError:
        _LOGGER.debug("Unable to remove temporary path %s", path, exc_info=True)


__all__ = ["PackageStore"]
