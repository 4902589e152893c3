"""Host-facing entry point combining the package store and update state."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Mapping

from services.ota.downloader import ProgressCallback
from services.ota.errors import InvalidUpdateError
from services.ota.models import Package, UpdateDescriptor
from services.ota.state import UpdateStateTracker
from services.ota.store import PackageStore
from services.ota.versioning import is_version_newer


_LOGGER = logging.getLogger(__name__)


class OtaUpdater:
    """Coordinate downloads, activation and confirmation of bundle updates.

    The host runtime owns loading bundles; this class only decides which
    bundle path is current and keeps the bookkeeping that lets a crashing
    update be rolled back on the next launch.
    """

    def __init__(
        self,
        store: PackageStore,
        tracker: UpdateStateTracker,
        *,
        app_version: str = "unknown",
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._app_version = app_version

    @property
    def store(self) -> PackageStore:
        return self._store

    @property
    def tracker(self) -> UpdateStateTracker:
        return self._tracker

    def get_configuration(self) -> dict[str, str]:
        return {
            "appVersion": self._app_version,
            "bundleFileName": self._store.bundle_file_name,
        }

    def get_current_package_info(self) -> dict[str, Any]:
        return self._store.get_current_package_info()

    def get_current_package(self) -> dict[str, Any] | None:
        package = self._store.get_current_package()
        return package.to_dict() if package is not None else None

    def is_update_available(self, descriptor: Mapping[str, Any]) -> bool:
        """Return ``True`` when ``descriptor`` is worth downloading."""

        update = UpdateDescriptor.from_dict(descriptor)
        if self._tracker.is_failed_hash(update.package_hash):
            _LOGGER.info("Skipping update %s previously marked as failed", update.package_hash)
            return False
        current = self._store.get_current_package()
        if current is None:
            return True
        if update.package_hash is not None and update.package_hash == current.hash:
            _LOGGER.debug("Update %s is already installed", update.package_hash)
            return False
        if update.version_name and current.version_name:
            return is_version_newer(current.version_name, update.version_name)
        return True

    def download_package(
        self,
        descriptor: Mapping[str, Any],
        expected_bundle_file_name: str | None = None,
        on_progress: ProgressCallback | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> dict[str, Any]:
        update = UpdateDescriptor.from_dict(descriptor)
        package = self._store.download_package(
            update,
            expected_bundle_file_name,
            on_progress=on_progress,
            cancel_event=cancel_event,
        )
        return package.to_dict()

    def install_package(self, descriptor: Mapping[str, Any], remove_pending_update: bool = False) -> None:
        """Activate a downloaded package and record it as pending confirmation."""

        package = self._require_downloaded(Package.from_dict(descriptor).hash)
        if self._store.install_package(package, remove_pending_update):
            self._tracker.save_pending_update(package.hash, is_loading=False)

    def install_bundle(self, bundle_path: str | Path) -> None:
        """Activate the package that contains ``bundle_path``."""

        path = Path(bundle_path)
        try:
            relative = path.resolve().relative_to(self._store.root.resolve())
        except ValueError:
            raise InvalidUpdateError(f"Invalid bundle path: {bundle_path}") from None
        if not relative.parts:
            raise InvalidUpdateError(f"Invalid bundle path: {bundle_path}")
        package = self._require_downloaded(relative.parts[0])
        if self._store.install_package(package, remove_pending_update=False):
            self._tracker.save_pending_update(package.hash, is_loading=False)

    def resolve_bundle_path(self, package_hash: str) -> Path | None:
        return self._store.resolve_bundle_path(package_hash)

    def get_current_bundle_path(self) -> Path | None:
        return self._store.get_current_bundle_path()

    def prepare_launch(self) -> Path | None:
        """Return the bundle the host should load now, or ``None`` for the built-in one.

        A pending update that was already being loaded on the previous launch
        never got confirmed, so it is recorded as failed and rolled back.
        """

        pending = self._tracker.get_pending_update()
        current = self._store.get_current_package()
        if pending is not None and current is not None and pending.hash == current.hash:
            if pending.is_loading:
                _LOGGER.warning("Update %s was not confirmed after launch; rolling back", current.hash)
                self._tracker.save_failed_update(current)
                self._store.rollback()
                self._tracker.remove_pending_update()
            else:
                self._tracker.save_pending_update(pending.hash, is_loading=True)
        elif pending is not None:
            _LOGGER.debug("Dropping stale pending update %s", pending.hash)
            self._tracker.remove_pending_update()
        return self._store.get_current_bundle_path()

    def notify_app_ready(self) -> None:
        """Confirm that the current bundle started successfully."""

        pending = self._tracker.get_pending_update()
        if pending is None:
            return
        _LOGGER.info("Update %s confirmed by host", pending.hash)
        self._tracker.remove_pending_update()

    def rollback(self) -> dict[str, Any] | None:
        package = self._store.rollback()
        self._tracker.remove_pending_update()
        return package.to_dict() if package is not None else None

    def clear_updates(self) -> None:
        self._store.clear_updates()
        self._tracker.remove_pending_update()

    def _require_downloaded(self, package_hash: str) -> Package:
        package = self._store.get_package(package_hash)
        if package is None:
            raise InvalidUpdateError(f"Package not found for hash: {package_hash}")
        return package


__all__ = ["OtaUpdater"]
