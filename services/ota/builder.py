"""Helpers for constructing the updater and running downloads off-thread."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Mapping

from app.config import OtaConfig, get_ota_config
from app.version import get_app_version
from services.ota.client import OtaUpdater
from services.ota.downloader import PayloadDownloader, ProgressCallback
from services.ota.errors import OtaError
from services.ota.state import JsonFileKeyValueStore, KeyValueStore, UpdateStateTracker
from services.ota.store import PackageStore
from shared.logging_config import ensure_app_logging, set_file_log_verbosity


_LOGGER = logging.getLogger(__name__)

_DOWNLOAD_LOCKS: dict[Path, threading.Lock] = {}
_DOWNLOAD_LOCKS_GUARD = threading.Lock()


def build_updater(
    config: OtaConfig | None = None,
    *,
    state_store: KeyValueStore | None = None,
) -> OtaUpdater:
    """Construct an :class:`OtaUpdater` for ``config`` (the cached config by default)."""

    config = config or get_ota_config()
    ensure_app_logging()
    set_file_log_verbosity(config.log_verbosity)
    downloader = PayloadDownloader(
        buffer_size=config.download_buffer_size,
        timeout=config.download_timeout,
    )
    store = PackageStore(
        config.package_root,
        bundle_file_name=config.bundle_file_name,
        downloader=downloader,
    )
    tracker = UpdateStateTracker(state_store or JsonFileKeyValueStore(config.state_path))
    _LOGGER.debug("Built updater for package root %s", config.package_root)
    return OtaUpdater(store, tracker, app_version=get_app_version())


def _download_lock(package_root: Path) -> threading.Lock:
    key = package_root.resolve()
    with _DOWNLOAD_LOCKS_GUARD:
        return _DOWNLOAD_LOCKS.setdefault(key, threading.Lock())


def _run_download(
    lock: threading.Lock,
    updater: OtaUpdater,
    descriptor: Mapping[str, Any],
    expected_bundle_file_name: str | None,
    on_progress: ProgressCallback | None,
    on_downloaded: Callable[[dict[str, Any]], None] | None,
    on_failed: Callable[[Exception], None] | None,
    cancel_event: threading.Event | None,
) -> None:
    try:
        try:
            package = updater.download_package(
                descriptor,
                expected_bundle_file_name,
                on_progress,
                cancel_event=cancel_event,
            )
        except OtaError as exc:
            _LOGGER.warning("Background download failed: %s", exc)
            if on_failed is not None:
                on_failed(exc)
            return
        except Exception as exc:  # pragma: no cover - unexpected failure
            _LOGGER.exception("Unexpected error while downloading update")
            if on_failed is not None:
                on_failed(exc)
            return
        if on_downloaded is not None:
            on_downloaded(package)
    finally:
        lock.release()


def schedule_download(
    updater: OtaUpdater,
    descriptor: Mapping[str, Any],
    *,
    expected_bundle_file_name: str | None = None,
    on_progress: ProgressCallback | None = None,
    on_downloaded: Callable[[dict[str, Any]], None] | None = None,
    on_failed: Callable[[Exception], None] | None = None,
    cancel_event: threading.Event | None = None,
) -> threading.Thread | None:
    """Start downloading ``descriptor`` on a daemon thread.

    Returns ``None`` without starting anything when another scheduled
    download into the same package root is still running. Callbacks run on
    the worker thread.
    """

    lock = _download_lock(updater.store.root)
    if not lock.acquire(blocking=False):
        _LOGGER.info(
            "A download into %s is already in progress; ignoring new request",
            updater.store.root,
        )
        return None

    thread = threading.Thread(
        target=_run_download,
        args=(
            lock,
            updater,
            descriptor,
            expected_bundle_file_name,
            on_progress,
            on_downloaded,
            on_failed,
            cancel_event,
        ),
        name="ota-download",
        daemon=True,
    )
    try:
        thread.start()
    except RuntimeError:
        lock.release()
        raise
    return thread


__all__ = ["build_updater", "schedule_download"]
