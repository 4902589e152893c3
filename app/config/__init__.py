"""Engine configuration loaded from a JSON resource and the environment."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from math import isfinite
from pathlib import Path
from typing import Any, Mapping

from shared.logging_config import LogVerbosity

_CONFIG_RESOURCE = "ota.json"
_OTA_CONFIG_CACHE: OtaConfig | None = None

DOCUMENTS_DIR_ENV = "OTA_DOCUMENTS_DIR"
PACKAGE_ROOT_ENV = "OTA_PACKAGE_ROOT"
BUNDLE_FILE_NAME_ENV = "OTA_BUNDLE_FILE_NAME"
DOWNLOAD_TIMEOUT_ENV = "OTA_DOWNLOAD_TIMEOUT"
LOG_VERBOSITY_ENV = "OTA_LOG_VERBOSITY"

_DEFAULT_DOCUMENTS_DIRNAME = ".ota_updater"
_DEFAULT_BUNDLE_FILE_NAME = "index.android.bundle"
_DEFAULT_PACKAGE_ROOT_DIRNAME = "OTAUpdates"
_DEFAULT_STATE_FILE_NAME = "OTAUpdater.json"
_DEFAULT_BUFFER_SIZE = 256 * 1024
_DEFAULT_TIMEOUT_SECONDS = 60.0

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class OtaConfig:
    """Where packages live and how payloads are fetched."""

    documents_dir: Path
    package_root: Path
    state_path: Path
    bundle_file_name: str
    download_buffer_size: int
    download_timeout: float | None
    log_verbosity: LogVerbosity = LogVerbosity.INFO


def get_ota_config() -> OtaConfig:
    """Return the cached engine configuration."""

    global _OTA_CONFIG_CACHE
    if _OTA_CONFIG_CACHE is None:
        _OTA_CONFIG_CACHE = load_ota_config()
    return _OTA_CONFIG_CACHE


def reset_ota_config_cache() -> None:
    """Reset the cached configuration for subsequent reloads."""

    global _OTA_CONFIG_CACHE
    _OTA_CONFIG_CACHE = None


def load_ota_config(path: str | Path | None = None) -> OtaConfig:
    """Load configuration from ``path`` or the bundled JSON resource.

    Environment variables take precedence over file values.
    """

    data = _read_config_data(path)

    documents_override = os.environ.get(DOCUMENTS_DIR_ENV)
    if documents_override:
        documents_dir = Path(documents_override).expanduser()
    else:
        documents_dir = Path.home() / _DEFAULT_DOCUMENTS_DIRNAME

    root_override = os.environ.get(PACKAGE_ROOT_ENV)
    if root_override:
        package_root = Path(root_override).expanduser()
    else:
        dirname = _coerce_name(data.get("package_root_dirname"), default=_DEFAULT_PACKAGE_ROOT_DIRNAME)
        package_root = documents_dir / dirname

    state_name = _coerce_name(data.get("state_file_name"), default=_DEFAULT_STATE_FILE_NAME)
    bundle_file_name = _coerce_name(
        os.environ.get(BUNDLE_FILE_NAME_ENV) or data.get("bundle_file_name"),
        default=_DEFAULT_BUNDLE_FILE_NAME,
    )

    download_section = data.get("download")
    if not isinstance(download_section, Mapping):
        download_section = {}
    buffer_size = _coerce_positive_int(download_section.get("buffer_size"), default=_DEFAULT_BUFFER_SIZE)
    timeout_source: Any = os.environ.get(DOWNLOAD_TIMEOUT_ENV)
    if timeout_source is None:
        timeout_source = download_section.get("timeout_seconds", _DEFAULT_TIMEOUT_SECONDS)
    timeout = _coerce_timeout(timeout_source, default=_DEFAULT_TIMEOUT_SECONDS)

    logging_section = data.get("logging")
    if not isinstance(logging_section, Mapping):
        logging_section = {}
    verbosity = _coerce_verbosity(
        os.environ.get(LOG_VERBOSITY_ENV) or logging_section.get("verbosity"),
        default=LogVerbosity.INFO,
    )

    return OtaConfig(
        documents_dir=documents_dir,
        package_root=package_root,
        state_path=documents_dir / state_name,
        bundle_file_name=bundle_file_name,
        download_buffer_size=buffer_size,
        download_timeout=timeout,
        log_verbosity=verbosity,
    )


def _read_config_data(path: str | Path | None) -> Mapping[str, Any]:
    if path is not None:
        return _load_json_from_path(Path(path).expanduser())
    return _load_default_config_data()


def _load_json_from_path(path: Path) -> Mapping[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        _LOGGER.warning("Unable to read OTA configuration %s; using defaults", path)
        return {}
    return _parse_json(raw)


def _load_default_config_data() -> Mapping[str, Any]:
    try:
        resource = resources.files(__package__).joinpath(_CONFIG_RESOURCE)
        raw = resource.read_text(encoding="utf-8")
    except (FileNotFoundError, OSError):
        return {}
    return _parse_json(raw)


def _parse_json(raw: str) -> Mapping[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        _LOGGER.warning("OTA configuration is not valid JSON; using defaults")
        return {}
    if isinstance(parsed, Mapping):
        return parsed
    return {}


def _coerce_name(value: Any, *, default: str) -> str:
    if isinstance(value, str):
        cleaned = value.strip()
        if cleaned and "/" not in cleaned and "\\" not in cleaned:
            return cleaned
    return default


def _coerce_positive_int(value: Any, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        candidate = int(value)
    elif isinstance(value, str):
        try:
            candidate = int(float(value))
        except ValueError:
            return default
    else:
        return default
    if candidate <= 0:
        return default
    return candidate


def _coerce_verbosity(value: Any, *, default: LogVerbosity) -> LogVerbosity:
    if isinstance(value, str):
        try:
            return LogVerbosity(value.strip().lower())
        except ValueError:
            _LOGGER.warning("Ignoring unknown log verbosity %r", value)
    return default


def _coerce_timeout(value: Any, *, default: float) -> float | None:
    """Return a positive timeout, ``None`` for "no timeout", or ``default``."""

    if value is None:
        return None
    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        stripped = value.strip().lower()
        if stripped in {"", "none", "off", "0"}:
            return None
        try:
            value = float(stripped)
        except ValueError:
            _LOGGER.warning("Ignoring invalid download timeout %r", value)
            return default
    if not isinstance(value, (int, float)) or not isfinite(value):
        return default
    if value <= 0:
        return None
    return float(value)


__all__ = [
    "BUNDLE_FILE_NAME_ENV",
    "DOCUMENTS_DIR_ENV",
    "DOWNLOAD_TIMEOUT_ENV",
    "LOG_VERBOSITY_ENV",
    "PACKAGE_ROOT_ENV",
    "OtaConfig",
    "get_ota_config",
    "load_ota_config",
    "reset_ota_config_cache",
]
