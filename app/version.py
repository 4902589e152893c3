from __future__ import annotations

"""Host application version helpers."""

from functools import lru_cache
import os
from importlib import resources

APP_VERSION_ENV = "OTA_APP_VERSION"
_FALLBACK_VERSION = "unknown"


def _read_version_file() -> str | None:
    try:
        text = resources.files(__package__).joinpath("VERSION").read_text(encoding="utf-8")
    except (FileNotFoundError, ModuleNotFoundError):
        return None
    version = text.strip()
    return _normalize(version) if version else None


def _version_from_env() -> str | None:
    env_version = os.environ.get(APP_VERSION_ENV)
    if not env_version or not env_version.strip():
        return None
    return _normalize(env_version)


def _normalize(raw_version: str) -> str:
    version = raw_version.strip()
    if version.startswith("v"):
        version = version[1:]
    return version


@lru_cache(maxsize=1)
def get_app_version() -> str:
    """Return the version of the host application shipping the engine.

    The order of precedence is:
    1. The ``OTA_APP_VERSION`` environment variable.
    2. An embedded ``VERSION`` file packaged next to this module.
    3. ``"unknown"``.
    """

    for resolver in (_version_from_env, _read_version_file):
        version = resolver()
        if version:
            return version
    return _FALLBACK_VERSION


__all__ = ["APP_VERSION_ENV", "get_app_version"]
