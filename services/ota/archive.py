"""Archive handling helpers for downloaded update payloads."""

from __future__ import annotations

import logging
import shutil
import zipfile
from pathlib import Path

from services.ota import constants
from services.ota.errors import InvalidUpdateError, StorageError


_LOGGER = logging.getLogger(__name__)


def extract_archive(archive_path: Path, target_dir: Path) -> Path:
    """Unpack ``archive_path`` into a fresh ``target_dir`` scratch directory."""

    _LOGGER.info("Extracting update archive %s", archive_path)
    try:
        if target_dir.exists():
            shutil.rmtree(target_dir)
        target_dir.mkdir(parents=True)
        with zipfile.ZipFile(archive_path) as archive:
            extract_zip_safely(archive, target_dir)
    except zipfile.BadZipFile as exc:
        raise InvalidUpdateError(f"Failed to extract update archive: {exc}") from exc
    except OSError as exc:
        raise StorageError(f"Failed to extract update archive: {exc}") from exc
    _LOGGER.debug("Archive extracted to %s", target_dir)
    return target_dir


def extract_zip_safely(archive: zipfile.ZipFile, target_dir: Path) -> None:
    root = target_dir.resolve()
    total_bytes = 0
    processed_entries = 0
    for member in archive.infolist():
        name = member.filename
        if not name:
            continue
        processed_entries += 1
        if processed_entries > constants.MAX_ARCHIVE_ENTRIES:
            _LOGGER.error(
                "Archive entry count %s exceeded limit %s",
                processed_entries,
                constants.MAX_ARCHIVE_ENTRIES,
            )
            raise InvalidUpdateError("Update archive contained too many entries")
        path = Path(name)
        if path.is_absolute() or name.startswith(("/", "\\")):
            raise InvalidUpdateError("Update archive contained an absolute path entry")
        destination = (root / path).resolve()
        try:
            destination.relative_to(root)
        except ValueError:
            raise InvalidUpdateError(f"Update archive entry {name!r} escapes the package folder")
        if member.is_dir():
            destination.mkdir(parents=True, exist_ok=True)
            continue
        if member.file_size > constants.MAX_ARCHIVE_FILE_SIZE:
            _LOGGER.error(
                "Archive member %s exceeded file size limit (%s > %s)",
                name,
                member.file_size,
                constants.MAX_ARCHIVE_FILE_SIZE,
            )
            raise InvalidUpdateError("Update archive contained an oversized file")
        if (
            member.compress_size > 0
            and member.file_size > member.compress_size * constants.MAX_COMPRESSION_RATIO
        ):
            _LOGGER.error(
                "Archive member %s exceeded compression ratio limit (%s > %s)",
                name,
                member.file_size,
                member.compress_size * constants.MAX_COMPRESSION_RATIO,
            )
            raise InvalidUpdateError("Update archive exceeded safe compression ratio")
        total_bytes += member.file_size
        if total_bytes > constants.MAX_ARCHIVE_TOTAL_BYTES:
            _LOGGER.error(
                "Archive expanded to %s bytes which exceeds limit %s",
                total_bytes,
                constants.MAX_ARCHIVE_TOTAL_BYTES,
            )
            raise InvalidUpdateError("Update archive expanded beyond safe limits")
        destination.parent.mkdir(parents=True, exist_ok=True)
        with archive.open(member) as source, destination.open("wb") as target:
            shutil.copyfileobj(source, target)
        _LOGGER.debug("Extracted archive member %s to %s", name, destination)

    _LOGGER.info(
        "Extracted %s entries totalling %s bytes", processed_entries, total_bytes
    )


def merge_tree(source: Path, destination: Path) -> None:
    """Copy the full subtree of ``source`` into ``destination``, then drop ``source``."""

    try:
        shutil.copytree(source, destination, dirs_exist_ok=True)
        shutil.rmtree(source)
    except OSError as exc:
        raise StorageError(f"Unable to move extracted files into {destination}: {exc}") from exc


def find_bundle(root: Path, bundle_file_name: str) -> str | None:
    """Return the ``/``-joined path of ``bundle_file_name`` relative to ``root``.

    Files directly inside ``root`` win over nested ones; subdirectories are
    searched depth-first in name order.
    """

    if not root.is_dir():
        return None
    entries = sorted(root.iterdir(), key=lambda entry: entry.name)
    for entry in entries:
        if entry.is_file() and entry.name == bundle_file_name:
            _LOGGER.debug("Found bundle %s at %s", bundle_file_name, entry)
            return entry.name
    for entry in entries:
        if entry.is_dir() and not entry.is_symlink():
            found = find_bundle(entry, bundle_file_name)
            if found is not None:
                return f"{entry.name}/{found}"
    return None


__all__ = ["extract_archive", "extract_zip_safely", "find_bundle", "merge_tree"]
