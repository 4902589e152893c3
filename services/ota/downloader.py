"""Streaming payload downloader for update packages."""

from __future__ import annotations

import hashlib
import logging
import threading
from http.client import HTTPException
from pathlib import Path
from typing import Any, BinaryIO, Callable
from urllib.error import URLError
from urllib.request import Request, urlopen

from services.ota import constants
from services.ota.errors import (
    ContentIntegrityError,
    DownloadCancelledError,
    DownloadError,
    MalformedDescriptorError,
    StorageError,
)
from services.ota.models import DownloadResult


_LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
Opener = Callable[..., Any]


def declared_length(response: Any) -> int:
    """Return the ``Content-Length`` announced by ``response`` or ``-1``."""

    headers = getattr(response, "headers", None)
    raw = headers.get("Content-Length") if headers is not None else None
    if raw is None:
        return constants.UNKNOWN_LENGTH
    try:
        length = int(str(raw).strip())
    except ValueError:
        _LOGGER.debug("Ignoring unparsable Content-Length header %r", raw)
        return constants.UNKNOWN_LENGTH
    return length if length >= 0 else constants.UNKNOWN_LENGTH


def is_archive_header(header: bytes) -> bool:
    return bytes(header[:4]) == constants.ZIP_HEADER_SIGNATURE


class PayloadDownloader:
    """Stream a payload from a URL into a local file.

    The downloader is not synchronised; concurrent calls writing to the same
    destination overwrite each other and must be serialised by the caller.
    """

    def __init__(
        self,
        *,
        buffer_size: int = constants.DOWNLOAD_BUFFER_SIZE,
        timeout: float | None = None,
        opener: Opener = urlopen,
    ) -> None:
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        self._buffer_size = buffer_size
        self._timeout = timeout
        self._opener = opener

    def download(
        self,
        url: str,
        destination: Path,
        *,
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> DownloadResult:
        """Stream ``url`` into ``destination`` and classify the payload."""

        _LOGGER.info("Downloading update payload from %s", url)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            target = destination.open("wb")
        except OSError as exc:
            raise StorageError(f"Unable to create download file {destination}: {exc}") from exc

        with target:
            response = self._open(url)
            with response:
                total_bytes = declared_length(response)
                received_bytes, header, digest = self._stream(
                    response, target, total_bytes, on_progress, cancel_event
                )

        if total_bytes >= 0 and total_bytes != received_bytes:
            _LOGGER.error(
                "Download from %s ended after %s of %s declared bytes",
                url,
                received_bytes,
                total_bytes,
            )
            raise ContentIntegrityError(total_bytes, received_bytes)

        archive = is_archive_header(header)
        _LOGGER.info(
            "Downloaded %s bytes to %s (%s)",
            received_bytes,
            destination,
            "archive" if archive else "raw bundle",
        )
        return DownloadResult(
            path=destination,
            total_bytes=total_bytes,
            received_bytes=received_bytes,
            sha256=digest,
            is_archive=archive,
        )

    def _open(self, url: str) -> Any:
        try:
            request = Request(url, headers={"Accept-Encoding": "identity"})
            if self._timeout is None:
                return self._opener(request)
            return self._opener(request, timeout=self._timeout)
        except ValueError as exc:
            raise MalformedDescriptorError(f"Invalid download URL {url!r}: {exc}") from exc
        except (URLError, OSError, HTTPException) as exc:
            raise DownloadError(f"Failed to download update from {url}: {exc}") from exc

    def _stream(
        self,
        response: Any,
        target: BinaryIO,
        total_bytes: int,
        on_progress: ProgressCallback | None,
        cancel_event: threading.Event | None,
    ) -> tuple[int, bytes, str]:
        header = bytearray()
        received_bytes = 0
        digest = hashlib.sha256()
        while True:
            if cancel_event is not None and cancel_event.is_set():
                _LOGGER.info("Download cancelled after %s bytes", received_bytes)
                raise DownloadCancelledError("Download was cancelled")
            try:
                chunk = response.read(self._buffer_size)
            except (OSError, HTTPException) as exc:
                raise DownloadError(f"Connection failed while downloading update: {exc}") from exc
            if not chunk:
                break
            if len(header) < 4:
                # Reads may return fewer than four bytes.
                header.extend(chunk[: 4 - len(header)])
            received_bytes += len(chunk)
            try:
                target.write(chunk)
            except OSError as exc:
                raise StorageError(f"Unable to write downloaded data: {exc}") from exc
            digest.update(chunk)
            if on_progress is not None:
                on_progress(total_bytes, received_bytes)
        return received_bytes, bytes(header), digest.hexdigest()


__all__ = ["PayloadDownloader", "ProgressCallback", "declared_length", "is_archive_header"]
