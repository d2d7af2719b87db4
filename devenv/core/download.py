"""Streaming download of platform archives."""

from __future__ import annotations

import logging
import ssl
from collections.abc import Callable
from pathlib import Path
from typing import BinaryIO
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

logger = logging.getLogger(__name__)

# Receives the completed fraction, or None while the total size is unknown.
ProgressCallback = Callable[[float | None], None]

DOWNLOAD_CHUNK_SIZE = 81920
DEFAULT_TIMEOUT = 30  # seconds


class ArchiveDownloadError(Exception):
    """Error transferring an archive."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class ArchiveNotFoundError(ArchiveDownloadError):
    """The requested archive does not exist on the server."""


def _copy_with_progress(
    source: BinaryIO,
    destination: BinaryIO,
    total: int | None,
    progress: ProgressCallback | None,
) -> int:
    received = 0
    for chunk in iter(lambda: source.read(DOWNLOAD_CHUNK_SIZE), b""):
        destination.write(chunk)
        received += len(chunk)
        if progress is not None:
            progress(received / total if total else None)
    return received


def download_archive(
    url: str,
    destination: BinaryIO,
    progress: ProgressCallback | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> int:
    """Download an archive into a stream.

    The body is read in chunks and progress is reported as each chunk
    arrives. Sources without a scheme are read from the local filesystem.

    Args:
        url: Archive URL or local file path
        destination: Writable binary stream receiving the archive bytes
        progress: Optional callback for fractional progress
        timeout: Request timeout in seconds

    Returns:
        Number of bytes received

    Raises:
        ArchiveNotFoundError: If the server reports 404
        ArchiveDownloadError: For any other failure to transfer the archive
    """
    if "://" not in url:
        return _read_local_archive(Path(url), destination, progress)

    logger.info("Downloading %s", url)
    try:
        request = Request(url, method="GET")
        context = ssl.create_default_context() if url.startswith("https://") else None
        with urlopen(request, timeout=timeout, context=context) as response:
            status = getattr(response, "status", 200)
            if status != 200:
                raise ArchiveDownloadError(
                    f"Unable to download {url}, status code = {status}.",
                    url=url,
                    status_code=status,
                )

            length_header = response.headers.get("Content-Length")
            total = int(length_header) if length_header and length_header.isdigit() else None
            received = _copy_with_progress(response, destination, total, progress)
    except HTTPError as e:
        if e.code == 404:
            logger.error("Archive not found at %s", url)
            raise ArchiveNotFoundError(
                f"Unable to download {url}, item not found.",
                url=url,
                status_code=404,
            ) from e
        logger.error("HTTP error %d: %s for %s", e.code, e.reason, url)
        raise ArchiveDownloadError(
            f"Unable to download {url}, status code = {e.code}.",
            url=url,
            status_code=e.code,
        ) from e
    except URLError as e:
        logger.error("Failed to connect to %s: %s", url, e.reason)
        raise ArchiveDownloadError(f"Failed to connect to {url}: {e.reason}", url=url) from e
    except (TimeoutError, OSError) as e:
        logger.error("Transfer of %s failed: %s", url, e)
        raise ArchiveDownloadError(f"Transfer of {url} failed: {e}", url=url) from e

    if total is not None and received < total:
        raise ArchiveDownloadError(
            f"Download of {url} was truncated after {received} of {total} bytes.",
            url=url,
        )

    if progress is not None:
        progress(1.0)

    logger.debug("Download complete, received %d bytes", received)
    return received


def _read_local_archive(
    path: Path, destination: BinaryIO, progress: ProgressCallback | None
) -> int:
    logger.info("Reading archive from %s", path)
    try:
        total = path.stat().st_size
        with open(path, "rb") as source:
            received = _copy_with_progress(source, destination, total, progress)
    except FileNotFoundError as e:
        raise ArchiveNotFoundError(
            f"Unable to read {path}, item not found.", url=str(path)
        ) from e
    except OSError as e:
        raise ArchiveDownloadError(f"Unable to read {path}: {e}", url=str(path)) from e

    if progress is not None:
        progress(1.0)
    return received
