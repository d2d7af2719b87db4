"""Platform archive installation.

This module contains the ArchiveInstaller which downloads a versioned
platform archive, extracts it into the platform directory and records the
digest of every extracted file in the installation manifest.
"""

import io
import logging
import zipfile
import zlib
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from devenv.config.layout import DEFAULT_LAYOUT, PlatformLayout
from devenv.config.schemas import InstallationManifest
from devenv.core.download import ProgressCallback, download_archive
from devenv.core.manifest import ManifestManager, build_manifest, is_directory_entry
from devenv.utils.filesystem import is_unsafe_relative_path, normalize_separators

logger = logging.getLogger(__name__)


class ArchiveError(Exception):
    """Error reading or extracting a platform archive."""

    def __init__(self, message: str, url: str | None = None):
        self.url = url
        super().__init__(message)


@dataclass
class InstallResult:
    """Result of a platform installation."""

    url: str
    version: str
    manifest: InstallationManifest
    dry_run: bool = False

    @property
    def file_count(self) -> int:
        return self.manifest.file_count


class _TeeReader:
    """Readable stream that copies everything read into a second stream."""

    def __init__(self, source: BinaryIO, sink: BinaryIO | None):
        self._source = source
        self._sink = sink

    def read(self, size: int = -1) -> bytes:
        data = self._source.read(size)
        if data and self._sink is not None:
            self._sink.write(data)
        return data


class ArchiveInstaller:
    """Installs platform archives into a directory.

    Downloading, extraction and hashing happen in one pass: the archive is
    held in memory and each entry is hashed while it is written to disk.
    """

    def __init__(self, source_url: str | None = None, layout: PlatformLayout = DEFAULT_LAYOUT):
        """Initialize the installer.

        Args:
            source_url: Base URL (or local directory) holding versioned archives
            layout: Platform layout describing archive names and manifest file
        """
        self.source_url = source_url or layout.source_url
        self.layout = layout

    def install(
        self,
        version: str,
        destination: Path,
        dry_run: bool = False,
        progress: ProgressCallback | None = None,
    ) -> InstallResult:
        """Download and extract a platform version.

        Args:
            version: Platform version to install
            destination: Platform directory to extract into
            dry_run: Hash the archive contents without writing anything
            progress: Optional download progress callback

        Returns:
            InstallResult with the manifest of the installed files

        Raises:
            ArchiveNotFoundError: If the version does not exist at the source
            ArchiveDownloadError: If the archive cannot be transferred
            ArchiveError: If the archive is malformed
        """
        url = self.layout.archive_url(self.source_url, version)

        buffer = io.BytesIO()
        download_archive(url, buffer, progress=progress)
        buffer.seek(0)

        manifest_manager = ManifestManager(destination, self.layout.manifest_file)
        try:
            with zipfile.ZipFile(buffer) as archive:
                self._validate_entries(archive, url)
                if not dry_run and manifest_manager.delete():
                    logger.info("Removed previous installation manifest from %s", destination)
                manifest = build_manifest(
                    self._extract_entries(archive, destination, dry_run, url)
                )
        except (zipfile.BadZipFile, zlib.error, EOFError) as e:
            raise ArchiveError(f"The archive at {url} is not valid: {e}", url=url) from e

        if dry_run:
            logger.info(
                "Would install %d file(s) from %s into %s", manifest.file_count, url, destination
            )
        else:
            manifest_manager.save(manifest)
            logger.info("Installed %d file(s) from %s into %s", manifest.file_count, url, destination)

        return InstallResult(url=url, version=version, manifest=manifest, dry_run=dry_run)

    def _validate_entries(self, archive: zipfile.ZipFile, url: str) -> None:
        unsafe = [name for name in archive.namelist() if is_unsafe_relative_path(name)]
        if unsafe:
            raise ArchiveError(
                f"The archive at {url} contains entries outside the install directory: "
                + ", ".join(unsafe[:5]),
                url=url,
            )

    def _extract_entries(
        self, archive: zipfile.ZipFile, destination: Path, dry_run: bool, url: str
    ) -> Iterator[tuple[str, BinaryIO]]:
        """Yield each archive entry as a stream that writes itself to disk.

        The caller must read each stream to the end before advancing.

        Raises:
            ArchiveError: If an entry cannot be written to its target path
        """
        for info in archive.infolist():
            name = normalize_separators(info.filename)
            if info.is_dir() or is_directory_entry(name):
                continue

            with archive.open(info) as source:
                if dry_run:
                    yield name, source
                    continue

                target = destination / name
                try:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    sink = open(target, "wb")
                except OSError as e:
                    raise ArchiveError(
                        f"Unable to extract {name} from the archive at {url}: {e}", url=url
                    ) from e
                with sink:
                    yield name, _TeeReader(source, sink)
