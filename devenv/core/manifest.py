"""Installation manifest for the platform directory.

The manifest records the digest of every file extracted from a platform
archive. It is written as the last step of a successful install, so a
platform directory without one was either never installed or was
installed incompletely.
"""

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import BinaryIO

from pydantic import ValidationError

from devenv.config.parser import dump_json
from devenv.config.schemas import InstallationManifest
from devenv.utils.filesystem import (
    compute_stream_digest,
    normalize_separators,
    write_text_file_atomic,
)

logger = logging.getLogger(__name__)


def is_directory_entry(path: str) -> bool:
    """Check if an archive entry name marks a directory."""
    return path.endswith("/") or path.endswith("\\")


def build_manifest(entries: Iterable[tuple[str, BinaryIO]]) -> InstallationManifest:
    """Build a manifest from archive entries.

    Each stream is read to the end exactly once, in the order given.
    Directory markers are skipped.

    Args:
        entries: Pairs of entry path and readable stream

    Returns:
        InstallationManifest keyed by slash-separated path
    """
    files: dict[str, str] = {}
    for path, stream in entries:
        if is_directory_entry(path):
            continue
        files[normalize_separators(path)] = compute_stream_digest(stream)
    return InstallationManifest(files=files)


class ManifestManager:
    """Manages the manifest file of one installed platform directory."""

    def __init__(self, platform_root: Path, filename: str = ".rock.json") -> None:
        """Initialize the manifest manager.

        Args:
            platform_root: Path to the installed platform directory
            filename: Manifest filename inside the platform directory
        """
        self.platform_root = platform_root
        self.filename = filename

    @property
    def manifest_path(self) -> Path:
        """Get the manifest file path."""
        return self.platform_root / self.filename

    def exists(self) -> bool:
        return self.manifest_path.is_file()

    def load(self) -> InstallationManifest | None:
        """Load the manifest from disk.

        Returns:
            The manifest, or None if the platform has no usable manifest
        """
        if not self.manifest_path.is_file():
            logger.info("Installation manifest %s is missing.", self.manifest_path)
            return None

        try:
            with open(self.manifest_path, encoding="utf-8-sig") as f:
                data = json.load(f)
            return InstallationManifest.model_validate(data)
        except (json.JSONDecodeError, OSError, ValidationError) as e:
            logger.error("Installation manifest %s was not valid: %s", self.manifest_path, e)
            return None

    def save(self, manifest: InstallationManifest) -> None:
        """Write the manifest to disk, replacing any previous one."""
        write_text_file_atomic(self.manifest_path, dump_json(manifest.model_dump()))
        logger.debug("Wrote manifest with %d file(s) to %s", manifest.file_count, self.manifest_path)

    def delete(self, dry_run: bool = False) -> bool:
        """Delete the manifest file.

        Returns:
            True if a manifest existed (and was deleted unless dry_run)
        """
        if not self.manifest_path.exists():
            return False
        if not dry_run:
            self.manifest_path.unlink()
        return True
