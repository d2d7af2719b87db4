"""Detection of drift between the descriptor and the installed platform."""

import logging
from collections.abc import Callable
from pathlib import Path

from devenv.config.layout import DEFAULT_LAYOUT, PlatformLayout
from devenv.config.schemas import PlatformConfig
from devenv.core.manifest import ManifestManager
from devenv.core.status import FileStatus, PlatformStatus
from devenv.utils.binary import read_binary_version
from devenv.utils.filesystem import compute_file_digest, friendly_path
from devenv.utils.version import BinaryVersion, SemVer, binary_matches_version

logger = logging.getLogger(__name__)

VersionReader = Callable[[Path], BinaryVersion | None]


class DriftDetector:
    """Compares an installed platform directory against the requested version.

    The checks run in a fixed order and the first failing one decides the
    status: version syntax, modified files, missing binary, missing
    manifest, then the version embedded in the binary.
    """

    def __init__(
        self,
        layout: PlatformLayout = DEFAULT_LAYOUT,
        version_reader: VersionReader = read_binary_version,
    ):
        self.layout = layout
        self._read_version = version_reader

    def platform_status(self, platform: PlatformConfig, root: Path) -> PlatformStatus:
        """Get the status of the platform installed in a directory.

        Args:
            platform: Platform section of the environment descriptor
            root: Platform directory

        Returns:
            PlatformStatus describing the first difference found
        """
        name = self.layout.name
        if not platform.is_managed:
            return PlatformStatus.ok(name)

        expected = SemVer.try_parse(platform.version)
        if expected is None:
            logger.error("Unable to parse %s version number '%s'.", name, platform.version)
            return PlatformStatus.drifted(name, "has an invalid version number.")

        files = self.file_statuses(root)
        if files:
            return PlatformStatus.drifted(name, "has been modified since installation.", files)

        binary_path = root / self.layout.binary_path
        if not binary_path.is_file():
            logger.info("No %s binary was found at %s.", name, binary_path)
            return PlatformStatus.drifted(name, "is not installed.")

        if files is None:
            return PlatformStatus.drifted(name, "was not installed correctly.")

        installed = self._installed_version(binary_path)
        if installed is None:
            logger.error("No version number found in %s.", binary_path)
            return PlatformStatus.drifted(name, "is not installed.")

        if not binary_matches_version(expected, installed, self.layout.exact_match_threshold):
            logger.info(
                "%s binary version %s does not match expected version %s.",
                name,
                installed,
                expected,
            )
            return PlatformStatus.drifted(
                name, f"version installed is {installed} but should be {expected}."
            )

        return PlatformStatus.ok(name)

    def file_statuses(self, root: Path) -> list[FileStatus] | None:
        """Check every file recorded in the installation manifest.

        Returns:
            The files that are missing or modified, or None without a manifest
        """
        manifest = ManifestManager(root, self.layout.manifest_file).load()
        if manifest is None:
            return None

        statuses: list[FileStatus] = []
        for key, digest in manifest.files.items():
            if key.startswith(self.layout.volatile_prefixes):
                continue

            path = root / key
            if not path.is_file():
                statuses.append(FileStatus(friendly_path(path), "missing"))
            elif compute_file_digest(path) != digest.upper():
                statuses.append(FileStatus(friendly_path(path), "modified"))

        return statuses

    def is_clean(self, root: Path) -> bool:
        """Check if the installation is unchanged since it was installed.

        Without a manifest the directory is only clean when the platform
        binary is absent too.
        """
        files = self.file_statuses(root)
        if files is None:
            return not (root / self.layout.binary_path).is_file()
        return not files

    def _installed_version(self, binary_path: Path) -> BinaryVersion | None:
        try:
            return self._read_version(binary_path)
        except OSError as e:
            logger.error("Unable to read %s: %s", binary_path, e)
            return None
