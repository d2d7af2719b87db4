"""Environment model and reconciliation.

An environment is a directory holding an ``environment.json`` descriptor,
the platform installation and any number of plugin working copies. The
Environment class compares that directory with its descriptor and applies
the changes needed to make them agree.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from devenv.config.layout import DEFAULT_LAYOUT, PlatformLayout
from devenv.config.parser import (
    DESCRIPTOR_FILE,
    ConfigError,
    find_environment_root,
    load_descriptor,
    save_descriptor,
)
from devenv.config.schemas import (
    EnvironmentDescriptor,
    OrganizationConfig,
    PlatformConfig,
    PluginEntry,
)
from devenv.core.download import ProgressCallback
from devenv.core.drift import DriftDetector
from devenv.core.installer import ArchiveInstaller
from devenv.core.manifest import ManifestManager
from devenv.core.plugin import InvalidPluginError, PluginManager
from devenv.core.remover import RemovalReport, remove_installed, remove_preserving
from devenv.core.status import EnvironmentStatus, PluginStatus
from devenv.utils.filesystem import friendly_path, is_empty_directory, write_text_file
from devenv.utils.git import GitError
from devenv.utils.version import SemVer

logger = logging.getLogger(__name__)

GITIGNORE_FILE = ".gitignore"


@dataclass
class UpdateResult:
    """Result of bringing one item of the environment up to date."""

    name: str
    success: bool
    message: str = ""
    actions: list[str] = field(default_factory=list)
    dry_run: bool = False
    refused: bool = False


@dataclass
class UpdateSummary:
    """Summary of an update operation."""

    results: list[UpdateResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def all_successful(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def refused(self) -> bool:
        return any(r.refused for r in self.results)


class Environment:
    """A development environment described by environment.json.

    The environment owns its descriptor for the lifetime of the object and
    is the only thing that writes it back to disk.
    """

    def __init__(
        self,
        root: Path,
        descriptor: EnvironmentDescriptor,
        layout: PlatformLayout = DEFAULT_LAYOUT,
        plugin_manager: PluginManager | None = None,
        drift_detector: DriftDetector | None = None,
    ):
        """Initialize an Environment.

        Args:
            root: Environment directory
            descriptor: Parsed environment descriptor
            layout: Platform layout
            plugin_manager: Manager for plugin working copies
            drift_detector: Detector for platform drift
        """
        self._root = root.resolve()
        self._descriptor = descriptor
        self._modified = False
        self.layout = layout
        self.plugin_manager = plugin_manager or PluginManager()
        self.drift_detector = drift_detector or DriftDetector(layout)

    @classmethod
    def open(cls, path: Path | None = None, **kwargs) -> "Environment":
        """Open an existing environment.

        Args:
            path: Environment directory, or None to search upwards from cwd
            **kwargs: Passed through to the constructor

        Returns:
            Loaded Environment

        Raises:
            ConfigError: If no descriptor is found or it is invalid
        """
        if path is None:
            path = find_environment_root()
            if path is None:
                raise ConfigError(
                    f"No {DESCRIPTOR_FILE} found in current directory or any parent directory"
                )

        descriptor = load_descriptor(path)
        return cls(path, descriptor, **kwargs)

    @classmethod
    def create(
        cls,
        path: Path,
        organization: OrganizationConfig | None = None,
        platform_version: str | None = None,
        dry_run: bool = False,
        force: bool = False,
        layout: PlatformLayout = DEFAULT_LAYOUT,
    ) -> "Environment":
        """Create a new environment.

        Writes the descriptor and a .gitignore that keeps the platform
        directory out of version control.

        Args:
            path: Directory for the new environment
            organization: Owning organization
            platform_version: Platform version to pin
            dry_run: Report the files without writing them
            force: Allow a directory that is not empty
            layout: Platform layout

        Returns:
            The new Environment

        Raises:
            ConfigError: If the directory is not empty and force is not set
        """
        path = path.resolve()
        if not force and not is_empty_directory(path):
            raise ConfigError(
                f"Directory {friendly_path(path)} is not empty. Use --force to create an "
                "environment anyway.",
                path,
            )

        descriptor = EnvironmentDescriptor(
            organization=organization or OrganizationConfig(),
            platform=PlatformConfig(version=platform_version),
        )

        environment = cls(path, descriptor, layout=layout)
        gitignore_path = path / GITIGNORE_FILE
        if dry_run:
            logger.info("Would create %s", friendly_path(gitignore_path))
        else:
            write_text_file(gitignore_path, f"/{layout.directory}\n")

        environment._modified = True
        environment.save(dry_run)
        return environment

    @property
    def root(self) -> Path:
        """Get the environment directory."""
        return self._root

    @property
    def descriptor(self) -> EnvironmentDescriptor:
        return self._descriptor

    @property
    def descriptor_path(self) -> Path:
        return self._root / DESCRIPTOR_FILE

    @property
    def platform_root(self) -> Path:
        """Get the directory the platform is installed into."""
        return self._root / self.layout.directory

    @property
    def is_modified(self) -> bool:
        """Whether the descriptor has changes that were not saved."""
        return self._modified

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def get_status(self) -> EnvironmentStatus:
        """Compare the environment directory with its descriptor.

        Returns:
            EnvironmentStatus with the platform first, then each plugin in
            descriptor order
        """
        platform = self.drift_detector.platform_status(
            self._descriptor.platform, self.platform_root
        )
        plugins = [self._plugin_status(entry) for entry in self._descriptor.plugins]
        return EnvironmentStatus(platform=platform, plugins=plugins)

    def is_up_to_date(self) -> bool:
        return self.get_status().is_up_to_date

    def _plugin_status(self, entry: PluginEntry) -> PluginStatus:
        try:
            return self.plugin_manager.plugin_status(entry, self._root)
        except GitError as e:
            logger.error("Unable to check plugin %s: %s", entry.path, e)
            return PluginStatus.drifted(entry, "could not be checked with git.")

    def _plugin_is_clean(self, entry: PluginEntry) -> bool:
        try:
            return self.plugin_manager.is_clean(entry, self._root)
        except GitError as e:
            logger.error("Unable to check plugin %s: %s", entry.path, e)
            return False

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------

    def update_platform(
        self,
        source: str | None = None,
        dry_run: bool = False,
        force: bool = False,
        progress: ProgressCallback | None = None,
    ) -> UpdateResult:
        """Install the platform version named in the descriptor.

        An existing installation is removed first, keeping the preserved
        paths. A modified installation is left alone unless forced.

        Args:
            source: Base URL or directory of platform archives
            dry_run: Decide and report without changing anything
            force: Reinstall even if up to date or modified
            progress: Optional download progress callback

        Returns:
            UpdateResult for the platform

        Raises:
            ConfigError: If the platform version is not a valid version number
            ArchiveDownloadError: If the archive cannot be downloaded
            ArchiveError: If the archive is malformed
        """
        name = self.layout.name
        platform = self._descriptor.platform

        if not platform.is_managed:
            return UpdateResult(name, True, "is managed manually, nothing to do.", dry_run=dry_run)

        version = platform.version
        if SemVer.try_parse(version) is None:
            raise ConfigError(
                f"{name} version '{version}' is not a valid version number.",
                self.descriptor_path,
            )

        status = self.drift_detector.platform_status(platform, self.platform_root)
        if status.is_up_to_date:
            if not force:
                return UpdateResult(name, True, "is up to date.", dry_run=dry_run)
            logger.info("%s is up to date, reinstalling because force was requested.", name)

        if not force and not self.drift_detector.is_clean(self.platform_root):
            logger.warning("%s installation is not clean.", name)
            return UpdateResult(
                name,
                False,
                "installation is not clean. Use --force to update anyway.",
                dry_run=dry_run,
                refused=True,
            )

        actions = self._describe_removal(
            remove_preserving(self.platform_root, self.layout.preserved_paths, dry_run)
        )

        installer = ArchiveInstaller(source, self.layout)
        result = installer.install(version, self.platform_root, dry_run=dry_run, progress=progress)
        actions.append(f"Install {name} {version} from {result.url} ({result.file_count} files)")

        message = f"would be updated to {version}." if dry_run else f"was updated to {version}."
        return UpdateResult(name, True, message, actions=actions, dry_run=dry_run)

    def update_plugins(self, dry_run: bool = False, force: bool = False) -> UpdateSummary:
        """Bring every out-of-date plugin in line with its entry.

        If any out-of-date plugin has local changes nothing is updated
        unless forced. A failure for one plugin does not stop the others.

        Args:
            dry_run: Decide and report without running git
            force: Update plugins that have local changes

        Returns:
            UpdateSummary with one result per plugin that needed work
        """
        statuses = [self._plugin_status(entry) for entry in self._descriptor.plugins]
        out_of_date = [status.plugin for status in statuses if not status.is_up_to_date]
        if not out_of_date:
            return UpdateSummary()

        unclean = [entry for entry in out_of_date if not self._plugin_is_clean(entry)]
        if unclean and not force:
            for entry in unclean:
                logger.warning("Plugin %s is not clean.", entry.path)
            return UpdateSummary(
                [
                    UpdateResult(entry.path, False, "is not clean.", dry_run=dry_run, refused=True)
                    for entry in unclean
                ]
            )

        summary = UpdateSummary()
        for entry in out_of_date:
            try:
                actions = self.plugin_manager.install_or_update(entry, self._root, dry_run)
            except (GitError, InvalidPluginError) as e:
                logger.error("Failed to update plugin %s: %s", entry.path, e)
                summary.results.append(UpdateResult(entry.path, False, str(e), dry_run=dry_run))
                continue

            message = "would be updated." if dry_run else "was updated."
            summary.results.append(
                UpdateResult(entry.path, True, message, actions=actions, dry_run=dry_run)
            )

        return summary

    def update(
        self,
        source: str | None = None,
        dry_run: bool = False,
        force: bool = False,
        progress: ProgressCallback | None = None,
    ) -> UpdateSummary:
        """Update the platform, then the plugins.

        Plugins are not touched when the platform update fails.
        """
        platform_result = self.update_platform(source, dry_run, force, progress)
        summary = UpdateSummary([platform_result])
        if not platform_result.success:
            return summary

        summary.results.extend(self.update_plugins(dry_run, force).results)
        return summary

    def remove_platform(self, dry_run: bool = False, force: bool = False) -> UpdateResult:
        """Remove the files the platform installation created.

        Only files listed in the installation manifest are removed. Without
        a manifest the platform directory can only be removed when forced,
        in which case everything except the preserved paths is deleted.

        Args:
            dry_run: Decide and report without deleting anything
            force: Remove a modified or unrecorded installation

        Returns:
            UpdateResult for the platform
        """
        name = self.layout.name
        if not self.platform_root.exists():
            return UpdateResult(name, True, "is not installed, nothing to do.", dry_run=dry_run)

        manifest_manager = ManifestManager(self.platform_root, self.layout.manifest_file)
        manifest = manifest_manager.load()

        if manifest is None:
            if not force:
                return UpdateResult(
                    name,
                    False,
                    "has no installation manifest. Use --force to remove it anyway.",
                    dry_run=dry_run,
                    refused=True,
                )
            report = remove_preserving(self.platform_root, self.layout.preserved_paths, dry_run)
        else:
            if not force and not self.drift_detector.is_clean(self.platform_root):
                return UpdateResult(
                    name,
                    False,
                    "installation is not clean. Use --force to remove it anyway.",
                    dry_run=dry_run,
                    refused=True,
                )
            report = remove_installed(self.platform_root, manifest, manifest_manager, dry_run)

        message = "would be removed." if dry_run else "was removed."
        return UpdateResult(
            name, True, message, actions=self._describe_removal(report), dry_run=dry_run
        )

    def _describe_removal(self, report: RemovalReport) -> list[str]:
        actions: list[str] = []
        if report.removed:
            actions.append(f"Remove {len(report.removed)} path(s) from {friendly_path(report.root)}")
        actions.extend(f"Preserve {path}" for path in report.preserved)
        return actions

    # -------------------------------------------------------------------------
    # Descriptor changes
    # -------------------------------------------------------------------------

    def add_plugin(
        self, path: str, url: str | None = None, branch: str | None = None
    ) -> PluginEntry:
        """Add a plugin entry to the descriptor.

        Raises:
            InvalidPluginError: If the path is invalid or already defined
        """
        try:
            entry = PluginEntry(path=path, url=url, branch=branch)
        except ValidationError as e:
            raise InvalidPluginError(f"Invalid plugin path '{path}': {e}", path) from e

        if self._descriptor.get_plugin(entry.path) is not None:
            raise InvalidPluginError(f"Plugin {entry.path} is already defined.", entry.path)

        self._descriptor.plugins.append(entry)
        self._modified = True
        return entry

    def configure_plugin(
        self, path: str, url: str | None = None, branch: str | None = None
    ) -> PluginEntry:
        """Change the url or branch of a plugin entry.

        Arguments left as None are unchanged; an empty string clears the value.

        Raises:
            InvalidPluginError: If no plugin is defined at the path
        """
        entry = self._descriptor.get_plugin(path)
        if entry is None:
            raise InvalidPluginError(f"Plugin {path} is not defined in the environment.", path)

        if url is not None:
            entry.url = url
        if branch is not None:
            entry.branch = branch

        self._modified = True
        return entry

    def save(self, dry_run: bool = False) -> bool:
        """Write the descriptor if it has unsaved changes.

        Returns:
            True if the descriptor was written (or would be in a dry run)
        """
        if not self._modified:
            return False

        if dry_run:
            logger.info("Would write %s", friendly_path(self.descriptor_path))
            return True

        save_descriptor(self._root, self._descriptor)
        self._modified = False
        return True
