"""Lifecycle of plugin working copies inside an environment.

Each plugin entry in the descriptor names a directory, a remote repository
URL and optionally the branch that should be checked out. This module
reports how a working copy differs from its entry and brings it in line
by cloning, switching branches and pulling.
"""

import logging
from pathlib import Path

from devenv.config.schemas import PluginEntry
from devenv.core.status import PluginStatus
from devenv.utils.filesystem import is_empty_directory
from devenv.utils.git import GitClient

logger = logging.getLogger(__name__)


class InvalidPluginError(Exception):
    """A plugin entry cannot be acted on as configured."""

    def __init__(self, message: str, plugin_path: str | None = None):
        self.plugin_path = plugin_path
        super().__init__(message)


class PluginManager:
    """Inspects and updates plugin working copies."""

    def __init__(self, git: GitClient | None = None):
        self.git = git or GitClient()

    def plugin_status(self, entry: PluginEntry, environment_root: Path) -> PluginStatus:
        """Get the status of a plugin working copy.

        Remote tracking information is not fetched, so a branch that is
        behind its upstream still reports as up to date.

        Args:
            entry: Plugin entry from the descriptor
            environment_root: Environment directory the entry path is relative to

        Returns:
            PluginStatus for the entry

        Raises:
            GitError: If git cannot be run
        """
        if not entry.url:
            logger.info("Plugin %s has no repository url.", entry.path)
            return PluginStatus.drifted(entry, "is missing a url.")

        plugin_path = environment_root / entry.path
        if not self.git.is_repository(plugin_path):
            logger.error("Plugin %s is not a git repository.", entry.path)
            return PluginStatus.drifted(entry, "is not a git repository.")

        if not entry.branch:
            return PluginStatus.ok(entry)

        current = self.git.current_branch(plugin_path)
        if current is None:
            logger.info("Plugin %s is not on a branch.", entry.path)
            return PluginStatus.drifted(entry, "is not on a branch.")

        if current != entry.branch:
            logger.info(
                "Plugin %s is on branch %s instead of %s.", entry.path, current, entry.branch
            )
            return PluginStatus.drifted(
                entry, f"is on branch {current} but should be {entry.branch}."
            )

        return PluginStatus.ok(entry)

    def is_clean(self, entry: PluginEntry, environment_root: Path) -> bool:
        """Check if a plugin directory can be updated without losing work.

        A directory that does not exist yet, or is empty, is clean.
        """
        plugin_path = environment_root / entry.path
        if is_empty_directory(plugin_path):
            return True

        if not self.git.is_repository(plugin_path):
            logger.error("Plugin %s is not a git repository.", entry.path)
            return False

        return not self.git.is_dirty(plugin_path)

    def install_or_update(
        self, entry: PluginEntry, environment_root: Path, dry_run: bool = False
    ) -> list[str]:
        """Clone a plugin or bring an existing working copy up to date.

        Args:
            entry: Plugin entry from the descriptor
            environment_root: Environment directory the entry path is relative to
            dry_run: Describe the actions without running git

        Returns:
            Descriptions of the actions taken (or planned)

        Raises:
            InvalidPluginError: If the entry has no url or the directory is
                not a working copy
            GitError: If a git command fails
        """
        if not entry.url:
            raise InvalidPluginError(
                f"Plugin {entry.path} can't be installed without a repository url.", entry.path
            )

        plugin_path = environment_root / entry.path
        actions: list[str] = []

        if is_empty_directory(plugin_path):
            branch_note = f" (branch {entry.branch})" if entry.branch else ""
            actions.append(f"Clone {entry.url}{branch_note} into {entry.path}")
            if not dry_run:
                self.git.clone(entry.url, plugin_path, entry.branch)
            return actions

        if not self.git.is_repository(plugin_path):
            raise InvalidPluginError(
                f"Plugin {entry.path} is not a git repository.", entry.path
            )

        if entry.branch and self.git.current_branch(plugin_path) != entry.branch:
            actions.append(f"Check out branch {entry.branch} in {entry.path}")
            if not dry_run:
                self.git.checkout(plugin_path, entry.branch)

        actions.append(f"Pull changes into {entry.path}")
        if not dry_run:
            self.git.pull(plugin_path)

        return actions
