"""Removal of an installed platform directory.

Two strategies are provided:

- ``remove_preserving`` deletes everything below a root except a short list
  of preserved paths (local configuration and user data). It is used before
  reinstalling the platform.
- ``remove_installed`` deletes only the files listed in the installation
  manifest and then prunes directories left empty.

Both honour ``dry_run`` by recording the same decisions without touching
the filesystem.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from devenv.config.schemas import InstallationManifest
from devenv.core.manifest import ManifestManager
from devenv.utils.filesystem import (
    friendly_path,
    is_unsafe_relative_path,
    normalize_separators,
    relative_key,
)

logger = logging.getLogger(__name__)

RemovalDecision = Literal["remove", "preserve"]


@dataclass(frozen=True)
class RemovalAction:
    """A single decision made while removing a tree."""

    path: str
    decision: RemovalDecision
    is_directory: bool = False


@dataclass
class RemovalReport:
    """Ordered record of the decisions made by a removal."""

    root: Path
    dry_run: bool = False
    actions: list[RemovalAction] = field(default_factory=list)
    root_removed: bool = False

    def record(self, path: str, decision: RemovalDecision, is_directory: bool = False) -> None:
        self.actions.append(RemovalAction(path, decision, is_directory))

    @property
    def removed(self) -> list[str]:
        return [a.path for a in self.actions if a.decision == "remove"]

    @property
    def preserved(self) -> list[str]:
        return [a.path for a in self.actions if a.decision == "preserve"]


def _is_real_directory(path: Path) -> bool:
    return path.is_dir() and not path.is_symlink()


def remove_preserving(root: Path, preserved: Iterable[str], dry_run: bool = False) -> RemovalReport:
    """Remove a directory tree, keeping the preserved paths.

    Sub-directories are handled before files, each in name order, and every
    directory is removed only after all of its contents were. Any preserved
    descendant keeps its ancestors alive. Symbolic links are removed as
    files and never followed.

    Args:
        root: Directory to remove
        preserved: Paths relative to root to keep; matched case-insensitively
        dry_run: Record the decisions without deleting anything

    Returns:
        RemovalReport listing each decision in the order it was made
    """
    report = RemovalReport(root=root, dry_run=dry_run)
    if not _is_real_directory(root):
        return report

    preserved_keys = {normalize_separators(p).rstrip("/").casefold() for p in preserved}

    if _remove_tree(root, root, preserved_keys, dry_run, report):
        if not dry_run:
            root.rmdir()
        report.root_removed = True
        logger.info("Removed %s", friendly_path(root))

    return report


def _remove_tree(
    directory: Path,
    root: Path,
    preserved_keys: set[str],
    dry_run: bool,
    report: RemovalReport,
) -> bool:
    """Remove the contents of a directory.

    Returns:
        True if everything below the directory was removed
    """
    removable = True
    children = sorted(directory.iterdir(), key=lambda p: p.name)
    directories = [p for p in children if _is_real_directory(p)]
    files = [p for p in children if not _is_real_directory(p)]

    for child in directories:
        key = relative_key(root, child)
        if key.casefold() in preserved_keys:
            logger.info("Preserving directory %s", friendly_path(child))
            report.record(key, "preserve", is_directory=True)
            removable = False
        elif _remove_tree(child, root, preserved_keys, dry_run, report):
            if not dry_run:
                child.rmdir()
            report.record(key, "remove", is_directory=True)
        else:
            removable = False

    for child in files:
        key = relative_key(root, child)
        if key.casefold() in preserved_keys:
            logger.info("Preserving file %s", friendly_path(child))
            report.record(key, "preserve")
            removable = False
        else:
            if not dry_run:
                child.unlink()
            report.record(key, "remove")

    return removable


def remove_installed(
    root: Path,
    manifest: InstallationManifest,
    manifest_manager: ManifestManager,
    dry_run: bool = False,
) -> RemovalReport:
    """Remove exactly the files an installation created.

    Files listed in the manifest are deleted, then the manifest itself,
    then every directory that was left empty, walking upwards from the
    deepest one. The root directory is kept.

    Args:
        root: Installed platform directory
        manifest: Manifest of the installation
        manifest_manager: Manager for the manifest file inside root
        dry_run: Record the decisions without deleting anything

    Returns:
        RemovalReport listing each decision in the order it was made
    """
    report = RemovalReport(root=root, dry_run=dry_run)
    removed: set[Path] = set()
    directories: set[Path] = set()

    for key in manifest.files:
        if is_unsafe_relative_path(key):
            logger.warning("Skipping manifest entry outside %s: %s", friendly_path(root), key)
            continue
        path = root / key
        directories.add(path.parent)
        if path.is_file() or path.is_symlink():
            if not dry_run:
                path.unlink()
            removed.add(path)
            report.record(key, "remove")

    if manifest_manager.delete(dry_run):
        removed.add(manifest_manager.manifest_path)
        report.record(relative_key(root, manifest_manager.manifest_path), "remove")

    resolved_root = root.resolve()
    for directory in sorted(directories, key=lambda p: (-len(p.parts), p.as_posix())):
        current = directory
        while current.resolve() != resolved_root and resolved_root in current.resolve().parents:
            if current not in removed:
                if not current.is_dir() or not _is_empty_after(current, removed):
                    break
                if not dry_run:
                    current.rmdir()
                removed.add(current)
                report.record(relative_key(root, current), "remove", is_directory=True)
            current = current.parent

    logger.info(
        "Removed %d installed path(s) from %s", len(report.removed), friendly_path(root)
    )
    return report


def _is_empty_after(directory: Path, removed: set[Path]) -> bool:
    """Check if a directory has no entries other than ones already removed."""
    return all(child in removed for child in directory.iterdir())
