"""Thin wrapper around the system ``git`` command."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


class GitError(Exception):
    """Error running a git command."""

    def __init__(self, message: str, command: list[str] | None = None, stderr: str = ""):
        self.command = command
        self.stderr = stderr
        super().__init__(message)


class GitClient:
    """Runs git commands against working copies.

    Uses the system `git` command for all operations (no gitpython dependency).
    """

    def __init__(self, executable: str = "git"):
        self._executable = executable

    def _run_git(
        self, args: list[str], cwd: Path | None = None, check: bool = True
    ) -> subprocess.CompletedProcess[str]:
        """Run a git command.

        Args:
            args: Git command arguments (without 'git')
            cwd: Working directory
            check: Whether to raise on non-zero exit

        Returns:
            Completed process

        Raises:
            GitError: If command fails and check=True
        """
        cmd = [self._executable] + args
        logger.debug("Running git command: %s", " ".join(cmd))
        try:
            return subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                check=check,
            )
        except subprocess.CalledProcessError as e:
            logger.error("Git command failed: %s - %s", " ".join(cmd), e.stderr.strip())
            raise GitError(
                f"Git command failed: {' '.join(cmd)}\n{e.stderr}",
                command=cmd,
                stderr=e.stderr,
            ) from e
        except FileNotFoundError as e:
            logger.error("Git is not installed or not in PATH")
            raise GitError("Git is not installed or not in PATH", command=cmd) from e

    def is_repository(self, path: Path) -> bool:
        """Check if a directory is the top level of a git working copy.

        A directory nested inside some other repository (for example a
        plugin directory inside an environment that is itself versioned)
        does not count.
        """
        if not path.is_dir():
            return False

        result = self._run_git(["rev-parse", "--show-toplevel"], cwd=path, check=False)
        if result.returncode != 0:
            return False

        toplevel = Path(result.stdout.strip())
        return os.path.normcase(toplevel.resolve()) == os.path.normcase(path.resolve())

    def current_branch(self, path: Path) -> str | None:
        """Get the local branch checked out in a working copy.

        Returns:
            Branch name, or None when HEAD is detached
        """
        result = self._run_git(["symbolic-ref", "-q", "HEAD"], cwd=path, check=False)
        reference = result.stdout.strip()
        if result.returncode != 0 or not reference.startswith("refs/heads/"):
            return None
        return reference[len("refs/heads/") :]

    def is_dirty(self, path: Path) -> bool:
        """Check if a working copy has uncommitted or untracked changes."""
        result = self._run_git(["status", "--porcelain"], cwd=path)
        return bool(result.stdout.strip())

    def clone(self, url: str, dest: Path, branch: str | None = None) -> None:
        """Clone a remote repository.

        Args:
            url: Remote repository URL
            dest: Directory to clone into
            branch: Branch to check out, or None for the remote default
        """
        logger.info("Cloning repository %s to %s", url, dest)
        args = ["clone"]
        if branch:
            args.extend(["--branch", branch])
        args.extend([url, str(dest)])
        self._run_git(args)

    def checkout(self, path: Path, branch: str) -> None:
        """Check out a branch in a working copy."""
        logger.info("Checking out branch %s in %s", branch, path)
        self._run_git(["checkout", branch], cwd=path)

    def pull(self, path: Path) -> None:
        """Fast-forward the current branch from its upstream."""
        logger.info("Pulling changes in %s", path)
        self._run_git(["pull", "--ff-only"], cwd=path)
