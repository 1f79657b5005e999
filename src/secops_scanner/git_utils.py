"""Source retrieval: shallow git clones and local directories."""

import logging
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from git import Repo
from git.exc import GitCommandError

from .models import ScanTarget

logger = logging.getLogger(__name__)


class SourceRetrievalError(Exception):
    """The source tree for a scan could not be obtained.

    The message is safe to show to users; the underlying error is chained.
    """


def clone_repo(repo_url: str, branch: str = "main") -> Path:
    """Clone a git repository to a temporary directory (shallow clone).

    Args:
        repo_url: URL of the repository to clone.
        branch: Branch to check out.

    Returns:
        Path to the cloned repository.
    """
    temp_path = Path(tempfile.mkdtemp(prefix="secops_scanner_"))

    try:
        Repo.clone_from(repo_url, temp_path, depth=1, branch=branch)
    except Exception:
        cleanup_repo(temp_path)
        raise
    return temp_path


def cleanup_repo(repo_path: Path) -> None:
    """Remove a cloned repository directory.

    Args:
        repo_path: Path to the repository to remove.
    """
    if repo_path.exists():
        shutil.rmtree(repo_path, ignore_errors=True)


class SourceProvider(ABC):
    """Obtains a source tree for a scan and releases it afterwards."""

    @abstractmethod
    def acquire(self, target: ScanTarget) -> Path:
        """Return a directory holding the target's files.

        Raises SourceRetrievalError when the tree cannot be obtained.
        """

    @abstractmethod
    def release(self, path: Path) -> None:
        """Give back a directory returned by acquire(). Must not raise."""


class GitSourceProvider(SourceProvider):
    """Shallow-clones remote repositories into temporary directories."""

    def acquire(self, target: ScanTarget) -> Path:
        if not target.repo_url:
            raise SourceRetrievalError("No repository URL given")
        try:
            return clone_repo(target.repo_url, target.branch)
        except GitCommandError as e:
            raise SourceRetrievalError("Failed to clone repository") from e

    def release(self, path: Path) -> None:
        cleanup_repo(path)


class LocalSourceProvider(SourceProvider):
    """Serves an existing directory as-is. Nothing is copied or removed."""

    def acquire(self, target: ScanTarget) -> Path:
        if not target.path:
            raise SourceRetrievalError("No local path given")
        scan_path = Path(target.path).resolve()
        if not scan_path.is_dir():
            raise SourceRetrievalError(f"Path is not a directory: {target.path}")
        return scan_path

    def release(self, path: Path) -> None:
        logger.debug(f"Leaving local source tree in place: {path}")


def provider_for(target: ScanTarget) -> SourceProvider:
    """Pick the provider matching how the target was specified."""
    if target.repo_url:
        return GitSourceProvider()
    return LocalSourceProvider()
