"""Utility for walking a cloned repository and loading scannable files."""

import logging
import os
import stat
from pathlib import Path

from .models import IndexedFile

logger = logging.getLogger(__name__)


SKIP_DIRS = frozenset({
    "node_modules", "dist", "build", ".git", "coverage", ".next", "out",
    "public", "assets", "static", ".cache", "vendor",
})

ALLOWED_EXTENSIONS = frozenset({
    # JavaScript / TypeScript
    ".js", ".ts", ".jsx", ".tsx", ".mjs", ".cjs",
    # Python
    ".py",
    # Java / Kotlin
    ".java", ".kt", ".kts",
    # C / C++
    ".c", ".cpp", ".cc", ".cxx", ".h", ".hpp",
    ".go", ".rs", ".rb", ".php", ".cs",
    # Shell
    ".sh", ".bash",
    # Config / IaC (often contain secrets / misconfigs)
    ".yaml", ".yml", ".json", ".env", ".toml", ".tf", ".hcl",
})

DEFAULT_MAX_FILES = 500
DEFAULT_MAX_FILE_SIZE = 500 * 1024


def _should_descend(name: str) -> bool:
    return name not in SKIP_DIRS and not name.startswith(".")


def walk_repo(
    repo_path: str | Path,
    max_files: int = DEFAULT_MAX_FILES,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
) -> list[IndexedFile]:
    """
    Walk a repository and return the contents of every allow-listed file.

    Dependency, build, output and hidden directories are never entered.
    Only regular files are read; symlinks are skipped. Files larger than
    ``max_file_size`` bytes are skipped. The walk stops as
    soon as ``max_files`` files have been collected.
    """
    files: list[IndexedFile] = []
    if max_files <= 0:
        return files

    for root, dirs, filenames in os.walk(repo_path):
        # Sorted so that the file-count cutoff is reproducible
        dirs[:] = sorted(d for d in dirs if _should_descend(d))

        for name in sorted(filenames):
            filepath = Path(root) / name
            # ".env" has no suffix in pathlib, so compare the bare name too
            ext = filepath.suffix.lower() or name.lower()
            if ext not in ALLOWED_EXTENSIONS:
                continue

            try:
                # lstat so symlinks and device files are never opened
                info = os.lstat(filepath)
                if not stat.S_ISREG(info.st_mode):
                    continue
                size = info.st_size
                if size > max_file_size:
                    continue
                content = filepath.read_text(encoding="utf-8", errors="ignore")
            except OSError as e:
                logger.warning(f"Could not read file: {filepath}: {e}")
                continue

            files.append(IndexedFile(
                path=str(filepath),
                relative_path=filepath.relative_to(repo_path).as_posix(),
                content=content,
                size_bytes=size,
            ))
            if len(files) >= max_files:
                logger.info(f"File limit of {max_files} reached in {repo_path}")
                return files

    logger.info(f"Indexed {len(files)} files from {repo_path}")
    return files
