"""Directory walking utilities for sync passes."""

import logging
import os
from pathlib import Path
from typing import Callable, Union

logger = logging.getLogger(__name__)

# Signature of the tree walking collaborator
WalkFunc = Callable[[Path], list[Path]]


def walk_tree(root: Union[str, Path]) -> list[Path]:
    """Recursively list all files below a directory.

    Args:
        root: Directory to walk

    Returns:
        Absolute paths of all files, including those in nested
        subdirectories. Directories themselves are not included.
    """
    root = Path(root)
    files: list[Path] = []

    def _on_error(error: OSError) -> None:
        # Skip directories we can't read
        logger.warning(f"Cannot read directory {error.filename}: {error.strerror}")

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        dirnames.sort()
        for name in sorted(filenames):
            files.append(Path(dirpath) / name)

    return files


def relative_posix_path(file_path: Path, base_path: Path) -> str:
    """Path of a file relative to a base, with forward slashes on all platforms.

    Examples:
        >>> relative_posix_path(Path("/data/sub/b.txt"), Path("/data"))
        'sub/b.txt'
    """
    try:
        return Path(file_path).relative_to(base_path).as_posix()
    except ValueError:
        return Path(os.path.relpath(file_path, base_path)).as_posix()


