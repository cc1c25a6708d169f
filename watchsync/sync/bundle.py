"""Whole-directory archives for bundle mode."""

import logging
import os
import zipfile
from pathlib import Path
from typing import Optional

from ..exceptions import TransformError
from .scanner import WalkFunc, relative_posix_path, walk_tree

logger = logging.getLogger(__name__)


def bundle_file_name(root: Path) -> str:
    """Name of the archive built for a watch root."""
    return f"{root.name or 'bundle'}.zip"


def create_bundle(
    root: Path, output_path: Path, walk: Optional[WalkFunc] = None
) -> Path:
    """Pack every file below ``root`` into a deflate-compressed zip archive.

    Entries are stored relative to ``root`` with forward slashes. Directories
    are not stored as entries but all their files are included.

    Args:
        root: Directory to archive
        output_path: Destination of the archive (must be outside ``root``)
        walk: Tree walking collaborator

    Returns:
        ``output_path``

    Raises:
        TransformError: If the archive could not be written; no partial
            archive is left behind
    """
    walk = walk or walk_tree
    try:
        count = 0
        with zipfile.ZipFile(output_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for file_path in walk(root):
                if not os.path.isfile(file_path):
                    continue
                zf.write(file_path, arcname=relative_posix_path(Path(file_path), root))
                count += 1
    except (OSError, zipfile.BadZipFile, ValueError) as e:
        Path(output_path).unlink(missing_ok=True)
        raise TransformError(f"Failed to archive {root}: {e}") from e

    logger.debug(f"Archived {count} file(s) from {root} into {output_path}")
    return output_path
