"""Utility functions for WatchSync."""

import posixpath
from datetime import datetime, timedelta
from typing import Optional

# =============================================================================
# Constants
# =============================================================================

# Read size for hashing, encryption and archiving
DEFAULT_CHUNK_SIZE: int = 1024 * 1024

# Retry configuration for transient upload errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 2.0  # seconds

# =============================================================================
# Remote path utilities
# =============================================================================


def remote_dir_for(remote_root: str, relative_path: str) -> str:
    """Compute the remote directory a file should be uploaded into.

    Args:
        remote_root: Remote root of the watch
        relative_path: Forward-slash path of the file relative to the watch root

    Returns:
        Remote directory. Files at the top of the watch root map to the
        remote root unchanged.

    Examples:
        >>> remote_dir_for("/backup", "a.txt")
        '/backup'
        >>> remote_dir_for("/backup", "sub/b.txt")
        '/backup/sub'
        >>> remote_dir_for("/backup/", "x/y/c.txt")
        '/backup/x/y'
    """
    rel_dir = posixpath.dirname(relative_path)
    if rel_dir in ("", "."):
        return remote_root
    return posixpath.normpath(posixpath.join(remote_root, rel_dir))


# =============================================================================
# Formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


def next_run_time(interval: int, now: Optional[datetime] = None) -> str:
    """Return the ISO timestamp of the next scheduled pass."""
    now = now or datetime.now()
    return (now + timedelta(seconds=interval)).isoformat(timespec="seconds")
