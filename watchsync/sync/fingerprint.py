"""File fingerprints used to decide whether a file changed since its last upload."""

import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from ..exceptions import FingerprintError
from ..utils import DEFAULT_CHUNK_SIZE

logger = logging.getLogger(__name__)


class FingerprintMode(str, Enum):
    """How a file's identity is compared between passes."""

    CONTENT = "content"
    """MD5 of the file content plus mtime/size (default)"""

    METADATA = "metadata"
    """Modification time and size only (cheaper, may miss changes)"""


def md5sum(path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Calculate the hex MD5 digest of a file.

    Raises:
        FingerprintError: If the file cannot be read
    """
    digest = hashlib.md5()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(chunk_size), b""):
                digest.update(chunk)
    except OSError as e:
        raise FingerprintError(f"Failed to hash {path}: {e}") from e
    return digest.hexdigest()


@dataclass(frozen=True)
class FileFingerprint:
    """Last-known fingerprint of one file."""

    mtime: int
    """Modification time (whole seconds since the epoch)"""

    size: int
    """File size in bytes"""

    md5: Optional[str] = None
    """Content hash, present in content mode"""

    @classmethod
    def from_path(
        cls, path: Path, mode: FingerprintMode = FingerprintMode.CONTENT
    ) -> "FileFingerprint":
        """Compute the fingerprint of a file on disk.

        Raises:
            FingerprintError: If the file cannot be stat'ed or read
        """
        try:
            stat = path.stat()
        except OSError as e:
            raise FingerprintError(f"Failed to stat {path}: {e}") from e

        md5 = md5sum(path) if mode == FingerprintMode.CONTENT else None
        return cls(mtime=int(stat.st_mtime), size=stat.st_size, md5=md5)

    def matches(
        self,
        previous: Optional["FileFingerprint"],
        mode: FingerprintMode = FingerprintMode.CONTENT,
    ) -> bool:
        """Check whether this fingerprint equals a previously recorded one.

        In content mode only the hash is compared; a record without a hash
        never matches. In metadata mode mtime and size are compared.
        """
        if previous is None:
            return False
        if mode == FingerprintMode.CONTENT:
            return self.md5 is not None and previous.md5 == self.md5
        return previous.mtime == self.mtime and previous.size == self.size

    def to_dict(self) -> dict:
        data: dict = {"mod_time": self.mtime, "size": self.size}
        if self.md5:
            data["md5"] = self.md5
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "FileFingerprint":
        return cls(
            mtime=int(data.get("mod_time", 0)),
            size=int(data.get("size", 0)),
            md5=data.get("md5") or None,
        )
