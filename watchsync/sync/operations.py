"""Boundary to the upload and encryption collaborators."""

import logging
from pathlib import Path
from typing import Any, Optional, Protocol

from .. import crypto
from ..exceptions import EncryptionError, UploadError

logger = logging.getLogger(__name__)


class Uploader(Protocol):
    """Transfers one local file into a remote directory."""

    def upload(self, local_path: Path, remote_dir: str) -> Any: ...


class Encrypter(Protocol):
    """Writes an encrypted copy of a file."""

    def __call__(
        self, input_path: Path, output_path: Path, key: str, method: str
    ) -> Any: ...


class SyncOperations:
    """Unified wrapper around the external collaborators.

    Collaborators report failure either by raising or by returning ``False``;
    both are turned into :class:`UploadError` / :class:`EncryptionError`.
    """

    def __init__(self, uploader: Uploader, encrypter: Optional[Encrypter] = None):
        """Initialize sync operations.

        Args:
            uploader: Upload collaborator
            encrypter: Encryption collaborator (defaults to the built-in AES one)
        """
        self.uploader = uploader
        self.encrypter: Encrypter = encrypter or crypto.encrypt_file

    def upload_file(self, local_path: Path, remote_dir: str) -> None:
        """Upload a single artifact.

        Raises:
            UploadError: If the upload failed
        """
        try:
            result = self.uploader.upload(local_path, remote_dir)
        except UploadError:
            raise
        except Exception as e:
            raise UploadError(f"Upload of {local_path.name} failed: {e}") from e
        if result is False:
            raise UploadError(f"Upload of {local_path.name} to {remote_dir} failed")

    def encrypt_file(
        self, input_path: Path, output_path: Path, key: str, method: str
    ) -> None:
        """Encrypt an artifact into ``output_path``.

        Raises:
            EncryptionError: If encryption failed
        """
        try:
            result = self.encrypter(input_path, output_path, key, method)
        except EncryptionError:
            raise
        except Exception as e:
            raise EncryptionError(f"Encryption of {input_path.name} failed: {e}") from e
        if result is False or not output_path.exists():
            raise EncryptionError(f"Encryption of {input_path.name} failed")
