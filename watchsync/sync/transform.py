"""Per-artifact transforms applied before upload: encryption and name anonymization."""

import logging
import os
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from ..config import config
from ..exceptions import StateError, TransformError
from .operations import SyncOperations
from .state import StateStore, WatchEntry

logger = logging.getLogger(__name__)

ENCRYPTED_SUFFIX = ".encrypted"


def make_workdir(prefix: str = "watchsync_", base: Optional[Path] = None) -> Path:
    """Create a private temporary directory for intermediate artifacts."""
    return Path(tempfile.mkdtemp(prefix=prefix, dir=base))


def remove_workdir(workdir: Optional[Path]) -> None:
    """Remove a temporary directory and everything in it."""
    if workdir is None or not workdir.exists():
        return
    try:
        shutil.rmtree(workdir)
    except OSError as e:
        logger.warning(f"Failed to remove temporary directory {workdir}: {e}")


class TransformPipeline:
    """Turns a local artifact into the file handed to the uploader.

    - Without an encryption key the artifact passes through unchanged.
    - With a key it is encrypted into a private temporary directory.
    - With a key and name anonymization the encrypted copy is renamed to a
      stable random name before upload. Anonymization has no effect without
      a key.

    Temporary files are removed when the ``prepare`` block exits, whether
    the upload succeeded or not. The source file is never modified.
    """

    def __init__(
        self,
        operations: SyncOperations,
        store: StateStore,
        temp_dir: Optional[Path] = None,
    ):
        """Initialize transform pipeline.

        Args:
            operations: Collaborator wrapper used for encryption
            store: State store that owns the name mappings
            temp_dir: Parent directory for temporary artifacts (system default
                if None)
        """
        self.operations = operations
        self.store = store
        self.temp_dir = temp_dir

    def _anonymized_name(self, watch: WatchEntry, relative_path: Optional[str]) -> str:
        try:
            if relative_path is None:
                return self.store.assign_bundle_name(watch.id)
            return self.store.assign_anonymized_name(watch.id, relative_path)
        except KeyError as e:
            raise TransformError(f"Watch for {watch.local} was removed") from e
        except StateError as e:
            raise TransformError(f"Anonymized name could not be assigned: {e}") from e

    @contextmanager
    def prepare(
        self,
        watch: WatchEntry,
        source: Path,
        relative_path: Optional[str] = None,
    ) -> Iterator[Path]:
        """Prepare an artifact for upload.

        Args:
            watch: Watch the artifact belongs to
            source: Local artifact (a watched file, or a bundle archive)
            relative_path: Path relative to the watch root in incremental
                mode, None for bundle mode

        Yields:
            Path of the file to upload

        Raises:
            EncryptionError: If encryption failed
            TransformError: If the rename or name assignment failed
        """
        if not watch.encrypted:
            if watch.anonymize_names:
                logger.debug(f"Name anonymization ignored for {source.name}: no key")
            yield source
            return

        workdir = make_workdir(base=self.temp_dir)
        try:
            method = watch.method or config.default_method
            upload_path = workdir / f"{source.name}{ENCRYPTED_SUFFIX}"
            self.operations.encrypt_file(source, upload_path, watch.key or "", method)

            if watch.anonymize_names:
                name = self._anonymized_name(watch, relative_path)
                renamed = workdir / name
                try:
                    os.replace(upload_path, renamed)
                except OSError as e:
                    raise TransformError(
                        f"Rename {upload_path.name} -> {name} failed: {e}"
                    ) from e
                upload_path = renamed

            yield upload_path
        finally:
            remove_workdir(workdir)
