"""Persistent registry of watches and their per-file state.

The registry is a single JSON document::

    {
      "watches": {
        "<sha1 of local path>": {
          "local": "/home/user/docs",
          "remote": "/backup/docs",
          "interval": 60,
          ...
          "files": {"sub/b.txt": {"mod_time": 1700000000, "size": 12, "md5": "..."}},
          "name_map": {"<anonymized name>": "sub/b.txt"}
        }
      }
    }

Runtime-only data (running flag, cancellation signal, compiled ignore rules)
is never stored here; see :mod:`watchsync.sync.scheduler`.
"""

import hashlib
import json
import logging
import os
import tempfile
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from ..exceptions import StateLoadError, StateSaveError
from .fingerprint import FileFingerprint, FingerprintMode
from .modes import SyncMode

logger = logging.getLogger(__name__)

# A file's state is exactly its last uploaded fingerprint
FileState = FileFingerprint


def canonical_local_path(local: Union[str, Path]) -> str:
    """Canonicalize a local directory path."""
    return str(Path(local).expanduser().resolve())


def watch_id_for(local: Union[str, Path]) -> str:
    """Derive the stable watch identifier for a local directory.

    Examples:
        >>> watch_id_for("/data") == watch_id_for("/data/")
        True
    """
    canonical = canonical_local_path(local)
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()


def new_anonymized_name() -> str:
    """Mint a globally unique random artifact name."""
    return str(uuid.uuid4())


@dataclass
class WatchEntry:
    """Persisted configuration and state of one watched directory."""

    local: str
    """Canonical local root path"""

    remote: str
    """Remote destination directory"""

    interval: int = 60
    """Seconds between passes"""

    key: Optional[str] = None
    """Encryption passphrase; no encryption when unset"""

    method: Optional[str] = None
    """Encryption method name (e.g. ``aes-128-ctr``)"""

    ignore_file: Optional[str] = None
    """Explicit ignore file (absolute or relative to ``local``)"""

    anonymize_names: bool = False
    """Upload encrypted artifacts under random names"""

    mode: SyncMode = SyncMode.INCREMENTAL
    """Incremental per-file sync or whole-directory bundle"""

    fingerprint: FingerprintMode = FingerprintMode.CONTENT
    """Requested change detection mode"""

    bundle_name: Optional[str] = None
    """Fixed anonymized name for bundle uploads, minted once"""

    files: dict[str, FileState] = field(default_factory=dict)
    """Last uploaded fingerprint per relative path"""

    name_map: dict[str, str] = field(default_factory=dict)
    """Anonymized name -> relative path"""

    @property
    def id(self) -> str:
        return watch_id_for(self.local)

    @property
    def encrypted(self) -> bool:
        return bool(self.key)

    @property
    def effective_fingerprint(self) -> FingerprintMode:
        """Fingerprint mode actually used by the change detector.

        Watches whose uploaded artifact depends on content identity
        (encryption, anonymized names) always compare content hashes.
        """
        if self.encrypted or self.anonymize_names:
            return FingerprintMode.CONTENT
        return self.fingerprint

    def anonymized_name_for(self, relative_path: str) -> Optional[str]:
        """Look up the anonymized name previously assigned to a path."""
        for name, path in self.name_map.items():
            if path == relative_path:
                return name
        return None

    def to_dict(self) -> dict:
        """Convert entry to dictionary for JSON serialization."""
        data: dict = {
            "local": self.local,
            "remote": self.remote,
            "interval": self.interval,
            "mode": self.mode.value,
            "fingerprint": self.fingerprint.value,
            "anonymize_names": self.anonymize_names,
            "files": {
                path: state.to_dict() for path, state in sorted(self.files.items())
            },
        }
        if self.key:
            data["key"] = self.key
        if self.method:
            data["method"] = self.method
        if self.ignore_file:
            data["ignore_file"] = self.ignore_file
        if self.bundle_name:
            data["bundle_name"] = self.bundle_name
        if self.name_map:
            data["name_map"] = dict(self.name_map)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "WatchEntry":
        """Create WatchEntry from dictionary."""
        return cls(
            local=data["local"],
            remote=data.get("remote", ""),
            interval=int(data.get("interval", 60)),
            key=data.get("key") or None,
            method=data.get("method") or None,
            ignore_file=data.get("ignore_file") or None,
            anonymize_names=bool(data.get("anonymize_names", False)),
            mode=SyncMode(data.get("mode", SyncMode.INCREMENTAL.value)),
            fingerprint=FingerprintMode(
                data.get("fingerprint", FingerprintMode.CONTENT.value)
            ),
            bundle_name=data.get("bundle_name") or None,
            files={
                path: FileState.from_dict(state)
                for path, state in (data.get("files") or {}).items()
            },
            name_map=dict(data.get("name_map") or {}),
        )


@dataclass
class Registry:
    """All configured watches keyed by watch identifier."""

    watches: dict[str, WatchEntry] = field(default_factory=dict)

    def get(self, local: Union[str, Path]) -> Optional[WatchEntry]:
        return self.watches.get(watch_id_for(local))

    def to_dict(self) -> dict:
        return {
            "watches": {wid: entry.to_dict() for wid, entry in self.watches.items()}
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Registry":
        watches = {
            wid: WatchEntry.from_dict(entry)
            for wid, entry in (data.get("watches") or {}).items()
        }
        return cls(watches=watches)


class StateStore:
    """Owns the in-memory registry and its durable copy.

    The registry is loaded lazily on first access. Every mutation re-reads
    the durable copy, applies only its own change and saves, all under one
    re-entrant lock, so updates written by another process in the meantime
    are kept. Saves replace the file atomically, so other readers see either
    the old or the new document.

    If a save fails, the in-memory registry holds changes the file does not
    have; it stays authoritative (no re-read) until a save succeeds again.
    """

    def __init__(self, path: Union[str, Path]):
        """Initialize state store.

        Args:
            path: JSON file holding the registry
        """
        self.path = Path(path)
        self._lock = threading.RLock()
        self._registry: Optional[Registry] = None
        self._unsaved = False

    @property
    def lock(self):
        return self._lock

    def load(self) -> Registry:
        """Return the registry, reading it from disk on first use.

        Returns:
            The in-memory registry (empty if no state file exists yet)

        Raises:
            StateLoadError: If the state file exists but cannot be parsed
        """
        with self._lock:
            if self._registry is None:
                self._registry = self._read()
            return self._registry

    def refresh(self) -> Registry:
        """Replace the in-memory registry with the durable copy.

        Keeps the in-memory registry while it has changes a failed save did
        not persist.

        Raises:
            StateLoadError: If the state file exists but cannot be parsed
        """
        with self._lock:
            if self._unsaved and self._registry is not None:
                logger.debug(f"Keeping unsaved in-memory state over {self.path}")
                return self._registry
            self._registry = self._read()
            return self._registry

    def _read(self) -> Registry:
        if not self.path.exists():
            logger.debug(f"No sync state found at {self.path}")
            return Registry()

        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise StateLoadError(f"Failed to read state file {self.path}: {e}") from e

        if not raw.strip():
            return Registry()

        try:
            registry = Registry.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise StateLoadError(f"Corrupt state file {self.path}: {e}") from e

        logger.debug(f"Loaded {len(registry.watches)} watch(es) from {self.path}")
        return registry

    def save(self) -> None:
        """Write the registry to disk atomically.

        Raises:
            StateSaveError: If serialization or the write fails
        """
        with self._lock:
            registry = self.load()
            self._unsaved = True
            try:
                payload = json.dumps(registry.to_dict(), indent=2)
            except (TypeError, ValueError) as e:
                raise StateSaveError(f"Failed to serialize sync state: {e}") from e

            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        f.write(payload)
                    os.replace(tmp_name, self.path)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except OSError as e:
                raise StateSaveError(f"Failed to write {self.path}: {e}") from e
            self._unsaved = False

    @contextmanager
    def transaction(self) -> Iterator[Registry]:
        """Re-read, mutate and persist the registry in one critical section.

        The registry is saved only if the block completes without raising.
        """
        with self._lock:
            registry = self.refresh()
            yield registry
            self.save()

    # =========================================================================
    # Accessors used by running passes
    # =========================================================================

    def get_watch(self, watch_id: str) -> Optional[WatchEntry]:
        """Return the current durable entry of a watch, or None if removed."""
        with self._lock:
            return self.refresh().watches.get(watch_id)

    def get_file_state(self, watch_id: str, relative_path: str) -> Optional[FileState]:
        with self._lock:
            entry = self.load().watches.get(watch_id)
            if entry is None:
                return None
            return entry.files.get(relative_path)

    def record_file_state(
        self, watch_id: str, relative_path: str, state: FileState
    ) -> bool:
        """Record a successful upload and persist immediately.

        Returns:
            False if the watch was deleted in the meantime

        Raises:
            StateLoadError: If the durable copy could not be re-read
            StateSaveError: If the registry could not be written
        """
        with self.transaction() as registry:
            entry = registry.watches.get(watch_id)
            if entry is None:
                logger.debug(f"Watch {watch_id} vanished, dropping state for {relative_path}")
                return False
            entry.files[relative_path] = state
        return True

    def assign_anonymized_name(self, watch_id: str, relative_path: str) -> str:
        """Return the anonymized name for a path, minting one if needed.

        A name, once assigned, is reused for every later upload of the same
        path. New names are persisted before they are returned.

        Raises:
            KeyError: If the watch does not exist
            StateLoadError: If the durable copy could not be re-read
            StateSaveError: If a newly minted name could not be persisted
        """
        with self.transaction() as registry:
            entry = registry.watches[watch_id]
            name = entry.anonymized_name_for(relative_path)
            if name is None:
                name = new_anonymized_name()
                entry.name_map[name] = relative_path
                logger.info(f"Assigned anonymized name {name} -> {relative_path}")
        return name

    def assign_bundle_name(self, watch_id: str) -> str:
        """Return the fixed anonymized bundle name, minting it on first use.

        Raises:
            KeyError: If the watch does not exist
            StateLoadError: If the durable copy could not be re-read
            StateSaveError: If a newly minted name could not be persisted
        """
        with self.transaction() as registry:
            entry = registry.watches[watch_id]
            if not entry.bundle_name:
                entry.bundle_name = new_anonymized_name()
                logger.info(f"Assigned anonymized bundle name {entry.bundle_name}")
        return entry.bundle_name
