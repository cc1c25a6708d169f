"""Public API for managing watches: add, delete, list, start and stop."""

import logging
import signal
import threading
from pathlib import Path
from typing import Optional, Union

from ..config import config
from ..exceptions import (
    WatchAlreadyExistsError,
    WatchAlreadyRunningError,
    WatchNotFoundError,
    WatchNotRunningError,
)
from .engine import SyncEngine
from .fingerprint import FingerprintMode
from .modes import SyncMode
from .operations import Encrypter, SyncOperations, Uploader
from .scanner import WalkFunc
from .scheduler import WatchScheduler, join_tasks
from .state import StateStore, WatchEntry, canonical_local_path, watch_id_for

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class WatchRegistry:
    """Manages configured watches and their running tasks.

    Every mutating call re-reads the registry from disk, applies the change
    and saves it inside one critical section of the state store.

    Examples:
        >>> registry = WatchRegistry.create(state_file, uploader)  # doctest: +SKIP
        >>> registry.add_watch("/home/user/docs", "/backup/docs")  # doctest: +SKIP
        >>> registry.start_watch("/home/user/docs")  # doctest: +SKIP
    """

    def __init__(self, store: StateStore, scheduler: WatchScheduler):
        """Initialize the registry.

        Args:
            store: State store holding the watches
            scheduler: Scheduler owning the running tasks
        """
        self.store = store
        self.scheduler = scheduler

    @property
    def engine(self) -> SyncEngine:
        return self.scheduler.engine

    @classmethod
    def create(
        cls,
        state_file: PathLike,
        uploader: Uploader,
        encrypter: Optional[Encrypter] = None,
        walk: Optional[WalkFunc] = None,
        temp_dir: Optional[Path] = None,
    ) -> "WatchRegistry":
        """Wire up store, engine and scheduler for a state file."""
        store = StateStore(state_file)
        engine = SyncEngine(
            store, SyncOperations(uploader, encrypter), walk=walk, temp_dir=temp_dir
        )
        return cls(store, WatchScheduler(engine))

    def _require(self, local: PathLike) -> WatchEntry:
        entry = self.store.load().watches.get(watch_id_for(local))
        if entry is None:
            raise WatchNotFoundError(str(local))
        return entry

    # =========================================================================
    # Configuration
    # =========================================================================

    def add_watch(
        self,
        local: PathLike,
        remote: str,
        interval: int = 60,
        key: Optional[str] = None,
        method: Optional[str] = None,
        ignore_file: Optional[str] = None,
        anonymize_names: bool = False,
        bundle: bool = False,
        fingerprint: FingerprintMode = FingerprintMode.CONTENT,
    ) -> WatchEntry:
        """Register a new watch.

        Args:
            local: Local directory to watch
            remote: Remote destination directory
            interval: Seconds between passes
            key: Encryption passphrase (no encryption if None)
            method: Encryption method (default from configuration)
            ignore_file: Explicit ignore file
            anonymize_names: Upload encrypted artifacts under random names
            bundle: Upload the directory as one archive instead of per file
            fingerprint: Change detection mode for unencrypted watches

        Returns:
            The new watch entry

        Raises:
            WatchAlreadyExistsError: If the directory is already watched
            ValueError: If the interval is not positive
            StateSaveError: If the registry could not be persisted
        """
        if int(interval) <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")

        canonical = canonical_local_path(local)
        if not Path(canonical).is_dir():
            logger.warning(f"Watched directory does not exist (yet): {canonical}")

        watch_id = watch_id_for(canonical)
        with self.store.transaction() as registry:
            if watch_id in registry.watches:
                raise WatchAlreadyExistsError(canonical)
            entry = WatchEntry(
                local=canonical,
                remote=remote,
                interval=int(interval),
                key=key or None,
                method=(method or config.default_method) if key else method,
                ignore_file=ignore_file or None,
                anonymize_names=anonymize_names,
                mode=SyncMode.from_flag(bundle),
                fingerprint=FingerprintMode(fingerprint),
            )
            registry.watches[watch_id] = entry

        self.engine.forget(watch_id)
        logger.info(f"Added watch {canonical} -> {remote}")
        return entry

    def delete_watch(self, local: PathLike) -> WatchEntry:
        """Remove a watch, cancelling its task first if it is running.

        Raises:
            WatchNotFoundError: If the directory is not watched
        """
        with self.store.transaction() as registry:
            entry = self._require(local)
            if self.scheduler.stop(entry.id) is not None:
                logger.info(f"Cancelled running sync of {entry.local}")
            del registry.watches[entry.id]

        self.engine.forget(entry.id)
        logger.info(f"Deleted watch {entry.local}")
        return entry

    def list_watches(self) -> list[WatchEntry]:
        """Return all configured watches."""
        with self.store.lock:
            return list(self.store.refresh().watches.values())

    def get_watch(self, local: PathLike) -> WatchEntry:
        """Return the watch for a directory.

        Raises:
            WatchNotFoundError: If the directory is not watched
        """
        with self.store.lock:
            self.store.refresh()
            return self._require(local)

    def is_running(self, local: PathLike) -> bool:
        return self.scheduler.is_running(watch_id_for(local))

    # =========================================================================
    # Running state
    # =========================================================================

    def start_watch(self, local: PathLike) -> WatchEntry:
        """Start the periodic sync task of a watch.

        Raises:
            WatchNotFoundError: If the directory is not watched
            WatchAlreadyRunningError: If the watch is already running
        """
        with self.store.transaction():
            entry = self._require(local)
            if self.scheduler.start(entry) is None:
                raise WatchAlreadyRunningError(entry.local)
        logger.info(f"Started watch {entry.local} (interval={entry.interval})")
        return entry

    def stop_watch(self, local: PathLike, wait: bool = False) -> WatchEntry:
        """Cancel the periodic sync task of a watch.

        Args:
            local: Watched directory
            wait: Block until the task has exited

        Raises:
            WatchNotFoundError: If the directory is not watched
            WatchNotRunningError: If the watch is not running
        """
        with self.store.transaction():
            entry = self._require(local)
            handle = self.scheduler.stop(entry.id)
            if handle is None:
                raise WatchNotRunningError(entry.local)
        if wait:
            join_tasks([handle])
        logger.info(f"Stopped watch {entry.local}")
        return entry

    def start_all(self) -> list[WatchEntry]:
        """Start every watch that is not running yet.

        Returns:
            The watches that were started
        """
        started = []
        with self.store.transaction() as registry:
            for entry in registry.watches.values():
                if self.scheduler.start(entry) is not None:
                    started.append(entry)
        for entry in started:
            logger.info(f"Started watch {entry.local} (interval={entry.interval})")
        return started

    def stop_all(self, wait: bool = False, timeout: Optional[float] = None) -> list[str]:
        """Cancel every running watch.

        Returns:
            Identifiers of the watches that were stopped
        """
        with self.store.transaction():
            handles = self.scheduler.stop_all()
        for handle in handles:
            logger.info(f"Stopped watch {handle.local}")
        if wait:
            join_tasks(handles, timeout)
        return [handle.watch_id for handle in handles]

    def run_pass_now(self, local: PathLike) -> dict:
        """Run one synchronous pass for a watch that is not running.

        Returns:
            Dictionary with pass statistics

        Raises:
            WatchNotFoundError: If the directory is not watched
            WatchAlreadyRunningError: If a task already runs this watch
        """
        entry = self.get_watch(local)
        if self.scheduler.is_running(entry.id):
            raise WatchAlreadyRunningError(entry.local)
        return self.engine.run_pass(entry.id)


def run_until_interrupted(
    registry: WatchRegistry,
    local: Optional[PathLike] = None,
    stop_event: Optional[threading.Event] = None,
    install_signal_handlers: bool = True,
    shutdown_timeout: Optional[float] = 30.0,
) -> None:
    """Start one or all watches and block until interrupted.

    SIGINT and SIGTERM are treated as a stop request: every watch started
    here is cancelled before the function returns.

    Args:
        registry: Watch registry
        local: Single watch to run, or None for all watches
        stop_event: Event that ends the wait when set (created if None)
        install_signal_handlers: Route SIGINT/SIGTERM to ``stop_event``;
            only possible from the main thread
        shutdown_timeout: Seconds to wait for each task to exit
    """
    stop_event = stop_event or threading.Event()

    previous_handlers = {}
    if install_signal_handlers:

        def _handle_signal(signum, frame):
            logger.info(f"Received signal {signum}, stopping watches...")
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            previous_handlers[sig] = signal.signal(sig, _handle_signal)

    try:
        if local is not None:
            registry.start_watch(local)
        else:
            registry.start_all()
        while not stop_event.wait(0.5):
            pass
    finally:
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)
        if local is not None:
            if registry.is_running(local):
                registry.stop_watch(local, wait=True)
        else:
            registry.stop_all(wait=True, timeout=shutdown_timeout)
