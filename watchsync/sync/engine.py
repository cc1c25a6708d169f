"""Core sync engine executing one synchronization pass for a watch."""

import logging
import threading
from pathlib import Path
from typing import Optional

from ..exceptions import StateError, SyncFileError, WatchNotFoundError
from ..utils import next_run_time, remote_dir_for
from .bundle import bundle_file_name, create_bundle
from .comparator import ChangeDetector, SyncAction, SyncDecision
from .ignore import IgnoreRuleSet, load_rules_for_watch
from .modes import SyncMode
from .operations import SyncOperations
from .scanner import WalkFunc, relative_posix_path, walk_tree
from .state import StateStore, WatchEntry
from .transform import TransformPipeline, make_workdir, remove_workdir

logger = logging.getLogger(__name__)


def _new_stats() -> dict:
    return {
        "uploads": 0,
        "skips": 0,
        "ignored": 0,
        "failures": 0,
        "cancelled": False,
    }


class SyncEngine:
    """Runs incremental and bundle passes for watches in a state store.

    The engine itself holds no per-pass state except the compiled ignore
    rules, which are cached per watch for the lifetime of the engine, and
    one pass lock per watch: at most one pass of a watch runs at a time,
    even while a cancelled task is still finishing its last file.
    """

    def __init__(
        self,
        store: StateStore,
        operations: SyncOperations,
        walk: Optional[WalkFunc] = None,
        temp_dir: Optional[Path] = None,
    ):
        """Initialize sync engine.

        Args:
            store: State store holding the watches
            operations: Upload/encryption collaborators
            walk: Tree walking collaborator (defaults to :func:`walk_tree`)
            temp_dir: Parent directory for temporary artifacts
        """
        self.store = store
        self.operations = operations
        self.walk: WalkFunc = walk or walk_tree
        self.temp_dir = temp_dir
        self.transforms = TransformPipeline(operations, store, temp_dir=temp_dir)
        self._rules: dict[str, IgnoreRuleSet] = {}
        self._cache_lock = threading.Lock()
        self._pass_locks: dict[str, threading.Lock] = {}

    # =========================================================================
    # Ignore rule cache
    # =========================================================================

    def rules_for(self, watch: WatchEntry) -> IgnoreRuleSet:
        """Return the compiled ignore rules of a watch, loading them once."""
        with self._cache_lock:
            rules = self._rules.get(watch.id)
            if rules is None:
                rules = load_rules_for_watch(Path(watch.local), watch.ignore_file)
                self._rules[watch.id] = rules
            return rules

    def forget(self, watch_id: str) -> None:
        """Drop cached runtime data for a watch (after delete or re-add)."""
        with self._cache_lock:
            self._rules.pop(watch_id, None)

    def pass_lock(self, watch_id: str) -> threading.Lock:
        """Return the lock serializing passes of a watch."""
        with self._cache_lock:
            return self._pass_locks.setdefault(watch_id, threading.Lock())

    # =========================================================================
    # Passes
    # =========================================================================

    def run_pass(
        self, watch_id: str, cancel_event: Optional[threading.Event] = None
    ) -> dict:
        """Run one synchronization pass for a watch.

        Waits for a pass of the same watch that is still running, then reads
        the watch afresh so files the earlier pass recorded are skipped.

        Args:
            watch_id: Identifier of the watch
            cancel_event: Checked between files; a set event ends the pass early

        Returns:
            Dictionary with pass statistics

        Raises:
            WatchNotFoundError: If no such watch exists
        """
        with self.pass_lock(watch_id):
            if cancel_event is not None and cancel_event.is_set():
                stats = _new_stats()
                stats["cancelled"] = True
                return stats

            watch = self.store.get_watch(watch_id)
            if watch is None:
                raise WatchNotFoundError(watch_id)

            if watch.mode == SyncMode.BUNDLE:
                stats = self.sync_bundle(watch, cancel_event)
            else:
                stats = self.sync_incremental(watch, cancel_event)

        if not stats["cancelled"]:
            logger.info(
                f"{watch.local} synced ({stats['uploads']} uploaded, "
                f"{stats['failures']} failed), next pass at "
                f"{next_run_time(watch.interval)}"
            )
        return stats

    def sync_incremental(
        self, watch: WatchEntry, cancel_event: Optional[threading.Event] = None
    ) -> dict:
        """Upload every new or changed file of a watch.

        Failures are per file: the file is logged and skipped, its state is
        left untouched and it is reconsidered on the next pass.

        Returns:
            Dictionary with pass statistics
        """
        stats = _new_stats()
        root = Path(watch.local)

        try:
            files = self.walk(root)
        except OSError as e:
            logger.error(f"Failed to walk {root}: {e}")
            stats["failures"] += 1
            return stats

        detector = ChangeDetector(self.rules_for(watch), watch.effective_fingerprint)

        for path in files:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Pass for {root} cancelled")
                stats["cancelled"] = True
                break

            path = Path(path)
            if not path.is_file():
                continue

            relative_path = relative_posix_path(path, root)
            try:
                previous = self.store.get_file_state(watch.id, relative_path)
                decision = detector.evaluate(path, relative_path, previous)
            except SyncFileError as e:
                logger.warning(f"Skipping {relative_path}: {e}")
                stats["failures"] += 1
                continue

            if decision.action == SyncAction.SKIP:
                stats["skips"] += 1
                continue
            if decision.action == SyncAction.IGNORE:
                logger.debug(f"Ignoring (from rules): {relative_path}")
                stats["ignored"] += 1
                continue

            logger.info(f"{relative_path}: {decision.reason}")
            if self._upload_decision(watch, decision):
                stats["uploads"] += 1
            else:
                stats["failures"] += 1

        return stats

    def _upload_decision(self, watch: WatchEntry, decision: SyncDecision) -> bool:
        """Transform, upload and record one accepted file.

        Returns:
            True if the file was uploaded
        """
        remote_dir = remote_dir_for(watch.remote, decision.relative_path)
        try:
            with self.transforms.prepare(
                watch, decision.path, decision.relative_path
            ) as upload_path:
                logger.info(f"[sync] {upload_path} -> {remote_dir}")
                self.operations.upload_file(upload_path, remote_dir)
        except SyncFileError as e:
            logger.warning(f"Failed to sync {decision.relative_path}: {e}")
            return False

        try:
            self.store.record_file_state(
                watch.id, decision.relative_path, decision.fingerprint
            )
        except StateError as e:
            logger.error(
                f"Uploaded {decision.relative_path} but its state is NOT durable: {e}"
            )
        return True

    def sync_bundle(
        self, watch: WatchEntry, cancel_event: Optional[threading.Event] = None
    ) -> dict:
        """Archive the whole watch root and upload it as one artifact.

        Every pass re-archives and re-uploads unconditionally. The archive and
        any encrypted copy are removed afterwards.

        Returns:
            Dictionary with pass statistics
        """
        stats = _new_stats()
        if cancel_event is not None and cancel_event.is_set():
            stats["cancelled"] = True
            return stats

        root = Path(watch.local)
        workdir = make_workdir(prefix="watchsync_bundle_", base=self.temp_dir)
        try:
            archive = create_bundle(root, workdir / bundle_file_name(root), self.walk)
            with self.transforms.prepare(watch, archive) as upload_path:
                logger.info(f"[sync-bundle] {upload_path} -> {watch.remote}")
                self.operations.upload_file(upload_path, watch.remote)
            stats["uploads"] += 1
        except SyncFileError as e:
            logger.warning(f"Bundle upload of {root} failed: {e}")
            stats["failures"] += 1
        finally:
            remove_workdir(workdir)

        return stats
