"""One background task per running watch.

Each running watch owns a :class:`WatchTask` thread and a cancellation
event. The task runs a pass immediately, then one pass per interval. Passes
of one watch never overlap; passes of different watches run independently.
Setting the event makes the task exit at the next file or tick boundary.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

from ..exceptions import WatchNotFoundError
from .engine import SyncEngine
from .state import WatchEntry

logger = logging.getLogger(__name__)

MIN_INTERVAL = 1


class WatchTask(threading.Thread):
    """Background thread running the passes of one watch."""

    def __init__(
        self,
        engine: SyncEngine,
        watch_id: str,
        local: str,
        interval: int,
        cancel_event: threading.Event,
    ):
        super().__init__(name=f"watch-{watch_id[:8]}", daemon=True)
        self.engine = engine
        self.watch_id = watch_id
        self.local = local
        self.interval = max(MIN_INTERVAL, int(interval))
        self.cancel_event = cancel_event
        self.passes = 0

    def run(self) -> None:
        logger.info(f"Started sync of {self.local} (interval={self.interval}s)")
        next_run = time.monotonic()
        while not self.cancel_event.is_set():
            self._run_pass()

            # A pass that overruns its interval is followed by the next one
            # right away; missed ticks are not replayed.
            now = time.monotonic()
            next_run = max(next_run + self.interval, now)
            if self.cancel_event.wait(next_run - now):
                break
        logger.info(f"Stopped sync of {self.local}")

    def _run_pass(self) -> None:
        try:
            self.engine.run_pass(self.watch_id, self.cancel_event)
        except WatchNotFoundError:
            logger.info(f"Watch for {self.local} was removed, stopping")
            self.cancel_event.set()
        except Exception:
            logger.exception(f"Sync pass for {self.local} failed")
        finally:
            self.passes += 1


@dataclass
class WatchHandle:
    """Runtime-only companion of a persisted watch entry."""

    watch_id: str
    local: str
    cancel_event: threading.Event
    task: WatchTask

    def cancel(self) -> None:
        """Signal the task to stop. Safe to call more than once."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class WatchScheduler:
    """Starts and cancels watch tasks.

    The scheduler keeps the runtime handles, keyed by the same identifier
    as the persisted entries. State checks that raise configuration errors
    live in :class:`~watchsync.sync.registry.WatchRegistry`.
    """

    def __init__(self, engine: SyncEngine):
        self.engine = engine
        self._handles: dict[str, WatchHandle] = {}
        self._lock = threading.Lock()

    def is_running(self, watch_id: str) -> bool:
        with self._lock:
            return watch_id in self._handles

    def running_ids(self) -> list[str]:
        with self._lock:
            return list(self._handles)

    def get_handle(self, watch_id: str) -> Optional[WatchHandle]:
        with self._lock:
            return self._handles.get(watch_id)

    def start(self, watch: WatchEntry) -> Optional[WatchHandle]:
        """Launch the background task of a watch.

        Returns:
            The new handle, or None if the watch is already running
        """
        with self._lock:
            if watch.id in self._handles:
                return None
            cancel_event = threading.Event()
            task = WatchTask(
                self.engine, watch.id, watch.local, watch.interval, cancel_event
            )
            handle = WatchHandle(watch.id, watch.local, cancel_event, task)
            self._handles[watch.id] = handle
        task.start()
        return handle

    def stop(self, watch_id: str) -> Optional[WatchHandle]:
        """Cancel the task of a watch without waiting for it to exit.

        Returns:
            The cancelled handle, or None if the watch was not running
        """
        with self._lock:
            handle = self._handles.pop(watch_id, None)
        if handle is None:
            return None
        handle.cancel()
        return handle

    def stop_all(self) -> list[WatchHandle]:
        """Cancel every running task without waiting for them to exit.

        Returns:
            Handles of the tasks that were cancelled
        """
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.cancel()
        return handles


def join_tasks(handles: list[WatchHandle], timeout: Optional[float] = None) -> None:
    """Wait for cancelled tasks to exit."""
    for handle in handles:
        if handle.task.is_alive() and handle.task is not threading.current_thread():
            handle.task.join(timeout)
