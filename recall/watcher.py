"""
Watches the memory log directory and keeps the index in sync.

State per log root:

    IDLE -> PENDING -> REINDEXING -> IDLE
    IDLE -> REINDEXING (startup sweep, no debounce)

Create/modify events for log files are collected into a pending set, and
each event restarts a single debounce timer. When the timer finally fires
(after a quiet period), the pending set is swapped out under the lock and
each file is reindexed in turn. Events that arrive during the pass land in
the fresh set and start a new cycle.

The file-system subscription uses watchdog.
"""

import enum
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Iterable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .event_log import EventLog
from .types import ReindexResult

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 2.0


class WatcherState(str, enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    REINDEXING = "reindexing"


class _LogEventHandler(FileSystemEventHandler):
    """Forwards create/modify/move-into events for log files to the watcher."""

    def __init__(self, watcher: "LogWatcher"):
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.notify(os.fsdecode(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.notify(os.fsdecode(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        # Editors that save via rename-over land here
        if not event.is_directory:
            self._watcher.notify(os.fsdecode(event.dest_path))


class LogWatcher:
    """
    Debounced file watcher that triggers per-file reindexing.

    Args:
        event_log: The log whose directory is watched
        reindex: Called with a file path; normally Reindexer.reindex_file
        debounce_seconds: Quiet period before a pending set is processed
        observer_factory: Creates the watchdog observer (overridable for tests)
    """

    def __init__(
        self,
        event_log: EventLog,
        reindex: Callable[[str], ReindexResult],
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        observer_factory: Callable[[], object] = Observer,
    ):
        self._log = event_log
        self._reindex = reindex
        self._debounce_seconds = debounce_seconds
        self._observer_factory = observer_factory
        self._observer = None

        self._lock = threading.Lock()
        self._pass_lock = threading.Lock()
        self._passes_done = threading.Condition(self._lock)
        self._active_passes = 0
        self._pending: set[str] = set()
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._state = WatcherState.IDLE
        self._running = False
        self._idle = threading.Event()
        self._idle.set()

    @property
    def state(self) -> WatcherState:
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def pending_files(self) -> set[str]:
        with self._lock:
            return set(self._pending)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self, *, sweep: bool = True) -> list[ReindexResult]:
        """
        Reindex every existing log file, then begin live watching.

        The sweep goes through the normal reindex pipeline, so files that
        are already current cost only a hash.

        Returns:
            Results of the startup sweep (empty if ``sweep`` is False)
        """
        with self._lock:
            if self._running:
                return []
            self._running = True

        results = self.sweep() if sweep else []

        with self._lock:
            # stop() was called while the sweep ran
            if not self._running:
                return results

        memories_dir = self._log.memories_dir
        memories_dir.mkdir(parents=True, exist_ok=True)
        observer = self._observer_factory()
        observer.schedule(_LogEventHandler(self), str(memories_dir), recursive=True)
        observer.start()

        with self._lock:
            published = self._running
            if published:
                self._observer = observer
        if not published:
            # stop() ran while the observer was being set up
            observer.stop()
            observer.join()
            return results
        logger.info("Watcher started: monitoring %s", memories_dir)
        return results

    def stop(self) -> None:
        """
        Unsubscribe from file events and cancel any unfired debounce timer.

        A reindex pass already in progress is allowed to finish, so no file
        is left half-indexed; this call waits for it.
        """
        with self._lock:
            self._running = False
            observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join()

        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1
            self._pending.clear()
            # Let in-flight passes finish
            while self._active_passes > 0:
                self._passes_done.wait()
            self._state = WatcherState.IDLE
            self._idle.set()
        logger.info("Watcher stopped")

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no changes are pending or being processed."""
        return self._idle.wait(timeout)

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def notify(self, file_path: str | Path) -> None:
        """
        Record a change to a file and (re)start the debounce timer.

        Paths that are not log files are ignored.
        """
        path = str(file_path)
        if not self._log.is_log_file(path):
            return
        with self._lock:
            if not self._running:
                return
            self._pending.add(path)
            if self._state == WatcherState.IDLE:
                self._state = WatcherState.PENDING
            self._idle.clear()

            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self._timer = threading.Timer(
                self._debounce_seconds, self._on_debounce_elapsed, args=(self._generation,)
            )
            self._timer.daemon = True
            self._timer.start()
        logger.debug("File change detected: %s", path)

    def _on_debounce_elapsed(self, generation: int) -> None:
        with self._lock:
            # A newer event restarted the countdown after this timer fired
            if generation != self._generation or not self._running:
                return
            self._timer = None
            files, self._pending = self._pending, set()
            if not files:
                self._settle()
                return
            self._active_passes += 1
            self._state = WatcherState.REINDEXING

        logger.info("Debounce elapsed - re-indexing %d file(s)", len(files))
        self._run_pass(sorted(files))

    def sweep(self) -> list[ReindexResult]:
        """Reindex every existing log file, bypassing the debounce."""
        files = [str(p) for p in self._log.list_files()]
        with self._lock:
            self._active_passes += 1
            self._state = WatcherState.REINDEXING
            self._idle.clear()
        logger.info("Startup sweep: %d log file(s)", len(files))
        return self._run_pass(files)

    def _run_pass(self, files: Iterable[str]) -> list[ReindexResult]:
        """Reindex files one at a time. Caller has counted this pass as active."""
        results: list[ReindexResult] = []
        try:
            with self._pass_lock:
                for path in files:
                    try:
                        results.append(self._reindex(path))
                    except Exception as e:
                        logger.error("Failed to re-index %s: %s", path, e, exc_info=True)
                        results.append(ReindexResult(path, "failed", error=f"{type(e).__name__}: {e}"))
        finally:
            with self._lock:
                self._active_passes -= 1
                self._passes_done.notify_all()
                self._settle()
        return results

    def _settle(self) -> None:
        """Pick the post-pass state. Caller holds ``_lock``."""
        if self._active_passes > 0:
            self._state = WatcherState.REINDEXING
        elif self._pending and self._timer is not None:
            self._state = WatcherState.PENDING
        else:
            self._state = WatcherState.IDLE
            self._idle.set()
