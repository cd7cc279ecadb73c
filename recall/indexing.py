"""
Background indexing of freshly stored memories.

A store call returns as soon as the record is appended to the log; the
embedding and index insert happen here, on a single worker thread that
drains a bounded queue. One worker is enough: index writes are serialized
anyway, and it keeps heavy embedding work off the caller's thread.

If the queue is full the job is dropped with a warning. Nothing is lost:
the append modified the log file, so the watcher reindexes it.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .types import LogAddress, MemoryRecord

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000


@dataclass(frozen=True)
class IndexJob:
    """Embed-and-insert work for one appended record."""
    address: LogAddress
    record: MemoryRecord


_STOP = object()


class IndexingWorker:
    """Single-thread worker draining a bounded queue of IndexJobs."""

    def __init__(
        self,
        handler: Callable[[IndexJob], object],
        *,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        name: str = "recall-indexer",
    ):
        """
        Args:
            handler: Called once per job on the worker thread
            queue_size: Maximum number of jobs waiting
            name: Worker thread name
        """
        self._handler = handler
        self._queue: queue.Queue = queue.Queue(maxsize=max(1, queue_size))
        self._name = name
        self._thread: Optional[threading.Thread] = None
        self._outstanding = 0
        self._idle = threading.Condition()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def pending(self) -> int:
        """Jobs submitted but not yet finished."""
        with self._idle:
            return self._outstanding

    def start(self) -> None:
        if self.is_running:
            return
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def submit(self, job: IndexJob) -> bool:
        """
        Queue a job without blocking.

        Returns:
            False if the queue was full and the job was dropped
        """
        with self._idle:
            self._outstanding += 1
        try:
            self._queue.put_nowait(job)
        except queue.Full:
            self._task_done()
            logger.warning(
                "Indexing queue full, deferring %s:%d to the watcher",
                job.address.file_path, job.address.line_number,
            )
            return False
        return True

    def _task_done(self) -> None:
        with self._idle:
            self._outstanding -= 1
            if self._outstanding <= 0:
                self._idle.notify_all()

    def _run(self) -> None:
        while True:
            job = self._queue.get()
            if job is _STOP:
                return
            try:
                self._handler(job)
            except Exception as e:
                logger.error(
                    "Background indexing failed for %s:%d: %s",
                    job.address.file_path, job.address.line_number, e,
                    exc_info=True,
                )
            finally:
                self._task_done()

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every submitted job has finished.

        Returns:
            True if the queue drained, False on timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._idle:
            while self._outstanding > 0:
                if deadline is None:
                    self._idle.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        """Finish queued jobs, then stop the worker thread."""
        if self._thread is None:
            return
        self._queue.put(_STOP)
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Indexing worker did not stop within %ss", timeout)
        self._thread = None
