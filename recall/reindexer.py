"""
Re-synchronizes the search index with log files.

A reindex pass for one file:

1. Skip if the file is gone (it can vanish between event and processing).
2. Read it once; hash the bytes and parse records from the same bytes.
3. Skip if hash and record count match the stored fingerprint.
4. Delete the file's entries, batch-embed every record, insert them one
   at a time, then record the new fingerprint.

The fingerprint is written only after every insert succeeds. A failure
anywhere in step 4 leaves it stale, so the next event or sweep retries the
whole file from scratch.
"""

import logging
from pathlib import Path
from typing import Optional

from .change_detector import fingerprint, needs_reindex
from .errors import LogFileNotFoundError, NotInitializedError
from .event_log import EventLog, infer_workspace
from .index_store import IndexStore
from .locks import KeyedLocks
from .providers.base import EmbeddingProvider
from .types import LogAddress, MemoryRecord, ReindexResult

logger = logging.getLogger(__name__)


class Reindexer:
    """
    Glue between the event log, the embedding provider and the index.

    Work on a given file is serialized through a per-file lock shared with
    single-record indexing, so a background insert and a full reindex of
    the same file can never interleave and duplicate an entry.
    """

    def __init__(
        self,
        event_log: EventLog,
        index: IndexStore,
        embedder: EmbeddingProvider,
        *,
        file_locks: Optional[KeyedLocks] = None,
    ):
        self._log = event_log
        self._index = index
        self._embedder = embedder
        self._file_locks = file_locks or KeyedLocks()

    def reindex_file(self, file_path: str | Path) -> ReindexResult:
        """
        Bring the index up to date with one log file.

        Never raises for per-file problems (missing file, embedding or
        insert failure); those are logged and reported in the result.

        Raises:
            NotInitializedError: If the index was not initialized
        """
        path = str(file_path)
        with self._file_locks.hold(path):
            if not Path(path).exists():
                logger.warning("File no longer exists, skipping: %s", path)
                return ReindexResult(path, "missing")
            try:
                snap = self._log.snapshot(path)
            except LogFileNotFoundError:
                logger.warning("File no longer exists, skipping: %s", path)
                return ReindexResult(path, "missing")

            stored = self._index.get_fingerprint(path)
            if not needs_reindex(path, snap.content, snap.record_count, stored):
                logger.debug("Unchanged since last index, skipping: %s", path)
                return ReindexResult(path, "unchanged", records=snap.record_count)

            logger.debug("Re-indexing: %s", path)
            try:
                removed = self._index.delete_by_file(path)
                if snap.entries:
                    vectors = self._embedder.embed_batch(
                        [entry.record.content for entry in snap.entries]
                    )
                    if len(vectors) != len(snap.entries):
                        raise RuntimeError(
                            f"Embedding provider returned {len(vectors)} vectors "
                            f"for {len(snap.entries)} texts"
                        )
                    fallback_workspace = infer_workspace(path)
                    for entry, vector in zip(snap.entries, vectors):
                        self._index.insert(
                            vector,
                            entry.record.workspace or fallback_workspace,
                            path,
                            entry.line_number,
                        )
                self._index.set_fingerprint(path, fingerprint(snap.content), snap.record_count)
            except NotInitializedError:
                raise
            except Exception as e:
                logger.error("Failed to re-index %s: %s", path, e, exc_info=True)
                return ReindexResult(path, "failed", error=f"{type(e).__name__}: {e}")

        logger.info(
            "Re-indexed %d memories from %s (%d stale entries cleared)",
            snap.record_count, path, removed,
        )
        return ReindexResult(path, "indexed", records=snap.record_count)

    def index_record(self, address: LogAddress, record: MemoryRecord) -> bool:
        """
        Embed and insert a single freshly appended record.

        Skipped if the address is already indexed (a reindex pass got there
        first).

        Returns:
            True if an entry was inserted
        """
        with self._file_locks.hold(address.file_path):
            if self._index.contains(address.file_path, address.line_number):
                logger.debug("Already indexed, skipping %s:%d",
                             address.file_path, address.line_number)
                return False
            vector = self._embedder.embed(record.content)
            workspace = record.workspace or infer_workspace(address.file_path)
            self._index.insert(vector, workspace, address.file_path, address.line_number)
        logger.info("Indexed memory at %s::%s:%d",
                    workspace, address.file_path, address.line_number)
        return True
