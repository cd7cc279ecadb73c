"""
Core API for semantic memory.

- store(): append to the log → embed and index in the background
- recall(): embed query → k-NN (optionally per workspace) → resolve from log
- cleanup(): drop index entries for workspaces deleted from disk

The log is the source of truth. The index is a cache rebuilt from it by
the watcher's startup sweep, so deleting index.db loses nothing.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Callable, Optional

from .config import StoreConfig, load_or_create_config, resolve_store_path
from .errors import LogFileNotFoundError
from .event_log import STORE_DIRNAME, EventLog
from .index_store import IndexStore
from .indexing import IndexingWorker, IndexJob
from .logging_config import configure_ops_log, remove_ops_log
from .providers import EmbeddingProvider, get_registry
from .reindexer import Reindexer
from .types import CleanupResult, MemoryRecord, RecalledMemory, ReindexResult, StoreResult
from .watcher import LogWatcher

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.db"

# Workspace selectors for recall()
CURRENT = "current"
ALL = "all"

DEFAULT_K = 5

_GITIGNORE = """\
# Derived data, rebuilt from memories/ on startup
index.db
index.db-*
logs/
recall-errors.log
"""


def _normalize_workspace(workspace: str | Path) -> str:
    return os.path.abspath(os.path.expanduser(str(workspace)))


def _default_workspace(store_path: Path) -> str:
    # A store at <workspace>/.recall belongs to <workspace>
    if store_path.name == STORE_DIRNAME:
        return str(store_path.parent)
    return os.getcwd()


class Recall:
    """
    Semantic memory store - append-only log with similarity search.

    Example:
        with Recall() as rc:
            rc.store("bug-fix", "agent", "Fixed the null check in the parser")
            for memory in rc.recall("parser crash"):
                print(memory.similarity, memory.record.content)
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
        workspace: Optional[str | Path] = None,
        watch: Optional[bool] = None,
    ) -> None:
        """
        Open (or create) a memory store.

        Nothing heavy happens here. The index, the background worker and
        the watcher are set up on first use.

        Args:
            store_path: Store directory. Defaults to RECALL_STORE_PATH, then ./.recall
            config: Pre-loaded StoreConfig (skips config file discovery)
            embedding_provider: Injected provider (skips the registry)
            workspace: Workspace attached to stored memories and used as the
                default recall filter. Defaults to the directory containing
                the store, or the current directory.
            watch: Start the file watcher on first use. Defaults to the
                [watcher] enabled setting.
        """
        if config is not None:
            self._config = config
            self._store_path = Path(config.path).resolve()
        else:
            self._store_path = resolve_store_path(store_path)
            self._config = load_or_create_config(self._store_path)

        self._workspace = _normalize_workspace(
            workspace if workspace is not None else _default_workspace(self._store_path)
        )
        self._watch = self._config.watcher.enabled if watch is None else watch

        self._log = EventLog(self._store_path)
        self._embedding_provider = embedding_provider
        self._index: Optional[IndexStore] = None
        self._reindexer: Optional[Reindexer] = None
        self._worker: Optional[IndexingWorker] = None
        self._watcher: Optional[LogWatcher] = None
        self._watcher_thread: Optional[threading.Thread] = None
        self._ops_log_handler: Optional[logging.Handler] = None

        self._ready = False
        self._ready_lock = threading.RLock()
        self._provider_init_lock = threading.Lock()

    @property
    def store_path(self) -> Path:
        return self._store_path

    @property
    def workspace(self) -> str:
        return self._workspace

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def event_log(self) -> EventLog:
        return self._log

    @property
    def index(self) -> IndexStore:
        self._ensure_ready()
        return self._index

    @property
    def watcher(self) -> Optional[LogWatcher]:
        return self._watcher

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def _get_embedding_provider(self) -> EmbeddingProvider:
        """Get embedding provider, creating it from config on first use."""
        if self._embedding_provider is not None:
            return self._embedding_provider

        with self._provider_init_lock:
            if self._embedding_provider is not None:
                return self._embedding_provider
            registry = get_registry()
            self._embedding_provider = registry.create_embedding(
                self._config.embedding.name,
                self._config.embedding.params,
            )
        return self._embedding_provider

    def _write_gitignore(self) -> None:
        path = self._store_path / ".gitignore"
        if not path.exists():
            path.write_text(_GITIGNORE, encoding="utf-8")

    def _ensure_ready(self) -> None:
        """One-time setup: directory, index, worker, watcher."""
        if self._ready:
            return
        with self._ready_lock:
            if self._ready:
                return

            self._store_path.mkdir(parents=True, exist_ok=True)
            self._write_gitignore()
            self._ops_log_handler = configure_ops_log(self._store_path)

            try:
                embedder = self._get_embedding_provider()
                self._index = IndexStore(
                    self._store_path / INDEX_FILENAME,
                    embedder.dimension,
                    overfetch_factor=self._config.index.overfetch_factor,
                ).initialize()
            except Exception:
                # Setup is retried on the next call; don't stack handlers
                remove_ops_log(self._ops_log_handler)
                self._ops_log_handler = None
                raise
            self._reindexer = Reindexer(self._log, self._index, embedder)

            self._worker = IndexingWorker(
                self._index_job, queue_size=self._config.indexing.queue_size,
            )
            self._worker.start()

            if self._watch:
                self._start_watcher_in_background()

            self._ready = True
            logger.info("Store ready: %s (workspace %s)", self._store_path, self._workspace)

    def _index_job(self, job: IndexJob) -> None:
        self._reindexer.index_record(job.address, job.record)

    def _make_watcher(self) -> LogWatcher:
        if self._watcher is None:
            self._watcher = LogWatcher(
                self._log,
                self._reindexer.reindex_file,
                debounce_seconds=self._config.watcher.debounce_seconds,
            )
        return self._watcher

    def _start_watcher_in_background(self) -> None:
        watcher = self._make_watcher()

        def run():
            try:
                watcher.start()
            except Exception as e:
                logger.error("Failed to start watcher: %s", e, exc_info=True)

        self._watcher_thread = threading.Thread(target=run, name="recall-watcher-start", daemon=True)
        self._watcher_thread.start()

    def start_watcher(self) -> list[ReindexResult]:
        """
        Run the startup sweep and begin watching, in the calling thread.

        Returns:
            Results of the sweep (empty if the watcher was already running)
        """
        self._ensure_ready()
        with self._ready_lock:
            watcher = self._make_watcher()
        return watcher.start()

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def store(
        self,
        type: str,
        source: str,
        content: str,
        *,
        workspace: Optional[str | Path] = None,
    ) -> StoreResult:
        """
        Append a memory to the log and queue it for indexing.

        Returns as soon as the record is durable in the log. Indexing happens
        on the background worker; its failure does not affect this call.

        Raises:
            ValueError: If type, source or content is empty
        """
        for name, value in (("type", type), ("source", source), ("content", content)):
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"Memory {name} must be a non-empty string")

        self._ensure_ready()
        ws = _normalize_workspace(workspace) if workspace is not None else self._workspace
        record = MemoryRecord(type=type, source=source, content=content, workspace=ws)
        address = self._log.append(record)
        queued = self._worker.submit(IndexJob(address, record))
        logger.info("Stored %s memory at %s:%d", type, address.file_path, address.line_number)
        return StoreResult(address=address, record=record, queued_for_indexing=queued)

    def resolve_workspace_filter(self, workspace: Optional[str | Path]) -> Optional[str]:
        """Map a CURRENT/ALL selector or path to a workspace path (None for ALL)."""
        if workspace is None or workspace == ALL:
            return None
        if workspace == CURRENT:
            return self._workspace
        return _normalize_workspace(workspace)

    def recall(
        self,
        query: str,
        *,
        k: int = DEFAULT_K,
        workspace: Optional[str | Path] = CURRENT,
    ) -> list[RecalledMemory]:
        """
        Find memories semantically similar to a query.

        Args:
            query: Natural-language query
            k: Maximum results, clamped to 1..[index] max_results
            workspace: CURRENT (this store's workspace), ALL (no filter),
                or an explicit workspace path

        Returns:
            Memories, most similar first. May be fewer than k.
        """
        if not isinstance(query, str) or not query.strip():
            raise ValueError("Query must be a non-empty string")

        self._ensure_ready()
        k = max(1, min(int(k), self._config.index.max_results))
        ws_filter = self.resolve_workspace_filter(workspace)

        vector = self._get_embedding_provider().embed(query)
        hits = self._index.search(vector, k, ws_filter)

        results: list[RecalledMemory] = []
        for hit in hits:
            try:
                record = self._log.read_at(hit.file_path, hit.line_number)
            except LogFileNotFoundError:
                logger.warning("Indexed log file is gone, skipping hit: %s", hit.file_path)
                continue
            if record is None:
                logger.warning("No record at %s:%d, skipping hit", hit.file_path, hit.line_number)
                continue
            results.append(RecalledMemory(
                record=record,
                workspace=hit.workspace,
                file_path=hit.file_path,
                line_number=hit.line_number,
                distance=hit.distance,
            ))
        logger.debug("Recall %r: %d hit(s), %d resolved", query, len(hits), len(results))
        return results

    def cleanup(self, exists: Callable[[str], bool] = os.path.isdir) -> CleanupResult:
        """
        Remove index entries for workspaces that no longer exist on disk.

        The log is untouched; only the derived index shrinks.

        Args:
            exists: Predicate deciding whether a workspace still exists
        """
        self._ensure_ready()
        workspaces = sorted(self._index.list_workspaces())
        removed: list[str] = []
        for ws in workspaces:
            if exists(ws):
                continue
            count = self._index.delete_by_workspace(ws)
            removed.append(ws)
            logger.info("Removed %d index entries for deleted workspace %s", count, ws)
        return CleanupResult(total_workspaces=len(workspaces), removed_workspaces=removed)

    def reindex_all(self) -> list[ReindexResult]:
        """Bring the index up to date with every log file."""
        self._ensure_ready()
        return [self._reindexer.reindex_file(path) for path in self._log.list_files()]

    def rebuild_index(self) -> list[ReindexResult]:
        """Discard the whole index and rebuild it from the log."""
        self._ensure_ready()
        logger.info("Rebuilding index from %s", self._log.memories_dir)
        self._index.clear()
        return self.reindex_all()

    def has_memories(self) -> bool:
        """True if any log file exists."""
        return bool(self._log.list_files())

    def wait_for_indexing(self, timeout: Optional[float] = None) -> bool:
        """Block until queued background indexing has finished."""
        if self._worker is None:
            return True
        return self._worker.join(timeout)

    def stats(self) -> dict:
        """Counts of log files, index entries and workspaces."""
        self._ensure_ready()
        return {
            "storePath": str(self._store_path),
            "workspace": self._workspace,
            "logFiles": len(self._log.list_files()),
            "indexedEntries": self._index.count(),
            "workspaces": sorted(self._index.list_workspaces()),
            "pendingIndexJobs": self._worker.pending,
            "watcher": self._watcher.state.value if self._watcher else "disabled",
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """
        Stop the watcher, drain background indexing and close the index.

        Safe to call more than once.
        """
        with self._ready_lock:
            # Let the startup sweep finish so stop() sees a started watcher
            if self._watcher_thread is not None:
                self._watcher_thread.join()
                self._watcher_thread = None
            if self._watcher is not None:
                self._watcher.stop()
                self._watcher = None
            if self._worker is not None:
                self._worker.stop()
                self._worker = None
            if self._index is not None:
                self._index.close()
                self._index = None
            remove_ops_log(self._ops_log_handler)
            self._ops_log_handler = None
            self._ready = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
