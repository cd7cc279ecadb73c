"""
Similarity-search index over memory embeddings, using sqlite-vec.

The index is a cache derived from the memory log: every entry points
back to a (file, line) address, and the whole database can be deleted and
rebuilt from the log. It lives in a single SQLite file:

- ``memory_vectors``: vec0 virtual table holding the embeddings
- ``memory_refs``: workspace / file / line for each vector (same rowid)
- ``file_fingerprints``: content hash + record count per log file
- ``index_meta``: embedding dimension the vectors were built with

vec0 cannot filter on auxiliary columns during a KNN match, so workspace
filtering over-fetches candidates and filters them afterwards.

SQLite here is a single in-process writer: every operation is serialized
behind one lock.
"""

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from .errors import DimensionMismatchError, NotInitializedError
from .types import FileFingerprint, SearchHit

logger = logging.getLogger(__name__)

# Candidates fetched per requested result when filtering by workspace
DEFAULT_OVERFETCH_FACTOR = 10

# vec0 refuses KNN queries with k above this
MAX_KNN = 4096


class IndexStore:
    """
    sqlite-vec backed vector index plus the per-file fingerprint table.

    Must be initialized before use; every other method raises
    NotInitializedError until ``initialize()`` has run.

    Example:
        index = IndexStore(root / "index.db", dimension=384).initialize()
        index.insert(vector, "/work/proj", "/work/proj/.recall/memories/2025-01-01/memories.log", 0)
        hits = index.search(query_vector, k=5, workspace="/work/proj")
    """

    def __init__(
        self,
        db_path: str | Path,
        dimension: int,
        *,
        overfetch_factor: int = DEFAULT_OVERFETCH_FACTOR,
    ):
        """
        Args:
            db_path: Path to the SQLite index file
            dimension: Length every embedding vector must have
            overfetch_factor: Candidates per result for workspace-filtered search
        """
        if dimension <= 0:
            raise ValueError(f"Embedding dimension must be positive, got {dimension}")
        self._db_path = Path(db_path)
        self._dimension = dimension
        self._overfetch_factor = max(1, overfetch_factor)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def is_initialized(self) -> bool:
        return self._conn is not None

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def initialize(self) -> "IndexStore":
        """
        Open the database and create tables if absent. Idempotent.

        If the index was built with a different embedding dimension, its
        contents are discarded (it is only a cache) and the next sweep
        rebuilds it.

        Returns:
            self, ready for use
        """
        with self._lock:
            if self._conn is not None:
                return self

            import sqlite_vec

            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            try:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA busy_timeout=5000")
                conn.enable_load_extension(True)
                sqlite_vec.load(conn)
                conn.enable_load_extension(False)
                self._create_schema(conn)
            except Exception:
                conn.close()
                raise
            self._conn = conn
            logger.debug("Index initialized: %s (dim=%d)", self._db_path, self._dimension)
            return self

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS index_meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        row = conn.execute(
            "SELECT value FROM index_meta WHERE key = 'dimension'"
        ).fetchone()
        if row is not None and int(row[0]) != self._dimension:
            logger.warning(
                "Index dimension changed (%s -> %d); discarding index for rebuild",
                row[0], self._dimension,
            )
            conn.execute("DROP TABLE IF EXISTS memory_vectors")
            conn.execute("DROP TABLE IF EXISTS memory_refs")
            conn.execute("DROP TABLE IF EXISTS file_fingerprints")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS memory_refs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workspace_path TEXT NOT NULL,
                file_path TEXT NOT NULL,
                line_number INTEGER NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_refs_file
            ON memory_refs(file_path, line_number)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_refs_workspace
            ON memory_refs(workspace_path)
        """)
        conn.execute(f"""
            CREATE VIRTUAL TABLE IF NOT EXISTS memory_vectors
            USING vec0(embedding float[{self._dimension}] distance_metric=cosine)
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS file_fingerprints (
                file_path TEXT PRIMARY KEY,
                content_hash TEXT NOT NULL,
                record_count INTEGER NOT NULL,
                last_indexed_at TEXT NOT NULL
            )
        """)
        conn.execute(
            "INSERT OR REPLACE INTO index_meta (key, value) VALUES ('dimension', ?)",
            (str(self._dimension),),
        )
        conn.commit()

    def _require_ready(self) -> sqlite3.Connection:
        if self._conn is None:
            raise NotInitializedError("IndexStore must be initialized before use")
        return self._conn

    def _check_dimension(self, vector: Sequence[float]) -> None:
        if len(vector) != self._dimension:
            raise DimensionMismatchError(self._dimension, len(vector))

    @staticmethod
    def _serialize(vector: Sequence[float]) -> bytes:
        from sqlite_vec import serialize_float32
        return serialize_float32([float(v) for v in vector])

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    def insert(
        self,
        vector: Sequence[float],
        workspace: str,
        file_path: str,
        line_number: int,
    ) -> int:
        """
        Add one entry. No uniqueness is enforced; callers clear stale
        entries for a file before re-inserting it.

        Returns:
            The new entry's row id

        Raises:
            DimensionMismatchError: If the vector has the wrong length
        """
        with self._lock:
            conn = self._require_ready()
            self._check_dimension(vector)
            blob = self._serialize(vector)
            try:
                cursor = conn.execute(
                    "INSERT INTO memory_refs (workspace_path, file_path, line_number) "
                    "VALUES (?, ?, ?)",
                    (workspace, str(file_path), line_number),
                )
                rowid = cursor.lastrowid
                conn.execute(
                    "INSERT INTO memory_vectors (rowid, embedding) VALUES (?, ?)",
                    (rowid, blob),
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            return rowid

    def contains(self, file_path: str, line_number: int) -> bool:
        """Check whether an entry exists for an address."""
        with self._lock:
            conn = self._require_ready()
            row = conn.execute(
                "SELECT 1 FROM memory_refs WHERE file_path = ? AND line_number = ? LIMIT 1",
                (str(file_path), line_number),
            ).fetchone()
            return row is not None

    def search(
        self,
        query_vector: Sequence[float],
        k: int,
        workspace: Optional[str] = None,
    ) -> list[SearchHit]:
        """
        Find the k nearest entries, closest first.

        With a workspace filter, ``k * overfetch_factor`` candidates are
        fetched and filtered by exact workspace match. If the workspace is
        sparse among the candidates, fewer than k hits come back; that is
        a normal result, not an error.

        Raises:
            DimensionMismatchError: If the query vector has the wrong length
        """
        with self._lock:
            conn = self._require_ready()
            if k <= 0:
                return []
            self._check_dimension(query_vector)
            fetch = k * self._overfetch_factor if workspace is not None else k
            fetch = min(fetch, MAX_KNN)

            rows = conn.execute(
                "SELECT rowid, distance FROM memory_vectors "
                "WHERE embedding MATCH ? AND k = ? ORDER BY distance",
                (self._serialize(query_vector), fetch),
            ).fetchall()
            if not rows:
                return []

            ids = [r[0] for r in rows]
            placeholders = ",".join("?" * len(ids))
            refs = {
                r[0]: r[1:]
                for r in conn.execute(
                    f"SELECT id, workspace_path, file_path, line_number "
                    f"FROM memory_refs WHERE id IN ({placeholders})",
                    ids,
                )
            }

        hits: list[SearchHit] = []
        for rowid, distance in rows:
            ref = refs.get(rowid)
            if ref is None:
                continue
            ws, path, line = ref
            if workspace is not None and ws != workspace:
                continue
            hits.append(SearchHit(
                workspace=ws, file_path=path, line_number=line, distance=float(distance),
            ))
            if len(hits) >= k:
                break

        if workspace is not None and len(hits) < k and len(rows) >= fetch:
            logger.debug(
                "Workspace filter returned %d of %d requested (from %d candidates)",
                len(hits), k, len(rows),
            )
        return hits

    def _delete_where(self, column: str, value: str) -> int:
        with self._lock:
            conn = self._require_ready()
            try:
                ids = [
                    r[0] for r in conn.execute(
                        f"SELECT id FROM memory_refs WHERE {column} = ?", (value,)
                    )
                ]
                for rowid in ids:
                    conn.execute("DELETE FROM memory_vectors WHERE rowid = ?", (rowid,))
                conn.execute(f"DELETE FROM memory_refs WHERE {column} = ?", (value,))
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            return len(ids)

    def delete_by_file(self, file_path: str) -> int:
        """Remove every entry for a log file. Returns the number removed."""
        return self._delete_where("file_path", str(file_path))

    def delete_by_workspace(self, workspace: str) -> int:
        """Remove every entry for a workspace. Returns the number removed."""
        return self._delete_where("workspace_path", workspace)

    def list_workspaces(self) -> set[str]:
        """All distinct workspaces that have entries."""
        with self._lock:
            conn = self._require_ready()
            return {
                r[0] for r in conn.execute("SELECT DISTINCT workspace_path FROM memory_refs")
            }

    def count(self, file_path: Optional[str] = None) -> int:
        """Number of entries, optionally for one log file."""
        with self._lock:
            conn = self._require_ready()
            if file_path is None:
                row = conn.execute("SELECT COUNT(*) FROM memory_refs").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM memory_refs WHERE file_path = ?",
                    (str(file_path),),
                ).fetchone()
            return row[0]

    def clear(self) -> None:
        """Remove all entries and fingerprints."""
        with self._lock:
            conn = self._require_ready()
            # Dropping is cheaper than row-by-row vec0 deletes
            conn.execute("DROP TABLE IF EXISTS memory_vectors")
            conn.execute("DROP TABLE IF EXISTS memory_refs")
            conn.execute("DROP TABLE IF EXISTS file_fingerprints")
            conn.commit()
            self._create_schema(conn)
        logger.info("Index cleared: %s", self._db_path)

    # -------------------------------------------------------------------------
    # Fingerprints
    # -------------------------------------------------------------------------

    def get_fingerprint(self, file_path: str) -> Optional[FileFingerprint]:
        with self._lock:
            conn = self._require_ready()
            row = conn.execute(
                "SELECT file_path, content_hash, record_count, last_indexed_at "
                "FROM file_fingerprints WHERE file_path = ?",
                (str(file_path),),
            ).fetchone()
        if row is None:
            return None
        return FileFingerprint(
            file_path=row[0],
            content_hash=row[1],
            record_count=row[2],
            last_indexed_at=row[3],
        )

    def set_fingerprint(self, file_path: str, content_hash: str, record_count: int) -> None:
        """Record a file's fingerprint. Last write wins."""
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            conn = self._require_ready()
            conn.execute(
                "INSERT OR REPLACE INTO file_fingerprints "
                "(file_path, content_hash, record_count, last_indexed_at) "
                "VALUES (?, ?, ?, ?)",
                (str(file_path), content_hash, record_count, now),
            )
            conn.commit()

    def delete_fingerprint(self, file_path: str) -> bool:
        """Forget a file's fingerprint, forcing a full re-embed next pass."""
        with self._lock:
            conn = self._require_ready()
            cursor = conn.execute(
                "DELETE FROM file_fingerprints WHERE file_path = ?", (str(file_path),)
            )
            conn.commit()
            return cursor.rowcount > 0

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
