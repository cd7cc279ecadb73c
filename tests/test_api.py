"""End-to-end tests for the Recall facade."""

import logging
import time
from pathlib import Path

import pytest

pytest.importorskip("sqlite_vec")

from recall.api import ALL, CURRENT, INDEX_FILENAME, Recall
from recall.config import ProviderConfig, StoreConfig, WatcherConfig, load_config

from conftest import MockEmbeddingProvider


@pytest.fixture
def workspace(tmp_path) -> Path:
    ws = tmp_path / "project"
    ws.mkdir()
    return ws.resolve()


@pytest.fixture
def rc(workspace, mock_embedding_provider):
    store = Recall(workspace / ".recall", embedding_provider=mock_embedding_provider, watch=False)
    yield store
    store.close()


def _wait_for(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


class TestStore:

    def test_store_returns_address(self, rc):
        first = rc.store("note", "agent", "first memory")
        second = rc.store("note", "agent", "second memory")

        assert first.address.line_number == 0
        assert second.address.line_number == 1
        path = Path(first.address.file_path)
        assert path.name == "memories.log"
        assert path.parent.parent == rc.store_path / "memories"
        assert first.queued_for_indexing

        data = first.to_dict()
        assert data["location"] == {"filePath": str(path), "lineNumber": 0}
        assert data["timestamp"].endswith("Z")

    def test_stored_record_carries_workspace(self, rc, workspace):
        result = rc.store("note", "agent", "hello")
        assert rc.workspace == str(workspace)
        assert result.record.workspace == str(workspace)
        record = rc.event_log.read_at(result.address.file_path, 0)
        assert record == result.record

    @pytest.mark.parametrize("args", [
        ("", "agent", "content"),
        ("note", "   ", "content"),
        ("note", "agent", ""),
    ])
    def test_store_rejects_empty_fields(self, rc, args):
        with pytest.raises(ValueError):
            rc.store(*args)

    def test_background_indexing(self, rc):
        rc.store("note", "agent", "indexed in the background")
        assert rc.wait_for_indexing(timeout=10)
        assert rc.index.count() == 1

    def test_creates_store_files(self, rc):
        rc.store("note", "agent", "anything")
        assert (rc.store_path / ".gitignore").exists()
        assert "index.db" in (rc.store_path / ".gitignore").read_text()
        assert (rc.store_path / INDEX_FILENAME).exists()
        assert load_config(rc.store_path).embedding.name == "sentence-transformers"


class TestRecall:

    def test_bug_fix_outranks_unrelated_memory(self, rc):
        rc.store("bug-fix", "agent", "Fixed null pointer bug in the config parser")
        rc.store("deployment", "agent", "Deployed release to the staging cluster")
        assert rc.wait_for_indexing(timeout=10)

        results = rc.recall("parser bug fix", k=2)

        assert len(results) == 2
        assert results[0].record.type == "bug-fix"
        assert results[0].similarity > results[1].similarity
        assert results[0].line_number == 0

    def test_current_workspace_is_default_filter(self, rc, tmp_path):
        other = tmp_path / "other"
        other.mkdir()
        rc.store("note", "agent", "shared words about caching")
        rc.store("note", "agent", "shared words about caching elsewhere", workspace=other)
        assert rc.wait_for_indexing(timeout=10)

        current = rc.recall("caching", k=5)
        assert {m.workspace for m in current} == {rc.workspace}

        everything = rc.recall("caching", k=5, workspace=ALL)
        assert len(everything) == 2

        explicit = rc.recall("caching", k=5, workspace=str(other))
        assert [m.workspace for m in explicit] == [str(other)]

    def test_k_is_clamped(self, rc):
        for i in range(3):
            rc.store("note", "agent", f"memory {i}")
        assert rc.wait_for_indexing(timeout=10)

        assert len(rc.recall("memory", k=0)) == 1
        assert len(rc.recall("memory", k=10_000)) == 3

    def test_empty_query_rejected(self, rc):
        with pytest.raises(ValueError):
            rc.recall("   ")

    def test_no_memories(self, rc):
        assert rc.recall("anything") == []
        assert rc.has_memories() is False

    def test_hit_with_missing_log_file_is_skipped(self, rc):
        result = rc.store("note", "agent", "soon to vanish")
        assert rc.wait_for_indexing(timeout=10)
        Path(result.address.file_path).unlink()

        assert rc.recall("vanish", workspace=CURRENT) == []

    def test_similarity_is_one_minus_distance(self, rc):
        rc.store("note", "agent", "exact phrase")
        assert rc.wait_for_indexing(timeout=10)
        [memory] = rc.recall("exact phrase")
        assert memory.similarity == pytest.approx(1.0 - memory.distance)
        assert memory.similarity == pytest.approx(1.0, abs=1e-4)


class TestCleanup:

    def test_removes_only_deleted_workspaces(self, rc, tmp_path):
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.mkdir()
        b.mkdir()
        rc.store("note", "agent", "memory in a", workspace=a)
        rc.store("note", "agent", "memory in b", workspace=b)
        assert rc.wait_for_indexing(timeout=10)
        b.rmdir()

        result = rc.cleanup()

        assert result.removed_workspaces == [str(b)]
        assert rc.index.list_workspaces() == {str(a)}
        assert result.remaining_workspaces == result.total_workspaces - 1
        # The log is untouched
        assert len(rc.event_log.read_all(rc.event_log.list_files()[0])) == 2

    def test_custom_exists_predicate(self, rc):
        rc.store("note", "agent", "alpha", workspace="/a")
        rc.store("note", "agent", "beta", workspace="/b")
        assert rc.wait_for_indexing(timeout=10)

        result = rc.cleanup(exists=lambda ws: ws == "/a")

        assert result.removed_workspaces == ["/b"]
        assert result.to_dict() == {
            "totalWorkspaces": 2,
            "removedWorkspaces": ["/b"],
            "remainingWorkspaces": 1,
        }
        assert rc.index.list_workspaces() == {"/a"}


class TestReindex:

    def test_reindex_after_background_insert_adds_no_duplicates(self, rc):
        for i in range(3):
            rc.store("note", "agent", f"memory {i}")
        assert rc.wait_for_indexing(timeout=10)

        results = rc.reindex_all()
        assert [r.status for r in results] == ["indexed"]
        assert rc.index.count() == 3

        again = rc.reindex_all()
        assert [r.status for r in again] == ["unchanged"]
        assert rc.index.count() == 3

    def test_index_rebuilt_after_deletion(self, workspace):
        embedder = MockEmbeddingProvider()
        first = Recall(workspace / ".recall", embedding_provider=embedder, watch=False)
        first.store("decision", "agent", "Chose sqlite for the index cache")
        first.close()
        for path in (workspace / ".recall").glob(INDEX_FILENAME + "*"):
            path.unlink()

        second = Recall(workspace / ".recall", embedding_provider=embedder, watch=False)
        try:
            assert second.index.count() == 0
            second.reindex_all()
            [memory] = second.recall("sqlite index")
            assert memory.record.type == "decision"
        finally:
            second.close()

    def test_rebuild_index(self, rc):
        rc.store("note", "agent", "one")
        rc.store("note", "agent", "two")
        assert rc.wait_for_indexing(timeout=10)

        results = rc.rebuild_index()
        assert [r.status for r in results] == ["indexed"]
        assert rc.index.count() == 2

    def test_stats(self, rc):
        rc.store("note", "agent", "one")
        assert rc.wait_for_indexing(timeout=10)
        info = rc.stats()
        assert info["logFiles"] == 1
        assert info["indexedEntries"] == 1
        assert info["workspaces"] == [rc.workspace]
        assert info["watcher"] == "disabled"


class TestWatcherIntegration:

    def test_startup_sweep_and_external_append(self, workspace):
        store_path = workspace / ".recall"
        config = StoreConfig(path=store_path, watcher=WatcherConfig(enabled=True, debounce_seconds=0.2))
        embedder = MockEmbeddingProvider()

        # Written by another tool while no process was watching
        writer = Recall(store_path, config=config, embedding_provider=embedder, watch=False)
        writer.event_log.append(_external_record("written offline"))
        writer.close()

        rc = Recall(store_path, config=config, embedding_provider=embedder)
        try:
            rc.store("note", "agent", "starts the watcher")
            assert _wait_for(lambda: rc.index.count() == 2)

            rc.event_log.append(_external_record("appended externally"))
            assert _wait_for(lambda: rc.index.count() == 3)
            assert rc.recall("appended externally", k=1)[0].record.content == "appended externally"
        finally:
            rc.close()


def _external_record(content: str):
    from recall.types import MemoryRecord
    return MemoryRecord(type="note", source="external", content=content, workspace=None)


class TestSetupFailure:

    def test_failed_setup_leaves_no_log_handlers(self, workspace):
        config = StoreConfig(
            path=workspace / ".recall",
            embedding=ProviderConfig("no-such-provider"),
        )
        logger = logging.getLogger("recall")
        before = list(logger.handlers)

        rc = Recall(config=config, watch=False)
        try:
            for _ in range(3):
                with pytest.raises(ValueError, match="Unknown embedding provider"):
                    rc.store("note", "agent", "never indexed")
            assert logger.handlers == before
        finally:
            rc.close()
        assert logger.handlers == before
