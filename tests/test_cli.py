"""Tests for the command-line interface."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

pytest.importorskip("sqlite_vec")

import recall.cli as cli
from recall.api import Recall

from conftest import MockEmbeddingProvider

runner = CliRunner()


@pytest.fixture(autouse=True)
def offline_recall(monkeypatch):
    """Open stores with the mock embedder and without the watcher."""
    embedder = MockEmbeddingProvider()
    opened = []

    def factory(store_path=None, *, watch=False, **kwargs):
        # One open store at a time, so background indexing has drained
        while opened:
            opened.pop().close()
        rc = Recall(store_path, embedding_provider=embedder, watch=False)
        opened.append(rc)
        return rc

    monkeypatch.setattr(cli, "Recall", factory)
    monkeypatch.setattr(cli, "_store_override", None)
    monkeypatch.setattr("atexit.register", lambda fn: None)
    yield
    for rc in opened:
        rc.close()


@pytest.fixture
def store_dir(tmp_path):
    return str(tmp_path / "project" / ".recall")


def _invoke(*args):
    return runner.invoke(cli.app, list(args))


class TestStoreAndFind:

    def test_store_then_find(self, store_dir):
        result = _invoke("store", "bug-fix", "agent", "Fixed the parser crash", "--store", store_dir)
        assert result.exit_code == 0, result.output
        assert "Stored:" in result.output
        assert result.output.strip().endswith(":0")

        result = _invoke("find", "parser crash", "--store", store_dir)
        assert result.exit_code == 0, result.output
        assert "[bug-fix] Fixed the parser crash" in result.output

    def test_find_json(self, store_dir):
        _invoke("store", "note", "agent", "deploy steps for staging", "--store", store_dir)

        result = _invoke("--json", "find", "deploy", "--all", "--store", store_dir)

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["workspace"] == "all"
        assert data["resultsCount"] == 1
        assert data["memories"][0]["content"] == "deploy steps for staging"

    def test_find_json_reports_resolved_workspace(self, store_dir):
        result = _invoke("--json", "find", "anything", "--store", store_dir)
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["workspace"] == str(Path(store_dir).resolve().parent)

    def test_store_rejects_empty_content(self, store_dir):
        result = _invoke("store", "note", "agent", "  ", "--store", store_dir)
        assert result.exit_code == 1

    def test_store_reads_stdin(self, store_dir):
        result = runner.invoke(
            cli.app, ["store", "note", "agent", "-", "--store", store_dir],
            input="piped memory\n",
        )
        assert result.exit_code == 0, result.output

        result = _invoke("find", "piped memory", "--store", store_dir)
        assert "piped memory" in result.output

    def test_find_nothing(self, store_dir):
        result = _invoke("find", "anything", "--store", store_dir)
        assert result.exit_code == 0
        assert "No memories found." in result.output


class TestMaintenance:

    def test_reindex(self, store_dir):
        _invoke("store", "note", "agent", "one", "--store", store_dir)

        result = _invoke("reindex", "--rebuild", "--store", store_dir)

        assert result.exit_code == 0, result.output
        assert "1 log file(s): 1 reindexed" in result.output

    def test_cleanup_json(self, store_dir):
        result = _invoke("--json", "cleanup", "--store", store_dir)
        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {
            "totalWorkspaces": 0,
            "removedWorkspaces": [],
            "remainingWorkspaces": 0,
        }

    def test_stats(self, store_dir):
        _invoke("store", "note", "agent", "one", "--store", store_dir)
        result = _invoke("--json", "stats", "--store", store_dir)
        assert result.exit_code == 0, result.output
        info = json.loads(result.output)
        assert info["logFiles"] == 1
        assert info["watcher"] == "disabled"
