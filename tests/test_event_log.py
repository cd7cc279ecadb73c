"""Tests for the append-only memory log."""

import json
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from recall.errors import CorruptRecordError, LogFileNotFoundError
from recall.event_log import EventLog, infer_workspace
from recall.types import MemoryRecord

from conftest import make_record


class TestMemoryRecord:

    def test_json_uses_file_format_field_names(self):
        """workspace is written as workspace_path, timestamp with a Z suffix."""
        ts = datetime(2025, 3, 4, 5, 6, 7, 123456, tzinfo=timezone.utc)
        rec = make_record("text", workspace="/w", timestamp=ts)
        data = json.loads(rec.to_json())
        assert data == {
            "type": "note",
            "source": "test",
            "content": "text",
            "workspace_path": "/w",
            "timestamp": "2025-03-04T05:06:07.123456Z",
        }

    def test_workspace_omitted_when_absent(self):
        rec = make_record(workspace=None)
        assert "workspace_path" not in json.loads(rec.to_json())

    def test_json_is_single_line(self):
        rec = make_record("line one\nline two")
        assert "\n" not in rec.to_json()
        assert MemoryRecord.from_json(rec.to_json()) == rec

    def test_timestamp_normalized_to_utc(self):
        ts = datetime(2025, 1, 1, 22, 0, tzinfo=timezone(timedelta(hours=-5)))
        rec = make_record(timestamp=ts)
        assert rec.timestamp == datetime(2025, 1, 2, 3, 0, tzinfo=timezone.utc)
        assert rec.timestamp.utcoffset() == timedelta(0)

    @pytest.mark.parametrize("line", [
        "not json",
        "[1, 2]",
        '{"type": "note", "source": "s", "timestamp": "2025-01-01T00:00:00Z"}',
        '{"type": "note", "source": "s", "content": "c", "timestamp": "yesterday"}',
        '{"type": "note", "source": "s", "content": 5, "timestamp": "2025-01-01T00:00:00Z"}',
    ])
    def test_invalid_lines_raise_corrupt_record(self, line):
        with pytest.raises(CorruptRecordError):
            MemoryRecord.from_json(line)


class TestAppend:

    def test_first_append_creates_dated_file(self, event_log):
        ts = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
        addr = event_log.append(make_record(timestamp=ts))

        expected = event_log.root / "memories" / "2025-06-01" / "memories.log"
        assert Path(addr.file_path) == expected
        assert addr.line_number == 0
        assert expected.read_text(encoding="utf-8").endswith("\n")

    def test_line_numbers_follow_append_order(self, event_log):
        addrs = [event_log.append(make_record(f"memory {i}")) for i in range(5)]
        assert [a.line_number for a in addrs] == [0, 1, 2, 3, 4]
        assert len({a.file_path for a in addrs}) == 1

    def test_file_chosen_by_utc_date(self, event_log):
        # 22:00 at UTC-5 is 03:00 the next day in UTC
        ts = datetime(2025, 1, 1, 22, 0, tzinfo=timezone(timedelta(hours=-5)))
        addr = event_log.append(make_record(timestamp=ts))
        assert Path(addr.file_path).parent.name == "2025-01-02"

    def test_concurrent_appends_get_unique_dense_line_numbers(self, event_log):
        """Concurrent appends yield line numbers exactly 0..N-1."""
        n = 50
        barrier = threading.Barrier(8)

        def worker(i):
            if i < 8:
                barrier.wait()
            return event_log.append(make_record(f"concurrent {i}"))

        with ThreadPoolExecutor(max_workers=8) as pool:
            addrs = list(pool.map(worker, range(n)))

        assert sorted(a.line_number for a in addrs) == list(range(n))
        path = addrs[0].file_path
        for addr in addrs:
            assert event_log.read_at(path, addr.line_number) is not None
        assert len(event_log.read_all(path)) == n

    def test_partial_trailing_line_is_terminated(self, event_log):
        """A crash mid-write leaves a partial line; the next append starts fresh."""
        first = event_log.append(make_record("complete"))
        with open(first.file_path, "a", encoding="utf-8") as f:
            f.write('{"type": "note", "sour')

        rec = make_record("after crash")
        addr = event_log.append(rec)

        assert addr.line_number == 2
        assert event_log.read_at(addr.file_path, 2) == rec
        assert event_log.read_at(addr.file_path, 1) is None
        assert [r.content for r in event_log.read_all(addr.file_path)] == ["complete", "after crash"]


class TestRead:

    def test_read_at_round_trip(self, event_log):
        rec = make_record("round trip", workspace="/somewhere")
        addr = event_log.append(rec)
        assert event_log.read_at(addr.file_path, addr.line_number) == rec

    def test_read_at_out_of_range_returns_none(self, event_log):
        addr = event_log.append(make_record())
        assert event_log.read_at(addr.file_path, 1) is None
        assert event_log.read_at(addr.file_path, 99) is None
        assert event_log.read_at(addr.file_path, -1) is None

    def test_missing_file_raises_not_found(self, event_log):
        missing = event_log.memories_dir / "2020-01-01" / "memories.log"
        with pytest.raises(LogFileNotFoundError):
            event_log.read_at(missing, 0)
        with pytest.raises(FileNotFoundError):
            event_log.read_all(missing)

    def test_corrupt_line_is_skipped(self, event_log):
        """One corrupt line between two good ones yields two records."""
        first = event_log.append(make_record("good one"))
        with open(first.file_path, "a", encoding="utf-8") as f:
            f.write("{not valid json\n")
        event_log.append(make_record("good two"))

        records = event_log.read_all(first.file_path)
        assert [r.content for r in records] == ["good one", "good two"]

        snap = event_log.snapshot(first.file_path)
        assert snap.corrupt_lines == [1]
        assert [e.line_number for e in snap.entries] == [0, 2]

    def test_blank_lines_skipped_without_renumbering(self, event_log):
        first = event_log.append(make_record("before"))
        with open(first.file_path, "a", encoding="utf-8") as f:
            f.write("\n   \n")
        addr = event_log.append(make_record("after"))

        assert addr.line_number == 3
        assert event_log.read_at(first.file_path, 1) is None
        assert event_log.read_at(first.file_path, 3).content == "after"
        assert len(event_log.read_all(first.file_path)) == 2

    def test_snapshot_content_matches_file_bytes(self, event_log):
        addr = event_log.append(make_record("bytes"))
        snap = event_log.snapshot(addr.file_path)
        assert snap.content == Path(addr.file_path).read_bytes()
        assert snap.record_count == 1


class TestLayout:

    def test_list_files_sorted_and_filtered(self, event_log):
        for day in (3, 1, 2):
            event_log.append(make_record(timestamp=datetime(2025, 1, day, tzinfo=timezone.utc)))
        stray = event_log.memories_dir / "2025-01-01" / "notes.txt"
        stray.write_text("ignore me")
        (event_log.memories_dir / "scratch").mkdir()
        (event_log.memories_dir / "scratch" / "memories.log").write_text("")

        files = event_log.list_files()
        assert [f.parent.name for f in files] == ["2025-01-01", "2025-01-02", "2025-01-03"]

    def test_list_files_empty_store(self, tmp_path):
        assert EventLog(tmp_path / "nothing-here").list_files() == []

    def test_is_log_file(self, event_log):
        assert event_log.is_log_file("/x/memories/2025-01-01/memories.log")
        assert not event_log.is_log_file("/x/memories/2025-01-01/other.log")
        assert not event_log.is_log_file("/x/memories/latest/memories.log")

    def test_infer_workspace_from_store_layout(self):
        path = "/home/dev/project/.recall/memories/2025-01-01/memories.log"
        assert infer_workspace(path) == "/home/dev/project"

    def test_infer_workspace_other_layout_uses_log_root(self):
        path = "/var/lib/memstore/memories/2025-01-01/memories.log"
        assert infer_workspace(path) == "/var/lib/memstore"
