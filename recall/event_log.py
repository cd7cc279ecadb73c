"""
Append-only, date-partitioned memory log.

Layout (the durable contract other tools read directly):

    <root>/memories/<YYYY-MM-DD>/memories.log

One JSON object per line, UTF-8, newline-terminated. Each record is
addressed by (file path, 0-indexed line number). Line numbers are assigned
in append order and never change, because files only ever grow.
"""

import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .errors import CorruptRecordError, LogFileNotFoundError
from .locks import KeyedLocks
from .types import LogAddress, LogEntry, LogSnapshot, MemoryRecord

logger = logging.getLogger(__name__)

LOG_DIRNAME = "memories"
LOG_FILENAME = "memories.log"

# Name of the per-workspace store directory; used to infer a workspace
# from a log file's location for records written without one.
STORE_DIRNAME = ".recall"

_DATE_DIR_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _split_lines(data: bytes) -> list[bytes]:
    """Split file content into lines the same way append() counts them.

    Only ``\\n`` terminates a line. A trailing partial line (no newline,
    e.g. from a crash mid-write) still counts as a line.
    """
    if not data:
        return []
    lines = data.split(b"\n")
    if lines[-1] == b"":
        lines.pop()
    return [line[:-1] if line.endswith(b"\r") else line for line in lines]


def _count_lines(path: Path) -> tuple[int, bool]:
    """Count lines in a file without loading it whole.

    Returns:
        (line count, whether the file ends with a newline)
    """
    count = 0
    last = b""
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(65536), b""):
            count += block.count(b"\n")
            last = block[-1:]
    if last and last != b"\n":
        return count + 1, False
    return count, True


def _parse_line(raw: bytes) -> MemoryRecord:
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CorruptRecordError(f"Invalid UTF-8: {e}") from e
    return MemoryRecord.from_json(text)


def infer_workspace(file_path: str | Path) -> str:
    """Infer the workspace a log file belongs to from its location.

    ``<workspace>/.recall/memories/<date>/memories.log`` gives
    ``<workspace>``. For any other layout the log root itself is used.
    """
    path = Path(file_path)
    root = path.parent.parent.parent
    if root.name == STORE_DIRNAME:
        return str(root.parent)
    return str(root)


class EventLog:
    """
    Reads and appends memory records under a log root.

    Appends are serialized per file: the line count and the write happen
    under one lock, so concurrent appends can never be handed the same
    line number. Appends to different files do not contend.
    """

    def __init__(self, root: str | Path):
        """
        Args:
            root: Base directory that holds ``memories/``
        """
        self._root = Path(root).expanduser().resolve()
        self._locks = KeyedLocks()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def memories_dir(self) -> Path:
        return self._root / LOG_DIRNAME

    def file_for(self, timestamp: datetime) -> Path:
        """Log file for the UTC calendar date of ``timestamp``."""
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        date_stamp = timestamp.astimezone(timezone.utc).strftime("%Y-%m-%d")
        return self.memories_dir / date_stamp / LOG_FILENAME

    def is_log_file(self, path: str | Path) -> bool:
        """Check whether a path looks like one of this log's files."""
        p = Path(path)
        return p.name == LOG_FILENAME and bool(_DATE_DIR_RE.match(p.parent.name))

    # -------------------------------------------------------------------------
    # Write
    # -------------------------------------------------------------------------

    def append(self, record: MemoryRecord) -> LogAddress:
        """
        Append a record to the log file for its date.

        Creates the date directory and file on first use. If the file ends
        in a partial line (crash mid-write), that line is terminated first
        so the new record starts on a line of its own.

        Returns:
            The address of the new record. Its line number equals the
            number of lines in the file before this append.
        """
        path = self.file_for(record.timestamp)
        line = record.to_json()

        with self._locks.hold(str(path)):
            path.parent.mkdir(parents=True, exist_ok=True)
            if path.exists():
                line_number, terminated = _count_lines(path)
            else:
                line_number, terminated = 0, True

            prefix = "" if terminated else "\n"
            if not terminated:
                logger.warning("Terminating partial trailing line in %s", path)
            with open(path, "a", encoding="utf-8", newline="\n") as f:
                f.write(prefix + line + "\n")
                f.flush()
                os.fsync(f.fileno())

        logger.debug("Appended %s:%d", path, line_number)
        return LogAddress(file_path=str(path), line_number=line_number)

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    def _read_bytes(self, file_path: str | Path) -> bytes:
        try:
            return Path(file_path).read_bytes()
        except FileNotFoundError:
            raise LogFileNotFoundError(str(file_path)) from None

    def read_at(self, file_path: str | Path, line_number: int) -> Optional[MemoryRecord]:
        """
        Read the record at a specific line.

        Returns None for an out-of-range line, a blank line, or a line that
        does not parse; the index may reference lines that were appended
        after the last read or that predate a format change.

        Raises:
            LogFileNotFoundError: If the file does not exist
        """
        lines = _split_lines(self._read_bytes(file_path))
        if line_number < 0 or line_number >= len(lines):
            return None
        raw = lines[line_number]
        if not raw.strip():
            return None
        try:
            return _parse_line(raw)
        except CorruptRecordError as e:
            logger.warning("Corrupt record at %s:%d: %s", file_path, line_number, e)
            return None

    def snapshot(self, file_path: str | Path) -> LogSnapshot:
        """
        Read a file once, returning its bytes and the records parsed from them.

        Blank lines are skipped silently. Lines that fail to parse are
        logged, recorded in ``corrupt_lines``, and skipped; the rest of the
        file is still read.

        Raises:
            LogFileNotFoundError: If the file does not exist
        """
        content = self._read_bytes(file_path)
        snap = LogSnapshot(file_path=str(file_path), content=content)
        for line_number, raw in enumerate(_split_lines(content)):
            if not raw.strip():
                continue
            try:
                record = _parse_line(raw)
            except CorruptRecordError as e:
                logger.warning("Skipping corrupt record at %s:%d: %s", file_path, line_number, e)
                snap.corrupt_lines.append(line_number)
                continue
            snap.entries.append(LogEntry(line_number=line_number, record=record))
        return snap

    def read_all(self, file_path: str | Path) -> list[MemoryRecord]:
        """
        Read every well-formed record in a file, in order.

        Raises:
            LogFileNotFoundError: If the file does not exist
        """
        return [entry.record for entry in self.snapshot(file_path).entries]

    def list_files(self) -> list[Path]:
        """All existing log files under the root, oldest date first."""
        if not self.memories_dir.is_dir():
            return []
        return sorted(
            p for p in self.memories_dir.glob(f"*/{LOG_FILENAME}")
            if p.is_file() and self.is_log_file(p)
        )
