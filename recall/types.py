"""
Data types for the memory log and its search index.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .errors import CorruptRecordError


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_utc_timestamp(dt: datetime) -> str:
    """Format a datetime as UTC ISO-8601 with a 'Z' suffix.

    Naive datetimes are taken to already be UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse an ISO-8601 timestamp to a timezone-aware UTC datetime.

    Accepts 'Z' or '+00:00' suffixes, other offsets (converted to UTC),
    and no suffix at all (taken as UTC).
    """
    dt = datetime.fromisoformat(ts.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class MemoryRecord:
    """
    One memory as stored in the log.

    Immutable once appended. The JSON field names are the durable file
    format that other tools read directly; ``workspace`` is serialized as
    ``workspace_path`` and omitted when absent.
    """
    type: str
    source: str
    content: str
    workspace: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        ts = self.timestamp
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        object.__setattr__(self, "timestamp", ts.astimezone(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "source": self.source,
            "content": self.content,
        }
        if self.workspace is not None:
            data["workspace_path"] = self.workspace
        data["timestamp"] = format_utc_timestamp(self.timestamp)
        return data

    def to_json(self) -> str:
        """Serialize to a single line of JSON (no embedded newlines)."""
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Any) -> "MemoryRecord":
        """Build a record from a parsed JSON object.

        Raises:
            CorruptRecordError: If required fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise CorruptRecordError(f"Expected a JSON object, got {type(data).__name__}")
        for key in ("type", "source", "content"):
            if not isinstance(data.get(key), str):
                raise CorruptRecordError(f"Missing or invalid field: {key!r}")
        workspace = data.get("workspace_path")
        if workspace is not None and not isinstance(workspace, str):
            raise CorruptRecordError("Invalid field: 'workspace_path'")
        raw_ts = data.get("timestamp")
        if not isinstance(raw_ts, str):
            raise CorruptRecordError("Missing or invalid field: 'timestamp'")
        try:
            timestamp = parse_utc_timestamp(raw_ts)
        except ValueError as e:
            raise CorruptRecordError(f"Invalid timestamp {raw_ts!r}: {e}") from e
        return cls(
            type=data["type"],
            source=data["source"],
            content=data["content"],
            workspace=workspace,
            timestamp=timestamp,
        )

    @classmethod
    def from_json(cls, line: str) -> "MemoryRecord":
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise CorruptRecordError(f"Invalid JSON: {e}") from e
        return cls.from_dict(data)


@dataclass(frozen=True)
class LogAddress:
    """Stable location of a record: file path plus 0-indexed line number."""
    file_path: str
    line_number: int


@dataclass(frozen=True)
class LogEntry:
    """A parsed record together with the line it was read from."""
    line_number: int
    record: MemoryRecord


@dataclass
class LogSnapshot:
    """
    The bytes of a log file and the records parsed from those same bytes.

    Hashing and parsing from one read keeps the fingerprint consistent
    with the records that get indexed.
    """
    file_path: str
    content: bytes
    entries: list[LogEntry] = field(default_factory=list)
    corrupt_lines: list[int] = field(default_factory=list)

    @property
    def record_count(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class FileFingerprint:
    """What a log file looked like when it was last indexed."""
    file_path: str
    content_hash: str
    record_count: int
    last_indexed_at: str


@dataclass(frozen=True)
class SearchHit:
    """A nearest-neighbor result from the index (address only, no content)."""
    workspace: str
    file_path: str
    line_number: int
    distance: float


@dataclass
class StoreResult:
    """Outcome of storing a memory: where it landed in the log."""
    address: LogAddress
    record: MemoryRecord
    queued_for_indexing: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": format_utc_timestamp(self.record.timestamp),
            "location": {
                "filePath": self.address.file_path,
                "lineNumber": self.address.line_number,
            },
            "indexing": "queued" if self.queued_for_indexing else "deferred",
        }


@dataclass
class RecalledMemory:
    """A search hit resolved back to its full record."""
    record: MemoryRecord
    workspace: str
    file_path: str
    line_number: int
    distance: float

    @property
    def similarity(self) -> float:
        return 1.0 - self.distance

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.record.type,
            "source": self.record.source,
            "content": self.record.content,
            "workspace": self.workspace,
            "timestamp": format_utc_timestamp(self.record.timestamp),
            "similarity": round(self.similarity, 4),
            "location": {
                "filePath": self.file_path,
                "lineNumber": self.line_number,
            },
        }


@dataclass
class ReindexResult:
    """Outcome of reindexing one log file."""
    file_path: str
    status: str  # "missing", "unchanged", "indexed", "failed"
    records: int = 0
    error: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.status == "indexed"


@dataclass
class CleanupResult:
    """Outcome of removing index entries for workspaces gone from disk."""
    total_workspaces: int
    removed_workspaces: list[str] = field(default_factory=list)

    @property
    def remaining_workspaces(self) -> int:
        return self.total_workspaces - len(self.removed_workspaces)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalWorkspaces": self.total_workspaces,
            "removedWorkspaces": list(self.removed_workspaces),
            "remainingWorkspaces": self.remaining_workspaces,
        }
