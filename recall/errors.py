"""
Error types and error logging for recall.

The store/recall boundary reports failures as structured results; these
exceptions are what the layers underneath raise. Full stack traces go to
an error log file so the CLI can show a clean one-line message.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class RecallError(Exception):
    """Base class for recall errors."""


class LogFileNotFoundError(RecallError, FileNotFoundError):
    """A referenced memory log file does not exist."""

    def __init__(self, file_path: str):
        super().__init__(f"Log file not found: {file_path}")
        self.filename = file_path


class CorruptRecordError(RecallError, ValueError):
    """A log line could not be parsed as a memory record."""


class NotInitializedError(RecallError, RuntimeError):
    """An index operation was attempted before initialize()."""


class DimensionMismatchError(RecallError, ValueError):
    """An embedding vector has the wrong number of dimensions."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Embedding must be {expected} dimensions, got {actual}"
        )
        self.expected = expected
        self.actual = actual


def _error_log_path() -> Path:
    """Resolve error log path, respecting RECALL_STORE_PATH."""
    store = os.environ.get("RECALL_STORE_PATH")
    if store:
        return Path(store) / "recall-errors.log"
    return Path.cwd() / ".recall" / "recall-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(exc)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
