"""
Change detection for log files.

Decides whether a log file must be re-embedded by comparing its current
content hash and record count against what was recorded the last time it
was indexed. Re-embedding is the expensive step, so an unchanged file is
skipped entirely.
"""

import hashlib
from typing import Optional

from .types import FileFingerprint


def fingerprint(data: bytes) -> str:
    """SHA-256 hex digest of file content, for change detection."""
    return hashlib.sha256(data).hexdigest()


def needs_reindex(
    file_path: str,
    current_content: bytes,
    current_record_count: int,
    stored: Optional[FileFingerprint],
) -> bool:
    """
    Check whether a file changed since it was last indexed.

    Both the hash and the record count must match for the file to count
    as unchanged. The count is a cheap independent signal that catches a
    change even if the hash comparison were ever fooled.

    Args:
        file_path: The log file (for symmetry with the stored fingerprint)
        current_content: The file's bytes as just read
        current_record_count: Records parsed from those bytes
        stored: Fingerprint recorded at last index, or None if never indexed

    Returns:
        True if the file must be reindexed
    """
    if stored is None:
        return True
    if stored.file_path != str(file_path):
        return True
    if stored.content_hash != fingerprint(current_content):
        return True
    return stored.record_count != current_record_count
