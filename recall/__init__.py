"""
Recall

Semantic memory for agents: an append-only log of short memories with
similarity search over their embeddings.

Quick Start:
    from recall import Recall

    with Recall() as rc:        # uses .recall/ in the current directory
        rc.store("bug-fix", "agent", "Fixed the off-by-one in the pager")
        for memory in rc.recall("pagination bug"):
            print(memory.similarity, memory.record.content)

CLI Usage:
    recall store decision agent "Use sqlite-vec for the index"
    recall find "vector index choice" --all
    recall watch

Default Store:
    .recall/ in the current directory (created automatically).
    Override with RECALL_STORE_PATH or an explicit path argument.

Environment Variables:
    RECALL_STORE_PATH      - Override default store location
    RECALL_OPENAI_API_KEY  - API key for the OpenAI embedding provider
    RECALL_VERBOSE         - Set to 1 for debug logging in the CLI

The memory log under .recall/memories/ is the source of truth. The search
index (.recall/index.db) is rebuilt from it whenever it is missing or stale.
"""

# Configure quiet mode early (before any library imports)
import os
if not os.environ.get("RECALL_VERBOSE"):
    os.environ.setdefault("HF_HUB_DISABLE_PROGRESS_BARS", "1")
    os.environ.setdefault("TRANSFORMERS_VERBOSITY", "error")
    os.environ.setdefault("TOKENIZERS_PARALLELISM", "false")
    os.environ.setdefault("HF_HUB_DISABLE_TELEMETRY", "1")

from .api import ALL, CURRENT, Recall
from .types import CleanupResult, MemoryRecord, RecalledMemory, ReindexResult, StoreResult

__version__ = "0.1.0"
__all__ = [
    "Recall",
    "CURRENT",
    "ALL",
    "MemoryRecord",
    "StoreResult",
    "RecalledMemory",
    "ReindexResult",
    "CleanupResult",
]
