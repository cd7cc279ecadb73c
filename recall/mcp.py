"""
MCP stdio server for recall - semantic memory tools for AI agents.

Exposes store / recall / cleanup as MCP tools. Each tool returns a JSON
string with a ``success`` flag; failures come back as
``{"success": false, "error": ...}`` rather than protocol errors.

Usage:
    recall mcp                                   # stdio server (via CLI)
    claude mcp add recall -- recall mcp          # Claude Code integration

All Recall calls are serialized through a single asyncio.Lock.
"""

import asyncio
import json
import logging
from typing import Annotated, Optional

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from .api import ALL, CURRENT, DEFAULT_K, Recall
from .errors import NotInitializedError, log_exception

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Server setup
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "recall",
    instructions=(
        "Semantic memory for agents. Store short memories (decisions, fixes, "
        "observations) as you work and recall them later by meaning, scoped "
        "to the current workspace or across all workspaces."
    ),
)

_recall: Optional[Recall] = None
_lock = asyncio.Lock()


def _get_recall() -> Recall:
    """Lazy-init Recall with default config (respects RECALL_STORE_PATH env).

    Must be called while holding the lock.
    """
    global _recall
    if _recall is None:
        _recall = Recall()
    return _recall


def _ok(**payload) -> str:
    return json.dumps({"success": True, **payload}, ensure_ascii=False)


def _fail(tool: str, exc: Exception) -> str:
    logger.error("%s failed: %s", tool, exc)
    log_exception(exc, f"mcp {tool}")
    return json.dumps({"success": False, "error": str(exc)}, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Tool annotations
# ---------------------------------------------------------------------------

_READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False)
_APPEND = ToolAnnotations(readOnlyHint=False, destructiveHint=False, idempotentHint=False)
_DESTRUCTIVE = ToolAnnotations(destructiveHint=True, idempotentHint=True)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool(
    name="store",
    description=(
        "Store a memory in the append-only log. Returns once the memory is "
        "saved; semantic indexing finishes in the background."
    ),
    annotations=_APPEND,
)
async def store_memory(
    type: Annotated[str, Field(
        description='Kind of memory, e.g. "bug-fix", "decision", "observation".',
    )],
    source: Annotated[str, Field(
        description="Who or what produced the memory (agent name, tool, user).",
    )],
    content: Annotated[str, Field(
        description="The memory text.",
    )],
    workspace: Annotated[Optional[str], Field(
        description="Workspace path to file the memory under. Defaults to the current workspace.",
    )] = None,
) -> str:
    """Store one memory."""
    async with _lock:
        try:
            result = _get_recall().store(type, source, content, workspace=workspace)
        except NotInitializedError:
            raise
        except Exception as e:
            return _fail("store", e)
    return _ok(message="Memory stored", **result.to_dict())


@mcp.tool(
    name="recall",
    description=(
        "Search stored memories by meaning. Returns the closest matches with "
        "similarity scores, most similar first."
    ),
    annotations=_READ_ONLY,
)
async def recall_memories(
    query: Annotated[str, Field(
        description="Natural language search query.",
    )],
    k: Annotated[int, Field(
        description="Maximum number of memories to return (clamped to 1..20 by default).",
    )] = DEFAULT_K,
    workspace: Annotated[str, Field(
        description='"current" for this workspace, "all" for every workspace, or a workspace path.',
    )] = CURRENT,
) -> str:
    """Find memories similar to a query."""
    async with _lock:
        try:
            rc = _get_recall()
            memories = rc.recall(query, k=k, workspace=workspace)
            has_memories = rc.has_memories()
            resolved = rc.resolve_workspace_filter(workspace) or ALL
        except NotInitializedError:
            raise
        except Exception as e:
            return _fail("recall", e)

    payload = {
        "query": query,
        "workspace": resolved,
        "resultsCount": len(memories),
        "memories": [m.to_dict() for m in memories],
    }
    if not has_memories:
        payload["message"] = "No memories stored yet. Use the store tool to add some."
    elif not memories and workspace != ALL:
        payload["message"] = 'No matches in this workspace. Try workspace="all".'
    return _ok(**payload)


@mcp.tool(
    name="cleanup",
    description=(
        "Remove index entries for workspaces whose directories no longer "
        "exist. The memory log itself is never modified."
    ),
    annotations=_DESTRUCTIVE,
)
async def cleanup_workspaces() -> str:
    """Drop index entries for deleted workspaces."""
    async with _lock:
        try:
            result = _get_recall().cleanup()
        except NotInitializedError:
            raise
        except Exception as e:
            return _fail("cleanup", e)
    return _ok(**result.to_dict())


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    """Run the MCP stdio server."""
    import os
    import signal
    # anyio's stdin reader shields the blocking readline from cancellation,
    # so the first Ctrl+C would otherwise be swallowed
    signal.signal(signal.SIGINT, lambda *_: os._exit(130))

    try:
        mcp.run(transport="stdio")
    finally:
        if _recall is not None:
            _recall.close()


if __name__ == "__main__":
    main()
