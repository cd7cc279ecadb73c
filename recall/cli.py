"""
CLI interface for semantic memory.

Usage:
    recall store bug-fix agent "Fixed the null check in the parser"
    recall find "parser crash"
    recall find "deploy steps" --all
    recall reindex --rebuild
    recall watch
"""

import json
import os
import sys
import time
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import ALL, CURRENT, DEFAULT_K, Recall
from .config import STORE_PATH_ENV
from .logging_config import configure_quiet_mode, enable_debug_mode
from .types import RecalledMemory, ReindexResult, format_utc_timestamp


# Configure quiet mode by default (suppress verbose library output)
# Set RECALL_VERBOSE=1 to enable debug mode via environment
if os.environ.get("RECALL_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"recall {version('recall')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    if value is not None:
        _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="recall",
    help="Semantic memory for agents: an append-only log with similarity search.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar=STORE_PATH_ENV,
        help="Path to the store directory (default: ./.recall)",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Semantic memory for agents."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

StoreOption = Annotated[
    Optional[Path],
    typer.Option(
        "--store", "-s",
        envvar=STORE_PATH_ENV,
        help="Path to the store directory (default: ./.recall)"
    )
]


def _get_recall(store: Optional[Path], *, watch: bool = False) -> Recall:
    """Open the store, turning setup errors into a clean message."""
    import atexit

    actual_store = store if store is not None else _get_store_override()
    try:
        rc = Recall(actual_store, watch=watch)
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    # Drain background indexing before the interpreter exits
    atexit.register(rc.close)
    return rc


def _format_memory(memory: RecalledMemory, show_workspace: bool) -> str:
    rec = memory.record
    when = format_utc_timestamp(rec.timestamp)[:19].replace("T", " ")
    line = f"{memory.similarity:.3f}  [{rec.type}] {rec.content}"
    detail = f"        {rec.source}, {when}"
    if show_workspace:
        detail += f", {memory.workspace}"
    return f"{line}\n{detail}"


def _format_reindex(results: list[ReindexResult]) -> str:
    indexed = [r for r in results if r.status == "indexed"]
    failed = [r for r in results if r.status == "failed"]
    lines = [
        f"{len(results)} log file(s): {len(indexed)} reindexed, "
        f"{len(results) - len(indexed) - len(failed)} unchanged or missing, {len(failed)} failed"
    ]
    for r in failed:
        lines.append(f"  failed: {r.file_path}: {r.error}")
    return "\n".join(lines)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def store(
    type: Annotated[str, typer.Argument(help="Kind of memory, e.g. bug-fix, decision")],
    source: Annotated[str, typer.Argument(help="Who produced it (agent, tool, user)")],
    content: Annotated[str, typer.Argument(help="Memory text, or '-' to read stdin")],
    workspace: Annotated[Optional[str], typer.Option(
        "--workspace", "-w",
        help="Workspace to file the memory under (default: the store's workspace)",
    )] = None,
    store: StoreOption = None,
):
    """Store a memory."""
    if content == "-":
        content = sys.stdin.read()
    rc = _get_recall(store)
    try:
        result = rc.store(type, source, content, workspace=workspace)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if _get_json_output():
        typer.echo(json.dumps(result.to_dict(), indent=2))
    else:
        addr = result.address
        typer.echo(f"Stored: {addr.file_path}:{addr.line_number}")


@app.command()
def find(
    query: Annotated[str, typer.Argument(help="Natural language query")],
    limit: Annotated[int, typer.Option(
        "--limit", "-n", "-k",
        help="Maximum results to return",
    )] = DEFAULT_K,
    workspace: Annotated[Optional[str], typer.Option(
        "--workspace", "-w",
        help="Search this workspace instead of the current one",
    )] = None,
    all_workspaces: Annotated[bool, typer.Option(
        "--all", "-a",
        help="Search every workspace",
    )] = False,
    store: StoreOption = None,
):
    """Find memories similar to a query."""
    rc = _get_recall(store)
    selector = ALL if all_workspaces else (workspace or CURRENT)
    try:
        memories = rc.recall(query, k=limit, workspace=selector)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if _get_json_output():
        typer.echo(json.dumps({
            "query": query,
            "workspace": rc.resolve_workspace_filter(selector) or ALL,
            "resultsCount": len(memories),
            "memories": [m.to_dict() for m in memories],
        }, indent=2, ensure_ascii=False))
        return
    if not memories:
        typer.echo("No memories found.", err=True)
        return
    for memory in memories:
        typer.echo(_format_memory(memory, show_workspace=selector == ALL))


@app.command()
def reindex(
    rebuild: Annotated[bool, typer.Option(
        "--rebuild",
        help="Discard the index and rebuild it from the log",
    )] = False,
    store: StoreOption = None,
):
    """Bring the search index up to date with the memory log."""
    rc = _get_recall(store)
    results = rc.rebuild_index() if rebuild else rc.reindex_all()
    if _get_json_output():
        typer.echo(json.dumps([
            {"filePath": r.file_path, "status": r.status, "records": r.records, "error": r.error}
            for r in results
        ], indent=2))
    else:
        typer.echo(_format_reindex(results))
    if any(r.status == "failed" for r in results):
        raise typer.Exit(1)


@app.command()
def cleanup(
    store: StoreOption = None,
):
    """Remove index entries for workspaces that no longer exist."""
    rc = _get_recall(store)
    result = rc.cleanup()
    if _get_json_output():
        typer.echo(json.dumps(result.to_dict(), indent=2))
        return
    for ws in result.removed_workspaces:
        typer.echo(f"Removed: {ws}")
    typer.echo(
        f"{len(result.removed_workspaces)} of {result.total_workspaces} workspace(s) removed, "
        f"{result.remaining_workspaces} remaining"
    )


@app.command()
def stats(
    store: StoreOption = None,
):
    """Show store statistics."""
    rc = _get_recall(store)
    info = rc.stats()
    if _get_json_output():
        typer.echo(json.dumps(info, indent=2))
        return
    typer.echo(f"Store:      {info['storePath']}")
    typer.echo(f"Workspace:  {info['workspace']}")
    typer.echo(f"Log files:  {info['logFiles']}")
    typer.echo(f"Indexed:    {info['indexedEntries']}")
    typer.echo(f"Workspaces: {len(info['workspaces'])}")
    for ws in info["workspaces"]:
        typer.echo(f"  {ws}")


@app.command()
def watch(
    store: StoreOption = None,
):
    """Sweep the log, then keep the index in sync until Ctrl+C."""
    rc = _get_recall(store)
    results = rc.start_watcher()
    typer.echo(_format_reindex(results), err=True)
    typer.echo(f"Watching {rc.event_log.memories_dir} (Ctrl+C to stop)", err=True)
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        typer.echo("Stopping...", err=True)
    finally:
        rc.close()


@app.command()
def mcp(
    store: StoreOption = None,
):
    """Start MCP stdio server for AI agent integration."""
    if store is not None:
        os.environ[STORE_PATH_ENV] = str(store)
    elif _get_store_override() is not None:
        os.environ[STORE_PATH_ENV] = str(_get_store_override())
    from .mcp import main as mcp_main
    mcp_main()


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="recall CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
