"""Command-line interface for folder-index-mcp.

Provides commands for:
- index: Build the index from disk
- status: Show index statistics
- search: Search the index from the terminal
- rebuild: Force rebuild the index
- serve: Run the MCP server (default)

Usage:
    folder-index-mcp                 # Run MCP server (default)
    folder-index-mcp serve           # Run MCP server explicitly
    folder-index-mcp --watch         # Run with real-time index updates
    folder-index-mcp index           # Build index from disk
    folder-index-mcp status          # Show index status
    folder-index-mcp search "a OR b" # Search the index
    folder-index-mcp rebuild         # Force rebuild index
"""

import asyncio
import logging
import sys
import time
from datetime import datetime
from typing import Annotated

import cyclopts

app = cyclopts.App(
    name="folder-index-mcp",
    help="MCP server with fuzzy and boolean search over a folder index.",
)

Watch = Annotated[
    bool,
    cyclopts.Parameter(
        name=["--watch", "-w"],
        help="Keep the index current while files change",
    ),
]
Verbose = Annotated[
    bool,
    cyclopts.Parameter(
        name=["--verbose", "-v"],
        help="Log progress and debug output to stderr",
    ),
]


def _configure_logging(verbose: bool) -> None:
    """Send log output to stderr (stdout belongs to the MCP protocol)."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _format_size(size_bytes: int) -> str:
    for unit in ("B", "KB", "MB"):
        if size_bytes < 1024 or unit == "MB":
            break
        size_bytes /= 1024
    return f"{size_bytes:.0f} B" if unit == "B" else f"{size_bytes:.1f} {unit}"


def _format_elapsed(seconds: float) -> str:
    minutes, secs = divmod(seconds, 60)
    if minutes:
        return f"{int(minutes)}m {secs:.1f}s"
    return f"{secs:.1f}s"


def _format_timestamp(epoch_ms: int) -> str:
    if not epoch_ms:
        return "Never"
    return datetime.fromtimestamp(epoch_ms / 1000).strftime(
        "%Y-%m-%d %H:%M:%S"
    )


def _show_progress(current: int, total: int | None, message: str) -> None:
    """Redraw a one-line progress indicator in place."""
    line = message
    if total:
        done = min(current / total, 1.0)
        width = 30
        line = f"[{'#' * int(width * done):<{width}}] {done:4.0%} {message}"
    print(f"\r{line}", end="", flush=True)


def _run_serve(watch: bool = False) -> None:
    from .server import configure, mcp

    configure(watch=watch)
    mcp.run()


@app.command
def serve(watch: Watch = False, verbose: Verbose = False) -> None:
    """
    Run the MCP server.

    This is the default command when no subcommand is specified.
    At startup, the saved index is loaded and reconciled with disk.
    Use --watch to keep it current while files change.
    """
    _configure_logging(verbose)
    _run_serve(watch=watch)


@app.command
def index(verbose: Verbose = False) -> None:
    """
    Build the index from disk.

    Scans FOLDER_INDEX_ROOT (default: the current directory), reconciles
    the saved index with it and writes the result to disk.
    """
    from .index import IndexManager

    _configure_logging(verbose)
    manager = IndexManager()

    print(f"Indexing {manager.root}...")
    print(f"Index location: {manager.index_path}")
    print()

    async def build() -> int:
        try:
            await manager.initialize(sync=False)
            await manager.sync_updates(
                progress_callback=_show_progress if verbose else None
            )
            return manager.service.size
        finally:
            await manager.destroy()

    start = time.time()
    try:
        count = asyncio.run(build())
    except PermissionError as e:
        print(f"\n✗ Permission denied: {e}", file=sys.stderr)
        sys.exit(1)
    except (FileNotFoundError, NotADirectoryError) as e:
        print(f"\n✗ Not a directory: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:  # Broad: report any failure and exit non-zero
        print(f"\n✗ Indexing failed: {e}", file=sys.stderr)
        sys.exit(1)

    if verbose:
        print()
    elapsed = _format_elapsed(time.time() - start)
    print(f"✓ Indexed {count:,} entries in {elapsed}")


@app.command
def status(verbose: Verbose = False) -> None:
    """
    Show index statistics.

    Reads the saved snapshot without touching the content tree.
    """
    from .index import IndexManager

    _configure_logging(verbose)
    manager = IndexManager()

    if not manager.has_index():
        print(f"No index at {manager.index_path}", file=sys.stderr)
        print("Run 'folder-index-mcp index' to build it.", file=sys.stderr)
        sys.exit(1)

    async def load():
        await manager.service.initialize(manager.root, manager.index_path)
        return manager.get_stats(), manager.service.version

    stats, version = asyncio.run(load())

    rows = [
        ("Root", manager.root),
        ("Location", manager.index_path),
        ("Files", f"{stats.total_files:,}"),
        ("Directories", f"{stats.total_directories:,}"),
        ("Total size", _format_size(stats.total_size)),
        ("Snapshot", _format_size(manager.index_path.stat().st_size)),
        ("Version", version),
        ("Last update", _format_timestamp(stats.last_updated)),
    ]
    print("Folder Index Status")
    print("=" * 40)
    for label, value in rows:
        print(f"{label + ':':<13} {value}")


@app.command
def search(
    query: str,
    exact: Annotated[
        bool,
        cyclopts.Parameter(
            name=["--exact", "-e"],
            help="Exact name / path matching instead of fuzzy ranking",
        ),
    ] = False,
    limit: Annotated[
        int,
        cyclopts.Parameter(name=["--limit", "-n"], help="Maximum results"),
    ] = 20,
    verbose: Verbose = False,
) -> None:
    """
    Search the index.

    Supports AND, OR, NOT, parentheses and "quoted phrases".
    """
    from .index import IndexManager

    _configure_logging(verbose)
    manager = IndexManager()

    async def run():
        try:
            await manager.initialize()
            if exact:
                return manager.search(query, exact=True, limit=limit), None
            outcome = manager.query(query, limit=limit)
            return outcome.results, outcome.error
        finally:
            await manager.destroy()

    try:
        results, error = asyncio.run(run())
    except OSError as e:
        print(f"✗ Cannot read index: {e}", file=sys.stderr)
        sys.exit(1)

    if error:
        print(f"⚠ Searched literally: {error}", file=sys.stderr)

    if not results:
        print("No matches.")
        return

    for result in results:
        item = result.item
        suffix = "/" if item.is_directory else ""
        print(f"{result.score:5.3f}  {item.relative_path}{suffix}")


@app.command
def rebuild(verbose: Verbose = False) -> None:
    """
    Force rebuild the index.

    Clears existing entries and rescans the root from disk.
    """
    from .index import IndexManager

    _configure_logging(verbose)
    manager = IndexManager()
    print(f"Rebuilding index of {manager.root}...")

    async def run() -> int:
        try:
            await manager.initialize(sync=False)
            return await manager.refresh(
                progress_callback=_show_progress if verbose else None
            )
        finally:
            await manager.destroy()

    start = time.time()
    try:
        count = asyncio.run(run())
    except Exception as e:  # Broad: report any failure and exit non-zero
        print(f"\n✗ Rebuild failed: {e}", file=sys.stderr)
        sys.exit(1)

    if verbose:
        print()
    elapsed = _format_elapsed(time.time() - start)
    print(f"✓ Rebuilt {count:,} entries in {elapsed}")


@app.default
def default_handler(watch: Watch = False, verbose: Verbose = False) -> None:
    """Run the MCP server (default when no command specified)."""
    _configure_logging(verbose)
    _run_serve(watch=watch)


def main() -> None:
    """Entry point for the CLI."""
    app()
