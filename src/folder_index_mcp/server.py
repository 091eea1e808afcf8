"""
Folder Index MCP Server

Provides MCP tools for searching a persisted index of a content tree.
The index is loaded (and reconciled with disk) when the server starts;
with watching enabled it stays current as files change.

TOOLS (4 total):
- search(query, exact?, fuzzy?, limit?) - Fuzzy, exact or boolean search
- get_stats() - Index statistics
- refresh() - Rebuild the index from disk
- refresh_file(path) - Re-read a single path
"""

from __future__ import annotations

import sys
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastmcp import FastMCP
from typing_extensions import TypedDict

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .index import IndexManager
    from .index.schema import IndexChange
    from .index.search import SearchResult

# Set by the CLI before mcp.run()
_watch_on_start = False


def configure(watch: bool = False) -> None:
    """Choose whether the server starts the file watcher."""
    global _watch_on_start
    _watch_on_start = watch


# ========== Helper Functions ==========


def _get_index_manager() -> IndexManager:
    """Get the IndexManager singleton, lazily imported."""
    from .index import IndexManager

    return IndexManager.get_instance()


async def _get_ready_manager() -> IndexManager:
    """Get the IndexManager, loading the index on first use."""
    manager = _get_index_manager()
    await manager.initialize()
    return manager


def _on_index_update(changes: list[IndexChange]) -> None:
    added = sum(1 for c in changes if c.kind == "add")
    updated = sum(1 for c in changes if c.kind == "change")
    removed = sum(1 for c in changes if c.kind == "remove")
    print(
        f"Index updated: +{added} ~{updated} -{removed}",
        file=sys.stderr,
    )


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Load the index at startup; write the final snapshot at shutdown."""
    manager = _get_index_manager()

    try:
        print("Loading index...", file=sys.stderr, flush=True)
        start = time.time()
        await manager.initialize()
        elapsed = time.time() - start
        stats = manager.get_stats()
        print(
            f"Index ready: {stats.total_files:,} files, "
            f"{stats.total_directories:,} directories ({elapsed:.1f}s)",
            file=sys.stderr,
        )
    except OSError as e:
        print(f"Warning: Index unavailable: {e}", file=sys.stderr)

    if _watch_on_start and manager.is_initialized:
        if await manager.start_watcher(on_update=_on_index_update):
            print("File watcher started", file=sys.stderr)
        else:
            print("Warning: Could not start file watcher", file=sys.stderr)

    try:
        yield
    finally:
        await manager.destroy()


mcp = FastMCP("Folder Index", lifespan=lifespan)


# ========== Response Type Definitions ==========


class SearchHit(TypedDict, total=False):
    """One matching index entry."""

    path: str
    relative_path: str
    name: str
    kind: str
    extension: str
    size: int
    modified_at: str
    score: float
    matched_in: list[str]


class SearchResponse(TypedDict):
    """Result of a search, with how the query was understood."""

    results: list[SearchHit]
    is_logical_query: bool
    terms: list[str]
    error: str | None


class IndexStatus(TypedDict):
    """Index statistics and health."""

    root: str
    index_path: str
    total_files: int
    total_directories: int
    total_size: int
    last_updated: int
    version: int
    watcher_running: bool
    pending_changes: int
    missed_updates: int


class RefreshResult(TypedDict):
    """Outcome of a rebuild."""

    entries: int
    elapsed_seconds: float


def _to_hit(result: SearchResult) -> SearchHit:
    item = result.item
    hit: SearchHit = {
        "path": item.path,
        "relative_path": item.relative_path,
        "name": item.name,
        "kind": item.kind,
        "extension": item.extension,
        "size": item.size,
        "modified_at": item.modified_at.isoformat(),
        "score": round(result.score, 3),
    }
    if result.matches:
        hit["matched_in"] = [m.key for m in result.matches]
    return hit


# ========== Tools ==========


@mcp.tool
async def search(
    query: str,
    exact: bool = False,
    fuzzy: bool = True,
    limit: int = 20,
) -> SearchResponse:
    """
    Search indexed files and directories by name and path.

    Plain queries are fuzzy-matched against file names and paths. Queries
    may also combine terms with AND, OR, NOT and parentheses, and quote
    phrases for exact matching.

    Args:
        query: Search text or boolean query
        exact: Case-insensitive exact matching (name equals the query, or
            the relative path contains it) instead of fuzzy ranking
        fuzzy: Set False for exact matching (same as exact=True)
        limit: Maximum results (default: 20)

    Returns:
        Matching entries, best first. ``error`` explains why a malformed
        boolean query was searched literally.

    Examples:
        >>> search("readme")
        >>> search("guide AND NOT draft")
        >>> search('"api reference" OR (react AND tutorial)')
        >>> search("docs/setup", exact=True)
    """
    manager = await _get_ready_manager()

    if exact or not fuzzy:
        results = manager.search(query, exact=True, limit=limit)
        return {
            "results": [_to_hit(r) for r in results],
            "is_logical_query": False,
            "terms": [query.strip()] if query.strip() else [],
            "error": None,
        }

    outcome = manager.query(query, limit=limit)
    return {
        "results": [_to_hit(r) for r in outcome.results],
        "is_logical_query": outcome.parsed.is_logical_query,
        "terms": outcome.parsed.terms,
        "error": outcome.error,
    }


@mcp.tool
async def get_stats() -> IndexStatus:
    """
    Get index statistics.

    Returns:
        File and directory counts, total size in bytes, last update time
        (epoch milliseconds) and watcher health.
    """
    manager = await _get_ready_manager()
    stats = manager.get_stats()
    indexer = manager.indexer
    return {
        "root": str(manager.root),
        "index_path": str(manager.index_path),
        "total_files": stats.total_files,
        "total_directories": stats.total_directories,
        "total_size": stats.total_size,
        "last_updated": stats.last_updated,
        "version": manager.service.version,
        "watcher_running": manager.watcher_running,
        "pending_changes": indexer.pending_count if indexer else 0,
        "missed_updates": indexer.missed_updates if indexer else 0,
    }


@mcp.tool
async def refresh() -> RefreshResult:
    """
    Rebuild the index from disk.

    Use when results look stale, e.g. after bulk changes made while the
    server was not watching.

    Returns:
        Number of indexed entries and how long the rebuild took
    """
    manager = await _get_ready_manager()
    start = time.time()
    count = await manager.refresh()
    return {
        "entries": count,
        "elapsed_seconds": round(time.time() - start, 3),
    }


@mcp.tool
async def refresh_file(path: str) -> SearchHit | None:
    """
    Re-read one file or directory from disk.

    Args:
        path: Absolute path inside the indexed root

    Returns:
        The refreshed entry, or None if the path no longer exists or is
        not indexable (it is removed from the index in that case)
    """
    manager = await _get_ready_manager()
    entry = await manager.refresh_file(path)
    if entry is None:
        return None
    return {
        "path": entry.path,
        "relative_path": entry.relative_path,
        "name": entry.name,
        "kind": entry.kind,
        "extension": entry.extension,
        "size": entry.size,
        "modified_at": entry.modified_at.isoformat(),
    }


if __name__ == "__main__":
    mcp.run()
