"""Persisted, near-real-time index of a content tree.

This module provides:
- IndexManager: Main interface for building, syncing, and searching the index
- IndexService: The authoritative path -> entry map and its JSON snapshot
- IncrementalIndexer: Debounced, batched application of file changes
- FileWatcher: Real-time file watcher (watchfiles) with per-path debounce
- Fuzzy search over names and relative paths, plus boolean queries
"""

from .indexer import IncrementalIndexer, PendingChange
from .manager import IndexManager
from .schema import IndexChange, IndexEntry, IndexStats, IndexUpdateSummary
from .search import QueryResults, SearchResult
from .service import IndexService
from .watcher import FileWatcher, WatchEvent

__all__ = [
    "FileWatcher",
    "IncrementalIndexer",
    "IndexChange",
    "IndexEntry",
    "IndexManager",
    "IndexService",
    "IndexStats",
    "IndexUpdateSummary",
    "PendingChange",
    "QueryResults",
    "SearchResult",
    "WatchEvent",
]
