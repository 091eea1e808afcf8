"""IndexManager - Central interface for the folder index.

Provides:
- initialize(): load the snapshot, then reconcile it with disk
- scan() / refresh() / refresh_file(): explicit (re)indexing
- search() / query(): fuzzy, exact and boolean search
- start_watcher(): real-time updates via FileWatcher + IncrementalIndexer

Concurrency:
- get_instance() uses a class-level lock
- Everything else runs on one asyncio event loop; blocking disk work is
  pushed to worker threads by the components themselves
"""

from __future__ import annotations

import asyncio
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from ..config import (
    INDEX_CACHE_DIR,
    get_batch_ms,
    get_debounce_ms,
    get_exclude_dirs,
    get_extensions,
    get_force_polling,
    get_index_path,
    get_max_retries,
    get_root_dir,
    get_search_limit,
    get_watch_debounce_ms,
)
from .disk import (
    find_root_directory,
    is_excluded,
    matches_extension,
    scan_tree,
    stat_entry,
    to_relative,
)
from .indexer import IncrementalIndexer
from .service import IndexService
from .sync import SyncResult, sync_from_disk
from .watcher import FileWatcher, WatchfilesBackend

if TYPE_CHECKING:
    from collections.abc import Callable, Collection

    from .schema import IndexChange, IndexEntry, IndexStats, IndexUpdateSummary
    from .search import QueryResults, SearchResult

logger = logging.getLogger(__name__)


class IndexManager:
    """
    Manages the folder index of one content root.

    The root defaults to the current directory and the snapshot to
    <root>/.index-cache/index.json. Use environment variables to customize:
    - FOLDER_INDEX_ROOT: Directory to index
    - FOLDER_INDEX_PATH: Snapshot location
    - FOLDER_INDEX_EXTENSIONS / FOLDER_INDEX_EXCLUDE_DIRS: Filters

    Usage:
        manager = IndexManager.get_instance()
        await manager.initialize()
        results = manager.search("readme")
        await manager.start_watcher()
        # ... later ...
        await manager.destroy()
    """

    _instance: IndexManager | None = None
    _instance_lock = threading.Lock()

    def __init__(
        self,
        root: str | Path | None = None,
        index_path: str | Path | None = None,
        *,
        extensions: Collection[str] | None = None,
        exclude_dirs: Collection[str] | None = None,
    ):
        """
        Initialize the IndexManager.

        Args:
            root: Directory to index (uses config default if None)
            index_path: Snapshot path (uses config default if None)
            extensions: Allowed file extensions (config default if None)
            exclude_dirs: Excluded directory names (config default if None)
        """
        self._root = Path(root) if root is not None else get_root_dir()
        self._index_path = (
            Path(index_path)
            if index_path is not None
            else get_index_path(self._root)
        )
        self.extensions = (
            set(extensions) if extensions is not None else get_extensions()
        )
        self.exclude_dirs = (
            set(exclude_dirs)
            if exclude_dirs is not None
            else get_exclude_dirs()
        )
        self.exclude_dirs.add(INDEX_CACHE_DIR)

        self._service = IndexService(default_search_limit=get_search_limit())
        self._indexer: IncrementalIndexer | None = None
        self._watcher: FileWatcher | None = None
        self._listener: Callable[[list[IndexChange]], None] | None = None
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @classmethod
    def get_instance(cls) -> IndexManager:
        """Get the singleton IndexManager instance (thread-safe)."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = IndexManager()
            return cls._instance

    @property
    def root(self) -> Path:
        return self._root

    @property
    def index_path(self) -> Path:
        """Get the snapshot file path."""
        return self._index_path

    @property
    def service(self) -> IndexService:
        return self._service

    @property
    def indexer(self) -> IncrementalIndexer | None:
        return self._indexer

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def has_index(self) -> bool:
        """Check if a snapshot file exists."""
        return self._index_path.exists()

    # ─────────────────────────────────────────────────────────────────
    # Building
    # ─────────────────────────────────────────────────────────────────

    async def initialize(self, sync: bool = True) -> None:
        """
        Load the snapshot and bring it up to date with disk.

        An empty index gets a full scan; a loaded one is reconciled with
        sync_updates() unless ``sync`` is False. Safe to call repeatedly.

        Raises:
            FileNotFoundError: If the root doesn't exist
            NotADirectoryError: If the root is a file
            PermissionError: If the root cannot be listed
        """
        async with self._init_lock:
            if self._initialized:
                return

            self._root = find_root_directory(self._root)
            await self._service.initialize(self._root, self._index_path)

            if self._service.size == 0:
                logger.info("Index is empty, scanning %s", self._root)
                await self.scan()
            elif sync:
                await self.sync_updates()

            self._initialized = True

    async def scan(
        self,
        progress_callback: Callable[[int, int | None, str], None] | None = None,
    ) -> IndexUpdateSummary:
        """
        Walk the root and upsert every indexable entry.

        Args:
            progress_callback: Optional callback(current, total, message)

        Returns:
            IndexUpdateSummary of the upsert
        """
        if progress_callback:
            progress_callback(0, None, f"Scanning {self._root}...")

        entries = await asyncio.to_thread(self._scan_entries)

        if progress_callback:
            msg = f"Indexing {len(entries)} entries..."
            progress_callback(0, len(entries), msg)

        summary = await self._service.add_or_update_batch(entries)
        logger.info(
            "Scanned %s: %d added, %d updated, %d unchanged",
            self._root,
            summary.added,
            summary.updated,
            summary.unchanged,
        )

        if progress_callback:
            progress_callback(len(entries), len(entries), "Scan complete")
        return summary

    def _scan_entries(self) -> list[IndexEntry]:
        return list(scan_tree(self._root, self.extensions, self.exclude_dirs))

    async def sync_updates(
        self,
        progress_callback: Callable[[int, int | None, str], None] | None = None,
    ) -> int:
        """
        Sync the index with disk using state reconciliation.

        Returns:
            Number of changes (added + deleted + updated)
        """
        result: SyncResult = await sync_from_disk(
            self._service,
            self._root,
            self.extensions,
            self.exclude_dirs,
            progress_callback,
        )
        return result.total_changes

    async def refresh(
        self,
        progress_callback: Callable[[int, int | None, str], None] | None = None,
    ) -> int:
        """
        Force a rebuild: drop every entry, rescan, persist.

        Returns:
            Number of entries indexed
        """
        self._service.clear()
        await self.scan(progress_callback)
        await self._service.save()
        return self._service.size

    async def refresh_file(self, path: str | Path) -> IndexEntry | None:
        """
        Re-read one path from disk and update the index.

        A path that vanished, or that the filters exclude, is removed.

        Returns:
            The fresh entry, or None if the path is not indexable
        """
        path = str(Path(path).absolute())
        relative = to_relative(path, self._root)

        try:
            entry = await asyncio.to_thread(stat_entry, path, self._root)
        except OSError as e:
            logger.debug("Cannot refresh %s: %s", path, e)
            await self._service.remove(path)
            return None

        excluded = is_excluded(relative, self.exclude_dirs)
        if excluded or not (
            entry.is_directory or matches_extension(path, self.extensions)
        ):
            await self._service.remove(path)
            return None

        await self._service.add_or_update_batch([entry])
        return entry

    # ─────────────────────────────────────────────────────────────────
    # Searching
    # ─────────────────────────────────────────────────────────────────

    def search(
        self,
        query: str,
        *,
        fuzzy: bool = True,
        exact: bool = False,
        limit: int | None = None,
    ) -> list[SearchResult]:
        """
        Search indexed entries by name and relative path.

        Args:
            query: Search text
            fuzzy: Fuzzy ranking (default)
            exact: Case-normalized exact matching instead
            limit: Maximum results (FOLDER_INDEX_SEARCH_LIMIT if None)

        Returns:
            List of SearchResult, best first
        """
        return self._service.search(
            query, fuzzy=fuzzy, exact=exact, limit=limit
        )

    def query(self, query: str, *, limit: int | None = None) -> QueryResults:
        """Run a boolean query (AND / OR / NOT, groups, quoted phrases)."""
        return self._service.query(query, limit=limit)

    def get_stats(self) -> IndexStats:
        """
        Get index statistics.

        Returns:
            IndexStats with file/directory counts, total size, last update
        """
        return self._service.get_stats()

    # ─────────────────────────────────────────────────────────────────
    # File Watcher Methods
    # ─────────────────────────────────────────────────────────────────

    async def start_watcher(
        self,
        on_update: Callable[[list[IndexChange]], None] | None = None,
    ) -> bool:
        """
        Start the file watcher for real-time index updates.

        Args:
            on_update: Optional callback(changes) called after each
                       applied batch of changes

        Returns:
            True if watcher started, False if already running or failed
        """
        if self.watcher_running:
            return False

        watcher = FileWatcher(
            self._root,
            extensions=self.extensions,
            exclude_dirs=self.exclude_dirs,
            debounce_ms=get_watch_debounce_ms(),
            backend=WatchfilesBackend(force_polling=get_force_polling()),
        )
        indexer = IncrementalIndexer(
            self._service,
            self._root,
            debounce_ms=get_debounce_ms(),
            batch_ms=get_batch_ms(),
            max_retries=get_max_retries(),
        )
        indexer.attach(watcher)

        if not await watcher.start():
            await indexer.destroy()
            return False

        self._watcher = watcher
        self._indexer = indexer
        if on_update is not None:
            self._listener = on_update
            self._service.add_listener(on_update)
        return True

    async def stop_watcher(self) -> None:
        """Stop the file watcher and apply what it already reported."""
        if self._watcher is not None:
            await self._watcher.stop()
            self._watcher = None
        if self._indexer is not None:
            await self._indexer.destroy()
        if self._listener is not None:
            self._service.remove_listener(self._listener)
            self._listener = None

    @property
    def watcher_running(self) -> bool:
        """Check if the file watcher is running."""
        return self._watcher is not None and self._watcher.is_running

    def watcher_status(self) -> dict | None:
        return self._watcher.status() if self._watcher is not None else None

    async def destroy(self) -> None:
        """Stop watching, write a final snapshot, release state."""
        await self.stop_watcher()
        await self._service.destroy()
        self._initialized = False
