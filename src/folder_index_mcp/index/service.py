"""IndexService - the authoritative path -> entry map.

Provides:
- initialize(): seed from the JSON snapshot (any failure starts empty)
- add_or_update() / add_or_update_batch() / remove(): mutations
- search(): exact or fuzzy search; query(): boolean queries
- get_stats() / verify_stats(): counters and their self-check

Persistence is best-effort: a dirty flag gates writes, a failed write is
logged and retried after the next mutation, and memory is never rolled
back. All mutations run on the event loop thread, so the entry map needs
no lock; only snapshot writes are serialized.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from statistics import fmean
from typing import TYPE_CHECKING

from ..config import INDEX_CACHE_DIR, INDEX_FILE_NAME
from ..query import Term, evaluate_query, parse_search_query, positive_terms
from .schema import (
    INITIAL_VERSION,
    IndexChange,
    IndexEntry,
    IndexSnapshot,
    IndexStats,
    IndexUpdateSummary,
    now_ms,
    read_snapshot,
    write_snapshot,
)
from .search import (
    DEFAULT_THRESHOLD,
    FuzzyIndex,
    QueryResults,
    SearchResult,
    exact_search,
    make_entry_matcher,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)


class IndexService:
    """
    Holds index entries in memory, persists them, and searches them.

    Usage:
        service = IndexService()
        await service.initialize(root)
        await service.add_or_update_batch(entries)
        results = service.search("readme")
        await service.destroy()
    """

    def __init__(
        self,
        *,
        include_directories: bool = True,
        default_search_limit: int = 20,
        threshold: float = DEFAULT_THRESHOLD,
        case_sensitive: bool = False,
        persist_delay_ms: int = 0,
    ):
        """
        Initialize an empty service.

        Args:
            include_directories: Whether directories are search candidates
            default_search_limit: Limit used when search() gets none
            threshold: Maximum fuzzy score (0 perfect, 1 no match)
            case_sensitive: Case-sensitive fuzzy matching
            persist_delay_ms: Delay before a scheduled snapshot write
        """
        self.include_directories = include_directories
        self.default_search_limit = default_search_limit
        self.threshold = threshold
        self.case_sensitive = case_sensitive
        self.persist_delay_ms = persist_delay_ms

        self.root: Path | None = None
        self.snapshot_path: Path | None = None
        self.version = INITIAL_VERSION

        self._entries: dict[str, IndexEntry] = {}
        self._stats = IndexStats()
        self._fuzzy: FuzzyIndex | None = None
        self._listeners: list[Callable[[list[IndexChange]], None]] = []
        self._dirty = False

        self._save_lock = asyncio.Lock()
        self._save_handle: asyncio.TimerHandle | None = None
        self._save_tasks: set[asyncio.Task] = set()

    # ─────────────────────────────────────────────────────────────────
    # Lifecycle & persistence
    # ─────────────────────────────────────────────────────────────────

    async def initialize(
        self, root: str | Path, snapshot_path: str | Path | None = None
    ) -> None:
        """
        Bind the service to a root and load its snapshot if present.

        Load failures are never fatal: the service starts empty.
        """
        self.root = Path(root)
        self.snapshot_path = (
            Path(snapshot_path)
            if snapshot_path is not None
            else self.root / INDEX_CACHE_DIR / INDEX_FILE_NAME
        )

        if await self.load():
            logger.info(
                "Loaded %d entries from %s", self.size, self.snapshot_path
            )
        else:
            self._rebuild_fuzzy()

    async def load(self) -> bool:
        """Replace in-memory state with the snapshot. Returns success."""
        if self.snapshot_path is None:
            return False

        try:
            snapshot = await asyncio.to_thread(
                read_snapshot, self.snapshot_path
            )
        except FileNotFoundError:
            logger.info(
                "No existing index at %s, will build from scratch",
                self.snapshot_path,
            )
            return False
        except (OSError, ValueError) as e:
            logger.warning(
                "Could not load index from %s, starting empty: %s",
                self.snapshot_path,
                e,
            )
            return False

        self._entries = {entry.path: entry for entry in snapshot.entries}
        folded = IndexStats.from_entries(
            self._entries.values(),
            last_updated=snapshot.stats.last_updated or snapshot.last_updated,
        )
        if folded.counters() != snapshot.stats.counters():
            logger.warning(
                "Snapshot stats %s disagree with entries %s; using entries",
                snapshot.stats.counters(),
                folded.counters(),
            )
        self._stats = folded
        self.version = snapshot.version
        self._dirty = False
        self._rebuild_fuzzy()
        return True

    def _snapshot(self) -> IndexSnapshot:
        return IndexSnapshot(
            entries=list(self._entries.values()),
            stats=IndexStats(**vars(self._stats)),
            version=self.version,
            last_updated=self._stats.last_updated,
        )

    async def save(self) -> bool:
        """
        Write the snapshot if anything changed since the last write.

        Returns:
            True if a snapshot was written
        """
        if self.snapshot_path is None or not self._dirty:
            return False

        async with self._save_lock:
            if not self._dirty:
                return False

            # Capture on the loop thread; the worker only serializes
            payload = self._snapshot().to_dict()
            self._dirty = False
            try:
                await asyncio.to_thread(
                    write_snapshot, self.snapshot_path, payload
                )
            except (OSError, TypeError, ValueError) as e:
                self._dirty = True
                logger.error(
                    "Failed to save index to %s: %s", self.snapshot_path, e
                )
                return False

        logger.debug(
            "Saved %d entries to %s",
            len(payload["entries"]),
            self.snapshot_path,
        )
        return True

    def _schedule_save(self) -> None:
        """Schedule a snapshot write on the running loop, if there is one."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the dirty flag makes the next save() write it
            return

        if self._save_handle is not None:
            self._save_handle.cancel()
        self._save_handle = loop.call_later(
            self.persist_delay_ms / 1000, self._start_save
        )

    def _start_save(self) -> None:
        self._save_handle = None
        task = asyncio.ensure_future(self.save())
        self._save_tasks.add(task)
        task.add_done_callback(self._save_tasks.discard)

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    async def destroy(self) -> None:
        """Cancel the pending write, flush a final snapshot, drop state."""
        if self._save_handle is not None:
            self._save_handle.cancel()
            self._save_handle = None
        if self._save_tasks:
            await asyncio.gather(*self._save_tasks, return_exceptions=True)

        await self.save()

        self._listeners.clear()
        self._entries.clear()
        self._stats = IndexStats()
        self._fuzzy = None

    # ─────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────

    def _is_candidate(self, entry: IndexEntry) -> bool:
        return self.include_directories or not entry.is_directory

    def _rebuild_fuzzy(self) -> None:
        self._fuzzy = FuzzyIndex(
            (e for e in self._entries.values() if self._is_candidate(e)),
            threshold=self.threshold,
            case_sensitive=self.case_sensitive,
        )

    def _get_fuzzy(self) -> FuzzyIndex:
        if self._fuzzy is None:
            self._rebuild_fuzzy()
        return self._fuzzy

    def _touch(self) -> None:
        self._stats.last_updated = now_ms()
        self._dirty = True

    def _upsert(self, entry: IndexEntry) -> str:
        """Insert or replace one entry; returns added/updated/unchanged."""
        existing = self._entries.get(entry.path)
        if existing == entry:
            return "unchanged"

        if existing is not None:
            self._stats.apply(existing, -1)
        self._stats.apply(entry)
        self._entries[entry.path] = entry

        fuzzy = self._get_fuzzy()
        if self._is_candidate(entry):
            fuzzy.add([entry])
        else:
            fuzzy.remove(entry.path)

        return "added" if existing is None else "updated"

    def add_or_update(self, entry: IndexEntry) -> None:
        """Upsert one entry and schedule persistence."""
        outcome = self._upsert(entry)
        if outcome == "unchanged":
            return

        self._touch()
        self._schedule_save()
        kind = "add" if outcome == "added" else "change"
        self._notify([IndexChange(kind=kind, path=entry.path, entry=entry)])

    async def add_or_update_batch(
        self, entries: Iterable[IndexEntry]
    ) -> IndexUpdateSummary:
        """
        Upsert many entries, notify once, then persist.

        Returns:
            IndexUpdateSummary with added/updated/unchanged counts
        """
        summary = IndexUpdateSummary()
        changes: list[IndexChange] = []

        for entry in entries:
            outcome = self._upsert(entry)
            if outcome == "unchanged":
                summary.unchanged += 1
                continue
            if outcome == "added":
                summary.added += 1
                changes.append(IndexChange("add", entry.path, entry))
            else:
                summary.updated += 1
                changes.append(IndexChange("change", entry.path, entry))

        if changes:
            self._touch()
            self.version += 1
            self._notify(changes)
            await self.save()

        return summary

    def _remove_entries(self, path: str) -> list[IndexEntry]:
        entry = self._entries.pop(path, None)
        if entry is None:
            return []

        removed = [entry]
        if entry.is_directory:
            prefix = path.rstrip(os.sep) + os.sep
            for child in [p for p in self._entries if p.startswith(prefix)]:
                removed.append(self._entries.pop(child))

        fuzzy = self._get_fuzzy()
        for item in removed:
            self._stats.apply(item, -1)
            fuzzy.remove(item.path)
        return removed

    async def remove(self, path: str) -> int:
        """
        Remove an entry (and, for a directory, everything beneath it).

        A path that is not indexed is a no-op.

        Returns:
            Number of entries removed
        """
        removed = self._remove_entries(path)
        if not removed:
            return 0

        self._touch()
        self.version += 1
        self._notify([IndexChange("remove", item.path) for item in removed])
        await self.save()
        return len(removed)

    def clear(self) -> None:
        """Drop every entry (the next save writes an empty snapshot)."""
        self._entries.clear()
        self._fuzzy = None
        self._stats = IndexStats(last_updated=now_ms())
        self.version += 1
        self._dirty = True

    # ─────────────────────────────────────────────────────────────────
    # Queries
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
        Search entries by name and relative path.

        Args:
            query: Search text; blank queries return nothing
            fuzzy: Rank with the fuzzy engine (default)
            exact: Case-normalized name / path-substring matching instead
            limit: Maximum results (default_search_limit if None)

        Returns:
            List of SearchResult, best first
        """
        if not query or not query.strip():
            return []

        if limit is None:
            limit = self.default_search_limit

        if exact or not fuzzy:
            candidates = (
                e for e in self._entries.values() if self._is_candidate(e)
            )
            return exact_search(candidates, query, limit)

        return self._get_fuzzy().search(query, limit)

    def query(self, query: str, *, limit: int | None = None) -> QueryResults:
        """
        Run a boolean query (AND/OR/NOT, parentheses, quoted phrases).

        Logical queries filter every entry through the evaluator and rank
        the survivors by the mean fuzzy score of the query's positive
        terms. Anything else is an ordinary search. A malformed query is
        searched literally and its parse error is logged and returned.
        """
        parsed = parse_search_query(query)
        if parsed.ast is None:
            return QueryResults(results=[], parsed=parsed)

        if parsed.error:
            logger.warning(
                "Query %r is not a valid boolean query (%s); "
                "searching it literally",
                query,
                parsed.error,
            )

        if limit is None:
            limit = self.default_search_limit

        term = parsed.ast
        if not parsed.is_logical_query and isinstance(term, Term):
            results = self.search(term.value, exact=term.exact, limit=limit)
            return QueryResults(results=results, parsed=parsed)

        fuzzy = self._get_fuzzy()
        matcher = make_entry_matcher(fuzzy)
        ranking_terms = positive_terms(parsed.ast)

        def rank(entry: IndexEntry) -> float:
            if not ranking_terms:
                return 1.0
            scores = []
            for term in ranking_terms:
                if term.exact:
                    hit = matcher(term.value, entry, True)
                    scores.append(0.0 if hit else 1.0)
                else:
                    scores.append(fuzzy.score_entry(term.value, entry)[0])
            return fmean(scores)

        results = [
            SearchResult(item=entry, score=rank(entry))
            for entry in self._entries.values()
            if self._is_candidate(entry)
            and evaluate_query(parsed.ast, entry, matcher)
        ]
        results.sort(key=lambda r: (r.score, len(r.item.relative_path)))
        return QueryResults(results=results[:limit], parsed=parsed)

    # ─────────────────────────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────────────────────────

    @property
    def size(self) -> int:
        return len(self._entries)

    def get_entry(self, path: str) -> IndexEntry | None:
        return self._entries.get(path)

    def get_all_entries(self) -> list[IndexEntry]:
        return list(self._entries.values())

    def get_stats(self) -> IndexStats:
        """Return a copy of the current counters."""
        return IndexStats(**vars(self._stats))

    def verify_stats(self) -> bool:
        """True if the incremental counters equal a fresh fold."""
        folded = IndexStats.from_entries(self._entries.values())
        if folded.counters() == self._stats.counters():
            return True
        logger.warning(
            "Index stats drifted: counted %s, entries say %s",
            self._stats.counters(),
            folded.counters(),
        )
        return False

    # ─────────────────────────────────────────────────────────────────
    # Listeners
    # ─────────────────────────────────────────────────────────────────

    def add_listener(
        self, listener: Callable[[list[IndexChange]], None]
    ) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(
        self, listener: Callable[[list[IndexChange]], None]
    ) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, changes: list[IndexChange]) -> None:
        for listener in list(self._listeners):
            try:
                listener(changes)
            except Exception as e:  # Broad: user callback
                logger.warning("Error in index listener: %s", e)
