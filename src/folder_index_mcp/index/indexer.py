"""Incremental indexer: turns watcher events into index updates.

Changes are resolved to metadata as they arrive, coalesced per path (the
latest change wins) and applied in batches:

    change ─► debounce timer ─► batch timer ─► add_or_update_batch / remove

Each new change restarts the debounce timer; when the debounce timer
fires it restarts the batch timer, so a steady stream of changes is
applied once things go quiet. Only one batch is applied at a time.

Failed changes are re-queued with a retry count. A change that keeps
failing is dropped after ``max_retries`` retries and counted in
``missed_updates``; failures never propagate to the caller.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from .disk import stat_entry
from .schema import IndexUpdateSummary

if TYPE_CHECKING:
    from .schema import IndexEntry
    from .service import IndexService
    from .watcher import FileWatcher, WatchEvent

logger = logging.getLogger(__name__)

PendingKind = Literal[
    "add", "change", "remove", "add-directory", "remove-directory"
]

FILE_KINDS = ("add", "change", "remove")
DIRECTORY_KINDS = ("add-directory", "remove-directory")
REMOVAL_KINDS = ("remove", "remove-directory")

# Event names used by other watchers, accepted as aliases
KIND_ALIASES = {
    "unlink": "remove",
    "addDir": "add-directory",
    "unlinkDir": "remove-directory",
}


@dataclass
class PendingChange:
    """A queued change for one path."""

    kind: PendingKind
    path: str
    entry: IndexEntry | None = None
    retry_count: int = 0

    @property
    def is_removal(self) -> bool:
        return self.kind in REMOVAL_KINDS


class IncrementalIndexer:
    """
    Applies file system changes to an IndexService.

    Usage:
        indexer = IncrementalIndexer(service, root)
        indexer.attach(watcher)
        # ... changes flow in ...
        await indexer.flush()
        await indexer.destroy()
    """

    def __init__(
        self,
        service: IndexService,
        root: str | Path,
        *,
        debounce_ms: int = 300,
        batch_ms: int = 1000,
        max_retries: int = 3,
    ):
        """
        Initialize the indexer.

        Args:
            service: Index to update
            root: Content root (relative paths are computed against it)
            debounce_ms: Quiet period after the latest change
            batch_ms: Additional window before a batch is applied
            max_retries: Retries before a failing change is dropped
        """
        self.service = service
        self.root = Path(root)
        self.debounce_ms = debounce_ms
        self.batch_ms = batch_ms
        self.max_retries = max_retries
        self.missed_updates = 0

        self._pending: dict[str, PendingChange] = {}
        self._tickets = itertools.count(1)
        self._latest: dict[str, int] = {}
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._batch_handle: asyncio.TimerHandle | None = None
        self._batch_task: asyncio.Task | None = None
        self._processing = False
        self._destroyed = False
        self._watcher: FileWatcher | None = None

    # ─────────────────────────────────────────────────────────────────
    # Intake
    # ─────────────────────────────────────────────────────────────────

    async def handle_change(self, kind: str, path: str) -> None:
        """
        Queue a file change (``add``, ``change`` or ``remove``).

        Directory kinds are forwarded to handle_directory_change().

        Raises:
            ValueError: If the kind is unknown
        """
        kind = KIND_ALIASES.get(kind, kind)
        if kind in DIRECTORY_KINDS:
            await self.handle_directory_change(kind, path)
            return
        if kind not in FILE_KINDS:
            raise ValueError(f"Unknown change kind: {kind!r}")
        await self._intake(kind, path)

    async def handle_directory_change(self, kind: str, path: str) -> None:
        """
        Queue a directory change (``add-directory`` or ``remove-directory``).

        Raises:
            ValueError: If the kind is unknown
        """
        kind = KIND_ALIASES.get(kind, kind)
        if kind not in DIRECTORY_KINDS:
            raise ValueError(f"Unknown directory change kind: {kind!r}")
        await self._intake(kind, path)

    async def _intake(self, kind: PendingKind, path: str) -> None:
        if self._destroyed:
            return

        ticket = next(self._tickets)
        self._latest[path] = ticket

        entry = None
        if kind not in REMOVAL_KINDS:
            try:
                entry = await asyncio.to_thread(stat_entry, path, self.root)
            except OSError as e:
                # Vanished before we could look at it; a removal will follow
                logger.debug("Dropping %s for %s: %s", kind, path, e)
                if self._latest.get(path) == ticket:
                    del self._latest[path]
                return

        # A newer change for this path arrived while we were resolving
        if self._latest.get(path) != ticket:
            return
        del self._latest[path]

        self._enqueue(PendingChange(kind=kind, path=path, entry=entry))

    def _enqueue(self, change: PendingChange) -> None:
        if self._destroyed:
            return
        self._pending[change.path] = change
        self._schedule()

    # ─────────────────────────────────────────────────────────────────
    # Watcher wiring
    # ─────────────────────────────────────────────────────────────────

    def attach(self, watcher: FileWatcher) -> None:
        """Subscribe to every change event of a FileWatcher."""
        self.detach()
        watcher.on("event", self._on_watch_event)
        self._watcher = watcher

    def detach(self) -> None:
        if self._watcher is not None:
            self._watcher.off("event", self._on_watch_event)
            self._watcher = None

    async def _on_watch_event(self, event: WatchEvent) -> None:
        if event.is_directory:
            await self.handle_directory_change(event.kind, event.path)
        else:
            await self.handle_change(event.kind, event.path)

    # ─────────────────────────────────────────────────────────────────
    # Timers
    # ─────────────────────────────────────────────────────────────────

    def _schedule(self) -> None:
        """Restart the debounce timer."""
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(
            self.debounce_ms / 1000, self._on_debounce
        )

    def _on_debounce(self) -> None:
        self._debounce_handle = None
        if self._batch_handle is not None:
            self._batch_handle.cancel()
        loop = asyncio.get_running_loop()
        self._batch_handle = loop.call_later(
            self.batch_ms / 1000, self._start_batch
        )

    def _start_batch(self) -> None:
        self._batch_handle = None
        # A running batch reschedules itself when it finishes
        if self._processing or not self._pending:
            return
        self._batch_task = asyncio.ensure_future(self._process_pending())

    def _cancel_timers(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        if self._batch_handle is not None:
            self._batch_handle.cancel()
            self._batch_handle = None

    # ─────────────────────────────────────────────────────────────────
    # Processing
    # ─────────────────────────────────────────────────────────────────

    async def _process_pending(self) -> None:
        """Apply everything queued so far as one batch."""
        if self._processing or not self._pending:
            return

        self._processing = True
        batch, self._pending = self._pending, {}
        try:
            await self._apply(batch)
        finally:
            self._processing = False

        # Changes that arrived mid-batch (or were re-queued) get a new cycle
        if self._pending and not self._destroyed:
            self._schedule()

    async def _apply(
        self, batch: dict[str, PendingChange]
    ) -> IndexUpdateSummary:
        upserts = [c for c in batch.values() if not c.is_removal]
        removals = [c for c in batch.values() if c.is_removal]
        failed: list[PendingChange] = []
        summary = IndexUpdateSummary()

        if upserts:
            try:
                summary = await self.service.add_or_update_batch(
                    [c.entry for c in upserts if c.entry is not None]
                )
            except Exception as e:  # Broad: failures are retried
                logger.warning(
                    "Failed to apply %d index updates: %s", len(upserts), e
                )
                failed.extend(upserts)

        for change in removals:
            try:
                summary.removed += await self.service.remove(change.path)
            except Exception as e:  # Broad: failures are retried
                logger.warning("Failed to remove %s: %s", change.path, e)
                failed.append(change)

        logger.debug(
            "Applied batch: +%d ~%d -%d =%d (%d failed)",
            summary.added,
            summary.updated,
            summary.removed,
            summary.unchanged,
            len(failed),
        )
        for change in failed:
            self._requeue(change)
        return summary

    def _requeue(self, change: PendingChange) -> None:
        if change.path in self._pending:
            # A newer change for the path supersedes the failed one
            return

        change.retry_count += 1
        if change.retry_count > self.max_retries:
            self.missed_updates += 1
            logger.warning(
                "Giving up on %s for %s after %d retries",
                change.kind,
                change.path,
                self.max_retries,
            )
            return

        self._pending[change.path] = change

    # ─────────────────────────────────────────────────────────────────
    # Control
    # ─────────────────────────────────────────────────────────────────

    async def flush(self) -> None:
        """Apply pending changes now, after any batch already running."""
        self._cancel_timers()
        if self._batch_task is not None and not self._batch_task.done():
            await self._batch_task
        self._cancel_timers()
        await self._process_pending()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def get_pending_count(self) -> int:
        return self.pending_count

    async def destroy(self) -> None:
        """Detach, flush what is pending, and stop accepting changes."""
        self.detach()
        await self.flush()
        self._destroyed = True
        self._cancel_timers()
        self._pending.clear()
        self._latest.clear()
