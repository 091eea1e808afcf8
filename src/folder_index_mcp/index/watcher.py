"""File watcher for real-time index updates.

Watches a content root for file and directory changes and reports them as
typed events, one per path per quiet period.

Uses watchfiles (Rust-based, efficient) behind a swappable backend:
- Created files and directories → ``add`` / ``add-directory``
- Modified files → ``change``
- Deleted files and directories → ``remove`` / ``remove-directory``

Everything runs on the asyncio event loop. Each path has its own debounce
timer, so a burst of writes to one file becomes a single event carrying
the latest kind.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, Protocol

from watchfiles import Change, awatch

from ..config import INDEX_CACHE_DIR
from .disk import (
    get_extension,
    is_excluded,
    matches_extension,
    scan_tree,
    to_relative,
)
from .schema import now_ms

if TYPE_CHECKING:
    from collections.abc import Callable, Collection, Iterable

    from .schema import IndexEntry

logger = logging.getLogger(__name__)

WatchEventKind = Literal[
    "add", "change", "remove", "add-directory", "remove-directory"
]
EVENT_KINDS: tuple[str, ...] = (
    "add",
    "change",
    "remove",
    "add-directory",
    "remove-directory",
)
SIGNALS: tuple[str, ...] = ("ready", "error", "warning", "stopped")

# Raw change kinds reported by backends
ADDED = "added"
MODIFIED = "modified"
DELETED = "deleted"

RawChange = tuple[str, str]  # (raw kind, absolute path)


@dataclass
class WatchEvent:
    """A debounced, filtered change to one path."""

    kind: WatchEventKind
    path: str
    relative_path: str
    is_directory: bool
    extension: str
    timestamp: int  # epoch milliseconds


class WatchBackend(Protocol):
    """Source of raw change notifications."""

    async def start(
        self,
        paths: list[str],
        on_changes: Callable[[list[RawChange]], None],
        on_fatal: Callable[[BaseException], None],
    ) -> None: ...

    async def stop(self) -> None: ...

    def add_path(self, path: str) -> None: ...

    def unwatch_path(self, path: str) -> None: ...


def _collapse(changes: Iterable[tuple[Change, str]]) -> list[RawChange]:
    """
    Reduce one watchfiles batch to a single raw change per path.

    watchfiles yields an unordered set, so a path that was both created
    and deleted within one batch is resolved against the file system.
    Paths are returned sorted, which puts parents before children.
    """
    by_path: dict[str, set[Change]] = {}
    for change, path in changes:
        by_path.setdefault(path, set()).add(change)

    raw: list[RawChange] = []
    for path in sorted(by_path):
        kinds = by_path[path]
        if len(kinds) == 1:
            kind = next(iter(kinds)).name
        elif os.path.lexists(path):
            kind = ADDED if Change.added in kinds else MODIFIED
        else:
            kind = DELETED
        raw.append((kind, path))
    return raw


class WatchfilesBackend:
    """
    WatchBackend built on ``watchfiles.awatch``.

    The awatch iterator runs as a task on the current loop. Changing the
    watched path set stops that iterator and starts a new one.
    """

    def __init__(
        self,
        *,
        force_polling: bool = False,
        poll_delay_ms: int = 300,
        debounce_ms: int = 50,
    ):
        """
        Initialize the backend.

        Args:
            force_polling: Poll the file system instead of OS notifications
            poll_delay_ms: Poll interval when polling
            debounce_ms: watchfiles' own grouping window; per-path
                debouncing happens in FileWatcher
        """
        self.force_polling = force_polling
        self.poll_delay_ms = poll_delay_ms
        self.debounce_ms = debounce_ms

        self._paths: list[str] = []
        self._on_changes: Callable[[list[RawChange]], None] | None = None
        self._on_fatal: Callable[[BaseException], None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None
        self._retired: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(
        self,
        paths: list[str],
        on_changes: Callable[[list[RawChange]], None],
        on_fatal: Callable[[BaseException], None],
    ) -> None:
        self._paths = list(dict.fromkeys(os.fspath(p) for p in paths))
        self._on_changes = on_changes
        self._on_fatal = on_fatal
        self._launch()

    def _launch(self) -> None:
        self._stop_event = asyncio.Event()
        self._task = asyncio.ensure_future(self._run(self._stop_event))

    def _restart(self) -> None:
        if self._task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        if not self._task.done():
            self._retired.add(self._task)
            self._task.add_done_callback(self._retired.discard)
        self._launch()

    async def _run(self, stop_event: asyncio.Event) -> None:
        if not self._paths:
            return

        logger.debug("Starting watch loop on %s", ", ".join(self._paths))
        try:
            async for changes in awatch(
                *self._paths,
                stop_event=stop_event,
                watch_filter=None,
                debounce=self.debounce_ms,
                step=50,
                force_polling=self.force_polling,
                poll_delay_ms=self.poll_delay_ms,
                recursive=True,
            ):
                if stop_event.is_set():
                    break
                if self._on_changes is not None:
                    self._on_changes(_collapse(changes))
        except asyncio.CancelledError:
            raise
        except Exception as e:  # Broad: reported to the watcher as fatal
            if not stop_event.is_set() and self._on_fatal is not None:
                self._on_fatal(e)

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

        tasks = [t for t in (self._task, *self._retired) if t is not None]
        self._task = None
        self._retired.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def add_path(self, path: str) -> None:
        path = os.fspath(path)
        if path in self._paths:
            return
        self._paths.append(path)
        self._restart()

    def unwatch_path(self, path: str) -> None:
        path = os.fspath(path)
        if path not in self._paths:
            return
        self._paths.remove(path)
        self._restart()


class FileWatcher:
    """
    Watches a content root and emits debounced, filtered change events.

    Handlers receive one argument: a WatchEvent for event kinds and
    ``"event"``, the exception for ``error``, a message for ``warning``,
    and None for ``ready`` and ``stopped``. Coroutine handlers run as
    tasks that stop() waits for.

    Usage:
        watcher = FileWatcher(root, extensions={".md"})
        watcher.on("add", handle_add)
        await watcher.start()
        # ... later ...
        await watcher.stop()
    """

    def __init__(
        self,
        root: str | Path,
        *,
        extensions: Collection[str] | None = None,
        exclude_dirs: Collection[str] = (),
        debounce_ms: int = 300,
        ignore_initial: bool = True,
        backend: WatchBackend | None = None,
    ):
        """
        Initialize the watcher.

        Args:
            root: Directory to watch recursively
            extensions: Allowed file extensions (None = all files)
            exclude_dirs: Directory names ignored at any depth
            debounce_ms: Per-path quiet period before an event fires
            ignore_initial: Don't emit events for what already exists
            backend: Change source (WatchfilesBackend if None)
        """
        self.root = Path(root)
        self.extensions = set(extensions) if extensions is not None else None
        self.exclude_dirs = set(exclude_dirs) | {INDEX_CACHE_DIR}
        self.debounce_ms = debounce_ms
        self.ignore_initial = ignore_initial
        self._backend: WatchBackend = backend or WatchfilesBackend()

        self._handlers: dict[str, list[Callable[[Any], Any]]] = {}
        self._pending: dict[str, tuple[WatchEvent, asyncio.TimerHandle]] = {}
        self._known_dirs: set[str] = set()
        self._extra_paths: list[str] = []
        self._tasks: set[asyncio.Task] = set()
        self._running = False
        self._ready = False

    # ─────────────────────────────────────────────────────────────────
    # Listener registration
    # ─────────────────────────────────────────────────────────────────

    def on(self, name: str, handler: Callable[[Any], Any]) -> None:
        """
        Register a handler.

        Raises:
            ValueError: If name is not an event kind, "event" or a signal
        """
        if name not in EVENT_KINDS and name not in SIGNALS and name != "event":
            raise ValueError(f"Unknown watcher event: {name!r}")
        handlers = self._handlers.setdefault(name, [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, name: str, handler: Callable[[Any], Any]) -> None:
        handlers = self._handlers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)

    def _emit(self, name: str, payload: Any = None) -> None:
        for handler in list(self._handlers.get(name, [])):
            try:
                result = handler(payload)
            except Exception as e:  # Broad: user callback
                logger.warning("Error in watcher %s handler: %s", name, e)
                continue
            if inspect.isawaitable(result):
                self._track(result)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Error in watcher task: %s", error)

    # ─────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_ready(self) -> bool:
        return self._ready

    async def start(self) -> bool:
        """
        Learn the current tree, start the backend, then emit ``ready``.

        Returns:
            True if started, False if already running or the backend
            failed to start
        """
        if self._running:
            logger.warning("File watcher already started for %s", self.root)
            self._emit("warning", "Watcher already started")
            return False

        self._running = True
        initial = await asyncio.to_thread(self._walk, self.root)
        self._known_dirs = {e.path for e in initial if e.is_directory}

        paths = [os.fspath(self.root), *self._extra_paths]
        try:
            await self._backend.start(paths, self._on_changes, self._on_fatal)
        except Exception as e:  # Broad: any backend failure is fatal
            self._on_fatal(e)
            return False

        if not self.ignore_initial:
            for entry in initial:
                kind = "add-directory" if entry.is_directory else "add"
                self._queue(
                    self._make_event(kind, entry.path, entry.is_directory)
                )

        self._ready = True
        logger.info("File watcher started for %s", self.root)
        self._emit("ready")
        return True

    def _walk(self, path: Path) -> list[IndexEntry]:
        return list(scan_tree(path, self.extensions, self.exclude_dirs))

    async def stop(self) -> None:
        """Stop watching; no event fires after this returns."""
        was_running = self._running
        self._shutdown()
        await self._backend.stop()

        if was_running:
            self._emit("stopped")
            logger.info("File watcher stopped")

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _shutdown(self) -> None:
        self._running = False
        self._ready = False
        for _, handle in self._pending.values():
            handle.cancel()
        self._pending.clear()

    def _on_fatal(self, error: BaseException) -> None:
        logger.error("File watcher failed for %s: %s", self.root, error)
        was_running = self._running
        self._shutdown()
        self._emit("error", error)
        if was_running:
            self._emit("stopped")

    # ─────────────────────────────────────────────────────────────────
    # Watched paths
    # ─────────────────────────────────────────────────────────────────

    def add_path(self, path: str | Path) -> None:
        """Watch an additional path (file or directory)."""
        path = os.fspath(path)
        if path in self._extra_paths:
            return
        self._extra_paths.append(path)
        if self._running:
            self._backend.add_path(path)

    def unwatch_path(self, path: str | Path) -> None:
        """Stop watching a path added with add_path()."""
        path = os.fspath(path)
        if path not in self._extra_paths:
            return
        self._extra_paths.remove(path)
        if self._running:
            self._backend.unwatch_path(path)

        prefix = path.rstrip(os.sep) + os.sep
        for pending in [
            p for p in self._pending if p == path or p.startswith(prefix)
        ]:
            _, handle = self._pending.pop(pending)
            handle.cancel()

    def status(self) -> dict[str, Any]:
        """Snapshot of the watcher state for status reporting."""
        return {
            "running": self._running,
            "ready": self._ready,
            "root": os.fspath(self.root),
            "paths": [os.fspath(self.root), *self._extra_paths],
            "pending_events": len(self._pending),
            "known_directories": len(self._known_dirs),
            "backend": type(self._backend).__name__,
        }

    # ─────────────────────────────────────────────────────────────────
    # Event pipeline
    # ─────────────────────────────────────────────────────────────────

    def _make_event(
        self, kind: WatchEventKind, path: str, is_directory: bool
    ) -> WatchEvent:
        return WatchEvent(
            kind=kind,
            path=path,
            relative_path=to_relative(path, self.root),
            is_directory=is_directory,
            extension="" if is_directory else get_extension(path),
            timestamp=now_ms(),
        )

    def _on_changes(self, changes: list[RawChange]) -> None:
        if not self._running:
            return
        for raw_kind, path in changes:
            try:
                event = self._classify(raw_kind, path)
            except Exception as e:  # Broad: one bad change must not stop us
                logger.warning("Cannot classify %s %s: %s", raw_kind, path, e)
                self._emit("error", e)
                continue
            if event is None:
                continue
            self._queue(event)
            if event.kind == "add-directory":
                self._track(self._expand_directory(event.path))

    def _track(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    async def _expand_directory(self, path: str) -> None:
        """
        Report what a new directory already holds.

        A directory moved or copied into the tree arrives as a single
        notification; nothing fires for the entries inside it.
        """
        entries = await asyncio.to_thread(self._walk, Path(path))
        if not self._running:
            return
        for entry in entries:
            if entry.is_directory:
                self._known_dirs.add(entry.path)
            # A queued event for the path is at least as recent as the walk
            if entry.path in self._pending:
                continue
            kind = "add-directory" if entry.is_directory else "add"
            self._queue(
                self._make_event(kind, entry.path, entry.is_directory)
            )

    def _classify(self, raw_kind: str, path: str) -> WatchEvent | None:
        """Turn a raw change into an event, or None if it is filtered."""
        if is_excluded(to_relative(path, self.root), self.exclude_dirs):
            return None

        if raw_kind == DELETED:
            # The path is gone, so only the known-directory set can tell
            if path in self._known_dirs:
                prefix = path.rstrip(os.sep) + os.sep
                self._known_dirs = {
                    d for d in self._known_dirs
                    if d != path and not d.startswith(prefix)
                }
                return self._make_event("remove-directory", path, True)
            if not matches_extension(path, self.extensions):
                return None
            return self._make_event("remove", path, False)

        if raw_kind not in (ADDED, MODIFIED):
            raise ValueError(f"Unknown change kind: {raw_kind!r}")

        if os.path.isdir(path) and not os.path.islink(path):
            if raw_kind == MODIFIED:
                return None
            self._known_dirs.add(path)
            return self._make_event("add-directory", path, True)

        if not matches_extension(path, self.extensions):
            return None
        kind: WatchEventKind = "add" if raw_kind == ADDED else "change"
        return self._make_event(kind, path, False)

    def _queue(self, event: WatchEvent) -> None:
        """(Re)start the path's debounce timer; the latest event wins."""
        previous = self._pending.pop(event.path, None)
        if previous is not None:
            previous[1].cancel()

        loop = asyncio.get_running_loop()
        handle = loop.call_later(
            self.debounce_ms / 1000, self._fire, event.path
        )
        self._pending[event.path] = (event, handle)

    def _fire(self, path: str) -> None:
        queued = self._pending.pop(path, None)
        if queued is None or not self._running:
            return
        event = queued[0]
        logger.debug("Watch event: %s %s", event.kind, event.relative_path)
        self._emit(event.kind, event)
        self._emit("event", event)


def create_watcher(
    root: str | Path,
    extensions: Collection[str] | None = None,
    exclude_dirs: Collection[str] = (),
    **kwargs: Any,
) -> FileWatcher:
    """
    Create and return a new FileWatcher.

    Args:
        root: Directory to watch
        extensions: Allowed file extensions (None = all files)
        exclude_dirs: Directory names ignored at any depth
        **kwargs: Passed through to FileWatcher

    Returns:
        Configured FileWatcher (await .start() to begin watching)
    """
    return FileWatcher(
        root, extensions=extensions, exclude_dirs=exclude_dirs, **kwargs
    )
