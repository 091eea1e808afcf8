"""Direct disk access for the folder index.

Provides:
- stat_entry(): resolve current metadata for one path (lstat based)
- scan_tree(): walk a content tree and yield indexable entries
- get_disk_inventory(): path -> entry map used for reconciliation
- Filtering predicates shared with the file watcher

Tree layout assumptions: anything under a directory whose *name* is in
the exclude set is invisible, at any depth. Directories are never
extension-filtered; files and symbolic links are.
"""

from __future__ import annotations

import logging
import os
import stat
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from .schema import EntryKind, IndexEntry

if TYPE_CHECKING:
    from collections.abc import Collection, Iterator

logger = logging.getLogger(__name__)


def find_root_directory(root: Path) -> Path:
    """
    Validate and resolve the content root.

    Returns:
        Absolute, resolved root path

    Raises:
        FileNotFoundError: If the root doesn't exist
        NotADirectoryError: If the root is a file
        PermissionError: If the root cannot be listed
    """
    root = Path(root).expanduser().resolve()

    if not root.exists():
        raise FileNotFoundError(f"Root directory not found: {root}")
    if not root.is_dir():
        raise NotADirectoryError(f"Root is not a directory: {root}")

    # Test access by trying to list contents
    try:
        next(root.iterdir(), None)
    except PermissionError as e:
        raise PermissionError(f"Cannot list {root}") from e

    return root


def get_extension(path: str | Path) -> str:
    """Lower-case extension with its dot (``".md"``), or ``""``."""
    return Path(path).suffix.lower()


def to_relative(path: str | Path, root: str | Path) -> str:
    """Root-relative path with forward slashes."""
    rel = os.path.relpath(os.fspath(path), os.fspath(root))
    return rel.replace(os.sep, "/")


def is_excluded(relative_path: str, exclude_dirs: Collection[str]) -> bool:
    """True if any component of a root-relative path is an excluded name."""
    if not exclude_dirs:
        return False
    return any(part in exclude_dirs for part in relative_path.split("/"))


def matches_extension(
    path: str | Path, extensions: Collection[str] | None
) -> bool:
    """True if filtering is off or the file's extension is allowed."""
    if extensions is None:
        return True
    return get_extension(path) in extensions


def _kind_from_mode(mode: int) -> EntryKind:
    if stat.S_ISLNK(mode):
        return "symbolic-link"
    if stat.S_ISDIR(mode):
        return "directory"
    return "file"


def _created_at(st: os.stat_result) -> datetime:
    # st_birthtime exists on macOS/BSD; elsewhere ctime is the closest
    birthtime = getattr(st, "st_birthtime", None)
    return datetime.fromtimestamp(birthtime or st.st_ctime)


def entry_from_stat(
    path: str | Path, root: str | Path, st: os.stat_result
) -> IndexEntry:
    """Build an IndexEntry from an lstat result."""
    path_str = os.fspath(path)
    kind = _kind_from_mode(st.st_mode)
    is_dir = kind == "directory"
    return IndexEntry(
        path=path_str,
        name=os.path.basename(path_str.rstrip(os.sep)) or path_str,
        relative_path=to_relative(path_str, root),
        extension="" if is_dir else get_extension(path_str),
        size=0 if is_dir else st.st_size,
        created_at=_created_at(st),
        modified_at=datetime.fromtimestamp(st.st_mtime),
        kind=kind,
    )


def stat_entry(path: str | Path, root: str | Path) -> IndexEntry:
    """
    Resolve current metadata for one path.

    Kind comes from lstat, so a symbolic link is reported as
    ``symbolic-link`` regardless of its target.

    Raises:
        OSError: If the path vanished or cannot be read
    """
    return entry_from_stat(path, root, os.lstat(path))


def scan_tree(
    root: str | Path,
    extensions: Collection[str] | None = None,
    exclude_dirs: Collection[str] = (),
    include_directories: bool = True,
) -> Iterator[IndexEntry]:
    """
    Walk a content tree and yield every indexable entry.

    The root itself is not yielded. Unreadable paths are skipped with a
    debug log; a file that vanishes mid-walk is simply not yielded.

    Args:
        root: Root directory
        extensions: Allowed file extensions (None = all files)
        exclude_dirs: Directory names pruned at any depth
        include_directories: Yield directory entries too

    Yields:
        IndexEntry for each directory and matching file
    """
    root_str = os.fspath(root)

    def on_error(error: OSError) -> None:
        logger.debug("Skipping unreadable path during scan: %s", error)

    for dirpath, dirnames, filenames in os.walk(root_str, onerror=on_error):
        # Prune excluded directories in place so os.walk skips them
        dirnames[:] = sorted(d for d in dirnames if d not in exclude_dirs)

        candidates: list[str] = []
        for dirname in list(dirnames):
            full = os.path.join(dirpath, dirname)
            if os.path.islink(full):
                # Not descended (followlinks=False); index the link itself
                dirnames.remove(dirname)
                if matches_extension(full, extensions):
                    candidates.append(full)
            elif include_directories:
                candidates.append(full)

        for filename in sorted(filenames):
            full = os.path.join(dirpath, filename)
            if matches_extension(full, extensions):
                candidates.append(full)

        for full in candidates:
            try:
                yield stat_entry(full, root_str)
            except OSError as e:
                logger.debug("Cannot stat %s: %s", full, e)


def get_disk_inventory(
    root: str | Path,
    extensions: Collection[str] | None = None,
    exclude_dirs: Collection[str] = (),
) -> dict[str, IndexEntry]:
    """
    Inventory of everything currently indexable on disk.

    Returns:
        Dict mapping absolute path -> freshly resolved IndexEntry
    """
    return {
        entry.path: entry
        for entry in scan_tree(root, extensions, exclude_dirs)
    }
