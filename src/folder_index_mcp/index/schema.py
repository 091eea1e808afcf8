"""Data model and JSON snapshot format for the folder index.

The snapshot is a single JSON document:

    {
      "entries": [IndexEntry, ...],   # timestamps as ISO-8601 strings
      "stats": IndexStats,
      "version": 7,                   # bumped on every batch mutation
      "lastUpdated": 1700000000000    # epoch milliseconds
    }

IMPORTANT: ``path`` is the unique key. Entry kind is always recomputed
from the file system, never copied from a previous entry.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Iterable

# Index version of a fresh index; bumped on every batch mutation
INITIAL_VERSION = 1

EntryKind = Literal["file", "directory", "symbolic-link"]
ENTRY_KINDS: tuple[str, ...] = ("file", "directory", "symbolic-link")

ChangeKind = Literal["add", "change", "remove"]


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class IndexEntry:
    """One indexed file, directory or symbolic link."""

    path: str
    name: str
    relative_path: str
    extension: str
    size: int
    created_at: datetime
    modified_at: datetime
    kind: EntryKind = "file"

    @property
    def is_directory(self) -> bool:
        return self.kind == "directory"

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "name": self.name,
            "relativePath": self.relative_path,
            "extension": self.extension,
            "size": self.size,
            "createdAt": self.created_at.isoformat(),
            "modifiedAt": self.modified_at.isoformat(),
            "kind": self.kind,
        }

    @classmethod
    def from_dict(cls, data: dict) -> IndexEntry:
        """
        Re-hydrate an entry from its snapshot form.

        Raises:
            KeyError, ValueError, TypeError: If the record is malformed
        """
        kind = data.get("kind", "file")
        if kind not in ENTRY_KINDS:
            raise ValueError(f"Unknown entry kind: {kind!r}")
        return cls(
            path=str(data["path"]),
            name=str(data["name"]),
            relative_path=str(data["relativePath"]),
            extension=str(data.get("extension", "")),
            size=int(data.get("size", 0)),
            created_at=datetime.fromisoformat(data["createdAt"]),
            modified_at=datetime.fromisoformat(data["modifiedAt"]),
            kind=kind,
        )


@dataclass
class IndexStats:
    """Aggregate counters, always re-derivable from the entry set."""

    total_files: int = 0
    total_directories: int = 0
    total_size: int = 0
    last_updated: int = 0

    def apply(self, entry: IndexEntry, sign: int = 1) -> None:
        """Add (sign=1) or subtract (sign=-1) one entry's contribution."""
        if entry.is_directory:
            self.total_directories += sign
        else:
            self.total_files += sign
            self.total_size += sign * entry.size

    def counters(self) -> tuple[int, int, int]:
        return (self.total_files, self.total_directories, self.total_size)

    @classmethod
    def from_entries(
        cls, entries: Iterable[IndexEntry], last_updated: int = 0
    ) -> IndexStats:
        stats = cls(last_updated=last_updated)
        for entry in entries:
            stats.apply(entry)
        return stats

    def to_dict(self) -> dict:
        return {
            "totalFiles": self.total_files,
            "totalDirectories": self.total_directories,
            "totalSize": self.total_size,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict) -> IndexStats:
        return cls(
            total_files=int(data.get("totalFiles", 0)),
            total_directories=int(data.get("totalDirectories", 0)),
            total_size=int(data.get("totalSize", 0)),
            last_updated=int(data.get("lastUpdated", 0)),
        )


@dataclass
class IndexChange:
    """Change notification delivered to index listeners."""

    kind: ChangeKind
    path: str
    entry: IndexEntry | None = None


@dataclass
class IndexUpdateSummary:
    """Counts from one applied batch of upserts and removals."""

    added: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0

    @property
    def total_changes(self) -> int:
        return self.added + self.updated + self.removed


@dataclass
class IndexSnapshot:
    """On-disk form of the index."""

    entries: list[IndexEntry] = field(default_factory=list)
    stats: IndexStats = field(default_factory=IndexStats)
    version: int = INITIAL_VERSION
    last_updated: int = 0

    def to_dict(self) -> dict:
        return {
            "entries": [entry.to_dict() for entry in self.entries],
            "stats": self.stats.to_dict(),
            "version": self.version,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict) -> IndexSnapshot:
        """
        Build a snapshot from parsed JSON.

        Raises:
            ValueError: If the document does not have the snapshot shape
        """
        if not isinstance(data, dict) or not isinstance(
            data.get("entries"), list
        ):
            raise ValueError("Snapshot has no entries list")
        try:
            entries = [IndexEntry.from_dict(item) for item in data["entries"]]
            stats = IndexStats.from_dict(data.get("stats") or {})
            version = int(data.get("version", INITIAL_VERSION))
            last_updated = int(data.get("lastUpdated", stats.last_updated))
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Malformed snapshot: {e}") from e
        return cls(
            entries=entries,
            stats=stats,
            version=version,
            last_updated=last_updated,
        )


def read_snapshot(path: Path) -> IndexSnapshot:
    """
    Read and validate a snapshot file.

    Raises:
        FileNotFoundError: If no snapshot exists
        OSError: If the file cannot be read
        ValueError: If the content is not a valid snapshot
    """
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    return IndexSnapshot.from_dict(data)


def write_snapshot(path: Path, snapshot: IndexSnapshot | dict) -> None:
    """
    Write a snapshot atomically (temp file + rename).

    A crash mid-write leaves the previous snapshot intact.

    Raises:
        OSError: If the directory or file cannot be written
    """
    if isinstance(snapshot, IndexSnapshot):
        payload = snapshot.to_dict()
    else:
        payload = snapshot
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
        handle.write("\n")
    tmp.replace(path)
