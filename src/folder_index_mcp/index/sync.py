"""Disk-based sync for the folder index.

Heals a stale snapshot on startup using state reconciliation: the disk
inventory is compared with the index inventory and only the difference is
applied, through the same mutations the incremental indexer uses.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from .disk import get_disk_inventory

if TYPE_CHECKING:
    from collections.abc import Callable, Collection

    from .schema import IndexEntry
    from .service import IndexService

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Result of a disk-based sync operation."""

    added: int = 0
    deleted: int = 0
    updated: int = 0
    errors: int = 0

    @property
    def total_changes(self) -> int:
        return self.added + self.deleted + self.updated


def get_index_inventory(service: IndexService) -> dict[str, IndexEntry]:
    """
    Get inventory of all entries in the index.

    Returns:
        Dict mapping absolute path -> indexed entry
    """
    return {entry.path: entry for entry in service.get_all_entries()}


def _is_stale(indexed: IndexEntry, current: IndexEntry) -> bool:
    return (
        indexed.kind != current.kind
        or indexed.size != current.size
        or indexed.modified_at != current.modified_at
    )


async def sync_from_disk(
    service: IndexService,
    root: str | Path,
    extensions: Collection[str] | None = None,
    exclude_dirs: Collection[str] = (),
    progress_callback: Callable[[int, int | None, str], None] | None = None,
) -> SyncResult:
    """
    Sync the index with disk using state reconciliation.

    Compares disk inventory with index inventory to detect:
    - NEW: on disk, not indexed → add
    - DELETED: indexed, not on disk → remove
    - UPDATED: kind, size or modification time differ → update

    Args:
        service: Index to reconcile
        root: Content root
        extensions: Allowed file extensions (None = all files)
        exclude_dirs: Directory names ignored at any depth
        progress_callback: Optional callback(current, total, message)

    Returns:
        SyncResult with counts of added/deleted/updated entries
    """
    if progress_callback:
        progress_callback(0, None, "Scanning disk inventory...")

    disk_inv = await asyncio.to_thread(
        get_disk_inventory, root, extensions, exclude_dirs
    )
    index_inv = get_index_inventory(service)

    disk_keys = set(disk_inv)
    index_keys = set(index_inv)

    new_keys = disk_keys - index_keys
    deleted_keys = index_keys - disk_keys
    updated_keys = {
        key
        for key in disk_keys & index_keys
        if _is_stale(index_inv[key], disk_inv[key])
    }

    total_ops = len(new_keys) + len(deleted_keys) + len(updated_keys)
    result = SyncResult()

    if total_ops == 0:
        logger.debug("Index is in sync with %s", root)
        return result

    if progress_callback:
        progress_callback(0, total_ops, f"Applying {total_ops} changes...")

    upserts = [disk_inv[key] for key in sorted(new_keys | updated_keys)]
    if upserts:
        try:
            summary = await service.add_or_update_batch(upserts)
            result.added = summary.added
            result.updated = summary.updated
        except Exception as e:  # Broad: reported in SyncResult.errors
            logger.error("Failed to apply %d sync updates: %s", len(upserts), e)
            result.errors += len(upserts)

    # Parents first; removing a directory takes its descendants with it
    for key in sorted(deleted_keys):
        if service.get_entry(key) is None:
            result.deleted += 1
            continue
        try:
            await service.remove(key)
            result.deleted += 1
        except Exception as e:  # Broad: reported in SyncResult.errors
            logger.warning("Failed to remove %s during sync: %s", key, e)
            result.errors += 1

    if progress_callback:
        progress_callback(total_ops, total_ops, "Sync complete")

    logger.info(
        "Sync complete: +%d -%d ~%d (errors: %d)",
        result.added,
        result.deleted,
        result.updated,
        result.errors,
    )
    return result
