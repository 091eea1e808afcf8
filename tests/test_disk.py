"""Tests for direct disk access (metadata, tree scan, filters)."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from folder_index_mcp.index.disk import (
    find_root_directory,
    get_disk_inventory,
    get_extension,
    is_excluded,
    matches_extension,
    scan_tree,
    stat_entry,
    to_relative,
)


class TestFindRootDirectory:
    """Tests for root validation."""

    def test_resolves_existing_directory(self, tmp_path):
        assert find_root_directory(tmp_path) == tmp_path.resolve()

    def test_missing_root_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            find_root_directory(tmp_path / "nope")

    def test_file_root_raises(self, tmp_path):
        target = tmp_path / "file.md"
        target.write_text("x")
        with pytest.raises(NotADirectoryError):
            find_root_directory(target)


class TestFilters:
    """Tests for the filtering predicates."""

    @pytest.mark.parametrize(
        "path, expected",
        [
            ("a/b/README.MD", ".md"),
            ("notes.txt", ".txt"),
            ("Makefile", ""),
            ("archive.tar.gz", ".gz"),
        ],
    )
    def test_get_extension(self, path, expected):
        assert get_extension(path) == expected

    def test_to_relative_uses_forward_slashes(self, tmp_path):
        path = tmp_path / "docs" / "guide.md"
        assert to_relative(path, tmp_path) == "docs/guide.md"

    @pytest.mark.parametrize(
        "relative, expected",
        [
            ("node_modules/pkg/readme.md", True),
            ("docs/node_modules/x.md", True),
            ("docs/readme.md", False),
            ("node_modules_backup/readme.md", False),
        ],
    )
    def test_is_excluded_matches_whole_components(self, relative, expected):
        assert is_excluded(relative, {"node_modules"}) is expected

    def test_is_excluded_with_empty_set(self):
        assert not is_excluded("node_modules/x.md", set())

    def test_matches_extension(self):
        assert matches_extension("a.MD", {".md"})
        assert not matches_extension("a.png", {".md"})
        assert matches_extension("a.png", None)


class TestStatEntry:
    """Tests for metadata resolution."""

    def test_file_entry(self, content_tree):
        path = content_tree / "docs" / "guide.md"
        entry = stat_entry(path, content_tree)
        assert entry.path == str(path)
        assert entry.name == "guide.md"
        assert entry.relative_path == "docs/guide.md"
        assert entry.extension == ".md"
        assert entry.size == path.stat().st_size
        assert entry.kind == "file"

    def test_directory_entry(self, content_tree):
        entry = stat_entry(content_tree / "docs", content_tree)
        assert entry.kind == "directory"
        assert entry.size == 0
        assert entry.extension == ""

    @pytest.mark.skipif(
        not hasattr(os, "symlink"), reason="symlinks unsupported"
    )
    def test_symlink_kind_comes_from_lstat(self, content_tree):
        link = content_tree / "link.md"
        link.symlink_to(content_tree / "docs" / "readme.md")
        assert stat_entry(link, content_tree).kind == "symbolic-link"

    def test_missing_path_raises_os_error(self, content_tree):
        with pytest.raises(OSError):
            stat_entry(content_tree / "gone.md", content_tree)


class TestScanTree:
    """Tests for the tree walk."""

    def test_yields_matching_files_and_directories(
        self, content_tree, extensions, exclude_dirs
    ):
        found = {
            e.relative_path
            for e in scan_tree(content_tree, extensions, exclude_dirs)
        }
        assert found == {
            "docs",
            "docs/drafts",
            "docs/readme.md",
            "docs/guide.md",
            "docs/drafts/draft-notes.md",
            "notes.txt",
            "config.yml",
        }

    def test_without_directories(self, content_tree, extensions, exclude_dirs):
        entries = list(
            scan_tree(
                content_tree,
                extensions,
                exclude_dirs,
                include_directories=False,
            )
        )
        assert entries
        assert not any(e.is_directory for e in entries)

    def test_no_extension_filter_includes_everything(self, content_tree):
        found = {e.relative_path for e in scan_tree(content_tree)}
        assert "image.png" in found
        assert "node_modules/pkg/readme.md" in found

    def test_root_is_not_yielded(self, content_tree):
        assert all(
            e.relative_path != "." for e in scan_tree(content_tree)
        )

    @pytest.mark.skipif(
        not hasattr(os, "symlink"), reason="symlinks unsupported"
    )
    def test_symlinked_directory_is_not_descended(
        self, content_tree: Path, exclude_dirs
    ):
        (content_tree / "docs-link").symlink_to(content_tree / "docs")
        found = {
            e.relative_path
            for e in scan_tree(content_tree, None, exclude_dirs)
        }
        assert "docs-link" in found
        assert "docs-link/readme.md" not in found


class TestGetDiskInventory:
    """Tests for the reconciliation inventory."""

    def test_keys_are_absolute_paths(
        self, content_tree, extensions, exclude_dirs
    ):
        inventory = get_disk_inventory(content_tree, extensions, exclude_dirs)
        readme = str(content_tree / "docs" / "readme.md")
        assert readme in inventory
        assert inventory[readme].name == "readme.md"

    def test_empty_tree(self, tmp_path, extensions):
        assert get_disk_inventory(tmp_path, extensions) == {}
