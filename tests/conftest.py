"""Shared pytest fixtures for folder-index-mcp tests."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from folder_index_mcp.config import DEFAULT_EXCLUDE_DIRS, DEFAULT_EXTENSIONS
from folder_index_mcp.index.schema import IndexEntry

FAKE_ROOT = "/content"


def make_entry(
    relative_path: str,
    *,
    kind: str = "file",
    size: int = 100,
    root: str = FAKE_ROOT,
    modified_at: datetime | None = None,
) -> IndexEntry:
    """Build an IndexEntry for a path under a (not necessarily real) root."""
    name = relative_path.rsplit("/", 1)[-1]
    is_dir = kind == "directory"
    extension = ""
    if not is_dir and "." in name.lstrip("."):
        extension = "." + name.rsplit(".", 1)[-1].lower()
    stamp = modified_at or datetime(2024, 1, 15, 10, 30)
    return IndexEntry(
        path=f"{root}/{relative_path}",
        name=name,
        relative_path=relative_path,
        extension=extension,
        size=0 if is_dir else size,
        created_at=datetime(2024, 1, 1, 9, 0),
        modified_at=stamp,
        kind=kind,
    )


@pytest.fixture
def sample_entries() -> list[IndexEntry]:
    """A small documentation tree, directories included."""
    return [
        make_entry("docs", kind="directory"),
        make_entry("docs/guides", kind="directory"),
        make_entry("docs/readme.md", size=120),
        make_entry("docs/react-tutorial.md", size=2048),
        make_entry("docs/guides/vue-guide.md", size=900),
        make_entry("docs/guides/draft-markdown-guide.md", size=300),
        make_entry("notes/meeting-notes.txt", size=64),
        make_entry("config.yml", size=32),
    ]


@pytest.fixture
def extensions() -> set[str]:
    return set(DEFAULT_EXTENSIONS)


@pytest.fixture
def exclude_dirs() -> set[str]:
    return set(DEFAULT_EXCLUDE_DIRS) | {".index-cache"}


@pytest.fixture
def content_tree(tmp_path: Path) -> Path:
    """
    Create a real content tree on disk.

    Layout:
        docs/readme.md
        docs/guide.md
        docs/drafts/draft-notes.md
        notes.txt
        config.yml
        image.png                      (wrong extension)
        node_modules/pkg/readme.md     (excluded directory)
        .git/HEAD.txt                  (excluded directory)
    """
    root = tmp_path / "content"
    (root / "docs" / "drafts").mkdir(parents=True)
    (root / "node_modules" / "pkg").mkdir(parents=True)
    (root / ".git").mkdir()

    (root / "docs" / "readme.md").write_text("# Readme\n")
    (root / "docs" / "guide.md").write_text("# Guide\n\nSteps.\n")
    (root / "docs" / "drafts" / "draft-notes.md").write_text("wip\n")
    (root / "notes.txt").write_text("remember the milk\n")
    (root / "config.yml").write_text("key: value\n")
    (root / "image.png").write_bytes(b"\x89PNG")
    (root / "node_modules" / "pkg" / "readme.md").write_text("dep\n")
    (root / ".git" / "HEAD.txt").write_text("ref\n")
    return root


@pytest.fixture
def entry_factory():
    """Return the make_entry() helper."""
    return make_entry
