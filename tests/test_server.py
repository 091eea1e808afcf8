"""Tests for MCP server tools.

Tests the 4 MCP tools exposed by server.py:
- search
- get_stats
- refresh
- refresh_file

plus the server lifespan. Tools run against a real IndexManager built
on a temporary content tree.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from pydantic import TypeAdapter

from folder_index_mcp import server
from folder_index_mcp.index.manager import IndexManager
from folder_index_mcp.index.schema import IndexStats


def tool_fn(tool):
    """The plain coroutine function behind a registered tool."""
    return getattr(tool, "fn", tool)


@pytest_asyncio.fixture
async def manager(content_tree, extensions, exclude_dirs):
    manager = IndexManager(
        content_tree, extensions=extensions, exclude_dirs=exclude_dirs
    )
    with patch(
        "folder_index_mcp.server._get_index_manager", return_value=manager
    ):
        yield manager
    await manager.destroy()


class TestResponseTypes:
    """Tool return types must build output schemas."""

    @pytest.mark.parametrize(
        "response_type",
        [
            server.SearchHit,
            server.SearchResponse,
            server.IndexStatus,
            server.RefreshResult,
        ],
    )
    def test_schema_builds(self, response_type):
        schema = TypeAdapter(response_type).json_schema()
        assert schema["type"] == "object"
        assert schema["properties"]


class TestSearch:
    """Tests for search() tool."""

    @pytest.mark.asyncio
    async def test_fuzzy_search(self, manager):
        """search returns fuzzy hits with entry metadata."""
        result = await tool_fn(server.search)("readme")

        assert result["is_logical_query"] is False
        assert result["terms"] == ["readme"]
        assert result["error"] is None
        hit = result["results"][0]
        assert hit["relative_path"] == "docs/readme.md"
        assert hit["kind"] == "file"
        assert hit["score"] == 0.0
        assert "name" in hit["matched_in"]

    @pytest.mark.asyncio
    async def test_initializes_index_on_first_use(self, manager):
        """The index is built before the first search."""
        assert not manager.is_initialized
        await tool_fn(server.search)("readme")
        assert manager.is_initialized

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs", [{"exact": True}, {"fuzzy": False}]
    )
    async def test_exact_search(self, manager, kwargs):
        """exact=True and fuzzy=False both select exact matching."""
        result = await tool_fn(server.search)("guide.md", **kwargs)

        assert [h["relative_path"] for h in result["results"]] == [
            "docs/guide.md"
        ]
        assert "matched_in" not in result["results"][0]

    @pytest.mark.asyncio
    async def test_exact_search_has_no_typo_tolerance(self, manager):
        result = await tool_fn(server.search)("gide.md", exact=True)
        assert result["results"] == []

    @pytest.mark.asyncio
    async def test_boolean_query(self, manager):
        """Boolean queries report their terms."""
        result = await tool_fn(server.search)("docs AND NOT draft")

        assert result["is_logical_query"] is True
        assert result["terms"] == ["docs", "draft"]
        names = {h["name"] for h in result["results"]}
        assert "guide.md" in names
        assert "draft-notes.md" not in names

    @pytest.mark.asyncio
    async def test_malformed_query_reports_error(self, manager):
        """A malformed boolean query is searched literally."""
        result = await tool_fn(server.search)("(readme AND")

        assert result["is_logical_query"] is False
        assert result["error"]

    @pytest.mark.asyncio
    async def test_limit(self, manager):
        result = await tool_fn(server.search)("docs", limit=2)
        assert len(result["results"]) == 2


class TestGetStats:
    """Tests for get_stats() tool."""

    @pytest.mark.asyncio
    async def test_returns_counts(self, manager, content_tree):
        result = await tool_fn(server.get_stats)()

        assert result["root"] == str(content_tree.resolve())
        assert result["total_files"] == 5
        assert result["total_directories"] == 2
        assert result["total_size"] > 0
        assert result["last_updated"] > 0
        assert result["watcher_running"] is False
        assert result["pending_changes"] == 0
        assert result["missed_updates"] == 0


class TestRefresh:
    """Tests for refresh() and refresh_file() tools."""

    @pytest.mark.asyncio
    async def test_refresh_rebuilds(self, manager, content_tree):
        await manager.initialize()
        (content_tree / "added.md").write_text("x\n")

        result = await tool_fn(server.refresh)()

        assert result["entries"] == 8
        assert result["elapsed_seconds"] >= 0

    @pytest.mark.asyncio
    async def test_refresh_file(self, manager, content_tree):
        target = content_tree / "docs" / "guide.md"

        hit = await tool_fn(server.refresh_file)(str(target))

        assert hit["relative_path"] == "docs/guide.md"
        assert hit["size"] == target.stat().st_size

    @pytest.mark.asyncio
    async def test_refresh_file_missing_path(self, manager, content_tree):
        hit = await tool_fn(server.refresh_file)(
            str(content_tree / "missing.md")
        )
        assert hit is None


class TestLifespan:
    """Tests for server startup and shutdown."""

    def teardown_method(self):
        server.configure(watch=False)

    def make_manager(self, initialized=True) -> MagicMock:
        manager = MagicMock()
        manager.initialize = AsyncMock()
        manager.destroy = AsyncMock()
        manager.start_watcher = AsyncMock(return_value=True)
        manager.get_stats.return_value = IndexStats(3, 1, 100, 0)
        manager.is_initialized = initialized
        return manager

    @pytest.mark.asyncio
    async def test_loads_index_and_destroys(self, capsys):
        manager = self.make_manager()
        with patch(
            "folder_index_mcp.server._get_index_manager", return_value=manager
        ):
            async with server.lifespan(server.mcp):
                manager.initialize.assert_awaited_once()

        manager.start_watcher.assert_not_awaited()
        manager.destroy.assert_awaited_once()
        assert "Index ready: 3 files" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_starts_watcher_when_configured(self):
        manager = self.make_manager()
        server.configure(watch=True)
        with patch(
            "folder_index_mcp.server._get_index_manager", return_value=manager
        ):
            async with server.lifespan(server.mcp):
                pass

        manager.start_watcher.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unavailable_root_is_not_fatal(self, capsys):
        manager = self.make_manager(initialized=False)
        manager.initialize.side_effect = FileNotFoundError("gone")
        server.configure(watch=True)
        with patch(
            "folder_index_mcp.server._get_index_manager", return_value=manager
        ):
            async with server.lifespan(server.mcp):
                pass

        manager.start_watcher.assert_not_awaited()
        manager.destroy.assert_awaited_once()
        assert "Index unavailable" in capsys.readouterr().err
