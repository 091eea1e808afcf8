"""Tests for environment-based configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from folder_index_mcp import config

ENV_VARS = (
    "FOLDER_INDEX_ROOT",
    "FOLDER_INDEX_PATH",
    "FOLDER_INDEX_EXTENSIONS",
    "FOLDER_INDEX_EXCLUDE_DIRS",
    "FOLDER_INDEX_WATCH_DEBOUNCE_MS",
    "FOLDER_INDEX_DEBOUNCE_MS",
    "FOLDER_INDEX_BATCH_MS",
    "FOLDER_INDEX_MAX_RETRIES",
    "FOLDER_INDEX_SEARCH_LIMIT",
    "FOLDER_INDEX_FORCE_POLLING",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    """Values used when nothing is configured."""

    def test_root_is_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert config.get_root_dir() == tmp_path.resolve()

    def test_index_path_under_root(self, tmp_path):
        assert config.get_index_path(tmp_path) == (
            tmp_path / ".index-cache" / "index.json"
        )

    def test_filters(self):
        assert config.get_extensions() == set(config.DEFAULT_EXTENSIONS)
        assert config.get_exclude_dirs() == (
            set(config.DEFAULT_EXCLUDE_DIRS) | {".index-cache"}
        )

    def test_timings_and_limits(self):
        assert config.get_watch_debounce_ms() == 300
        assert config.get_debounce_ms() == 300
        assert config.get_batch_ms() == 1000
        assert config.get_max_retries() == 3
        assert config.get_search_limit() == 20
        assert config.get_force_polling() is False


class TestOverrides:
    """Environment variables override the defaults."""

    def test_root(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FOLDER_INDEX_ROOT", str(tmp_path))
        assert config.get_root_dir() == tmp_path.resolve()
        assert config.get_index_path() == (
            tmp_path.resolve() / ".index-cache" / "index.json"
        )

    def test_index_path(self, monkeypatch):
        monkeypatch.setenv("FOLDER_INDEX_PATH", "/var/cache/idx.json")
        assert config.get_index_path(Path("/content")) == Path(
            "/var/cache/idx.json"
        )

    def test_extensions_are_normalized(self, monkeypatch):
        monkeypatch.setenv("FOLDER_INDEX_EXTENSIONS", "md, .TXT,,rst ")
        assert config.get_extensions() == {".md", ".txt", ".rst"}

    def test_exclude_dirs_keep_cache_dir(self, monkeypatch):
        monkeypatch.setenv("FOLDER_INDEX_EXCLUDE_DIRS", "vendor,tmp")
        assert config.get_exclude_dirs() == {"vendor", "tmp", ".index-cache"}

    def test_numbers(self, monkeypatch):
        monkeypatch.setenv("FOLDER_INDEX_DEBOUNCE_MS", "50")
        monkeypatch.setenv("FOLDER_INDEX_BATCH_MS", "250")
        monkeypatch.setenv("FOLDER_INDEX_MAX_RETRIES", "0")
        monkeypatch.setenv("FOLDER_INDEX_SEARCH_LIMIT", "5")
        assert config.get_debounce_ms() == 50
        assert config.get_batch_ms() == 250
        assert config.get_max_retries() == 0
        assert config.get_search_limit() == 5

    @pytest.mark.parametrize(
        "value, expected",
        [("1", True), ("TRUE", True), ("yes", True), ("0", False), ("", False)],
    )
    def test_force_polling(self, monkeypatch, value, expected):
        monkeypatch.setenv("FOLDER_INDEX_FORCE_POLLING", value)
        assert config.get_force_polling() is expected
