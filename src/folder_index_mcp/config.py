"""Configuration for the folder index."""

import os
from pathlib import Path

# Default snapshot location, relative to the indexed root
INDEX_CACHE_DIR = ".index-cache"
INDEX_FILE_NAME = "index.json"

DEFAULT_EXTENSIONS = (".md", ".mmd", ".txt", ".json", ".yml", ".yaml")

DEFAULT_EXCLUDE_DIRS = (
    "node_modules",
    ".git",
    "dist",
    "build",
    "coverage",
    ".next",
    ".nuxt",
    "target",
    "__pycache__",
    "venv",
    "env",
    ".env",
)


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def get_root_dir() -> Path:
    """
    Get the content tree to index.

    Set FOLDER_INDEX_ROOT to customize. Defaults to the current directory.

    Returns:
        Absolute path of the root directory.
    """
    env_root = os.environ.get("FOLDER_INDEX_ROOT")
    if env_root:
        return Path(env_root).expanduser().resolve()
    return Path.cwd().resolve()


def get_index_path(root: Path | None = None) -> Path:
    """
    Get the index snapshot path.

    Set FOLDER_INDEX_PATH to customize the location.
    Defaults to <root>/.index-cache/index.json

    Args:
        root: Indexed root (uses get_root_dir() if None)

    Returns:
        Path to the JSON snapshot file.
    """
    env_path = os.environ.get("FOLDER_INDEX_PATH")
    if env_path:
        return Path(env_path).expanduser()
    base = root if root is not None else get_root_dir()
    return base / INDEX_CACHE_DIR / INDEX_FILE_NAME


def get_extensions() -> set[str]:
    """
    Get the file extensions that are indexed.

    Set FOLDER_INDEX_EXTENSIONS to a comma-separated list (".md,.txt").
    A leading dot is added when missing.

    Returns:
        Set of lower-case extensions including the dot.
    """
    env_val = os.environ.get("FOLDER_INDEX_EXTENSIONS")
    if env_val is None:
        return set(DEFAULT_EXTENSIONS)
    return {
        (ext if ext.startswith(".") else f".{ext}").lower()
        for ext in _split_list(env_val)
    }


def get_exclude_dirs() -> set[str]:
    """
    Get directory names excluded from indexing and watching.

    Set FOLDER_INDEX_EXCLUDE_DIRS to a comma-separated list.
    The snapshot directory (.index-cache) is always excluded.

    Returns:
        Set of directory names.
    """
    env_val = os.environ.get("FOLDER_INDEX_EXCLUDE_DIRS")
    names = set(DEFAULT_EXCLUDE_DIRS) if env_val is None else set(
        _split_list(env_val)
    )
    names.add(INDEX_CACHE_DIR)
    return names


def get_watch_debounce_ms() -> int:
    """Per-path debounce window of the file watcher (default 300)."""
    return int(os.environ.get("FOLDER_INDEX_WATCH_DEBOUNCE_MS", "300"))


def get_debounce_ms() -> int:
    """Quiet period before the indexer opens a batch window (default 300)."""
    return int(os.environ.get("FOLDER_INDEX_DEBOUNCE_MS", "300"))


def get_batch_ms() -> int:
    """Batch window of the incremental indexer (default 1000)."""
    return int(os.environ.get("FOLDER_INDEX_BATCH_MS", "1000"))


def get_max_retries() -> int:
    """
    Get the retry budget for a failed index change.

    Set FOLDER_INDEX_MAX_RETRIES to customize. Defaults to 3.

    Returns:
        Maximum retries per pending change.
    """
    return int(os.environ.get("FOLDER_INDEX_MAX_RETRIES", "3"))


def get_search_limit() -> int:
    """Default number of search results (default 20)."""
    return int(os.environ.get("FOLDER_INDEX_SEARCH_LIMIT", "20"))


def get_force_polling() -> bool:
    """
    Check whether the watcher should poll instead of using OS events.

    Set FOLDER_INDEX_FORCE_POLLING to 1/true/yes for network drives or
    containers where native notifications are unreliable.
    """
    value = os.environ.get("FOLDER_INDEX_FORCE_POLLING", "")
    return value.strip().lower() in {"1", "true", "yes", "on"}
