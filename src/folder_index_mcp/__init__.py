"""Folder Index MCP - Fuzzy and boolean search over a content tree.

Features:
- Persisted index of files and directories, kept current by a watcher
- Fuzzy search over names and paths, plus AND / OR / NOT queries

Usage:
    folder-index-mcp            # Run MCP server (default)
    folder-index-mcp index      # Build the index from disk
    folder-index-mcp status     # Show index statistics
    folder-index-mcp search Q   # Search from the command line
    folder-index-mcp rebuild    # Force rebuild index
"""

from .cli import main
from .server import mcp

__all__ = ["main", "mcp"]
