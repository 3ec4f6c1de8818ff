"""Command-line interface for gsuite-mcp."""

from gsuite_mcp.cli.main import main

__all__ = ["main"]
