"""MCP server implementation for Google Workspace.

Provides tools across Gmail, Calendar, Drive, Docs, Sheets and Slides,
each taking a ``user_id`` that selects one of the configured accounts:

Gmail Tools (12):
- Query, read and bulk-read messages
- Create and delete drafts, reply, send (opt-in)
- Fetch and bulk-save attachments
- Archive and bulk-archive

Calendar Tools (5):
- List calendars and events
- Create and delete events

Drive, Docs, Sheets and Slides Tools (8, read-only):
- List, inspect, export and download Drive files
- Read document text, sheet ranges and slide text

Transport: Stdio
Authentication: OAuth 2.0 per account, with on-demand browser consent
"""

from gsuite_mcp.config import ServerConfig
from gsuite_mcp.server.google_workspace_server import (
    GoogleWorkspaceServer,
    build_credential_manager,
    error_payload,
    main,
)


def create_server(config: ServerConfig | None = None) -> GoogleWorkspaceServer:
    """Create and configure a Google Workspace MCP server.

    Returns:
        GoogleWorkspaceServer: Configured server instance ready to run.

    Example:
        >>> server = create_server()
        >>> asyncio.run(server.run())
    """
    return GoogleWorkspaceServer(config)


__all__ = [
    "create_server",
    "GoogleWorkspaceServer",
    "build_credential_manager",
    "error_payload",
    "main",
]
