"""G Suite MCP Server.

Connect MCP clients to Gmail, Calendar, Drive, Docs, Sheets and Slides
for several Google accounts at once.
"""

from gsuite_mcp.__version__ import __version__

__all__ = ["__version__"]
