"""Server configuration.

Environment Variables:
    GSUITE_MCP_GAUTH_FILE: OAuth client identity file (default: ./.gauth.json)
    GSUITE_MCP_ACCOUNTS_FILE: Accounts file (default: ./.accounts.json)
    GSUITE_MCP_CREDENTIALS_DIR: Directory for per-account token files (default: .)
    GSUITE_MCP_OAUTH_PORT: Local OAuth callback port (default: 4100)
    GSUITE_MCP_AUTH_TIMEOUT: Seconds to wait for browser consent (default: 300)
    GSUITE_MCP_BROWSER / BROWSER: Command used to open the authorization URL
    GSUITE_MCP_ALLOW_SEND: Enable tools that send email (default: false)
"""

import os
from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_GAUTH_FILE = "./.gauth.json"
DEFAULT_ACCOUNTS_FILE = "./.accounts.json"
DEFAULT_CREDENTIALS_DIR = "."
DEFAULT_OAUTH_HOST = "localhost"
DEFAULT_OAUTH_PORT = 4100
DEFAULT_CALLBACK_PATH = "/code"
DEFAULT_AUTH_TIMEOUT = 300.0


def default_browser_command() -> str | None:
    """Browser override command from the environment, if any."""
    command = os.environ.get("GSUITE_MCP_BROWSER") or os.environ.get("BROWSER") or ""
    return command.strip() or None


class ServerConfig(BaseModel):
    """Runtime configuration shared by the server and the CLI."""

    gauth_file: Path = Field(default=Path(DEFAULT_GAUTH_FILE))
    accounts_file: Path = Field(default=Path(DEFAULT_ACCOUNTS_FILE))
    credentials_dir: Path = Field(default=Path(DEFAULT_CREDENTIALS_DIR))
    oauth_host: str = DEFAULT_OAUTH_HOST
    oauth_port: int = Field(default=DEFAULT_OAUTH_PORT, ge=0, le=65535)
    callback_path: str = DEFAULT_CALLBACK_PATH
    auth_timeout: float = Field(default=DEFAULT_AUTH_TIMEOUT, gt=0)
    browser_command: str | None = Field(default_factory=default_browser_command)
    allow_send: bool = False

    @property
    def redirect_uri(self) -> str:
        """Redirect URI registered with Google; must match the listener exactly."""
        return f"http://{self.oauth_host}:{self.oauth_port}{self.callback_path}"
