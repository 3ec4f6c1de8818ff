"""Multi-account Google Workspace MCP server.

This MCP server exposes Gmail, Calendar, Drive, Docs, Sheets and Slides
tools for every account listed in the accounts file. Each tool call names
the account it acts for through the ``user_id`` argument; credentials for
that account are loaded, refreshed or interactively obtained on demand by
the CredentialLifecycleManager.
"""

import asyncio
import json
import logging
from typing import Any

import httpx
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from gsuite_mcp.auth import (
    AccountRegistry,
    CredentialLifecycleManager,
    CredentialState,
    GetCredentialsError,
    GSuiteMCPError,
    OAuth2Client,
    TokenStorage,
    load_client_identity,
)
from gsuite_mcp.config import ServerConfig
from gsuite_mcp.services import (
    USER_ID_ARG,
    GoogleApiClient,
    ServiceTools,
    ToolError,
    build_services,
    required_scopes,
)
from gsuite_mcp.services.base import ToolResult

logger = logging.getLogger(__name__)

SERVER_NAME = "gsuite-mcp"


def build_credential_manager(
    config: ServerConfig,
    scopes: list[str] | None = None,
) -> CredentialLifecycleManager:
    """Wire registry, token storage and OAuth client from configuration.

    Args:
        config: Server configuration.
        scopes: Scopes tool calls need; defaults to every service's scopes.

    Raises:
        ConfigurationError: If the client identity file is missing or invalid.
    """
    identity = load_client_identity(config.gauth_file, config.redirect_uri)
    return CredentialLifecycleManager(
        AccountRegistry(config.accounts_file),
        TokenStorage(config.credentials_dir),
        OAuth2Client(identity),
        required_scopes=scopes if scopes is not None else required_scopes(),
        oauth_host=config.oauth_host,
        oauth_port=config.oauth_port,
        callback_path=config.callback_path,
        auth_timeout=config.auth_timeout,
        browser_command=config.browser_command,
    )


def error_payload(error: Exception) -> dict[str, Any]:
    """Structured failure returned to the MCP client instead of a bare string."""
    payload: dict[str, Any] = {
        "error": str(error),
        "error_type": type(error).__name__,
        "success": False,
    }
    if isinstance(error, GetCredentialsError) and error.authorization_url:
        payload["authorization_url"] = error.authorization_url
    if isinstance(error, httpx.HTTPStatusError):
        payload["status_code"] = error.response.status_code
    return payload


class GoogleWorkspaceServer:
    """MCP server for Google Workspace APIs across several accounts.

    Attributes:
        config: Server configuration.
        server: MCP Server instance.
        manager: Credential lifecycle for all configured accounts.
        api: Shared authenticated HTTP client.
        services: Per-service tool routers.
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        manager: CredentialLifecycleManager | None = None,
        api: GoogleApiClient | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            config: Server configuration; defaults are used if not provided.
            manager: Pre-built credential manager, mainly for tests.
            api: Pre-built API client, mainly for tests.

        Raises:
            ConfigurationError: If the client identity cannot be loaded.
        """
        self.config = config or ServerConfig()
        self.manager = manager or build_credential_manager(self.config)
        self.api = api or GoogleApiClient()
        self.services: list[ServiceTools] = build_services(
            self.api, self.manager.registry, allow_send=self.config.allow_send
        )
        self._routes: dict[str, ServiceTools] = {}
        for service in self.services:
            for tool in service.get_tools():
                self._routes[tool.name] = service

        self.server = Server(SERVER_NAME)
        self._setup_handlers()

    async def close(self) -> None:
        """Close the shared HTTP client and release resources."""
        await self.api.close()

    def list_tools(self) -> list[Tool]:
        """Every tool of every service, in service order."""
        tools: list[Tool] = []
        for service in self.services:
            tools.extend(service.get_tools())
        return tools

    def _setup_handlers(self) -> None:
        """Register MCP protocol handlers."""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            """Return list of available tools."""
            return self.list_tools()

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any] | None) -> ToolResult:
            """Handle tool calls."""
            return await self.handle_call(name, arguments)

    async def handle_call(self, name: str, arguments: dict[str, Any] | None) -> ToolResult:
        """Run a tool call and turn any failure into a structured payload.

        Args:
            name: Tool name.
            arguments: Tool arguments as sent by the client.

        Returns:
            Tool output, or a single JSON text item describing the failure.
        """
        try:
            return await self._dispatch_tool(name, arguments)
        except GetCredentialsError as e:
            logger.error(f"Could not obtain credentials for tool {name}: {e}")
            if e.authorization_url:
                logger.info(f"Authorize manually at: {e.authorization_url}")
            return [TextContent(type="text", text=json.dumps(error_payload(e), indent=2))]
        except Exception as e:
            logger.exception(f"Error calling tool {name}")
            return [TextContent(type="text", text=json.dumps(error_payload(e), indent=2))]

    async def _dispatch_tool(self, name: str, arguments: dict[str, Any] | None) -> ToolResult:
        """Route a tool call to its service.

        Raises:
            ToolError: If the tool is unknown or the arguments are malformed.
            ConfigurationError: If the account is not configured.
            GetCredentialsError: If credentials could not be obtained.
        """
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise ToolError("arguments must be dictionary")

        service = self._routes.get(name)
        if service is None:
            raise ToolError(f"Unknown tool: {name}")

        if not service.requires_account(name):
            return await service.handle_tool(name, arguments, None)

        user_id = arguments.get(USER_ID_ARG)
        if not user_id:
            raise ToolError(f"{USER_ID_ARG} argument is missing in dictionary")

        context = await self.manager.ensure_ready(user_id)
        return await service.handle_tool(name, arguments, context)

    def log_account_states(self) -> None:
        """Log each configured account's credential state.

        Nothing is authorized here; the first tool call for an account
        starts the consent flow if it needs one.
        """
        try:
            states = self.manager.describe_accounts()
        except GSuiteMCPError as e:
            logger.error(f"Could not load accounts: {e}")
            return

        if not states:
            logger.warning("No accounts configured")
            return

        for account, state in states:
            if state == CredentialState.STORED_AND_VALID:
                logger.info(f"Account {account.email}: credentials ready")
            else:
                logger.info(
                    f"Account {account.email}: {state.value}, "
                    "authorization will start on first use"
                )

    async def run(self) -> None:
        """Run the MCP server using stdio transport."""
        self.log_account_states()
        try:
            async with stdio_server() as (read_stream, write_stream):
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                )
        finally:
            await self.close()


def main(config: ServerConfig | None = None) -> None:
    """Entry point for the Google Workspace MCP server."""
    # stdout carries the MCP protocol; logs go to stderr
    logging.basicConfig(level=logging.INFO)
    server = GoogleWorkspaceServer(config)
    asyncio.run(server.run())


if __name__ == "__main__":
    main()
