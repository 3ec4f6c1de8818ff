"""Common plumbing for per-service tool routers."""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from mcp.types import EmbeddedResource, ImageContent, TextContent, Tool

from gsuite_mcp.auth.accounts import AccountRegistry
from gsuite_mcp.auth.credential_manager import AccountContext
from gsuite_mcp.auth.errors import GSuiteMCPError
from gsuite_mcp.services.api_client import GoogleApiClient

logger = logging.getLogger(__name__)

USER_ID_ARG = "user_id"

USER_ID_PROPERTY = {
    "type": "string",
    "description": "Email address of the user",
}

ToolResult = list[TextContent | ImageContent | EmbeddedResource]
ToolHandler = Callable[[dict[str, Any], AccountContext], Awaitable[ToolResult]]


class ToolError(GSuiteMCPError):
    """Tool call arguments are invalid or the tool is unknown."""


class OperationNotPermittedError(ToolError):
    """Tool is disabled by configuration."""


def json_result(data: Any) -> ToolResult:
    return [TextContent(type="text", text=json.dumps(data, indent=2))]


def text_result(text: str) -> ToolResult:
    return [TextContent(type="text", text=text)]


def require_args(arguments: dict[str, Any], *names: str) -> None:
    """Raise ToolError naming the first missing or empty argument."""
    for name in names:
        value = arguments.get(name)
        if value is None or value == "" or value == []:
            raise ToolError(f"Missing required argument: {name}")


def clamp(value: Any, default: int, minimum: int, maximum: int) -> int:
    try:
        number = int(value) if value is not None else default
    except (TypeError, ValueError):
        number = default
    return min(max(minimum, number), maximum)


def _describe_safely(describe: Callable[[Any], Any], item: Any) -> Any:
    try:
        return describe(item)
    except Exception:
        # Malformed items are reported as sent
        return item


async def gather_per_item(
    items: Iterable[Any],
    operation: Callable[[Any], Awaitable[Any]],
    describe: Callable[[Any], Any] = lambda item: item,
) -> tuple[list[Any], list[dict[str, Any]]]:
    """Run ``operation`` on every item concurrently.

    Failures are collected per item instead of failing the whole batch.

    Returns:
        Tuple of (successful results in input order, error entries).
    """
    items = list(items)
    outcomes = await asyncio.gather(*[operation(item) for item in items], return_exceptions=True)

    results: list[Any] = []
    errors: list[dict[str, Any]] = []
    for item, outcome in zip(items, outcomes, strict=True):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            label = _describe_safely(describe, item)
            logger.warning(f"Batch item {label} failed: {outcome}")
            errors.append({"item": label, "error": str(outcome)})
            continue
        results.append(outcome)
    return results, errors


class ServiceTools:
    """Tool catalog and handlers for one Google service.

    Subclasses declare ``prefix``, the OAuth ``scopes`` their tools need,
    their tool schemas and a name-to-handler map.

    Attributes:
        api: Authenticated HTTP client shared by all services.
        registry: Configured accounts, for the list-accounts tools.
        allow_send: Whether send-style tools are enabled.
    """

    prefix: str = ""
    scopes: tuple[str, ...] = ()
    # Tools that run without a user_id or credentials
    account_free_tools: frozenset[str] = frozenset()

    def __init__(
        self,
        api: GoogleApiClient,
        registry: AccountRegistry,
        allow_send: bool = False,
    ) -> None:
        self.api = api
        self.registry = registry
        self.allow_send = allow_send

    def get_tools(self) -> list[Tool]:
        raise NotImplementedError

    def handlers(self) -> dict[str, ToolHandler]:
        raise NotImplementedError

    def requires_account(self, name: str) -> bool:
        return name not in self.account_free_tools

    async def handle_tool(
        self, name: str, arguments: dict[str, Any], context: AccountContext | None
    ) -> ToolResult:
        """Run a tool.

        Args:
            name: Tool name.
            arguments: Tool arguments.
            context: Credentials of the calling account; None for account-free tools.

        Raises:
            ToolError: If the tool name is not recognized.
        """
        if name in self.account_free_tools:
            return self._list_accounts()

        handler = self.handlers().get(name)
        if handler is None:
            raise ToolError(f"Unknown tool: {name}")
        if context is None:
            raise ToolError(f"{USER_ID_ARG} argument is missing in dictionary")
        return await handler(arguments, context)

    def _ensure_send_allowed(self, tool_name: str) -> None:
        if not self.allow_send:
            raise OperationNotPermittedError(
                f"{tool_name} is disabled. Set GSUITE_MCP_ALLOW_SEND=true to allow sending."
            )

    def _list_accounts(self) -> ToolResult:
        """List configured accounts; shared by the Gmail and Calendar catalogs."""
        try:
            accounts = self.registry.list_accounts()
        except GSuiteMCPError as e:
            logger.error(f"Error listing accounts: {e}")
            return json_result({"error": f"Failed to list accounts: {e}", "accounts": []})

        account_list = [
            {
                "email": account.email,
                "account_type": account.account_type,
                "extra_info": account.extra_info,
                "description": account.to_description(),
            }
            for account in accounts
        ]

        if not account_list:
            return json_result(
                {
                    "message": "No accounts configured. Please check your .accounts.json file.",
                    "accounts": [],
                }
            )

        return json_result(
            {
                "message": f"Found {len(account_list)} configured account(s)",
                "accounts": account_list,
            }
        )

    @staticmethod
    def _list_accounts_tool(prefix: str, service_label: str) -> Tool:
        return Tool(
            name=f"{prefix}_list_accounts",
            description=(
                f"Lists all configured Google accounts that can be used with the "
                f"{service_label} tools. This tool does not require a user_id as it "
                "lists available accounts before selection."
            ),
            inputSchema={
                "type": "object",
                "properties": {},
                "additionalProperties": False,
                "required": [],
            },
        )
