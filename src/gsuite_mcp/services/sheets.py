"""Read-only Google Sheets tools."""

import logging
from typing import Any
from urllib.parse import quote

from mcp.types import Tool

from gsuite_mcp.auth.credential_manager import AccountContext
from gsuite_mcp.services.api_client import SHEETS_API_BASE
from gsuite_mcp.services.base import (
    USER_ID_ARG,
    USER_ID_PROPERTY,
    ServiceTools,
    ToolError,
    ToolHandler,
    ToolResult,
    json_result,
    require_args,
)

logger = logging.getLogger(__name__)

SHEETS_SCOPES = ("https://www.googleapis.com/auth/spreadsheets.readonly",)

MAJOR_DIMENSIONS = ("ROWS", "COLUMNS")

SPREADSHEET_ID_PROPERTY = {"type": "string", "description": "The ID of the Google Sheet"}


def _values_url(spreadsheet_id: str) -> str:
    return f"{SHEETS_API_BASE}/spreadsheets/{quote(spreadsheet_id, safe='')}/values"


class SheetsTools(ServiceTools):
    """Range reads from Google Sheets."""

    prefix = "sheets"
    scopes = SHEETS_SCOPES

    def get_tools(self) -> list[Tool]:
        return [
            Tool(
                name="sheets_get_values",
                description="Reads values from a Google Sheet range (read-only).",
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "spreadsheet_id": SPREADSHEET_ID_PROPERTY,
                        "range": {
                            "type": "string",
                            "description": "Range to read (e.g., Sheet1!A1:D20)",
                        },
                        "major_dimension": {
                            "type": "string",
                            "description": "Optional major dimension (ROWS or COLUMNS)",
                            "enum": list(MAJOR_DIMENSIONS),
                        },
                    },
                    "required": ["spreadsheet_id", "range", USER_ID_ARG],
                },
            ),
            Tool(
                name="sheets_batch_get_values",
                description="Reads multiple ranges from a Google Sheet in one call.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "spreadsheet_id": SPREADSHEET_ID_PROPERTY,
                        "ranges": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": (
                                'Array of ranges to read (e.g., ["Sheet1!A1:C5", "Sheet2!A1:B3"])'
                            ),
                        },
                    },
                    "required": ["spreadsheet_id", "ranges", USER_ID_ARG],
                },
            ),
        ]

    def handlers(self) -> dict[str, ToolHandler]:
        return {
            "sheets_get_values": self._get_values,
            "sheets_batch_get_values": self._batch_get_values,
        }

    async def _get_values(self, arguments: dict[str, Any], context: AccountContext) -> ToolResult:
        require_args(arguments, "spreadsheet_id", "range")

        params: dict[str, Any] = {}
        major_dimension = arguments.get("major_dimension")
        if major_dimension:
            if major_dimension not in MAJOR_DIMENSIONS:
                raise ToolError(f"major_dimension must be one of {', '.join(MAJOR_DIMENSIONS)}")
            params["majorDimension"] = major_dimension

        url = f"{_values_url(arguments['spreadsheet_id'])}/{quote(arguments['range'], safe='')}"
        response = await self.api.request(context, "GET", url, params=params or None)
        return json_result(response)

    async def _batch_get_values(
        self, arguments: dict[str, Any], context: AccountContext
    ) -> ToolResult:
        require_args(arguments, "spreadsheet_id", "ranges")

        url = f"{_values_url(arguments['spreadsheet_id'])}:batchGet"
        # httpx repeats list params as ranges=a&ranges=b
        response = await self.api.request(
            context, "GET", url, params={"ranges": list(arguments["ranges"])}
        )
        return json_result(response)
