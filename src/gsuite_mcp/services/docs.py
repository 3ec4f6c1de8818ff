"""Read-only Google Docs tools."""

import logging
from typing import Any
from urllib.parse import quote

from mcp.types import Tool

from gsuite_mcp.auth.credential_manager import AccountContext
from gsuite_mcp.services.api_client import DOCS_API_BASE
from gsuite_mcp.services.base import (
    USER_ID_ARG,
    USER_ID_PROPERTY,
    ServiceTools,
    ToolHandler,
    ToolResult,
    json_result,
    require_args,
)

logger = logging.getLogger(__name__)

DOCS_SCOPES = ("https://www.googleapis.com/auth/documents.readonly",)


def extract_document_text(content: list[dict[str, Any]]) -> str:
    """Extract plain text from the structural elements of a document body.

    Each paragraph becomes one line with trailing whitespace removed;
    empty paragraphs are dropped.
    """
    lines = []
    for element in content:
        paragraph = element.get("paragraph")
        if not paragraph:
            continue
        text = "".join(
            el.get("textRun", {}).get("content", "") for el in paragraph.get("elements", [])
        ).rstrip()
        if text:
            lines.append(text)
    return "\n".join(lines)


class DocsTools(ServiceTools):
    prefix = "docs"
    scopes = DOCS_SCOPES

    def get_tools(self) -> list[Tool]:
        return [
            Tool(
                name="docs_get_document",
                description="Retrieves a Google Docs document and returns its text content.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "document_id": {
                            "type": "string",
                            "description": "The ID of the Google Docs document",
                        },
                    },
                    "required": ["document_id", USER_ID_ARG],
                },
            ),
        ]

    def handlers(self) -> dict[str, ToolHandler]:
        return {"docs_get_document": self._get_document}

    async def _get_document(
        self, arguments: dict[str, Any], context: AccountContext
    ) -> ToolResult:
        require_args(arguments, "document_id")
        document_id = arguments["document_id"]

        url = f"{DOCS_API_BASE}/documents/{quote(document_id, safe='')}"
        response = await self.api.request(context, "GET", url)

        return json_result(
            {
                "documentId": document_id,
                "title": response.get("title"),
                "text": extract_document_text(response.get("body", {}).get("content", [])),
            }
        )
