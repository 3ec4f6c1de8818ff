"""Read-only Google Slides tools."""

import logging
from typing import Any
from urllib.parse import quote

from mcp.types import Tool

from gsuite_mcp.auth.credential_manager import AccountContext
from gsuite_mcp.services.api_client import SLIDES_API_BASE
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

SLIDES_SCOPES = ("https://www.googleapis.com/auth/presentations.readonly",)


def extract_slide_text(slide: dict[str, Any]) -> str:
    """Join the text of every shape on a slide, one shape per line."""
    chunks = []
    for element in slide.get("pageElements", []):
        text_elements = element.get("shape", {}).get("text", {}).get("textElements", [])
        text = "".join(t.get("textRun", {}).get("content", "") for t in text_elements).strip()
        if text:
            chunks.append(text)
    return "\n".join(chunks)


class SlidesTools(ServiceTools):
    prefix = "slides"
    scopes = SLIDES_SCOPES

    def get_tools(self) -> list[Tool]:
        return [
            Tool(
                name="slides_get_presentation",
                description=(
                    "Retrieves a Google Slides presentation and returns slide text content."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "presentation_id": {
                            "type": "string",
                            "description": "The ID of the Google Slides presentation",
                        },
                    },
                    "required": ["presentation_id", USER_ID_ARG],
                },
            ),
        ]

    def handlers(self) -> dict[str, ToolHandler]:
        return {"slides_get_presentation": self._get_presentation}

    async def _get_presentation(
        self, arguments: dict[str, Any], context: AccountContext
    ) -> ToolResult:
        """Get the presentation title and the text of each slide."""
        require_args(arguments, "presentation_id")
        presentation_id = arguments["presentation_id"]

        url = f"{SLIDES_API_BASE}/presentations/{quote(presentation_id, safe='')}"
        response = await self.api.request(context, "GET", url)

        slides = [
            {
                "slideIndex": index,
                "slideObjectId": slide.get("objectId"),
                "text": extract_slide_text(slide),
            }
            for index, slide in enumerate(response.get("slides", []), start=1)
        ]
        return json_result(
            {"presentationId": presentation_id, "title": response.get("title"), "slides": slides}
        )
