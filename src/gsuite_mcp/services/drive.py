"""Read-only Google Drive tools."""

import base64
import logging
from typing import Any
from urllib.parse import quote

from mcp.types import BlobResourceContents, EmbeddedResource, Tool

from gsuite_mcp.auth.credential_manager import AccountContext
from gsuite_mcp.services.api_client import DRIVE_API_BASE
from gsuite_mcp.services.base import (
    USER_ID_ARG,
    USER_ID_PROPERTY,
    ServiceTools,
    ToolHandler,
    ToolResult,
    clamp,
    json_result,
    require_args,
    text_result,
)

logger = logging.getLogger(__name__)

DRIVE_SCOPES = ("https://www.googleapis.com/auth/drive.readonly",)

DEFAULT_EXPORT_MIME = "text/plain"

LIST_FIELDS = "files(id, name, mimeType, modifiedTime, owners(displayName, emailAddress))"
METADATA_FIELDS = (
    "id, name, mimeType, modifiedTime, size, webViewLink, owners(displayName, emailAddress)"
)

FILE_ID_PROPERTY = {"type": "string", "description": "The ID of the Drive file"}


def _file_url(file_id: str) -> str:
    return f"{DRIVE_API_BASE}/files/{quote(file_id, safe='')}"


class DriveTools(ServiceTools):
    """Drive listing, metadata, export and download tools."""

    prefix = "drive"
    scopes = DRIVE_SCOPES

    def get_tools(self) -> list[Tool]:
        return [
            Tool(
                name="drive_list_files",
                description="Lists files in Google Drive with optional query and mimeType filters.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "query": {
                            "type": "string",
                            "description": (
                                "Drive query string (e.g., \"mimeType contains "
                                "'application/vnd.google-apps'\")"
                            ),
                        },
                        "page_size": {
                            "type": "integer",
                            "description": "Number of files to return (1-100)",
                            "minimum": 1,
                            "maximum": 100,
                            "default": 50,
                        },
                    },
                    "required": [USER_ID_ARG],
                },
            ),
            Tool(
                name="drive_get_file_metadata",
                description="Retrieves metadata for a Drive file by ID.",
                inputSchema={
                    "type": "object",
                    "properties": {USER_ID_ARG: USER_ID_PROPERTY, "file_id": FILE_ID_PROPERTY},
                    "required": ["file_id", USER_ID_ARG],
                },
            ),
            Tool(
                name="drive_export_file",
                description=(
                    "Exports a Google Docs/Sheets/Slides file to the specified mime type "
                    "(defaults to text/plain)."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "file_id": FILE_ID_PROPERTY,
                        "export_mime_type": {
                            "type": "string",
                            "description": (
                                "Target mime type to export (e.g., text/plain, text/csv, "
                                "application/pdf)"
                            ),
                            "default": DEFAULT_EXPORT_MIME,
                        },
                    },
                    "required": ["file_id", USER_ID_ARG],
                },
            ),
            Tool(
                name="drive_download_file",
                description=(
                    "Downloads a non-Google-native Drive file by ID and returns it as an "
                    "embedded resource."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "file_id": FILE_ID_PROPERTY,
                        "filename": {
                            "type": "string",
                            "description": "Optional filename hint for the resource",
                        },
                        "mime_type": {
                            "type": "string",
                            "description": "Optional mime type hint for the resource",
                        },
                    },
                    "required": ["file_id", USER_ID_ARG],
                },
            ),
        ]

    def handlers(self) -> dict[str, ToolHandler]:
        return {
            "drive_list_files": self._list_files,
            "drive_get_file_metadata": self._get_file_metadata,
            "drive_export_file": self._export_file,
            "drive_download_file": self._download_file,
        }

    async def _list_files(self, arguments: dict[str, Any], context: AccountContext) -> ToolResult:
        params: dict[str, Any] = {
            "pageSize": clamp(arguments.get("page_size"), 50, 1, 100),
            "fields": LIST_FIELDS,
        }
        if arguments.get("query"):
            params["q"] = arguments["query"]

        response = await self.api.request(context, "GET", f"{DRIVE_API_BASE}/files", params=params)
        return json_result(response.get("files", []))

    async def _get_file_metadata(
        self, arguments: dict[str, Any], context: AccountContext
    ) -> ToolResult:
        require_args(arguments, "file_id")

        response = await self.api.request(
            context, "GET", _file_url(arguments["file_id"]), params={"fields": METADATA_FIELDS}
        )
        return json_result(response)

    async def _export_file(self, arguments: dict[str, Any], context: AccountContext) -> ToolResult:
        """Export a Google-native file and return it as text."""
        require_args(arguments, "file_id")
        export_mime_type = arguments.get("export_mime_type") or DEFAULT_EXPORT_MIME

        response = await self.api.request_raw(
            context,
            "GET",
            f"{_file_url(arguments['file_id'])}/export",
            params={"mimeType": export_mime_type},
        )
        return text_result(response.content.decode("utf-8", errors="replace"))

    async def _download_file(
        self, arguments: dict[str, Any], context: AccountContext
    ) -> ToolResult:
        """Download file content as a base64 blob resource."""
        require_args(arguments, "file_id")
        file_id = arguments["file_id"]
        url = _file_url(file_id)

        metadata = await self.api.request(
            context, "GET", url, params={"fields": "id, name, mimeType"}
        )
        response = await self.api.request_raw(context, "GET", url, params={"alt": "media"})
        logger.info(f"Downloaded {len(response.content)} bytes of {metadata.get('name', file_id)}")

        mime_type = (
            arguments.get("mime_type") or metadata.get("mimeType") or "application/octet-stream"
        )
        return [
            EmbeddedResource(
                type="resource",
                resource=BlobResourceContents(
                    uri=f"urn:drive:{file_id}",
                    mimeType=mime_type,
                    blob=base64.b64encode(response.content).decode(),
                ),
            )
        ]
