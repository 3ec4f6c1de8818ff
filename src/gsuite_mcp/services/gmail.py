"""Gmail tools."""

import base64
import logging
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any
from urllib.parse import quote

from mcp.types import BlobResourceContents, EmbeddedResource, Tool

from gsuite_mcp.auth.credential_manager import AccountContext
from gsuite_mcp.services.api_client import GMAIL_API_BASE
from gsuite_mcp.services.base import (
    USER_ID_ARG,
    USER_ID_PROPERTY,
    ServiceTools,
    ToolError,
    ToolHandler,
    ToolResult,
    clamp,
    gather_per_item,
    json_result,
    require_args,
    text_result,
)

logger = logging.getLogger(__name__)

GMAIL_SCOPES = ("https://mail.google.com/",)


def decode_base64url(data: str) -> bytes:
    """Decode Gmail's unpadded base64url payloads."""
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def extract_message_body(payload: dict[str, Any]) -> str:
    """Extract message body from Gmail payload.

    Handles both simple and multipart messages, preferring text/plain
    and falling back to text/html.

    Args:
        payload: Gmail message payload.

    Returns:
        Decoded message body text.
    """
    # Simple message with body data
    if payload.get("body", {}).get("data") and not payload.get("parts"):
        return decode_base64url(payload["body"]["data"]).decode("utf-8", errors="replace")

    parts = payload.get("parts", [])
    for part in parts:
        mime_type = part.get("mimeType", "")
        if mime_type == "text/plain":
            data = part.get("body", {}).get("data", "")
            if data:
                return decode_base64url(data).decode("utf-8", errors="replace")
        elif mime_type.startswith("multipart/"):
            # Recursively extract from nested parts
            result = extract_message_body(part)
            if result:
                return result

    # Fallback to HTML if no plain text
    for part in parts:
        if part.get("mimeType") == "text/html":
            data = part.get("body", {}).get("data", "")
            if data:
                return decode_base64url(data).decode("utf-8", errors="replace")

    return ""


def collect_attachments(payload: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Map part ids to attachment info for every part carrying an attachment."""
    attachments: dict[str, dict[str, Any]] = {}
    for part in payload.get("parts", []):
        attachment_id = part.get("body", {}).get("attachmentId")
        if attachment_id:
            attachments[part.get("partId", "")] = {
                "filename": part.get("filename"),
                "mime_type": part.get("mimeType"),
                "attachment_id": attachment_id,
            }
        if part.get("parts"):
            attachments.update(collect_attachments(part))
    return attachments


def build_email_message(
    to: str,
    subject: str,
    body: str,
    cc: list[str] | None = None,
    in_reply_to: str | None = None,
    references: str | None = None,
) -> str:
    """Build an RFC 2822 message and return it base64url encoded."""
    message = MIMEText(body, "plain", "utf-8")
    message["To"] = to
    message["Subject"] = subject

    if cc:
        message["Cc"] = ", ".join(cc)
    if in_reply_to:
        message["In-Reply-To"] = in_reply_to
    if references:
        message["References"] = references

    return base64.urlsafe_b64encode(message.as_bytes()).decode()


def _headers_of(message: dict[str, Any]) -> dict[str, str]:
    return {
        h["name"].lower(): h["value"]
        for h in message.get("payload", {}).get("headers", [])
        if h.get("name") and h.get("value") is not None
    }


def _describe_attachment(info: Any) -> Any:
    if not isinstance(info, dict):
        return info
    return {"message_id": info.get("message_id"), "part_id": info.get("part_id")}


class GmailTools(ServiceTools):
    """Gmail search, read, draft, reply, attachment and archive tools."""

    prefix = "gmail"
    scopes = GMAIL_SCOPES
    account_free_tools = frozenset({"gmail_list_accounts"})

    def get_tools(self) -> list[Tool]:
        return [
            self._list_accounts_tool("gmail", "Gmail"),
            Tool(
                name="gmail_query_emails",
                description=(
                    "Query Gmail emails based on an optional search query. Returns emails "
                    "in reverse chronological order (newest first). Returns metadata such "
                    "as subject and also a short summary of the content."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "query": {
                            "type": "string",
                            "description": (
                                "Gmail search query (optional). Examples: 'is:unread', "
                                "'from:example@gmail.com', 'newer_than:2d', 'has:attachment'. "
                                "If not provided, returns recent emails without filtering."
                            ),
                        },
                        "max_results": {
                            "type": "integer",
                            "description": "Maximum number of emails to retrieve (1-500)",
                            "minimum": 1,
                            "maximum": 500,
                            "default": 100,
                        },
                    },
                    "required": [USER_ID_ARG],
                },
            ),
            Tool(
                name="gmail_get_email",
                description=(
                    "Retrieves a complete Gmail email message by its ID, including the "
                    "full message body and attachment IDs."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "email_id": {
                            "type": "string",
                            "description": "The ID of the Gmail message to retrieve",
                        },
                    },
                    "required": ["email_id", USER_ID_ARG],
                },
            ),
            Tool(
                name="gmail_bulk_get_emails",
                description=(
                    "Retrieves multiple Gmail email messages by their IDs in a single "
                    "request. Messages that fail to load are reported under 'errors'."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "email_ids": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "List of Gmail message IDs to retrieve",
                        },
                    },
                    "required": ["email_ids", USER_ID_ARG],
                },
            ),
            Tool(
                name="gmail_create_draft",
                description=(
                    "Creates a draft email message from scratch in Gmail with specified "
                    "recipient, subject, body, and optional CC recipients. Do NOT use this "
                    "tool to reply to an existing message; use gmail_reply with send=false."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "to": {"type": "string", "description": "Email address of the recipient"},
                        "subject": {"type": "string", "description": "Subject line of the email"},
                        "body": {"type": "string", "description": "Body content of the email"},
                        "cc": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "Optional list of email addresses to CC",
                        },
                    },
                    "required": ["to", "subject", "body", USER_ID_ARG],
                },
            ),
            Tool(
                name="gmail_delete_draft",
                description=(
                    "Deletes a Gmail draft message by its ID. This action cannot be undone."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "draft_id": {
                            "type": "string",
                            "description": "The ID of the draft to delete",
                        },
                    },
                    "required": ["draft_id", USER_ID_ARG],
                },
            ),
            Tool(
                name="gmail_reply",
                description=(
                    "Creates a reply to an existing Gmail email message and either sends it "
                    "or saves as draft. Use the 'cc' argument to perform a \"reply all\". "
                    "Sending requires the server to run with sending enabled."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "original_message_id": {
                            "type": "string",
                            "description": "The ID of the Gmail message to reply to",
                        },
                        "reply_body": {
                            "type": "string",
                            "description": "The body content of your reply message",
                        },
                        "send": {
                            "type": "boolean",
                            "description": (
                                "If true, sends the reply immediately. If false, saves as draft."
                            ),
                            "default": False,
                        },
                        "cc": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "Optional list of email addresses to CC on the reply",
                        },
                    },
                    "required": ["original_message_id", "reply_body", USER_ID_ARG],
                },
            ),
            Tool(
                name="gmail_send_email",
                description=(
                    "Sends a new email immediately. Only available when the server runs "
                    "with sending enabled."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "to": {"type": "string", "description": "Email address of the recipient"},
                        "subject": {"type": "string", "description": "Subject line of the email"},
                        "body": {"type": "string", "description": "Body content of the email"},
                        "cc": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "Optional list of email addresses to CC",
                        },
                    },
                    "required": ["to", "subject", "body", USER_ID_ARG],
                },
            ),
            Tool(
                name="gmail_get_attachment",
                description="Retrieves a Gmail attachment by its ID.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "message_id": {
                            "type": "string",
                            "description": "The ID of the Gmail message containing the attachment",
                        },
                        "attachment_id": {
                            "type": "string",
                            "description": "The ID of the attachment to retrieve",
                        },
                        "mime_type": {
                            "type": "string",
                            "description": "The MIME type of the attachment",
                        },
                        "filename": {
                            "type": "string",
                            "description": "The filename of the attachment",
                        },
                        "save_to_disk": {
                            "type": "string",
                            "description": (
                                "The fullpath to save the attachment to disk. If not provided, "
                                "the attachment is returned as a resource."
                            ),
                        },
                    },
                    "required": [
                        "message_id",
                        "attachment_id",
                        "mime_type",
                        "filename",
                        USER_ID_ARG,
                    ],
                },
            ),
            Tool(
                name="gmail_bulk_save_attachments",
                description=(
                    "Saves multiple Gmail attachments to disk in a single request. "
                    "Attachments that fail are reported under 'errors'."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "attachments": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "message_id": {
                                        "type": "string",
                                        "description": "ID of the message with the attachment",
                                    },
                                    "part_id": {
                                        "type": "string",
                                        "description": "ID of the part containing the attachment",
                                    },
                                    "attachment_id": {
                                        "type": "string",
                                        "description": (
                                            "Attachment ID (optional, looked up from part_id "
                                            "when omitted)"
                                        ),
                                    },
                                    "save_path": {
                                        "type": "string",
                                        "description": "Path where the attachment should be saved",
                                    },
                                },
                                "required": ["message_id", "part_id", "save_path"],
                            },
                        },
                    },
                    "required": ["attachments", USER_ID_ARG],
                },
            ),
            Tool(
                name="gmail_archive",
                description="Archives a Gmail message by removing it from the inbox.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "message_id": {
                            "type": "string",
                            "description": "The ID of the Gmail message to archive",
                        },
                    },
                    "required": ["message_id", USER_ID_ARG],
                },
            ),
            Tool(
                name="gmail_bulk_archive",
                description="Archives multiple Gmail messages by removing them from the inbox.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        "message_ids": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "List of Gmail message IDs to archive",
                        },
                    },
                    "required": ["message_ids", USER_ID_ARG],
                },
            ),
        ]

    def handlers(self) -> dict[str, ToolHandler]:
        return {
            "gmail_query_emails": self._query_emails,
            "gmail_get_email": self._get_email,
            "gmail_bulk_get_emails": self._bulk_get_emails,
            "gmail_create_draft": self._create_draft,
            "gmail_delete_draft": self._delete_draft,
            "gmail_reply": self._reply,
            "gmail_send_email": self._send_email,
            "gmail_get_attachment": self._get_attachment,
            "gmail_bulk_save_attachments": self._bulk_save_attachments,
            "gmail_archive": self._archive,
            "gmail_bulk_archive": self._bulk_archive,
        }

    # =========================================================================
    # Read operations
    # =========================================================================

    async def _query_emails(self, arguments: dict[str, Any], context: AccountContext) -> ToolResult:
        """Search messages, then fetch their metadata in parallel."""
        params: dict[str, Any] = {"maxResults": clamp(arguments.get("max_results"), 100, 1, 500)}
        if arguments.get("query"):
            params["q"] = arguments["query"]

        url = f"{GMAIL_API_BASE}/users/me/messages"
        response = await self.api.request(context, "GET", url, params=params)

        message_list = response.get("messages", [])
        if not message_list:
            return json_result([])

        async def fetch_metadata(msg: dict[str, Any]) -> dict[str, Any]:
            msg_url = f"{GMAIL_API_BASE}/users/me/messages/{msg['id']}"
            detail = await self.api.request(
                context,
                "GET",
                msg_url,
                params={"format": "metadata", "metadataHeaders": ["From", "To", "Subject", "Date"]},
            )
            return {
                "id": detail.get("id"),
                "thread_id": detail.get("threadId"),
                "label_ids": detail.get("labelIds", []),
                "snippet": detail.get("snippet"),
                "internal_date": detail.get("internalDate"),
                "headers": _headers_of(detail),
            }

        # Messages that fail to load are skipped
        emails, _ = await gather_per_item(message_list, fetch_metadata, lambda m: m.get("id"))
        return json_result(emails)

    async def _fetch_full_message(self, context: AccountContext, email_id: str) -> dict[str, Any]:
        url = f"{GMAIL_API_BASE}/users/me/messages/{email_id}"
        message = await self.api.request(context, "GET", url, params={"format": "full"})
        payload = message.get("payload", {})
        return {
            **message,
            "body": extract_message_body(payload),
            "attachments": collect_attachments(payload),
        }

    async def _get_email(self, arguments: dict[str, Any], context: AccountContext) -> ToolResult:
        require_args(arguments, "email_id")
        return json_result(await self._fetch_full_message(context, arguments["email_id"]))

    async def _bulk_get_emails(
        self, arguments: dict[str, Any], context: AccountContext
    ) -> ToolResult:
        require_args(arguments, "email_ids")

        emails, errors = await gather_per_item(
            arguments["email_ids"],
            lambda email_id: self._fetch_full_message(context, email_id),
        )
        return json_result({"emails": emails, "errors": errors})

    # =========================================================================
    # Drafts, replies and sending
    # =========================================================================

    async def _create_draft(self, arguments: dict[str, Any], context: AccountContext) -> ToolResult:
        require_args(arguments, "to", "subject", "body")

        raw_message = build_email_message(
            arguments["to"], arguments["subject"], arguments["body"], arguments.get("cc")
        )
        url = f"{GMAIL_API_BASE}/users/me/drafts"
        draft = await self.api.request(
            context, "POST", url, json_data={"message": {"raw": raw_message}}
        )
        return json_result(draft)

    async def _delete_draft(self, arguments: dict[str, Any], context: AccountContext) -> ToolResult:
        require_args(arguments, "draft_id")

        draft_id = arguments["draft_id"]
        await self.api.request(context, "DELETE", f"{GMAIL_API_BASE}/users/me/drafts/{draft_id}")
        return text_result(f"Draft {draft_id} deleted successfully")

    async def _reply(self, arguments: dict[str, Any], context: AccountContext) -> ToolResult:
        """Reply to a message, as a draft or sent immediately."""
        require_args(arguments, "original_message_id", "reply_body")
        send = bool(arguments.get("send", False))
        if send:
            self._ensure_send_allowed("gmail_reply with send=true")

        message_id = arguments["original_message_id"]
        orig_url = f"{GMAIL_API_BASE}/users/me/messages/{message_id}"
        original = await self.api.request(context, "GET", orig_url, params={"format": "metadata"})

        headers = _headers_of(original)
        if not headers:
            raise ToolError("Could not extract headers from original message")

        original_subject = headers.get("subject", "")
        if original_subject.lower().startswith("re:"):
            reply_subject = original_subject
        else:
            reply_subject = f"Re: {original_subject}"

        message_id_header = headers.get("message-id")
        raw_message = build_email_message(
            to=headers.get("reply-to") or headers.get("from", ""),
            subject=reply_subject,
            body=arguments["reply_body"],
            cc=arguments.get("cc"),
            in_reply_to=message_id_header,
            references=message_id_header,
        )
        message = {"raw": raw_message, "threadId": original.get("threadId")}

        if send:
            url = f"{GMAIL_API_BASE}/users/me/messages/send"
            sent = await self.api.request(context, "POST", url, json_data=message)
            return json_result(sent)

        url = f"{GMAIL_API_BASE}/users/me/drafts"
        draft = await self.api.request(context, "POST", url, json_data={"message": message})
        return json_result(draft)

    async def _send_email(self, arguments: dict[str, Any], context: AccountContext) -> ToolResult:
        self._ensure_send_allowed("gmail_send_email")
        require_args(arguments, "to", "subject", "body")

        raw_message = build_email_message(
            arguments["to"], arguments["subject"], arguments["body"], arguments.get("cc")
        )
        url = f"{GMAIL_API_BASE}/users/me/messages/send"
        response = await self.api.request(context, "POST", url, json_data={"raw": raw_message})

        return json_result(
            {
                "status": "sent",
                "id": response.get("id"),
                "thread_id": response.get("threadId"),
                "label_ids": response.get("labelIds", []),
            }
        )

    # =========================================================================
    # Attachments
    # =========================================================================

    async def _fetch_attachment_data(
        self, context: AccountContext, message_id: str, attachment_id: str
    ) -> tuple[str, int | None]:
        url = f"{GMAIL_API_BASE}/users/me/messages/{message_id}/attachments/{attachment_id}"
        attachment = await self.api.request(context, "GET", url)
        data = attachment.get("data")
        if not data:
            raise ToolError(f"No data found for attachment {attachment_id} in message {message_id}")
        return data, attachment.get("size")

    async def _get_attachment(
        self, arguments: dict[str, Any], context: AccountContext
    ) -> ToolResult:
        require_args(arguments, "message_id", "attachment_id", "mime_type", "filename")

        message_id = arguments["message_id"]
        attachment_id = arguments["attachment_id"]
        data, _ = await self._fetch_attachment_data(context, message_id, attachment_id)
        decoded = decode_base64url(data)

        save_to_disk = arguments.get("save_to_disk")
        if save_to_disk:
            Path(save_to_disk).write_bytes(decoded)
            return text_result(f"Attachment saved to disk: {save_to_disk}")

        filename = quote(arguments["filename"])
        return [
            EmbeddedResource(
                type="resource",
                resource=BlobResourceContents(
                    uri=f"attachment://gmail/{message_id}/{attachment_id}/{filename}",
                    mimeType=arguments["mime_type"],
                    blob=base64.b64encode(decoded).decode(),
                ),
            )
        ]

    async def _resolve_attachment_id(
        self, context: AccountContext, message_id: str, part_id: str
    ) -> str:
        url = f"{GMAIL_API_BASE}/users/me/messages/{message_id}"
        message = await self.api.request(context, "GET", url, params={"format": "full"})
        attachments = collect_attachments(message.get("payload", {}))
        if part_id in attachments:
            return attachments[part_id]["attachment_id"]
        # Older clients passed the attachment id as part_id
        return part_id

    async def _bulk_save_attachments(
        self, arguments: dict[str, Any], context: AccountContext
    ) -> ToolResult:
        require_args(arguments, "attachments")

        async def save_one(info: dict[str, Any]) -> dict[str, Any]:
            if not isinstance(info, dict):
                raise ToolError("Each attachment entry must be an object")
            require_args(info, "message_id", "part_id", "save_path")
            message_id = info["message_id"]
            part_id = info["part_id"]
            attachment_id = info.get("attachment_id") or await self._resolve_attachment_id(
                context, message_id, part_id
            )
            data, size = await self._fetch_attachment_data(context, message_id, attachment_id)
            Path(info["save_path"]).write_bytes(decode_base64url(data))
            return {
                "message_id": message_id,
                "part_id": part_id,
                "save_path": info["save_path"],
                "size": size,
            }

        saved, errors = await gather_per_item(
            arguments["attachments"],
            save_one,
            _describe_attachment,
        )
        return json_result({"saved": saved, "errors": errors})

    # =========================================================================
    # Archive
    # =========================================================================

    async def _archive_one(self, context: AccountContext, message_id: str) -> str:
        url = f"{GMAIL_API_BASE}/users/me/messages/{message_id}/modify"
        await self.api.request(context, "POST", url, json_data={"removeLabelIds": ["INBOX"]})
        return message_id

    async def _archive(self, arguments: dict[str, Any], context: AccountContext) -> ToolResult:
        require_args(arguments, "message_id")
        message_id = await self._archive_one(context, arguments["message_id"])
        return text_result(f"Message {message_id} archived successfully")

    async def _bulk_archive(self, arguments: dict[str, Any], context: AccountContext) -> ToolResult:
        require_args(arguments, "message_ids")

        archived, errors = await gather_per_item(
            arguments["message_ids"],
            lambda message_id: self._archive_one(context, message_id),
        )
        return json_result({"archived": archived, "errors": errors})
