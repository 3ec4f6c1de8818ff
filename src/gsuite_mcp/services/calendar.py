"""Google Calendar tools."""

import logging
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx
from mcp.types import Tool

from gsuite_mcp.auth.credential_manager import AccountContext
from gsuite_mcp.services.api_client import CALENDAR_API_BASE
from gsuite_mcp.services.base import (
    USER_ID_ARG,
    USER_ID_PROPERTY,
    ServiceTools,
    ToolHandler,
    ToolResult,
    clamp,
    json_result,
    require_args,
)

logger = logging.getLogger(__name__)

CALENDAR_SCOPES = ("https://www.googleapis.com/auth/calendar",)

CALENDAR_ID_ARG = "__calendar_id__"

# Event fields returned by calendar_get_events
EVENT_FIELDS = (
    "id",
    "summary",
    "description",
    "start",
    "end",
    "status",
    "creator",
    "organizer",
    "attendees",
    "location",
    "hangoutLink",
    "conferenceData",
    "recurringEventId",
)


def _calendar_id_property(purpose: str) -> dict[str, Any]:
    return {
        "type": "string",
        "description": f'Calendar ID {purpose}. Use "primary" for the primary calendar.',
        "default": "primary",
    }


def _calendar_url(calendar_id: str) -> str:
    return f"{CALENDAR_API_BASE}/calendars/{quote(calendar_id, safe='')}/events"


class CalendarTools(ServiceTools):
    """Calendar listing and event management tools."""

    prefix = "calendar"
    scopes = CALENDAR_SCOPES
    account_free_tools = frozenset({"calendar_list_accounts"})

    def get_tools(self) -> list[Tool]:
        return [
            self._list_accounts_tool("calendar", "Calendar"),
            Tool(
                name="calendar_list",
                description=(
                    "Lists all calendars accessible by the user. Call it before any other "
                    "tool whenever the user specifies a particular agenda (Family, Holidays, etc.)."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {USER_ID_ARG: USER_ID_PROPERTY},
                    "required": [USER_ID_ARG],
                },
            ),
            Tool(
                name="calendar_get_events",
                description=(
                    "Retrieves calendar events from the user's Google Calendar within a "
                    "specified time range."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        CALENDAR_ID_ARG: _calendar_id_property("to fetch events from"),
                        "time_min": {
                            "type": "string",
                            "description": (
                                "Start time in RFC3339 format (e.g. 2024-12-01T00:00:00Z). "
                                "Defaults to current time if not specified."
                            ),
                        },
                        "time_max": {
                            "type": "string",
                            "description": (
                                "End time in RFC3339 format (e.g. 2024-12-31T23:59:59Z). Optional."
                            ),
                        },
                        "max_results": {
                            "type": "integer",
                            "description": "Maximum number of events to return (1-2500)",
                            "minimum": 1,
                            "maximum": 2500,
                            "default": 250,
                        },
                        "show_deleted": {
                            "type": "boolean",
                            "description": "Whether to include deleted events",
                            "default": False,
                        },
                        "timezone": {
                            "type": "string",
                            "description": (
                                "Timezone for the events (e.g. 'America/New_York'). "
                                "Defaults to UTC."
                            ),
                            "default": "UTC",
                        },
                    },
                    "required": [USER_ID_ARG],
                },
            ),
            Tool(
                name="calendar_create_event",
                description="Creates a new event in the specified Google Calendar.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        CALENDAR_ID_ARG: _calendar_id_property("to create the event in"),
                        "summary": {"type": "string", "description": "Title of the event"},
                        "start_time": {
                            "type": "string",
                            "description": (
                                "Start time in RFC3339 format (e.g. 2024-12-01T10:00:00Z)"
                            ),
                        },
                        "end_time": {
                            "type": "string",
                            "description": "End time in RFC3339 format (e.g. 2024-12-01T11:00:00Z)",
                        },
                        "location": {
                            "type": "string",
                            "description": "Location of the event (optional)",
                        },
                        "description": {
                            "type": "string",
                            "description": "Description or notes for the event (optional)",
                        },
                        "attendees": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "List of attendee email addresses (optional)",
                        },
                        "send_notifications": {
                            "type": "boolean",
                            "description": "Whether to send notifications to attendees",
                            "default": True,
                        },
                        "timezone": {
                            "type": "string",
                            "description": (
                                "Timezone for the event (e.g. 'America/New_York'). Defaults to UTC."
                            ),
                            "default": "UTC",
                        },
                    },
                    "required": [USER_ID_ARG, "summary", "start_time", "end_time"],
                },
            ),
            Tool(
                name="calendar_delete_event",
                description="Deletes an event from the specified Google Calendar.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: USER_ID_PROPERTY,
                        CALENDAR_ID_ARG: _calendar_id_property("containing the event"),
                        "event_id": {
                            "type": "string",
                            "description": "The ID of the calendar event to delete",
                        },
                        "send_notifications": {
                            "type": "boolean",
                            "description": (
                                "Whether to send cancellation notifications to attendees"
                            ),
                            "default": True,
                        },
                    },
                    "required": [USER_ID_ARG, "event_id"],
                },
            ),
        ]

    def handlers(self) -> dict[str, ToolHandler]:
        return {
            "calendar_list": self._list_calendars,
            "calendar_get_events": self._get_events,
            "calendar_create_event": self._create_event,
            "calendar_delete_event": self._delete_event,
        }

    async def _list_calendars(
        self, arguments: dict[str, Any], context: AccountContext
    ) -> ToolResult:
        """List all calendars accessible by the user."""
        url = f"{CALENDAR_API_BASE}/users/me/calendarList"
        response = await self.api.request(context, "GET", url)

        calendars = [
            {
                "id": item.get("id"),
                "summary": item.get("summary"),
                "primary": item.get("primary", False),
                "time_zone": item.get("timeZone"),
                "etag": item.get("etag"),
                "access_role": item.get("accessRole"),
            }
            for item in response.get("items", [])
        ]
        logger.info(f"Retrieved {len(calendars)} calendars for {context.email}")
        return json_result(calendars)

    async def _get_events(self, arguments: dict[str, Any], context: AccountContext) -> ToolResult:
        """Get events from a calendar.

        Args:
            arguments: Tool arguments with calendar id, time range, max_results,
                show_deleted and timezone.
            context: Calling account.

        Returns:
            Events expanded into single instances, ordered by start time.
        """
        calendar_id = arguments.get(CALENDAR_ID_ARG) or "primary"
        time_min = arguments.get("time_min") or datetime.now(timezone.utc).isoformat()

        params: dict[str, Any] = {
            "timeMin": time_min,
            "maxResults": clamp(arguments.get("max_results"), 250, 1, 2500),
            "singleEvents": True,
            "orderBy": "startTime",
            "showDeleted": bool(arguments.get("show_deleted", False)),
            "timeZone": arguments.get("timezone") or "UTC",
        }
        if arguments.get("time_max"):
            params["timeMax"] = arguments["time_max"]

        response = await self.api.request(context, "GET", _calendar_url(calendar_id), params=params)

        events = [
            {field: item.get(field) for field in EVENT_FIELDS}
            for item in response.get("items", [])
        ]
        return json_result(events)

    async def _create_event(
        self, arguments: dict[str, Any], context: AccountContext
    ) -> ToolResult:
        """Create a new calendar event."""
        require_args(arguments, "summary", "start_time", "end_time")

        calendar_id = arguments.get(CALENDAR_ID_ARG) or "primary"
        tz = arguments.get("timezone") or "UTC"

        event_body: dict[str, Any] = {
            "summary": arguments["summary"],
            "start": {"dateTime": arguments["start_time"], "timeZone": tz},
            "end": {"dateTime": arguments["end_time"], "timeZone": tz},
        }
        if arguments.get("location"):
            event_body["location"] = arguments["location"]
        if arguments.get("description"):
            event_body["description"] = arguments["description"]
        if arguments.get("attendees"):
            event_body["attendees"] = [{"email": email} for email in arguments["attendees"]]

        send_updates = "all" if arguments.get("send_notifications", True) else "none"
        response = await self.api.request(
            context,
            "POST",
            _calendar_url(calendar_id),
            params={"sendUpdates": send_updates},
            json_data=event_body,
        )
        return json_result(response)

    async def _delete_event(
        self, arguments: dict[str, Any], context: AccountContext
    ) -> ToolResult:
        """Delete a calendar event; API failures are reported, not raised."""
        require_args(arguments, "event_id")

        calendar_id = arguments.get(CALENDAR_ID_ARG) or "primary"
        event_id = arguments["event_id"]
        send_updates = "all" if arguments.get("send_notifications", True) else "none"
        url = f"{_calendar_url(calendar_id)}/{quote(event_id, safe='')}"

        try:
            await self.api.request(context, "DELETE", url, params={"sendUpdates": send_updates})
        except httpx.HTTPError as e:
            logger.error(f"Error deleting calendar event {event_id}: {e}")
            return json_result({"success": False, "message": "Failed to delete event"})

        return json_result({"success": True, "message": "Event successfully deleted"})
