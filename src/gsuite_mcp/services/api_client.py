"""Authenticated HTTP access to Google REST APIs."""

import logging
from typing import Any

import httpx

from gsuite_mcp.auth.credential_manager import AccountContext

logger = logging.getLogger(__name__)

# Google API base URLs
CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"
GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1"
DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
DOCS_API_BASE = "https://docs.googleapis.com/v1"
SHEETS_API_BASE = "https://sheets.googleapis.com/v4"
SLIDES_API_BASE = "https://slides.googleapis.com/v1"


class GoogleApiClient:
    """Shared HTTP client that signs requests with an account's token.

    Every call takes the AccountContext it acts for, so no credentials are
    shared between accounts.
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self._http_client = http_client

    async def get_http_client(self) -> httpx.AsyncClient:
        """Get or create shared HTTP client with connection pooling.

        Returns:
            Shared httpx.AsyncClient instance.
        """
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                http2=True,
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
                timeout=httpx.Timeout(30.0, connect=10.0),
            )
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client and release resources."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def request(
        self,
        context: AccountContext,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated JSON request to Google APIs.

        Args:
            context: Account the request is made for.
            method: HTTP method (GET, POST, etc.).
            url: Full URL to request.
            params: Optional query parameters.
            json_data: Optional JSON body data.

        Returns:
            JSON response as a dictionary; empty for bodiless responses.

        Raises:
            httpx.HTTPStatusError: If the request fails.
        """
        access_token = await context.get_access_token()
        client = await self.get_http_client()

        response = await client.request(
            method=method,
            url=url,
            params=params,
            json=json_data,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
        )
        response.raise_for_status()
        if not response.content:
            return {}
        result: dict[str, Any] = response.json()
        return result

    async def request_raw(
        self,
        context: AccountContext,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        timeout: float = 60.0,
    ) -> httpx.Response:
        """Make an authenticated request returning the raw response.

        Used for file downloads and exports.

        Raises:
            httpx.HTTPStatusError: If the request fails.
        """
        access_token = await context.get_access_token()
        client = await self.get_http_client()

        response = await client.request(
            method=method,
            url=url,
            params=params,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout,
        )
        response.raise_for_status()
        return response
