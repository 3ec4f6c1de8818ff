"""Per-service MCP tool routers."""

from collections.abc import Iterable

from gsuite_mcp.auth.accounts import AccountRegistry
from gsuite_mcp.auth.oauth_client import IDENTITY_SCOPES
from gsuite_mcp.services.api_client import GoogleApiClient
from gsuite_mcp.services.base import (
    USER_ID_ARG,
    OperationNotPermittedError,
    ServiceTools,
    ToolError,
)
from gsuite_mcp.services.calendar import CalendarTools
from gsuite_mcp.services.docs import DocsTools
from gsuite_mcp.services.drive import DriveTools
from gsuite_mcp.services.gmail import GmailTools
from gsuite_mcp.services.sheets import SheetsTools
from gsuite_mcp.services.slides import SlidesTools

ALL_SERVICES: list[type[ServiceTools]] = [
    GmailTools,
    CalendarTools,
    DriveTools,
    DocsTools,
    SheetsTools,
    SlidesTools,
]


def build_services(
    api: GoogleApiClient,
    registry: AccountRegistry,
    allow_send: bool = False,
) -> list[ServiceTools]:
    """Instantiate every service router against shared components."""
    return [service(api, registry, allow_send=allow_send) for service in ALL_SERVICES]


def required_scopes(
    services: Iterable[ServiceTools | type[ServiceTools]] = ALL_SERVICES,
) -> list[str]:
    """Identity scopes plus the union of every service's scopes, sorted."""
    scopes = set(IDENTITY_SCOPES)
    for service in services:
        scopes.update(service.scopes)
    return sorted(scopes)


__all__ = [
    "ALL_SERVICES",
    "USER_ID_ARG",
    "CalendarTools",
    "DocsTools",
    "DriveTools",
    "GmailTools",
    "GoogleApiClient",
    "OperationNotPermittedError",
    "ServiceTools",
    "SheetsTools",
    "SlidesTools",
    "ToolError",
    "build_services",
    "required_scopes",
]
