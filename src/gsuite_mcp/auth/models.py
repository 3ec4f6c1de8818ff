"""Data models for accounts, tokens and OAuth client identity."""

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class TokenStatus(str, Enum):
    """Diagnostic status of a token file."""

    VALID = "valid"
    EXPIRED = "expired"
    MISSING = "missing"
    INVALID = "invalid"


class CredentialState(str, Enum):
    """Credential lifecycle state of an account when a tool call arrives."""

    NO_ACCOUNT_CONFIGURED = "no_account_configured"
    NO_STORED_CREDENTIAL = "no_stored_credential"
    STORED_WITHOUT_REFRESH_TOKEN = "stored_without_refresh_token"
    STORED_BUT_UNDER_SCOPED = "stored_but_under_scoped"
    STORED_AND_VALID = "stored_and_valid"
    AWAITING_INTERACTIVE_AUTH = "awaiting_interactive_auth"


class Account(BaseModel):
    """A Google account the server may act on behalf of.

    Attributes:
        email: Account email, also the token storage key.
        account_type: Free-text classification such as "personal" or "work".
        extra_info: Annotation shown to the agent, never used for control flow.
    """

    email: str
    account_type: str = ""
    extra_info: str = ""

    model_config = {"frozen": True}

    def to_description(self) -> str:
        return (
            f"Account for email: {self.email} of type: {self.account_type}. "
            f"Extra info for: {self.extra_info}"
        )


class TokenRecord(BaseModel):
    """OAuth2 token material for one account.

    A record is usable when it carries a refresh token and its granted
    scopes cover the required set. An expired access token alone does not
    make it unusable because the refresh token can mint a new one.
    """

    access_token: str
    refresh_token: str | None = None
    expiry: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc) + timedelta(hours=1)
    )
    scopes: list[str] = Field(default_factory=list)
    token_type: str = "Bearer"
    id_token: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_format(cls, data: Any) -> Any:
        # Files written by the node server use "scope" and "expiry_date" (ms)
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "scopes" not in data and "scope" in data:
            data["scopes"] = data.pop("scope")
        if "expiry" not in data and data.get("expiry_date") is not None:
            data["expiry"] = datetime.fromtimestamp(data.pop("expiry_date") / 1000, timezone.utc)
        return data

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scope_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.split()
        return value

    @field_validator("expiry")
    @classmethod
    def _ensure_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token)

    def covers(self, required_scopes: Iterable[str]) -> bool:
        """Check whether granted scopes are a superset of ``required_scopes``."""
        return set(required_scopes).issubset(self.scopes)

    def is_usable(self, required_scopes: Iterable[str]) -> bool:
        return self.has_refresh_token() and self.covers(required_scopes)

    def is_expired(self, buffer_seconds: int = 60) -> bool:
        """Check if the access token is expired or about to expire.

        Args:
            buffer_seconds: Treat tokens expiring within this window as expired.

        Returns:
            True if the access token should be refreshed before use.
        """
        return datetime.now(timezone.utc) + timedelta(seconds=buffer_seconds) >= self.expiry


class ClientIdentity(BaseModel):
    """The application's own OAuth2 client, shared by every account."""

    client_id: str
    client_secret: str
    redirect_uri: str
    auth_uri: str = "https://accounts.google.com/o/oauth2/auth"
    token_uri: str = "https://oauth2.googleapis.com/token"

    model_config = {"frozen": True}

    def to_client_config(self) -> dict[str, Any]:
        """Render the client config dict expected by google-auth-oauthlib."""
        return {
            "installed": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": self.auth_uri,
                "token_uri": self.token_uri,
                "redirect_uris": [self.redirect_uri],
            }
        }


class Identity(BaseModel):
    """Who a token actually belongs to, per the userinfo endpoint."""

    subject_id: str
    email: str


class PendingAuthorization(BaseModel):
    """An interactive consent flow that is waiting for its redirect."""

    email: str
    authorization_url: str
    state: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
