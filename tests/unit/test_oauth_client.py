"""Unit tests for OAuth2Client.

Tests cover consent URL construction, code exchange, identity lookup and
silent refresh. Google endpoints are never contacted.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from google.auth.exceptions import RefreshError

from gsuite_mcp.auth.errors import CodeExchangeError, NoUserIdError, TokenRefreshError
from gsuite_mcp.auth.models import ClientIdentity, TokenRecord
from gsuite_mcp.auth.oauth_client import (
    USERINFO_URL,
    OAuth2Client,
    token_record_from_response,
)

SCOPES = [
    "https://mail.google.com/",
    "https://www.googleapis.com/auth/userinfo.email",
    "openid",
]


def userinfo_client(status_code: int, payload: dict) -> httpx.AsyncClient:
    """HTTP client whose userinfo endpoint answers with ``payload``."""

    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == USERINFO_URL
        assert request.headers["Authorization"] == "Bearer test_access_token_abc123"
        return httpx.Response(status_code, json=payload)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.unit
class TestBuildAuthorizationUrl:
    """Tests for OAuth2Client.build_authorization_url()."""

    def test_should_request_offline_access_with_consent(
        self, client_identity: ClientIdentity
    ) -> None:
        client = OAuth2Client(client_identity)

        url = client.build_authorization_url("a@example.com", SCOPES, "state-123")

        params = parse_qs(urlparse(url).query)
        assert params["access_type"] == ["offline"]
        assert params["prompt"] == ["consent"]
        assert params["login_hint"] == ["a@example.com"]
        assert params["state"] == ["state-123"]
        assert params["redirect_uri"] == ["http://localhost:4100/code"]
        assert set(params["scope"][0].split()) == set(SCOPES)

    def test_should_be_deterministic(self, client_identity: ClientIdentity) -> None:
        """Verify equal inputs give equal URLs (no PKCE challenge)."""
        client = OAuth2Client(client_identity)

        first = client.build_authorization_url("a@example.com", SCOPES, "s")
        second = client.build_authorization_url("a@example.com", SCOPES, "s")

        assert first == second
        assert "code_challenge" not in first


@pytest.mark.unit
class TestExchangeCode:
    """Tests for OAuth2Client.exchange_code()."""

    @pytest.mark.asyncio
    async def test_should_return_record_from_token_response(
        self, client_identity: ClientIdentity
    ) -> None:
        mock_flow = MagicMock()
        mock_flow.fetch_token.return_value = {
            "access_token": "new_access",
            "refresh_token": "new_refresh",
            "expires_in": 3599,
            "scope": SCOPES,
            "token_type": "Bearer",
        }

        with patch(
            "gsuite_mcp.auth.oauth_client.Flow.from_client_config", return_value=mock_flow
        ):
            record = await OAuth2Client(client_identity).exchange_code("auth_code")

        mock_flow.fetch_token.assert_called_once_with(code="auth_code")
        assert record.access_token == "new_access"
        assert record.refresh_token == "new_refresh"
        assert record.scopes == SCOPES
        assert record.is_expired() is False

    @pytest.mark.asyncio
    async def test_reused_code_raises_code_exchange_error(
        self, client_identity: ClientIdentity
    ) -> None:
        """Verify a rejected code surfaces as CodeExchangeError."""
        mock_flow = MagicMock()
        mock_flow.fetch_token.side_effect = [
            {"access_token": "first", "refresh_token": "r", "expires_in": 3600},
            Exception("invalid_grant: Bad Request"),
        ]
        client = OAuth2Client(client_identity)

        with patch(
            "gsuite_mcp.auth.oauth_client.Flow.from_client_config", return_value=mock_flow
        ):
            await client.exchange_code("auth_code")
            with pytest.raises(CodeExchangeError):
                await client.exchange_code("auth_code")


@pytest.mark.unit
class TestTokenRecordFromResponse:
    """Tests for token_record_from_response()."""

    def test_should_use_expires_at(self) -> None:
        expires_at = (datetime.now(timezone.utc) + timedelta(minutes=30)).timestamp()

        record = token_record_from_response({"access_token": "a", "expires_at": expires_at})

        assert abs(record.expiry.timestamp() - expires_at) < 1

    def test_should_default_to_one_hour(self) -> None:
        record = token_record_from_response({"access_token": "a"})

        time_diff = record.expiry - datetime.now(timezone.utc)
        assert timedelta(minutes=55) < time_diff < timedelta(hours=1, minutes=5)
        assert record.refresh_token is None
        assert record.token_type == "Bearer"

    def test_should_split_scope_string(self) -> None:
        record = token_record_from_response({"access_token": "a", "scope": "openid email"})
        assert record.scopes == ["openid", "email"]


@pytest.mark.unit
class TestFetchIdentity:
    """Tests for OAuth2Client.fetch_identity()."""

    @pytest.mark.asyncio
    async def test_should_return_identity(
        self, client_identity: ClientIdentity, valid_record: TokenRecord
    ) -> None:
        http_client = userinfo_client(200, {"id": "1234567890", "email": "b@example.com"})

        identity = await OAuth2Client(client_identity, http_client).fetch_identity(valid_record)

        assert identity.subject_id == "1234567890"
        assert identity.email == "b@example.com"

    @pytest.mark.asyncio
    async def test_should_raise_when_id_missing(
        self, client_identity: ClientIdentity, valid_record: TokenRecord
    ) -> None:
        http_client = userinfo_client(200, {"email": "b@example.com"})

        with pytest.raises(NoUserIdError):
            await OAuth2Client(client_identity, http_client).fetch_identity(valid_record)

    @pytest.mark.asyncio
    async def test_should_raise_when_rejected(
        self, client_identity: ClientIdentity, valid_record: TokenRecord
    ) -> None:
        http_client = userinfo_client(401, {"error": "invalid_token"})

        with pytest.raises(NoUserIdError, match="401"):
            await OAuth2Client(client_identity, http_client).fetch_identity(valid_record)


@pytest.mark.unit
class TestRefresh:
    """Tests for OAuth2Client.refresh()."""

    @pytest.mark.asyncio
    async def test_should_keep_refresh_token_when_not_rotated(
        self, client_identity: ClientIdentity, expired_record: TokenRecord
    ) -> None:
        mock_creds = MagicMock()
        mock_creds.token = "refreshed_access_token"
        mock_creds.refresh_token = None
        mock_creds.id_token = None
        # google-auth reports naive UTC expiry
        mock_creds.expiry = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1)

        with patch("gsuite_mcp.auth.oauth_client.Credentials", return_value=mock_creds):
            refreshed = await OAuth2Client(client_identity).refresh(expired_record)

        mock_creds.refresh.assert_called_once()
        assert refreshed.access_token == "refreshed_access_token"
        assert refreshed.refresh_token == expired_record.refresh_token
        assert refreshed.scopes == expired_record.scopes
        assert refreshed.is_expired() is False

    @pytest.mark.asyncio
    async def test_should_raise_when_google_rejects(
        self, client_identity: ClientIdentity, expired_record: TokenRecord
    ) -> None:
        mock_creds = MagicMock()
        mock_creds.refresh.side_effect = RefreshError("invalid_grant")

        with patch("gsuite_mcp.auth.oauth_client.Credentials", return_value=mock_creds):
            with pytest.raises(TokenRefreshError, match="invalid_grant"):
                await OAuth2Client(client_identity).refresh(expired_record)

    @pytest.mark.asyncio
    async def test_should_raise_without_refresh_token(
        self, client_identity: ClientIdentity
    ) -> None:
        record = TokenRecord(access_token="a")

        with pytest.raises(TokenRefreshError, match="No refresh token"):
            await OAuth2Client(client_identity).refresh(record)
