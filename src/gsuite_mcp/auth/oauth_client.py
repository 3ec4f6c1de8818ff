"""OAuth2 client wrapper around google-auth-oauthlib.

Wraps the application's single client identity and exposes the three
network operations the credential lifecycle needs: building the consent
URL, exchanging an authorization code, and resolving which account a
token belongs to. Silent refresh of access tokens lives here as well.

The client keeps no per-account state; every call takes or returns an
explicit TokenRecord.
"""

import asyncio
import logging
import os
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from gsuite_mcp.auth.errors import CodeExchangeError, NoUserIdError, TokenRefreshError
from gsuite_mcp.auth.models import ClientIdentity, Identity, TokenRecord

# Google may grant a subset of the requested scopes; let oauthlib accept that
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")

logger = logging.getLogger(__name__)

USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

# Always requested so the identity step can resolve the account email
IDENTITY_SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
]


class OAuth2Client:
    """OAuth2 operations for one application client identity.

    Attributes:
        identity: Client id, secret and redirect URI.
    """

    def __init__(
        self,
        identity: ClientIdentity,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            identity: Application OAuth client identity.
            http_client: Shared HTTP client for the userinfo call.
                A short-lived client is created per call if not provided.
        """
        self.identity = identity
        self._http_client = http_client

    def _create_flow(self, scopes: list[str] | None) -> Flow:
        # PKCE stays off so the URL is deterministic and the exchange stateless
        return Flow.from_client_config(
            self.identity.to_client_config(),
            scopes=scopes,
            redirect_uri=self.identity.redirect_uri,
            autogenerate_code_verifier=False,
        )

    def build_authorization_url(
        self,
        account_email: str,
        required_scopes: Iterable[str],
        state: str,
    ) -> str:
        """Build the Google consent URL for an account.

        Always requests offline access and forces the consent screen so a
        refresh token is issued even on re-authorization.

        Args:
            account_email: Login hint pre-selecting the account.
            required_scopes: Scopes to request.
            state: Opaque value echoed back on the redirect.

        Returns:
            Authorization URL.
        """
        flow = self._create_flow(list(required_scopes))
        auth_url, _ = flow.authorization_url(
            access_type="offline",
            prompt="consent",
            login_hint=account_email,
            state=state,
        )
        return auth_url

    def _exchange_code_sync(self, code: str) -> dict[str, Any]:
        flow = self._create_flow(None)
        return dict(flow.fetch_token(code=code))

    async def exchange_code(self, code: str) -> TokenRecord:
        """Exchange an authorization code for tokens.

        Args:
            code: One-time authorization code from the redirect.

        Returns:
            TokenRecord built from the token response.

        Raises:
            CodeExchangeError: If the token endpoint rejects the code.
        """
        loop = asyncio.get_running_loop()
        try:
            token = await loop.run_in_executor(None, self._exchange_code_sync, code)
        except Exception as e:
            logger.error(f"Error exchanging code: {e}")
            raise CodeExchangeError() from e

        return token_record_from_response(token)

    async def fetch_identity(self, record: TokenRecord) -> Identity:
        """Resolve which account a token belongs to.

        Args:
            record: Token whose access token is presented.

        Returns:
            Subject id and email of the token owner.

        Raises:
            NoUserIdError: If the endpoint rejects the token or returns no id.
            httpx.TransportError: On network failure.
        """
        headers = {"Authorization": f"Bearer {record.access_token}"}
        if self._http_client is not None:
            response = await self._http_client.get(USERINFO_URL, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0)) as client:
                response = await client.get(USERINFO_URL, headers=headers)

        if response.status_code >= 400:
            logger.error(f"Userinfo request failed with status {response.status_code}")
            raise NoUserIdError(f"Userinfo request failed with status {response.status_code}")

        data = response.json()
        subject_id = data.get("id") if isinstance(data, dict) else None
        if not subject_id:
            raise NoUserIdError("Userinfo response carried no user id")
        if not data.get("email"):
            raise NoUserIdError("Userinfo response carried no email")

        return Identity(subject_id=str(subject_id), email=data["email"])

    def _record_to_credentials(self, record: TokenRecord) -> Credentials:
        return Credentials(  # nosec B106 - token_uri is public Google OAuth endpoint
            token=record.access_token,
            refresh_token=record.refresh_token,
            token_uri=self.identity.token_uri,
            client_id=self.identity.client_id,
            client_secret=self.identity.client_secret,
            scopes=record.scopes or None,
        )

    async def refresh(self, record: TokenRecord) -> TokenRecord:
        """Mint a new access token from the record's refresh token.

        Args:
            record: Stored token with a refresh token.

        Returns:
            New TokenRecord; keeps the old refresh token unless Google rotated it.

        Raises:
            TokenRefreshError: If there is no refresh token or Google rejects it.
        """
        if not record.refresh_token:
            raise TokenRefreshError("No refresh token available")

        credentials = self._record_to_credentials(record)

        # Run refresh in executor (blocking)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, credentials.refresh, Request())
        except RefreshError as e:
            raise TokenRefreshError(f"Token refresh failed: {e}") from e

        expiry = credentials.expiry or datetime.now(timezone.utc) + timedelta(hours=1)
        return TokenRecord(
            access_token=credentials.token,
            refresh_token=credentials.refresh_token or record.refresh_token,
            expiry=expiry,
            scopes=record.scopes,
            token_type=record.token_type,
            id_token=getattr(credentials, "id_token", None) or record.id_token,
        )


def token_record_from_response(token: dict[str, Any]) -> TokenRecord:
    """Convert an OAuth2 token endpoint response into a TokenRecord."""
    if token.get("expires_at"):
        expiry = datetime.fromtimestamp(float(token["expires_at"]), timezone.utc)
    elif token.get("expires_in"):
        expiry = datetime.now(timezone.utc) + timedelta(seconds=int(token["expires_in"]))
    else:
        # Default to 1 hour expiration
        expiry = datetime.now(timezone.utc) + timedelta(hours=1)

    return TokenRecord(  # nosec B106 - "Bearer" is OAuth token type, not a password
        access_token=token["access_token"],
        refresh_token=token.get("refresh_token"),
        expiry=expiry,
        scopes=token.get("scope") or [],
        token_type=token.get("token_type") or "Bearer",
        id_token=token.get("id_token"),
    )
