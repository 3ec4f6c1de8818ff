"""Shared pytest fixtures for gsuite-mcp tests.

This module provides reusable fixtures for token records, account and
client identity files, token storage, and a credential manager wired to
mocked OAuth network calls.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from gsuite_mcp.auth.accounts import AccountRegistry
from gsuite_mcp.auth.credential_manager import CredentialLifecycleManager
from gsuite_mcp.auth.models import ClientIdentity, Identity, TokenRecord
from gsuite_mcp.auth.oauth_client import OAuth2Client
from gsuite_mcp.auth.token_storage import TokenStorage
from gsuite_mcp.services import required_scopes

ACCOUNT_A = "a@example.com"
ACCOUNT_B = "b@example.com"

REDIRECT_URI = "http://localhost:4100/code"


# =============================================================================
# Token Fixtures
# =============================================================================


@pytest.fixture
def full_scopes() -> list[str]:
    """Every scope the tool catalog needs, identity scopes included."""
    return required_scopes()


@pytest.fixture
def valid_record(full_scopes: list[str]) -> TokenRecord:
    """Create a non-expired token record covering every scope."""
    return TokenRecord(
        access_token="test_access_token_abc123",
        refresh_token="test_refresh_token_xyz789",
        expiry=datetime.now(timezone.utc) + timedelta(hours=1),
        scopes=full_scopes,
    )


@pytest.fixture
def expired_record(full_scopes: list[str]) -> TokenRecord:
    """Create an expired token record that can still be refreshed."""
    return TokenRecord(
        access_token="expired_access_token",
        refresh_token="test_refresh_token",
        expiry=datetime.now(timezone.utc) - timedelta(hours=1),
        scopes=full_scopes,
    )


@pytest.fixture
def under_scoped_record() -> TokenRecord:
    """Create a token with a refresh token but only the Gmail scope."""
    return TokenRecord(
        access_token="narrow_access_token",
        refresh_token="narrow_refresh_token",
        expiry=datetime.now(timezone.utc) + timedelta(hours=1),
        scopes=["https://mail.google.com/"],
    )


# =============================================================================
# Configuration File Fixtures
# =============================================================================


def write_accounts_file(path: Path, emails: list[str]) -> Path:
    path.write_text(
        json.dumps(
            {
                "accounts": [
                    {"email": email, "account_type": "personal", "extra_info": f"Inbox of {email}"}
                    for email in emails
                ]
            }
        )
    )
    return path


@pytest.fixture
def accounts_file(tmp_path: Path) -> Path:
    """Accounts file listing ACCOUNT_A and ACCOUNT_B."""
    return write_accounts_file(tmp_path / ".accounts.json", [ACCOUNT_A, ACCOUNT_B])


@pytest.fixture
def gauth_file(tmp_path: Path) -> Path:
    """Client secrets file in the format downloaded from the Cloud console."""
    path = tmp_path / ".gauth.json"
    path.write_text(
        json.dumps(
            {
                "installed": {
                    "client_id": "test-client-id.apps.googleusercontent.com",
                    "client_secret": "test-client-secret",  # pragma: allowlist secret
                    "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                    "token_uri": "https://oauth2.googleapis.com/token",
                    "redirect_uris": [REDIRECT_URI],
                }
            }
        )
    )
    return path


@pytest.fixture
def client_identity() -> ClientIdentity:
    return ClientIdentity(
        client_id="test-client-id.apps.googleusercontent.com",
        client_secret="test-client-secret",  # pragma: allowlist secret
        redirect_uri=REDIRECT_URI,
    )


# =============================================================================
# Storage and Registry Fixtures
# =============================================================================


@pytest.fixture
def credentials_dir(tmp_path: Path) -> Path:
    """Directory for per-account token files (created on first save)."""
    return tmp_path / "credentials"


@pytest.fixture
def token_storage(credentials_dir: Path) -> TokenStorage:
    return TokenStorage(credentials_dir)


@pytest.fixture
def registry(accounts_file: Path) -> AccountRegistry:
    return AccountRegistry(accounts_file)


# =============================================================================
# Credential Manager Fixtures
# =============================================================================


def fake_authorization_url(email: str, scopes: Any, state: str) -> str:
    return f"https://accounts.google.com/o/oauth2/auth?login_hint={email}&state={state}"


@pytest.fixture
def mock_oauth_client(valid_record: TokenRecord) -> MagicMock:
    """OAuth2Client with every network call mocked.

    By default the exchanged token belongs to ACCOUNT_A and carries a
    refresh token.
    """
    client = MagicMock(spec=OAuth2Client)
    client.build_authorization_url.side_effect = fake_authorization_url
    client.exchange_code = AsyncMock(return_value=valid_record)
    client.fetch_identity = AsyncMock(
        return_value=Identity(subject_id="1234567890", email=ACCOUNT_A)
    )
    client.refresh = AsyncMock()
    return client


class FakeCallbackListener:
    """Stands in for CallbackListener and for its factory.

    Delivers ``code`` after ``delay`` seconds, or raises ``error``.
    """

    def __init__(self, code: str = "test_auth_code") -> None:
        self.code = code
        self.error: Exception | None = None
        self.delay = 0.0
        self.created: list[dict[str, Any]] = []
        self.waits = 0

    def __call__(self, **kwargs: Any) -> "FakeCallbackListener":
        self.created.append(kwargs)
        return self

    async def __aenter__(self) -> "FakeCallbackListener":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None

    async def wait_for_code(self, timeout: float | None = None) -> str:
        self.waits += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.code


@pytest.fixture
def fake_listener() -> FakeCallbackListener:
    return FakeCallbackListener()


@pytest.fixture
def browser_opener() -> MagicMock:
    return MagicMock(return_value=True)


@pytest.fixture
def credential_manager(
    registry: AccountRegistry,
    token_storage: TokenStorage,
    mock_oauth_client: MagicMock,
    full_scopes: list[str],
    browser_opener: MagicMock,
    fake_listener: FakeCallbackListener,
) -> CredentialLifecycleManager:
    """Manager over temporary files with browser and listener faked."""
    return CredentialLifecycleManager(
        registry,
        token_storage,
        mock_oauth_client,
        required_scopes=full_scopes,
        auth_timeout=5.0,
        browser_opener=browser_opener,
        listener_factory=fake_listener,
    )


# =============================================================================
# CLI Test Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
