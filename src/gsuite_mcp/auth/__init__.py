"""OAuth authentication for gsuite-mcp.

This package manages OAuth2 credentials for several Google accounts at
once: which accounts may be used, where their tokens live, and how an
account without usable tokens gets authorized interactively.

Quick Start:
    ```python
    from gsuite_mcp.auth import (
        AccountRegistry,
        CredentialLifecycleManager,
        OAuth2Client,
        TokenStorage,
        load_client_identity,
    )

    identity = load_client_identity(Path(".gauth.json"), "http://localhost:4100/code")
    manager = CredentialLifecycleManager(
        AccountRegistry(Path(".accounts.json")),
        TokenStorage(Path(".")),
        OAuth2Client(identity),
        required_scopes=["https://mail.google.com/"],
    )

    # Opens the browser if the account still needs consent
    context = await manager.ensure_ready("me@example.com")
    access_token = await context.get_access_token()
    ```
"""

from gsuite_mcp.auth.accounts import AccountRegistry, load_client_identity
from gsuite_mcp.auth.callback_server import CallbackListener
from gsuite_mcp.auth.credential_manager import AccountContext, CredentialLifecycleManager
from gsuite_mcp.auth.errors import (
    AccountMismatchError,
    AccountNotConfiguredError,
    AuthorizationTimeoutError,
    CallbackBindError,
    CodeExchangeError,
    ConfigurationError,
    GetCredentialsError,
    GSuiteMCPError,
    NoRefreshTokenError,
    NoUserIdError,
    TokenRefreshError,
    TokenStorageError,
)
from gsuite_mcp.auth.models import (
    Account,
    ClientIdentity,
    CredentialState,
    Identity,
    PendingAuthorization,
    TokenRecord,
    TokenStatus,
)
from gsuite_mcp.auth.oauth_client import IDENTITY_SCOPES, OAuth2Client
from gsuite_mcp.auth.token_storage import TokenStorage

__all__ = [
    "Account",
    "AccountContext",
    "AccountMismatchError",
    "AccountNotConfiguredError",
    "AccountRegistry",
    "AuthorizationTimeoutError",
    "CallbackBindError",
    "CallbackListener",
    "ClientIdentity",
    "CodeExchangeError",
    "ConfigurationError",
    "CredentialLifecycleManager",
    "CredentialState",
    "GSuiteMCPError",
    "GetCredentialsError",
    "IDENTITY_SCOPES",
    "Identity",
    "NoRefreshTokenError",
    "NoUserIdError",
    "OAuth2Client",
    "PendingAuthorization",
    "TokenRecord",
    "TokenRefreshError",
    "TokenStatus",
    "TokenStorage",
    "TokenStorageError",
    "load_client_identity",
]
