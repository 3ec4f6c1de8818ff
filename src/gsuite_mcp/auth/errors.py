"""Exception hierarchy for gsuite-mcp authentication.

Errors that can be recovered from by restarting the interactive consent
flow derive from GetCredentialsError and carry a freshly generated
authorization URL, so callers never have to rebuild it themselves.
"""


class GSuiteMCPError(Exception):
    """Base class for all gsuite-mcp errors."""


class ConfigurationError(GSuiteMCPError):
    """Accounts or client identity configuration is missing or invalid."""


class AccountNotConfiguredError(ConfigurationError):
    """Requested account is not listed in the accounts file."""

    def __init__(self, email: str) -> None:
        super().__init__(f"Account for email: {email} not specified in accounts file")
        self.email = email


class TokenStorageError(GSuiteMCPError):
    """Token file could not be read or written."""


class TokenRefreshError(GSuiteMCPError):
    """Silent access-token refresh was rejected upstream."""


class CallbackBindError(GSuiteMCPError):
    """The local OAuth callback listener could not bind its port.

    Usually means another authorization flow is already waiting on the
    same port.
    """

    def __init__(self, host: str, port: int, reason: str) -> None:
        super().__init__(f"Could not bind OAuth callback listener on {host}:{port}: {reason}")
        self.host = host
        self.port = port


class NoUserIdError(GSuiteMCPError):
    """Identity endpoint returned no stable subject identifier."""


class GetCredentialsError(GSuiteMCPError):
    """Credentials could not be obtained; restart at ``authorization_url``."""

    default_message = "Error getting credentials"

    def __init__(self, authorization_url: str = "", message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.authorization_url = authorization_url


class CodeExchangeError(GetCredentialsError):
    """Authorization code was rejected by the token endpoint."""

    default_message = "Authorization code exchange failed"


class NoRefreshTokenError(GetCredentialsError):
    """No refresh token was issued and none is on file."""

    default_message = "No refresh token available"


class AccountMismatchError(GetCredentialsError):
    """User completed consent as a different Google account."""

    def __init__(self, requested: str, resolved: str, authorization_url: str = "") -> None:
        super().__init__(
            authorization_url,
            f"Authorized as {resolved} but credentials were requested for {requested}",
        )
        self.requested = requested
        self.resolved = resolved


class AuthorizationTimeoutError(GetCredentialsError):
    """User did not finish the browser consent flow in time."""

    default_message = "Timed out waiting for OAuth authorization"
