"""Credential lifecycle manager for multiple Google accounts.

Guarantees that, before a tool call runs, the requested account has a
usable token: one with a refresh token whose granted scopes cover the
required set. When it does not, the manager runs the interactive OAuth2
authorization code flow: it builds the consent URL, opens a browser,
waits on a one-shot local callback listener, exchanges the code and
stores the result under the identity Google reports.

Interactive flows are serialised. Concurrent calls for the same account
share one in-flight flow, and flows for different accounts queue behind
a single lock because they share the fixed redirect port.
"""

import asyncio
import logging
import secrets
from collections.abc import Callable, Iterable

from gsuite_mcp.auth.accounts import AccountRegistry
from gsuite_mcp.auth.browser import open_browser
from gsuite_mcp.auth.callback_server import CallbackListener
from gsuite_mcp.auth.errors import (
    AccountMismatchError,
    AuthorizationTimeoutError,
    CodeExchangeError,
    NoRefreshTokenError,
    NoUserIdError,
)
from gsuite_mcp.auth.models import Account, CredentialState, PendingAuthorization, TokenRecord
from gsuite_mcp.auth.oauth_client import IDENTITY_SCOPES, OAuth2Client
from gsuite_mcp.auth.token_storage import TokenStorage
from gsuite_mcp.config import (
    DEFAULT_AUTH_TIMEOUT,
    DEFAULT_CALLBACK_PATH,
    DEFAULT_OAUTH_HOST,
    DEFAULT_OAUTH_PORT,
)

logger = logging.getLogger(__name__)


class AccountContext:
    """Credentials of one account, passed explicitly to every API call.

    The context refreshes an expired access token on first use and lets
    the manager persist the refreshed record.

    Attributes:
        email: Account the context acts for.
    """

    def __init__(
        self, email: str, record: TokenRecord, manager: "CredentialLifecycleManager"
    ) -> None:
        self.email = email
        self._record = record
        self._manager = manager
        self._lock = asyncio.Lock()

    @property
    def record(self) -> TokenRecord:
        return self._record

    async def get_access_token(self) -> str:
        """Get a valid access token, refreshing if necessary.

        Raises:
            TokenRefreshError: If the refresh token was rejected.
        """
        async with self._lock:
            if self._record.is_expired():
                logger.info(f"Access token for {self.email} expired, refreshing")
                self._record = await self._manager.refresh(self.email, self._record)
        return self._record.access_token


class CredentialLifecycleManager:
    """Makes sure an account has usable credentials before a tool call.

    Attributes:
        registry: Configured accounts.
        storage: Per-account token files.
        client: OAuth2 operations for the application client.
        required_scopes: Default scope set tool calls need.
        auth_timeout: Seconds to wait for the user to finish consent.

    Example:
        ```python
        manager = CredentialLifecycleManager(registry, storage, client,
                                             required_scopes=scopes)
        context = await manager.ensure_ready("me@example.com")
        token = await context.get_access_token()
        ```
    """

    def __init__(
        self,
        registry: AccountRegistry,
        storage: TokenStorage,
        client: OAuth2Client,
        required_scopes: Iterable[str] = (),
        *,
        oauth_host: str = DEFAULT_OAUTH_HOST,
        oauth_port: int = DEFAULT_OAUTH_PORT,
        callback_path: str = DEFAULT_CALLBACK_PATH,
        auth_timeout: float = DEFAULT_AUTH_TIMEOUT,
        browser_command: str | None = None,
        browser_opener: Callable[[str, str | None], bool] = open_browser,
        listener_factory: Callable[..., CallbackListener] = CallbackListener,
    ) -> None:
        self.registry = registry
        self.storage = storage
        self.client = client
        self.required_scopes = self._resolve_scopes(required_scopes)
        self.oauth_host = oauth_host
        self.oauth_port = oauth_port
        self.callback_path = callback_path
        self.auth_timeout = auth_timeout
        self.browser_command = browser_command
        self._browser_opener = browser_opener
        self._listener_factory = listener_factory
        self._pending: dict[str, asyncio.Task] = {}
        self._flows: dict[str, PendingAuthorization] = {}
        self._flow_lock = asyncio.Lock()

    @staticmethod
    def _resolve_scopes(scopes: Iterable[str]) -> list[str]:
        return sorted(set(IDENTITY_SCOPES) | set(scopes))

    def _scopes_for(self, required_scopes: Iterable[str] | None) -> list[str]:
        if required_scopes is None:
            return self.required_scopes
        return self._resolve_scopes(required_scopes)

    # ------------------------------------------------------------------
    # State decisions
    # ------------------------------------------------------------------

    @staticmethod
    def _state_for(record: TokenRecord | None, scopes: Iterable[str]) -> CredentialState:
        if record is None:
            return CredentialState.NO_STORED_CREDENTIAL
        if not record.covers(scopes):
            return CredentialState.STORED_BUT_UNDER_SCOPED
        if not record.has_refresh_token():
            return CredentialState.STORED_WITHOUT_REFRESH_TOKEN
        return CredentialState.STORED_AND_VALID

    def classify(
        self, email: str, required_scopes: Iterable[str] | None = None
    ) -> CredentialState:
        """Report an account's credential state without side effects.

        Raises:
            ConfigurationError: If the accounts file cannot be loaded.
        """
        if self.registry.get(email) is None:
            return CredentialState.NO_ACCOUNT_CONFIGURED
        if email in self._pending:
            return CredentialState.AWAITING_INTERACTIVE_AUTH
        return self._state_for(self.storage.load(email), self._scopes_for(required_scopes))

    def describe_accounts(self) -> list[tuple[Account, CredentialState]]:
        """Credential state of every configured account."""
        return [
            (account, self.classify(account.email)) for account in self.registry.list_accounts()
        ]

    def pending_authorization(self, email: str) -> PendingAuthorization | None:
        """The in-flight consent flow for ``email``, if one is waiting."""
        return self._flows.get(email)

    # ------------------------------------------------------------------
    # Entry point for tool calls
    # ------------------------------------------------------------------

    async def ensure_ready(
        self, email: str, required_scopes: Iterable[str] | None = None
    ) -> AccountContext:
        """Guarantee usable credentials for ``email``.

        Args:
            email: Requested account.
            required_scopes: Scopes the call needs; defaults to ``required_scopes``.

        Returns:
            AccountContext for the account.

        Raises:
            ConfigurationError: If the account is not configured.
            CallbackBindError: If the callback port is taken.
            GetCredentialsError: If interactive authorization failed; carries
                the authorization URL to retry with.
        """
        self.registry.require(email)
        scopes = self._scopes_for(required_scopes)

        record = self.storage.load(email)
        state = self._state_for(record, scopes)

        if record is not None and state == CredentialState.STORED_AND_VALID:
            if record.is_expired():
                logger.info(f"Credentials for {email} expired, will refresh on first use")
            return AccountContext(email, record, self)

        if state == CredentialState.STORED_BUT_UNDER_SCOPED:
            logger.info(
                f"Stored credentials for {email} missing required scopes, starting OAuth flow"
            )
        else:
            logger.info(f"No usable credentials for {email} ({state.value}), starting OAuth flow")

        record = await self.authorize(email, scopes, force=False)
        return AccountContext(email, record, self)

    async def authorize(
        self,
        email: str,
        required_scopes: Iterable[str] | None = None,
        force: bool = True,
    ) -> TokenRecord:
        """Run (or join) the interactive authorization flow for ``email``.

        Args:
            email: Account to authorize.
            required_scopes: Scopes to request.
            force: Re-consent even if usable credentials are already stored.

        Returns:
            The stored TokenRecord for ``email``.
        """
        scopes = self._scopes_for(required_scopes)
        task = self._pending.get(email)
        if task is None:
            task = asyncio.ensure_future(self._run_interactive_flow(email, scopes, force))
            self._pending[email] = task
            task.add_done_callback(lambda done: self._forget_pending(email, done))
        else:
            logger.info(f"Authorization for {email} already in progress, waiting for it")
        return await asyncio.shield(task)

    def _forget_pending(self, email: str, task: asyncio.Task) -> None:
        if self._pending.get(email) is task:
            del self._pending[email]
        if not task.cancelled():
            # Marks the exception retrieved when every waiter went away
            task.exception()

    # ------------------------------------------------------------------
    # Interactive flow
    # ------------------------------------------------------------------

    def build_authorization_url(
        self, email: str, required_scopes: Iterable[str] | None = None, state: str = ""
    ) -> str:
        return self.client.build_authorization_url(email, self._scopes_for(required_scopes), state)

    def begin_authorization(
        self, email: str, required_scopes: Iterable[str] | None = None
    ) -> PendingAuthorization:
        """Create the pending consent for ``email`` with a fresh state token."""
        state = secrets.token_urlsafe(32)
        url = self.build_authorization_url(email, required_scopes, state)
        return PendingAuthorization(email=email, authorization_url=url, state=state)

    async def _run_interactive_flow(
        self, email: str, scopes: list[str], force: bool
    ) -> TokenRecord:
        async with self._flow_lock:
            if not force:
                # A flow for another account may have authorized this one
                record = self.storage.load(email)
                if record is not None and record.is_usable(scopes):
                    return record

            pending = self.begin_authorization(email, scopes)
            self._flows[email] = pending
            try:
                code = await self._wait_for_code(pending)
            finally:
                self._flows.pop(email, None)

        resolved_email, record = await self.complete_authorization(code, email, scopes)
        if resolved_email != email:
            logger.warning(
                f"Requested authorization for {email} but consent was given as {resolved_email}"
            )
            raise AccountMismatchError(
                email, resolved_email, self.build_authorization_url(email, scopes)
            )
        return record

    async def _wait_for_code(self, pending: PendingAuthorization) -> str:
        listener = self._listener_factory(
            host=self.oauth_host,
            port=self.oauth_port,
            callback_path=self.callback_path,
            expected_state=pending.state,
        )
        async with listener:
            logger.info(
                f"OAuth flow starting for {pending.email}. "
                f"Opening browser at: {pending.authorization_url}"
            )
            self._browser_opener(pending.authorization_url, self.browser_command)
            try:
                return await listener.wait_for_code(self.auth_timeout)
            except AuthorizationTimeoutError as e:
                logger.error(
                    f"No OAuth redirect for {pending.email} within {self.auth_timeout:.0f}s"
                )
                e.authorization_url = pending.authorization_url
                raise

    async def complete_authorization(
        self,
        code: str,
        requested_email: str = "",
        required_scopes: Iterable[str] | None = None,
    ) -> tuple[str, TokenRecord]:
        """Turn an authorization code into stored credentials.

        The record is stored under the email Google reports for the token,
        which may differ from ``requested_email``.

        Args:
            code: Authorization code from the redirect.
            requested_email: Account the flow was started for (login hint
                for any retry URL).
            required_scopes: Scopes for any retry URL.

        Returns:
            Tuple of (resolved email, stored TokenRecord).

        Raises:
            CodeExchangeError: If the code was rejected.
            NoRefreshTokenError: If no user id could be resolved, or no
                refresh token was issued and none is on file.
        """
        scopes = self._scopes_for(required_scopes)

        try:
            record = await self.client.exchange_code(code)
        except CodeExchangeError as e:
            logger.error("An error occurred during code exchange.")
            e.authorization_url = self.build_authorization_url(requested_email, scopes)
            raise

        try:
            identity = await self.client.fetch_identity(record)
        except NoUserIdError as e:
            logger.error("No user ID could be retrieved.")
            raise NoRefreshTokenError(
                self.build_authorization_url(requested_email, scopes),
                "No user ID could be retrieved",
            ) from e

        email = identity.email
        if record.has_refresh_token():
            self.storage.save(email, record)
            return email, record

        stored = self.storage.load(email)
        if stored is not None and stored.has_refresh_token():
            logger.info(f"No refresh token issued for {email}, reusing the stored one")
            merged = record.model_copy(update={"refresh_token": stored.refresh_token})
            self.storage.save(email, merged)
            return email, merged

        raise NoRefreshTokenError(self.build_authorization_url(email, scopes))

    # ------------------------------------------------------------------
    # Silent refresh
    # ------------------------------------------------------------------

    async def refresh(self, email: str, record: TokenRecord) -> TokenRecord:
        """Refresh an access token and persist the result.

        Raises:
            TokenRefreshError: If the refresh was rejected.
            TokenStorageError: If the refreshed record cannot be stored.
        """
        refreshed = await self.client.refresh(record)
        self.storage.save(email, refreshed)
        return refreshed
