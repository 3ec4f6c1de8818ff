"""Account registry and client identity loading.

Both files are static JSON written by the operator:

.accounts.json::

    {"accounts": [{"email": "me@example.com", "account_type": "personal",
                   "extra_info": "Main inbox"}]}

.gauth.json (as downloaded from the Google Cloud console)::

    {"installed": {"client_id": "...", "client_secret": "...", ...}}
"""

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from gsuite_mcp.auth.errors import AccountNotConfiguredError, ConfigurationError
from gsuite_mcp.auth.models import Account, ClientIdentity

logger = logging.getLogger(__name__)


class AccountRegistry:
    """Read-only view of the accounts the server may act for.

    The file is read on first use and cached for the process lifetime.
    A failed read is not cached, so fixing the file does not require a
    restart.

    Attributes:
        accounts_file: Path to the accounts JSON file.
    """

    def __init__(self, accounts_file: Path) -> None:
        self.accounts_file = accounts_file
        self._accounts: list[Account] | None = None

    def _load(self) -> list[Account]:
        try:
            with open(self.accounts_file) as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Accounts file not found: {self.accounts_file}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Could not read accounts file {self.accounts_file}: {e}"
            ) from e

        raw_accounts = data.get("accounts") if isinstance(data, dict) else None
        if not isinstance(raw_accounts, list):
            raise ConfigurationError(f"Invalid accounts format in {self.accounts_file}")

        try:
            accounts = [Account.model_validate(item) for item in raw_accounts]
        except ValidationError as e:
            raise ConfigurationError(f"Invalid account entry in {self.accounts_file}: {e}") from e

        logger.info(f"Loaded {len(accounts)} account(s) from {self.accounts_file}")
        return accounts

    def list_accounts(self) -> list[Account]:
        """Return all configured accounts.

        Raises:
            ConfigurationError: If the accounts file is missing or malformed.
        """
        if self._accounts is None:
            self._accounts = self._load()
        return list(self._accounts)

    def get(self, email: str) -> Account | None:
        for account in self.list_accounts():
            if account.email == email:
                return account
        return None

    def require(self, email: str) -> Account:
        """Return the account for ``email`` or fail fast.

        Raises:
            ConfigurationError: If no accounts are configured.
            AccountNotConfiguredError: If ``email`` is not listed.
        """
        accounts = self.list_accounts()
        if not accounts:
            raise ConfigurationError(f"No accounts specified in {self.accounts_file}")
        account = self.get(email)
        if account is None:
            raise AccountNotConfiguredError(email)
        return account


def load_client_identity(gauth_file: Path, redirect_uri: str) -> ClientIdentity:
    """Load the OAuth client id and secret.

    Args:
        gauth_file: Client secrets JSON, with an ``installed`` or ``web`` section.
        redirect_uri: Fixed local redirect URI the listener will serve.

    Returns:
        ClientIdentity bound to ``redirect_uri``.

    Raises:
        ConfigurationError: If the file is missing or malformed.
    """
    try:
        with open(gauth_file) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to load OAuth2 client file {gauth_file}: {e}") from e

    section = None
    if isinstance(data, dict):
        section = data.get("installed") or data.get("web")
    if not isinstance(section, dict):
        raise ConfigurationError(f"Invalid OAuth2 credentials format in {gauth_file}")

    fields = {"redirect_uri": redirect_uri}
    for key in ("client_id", "client_secret", "auth_uri", "token_uri"):
        if section.get(key):
            fields[key] = section[key]

    try:
        return ClientIdentity.model_validate(fields)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid OAuth2 credentials in {gauth_file}: {e}") from e
