"""Per-account OAuth token storage for gsuite-mcp.

This module provides plain JSON token persistence without encryption,
one file per Google account.

Storage Location: <credentials_dir>/.oauth2.<email>.json

Files are overwritten in place on every save. A missing or unparseable
file is the normal state of an account that has never been authorized,
so reads report it as absent instead of raising.
"""

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from gsuite_mcp.auth.errors import TokenStorageError
from gsuite_mcp.auth.models import TokenRecord, TokenStatus

logger = logging.getLogger(__name__)

TOKEN_FILE_PREFIX = ".oauth2."
TOKEN_FILE_SUFFIX = ".json"


class TokenStorage:
    """JSON file storage for per-account OAuth tokens.

    Attributes:
        credentials_dir: Directory holding one token file per account.

    Example:
        ```python
        storage = TokenStorage(Path("~/.gsuite-mcp").expanduser())

        storage.save("me@example.com", record)

        stored = storage.load("me@example.com")
        if stored:
            print(f"Token expires at: {stored.expiry}")
        ```
    """

    def __init__(self, credentials_dir: Path) -> None:
        """Initialize token storage.

        Args:
            credentials_dir: Directory for token files. Created on first save.
        """
        self.credentials_dir = credentials_dir

    def path_for(self, email: str) -> Path:
        """Get the token file path for an account."""
        return self.credentials_dir / f"{TOKEN_FILE_PREFIX}{email}{TOKEN_FILE_SUFFIX}"

    def _ensure_credentials_dir(self) -> None:
        """Create credentials directory with owner-only permissions if needed."""
        if not self.credentials_dir.exists():
            self.credentials_dir.mkdir(parents=True, mode=0o700)

    def _read(self, email: str) -> dict | None:
        """Read the raw JSON for an account.

        Returns:
            Parsed JSON, or None if the file does not exist or is not JSON.

        Raises:
            TokenStorageError: If the file exists but cannot be read.
        """
        path = self.path_for(email)
        try:
            with open(path) as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except ValueError:
            # JSONDecodeError and UnicodeDecodeError alike
            logger.warning(f"Token file for {email} is not valid JSON: {path}")
            return None
        except OSError as e:
            raise TokenStorageError(f"Could not read token file {path}: {e}") from e

    def load(self, email: str) -> TokenRecord | None:
        """Load the stored token for an account.

        Args:
            email: Account email.

        Returns:
            TokenRecord if a valid file exists, None otherwise.

        Raises:
            TokenStorageError: If the file exists but cannot be read.
        """
        data = self._read(email)
        if data is None:
            logger.warning(f"No stored OAuth2 credentials yet for user: {email}")
            return None

        try:
            return TokenRecord.model_validate(data)
        except ValidationError:
            logger.warning(f"Stored OAuth2 credentials for {email} are corrupted, ignoring")
            return None

    def save(self, email: str, record: TokenRecord) -> None:
        """Persist a token, overwriting any previous one.

        Args:
            email: Account email used as the storage key.
            record: Token material to store.

        Raises:
            TokenStorageError: If the file cannot be written.
        """
        path = self.path_for(email)
        try:
            self._ensure_credentials_dir()
            with open(path, "w") as f:
                f.write(record.model_dump_json(indent=2))
            # Owner read/write only (600)
            path.chmod(0o600)
        except OSError as e:
            raise TokenStorageError(f"Could not write token file {path}: {e}") from e

        logger.info(f"Stored OAuth2 credentials for {email}")

    def list_accounts(self) -> list[str]:
        """List emails that have a token file."""
        if not self.credentials_dir.is_dir():
            return []
        emails = []
        for path in self.credentials_dir.glob(f"{TOKEN_FILE_PREFIX}*{TOKEN_FILE_SUFFIX}"):
            emails.append(path.name[len(TOKEN_FILE_PREFIX) : -len(TOKEN_FILE_SUFFIX)])
        return sorted(emails)

    def get_status(self, email: str) -> TokenStatus:
        """Get the diagnostic status of an account's token file."""
        data = self._read(email)
        if data is None:
            return TokenStatus.INVALID if self.path_for(email).exists() else TokenStatus.MISSING

        try:
            record = TokenRecord.model_validate(data)
        except ValidationError:
            return TokenStatus.INVALID

        if record.is_expired():
            return TokenStatus.EXPIRED
        return TokenStatus.VALID
