"""Unit tests for TokenStorage class.

Tests cover per-account token persistence, retrieval, listing, status
reporting and error handling.
"""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from gsuite_mcp.auth.errors import TokenStorageError
from gsuite_mcp.auth.models import TokenRecord, TokenStatus
from gsuite_mcp.auth.token_storage import TokenStorage


@pytest.mark.unit
class TestTokenStoragePaths:
    """Tests for token file naming."""

    def test_should_name_file_after_email(self, tmp_path: Path) -> None:
        """Verify one file per account named .oauth2.<email>.json."""
        storage = TokenStorage(tmp_path)
        assert storage.path_for("me@example.com") == tmp_path / ".oauth2.me@example.com.json"

    def test_should_not_create_directory_until_save(self, tmp_path: Path) -> None:
        """Verify constructing storage has no filesystem side effects."""
        TokenStorage(tmp_path / "creds")
        assert not (tmp_path / "creds").exists()


@pytest.mark.unit
class TestTokenStorageSave:
    """Tests for TokenStorage.save() method."""

    def test_should_save_and_load_record(
        self, token_storage: TokenStorage, valid_record: TokenRecord
    ) -> None:
        """Verify a saved record loads back equal."""
        token_storage.save("a@example.com", valid_record)

        loaded = token_storage.load("a@example.com")

        assert loaded == valid_record

    def test_should_create_directory_with_secure_permissions(
        self, token_storage: TokenStorage, credentials_dir: Path, valid_record: TokenRecord
    ) -> None:
        """Verify directory is created with 700 permissions."""
        token_storage.save("a@example.com", valid_record)

        assert credentials_dir.exists()
        assert credentials_dir.stat().st_mode & 0o777 == 0o700

    def test_should_write_file_with_secure_permissions(
        self, token_storage: TokenStorage, valid_record: TokenRecord
    ) -> None:
        """Verify token file has 600 permissions."""
        token_storage.save("a@example.com", valid_record)

        path = token_storage.path_for("a@example.com")
        assert path.stat().st_mode & 0o777 == 0o600

    def test_should_overwrite_existing_record(
        self, token_storage: TokenStorage, valid_record: TokenRecord
    ) -> None:
        """Verify save replaces the previous token."""
        token_storage.save("a@example.com", valid_record)
        newer = valid_record.model_copy(update={"access_token": "newer_access_token"})

        token_storage.save("a@example.com", newer)

        loaded = token_storage.load("a@example.com")
        assert loaded is not None
        assert loaded.access_token == "newer_access_token"

    def test_should_keep_accounts_separate(
        self, token_storage: TokenStorage, valid_record: TokenRecord
    ) -> None:
        """Verify saving one account never touches another."""
        token_storage.save("a@example.com", valid_record)

        assert token_storage.load("b@example.com") is None
        assert not token_storage.path_for("b@example.com").exists()

    def test_should_raise_storage_error_when_write_fails(
        self, token_storage: TokenStorage, valid_record: TokenRecord
    ) -> None:
        """Verify OS errors surface as TokenStorageError."""
        with patch("builtins.open", side_effect=PermissionError("denied")):
            with pytest.raises(TokenStorageError):
                token_storage.save("a@example.com", valid_record)


@pytest.mark.unit
class TestTokenStorageLoad:
    """Tests for TokenStorage.load() method."""

    def test_should_return_none_when_missing(self, token_storage: TokenStorage) -> None:
        assert token_storage.load("a@example.com") is None

    def test_should_return_none_for_corrupted_json(
        self, token_storage: TokenStorage, credentials_dir: Path
    ) -> None:
        """Verify unparseable files read as absent."""
        credentials_dir.mkdir(parents=True)
        token_storage.path_for("a@example.com").write_text("not valid json {{{")

        assert token_storage.load("a@example.com") is None

    def test_should_return_none_for_non_utf8_bytes(
        self, token_storage: TokenStorage, credentials_dir: Path
    ) -> None:
        """Verify undecodable bytes read as absent so re-authorization can start."""
        credentials_dir.mkdir(parents=True)
        token_storage.path_for("a@example.com").write_bytes(b'{"access_token": "\xff\xfe"}')

        assert token_storage.load("a@example.com") is None
        assert token_storage.get_status("a@example.com") == TokenStatus.INVALID

    def test_should_raise_storage_error_when_read_fails(
        self, token_storage: TokenStorage, valid_record: TokenRecord
    ) -> None:
        """Verify unreadable files surface as TokenStorageError."""
        token_storage.save("a@example.com", valid_record)

        with patch("builtins.open", side_effect=PermissionError("denied")):
            with pytest.raises(TokenStorageError):
                token_storage.load("a@example.com")

    def test_should_return_none_for_invalid_record(
        self, token_storage: TokenStorage, credentials_dir: Path
    ) -> None:
        """Verify JSON without an access token reads as absent."""
        credentials_dir.mkdir(parents=True)
        token_storage.path_for("a@example.com").write_text(json.dumps({"refresh_token": "r"}))

        assert token_storage.load("a@example.com") is None

    def test_should_load_legacy_format(
        self, token_storage: TokenStorage, credentials_dir: Path
    ) -> None:
        """Verify files in the scope/expiry_date format load."""
        credentials_dir.mkdir(parents=True)
        token_storage.path_for("a@example.com").write_text(
            json.dumps(
                {
                    "access_token": "legacy",
                    "refresh_token": "legacy_refresh",
                    "scope": "openid https://mail.google.com/",
                    "token_type": "Bearer",
                    "expiry_date": 4102444800000,
                }
            )
        )

        loaded = token_storage.load("a@example.com")

        assert loaded is not None
        assert loaded.scopes == ["openid", "https://mail.google.com/"]


@pytest.mark.unit
class TestTokenStorageListAndStatus:
    """Tests for list_accounts() and get_status()."""

    def test_should_list_accounts_with_token_files(
        self, token_storage: TokenStorage, valid_record: TokenRecord
    ) -> None:
        token_storage.save("b@example.com", valid_record)
        token_storage.save("a@example.com", valid_record)

        assert token_storage.list_accounts() == ["a@example.com", "b@example.com"]

    def test_should_list_nothing_without_directory(self, token_storage: TokenStorage) -> None:
        assert token_storage.list_accounts() == []

    def test_status_missing(self, token_storage: TokenStorage) -> None:
        assert token_storage.get_status("a@example.com") == TokenStatus.MISSING

    def test_status_valid(self, token_storage: TokenStorage, valid_record: TokenRecord) -> None:
        token_storage.save("a@example.com", valid_record)
        assert token_storage.get_status("a@example.com") == TokenStatus.VALID

    def test_status_expired(
        self, token_storage: TokenStorage, expired_record: TokenRecord
    ) -> None:
        token_storage.save("a@example.com", expired_record)
        assert token_storage.get_status("a@example.com") == TokenStatus.EXPIRED

    def test_status_invalid_for_corrupted_file(
        self, token_storage: TokenStorage, credentials_dir: Path
    ) -> None:
        credentials_dir.mkdir(parents=True)
        token_storage.path_for("a@example.com").write_text("garbage")

        assert token_storage.get_status("a@example.com") == TokenStatus.INVALID
