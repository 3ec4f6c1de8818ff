"""Command-line interface for gsuite-mcp."""

import asyncio
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from gsuite_mcp.__version__ import __version__
from gsuite_mcp.config import (
    DEFAULT_ACCOUNTS_FILE,
    DEFAULT_AUTH_TIMEOUT,
    DEFAULT_CREDENTIALS_DIR,
    DEFAULT_GAUTH_FILE,
    DEFAULT_OAUTH_PORT,
    ServerConfig,
)


def config_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the options shared by every command that needs configuration."""
    options = [
        click.option(
            "--gauth-file",
            envvar="GSUITE_MCP_GAUTH_FILE",
            type=click.Path(path_type=Path),
            default=DEFAULT_GAUTH_FILE,
            show_default=True,
            help="OAuth client identity file",
        ),
        click.option(
            "--accounts-file",
            envvar="GSUITE_MCP_ACCOUNTS_FILE",
            type=click.Path(path_type=Path),
            default=DEFAULT_ACCOUNTS_FILE,
            show_default=True,
            help="File listing the accounts that may be used",
        ),
        click.option(
            "--credentials-dir",
            envvar="GSUITE_MCP_CREDENTIALS_DIR",
            type=click.Path(file_okay=False, path_type=Path),
            default=DEFAULT_CREDENTIALS_DIR,
            show_default=True,
            help="Directory holding per-account token files",
        ),
        click.option(
            "--oauth-port",
            envvar="GSUITE_MCP_OAUTH_PORT",
            type=click.IntRange(0, 65535),
            default=DEFAULT_OAUTH_PORT,
            show_default=True,
            help="Local port receiving the OAuth redirect",
        ),
        click.option(
            "--auth-timeout",
            envvar="GSUITE_MCP_AUTH_TIMEOUT",
            type=click.FloatRange(min=0, min_open=True),
            default=DEFAULT_AUTH_TIMEOUT,
            show_default=True,
            help="Seconds to wait for browser consent",
        ),
        click.option(
            "--browser",
            "browser_command",
            envvar="GSUITE_MCP_BROWSER",
            default=None,
            help="Command used to open the authorization URL (default: $BROWSER or system)",
        ),
        click.option(
            "--allow-send",
            envvar="GSUITE_MCP_ALLOW_SEND",
            is_flag=True,
            default=False,
            help="Enable tools that send email immediately",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_config(**options: Any) -> ServerConfig:
    """ServerConfig from command options; unset options keep their defaults."""
    return ServerConfig(**{key: value for key, value in options.items() if value is not None})


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """G Suite MCP Server - Connect MCP clients to several Google accounts.

    This tool provides tools across:
    - Gmail (query, read, draft, reply, attachments, archive)
    - Calendar (calendars, events)
    - Drive, Docs, Sheets, Slides (read-only)
    """
    pass


@main.command()
@config_options
def serve(**options: Any) -> None:
    """Start the MCP server over stdio.

    Accounts without usable credentials are authorized in the browser the
    first time a tool call needs them.

    This command is typically invoked by an MCP client.
    """
    from gsuite_mcp.auth import ConfigurationError
    from gsuite_mcp.server import main as server_main

    config = build_config(**options)

    # Start the MCP server (runs indefinitely)
    try:
        click.echo("Starting G Suite MCP server...", err=True)
        server_main(config)
    except ConfigurationError as e:
        click.echo(f"❌ Configuration error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nServer stopped.", err=True)
    except Exception as e:
        click.echo(f"❌ Server error: {e}", err=True)
        sys.exit(1)


main.add_command(serve, name="mcp")


@main.command()
@config_options
def accounts(**options: Any) -> None:
    """List configured accounts and their credential state."""
    from gsuite_mcp.auth import ConfigurationError
    from gsuite_mcp.server import build_credential_manager

    config = build_config(**options)
    try:
        manager = build_credential_manager(config)
        states = manager.describe_accounts()
    except ConfigurationError as e:
        click.echo(f"❌ {e}")
        sys.exit(1)

    if not states:
        click.echo(f"No accounts configured in {config.accounts_file}")
        return

    click.echo("Accounts:")
    for account, state in states:
        click.echo(f"  {account.to_description()}")
        click.echo(f"    state: {state.value}")

    configured = {account.email for account, _ in states}
    unlisted = [email for email in manager.storage.list_accounts() if email not in configured]
    if unlisted:
        click.echo("Token files for unlisted accounts:")
        for email in unlisted:
            click.echo(f"  {email}")


@main.command()
@click.argument("email")
@click.option("--force", is_flag=True, help="Re-consent even if credentials are ready")
@config_options
def auth(email: str, force: bool, **options: Any) -> None:
    """Authorize EMAIL now instead of on its first tool call.

    Opens the browser on the Google consent screen and stores the
    resulting tokens under the account that actually consented.
    """
    from gsuite_mcp.auth import (
        ConfigurationError,
        CredentialState,
        GetCredentialsError,
        GSuiteMCPError,
    )
    from gsuite_mcp.server import build_credential_manager

    logging.basicConfig(level=logging.INFO)
    config = build_config(**options)

    try:
        manager = build_credential_manager(config)
        manager.registry.require(email)
    except ConfigurationError as e:
        click.echo(f"❌ {e}")
        sys.exit(1)

    if not force and manager.classify(email) == CredentialState.STORED_AND_VALID:
        click.echo(f"✓ {email} is already authorized")
        click.echo(f"Token stored at: {manager.storage.path_for(email)}")
        click.echo("Use --force to re-authorize.")
        return

    click.echo(f"Starting OAuth authorization for {email}...")
    click.echo(f"Waiting up to {config.auth_timeout:g}s for browser consent...")
    click.echo("")

    try:
        asyncio.run(manager.authorize(email, force=True))
    except GetCredentialsError as e:
        click.echo(f"❌ Authorization failed: {e}")
        if e.authorization_url:
            click.echo(f"Retry at: {e.authorization_url}")
        sys.exit(1)
    except GSuiteMCPError as e:
        click.echo(f"❌ Authorization failed: {e}")
        sys.exit(1)

    click.echo(f"✓ Authorization successful for {email}")
    click.echo(f"Token stored at: {manager.storage.path_for(email)}")


@main.command()
@config_options
def doctor(**options: Any) -> None:
    """Check installation, configuration and token status.

    Verifies:
    1. Python dependencies installed
    2. OAuth client identity and accounts file readable
    3. Token state of every configured account
    """
    from gsuite_mcp.auth import ConfigurationError, CredentialState, TokenStatus
    from gsuite_mcp.server import build_credential_manager

    config = build_config(**options)

    click.echo("G Suite MCP Status:")
    click.echo("")

    # Check dependencies
    click.echo("Dependencies:")
    try:
        import google.auth  # noqa: F401
        import google_auth_oauthlib  # noqa: F401
        import httpx  # noqa: F401
        import mcp  # noqa: F401

        click.echo("  ✓ google-auth installed")
        click.echo("  ✓ google-auth-oauthlib installed")
        click.echo("  ✓ httpx installed")
        click.echo("  ✓ mcp installed")
    except ImportError as e:
        click.echo(f"  ❌ Missing dependency: {e}")
        sys.exit(1)

    click.echo("")

    # Check configuration
    click.echo("Configuration:")
    click.echo(f"  Client identity: {config.gauth_file}")
    click.echo(f"  Accounts file: {config.accounts_file}")
    click.echo(f"  Credentials dir: {config.credentials_dir}")
    click.echo(f"  Redirect URI: {config.redirect_uri}")
    try:
        manager = build_credential_manager(config)
        states = manager.describe_accounts()
    except ConfigurationError as e:
        click.echo(f"  ❌ {e}")
        click.echo("")
        click.echo("❌ Setup required.")
        sys.exit(1)
    click.echo("  ✓ Configuration loaded")
    click.echo("")

    # Check tokens
    click.echo("Accounts:")
    if not states:
        click.echo("  ❌ No accounts configured")
        sys.exit(1)

    for account, state in states:
        token_status = manager.storage.get_status(account.email)
        if state == CredentialState.STORED_AND_VALID and token_status == TokenStatus.VALID:
            click.echo(f"  ✓ {account.email}: authorized")
        elif state == CredentialState.STORED_AND_VALID:
            click.echo(f"  ⚠️  {account.email}: token expired (refreshes automatically on use)")
        else:
            click.echo(f"  ❌ {account.email}: {state.value}")
            click.echo(f"     Run 'gsuite-mcp auth {account.email}' to authorize.")

    click.echo("")
    click.echo("✓ Ready to use!")


if __name__ == "__main__":
    main()
