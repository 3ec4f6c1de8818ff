"""Open the authorization URL in the user's browser."""

import logging
import shlex
import subprocess  # nosec B404
import webbrowser

logger = logging.getLogger(__name__)


def open_browser(url: str, command: str | None = None) -> bool:
    """Open ``url`` in a browser without ever raising.

    Args:
        url: Authorization URL to open.
        command: Explicit launcher command (e.g. "firefox --new-window").
            The URL is appended as the last argument. Falls back to the
            platform default browser when not set.

    Returns:
        True if a browser was launched.
    """
    if command:
        try:
            subprocess.Popen(  # nosec B603
                [*shlex.split(command), url],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
            return True
        except (OSError, ValueError) as e:
            logger.error(f"Failed to launch browser with '{command}': {e}")
            logger.error(f"Open this URL manually: {url}")
            return False

    try:
        opened = webbrowser.open(url)
    except webbrowser.Error as e:
        logger.error(f"Failed to launch browser: {e}")
        opened = False

    if not opened:
        logger.error(f"Failed to launch browser. Open this URL manually: {url}")
    return opened
