"""One-shot local HTTP listener for the OAuth redirect.

The listener accepts exactly one good redirect (``GET <path>?code=...``),
answers it with a short confirmation page, hands the code over and stops
serving. Requests to other paths or without a code are answered with a
client error and leave the listener running, so stray requests cannot use
up the single redirect.
"""

import asyncio
import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import parse_qs, urlparse

from gsuite_mcp.auth.errors import AuthorizationTimeoutError, CallbackBindError
from gsuite_mcp.config import DEFAULT_CALLBACK_PATH, DEFAULT_OAUTH_HOST, DEFAULT_OAUTH_PORT

logger = logging.getLogger(__name__)

SUCCESS_BODY = b"Auth successful! You can close the tab!"


class _CallbackHTTPServer(HTTPServer):
    listener: "CallbackListener"


class _CallbackHandler(BaseHTTPRequestHandler):
    """HTTP handler for the OAuth redirect."""

    server: _CallbackHTTPServer

    def log_message(self, format: str, *args) -> None:
        logger.debug(f"OAuth callback: {format % args}")

    def _respond(self, status: int, body: bytes = b"") -> None:
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self) -> None:
        listener = self.server.listener
        request_parsed = urlparse(self.path)

        if request_parsed.path != listener.callback_path:
            self._respond(404, b"Not Found")
            return

        query_params = parse_qs(request_parsed.query)

        if "error" in query_params:
            logger.warning(f"OAuth redirect reported error: {query_params['error'][0]}")

        code = query_params.get("code", [""])[0]
        if not code:
            self._respond(400, b"No authorization code received.")
            return

        if listener.expected_state is not None:
            state = query_params.get("state", [None])[0]
            if state != listener.expected_state:
                logger.warning("OAuth redirect carried an unexpected state, ignoring")
                self._respond(400, b"State mismatch.")
                return

        self._respond(200, SUCCESS_BODY)
        listener._deliver(code)


class CallbackListener:
    """Short-lived local listener waiting for one OAuth redirect.

    Use as an async context manager: entering binds the port, leaving
    always tears the listener down.

    Attributes:
        host: Interface to bind.
        callback_path: Path the redirect URI points at.
        expected_state: If set, redirects with a different ``state`` are refused.

    Example:
        ```python
        async with CallbackListener(port=4100, expected_state=state) as listener:
            code = await listener.wait_for_code(timeout=300)
        ```
    """

    def __init__(
        self,
        host: str = DEFAULT_OAUTH_HOST,
        port: int = DEFAULT_OAUTH_PORT,
        callback_path: str = DEFAULT_CALLBACK_PATH,
        expected_state: str | None = None,
        poll_interval: float = 0.5,
    ) -> None:
        self.host = host
        self.callback_path = callback_path
        self.expected_state = expected_state
        self._requested_port = port
        self._poll_interval = poll_interval
        self._server: _CallbackHTTPServer | None = None
        self._serve_task: asyncio.Future | None = None
        self._code: str | None = None
        self._received = threading.Event()
        self._stopping = threading.Event()

    @property
    def port(self) -> int:
        """Bound port (useful when constructed with port 0)."""
        if self._server is None:
            return self._requested_port
        return int(self._server.server_address[1])

    @property
    def is_serving(self) -> bool:
        return self._serve_task is not None and not self._serve_task.done()

    def start(self) -> None:
        """Bind the port and start serving on an executor thread.

        Raises:
            CallbackBindError: If the port cannot be bound.
        """
        if self._server is not None:
            raise RuntimeError("CallbackListener can only be started once")

        try:
            server = _CallbackHTTPServer((self.host, self._requested_port), _CallbackHandler)
        except OSError as e:
            raise CallbackBindError(self.host, self._requested_port, str(e)) from e

        server.listener = self
        server.timeout = self._poll_interval
        self._server = server

        loop = asyncio.get_running_loop()
        self._serve_task = loop.run_in_executor(None, self._serve, server)
        logger.info(
            f"OAuth callback server listening on http://{self.host}:{self.port}{self.callback_path}"
        )

    def _serve(self, server: _CallbackHTTPServer) -> None:
        try:
            # Wait for a single good callback request
            while not self._received.is_set() and not self._stopping.is_set():
                server.handle_request()
        finally:
            server.server_close()

    def _deliver(self, code: str) -> None:
        self._code = code
        self._received.set()

    async def wait_for_code(self, timeout: float | None = None) -> str:
        """Wait for the redirect to deliver an authorization code.

        Args:
            timeout: Seconds to wait; None waits indefinitely.

        Returns:
            The authorization code.

        Raises:
            AuthorizationTimeoutError: If no code arrived in time.
        """
        if self._serve_task is None:
            raise RuntimeError("CallbackListener has not been started")

        try:
            await asyncio.wait_for(asyncio.shield(self._serve_task), timeout)
        except asyncio.TimeoutError as e:
            raise AuthorizationTimeoutError() from e

        if self._code is None:
            raise AuthorizationTimeoutError(
                message="OAuth callback listener stopped before a code arrived"
            )
        return self._code

    async def close(self) -> None:
        """Stop serving and release the port."""
        self._stopping.set()
        if self._serve_task is not None:
            await self._serve_task

    async def __aenter__(self) -> "CallbackListener":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
