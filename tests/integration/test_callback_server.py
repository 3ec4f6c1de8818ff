"""Integration tests for the OAuth callback listener.

Each test binds a real loopback socket on an ephemeral port and talks to
it with httpx.
"""

import socket
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from gsuite_mcp.auth.callback_server import SUCCESS_BODY, CallbackListener
from gsuite_mcp.auth.credential_manager import CredentialLifecycleManager
from gsuite_mcp.auth.errors import AuthorizationTimeoutError, CallbackBindError

HOST = "127.0.0.1"


async def get(url: str) -> httpx.Response:
    async with httpx.AsyncClient(timeout=5.0) as client:
        return await client.get(url)


@pytest.mark.integration
class TestCallbackListener:
    """Tests for the one-shot redirect listener."""

    @pytest.mark.asyncio
    async def test_delivers_code_then_stops_serving(self) -> None:
        """Verify 200 with confirmation body, then the port is closed."""
        async with CallbackListener(host=HOST, port=0) as listener:
            base = f"http://{HOST}:{listener.port}"

            response = await get(f"{base}/code?code=ok")
            code = await listener.wait_for_code(timeout=5)

            assert response.status_code == 200
            assert response.content == SUCCESS_BODY
            assert code == "ok"
            assert listener.is_serving is False

            with pytest.raises(httpx.ConnectError):
                await get(f"{base}/code?code=again")

    @pytest.mark.asyncio
    async def test_missing_code_returns_400_and_keeps_serving(self) -> None:
        async with CallbackListener(host=HOST, port=0) as listener:
            base = f"http://{HOST}:{listener.port}"

            bad = await get(f"{base}/code")
            assert bad.status_code == 400
            assert listener.is_serving is True

            good = await get(f"{base}/code?code=second")
            assert good.status_code == 200
            assert await listener.wait_for_code(timeout=5) == "second"

    @pytest.mark.asyncio
    async def test_other_paths_return_404(self) -> None:
        async with CallbackListener(host=HOST, port=0) as listener:
            base = f"http://{HOST}:{listener.port}"

            response = await get(f"{base}/favicon.ico")

            assert response.status_code == 404
            assert listener.is_serving is True

    @pytest.mark.asyncio
    async def test_state_mismatch_is_rejected(self) -> None:
        async with CallbackListener(host=HOST, port=0, expected_state="expected") as listener:
            base = f"http://{HOST}:{listener.port}"

            forged = await get(f"{base}/code?code=forged&state=other")
            assert forged.status_code == 400
            assert listener.is_serving is True

            genuine = await get(f"{base}/code?code=real&state=expected")
            assert genuine.status_code == 200
            assert await listener.wait_for_code(timeout=5) == "real"

    @pytest.mark.asyncio
    async def test_timeout_raises_typed_error(self) -> None:
        async with CallbackListener(host=HOST, port=0, poll_interval=0.05) as listener:
            with pytest.raises(AuthorizationTimeoutError):
                await listener.wait_for_code(timeout=0.1)

        assert listener.is_serving is False

    @pytest.mark.asyncio
    async def test_busy_port_raises_bind_error(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind((HOST, 0))
            sock.listen(1)
            busy_port = sock.getsockname()[1]

            with pytest.raises(CallbackBindError) as exc_info:
                async with CallbackListener(host=HOST, port=busy_port):
                    pass

        assert exc_info.value.port == busy_port

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self) -> None:
        listener = CallbackListener(host=HOST, port=0, poll_interval=0.05)
        listener.start()
        try:
            with pytest.raises(RuntimeError):
                listener.start()
        finally:
            await listener.close()

    @pytest.mark.asyncio
    async def test_close_releases_port_for_rebinding(self) -> None:
        listener = CallbackListener(host=HOST, port=0, poll_interval=0.05)
        listener.start()
        port = listener.port

        await listener.close()

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind((HOST, port))


@pytest.mark.integration
class TestInteractiveFlowOverLoopback:
    """Credential manager driving a real listener."""

    @pytest.mark.asyncio
    async def test_browser_redirect_completes_authorization(
        self, registry, token_storage, mock_oauth_client: MagicMock, full_scopes
    ) -> None:
        listeners: list[CallbackListener] = []

        def listener_factory(**kwargs) -> CallbackListener:
            listener = CallbackListener(**kwargs, poll_interval=0.05)
            listeners.append(listener)
            return listener

        def fake_browser(url: str, command: str | None) -> bool:
            # Plays the part of Google redirecting back after consent
            state = parse_qs(urlparse(url).query)["state"][0]
            response = httpx.get(
                f"http://{HOST}:{listeners[-1].port}/code?code=granted&state={state}"
            )
            assert response.status_code == 200
            return True

        manager = CredentialLifecycleManager(
            registry,
            token_storage,
            mock_oauth_client,
            required_scopes=full_scopes,
            oauth_host=HOST,
            oauth_port=0,
            auth_timeout=5.0,
            browser_opener=fake_browser,
            listener_factory=listener_factory,
        )

        context = await manager.ensure_ready("a@example.com")

        assert context.email == "a@example.com"
        mock_oauth_client.exchange_code.assert_awaited_once_with("granted")
        assert token_storage.load("a@example.com") is not None
        assert listeners[0].is_serving is False

    @pytest.mark.asyncio
    async def test_unanswered_consent_times_out_and_releases_port(
        self, registry, token_storage, mock_oauth_client: MagicMock, full_scopes
    ) -> None:
        listeners: list[CallbackListener] = []

        def listener_factory(**kwargs) -> CallbackListener:
            listener = CallbackListener(**kwargs, poll_interval=0.05)
            listeners.append(listener)
            return listener

        manager = CredentialLifecycleManager(
            registry,
            token_storage,
            mock_oauth_client,
            required_scopes=full_scopes,
            oauth_host=HOST,
            oauth_port=0,
            auth_timeout=0.2,
            browser_opener=MagicMock(return_value=True),
            listener_factory=listener_factory,
        )

        with pytest.raises(AuthorizationTimeoutError) as exc_info:
            await manager.ensure_ready("a@example.com")

        assert exc_info.value.authorization_url
        assert listeners[0].is_serving is False
        mock_oauth_client.exchange_code.assert_not_awaited()
