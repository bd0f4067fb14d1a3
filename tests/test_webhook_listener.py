"""Tests for the webhook listener."""

from __future__ import annotations

import asyncio
import socket
from unittest.mock import AsyncMock, patch

import pytest
from conftest import RecordingSink
from fastapi.testclient import TestClient

from relaykeeper.exceptions import ConfigError
from relaykeeper.models import ProviderEvent, WebhookMode
from relaykeeper.supervisor import DispatchSupervisor
from relaykeeper.transport import WebhookListener
from relaykeeper.transport.webhook import SECRET_HEADER

URL = "https://bot.example.com/telegram-webhook"


class CollectingHandler:
    def __init__(self, fail_on: int | None = None) -> None:
        self.seen: list[ProviderEvent] = []
        self.fail_on = fail_on

    async def __call__(self, event: ProviderEvent) -> None:
        self.seen.append(event)
        if event.event_id == self.fail_on:
            raise RuntimeError("handler bug")


@pytest.fixture
def mode() -> WebhookMode:
    return WebhookMode(public_url=URL, secret="s3cret", startup_timeout=0.5)


@pytest.fixture
def provider() -> AsyncMock:
    return AsyncMock()


def _listener(provider, mode, handler=None, checkpoint=None, sink=None):
    return WebhookListener(
        provider, handler or CollectingHandler(), checkpoint, sink or RecordingSink(), mode
    )


class TestWebhookEndpoint:
    """Tests for the HTTP surface."""

    def test_healthz(self, provider, mode):
        listener = _listener(provider, mode, checkpoint=12)
        response = TestClient(listener.app).get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "checkpoint": 12}

    def test_delivers_event(self, provider, mode):
        handler = CollectingHandler()
        sink = RecordingSink()
        listener = _listener(provider, mode, handler=handler, sink=sink)

        response = TestClient(listener.app).post(
            mode.path,
            json={"update_id": 77, "message": {"text": "hi"}},
            headers={SECRET_HEADER: "s3cret"},
        )

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert [e.event_id for e in handler.seen] == [77]
        assert handler.seen[0].payload["message"]["text"] == "hi"
        assert sink.event_ids == [77]
        assert listener.checkpoint == 77

    @pytest.mark.parametrize("headers", [{}, {SECRET_HEADER: "wrong"}])
    def test_rejects_bad_secret(self, provider, mode, headers):
        handler = CollectingHandler()
        listener = _listener(provider, mode, handler=handler)

        response = TestClient(listener.app).post(
            mode.path, json={"update_id": 1}, headers=headers
        )

        assert response.status_code == 401
        assert handler.seen == []

    def test_no_secret_configured(self, provider):
        mode = WebhookMode(public_url=URL)
        handler = CollectingHandler()
        listener = _listener(provider, mode, handler=handler)

        response = TestClient(listener.app).post(mode.path, json={"update_id": 1})

        assert response.status_code == 200
        assert len(handler.seen) == 1

    def test_rejects_non_json(self, provider, mode):
        listener = _listener(provider, mode)
        response = TestClient(listener.app).post(
            mode.path, content=b"{oops", headers={SECRET_HEADER: "s3cret"}
        )
        assert response.status_code == 400

    def test_rejects_missing_update_id(self, provider, mode):
        listener = _listener(provider, mode)
        response = TestClient(listener.app).post(
            mode.path, json={"message": {}}, headers={SECRET_HEADER: "s3cret"}
        )
        assert response.status_code == 400

    def test_duplicate_below_checkpoint_is_acknowledged(self, provider, mode):
        handler = CollectingHandler()
        sink = RecordingSink()
        listener = _listener(provider, mode, handler=handler, checkpoint=50, sink=sink)

        response = TestClient(listener.app).post(
            mode.path, json={"update_id": 50}, headers={SECRET_HEADER: "s3cret"}
        )

        assert response.status_code == 200
        assert response.json() == {"ok": True, "duplicate": True}
        assert handler.seen == []
        assert sink.event_ids == []

    def test_handler_failure_is_acknowledged(self, provider, mode):
        """A failing handler must not make the provider resend forever."""
        sink = RecordingSink()
        listener = _listener(provider, mode, handler=CollectingHandler(fail_on=3), sink=sink)

        response = TestClient(listener.app).post(
            mode.path, json={"update_id": 3}, headers={SECRET_HEADER: "s3cret"}
        )

        assert response.status_code == 200
        assert sink.event_ids == [3]


class FakeServer:
    """Stands in for uvicorn: serves until should_exit is set."""

    def __init__(self, config) -> None:
        self.config = config
        self.should_exit = False

    async def serve(self) -> None:
        while not self.should_exit:
            await asyncio.sleep(0.005)


class TestWebhookLifecycle:
    """Tests for registration and shutdown."""

    @pytest.mark.asyncio
    async def test_registers_serves_and_unregisters(self, provider, mode):
        listener = _listener(provider, mode)

        with patch("relaykeeper.transport.webhook._EmbeddedServer", FakeServer):
            task = asyncio.create_task(listener.run())
            while listener._server is None:
                await asyncio.sleep(0.005)
            assert listener._server.config.port == mode.port
            await listener.stop()
            await asyncio.wait_for(task, 2.0)

        provider.set_webhook.assert_awaited_once_with(
            URL, secret="s3cret", allowed_updates=mode.allowed_updates
        )
        provider.delete_webhook.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_during_registration(self, provider, mode):
        listener = _listener(provider, mode)
        await listener.stop()

        await listener.run()

        provider.set_webhook.assert_awaited_once()
        provider.delete_webhook.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_registration_timeout(self, provider):
        async def hang(*args, **kwargs):
            await asyncio.sleep(3600)

        provider.set_webhook.side_effect = hang
        listener = _listener(provider, WebhookMode(public_url=URL, startup_timeout=0.05))

        with pytest.raises(TimeoutError):
            await listener.run()

    @pytest.mark.asyncio
    async def test_unregister_failure_is_not_raised(self, provider, mode):
        provider.delete_webhook.side_effect = RuntimeError("network down")
        listener = _listener(provider, mode)
        await listener.stop()

        await listener.run()

        provider.delete_webhook.assert_awaited_once()


@pytest.fixture
def busy_port():
    """Hold a listening socket so the listener cannot bind its port."""
    holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    holder.bind(("127.0.0.1", 0))
    holder.listen()
    try:
        yield holder.getsockname()[1]
    finally:
        holder.close()


class TestBindFailure:
    """A taken port must end delivery with an error, not exit the process."""

    @pytest.mark.asyncio
    async def test_port_in_use_raises_config_error(self, provider, busy_port):
        mode = WebhookMode(public_url=URL, host="127.0.0.1", port=busy_port)
        listener = _listener(provider, mode)

        with pytest.raises(ConfigError, match=f"127.0.0.1:{busy_port}"):
            await listener.run()

        provider.delete_webhook.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_supervisor_surfaces_bind_failure(self, provider, busy_port, memory_store):
        mode = WebhookMode(public_url=URL, host="127.0.0.1", port=busy_port)
        supervisor = DispatchSupervisor(
            account_id="default",
            fingerprint="fp",
            store=memory_store,
            mode=mode,
            listener_factory=lambda checkpoint, sink, m: _listener(
                provider, m, checkpoint=checkpoint, sink=sink
            ),
        )

        with pytest.raises(ConfigError):
            await supervisor.run()
