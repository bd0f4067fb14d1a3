"""Webhook listener: receives pushed events over HTTP.

Registers the public URL with the provider, serves a FastAPI app with
uvicorn until stopped, then removes the registration. The supervisor only
starts it, stops it, and seeds it with the reconciled checkpoint.
"""

from __future__ import annotations

import asyncio
import contextlib
import hmac
import logging
from collections.abc import Iterator
from typing import Annotated, Any

import uvicorn
from fastapi import FastAPI, Header, HTTPException, Request, status

from relaykeeper.exceptions import ConfigError
from relaykeeper.interfaces import CheckpointSink, EventHandler, ProviderClient
from relaykeeper.logging import format_error_message
from relaykeeper.models import ProviderEvent, WebhookMode

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the caller."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class WebhookListener:
    """HTTP endpoint the provider pushes events to.

    Example:
        ```python
        listener = WebhookListener(client, handler, checkpoint, supervisor, mode)
        task = asyncio.create_task(listener.run())
        ...
        await listener.stop()
        ```
    """

    def __init__(
        self,
        client: ProviderClient,
        handler: EventHandler,
        checkpoint: int | None,
        sink: CheckpointSink,
        mode: WebhookMode,
    ) -> None:
        """Initialize the listener.

        Args:
            client: Provider client used for (de)registration.
            handler: Downstream handler called once per event.
            checkpoint: Events at or below this id are acknowledged and dropped.
            sink: Receives delivered ids.
            mode: Webhook parameters.
        """
        self._client = client
        self._handler = handler
        self._checkpoint = checkpoint
        self._sink = sink
        self._mode = mode
        self._server: uvicorn.Server | None = None
        self._stop_requested = False
        self.app = self._create_app()

    @property
    def checkpoint(self) -> int | None:
        return self._checkpoint

    def _create_app(self) -> FastAPI:
        app = FastAPI(title="relaykeeper webhook", docs_url=None, redoc_url=None)

        @app.get("/healthz")
        async def healthz() -> dict[str, Any]:
            return {"status": "ok", "checkpoint": self._checkpoint}

        @app.post(self._mode.path)
        async def receive(
            request: Request,
            secret_token: Annotated[str | None, Header(alias=SECRET_HEADER)] = None,
        ) -> dict[str, Any]:
            self._verify_secret(secret_token)
            try:
                update = await request.json()
            except ValueError as e:
                raise HTTPException(status.HTTP_400_BAD_REQUEST, "Body is not JSON") from e
            if not isinstance(update, dict) or not isinstance(update.get("update_id"), int):
                raise HTTPException(status.HTTP_400_BAD_REQUEST, "Missing update_id")

            event = ProviderEvent.from_update(update)
            if self._checkpoint is not None and event.event_id <= self._checkpoint:
                logger.debug("Dropping already delivered event %s", event.event_id)
                return {"ok": True, "duplicate": True}

            await self._deliver(event)
            return {"ok": True}

        return app

    def _verify_secret(self, provided: str | None) -> None:
        expected = self._mode.secret
        if not expected:
            return
        if provided is None or not hmac.compare_digest(provided, expected):
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid secret token")

    async def _deliver(self, event: ProviderEvent) -> None:
        try:
            await self._handler(event)
        except Exception:
            # Answering non-2xx would make the provider resend the event forever
            logger.exception("Handler failed for event %s", event.event_id)
        if self._checkpoint is None or event.event_id > self._checkpoint:
            self._checkpoint = event.event_id
        await self._sink.record_event_id(event.event_id)

    async def run(self) -> None:
        """Register the webhook and serve until stopped.

        Raises:
            TimeoutError: Registration exceeded the startup timeout.
            ProviderError: The provider rejected the registration.
            ConfigError: The listen address could not be bound.
        """
        await asyncio.wait_for(
            self._client.set_webhook(
                self._mode.public_url,
                secret=self._mode.secret,
                allowed_updates=self._mode.allowed_updates,
            ),
            timeout=self._mode.startup_timeout,
        )
        logger.info("Webhook registered at %s", self._mode.public_url)
        if self._stop_requested:
            await self._unregister()
            return

        config = uvicorn.Config(
            self.app,
            host=self._mode.host,
            port=self._mode.port,
            log_config=None,
            lifespan="off",
        )
        self._server = _EmbeddedServer(config)
        try:
            await self._server.serve()
        except SystemExit as e:
            # uvicorn exits the process when it cannot bind
            raise ConfigError(
                f"Cannot bind webhook listener on {self._mode.host}:{self._mode.port}"
            ) from e
        finally:
            self._server = None
            await self._unregister()

    async def stop(self) -> None:
        """Ask the server to shut down."""
        self._stop_requested = True
        if self._server is not None:
            self._server.should_exit = True

    async def _unregister(self) -> None:
        try:
            await asyncio.wait_for(self._client.delete_webhook(), timeout=self._mode.startup_timeout)
        except Exception as e:
            logger.warning("Failed to delete webhook: %s", format_error_message(e))
