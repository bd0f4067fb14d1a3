"""Bot API client over httpx.

Thin wrapper around the four provider calls the supervisor stack needs:
long polling, a read-only pending probe, and webhook registration.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

import httpx

from relaykeeper.exceptions import (
    FatalProviderError,
    ProviderError,
    TransportConflict,
)
from relaykeeper.models import ProviderEvent

from .errors import RETRYABLE_PROVIDER_CODES

logger = logging.getLogger(__name__)

# Extra HTTP time on top of the provider-side long-poll timeout
POLL_HTTP_SLACK = 10.0


class BotApiClient:
    """Async client for the provider's Bot API.

    Example:
        ```python
        async with BotApiClient(token, proxy="http://proxy:3128") as client:
            events = await client.poll(checkpoint=455, timeout=30)
        ```
    """

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.telegram.org",
        proxy: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            token: Bot token.
            base_url: API root.
            proxy: Optional forwarding proxy URL.
            timeout: Default HTTP timeout for non-polling calls.
            transport: Custom httpx transport (tests use httpx.MockTransport).
        """
        self._timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/bot{token}/",
            proxy=proxy,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> BotApiClient:
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Call an API method and return its ``result``.

        Raises:
            TransportConflict: On 409 replies.
            ProviderError: On 429 and 5xx replies.
            FatalProviderError: On any other error reply.
            httpx.TransportError: On network failures.
        """
        response = await self._client.post(
            method,
            json=params or {},
            timeout=timeout if timeout is not None else self._timeout,
        )
        try:
            body = response.json()
        except json.JSONDecodeError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.is_success and body.get("ok"):
            return body.get("result")

        error_code = body.get("error_code", response.status_code)
        description = body.get("description") or response.reason_phrase or "unknown error"
        retry_after = (body.get("parameters") or {}).get("retry_after")
        logger.debug("%s failed: %s (%s)", method, description, error_code)

        if error_code == 409:
            raise TransportConflict(error_code, description, method)
        if error_code in RETRYABLE_PROVIDER_CODES:
            raise ProviderError(error_code, description, method, retry_after)
        raise FatalProviderError(error_code, description, method)

    async def poll(
        self,
        checkpoint: int | None,
        timeout: float,
        limit: int = 100,
        allowed_updates: Sequence[str] | None = None,
    ) -> list[ProviderEvent]:
        """Long-poll for events after checkpoint.

        Args:
            checkpoint: Last delivered id; None asks for everything pending.
            timeout: Provider-side long-poll timeout in seconds.
            limit: Maximum events to return.
            allowed_updates: Event categories to subscribe to.

        Returns:
            Events in provider order.
        """
        params: dict[str, Any] = {"timeout": int(timeout), "limit": limit}
        if checkpoint is not None:
            params["offset"] = checkpoint + 1
        if allowed_updates is not None:
            params["allowed_updates"] = list(allowed_updates)
        result = await self._call("getUpdates", params, timeout=timeout + POLL_HTTP_SLACK)
        return [
            ProviderEvent.from_update(update)
            for update in result or []
            if isinstance(update, dict) and isinstance(update.get("update_id"), int)
        ]

    async def probe_pending(self, limit: int, timeout: float) -> list[int]:
        """Sample pending event ids without confirming any of them.

        Args:
            limit: Maximum ids to return.
            timeout: HTTP timeout in seconds.

        Returns:
            Event ids currently pending.
        """
        result = await self._call("getUpdates", {"limit": limit, "timeout": 0}, timeout=timeout)
        return [
            update["update_id"]
            for update in result or []
            if isinstance(update, dict)
            and isinstance(update.get("update_id"), int)
            and not isinstance(update.get("update_id"), bool)
        ]

    async def set_webhook(
        self,
        url: str,
        secret: str | None = None,
        allowed_updates: Sequence[str] | None = None,
    ) -> None:
        """Register url as the push endpoint."""
        params: dict[str, Any] = {"url": url}
        if secret:
            params["secret_token"] = secret
        if allowed_updates is not None:
            params["allowed_updates"] = list(allowed_updates)
        await self._call("setWebhook", params)

    async def delete_webhook(self) -> None:
        """Remove the push endpoint, keeping pending events."""
        await self._call("deleteWebhook", {"drop_pending_updates": False})
