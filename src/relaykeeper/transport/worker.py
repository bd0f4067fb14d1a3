"""Poll worker: long-polls the provider and feeds the downstream handler.

A worker lives until it is stopped or a failure escapes its own short retry
window. It never confirms a batch to the provider (by polling with a higher
offset) before every event of that batch went through the handler.
"""

from __future__ import annotations

import asyncio
import logging

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_delay,
    wait_exponential,
)

from relaykeeper.exceptions import ProviderError, TransportNetworkError
from relaykeeper.interfaces import CheckpointSink, EventHandler, ProviderClient
from relaykeeper.logging import format_error_message
from relaykeeper.models import PollMode, ProviderEvent

from .errors import is_recoverable_network_error

logger = logging.getLogger(__name__)


def _is_transient(err: BaseException) -> bool:
    return is_recoverable_network_error(err, "polling")


def _log_retry(retry_state: RetryCallState) -> None:
    """Log in-worker fetch retries with context.

    Args:
        retry_state: Current retry state from tenacity.
    """
    logger.warning(
        "Retrying getUpdates",
        extra={
            "attempt": retry_state.attempt_number,
            "exception": str(retry_state.outcome.exception()) if retry_state.outcome else None,
        },
    )


class PollWorker:
    """Fetches batches of events and dispatches them with bounded concurrency.

    Example:
        ```python
        worker = PollWorker(client, handler, checkpoint=455, sink=supervisor, mode=PollMode())
        task = asyncio.create_task(worker.run())
        ...
        await worker.stop()
        await task
        ```
    """

    def __init__(
        self,
        client: ProviderClient,
        handler: EventHandler,
        checkpoint: int | None,
        sink: CheckpointSink,
        mode: PollMode,
    ) -> None:
        """Initialize the worker.

        Args:
            client: Provider client.
            handler: Downstream handler called once per event.
            checkpoint: Last delivered id; polling resumes after it.
            sink: Receives delivered ids and completed cycles.
            mode: Polling parameters.
        """
        self._client = client
        self._handler = handler
        self._offset = checkpoint
        self._sink = sink
        self._mode = mode
        self._semaphore = asyncio.Semaphore(mode.concurrency)
        self._stopped = asyncio.Event()

    @property
    def offset(self) -> int | None:
        """Highest id fetched and fully dispatched by this worker."""
        return self._offset

    async def stop(self) -> None:
        """Ask the worker to stop after the batch in flight."""
        self._stopped.set()

    async def run(self) -> None:
        """Poll until stopped.

        Raises:
            TransportNetworkError: Network failures outlasted the retry window.
            ProviderError: The provider rejected the poll.
        """
        while not self._stopped.is_set():
            events = await self._next_batch()
            if events is None:
                return
            await self._dispatch(events)
            self._sink.mark_cycle_complete()

    async def _next_batch(self) -> list[ProviderEvent] | None:
        """Wait for the next batch, or None once stopped."""
        fetch = asyncio.ensure_future(self._fetch())
        stopped = asyncio.ensure_future(self._stopped.wait())
        try:
            await asyncio.wait({fetch, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopped.cancel()
            if not fetch.done():
                fetch.cancel()
                await asyncio.gather(fetch, return_exceptions=True)
        if fetch.cancelled():
            return None
        return fetch.result()

    async def _fetch(self) -> list[ProviderEvent]:
        retrying = AsyncRetrying(
            stop=stop_after_delay(self._mode.retry_window),
            wait=wait_exponential(multiplier=1, min=1, max=30),
            retry=retry_if_exception(_is_transient),
            before_sleep=_log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._client.poll(
                        self._offset,
                        timeout=self._mode.poll_timeout,
                        limit=self._mode.limit,
                        allowed_updates=self._mode.allowed_updates,
                    )
        except ProviderError:
            raise
        except Exception as e:
            if _is_transient(e):
                raise TransportNetworkError(
                    f"getUpdates failed: {format_error_message(e)}"
                ) from e
            raise
        return []

    async def _dispatch(self, events: list[ProviderEvent]) -> None:
        fresh = [e for e in events if self._offset is None or e.event_id > self._offset]
        if not fresh:
            return
        await asyncio.gather(*(self._deliver(event) for event in fresh))
        self._offset = max(event.event_id for event in fresh)

    async def _deliver(self, event: ProviderEvent) -> None:
        async with self._semaphore:
            try:
                await self._handler(event)
            except Exception:
                # Handler failures belong to the handler; the event counts as delivered
                logger.exception("Handler failed for event %s", event.event_id)
        await self._sink.record_event_id(event.event_id)
