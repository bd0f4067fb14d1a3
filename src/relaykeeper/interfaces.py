"""Seams between the supervisor and its collaborators."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol

from relaykeeper.models import ProviderEvent, WebhookMode

# Downstream handler: invoked once per received event
EventHandler = Callable[[ProviderEvent], Awaitable[None]]


class CheckpointSink(Protocol):
    """Receives delivery progress from a worker or listener."""

    async def record_event_id(self, event_id: int) -> None:
        """Called after the handler finished with the event."""
        ...

    def mark_cycle_complete(self) -> None:
        """Called after each successful poll cycle."""
        ...


class Worker(Protocol):
    """A poll worker or webhook listener owned by the supervisor.

    ``run`` returns cleanly after ``stop`` and raises on failure.
    """

    async def run(self) -> None: ...

    async def stop(self) -> None: ...


class ProviderClient(Protocol):
    """Calls the supervisor stack needs from the provider."""

    async def poll(
        self,
        checkpoint: int | None,
        timeout: float,
        limit: int = 100,
        allowed_updates: Sequence[str] | None = None,
    ) -> list[ProviderEvent]: ...

    async def probe_pending(self, limit: int, timeout: float) -> list[int]: ...

    async def set_webhook(
        self,
        url: str,
        secret: str | None = None,
        allowed_updates: Sequence[str] | None = None,
    ) -> None: ...

    async def delete_webhook(self) -> None: ...


PendingProbe = Callable[[int, float], Awaitable[Sequence[int]]]
PollWorkerFactory = Callable[[int | None, CheckpointSink], Worker]
ListenerFactory = Callable[[int | None, CheckpointSink, WebhookMode], Worker]
