"""Dispatch supervisor: the restart-safe control loop for one account.

State machine:

    IDLE -> STARTING -> RUNNING -> BACKING_OFF -> STARTING -> ...
                           |                         |
                           +-> STOPPING -> STOPPED <-+

Webhook mode runs the listener once; its termination ends the session.
Poll mode restarts the worker after conflicts and network failures, with
jittered exponential backoff, until a fatal error, a clean worker exit or
cancellation.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import NoReturn

import structlog

from relaykeeper.config import RestartPolicy
from relaykeeper.exceptions import FatalProviderError, ProviderError
from relaykeeper.interfaces import ListenerFactory, PollWorkerFactory, Worker
from relaykeeper.logging import format_duration, format_error_message, get_logger
from relaykeeper.models import PollMode, WebhookMode
from relaykeeper.storage import CheckpointStore
from relaykeeper.transport.errors import ErrorContext

from .backoff import compute_backoff, sleep_with_abort
from .classify import FailureKind, classify_failure


class SupervisorState(str, Enum):
    """Lifecycle states of a DispatchSupervisor."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    BACKING_OFF = "backing_off"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class RunSession:
    """Ephemeral state of one supervisor run.

    Attributes:
        worker: Worker or listener currently running, if any.
        attempts: Restart attempts since the last successful cycle.
        restarts: Total restarts over the whole run.
    """

    worker: Worker | None = None
    attempts: int = 0
    restarts: int = 0


class DispatchSupervisor:
    """Keeps event delivery alive for one account.

    Handles:
    - Choosing webhook or poll delivery (once, at start)
    - Restarting the poll worker after classified-recoverable failures
    - Advancing and persisting the checkpoint under a single writer
    - Cooperative cancellation through an asyncio.Event

    Example:
        ```python
        supervisor = DispatchSupervisor(
            account_id="default",
            fingerprint=fingerprint_credential(token),
            store=FileCheckpointStore(settings.checkpoint_dir),
            mode=PollMode(concurrency=4),
            checkpoint=reconciled,
            worker_factory=make_worker,
            cancel=cancel,
        )
        await supervisor.run()
        ```
    """

    def __init__(
        self,
        *,
        account_id: str,
        fingerprint: str,
        store: CheckpointStore,
        mode: PollMode | WebhookMode,
        checkpoint: int | None = None,
        worker_factory: PollWorkerFactory | None = None,
        listener_factory: ListenerFactory | None = None,
        policy: RestartPolicy | None = None,
        cancel: asyncio.Event | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
        stop_timeout: float = 10.0,
        rng: random.Random | None = None,
        classifier: Callable[[object, ErrorContext], FailureKind] = classify_failure,
    ) -> None:
        """Initialize the supervisor.

        Args:
            account_id: Normalized account id.
            fingerprint: Fingerprint of the credential in use.
            store: Checkpoint store.
            mode: Delivery mode variant.
            checkpoint: Reconciled starting checkpoint.
            worker_factory: Builds a poll worker (required in poll mode).
            listener_factory: Builds a webhook listener (required in webhook mode).
            policy: Restart backoff policy.
            cancel: Cancellation signal; a fresh one is created if None.
            logger: Logger to report through; bound with account_id.
            stop_timeout: Seconds to await an orderly worker stop.
            rng: Random source for backoff jitter.
            classifier: Failure classifier, ``(err, context) -> FailureKind``.
        """
        if isinstance(mode, PollMode) and worker_factory is None:
            raise ValueError("poll mode requires a worker_factory")
        if isinstance(mode, WebhookMode) and listener_factory is None:
            raise ValueError("webhook mode requires a listener_factory")

        self._account_id = account_id
        self._fingerprint = fingerprint
        self._store = store
        self._mode = mode
        self._checkpoint = checkpoint
        self._worker_factory = worker_factory
        self._listener_factory = listener_factory
        self._policy = policy or RestartPolicy()
        self._cancel = cancel or asyncio.Event()
        self._log = (logger or get_logger(__name__)).bind(account_id=account_id)
        self._stop_timeout = stop_timeout
        self._rng = rng
        self._classify = classifier
        self._state = SupervisorState.IDLE
        self._session = RunSession()
        self._checkpoint_lock = asyncio.Lock()

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def checkpoint(self) -> int | None:
        """Highest event id accepted so far."""
        return self._checkpoint

    @property
    def session(self) -> RunSession:
        return self._session

    @property
    def cancel_event(self) -> asyncio.Event:
        return self._cancel

    def request_stop(self) -> None:
        """Trigger cancellation from outside."""
        self._cancel.set()

    async def run(self) -> None:
        """Run until cancelled, a fatal error, or a clean stop.

        Raises:
            ConfigError, FatalProviderError: Fatal failures.
            Exception: Any other unclassified failure from the worker, or a
                failure raised while the worker was being stopped.
        """
        if self._state is not SupervisorState.IDLE:
            raise RuntimeError(f"supervisor already {self._state.value}")
        try:
            if isinstance(self._mode, WebhookMode):
                await self._run_webhook(self._mode)
            else:
                await self._run_polling()
        finally:
            self._session.worker = None
            self._transition(SupervisorState.STOPPED)

    async def record_event_id(self, event_id: int) -> None:
        """Advance the checkpoint to event_id if it moves forward.

        The in-memory value is updated first, then persisted. A failed
        persist is logged and not retried; the next event persists again.
        Custom stores may raise anything here, not only StorageError.
        """
        async with self._checkpoint_lock:
            if self._checkpoint is not None and event_id <= self._checkpoint:
                return
            self._checkpoint = event_id
            self._session.attempts = 0
            try:
                await self._store.write(self._account_id, event_id, self._fingerprint)
            except Exception as e:
                self._log.error(
                    "Failed to persist checkpoint",
                    checkpoint=event_id,
                    error=format_error_message(e),
                )

    def mark_cycle_complete(self) -> None:
        """Reset the restart counter after a successful poll cycle."""
        self._session.attempts = 0

    def _transition(self, state: SupervisorState) -> None:
        if state is not self._state:
            self._log.debug("Supervisor state change", previous=self._state.value, state=state.value)
            self._state = state

    async def _run_webhook(self, mode: WebhookMode) -> None:
        assert self._listener_factory is not None
        self._transition(SupervisorState.STARTING)
        listener = self._listener_factory(self._checkpoint, self, mode)
        self._session.worker = listener
        self._transition(SupervisorState.RUNNING)
        self._log.info("Webhook listener starting", checkpoint=self._checkpoint, path=mode.path)
        try:
            await self._run_worker(listener)
        except Exception as e:
            if self._cancel.is_set():
                self._log.error("Listener failed while stopping", error=format_error_message(e))
                raise
            self._surface_failure(e, "webhook", self._classify(e, "webhook"))
        self._log.info("Webhook listener stopped")

    async def _run_polling(self) -> None:
        assert self._worker_factory is not None
        while not self._cancel.is_set():
            self._transition(SupervisorState.STARTING)
            worker = self._worker_factory(self._checkpoint, self)
            self._session.worker = worker
            self._transition(SupervisorState.RUNNING)
            self._log.debug("Poll worker started", checkpoint=self._checkpoint)
            try:
                await self._run_worker(worker)
            except Exception as e:
                if self._cancel.is_set():
                    self._log.error(
                        "Poll worker failed while stopping", error=format_error_message(e)
                    )
                    raise
                kind = self._classify(e, "polling")
                if kind is FailureKind.FATAL:
                    self._surface_failure(e, "polling", kind)
                await self._back_off(e, kind)
                continue
            finally:
                self._session.worker = None

            if not self._cancel.is_set():
                self._log.info("Poll worker exited without error; stopping")
            return

    async def _back_off(self, err: Exception, kind: FailureKind) -> None:
        self._session.attempts += 1
        self._session.restarts += 1
        delay = compute_backoff(self._policy, self._session.attempts, self._rng)
        reason = "poll conflict" if kind is FailureKind.CONFLICT else "network error"
        self._transition(SupervisorState.BACKING_OFF)
        self._log.warning(
            f"{reason}: {format_error_message(err)}; retrying in {format_duration(delay)}",
            reason=kind.value,
            attempt=self._session.attempts,
            delay=round(delay, 3),
        )
        completed = await sleep_with_abort(delay, self._cancel)
        if not completed:
            self._log.info("Backoff interrupted by cancellation")

    def _surface_failure(
        self, err: Exception, context: ErrorContext, kind: FailureKind
    ) -> NoReturn:
        self._log.error(
            "Delivery stopped by unrecoverable error",
            context=context,
            reason=kind.value,
            error=format_error_message(err),
        )
        if isinstance(err, ProviderError) and not isinstance(err, FatalProviderError):
            raise FatalProviderError(
                err.error_code, err.description, err.method, err.retry_after
            ) from err
        raise err

    async def _run_worker(self, worker: Worker) -> None:
        """Run worker until it exits, stopping it if cancellation fires.

        Returns cleanly when the worker was stopped; raises the worker's
        error otherwise.
        """
        task = asyncio.ensure_future(worker.run())
        cancel_wait = asyncio.ensure_future(self._cancel.wait())
        try:
            await asyncio.wait({task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
            if not task.done():
                self._transition(SupervisorState.STOPPING)
                await worker.stop()
                done, _ = await asyncio.wait({task}, timeout=self._stop_timeout)
                if not done:
                    self._log.warning(
                        "Worker did not stop in time; cancelling",
                        timeout=self._stop_timeout,
                    )
                    task.cancel()
                    await asyncio.gather(task, return_exceptions=True)
        finally:
            cancel_wait.cancel()
            if not task.done():
                # Our own task is being cancelled: take the worker down with it
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        if task.cancelled():
            return
        task.result()
