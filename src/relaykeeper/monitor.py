"""Monitor entry point: wires account, store, reconciler and supervisor."""

from __future__ import annotations

import asyncio

import structlog

from relaykeeper.accounts import resolve_account
from relaykeeper.config import Settings
from relaykeeper.exceptions import StorageError
from relaykeeper.interfaces import CheckpointSink, EventHandler, ProviderClient
from relaykeeper.logging import bind_context, get_logger, unbind_context
from relaykeeper.models import Checkpoint, PollMode, WebhookMode
from relaykeeper.storage import CheckpointStore, FileCheckpointStore, fingerprint_credential
from relaykeeper.supervisor import DispatchSupervisor, reconcile_checkpoint
from relaykeeper.transport import BotApiClient, PollWorker, WebhookListener


async def _read_stored(
    store: CheckpointStore,
    account_id: str,
    log: structlog.stdlib.BoundLogger,
) -> Checkpoint | None:
    try:
        return await store.read(account_id)
    except StorageError as e:
        log.error("Checkpoint unreadable; starting without one", error=e.message)
        return None


async def monitor_provider(
    handler: EventHandler,
    *,
    settings: Settings | None = None,
    account_id: str | None = None,
    token: str | None = None,
    cancel: asyncio.Event | None = None,
    client: ProviderClient | None = None,
    store: CheckpointStore | None = None,
    logger: structlog.stdlib.BoundLogger | None = None,
) -> None:
    """Deliver provider events for one account until stopped.

    Resolves the account, reconciles the stored checkpoint against the
    current credential, then runs a DispatchSupervisor in the configured
    delivery mode.

    Args:
        handler: Downstream handler called once per event.
        settings: Settings; loaded from the environment if None.
        account_id: Account to run (default account if None).
        token: Explicit bot token, overrides configuration.
        cancel: Cancellation signal.
        client: Provider client; one is created (and closed) if None.
        store: Checkpoint store; file-backed under settings.state_dir if None.
        logger: Logger to report through.

    Raises:
        ConfigError: Missing or invalid credential.
        FatalProviderError: The provider rejected us for good.
    """
    settings = settings or Settings()
    account = resolve_account(settings, account_id=account_id, token=token)
    log = (logger or get_logger("relaykeeper.monitor")).bind(account_id=account.account_id)
    cancel = cancel or asyncio.Event()

    fingerprint = fingerprint_credential(account.token)
    store = store or FileCheckpointStore(settings.checkpoint_dir)
    owns_client = client is None
    provider: ProviderClient = client or BotApiClient(
        account.token,
        base_url=settings.api_base_url,
        proxy=account.proxy,
        timeout=settings.request_timeout,
    )

    # Tag every structlog line of this run, handler logs included
    bind_context(account_id=account.account_id)
    try:
        stored = await _read_stored(store, account.account_id, log)
        checkpoint = await reconcile_checkpoint(
            store=store,
            account_id=account.account_id,
            stored=stored,
            fingerprint=fingerprint,
            probe=provider.probe_pending,
            strategy=settings.catch_up_strategy,
            probe_limit=settings.probe_limit,
            probe_timeout=settings.probe_timeout,
            cancel=cancel,
            logger=log,
        )

        def make_worker(start: int | None, sink: CheckpointSink) -> PollWorker:
            assert isinstance(account.mode, PollMode)
            return PollWorker(provider, handler, start, sink, account.mode)

        def make_listener(
            start: int | None, sink: CheckpointSink, mode: WebhookMode
        ) -> WebhookListener:
            return WebhookListener(provider, handler, start, sink, mode)

        supervisor = DispatchSupervisor(
            account_id=account.account_id,
            fingerprint=fingerprint,
            store=store,
            mode=account.mode,
            checkpoint=checkpoint,
            worker_factory=make_worker,
            listener_factory=make_listener,
            policy=settings.restart_policy,
            cancel=cancel,
            logger=log,
            stop_timeout=settings.stop_timeout,
        )
        log.info("Monitor starting", mode=account.mode.kind, checkpoint=checkpoint)
        await supervisor.run()
        log.info("Monitor stopped", checkpoint=supervisor.checkpoint)
    finally:
        unbind_context("account_id")
        if owns_client and isinstance(provider, BotApiClient):
            await provider.aclose()
