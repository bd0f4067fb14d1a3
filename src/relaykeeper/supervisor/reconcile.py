"""Credential-change reconciliation, run once before the dispatch loop.

A checkpoint recorded under one bot token is meaningless under another: the
stored id may be far ahead of anything the new credential will ever see,
which would silently skip every future event. When the fingerprint changed,
the default strategy samples the pending events and jumps to the newest one,
accepting the loss of the backlog over skipping everything.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import structlog

from relaykeeper.config import CatchUpStrategy
from relaykeeper.exceptions import StorageError
from relaykeeper.interfaces import PendingProbe
from relaykeeper.logging import format_error_message, get_logger
from relaykeeper.models import Checkpoint
from relaykeeper.storage import CheckpointStore

DEFAULT_PROBE_LIMIT = 100
DEFAULT_PROBE_TIMEOUT = 5.0


async def _probe_until_cancelled(
    probe: PendingProbe,
    limit: int,
    timeout: float,
    cancel: asyncio.Event | None,
) -> Sequence[int] | None:
    """Run the probe with a timeout; None if cancellation fired first."""
    probe_task = asyncio.ensure_future(asyncio.wait_for(probe(limit, timeout), timeout))
    if cancel is None:
        return await probe_task

    cancel_task = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({probe_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        cancel_task.cancel()
    if not probe_task.done():
        probe_task.cancel()
        await asyncio.gather(probe_task, return_exceptions=True)
        return None
    return probe_task.result()


async def reconcile_checkpoint(
    *,
    store: CheckpointStore,
    account_id: str,
    stored: Checkpoint | None,
    fingerprint: str,
    probe: PendingProbe,
    strategy: CatchUpStrategy = "skip_backlog",
    probe_limit: int = DEFAULT_PROBE_LIMIT,
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
    cancel: asyncio.Event | None = None,
    logger: structlog.stdlib.BoundLogger | None = None,
) -> int | None:
    """Decide the checkpoint the dispatch loop starts from.

    Args:
        store: Checkpoint store, used to backfill legacy records.
        account_id: Normalized account id.
        stored: Checkpoint read at startup, or None.
        fingerprint: Fingerprint of the credential now in use.
        probe: Read-only call returning up to ``limit`` pending event ids.
        strategy: "skip_backlog" jumps to the newest pending id when the
            credential changed; "redeliver" lets the provider send everything.
        probe_limit: Maximum pending events to sample.
        probe_timeout: Seconds allowed for the probe.
        cancel: Cancellation signal observed while probing.
        logger: Logger to report through.

    Returns:
        The starting checkpoint id, or None to receive everything available.
        Never raises for probe or storage failures.
    """
    log = logger or get_logger(__name__)

    if stored is None or stored.last_event_id is None:
        return None if stored is None else stored.last_event_id

    if not stored.fingerprint_known:
        # Legacy record: keep the id, record the fingerprint so a future
        # rotation is detectable
        try:
            await store.write(account_id, stored.last_event_id, fingerprint)
            log.debug("Backfilled checkpoint fingerprint", checkpoint=stored.last_event_id)
        except StorageError as e:
            log.debug("Checkpoint fingerprint backfill failed", error=e.message)
        return stored.last_event_id

    if stored.credential_fingerprint == fingerprint:
        return stored.last_event_id

    log.warning(
        "Credential changed since last run; catching up to avoid skipping all events",
        stored_checkpoint=stored.last_event_id,
        strategy=strategy,
    )
    if strategy == "redeliver":
        return None

    try:
        ids = await _probe_until_cancelled(probe, probe_limit, probe_timeout, cancel)
    except Exception as e:
        log.error("Catch-up probe failed", error=format_error_message(e))
        return None
    if ids is None:
        log.info("Catch-up probe cancelled")
        return None

    valid = [i for i in ids if isinstance(i, int) and not isinstance(i, bool) and i >= 0]
    if not valid:
        log.info("Catch-up probe found no pending events; starting without checkpoint")
        return None

    newest = max(valid)
    log.info("Caught up to newest pending event", checkpoint=newest, sampled=len(valid))
    return newest
