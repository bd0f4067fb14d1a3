"""Pytest configuration and shared fakes."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Iterable
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from relaykeeper.exceptions import StorageError
from relaykeeper.interfaces import CheckpointSink
from relaykeeper.models import Checkpoint

# Add tests directory to path so helpers can be imported
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))


class MemoryCheckpointStore:
    """In-memory checkpoint store with the same write guard as the file store."""

    def __init__(self, records: dict[str, Checkpoint] | None = None) -> None:
        self.records: dict[str, Checkpoint] = dict(records or {})
        self.writes: list[tuple[str, int, str]] = []
        self.fail_reads = False
        self.fail_writes = False

    async def read(self, account_id: str) -> Checkpoint | None:
        if self.fail_reads:
            raise StorageError("checkpoint unreadable")
        return self.records.get(account_id)

    async def write(self, account_id: str, event_id: int, fingerprint: str) -> None:
        self.writes.append((account_id, event_id, fingerprint))
        if self.fail_writes:
            raise StorageError("disk full")
        existing = self.records.get(account_id)
        if existing is not None and not existing.accepts(event_id, fingerprint):
            return
        self.records[account_id] = Checkpoint(
            last_event_id=event_id, credential_fingerprint=fingerprint
        )


class ScriptedWorker:
    """Worker that reports event ids, then raises, returns, or waits for stop."""

    def __init__(
        self,
        sink: CheckpointSink,
        events: Iterable[int] = (),
        error: BaseException | None = None,
        block: bool = False,
        on_start=None,
    ) -> None:
        self.sink = sink
        self.events = list(events)
        self.error = error
        self.block = block
        self.on_start = on_start
        self.stop_calls = 0
        self._stopped = asyncio.Event()

    async def run(self) -> None:
        if self.on_start is not None:
            self.on_start()
        for event_id in self.events:
            await self.sink.record_event_id(event_id)
        if self.error is not None:
            raise self.error
        if self.block:
            await self._stopped.wait()

    async def stop(self) -> None:
        self.stop_calls += 1
        self._stopped.set()


class WorkerScript:
    """Worker factory handing out ScriptedWorkers built from step dicts.

    Each call consumes the next step; the last step repeats.
    """

    def __init__(self, *steps: dict) -> None:
        self.steps = list(steps) or [{}]
        self.checkpoints: list[int | None] = []
        self.workers: list[ScriptedWorker] = []

    def __call__(self, checkpoint: int | None, sink: CheckpointSink, *_: object) -> ScriptedWorker:
        self.checkpoints.append(checkpoint)
        index = min(len(self.workers), len(self.steps) - 1)
        worker = ScriptedWorker(sink, **self.steps[index])
        self.workers.append(worker)
        return worker

    @property
    def calls(self) -> int:
        return len(self.workers)


class RecordingSink:
    """CheckpointSink that records what a worker reports."""

    def __init__(self) -> None:
        self.event_ids: list[int] = []
        self.cycles = 0

    async def record_event_id(self, event_id: int) -> None:
        self.event_ids.append(event_id)

    def mark_cycle_complete(self) -> None:
        self.cycles += 1


@pytest.fixture
def memory_store() -> MemoryCheckpointStore:
    """Create an empty in-memory checkpoint store."""
    return MemoryCheckpointStore()


@pytest.fixture
def mock_logger() -> MagicMock:
    """Create a logger mock whose bind() returns itself."""
    logger = MagicMock()
    logger.bind.return_value = logger
    return logger
