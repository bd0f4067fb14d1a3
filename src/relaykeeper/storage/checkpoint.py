"""File-backed checkpoint store.

One JSON document per account under ``<state_dir>/checkpoints``. Writes go to
a temporary file in the same directory, are flushed and fsynced, then moved
over the previous document with ``os.replace`` so a crash mid-write leaves
either the old or the new record, never a partial one.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from relaykeeper.exceptions import StorageError
from relaykeeper.models import Checkpoint, CheckpointRecord

logger = logging.getLogger(__name__)


def fingerprint_credential(token: str) -> str:
    """Stable, non-reversible fingerprint of a credential.

    Used only to detect credential rotation, never to authenticate.

    Args:
        token: Secret used to authenticate with the provider.

    Returns:
        Hex SHA-256 digest of the stripped token.
    """
    return hashlib.sha256(token.strip().encode("utf-8")).hexdigest()


class CheckpointStore(Protocol):
    """Durable record of delivery progress per account."""

    async def read(self, account_id: str) -> Checkpoint | None:
        """Return the stored checkpoint, or None if none was ever written."""
        ...

    async def write(self, account_id: str, event_id: int, fingerprint: str) -> None:
        """Persist event_id under fingerprint."""
        ...


class FileCheckpointStore:
    """Checkpoint store writing one JSON file per account.

    The store does not arbitrate concurrent writers; the supervisor keeps a
    single writer per account.

    Example:
        ```python
        store = FileCheckpointStore(settings.checkpoint_dir)

        checkpoint = await store.read("default")
        await store.write("default", 456, fingerprint_credential(token))
        ```
    """

    def __init__(self, directory: Path | str) -> None:
        """Initialize the store.

        Args:
            directory: Directory for checkpoint files (created on first write).
        """
        self._directory = Path(directory).expanduser()

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, account_id: str) -> Path:
        """File holding the checkpoint for account_id."""
        return self._directory / f"update-offset-{account_id}.json"

    async def read(self, account_id: str) -> Checkpoint | None:
        """Read the checkpoint for an account.

        Args:
            account_id: Normalized account id.

        Returns:
            The checkpoint, with fingerprint "unknown" for version 1 records,
            or None if no record exists.

        Raises:
            StorageError: If the record exists but is unreadable or corrupt.
        """
        record = await asyncio.to_thread(self._read_record, self.path_for(account_id))
        return record.to_checkpoint() if record is not None else None

    async def write(self, account_id: str, event_id: int, fingerprint: str) -> None:
        """Persist a new checkpoint for an account.

        Writing an id lower than the stored one for the same (or unknown)
        fingerprint is a no-op, as is rewriting an identical record.

        Args:
            account_id: Normalized account id.
            event_id: Id of the last delivered event.
            fingerprint: Fingerprint of the credential in use.

        Raises:
            StorageError: If the record cannot be written.
        """
        if event_id < 0:
            raise StorageError(f"Refusing to store negative event id {event_id}")
        await asyncio.to_thread(self._write_record, account_id, event_id, fingerprint)

    def _read_record(self, path: Path) -> CheckpointRecord | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Cannot read checkpoint {path}: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt checkpoint {path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Corrupt checkpoint {path}: expected an object")

        try:
            return CheckpointRecord.model_validate(data)
        except ValidationError as e:
            raise StorageError(f"Invalid checkpoint {path}: {e.error_count()} error(s)") from e

    def _write_record(self, account_id: str, event_id: int, fingerprint: str) -> None:
        path = self.path_for(account_id)

        try:
            existing = self._read_record(path)
        except StorageError as e:
            # A corrupt record must not block progress; it gets replaced
            logger.warning("Overwriting unreadable checkpoint for %s: %s", account_id, e)
            existing = None

        if existing is not None and not existing.to_checkpoint().accepts(event_id, fingerprint):
            logger.debug(
                "Skipping checkpoint write for %s: stored id %s, new id %s",
                account_id,
                existing.last_event_id,
                event_id,
            )
            return

        payload = CheckpointRecord.from_write(event_id, fingerprint).to_json()
        try:
            self._directory.mkdir(parents=True, exist_ok=True, mode=0o700)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=self._directory
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Cannot write checkpoint {path}: {e}") from e
