"""Tests for the file-backed checkpoint store and checkpoint models."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from relaykeeper.exceptions import StorageError
from relaykeeper.models import UNKNOWN_FINGERPRINT, Checkpoint, CheckpointRecord
from relaykeeper.storage import FileCheckpointStore, fingerprint_credential


@pytest.fixture
def store(tmp_path: Path) -> FileCheckpointStore:
    """Create a store under a temporary directory."""
    return FileCheckpointStore(tmp_path / "checkpoints")


def _write_raw(store: FileCheckpointStore, account_id: str, payload: object) -> Path:
    store.directory.mkdir(parents=True, exist_ok=True)
    path = store.path_for(account_id)
    text = payload if isinstance(payload, str) else json.dumps(payload, indent=2) + "\n"
    path.write_text(text, encoding="utf-8")
    return path


class TestFingerprint:
    def test_stable_and_not_reversible(self):
        fp = fingerprint_credential("123:abc")
        assert fp == fingerprint_credential(" 123:abc ")
        assert "123:abc" not in fp
        assert len(fp) == 64

    def test_differs_per_token(self):
        assert fingerprint_credential("123:abc") != fingerprint_credential("123:abd")


class TestCheckpointAccepts:
    """Tests for the monotonic write guard."""

    def test_empty_accepts_anything(self):
        assert Checkpoint().accepts(0, "fp")

    def test_lower_id_same_fingerprint_rejected(self):
        checkpoint = Checkpoint(last_event_id=500, credential_fingerprint="fp")
        assert not checkpoint.accepts(456, "fp")

    def test_same_id_same_fingerprint_rejected(self):
        checkpoint = Checkpoint(last_event_id=500, credential_fingerprint="fp")
        assert not checkpoint.accepts(500, "fp")

    def test_higher_id_accepted(self):
        checkpoint = Checkpoint(last_event_id=500, credential_fingerprint="fp")
        assert checkpoint.accepts(501, "fp")

    def test_lower_id_new_fingerprint_accepted(self):
        """A rotated credential starts a new lineage."""
        checkpoint = Checkpoint(last_event_id=500, credential_fingerprint="old")
        assert checkpoint.accepts(15, "new")

    def test_same_id_backfills_unknown_fingerprint(self):
        checkpoint = Checkpoint(last_event_id=123)
        assert checkpoint.credential_fingerprint == UNKNOWN_FINGERPRINT
        assert checkpoint.accepts(123, "fp")
        assert not checkpoint.accepts(100, "fp")


class TestCheckpointRecord:
    def test_serializes_camel_case(self):
        record = CheckpointRecord.from_write(456, "fp")
        data = json.loads(record.to_json())
        assert data == {"version": 2, "lastEventId": 456, "credentialFingerprint": "fp"}

    def test_reads_legacy_v1(self):
        record = CheckpointRecord.model_validate({"version": 1, "lastUpdateId": 123})
        checkpoint = record.to_checkpoint()
        assert checkpoint.last_event_id == 123
        assert checkpoint.credential_fingerprint == UNKNOWN_FINGERPRINT
        assert not checkpoint.fingerprint_known


class TestFileCheckpointStore:
    """Tests for FileCheckpointStore."""

    @pytest.mark.asyncio
    async def test_read_missing_returns_none(self, store: FileCheckpointStore) -> None:
        """Absence of state is not an error."""
        assert await store.read("default") is None

    @pytest.mark.asyncio
    async def test_write_then_read(self, store: FileCheckpointStore) -> None:
        await store.write("default", 42, "fp")
        checkpoint = await store.read("default")
        assert checkpoint == Checkpoint(last_event_id=42, credential_fingerprint="fp")

    @pytest.mark.asyncio
    async def test_accounts_are_isolated(self, store: FileCheckpointStore) -> None:
        await store.write("default", 42, "fp")
        await store.write("support", 7, "fp2")
        assert (await store.read("default")).last_event_id == 42
        assert (await store.read("support")).last_event_id == 7

    @pytest.mark.asyncio
    async def test_reads_legacy_and_upgrades_on_write(self, store: FileCheckpointStore) -> None:
        """A v1 record reads as unknown fingerprint; the next write stores v2."""
        _write_raw(store, "default", {"version": 1, "lastUpdateId": 123})

        legacy = await store.read("default")
        assert legacy is not None
        assert legacy.last_event_id == 123
        assert legacy.credential_fingerprint == UNKNOWN_FINGERPRINT

        fingerprint = fingerprint_credential("123:abc")
        await store.write("default", 456, fingerprint)

        upgraded = await store.read("default")
        assert upgraded.last_event_id == 456
        assert upgraded.credential_fingerprint == fingerprint
        raw = json.loads(store.path_for("default").read_text(encoding="utf-8"))
        assert raw["version"] == 2
        assert raw["credentialFingerprint"] == fingerprint

    @pytest.mark.asyncio
    async def test_lower_id_is_noop(self, store: FileCheckpointStore) -> None:
        """Writing 456 over a stored 500 keeps 500."""
        await store.write("default", 500, "fp")
        await store.write("default", 456, "fp")
        assert (await store.read("default")).last_event_id == 500

    @pytest.mark.asyncio
    async def test_credential_change_resets_lineage(self, store: FileCheckpointStore) -> None:
        await store.write("default", 500, "old")
        await store.write("default", 15, "new")
        checkpoint = await store.read("default")
        assert checkpoint.last_event_id == 15
        assert checkpoint.credential_fingerprint == "new"

    @pytest.mark.asyncio
    async def test_corrupt_json_raises(self, store: FileCheckpointStore) -> None:
        _write_raw(store, "default", "{not json")
        with pytest.raises(StorageError, match="Corrupt"):
            await store.read("default")

    @pytest.mark.asyncio
    async def test_unknown_version_raises(self, store: FileCheckpointStore) -> None:
        _write_raw(store, "default", {"version": 9, "lastEventId": 1})
        with pytest.raises(StorageError, match="Invalid"):
            await store.read("default")

    @pytest.mark.asyncio
    async def test_non_object_raises(self, store: FileCheckpointStore) -> None:
        _write_raw(store, "default", [1, 2, 3])
        with pytest.raises(StorageError):
            await store.read("default")

    @pytest.mark.asyncio
    async def test_write_replaces_corrupt_record(self, store: FileCheckpointStore) -> None:
        _write_raw(store, "default", "garbage")
        await store.write("default", 3, "fp")
        assert (await store.read("default")).last_event_id == 3

    @pytest.mark.asyncio
    async def test_negative_id_rejected(self, store: FileCheckpointStore) -> None:
        with pytest.raises(StorageError):
            await store.write("default", -1, "fp")

    @pytest.mark.asyncio
    async def test_no_temp_files_left(self, store: FileCheckpointStore) -> None:
        for event_id in range(5):
            await store.write("default", event_id, "fp")
        names = sorted(p.name for p in store.directory.iterdir())
        assert names == ["update-offset-default.json"]

    @pytest.mark.asyncio
    async def test_failed_replace_keeps_previous_record(
        self, store: FileCheckpointStore
    ) -> None:
        """A crash mid-write leaves the previous record intact."""
        await store.write("default", 10, "fp")
        with patch("relaykeeper.storage.checkpoint.os.replace", side_effect=OSError("EIO")):
            with pytest.raises(StorageError, match="Cannot write"):
                await store.write("default", 11, "fp")
        assert (await store.read("default")).last_event_id == 10
        assert [p.name for p in store.directory.iterdir()] == ["update-offset-default.json"]

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
    @pytest.mark.asyncio
    async def test_file_is_private(self, store: FileCheckpointStore) -> None:
        await store.write("default", 1, "fp")
        mode = store.path_for("default").stat().st_mode & 0o777
        assert mode == 0o600
