"""Checkpoint storage for relaykeeper."""

from .checkpoint import CheckpointStore, FileCheckpointStore, fingerprint_credential

__all__ = [
    "CheckpointStore",
    "FileCheckpointStore",
    "fingerprint_credential",
]
