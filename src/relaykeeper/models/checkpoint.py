"""Checkpoint models: delivery progress for one account.

Two shapes exist:
    - Checkpoint: the in-memory view the supervisor and reconciler work with.
    - CheckpointRecord: the versioned JSON document persisted on disk.

Version 1 records were written before credential fingerprints existed. They
carry ``lastUpdateId`` only and are read back with the ``unknown``
fingerprint so that a later write can backfill it.
"""

from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# Fingerprint assigned to records that predate fingerprinting
UNKNOWN_FINGERPRINT = "unknown"

CURRENT_RECORD_VERSION = 2


class Checkpoint(BaseModel):
    """Last delivered event id plus the credential that produced it.

    Attributes:
        last_event_id: Highest event id handed to the downstream handler.
            None means nothing has been delivered yet.
        credential_fingerprint: Hash of the credential in use when
            last_event_id was recorded, or "unknown" for legacy records.
    """

    model_config = ConfigDict(frozen=True)

    last_event_id: int | None = Field(default=None, ge=0)
    credential_fingerprint: str = Field(default=UNKNOWN_FINGERPRINT, min_length=1)

    @property
    def fingerprint_known(self) -> bool:
        """Whether the fingerprint was recorded (not a legacy record)."""
        return self.credential_fingerprint != UNKNOWN_FINGERPRINT

    def accepts(self, event_id: int, fingerprint: str) -> bool:
        """Check whether writing event_id under fingerprint moves progress forward.

        Ids may only shrink when the credential changed. A same-id write is
        accepted only when it records a different fingerprint (backfill).
        """
        if self.last_event_id is None:
            return True
        same_lineage = self.credential_fingerprint in (fingerprint, UNKNOWN_FINGERPRINT)
        if not same_lineage:
            return True
        if event_id < self.last_event_id:
            return False
        if event_id == self.last_event_id:
            return self.credential_fingerprint != fingerprint
        return True


class CheckpointRecord(BaseModel):
    """On-disk checkpoint document.

    Serialized with camelCase keys::

        {"version": 2, "lastEventId": 456, "credentialFingerprint": "9f86d0..."}

    Version 1 documents use ``lastUpdateId`` and omit the fingerprint.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: Literal[1, 2] = CURRENT_RECORD_VERSION
    last_event_id: int | None = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("lastEventId", "lastUpdateId", "last_event_id"),
        serialization_alias="lastEventId",
    )
    credential_fingerprint: str | None = Field(
        default=None,
        validation_alias=AliasChoices("credentialFingerprint", "credential_fingerprint"),
        serialization_alias="credentialFingerprint",
    )

    def to_checkpoint(self) -> Checkpoint:
        """Convert to the in-memory view, upgrading legacy records."""
        return Checkpoint(
            last_event_id=self.last_event_id,
            credential_fingerprint=self.credential_fingerprint or UNKNOWN_FINGERPRINT,
        )

    @classmethod
    def from_write(cls, event_id: int, fingerprint: str) -> CheckpointRecord:
        """Build the record persisted for a write call."""
        return cls(
            version=CURRENT_RECORD_VERSION,
            last_event_id=event_id,
            credential_fingerprint=fingerprint,
        )

    def to_json(self) -> str:
        """Serialize to the on-disk JSON form."""
        return self.model_dump_json(by_alias=True, indent=2) + "\n"
