"""Models for relaykeeper.

Checkpoint Types:
    - Checkpoint: In-memory delivery progress for one account
    - CheckpointRecord: Versioned on-disk document

Delivery Types:
    - ProviderEvent: One inbound event (id + raw payload)
    - PollMode, WebhookMode: Delivery mode variants (DeliveryMode union)
    - AccountContext: Resolved credential, proxy and mode
"""

from .checkpoint import (
    CURRENT_RECORD_VERSION,
    UNKNOWN_FINGERPRINT,
    Checkpoint,
    CheckpointRecord,
)
from .delivery import (
    DEFAULT_ALLOWED_UPDATES,
    AccountContext,
    DeliveryMode,
    PollMode,
    ProviderEvent,
    WebhookMode,
)

__all__ = [
    # Checkpoints
    "CURRENT_RECORD_VERSION",
    "UNKNOWN_FINGERPRINT",
    "Checkpoint",
    "CheckpointRecord",
    # Delivery
    "DEFAULT_ALLOWED_UPDATES",
    "AccountContext",
    "DeliveryMode",
    "PollMode",
    "ProviderEvent",
    "WebhookMode",
]
