"""relaykeeper: keep a bot's event stream flowing, exactly once per checkpoint.

A supervisor for long-running provider connections. It chooses webhook or
long-poll delivery, restarts the poller after duplicate-poller conflicts and
network failures with jittered backoff, and persists a monotonic checkpoint
tied to the credential in use so restarts neither replay nor drop events.

Quick Start:
    import asyncio

    from relaykeeper import ProviderEvent, monitor_provider

    async def handle(event: ProviderEvent) -> None:
        print(event.event_id, event.payload.get("message", {}).get("text"))

    asyncio.run(monitor_provider(handle, token="123:abc"))

Components:
    - FileCheckpointStore: Durable, atomically replaced checkpoint per account
    - classify_failure: Conflict / recoverable network / fatal
    - compute_backoff: Jittered, clamped exponential backoff
    - reconcile_checkpoint: Credential-change catch-up at startup
    - DispatchSupervisor: The restart-safe control loop
"""

__version__ = "0.1.0"

# Configuration
from .accounts import normalize_account_id, resolve_account
from .config import AccountSettings, RestartPolicy, Settings

# Exceptions
from .exceptions import (
    ConfigError,
    FatalProviderError,
    ProviderError,
    RelayKeeperError,
    StorageError,
    TransportConflict,
    TransportNetworkError,
)

# Logging
from .logging import (
    bind_context,
    configure_logging,
    get_logger,
    logger,
    unbind_context,
)

# Models
from .models import (
    AccountContext,
    Checkpoint,
    CheckpointRecord,
    PollMode,
    ProviderEvent,
    WebhookMode,
)

# Monitor
from .monitor import monitor_provider

# Storage
from .storage import FileCheckpointStore, fingerprint_credential

# Supervision
from .supervisor import (
    DispatchSupervisor,
    FailureKind,
    SupervisorState,
    classify_failure,
    compute_backoff,
    reconcile_checkpoint,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "RestartPolicy",
    "AccountSettings",
    "resolve_account",
    "normalize_account_id",
    # Exceptions
    "RelayKeeperError",
    "ConfigError",
    "StorageError",
    "ProviderError",
    "TransportConflict",
    "FatalProviderError",
    "TransportNetworkError",
    # Logging
    "configure_logging",
    "get_logger",
    "logger",
    "bind_context",
    "unbind_context",
    # Models
    "AccountContext",
    "Checkpoint",
    "CheckpointRecord",
    "PollMode",
    "ProviderEvent",
    "WebhookMode",
    # Storage
    "FileCheckpointStore",
    "fingerprint_credential",
    # Supervision
    "DispatchSupervisor",
    "FailureKind",
    "SupervisorState",
    "classify_failure",
    "compute_backoff",
    "reconcile_checkpoint",
    # Monitor
    "monitor_provider",
]
