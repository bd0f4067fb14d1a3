"""relaykeeper exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from RelayKeeperError for easy catching.
"""

from __future__ import annotations


class RelayKeeperError(Exception):
    """Base exception for all relaykeeper errors.

    All custom exceptions in relaykeeper inherit from this class,
    allowing callers to catch all relaykeeper-related errors with
    a single except clause.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for structured logs.
    """

    code: str = "relaykeeper_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to a log-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ConfigError(RelayKeeperError):
    """Configuration error.

    Raised when a credential is missing or invalid. Never retried.
    """

    code: str = "config_error"


class StorageError(RelayKeeperError):
    """Checkpoint read or write failed.

    Raised when checkpoint state is unreadable, corrupt, or cannot be
    persisted. The supervisor logs these and carries on.
    """

    code: str = "storage_error"


class ProviderError(RelayKeeperError):
    """The provider answered a request with an error.

    Attributes:
        error_code: Provider error code (HTTP-like, e.g. 401, 409, 429).
        description: Provider description of the failure.
        method: API method that failed (e.g. "getUpdates").
        retry_after: Seconds the provider asked us to wait, if any.
    """

    code: str = "provider_error"

    def __init__(
        self,
        error_code: int | None,
        description: str,
        method: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.error_code = error_code
        self.description = description
        self.method = method
        self.retry_after = retry_after
        prefix = f"{method}: " if method else ""
        status = f" ({error_code})" if error_code is not None else ""
        super().__init__(f"{prefix}{description}{status}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to a log-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "error_code": self.error_code,
                "method": self.method,
                "message": self.message,
            }
        }


class TransportConflict(ProviderError):
    """The provider rejected the request because of a conflicting consumer.

    Raised for 409 replies, most commonly when another poller is already
    active for the same credential.
    """

    code: str = "transport_conflict"


class FatalProviderError(ProviderError):
    """Non-recoverable provider failure.

    Raised for bad credentials, permission errors and malformed requests.
    Terminates the dispatch loop.
    """

    code: str = "fatal_provider_error"


class TransportNetworkError(RelayKeeperError):
    """Recoverable transport failure.

    Raised by the poll worker once its own retry window is spent on
    timeouts, resets and other network hiccups.
    """

    code: str = "transport_network_error"
