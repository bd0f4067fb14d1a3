"""Failure classification for the dispatch loop.

Maps an arbitrary raised value to one of three outcomes:
    - CONFLICT: another poller holds the provider's long-poll slot
    - RECOVERABLE_NETWORK: transport hiccup, restart after a backoff
    - FATAL: anything else, surfaces to the caller

All functions here are pure and deterministic. Checkpoint storage failures
are not classified: the supervisor logs them where they happen and keeps
delivering.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from relaykeeper.exceptions import ConfigError, TransportNetworkError
from relaykeeper.logging import format_error_message
from relaykeeper.transport.errors import ErrorContext, is_recoverable_network_error

# Name of the provider's long-poll method
POLL_METHOD = "getUpdates"

NETWORK_ERROR_SNIPPETS: tuple[str, ...] = (
    "fetch failed",
    "network",
    "timeout",
    "timed out",
    "socket",
    "econnreset",
    "econnrefused",
    "connection reset",
    "connection refused",
    "name resolution",
)


class FailureKind(str, Enum):
    """Outcome of classifying a worker failure."""

    CONFLICT = "conflict"
    RECOVERABLE_NETWORK = "recoverable_network"
    FATAL = "fatal"


DuplicatePollerPredicate = Callable[[object], bool]
TransportClassifier = Callable[[object, ErrorContext], bool]


def _error_code(err: object) -> object:
    code = getattr(err, "error_code", None)
    if code is None:
        code = getattr(err, "errorCode", None)
    return code


def is_duplicate_poller_signal(err: object, poll_method: str = POLL_METHOD) -> bool:
    """Detect the provider's "another poller is active" reply.

    The signal is a 409 error code whose method, description or message
    mentions the long-poll method, compared case-insensitively.

    Args:
        err: Raised value.
        poll_method: Name of the long-poll endpoint.

    Returns:
        True if err reports a duplicate poller.
    """
    if err is None or isinstance(err, (str, int, float, bool)):
        return False
    if _error_code(err) != 409:
        return False
    fields = [getattr(err, name, None) for name in ("method", "description", "message")]
    haystack = " ".join(value for value in fields if isinstance(value, str)).lower()
    return poll_method.lower() in haystack


def is_network_related_error(err: object) -> bool:
    """Substring check of the rendered error against known network failures."""
    if err is None:
        return False
    message = format_error_message(err).lower()
    if not message:
        return False
    return any(snippet in message for snippet in NETWORK_ERROR_SNIPPETS)


def classify_failure(
    err: object,
    context: ErrorContext = "polling",
    *,
    is_duplicate_poller: DuplicatePollerPredicate = is_duplicate_poller_signal,
    is_transport_hiccup: TransportClassifier = is_recoverable_network_error,
) -> FailureKind:
    """Classify a failure raised by a poll worker or webhook listener.

    Args:
        err: Raised value.
        context: "polling" or "webhook". Conflicts only exist while polling.
        is_duplicate_poller: Predicate detecting the duplicate-poller signal.
        is_transport_hiccup: Classifier exposed by the transport.

    Returns:
        The FailureKind for err.
    """
    if isinstance(err, ConfigError):
        return FailureKind.FATAL
    if context == "polling" and is_duplicate_poller(err):
        return FailureKind.CONFLICT
    if isinstance(err, TransportNetworkError):
        return FailureKind.RECOVERABLE_NETWORK
    if is_transport_hiccup(err, context) or is_network_related_error(err):
        return FailureKind.RECOVERABLE_NETWORK
    return FailureKind.FATAL
