"""Transport-level error classification.

Answers one question for the rest of the package: was this failure a
network hiccup (retry later) rather than a protocol or credential problem?
"""

from __future__ import annotations

import socket
from collections.abc import Iterator
from typing import Literal

import httpx

from relaykeeper.exceptions import ProviderError, TransportNetworkError

ErrorContext = Literal["polling", "webhook"]

# Provider replies that mean "try again later", not "you are wrong"
RETRYABLE_PROVIDER_CODES = frozenset({429, 500, 502, 503, 504})

_NETWORK_EXCEPTIONS: tuple[type[BaseException], ...] = (
    httpx.TransportError,
    TransportNetworkError,
    ConnectionError,
    TimeoutError,
    socket.gaierror,
)


def iter_error_chain(err: BaseException) -> Iterator[BaseException]:
    """Yield err followed by its causes and contexts, once each."""
    seen: set[int] = set()
    current: BaseException | None = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def is_recoverable_network_error(err: object, context: ErrorContext = "polling") -> bool:
    """Check whether err is a transient transport failure.

    Walks the cause chain so wrapped socket or httpx errors are recognized.
    Provider replies with a retryable status (429, 5xx) count as transient.
    In webhook context a read timeout is not transient: the provider is
    expected to answer registration calls promptly.

    Args:
        err: Raised value.
        context: Where the error surfaced.

    Returns:
        True if retrying the same call later is reasonable.
    """
    if not isinstance(err, BaseException):
        return False
    for link in iter_error_chain(err):
        if isinstance(link, ProviderError):
            return link.error_code in RETRYABLE_PROVIDER_CODES
        if context == "webhook" and isinstance(link, httpx.ReadTimeout):
            return False
        if isinstance(link, _NETWORK_EXCEPTIONS):
            return True
    return False
