"""Provider transport: HTTP client, poll worker and webhook listener."""

from .client import BotApiClient
from .errors import ErrorContext, is_recoverable_network_error
from .webhook import WebhookListener
from .worker import PollWorker

__all__ = [
    "BotApiClient",
    "ErrorContext",
    "PollWorker",
    "WebhookListener",
    "is_recoverable_network_error",
]
