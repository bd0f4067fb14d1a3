"""Run a relaykeeper monitor from the command line.

Usage:
    RELAYKEEPER_BOT_TOKEN=123:abc RELAYKEEPER_HANDLER=myapp.bot:handle \\
        python -m relaykeeper

The handler is an async callable taking a ProviderEvent. SIGINT and SIGTERM
stop the monitor cleanly.
"""

from __future__ import annotations

import asyncio
import importlib
import signal
import sys

from pydantic import ValidationError

from relaykeeper.config import Settings
from relaykeeper.exceptions import ConfigError, RelayKeeperError
from relaykeeper.interfaces import EventHandler
from relaykeeper.logging import configure_logging, get_logger
from relaykeeper.models import ProviderEvent
from relaykeeper.monitor import monitor_provider

logger = get_logger(__name__)


async def log_event(event: ProviderEvent) -> None:
    """Fallback handler: log each event id and its update type."""
    kinds = [key for key in event.payload if key != "update_id"]
    logger.info("Event received", event_id=event.event_id, kinds=kinds)


def load_handler(path: str | None) -> EventHandler:
    """Import a handler from a "module:attribute" path.

    Raises:
        ConfigError: If the path is malformed or does not resolve to a callable.
    """
    if not path:
        return log_event
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ConfigError(f"Handler must look like 'module:callable' (got {path!r})")
    try:
        target = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as e:
        raise ConfigError(f"Cannot import handler {path!r}: {e}") from e
    if not callable(target):
        raise ConfigError(f"Handler {path!r} is not callable")
    return target  # type: ignore[no-any-return]


async def _run(settings: Settings) -> None:
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(cancel.set))
    await monitor_provider(load_handler(settings.handler), settings=settings, cancel=cancel)


def main() -> int:
    """Run the monitor; returns the process exit code."""
    try:
        settings = Settings()
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    configure_logging(level=settings.log_level, format=settings.log_format)
    try:
        asyncio.run(_run(settings))
    except ConfigError as e:
        logger.error("Configuration error", **e.to_dict()["error"])
        return 1
    except RelayKeeperError as e:
        logger.error("Monitor terminated", **e.to_dict()["error"])
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
