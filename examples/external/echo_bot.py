#!/usr/bin/env python3
"""Echo bot - long-poll delivery with a durable checkpoint.

Demonstrates:
- monitor_provider(): resolve the account, reconcile the checkpoint, supervise
- Handler errors are logged and never stall delivery
- Ctrl-C stops cleanly; restarting resumes after the last handled event

Prerequisites:
    - Bot token in .env: RELAYKEEPER_BOT_TOKEN=123456:ABC...
"""

import asyncio
import signal

import httpx

from relaykeeper import ProviderEvent, Settings, configure_logging, get_logger, monitor_provider

logger = get_logger("echo_bot")


async def main() -> None:
    settings = Settings()
    configure_logging(level="INFO", format="text")

    api = httpx.AsyncClient(base_url=f"{settings.api_base_url}/bot{settings.bot_token}/")

    async def echo(event: ProviderEvent) -> None:
        message = event.payload.get("message") or {}
        text = message.get("text")
        if not text:
            return
        logger.info("Echoing", event_id=event.event_id, chat_id=message["chat"]["id"])
        await api.post("sendMessage", json={"chat_id": message["chat"]["id"], "text": text})

    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, cancel.set)

    try:
        await monitor_provider(echo, settings=settings, cancel=cancel)
    finally:
        await api.aclose()


if __name__ == "__main__":
    asyncio.run(main())
