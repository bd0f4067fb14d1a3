"""Account resolution: which credential, proxy and mode a monitor runs with."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from relaykeeper.config import AccountSettings, Settings
from relaykeeper.exceptions import ConfigError
from relaykeeper.models import AccountContext

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT_ID = "default"

_INVALID_ACCOUNT_CHARS = re.compile(r"[^a-z0-9_-]+")


def normalize_account_id(account_id: str | None) -> str:
    """Normalize an account id for use in file names and log context.

    Examples:
        normalize_account_id(None) -> "default"
        normalize_account_id(" Support Bot ") -> "support-bot"
    """
    if account_id is None:
        return DEFAULT_ACCOUNT_ID
    cleaned = _INVALID_ACCOUNT_CHARS.sub("-", account_id.strip().lower()).strip("-")
    return cleaned or DEFAULT_ACCOUNT_ID


def _read_token_file(path: str, account_id: str) -> str | None:
    try:
        return Path(path).expanduser().read_text(encoding="utf-8").strip() or None
    except OSError as e:
        raise ConfigError(
            f'Cannot read bot token file for account "{account_id}": {path} ({e})'
        ) from e


def resolve_account(
    settings: Settings,
    account_id: str | None = None,
    token: str | None = None,
    proxy: str | None = None,
) -> AccountContext:
    """Resolve the credential and delivery mode for one account.

    Token lookup order: explicit ``token``, the account's ``bot_token``, the
    account's ``token_file``; for the default account additionally
    ``settings.bot_token``, ``settings.bot_token_file`` and the
    ``TELEGRAM_BOT_TOKEN`` environment variable.

    Args:
        settings: Loaded settings.
        account_id: Account to resolve (default account if None).
        token: Explicit token, overrides configuration.
        proxy: Explicit proxy URL, overrides configuration.

    Returns:
        Resolved AccountContext.

    Raises:
        ConfigError: If the account is disabled or no token can be found.
    """
    resolved_id = normalize_account_id(account_id)
    account = settings.accounts.get(resolved_id, AccountSettings())
    if not account.enabled:
        raise ConfigError(f'Account "{resolved_id}" is disabled')

    is_default = resolved_id == DEFAULT_ACCOUNT_ID
    candidate = (token or "").strip() or account.bot_token
    if not candidate and account.token_file:
        candidate = _read_token_file(account.token_file, resolved_id)
    if not candidate and is_default:
        candidate = settings.bot_token
        if not candidate and settings.bot_token_file:
            candidate = _read_token_file(settings.bot_token_file, resolved_id)
        if not candidate:
            candidate = os.environ.get("TELEGRAM_BOT_TOKEN")

    if not candidate or not candidate.strip():
        raise ConfigError(
            f'Bot token missing for account "{resolved_id}" (set '
            f"RELAYKEEPER_ACCOUNTS__{resolved_id.upper()}__BOT_TOKEN / TOKEN_FILE"
            f"{' or RELAYKEEPER_BOT_TOKEN / TELEGRAM_BOT_TOKEN' if is_default else ''})."
        )

    resolved_proxy = proxy or account.proxy or (settings.proxy if is_default else None)
    logger.debug("Resolved account %s (proxy=%s)", resolved_id, bool(resolved_proxy))
    return AccountContext(
        account_id=resolved_id,
        token=candidate.strip(),
        proxy=resolved_proxy,
        mode=settings.delivery_mode_config(),
    )
