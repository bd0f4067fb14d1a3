"""Configuration management for relaykeeper."""

import logging
import warnings
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings

from relaykeeper.models.delivery import DEFAULT_ALLOWED_UPDATES, PollMode, WebhookMode

logger = logging.getLogger(__name__)

CatchUpStrategy = Literal["skip_backlog", "redeliver"]


class RestartPolicy(BaseModel):
    """Backoff parameters for restarting the poll worker.

    The delay for attempt n (starting at 1) is:
        min(max_delay, initial_delay * factor ** (n - 1))
    perturbed by +/- jitter (a fraction of the delay), never above max_delay.

    Attributes:
        initial_delay: Delay before the first restart (seconds, 2.0 default).
        max_delay: Upper bound for any delay (seconds, 30.0 default).
        factor: Growth per attempt (1.8 default).
        jitter: Relative randomization (0.25 default, i.e. +/- 25%).
    """

    model_config = ConfigDict(frozen=True)

    initial_delay: float = Field(
        default=2.0,
        gt=0.0,
        description="Delay before the first restart in seconds",
    )
    max_delay: float = Field(
        default=30.0,
        gt=0.0,
        description="Upper bound for any restart delay in seconds",
    )
    factor: float = Field(
        default=1.8,
        ge=1.0,
        description="Multiplicative growth per attempt",
    )
    jitter: float = Field(
        default=0.25,
        ge=0.0,
        lt=1.0,
        description="Relative jitter applied to each delay",
    )

    @model_validator(mode="after")
    def _warn_if_initial_exceeds_max(self) -> "RestartPolicy":
        """Warn when every delay would be clamped to max_delay."""
        if self.initial_delay > self.max_delay:
            warnings.warn(
                f"RestartPolicy initial_delay ({self.initial_delay}) exceeds "
                f"max_delay ({self.max_delay}); every restart waits max_delay.",
                UserWarning,
                stacklevel=2,
            )
            logger.warning(
                "RestartPolicy initial_delay %.2f exceeds max_delay %.2f",
                self.initial_delay,
                self.max_delay,
            )
        return self


class AccountSettings(BaseModel):
    """Per-account overrides.

    Set with nested environment variables, for example:
        RELAYKEEPER_ACCOUNTS__SUPPORT__BOT_TOKEN=123:abc
        RELAYKEEPER_ACCOUNTS__SUPPORT__PROXY=http://proxy:3128
    """

    bot_token: str | None = Field(default=None, repr=False)
    token_file: str | None = Field(default=None)
    proxy: str | None = Field(default=None)
    enabled: bool = Field(default=True)


class Settings(BaseSettings):
    """relaykeeper configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the RELAYKEEPER_ prefix. For example:
        RELAYKEEPER_BOT_TOKEN=123:abc
        RELAYKEEPER_DELIVERY_MODE=webhook
        RELAYKEEPER_RESTART_POLICY__MAX_DELAY=60
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    # State
    state_dir: Path = Field(
        default=Path("~/.relaykeeper"),
        description="Directory holding checkpoint files (under checkpoints/)",
    )

    # Provider
    api_base_url: str = Field(
        default="https://api.telegram.org",
        description="Provider API root",
    )
    request_timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="HTTP timeout for non-polling provider calls (seconds)",
    )

    # Default account credentials
    bot_token: str | None = Field(
        default=None,
        repr=False,
        description="Bot token for the default account",
    )
    bot_token_file: str | None = Field(
        default=None,
        description="File containing the bot token for the default account",
    )
    proxy: str | None = Field(
        default=None,
        description="Forwarding proxy URL for the default account",
    )
    accounts: dict[str, AccountSettings] = Field(
        default_factory=dict,
        description="Named accounts keyed by account id",
    )

    # Delivery mode
    delivery_mode: Literal["poll", "webhook"] = Field(
        default="poll",
        description="Receive events by long polling or by webhook",
    )

    # Polling
    max_concurrent: int = Field(
        default=4,
        ge=1,
        le=256,
        description="Maximum handler calls in flight",
    )
    poll_timeout: float = Field(
        default=30.0,
        ge=0.0,
        le=50.0,
        description="Long-poll timeout passed to the provider (seconds)",
    )
    poll_limit: int = Field(
        default=100,
        ge=1,
        le=100,
        description="Maximum events fetched per poll",
    )
    retry_window: float = Field(
        default=300.0,
        ge=0.0,
        description=(
            "Seconds the poll worker retries transient fetch failures itself "
            "before the supervisor restarts it"
        ),
    )
    allowed_updates: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_UPDATES),
        description="Event categories requested from the provider",
    )

    # Webhook
    webhook_url: str | None = Field(
        default=None,
        description="Public URL registered with the provider (webhook mode)",
    )
    webhook_path: str = Field(
        default="/telegram-webhook",
        description="Local route receiving webhook calls",
    )
    webhook_host: str = Field(
        default="0.0.0.0",
        description="Listener bind address",
    )
    webhook_port: int = Field(
        default=8787,
        ge=1,
        le=65535,
        description="Listener bind port",
    )
    webhook_secret: str | None = Field(
        default=None,
        repr=False,
        description="Shared secret checked on every webhook call",
    )
    webhook_startup_timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="Seconds allowed for webhook registration",
    )

    # Supervision
    restart_policy: RestartPolicy = Field(
        default_factory=RestartPolicy,
        description="Backoff used between poll worker restarts",
    )
    catch_up_strategy: CatchUpStrategy = Field(
        default="skip_backlog",
        description=(
            "What to do when the stored checkpoint belongs to another credential: "
            "'skip_backlog' jumps to the newest pending event, "
            "'redeliver' lets the provider deliver everything pending"
        ),
    )
    probe_limit: int = Field(
        default=100,
        ge=1,
        le=100,
        description="Pending events sampled when the credential changed",
    )
    probe_timeout: float = Field(
        default=5.0,
        gt=0.0,
        description="Timeout for the credential-change probe (seconds)",
    )
    stop_timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="Seconds to wait for a worker to stop before cancelling it",
    )

    # CLI
    handler: str | None = Field(
        default=None,
        description="Downstream handler as 'module:callable' (used by python -m relaykeeper)",
    )

    model_config = {
        "env_prefix": "RELAYKEEPER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @model_validator(mode="after")
    def validate_webhook_settings(self) -> "Settings":
        """Webhook mode needs a public URL and an absolute route."""
        if not self.webhook_path.startswith("/"):
            raise ValueError(f"webhook_path must start with '/' (got {self.webhook_path!r})")
        if self.delivery_mode == "webhook" and not self.webhook_url:
            raise ValueError(
                "RELAYKEEPER_WEBHOOK_URL must be set when RELAYKEEPER_DELIVERY_MODE=webhook"
            )
        if self.delivery_mode == "webhook" and not self.webhook_secret and self.env == "production":
            warnings.warn(
                "Webhook mode without RELAYKEEPER_WEBHOOK_SECRET accepts unsigned calls.",
                UserWarning,
                stacklevel=2,
            )
            logger.warning("Webhook secret not set in production")
        return self

    @property
    def checkpoint_dir(self) -> Path:
        """Directory holding per-account checkpoint files."""
        return self.state_dir.expanduser() / "checkpoints"

    def delivery_mode_config(self) -> PollMode | WebhookMode:
        """Build the delivery mode variant selected by these settings."""
        allowed = tuple(self.allowed_updates)
        if self.delivery_mode == "webhook":
            return WebhookMode(
                public_url=self.webhook_url or "",
                path=self.webhook_path,
                host=self.webhook_host,
                port=self.webhook_port,
                secret=self.webhook_secret,
                startup_timeout=self.webhook_startup_timeout,
                allowed_updates=allowed,
            )
        return PollMode(
            concurrency=self.max_concurrent,
            poll_timeout=self.poll_timeout,
            limit=self.poll_limit,
            retry_window=self.retry_window,
            allowed_updates=allowed,
        )
