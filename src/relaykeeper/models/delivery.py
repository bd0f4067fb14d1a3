"""Delivery models: how events reach the process and what they look like."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Update types requested from the provider. Reactions are not part of the
# provider's default set and must be asked for explicitly.
DEFAULT_ALLOWED_UPDATES: tuple[str, ...] = (
    "message",
    "edited_message",
    "channel_post",
    "edited_channel_post",
    "inline_query",
    "chosen_inline_result",
    "callback_query",
    "shipping_query",
    "pre_checkout_query",
    "poll",
    "poll_answer",
    "my_chat_member",
    "chat_member",
    "chat_join_request",
    "message_reaction",
)


class ProviderEvent(BaseModel):
    """A single inbound event as returned by the provider.

    Attributes:
        event_id: Provider-assigned, monotonically increasing id.
        payload: Raw event body, handed to the downstream handler unchanged.
    """

    model_config = ConfigDict(frozen=True)

    event_id: int = Field(ge=0)
    payload: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_update(cls, update: dict[str, Any]) -> ProviderEvent:
        """Build from a raw provider update carrying ``update_id``."""
        return cls(event_id=update["update_id"], payload=update)


class PollMode(BaseModel):
    """Pull delivery: long-poll the provider for new events.

    Attributes:
        concurrency: Maximum handler calls in flight.
        poll_timeout: Long-poll timeout passed to the provider (seconds).
        limit: Maximum events per poll.
        retry_window: Seconds the worker retries transient fetch failures
            on its own before surfacing them to the supervisor.
        allowed_updates: Event categories to subscribe to.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["poll"] = "poll"
    concurrency: int = Field(default=4, ge=1, le=256)
    poll_timeout: float = Field(default=30.0, ge=0.0, le=50.0)
    limit: int = Field(default=100, ge=1, le=100)
    retry_window: float = Field(default=300.0, ge=0.0)
    allowed_updates: tuple[str, ...] = DEFAULT_ALLOWED_UPDATES


class WebhookMode(BaseModel):
    """Push delivery: the provider calls our HTTP endpoint.

    Attributes:
        public_url: URL registered with the provider.
        path: Local route that receives events.
        host: Bind address for the listener.
        port: Bind port for the listener.
        secret: Shared secret echoed back by the provider in a header.
        startup_timeout: Seconds allowed for webhook registration.
        allowed_updates: Event categories to subscribe to.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["webhook"] = "webhook"
    public_url: str = Field(min_length=1)
    path: str = Field(default="/telegram-webhook")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8787, ge=1, le=65535)
    secret: str | None = Field(default=None)
    startup_timeout: float = Field(default=10.0, gt=0.0)
    allowed_updates: tuple[str, ...] = DEFAULT_ALLOWED_UPDATES

    @field_validator("path")
    @classmethod
    def _path_is_absolute(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("webhook path must start with '/'")
        return value


# Selected once at startup, never switched at runtime
DeliveryMode = Annotated[PollMode | WebhookMode, Field(discriminator="kind")]


class AccountContext(BaseModel):
    """Resolved account the monitor runs for.

    Owned by the caller; the supervisor only reads it.
    """

    model_config = ConfigDict(frozen=True)

    account_id: str
    token: str = Field(min_length=1, repr=False)
    proxy: str | None = None
    mode: DeliveryMode = Field(default_factory=PollMode)
