"""Jittered exponential backoff and an interruptible sleep."""

from __future__ import annotations

import asyncio
import math
import random

from relaykeeper.config import RestartPolicy


def _exponent_cap(policy: RestartPolicy) -> int:
    """Smallest exponent at which the un-jittered delay reaches max_delay."""
    if policy.factor <= 1.0 or policy.initial_delay >= policy.max_delay:
        return 0
    return math.ceil(math.log(policy.max_delay / policy.initial_delay, policy.factor))


def base_delay(policy: RestartPolicy, attempt: int) -> float:
    """Un-jittered delay for attempt (1-based), clamped to max_delay."""
    if attempt < 1:
        raise ValueError(f"attempt numbering starts at 1 (got {attempt})")
    # Cap the exponent before raising to a power: weeks of retries would
    # otherwise overflow float pow
    exponent = min(attempt - 1, _exponent_cap(policy))
    return min(policy.max_delay, policy.initial_delay * policy.factor**exponent)


def compute_backoff(
    policy: RestartPolicy,
    attempt: int,
    rng: random.Random | None = None,
) -> float:
    """Delay in seconds before restart attempt ``attempt``.

    The base delay is perturbed by a fresh uniform draw in
    [-jitter, +jitter] (relative), then clamped to [0, max_delay].

    Args:
        policy: Restart policy.
        attempt: Attempt number, starting at 1.
        rng: Random source; pass a seeded Random for reproducible delays.

    Returns:
        Delay in seconds.
    """
    delay = base_delay(policy, attempt)
    if policy.jitter > 0:
        draw = (rng or random).uniform(-policy.jitter, policy.jitter)
        delay *= 1.0 + draw
    return max(0.0, min(policy.max_delay, delay))


async def sleep_with_abort(delay: float, cancel: asyncio.Event | None = None) -> bool:
    """Sleep for delay seconds unless cancel fires first.

    Args:
        delay: Seconds to sleep.
        cancel: Cancellation signal; the sleep returns as soon as it is set.

    Returns:
        True if the full delay elapsed, False if cancelled.
    """
    if cancel is None:
        await asyncio.sleep(delay)
        return True
    if cancel.is_set():
        return False
    try:
        await asyncio.wait_for(cancel.wait(), timeout=max(0.0, delay))
    except TimeoutError:
        return True
    return False
