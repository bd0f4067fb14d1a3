#!/usr/bin/env python3
"""Restart policy and failure classification demo.

Shows how relaykeeper decides what to do when a poll worker dies:

- Conflict:  another process polls with the same token -> back off, restart
- Network:   connection reset, DNS, 5xx, 429             -> back off, restart
- Fatal:     revoked token, config errors, bugs          -> stop and surface

No external services required - runs entirely locally.
"""

import random

import httpx

from relaykeeper import FatalProviderError, RestartPolicy, TransportConflict
from relaykeeper.exceptions import ProviderError
from relaykeeper.logging import format_duration
from relaykeeper.supervisor import base_delay, classify_failure, compute_backoff


def main() -> None:
    print("=" * 70)
    print("relaykeeper Restart Policy Demo")
    print("=" * 70)

    # =========================================================================
    # Part 1: Classification
    # =========================================================================
    print("\n1. FAILURE CLASSIFICATION (poll mode)")
    print("-" * 70)

    failures = [
        TransportConflict(409, "Conflict: terminated by other getUpdates request", "getUpdates"),
        httpx.ConnectError("All connection attempts failed"),
        ProviderError(502, "Bad Gateway", "getUpdates"),
        ProviderError(429, "Too Many Requests: retry after 3", "getUpdates", 3),
        RuntimeError("fetch failed"),
        FatalProviderError(401, "Unauthorized", "getUpdates"),
        ValueError("bug in handler wiring"),
    ]
    for err in failures:
        kind = classify_failure(err, "polling")
        print(f"  {type(err).__name__:<22} {kind.value:<20} {err}")

    # =========================================================================
    # Part 2: Backoff schedule
    # =========================================================================
    print("\n2. BACKOFF SCHEDULE (initial 2s, factor 1.8, max 30s, jitter 25%)")
    print("-" * 70)

    policy = RestartPolicy()
    rng = random.Random(42)
    print(f"  {'attempt':<10}{'base':<12}{'jittered':<12}")
    for attempt in range(1, 11):
        base = base_delay(policy, attempt)
        delay = compute_backoff(policy, attempt, rng)
        print(f"  {attempt:<10}{format_duration(base):<12}{format_duration(delay):<12}")

    print("\n  Attempt 1,000,000 still waits at most", format_duration(
        compute_backoff(policy, 1_000_000, rng)
    ))
    print("\n  The attempt counter resets whenever an event is delivered.")


if __name__ == "__main__":
    main()
