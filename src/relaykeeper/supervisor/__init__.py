"""Resilient polling/dispatch supervision.

Components:
    - classify: Failure classification (conflict, network, fatal)
    - backoff: Jittered exponential backoff and interruptible sleep
    - reconcile: Credential-change checkpoint reconciliation
    - loop: DispatchSupervisor state machine
"""

from .backoff import base_delay, compute_backoff, sleep_with_abort
from .classify import (
    FailureKind,
    classify_failure,
    is_duplicate_poller_signal,
    is_network_related_error,
)
from .loop import DispatchSupervisor, RunSession, SupervisorState
from .reconcile import reconcile_checkpoint

__all__ = [
    # Backoff
    "base_delay",
    "compute_backoff",
    "sleep_with_abort",
    # Classification
    "FailureKind",
    "classify_failure",
    "is_duplicate_poller_signal",
    "is_network_related_error",
    # Reconciliation
    "reconcile_checkpoint",
    # Supervisor
    "DispatchSupervisor",
    "RunSession",
    "SupervisorState",
]
