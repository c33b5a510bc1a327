"""Optimistic write coordination between local edits and persistence."""

from .coordinator import (
    DEFAULT_GRACE_DELAY,
    DEFAULT_PENDING_TIMEOUT,
    OptimisticUpdateCoordinator,
)
from .models import PendingWrite, WriteState

__all__ = [
    "DEFAULT_GRACE_DELAY",
    "DEFAULT_PENDING_TIMEOUT",
    "OptimisticUpdateCoordinator",
    "PendingWrite",
    "WriteState",
]
