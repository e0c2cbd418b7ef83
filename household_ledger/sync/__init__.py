"""Cloud sync package."""

from household_ledger.sync.coordinator import (
    SyncCoordinator,
    SyncError,
    SyncErrorKind,
)
from household_ledger.sync.debounce import DebouncedScheduler

__all__ = [
    "DebouncedScheduler",
    "SyncCoordinator",
    "SyncError",
    "SyncErrorKind",
]
