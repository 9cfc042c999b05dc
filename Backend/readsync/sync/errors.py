from __future__ import annotations
from datetime import datetime


class SyncError(Exception):
    """Base class for sync engine errors."""


class BudgetExceeded(SyncError):
    """The local request budget for the current window is spent. Expected, not an anomaly."""

    def __init__(self):
        super().__init__("Request budget exceeded")


class CacheWriteError(SyncError):
    pass


class CredentialError(SyncError):
    """The user's Reader token is missing or cannot be decrypted."""


class SyncStateNotFound(SyncError):
    pass


class SyncInProgress(SyncError):
    pass


class SyncRateLimited(SyncError):
    def __init__(self, next_allowed_at: datetime):
        super().__init__(f"Sync not allowed before {next_allowed_at.isoformat()}")
        self.next_allowed_at = next_allowed_at


class PartialSyncError(SyncError):
    """
    A pass failed after some locations had already been advanced. `updates`
    holds the state columns that are safe to persist despite the failure.
    """

    def __init__(self, cause: Exception, updates: dict):
        super().__init__(str(cause))
        self.cause = cause
        self.updates = updates
