"""
Request accounting for one user's sync pass.

The Reader API allows a fixed number of requests per rolling window and the
quota is shared by listing calls and single-document fetches, so every remote
call made during a pass goes through RequestBudget.track.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, TypeVar

from readsync.sync.errors import BudgetExceeded

T = TypeVar("T")

WINDOW = timedelta(seconds=60)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands timestamps back naive; everything stored is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class RateWindow:
    started_at: datetime
    request_count: int

    @property
    def ends_at(self) -> datetime:
        return self.started_at + WINDOW


def normalize_window(
    window_started_at: datetime | None,
    window_request_count: int | None,
    now: datetime,
) -> RateWindow:
    started_at = as_utc(window_started_at)
    if started_at is None or now - started_at >= WINDOW:
        return RateWindow(now, 0)
    return RateWindow(started_at, window_request_count or 0)


class RequestBudget:
    def __init__(self, initial_count: int, limit: int):
        self._count = initial_count
        self.limit = limit

    def can_request(self) -> bool:
        return self._count < self.limit

    def remaining(self) -> int:
        return max(self.limit - self._count, 0)

    def used(self) -> int:
        return self._count

    def track(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """Charge one request and call fn. Raises BudgetExceeded without calling fn when spent."""
        if not self.can_request():
            raise BudgetExceeded()
        self._count += 1
        return fn(*args, **kwargs)


def compute_backoff(
    now: datetime,
    window: RateWindow,
    retry_after_seconds: int | None = None,
) -> datetime:
    """
    Earliest time the user may be picked up again after a pass was cut short.

    The remote cooldown hint wins when present; otherwise fall back to the end
    of the local budget window.
    """
    if retry_after_seconds:
        return now + timedelta(seconds=retry_after_seconds)
    return window.ends_at
