from __future__ import annotations
from datetime import datetime
from typing import Any
import logging

from sqlalchemy.orm import Session

from readsync.config import get_location_override, get_max_requests_per_window
from readsync.db.models.sync_state import ReaderSyncState
from readsync.reader.client import ReaderClient
from readsync.reader.types import ReaderApiError
from readsync.sync.budget import RequestBudget, compute_backoff, normalize_window
from readsync.sync.cursor import is_completed
from readsync.sync.errors import BudgetExceeded, CacheWriteError, PartialSyncError
from readsync.sync.location import sync_location

logger = logging.getLogger(__name__)

# Backfill priority order. Inbox first: it is what users open the app for.
SYNC_LOCATIONS: list[tuple[str, str]] = [
    ("new", "inbox_cursor"),
    ("later", "library_cursor"),
    ("archive", "archive_cursor"),
    ("shortlist", "shortlist_cursor"),
    ("feed", "feed_cursor"),
]
CURSOR_COLUMNS = [column for _, column in SYNC_LOCATIONS]


def allowed_locations() -> list[str]:
    known = [location for location, _ in SYNC_LOCATIONS]
    override = get_location_override()
    if not override:
        return known
    filtered = [location for location in known if location in override]
    if not filtered:
        logger.warning("Location override %s matches no known location, syncing all", override)
        return known
    return filtered


def _run_initial_backfill(db, client, budget, state, updates, allowed) -> None:
    """
    Locations are taken strictly in order: a location is only started once
    every earlier one is complete, either from a previous pass or in this one.
    """
    all_complete = True
    for location, column in SYNC_LOCATIONS:
        if location not in allowed or is_completed(updates[column]):
            continue
        if not budget.can_request():
            all_complete = False
            break

        result = sync_location(
            db, client, budget,
            user_id=state.user_id,
            location=location,
            cursor_value=updates[column],
            mode="initial",
        )
        updates[column] = result.next_cursor
        if not result.completed:
            all_complete = False
            break

    if all_complete:
        logger.info("Initial backfill complete for user %s", state.user_id)
        updates["initial_backfill_done"] = True


def _run_incremental(db, client, budget, state, updates, allowed) -> None:
    for location, column in SYNC_LOCATIONS:
        if location not in allowed:
            continue
        if not budget.can_request():
            logger.info("Budget exhausted, leaving %s for the next pass", location)
            break
        result = sync_location(
            db, client, budget,
            user_id=state.user_id,
            location=location,
            cursor_value=updates[column],
            mode="incremental",
        )
        updates[column] = result.next_cursor


def sync_user(
    db: Session,
    state: ReaderSyncState,
    client: ReaderClient,
    now: datetime,
) -> dict[str, Any]:
    """
    Run one sync pass for a locked user and return the state columns to persist.

    Rate limiting (remote 429 or the local budget) ends the pass early and
    schedules the next one; any other error propagates to the caller.
    """
    window = normalize_window(state.window_started_at, state.window_request_count, now)
    budget = RequestBudget(window.request_count, get_max_requests_per_window())
    allowed = allowed_locations()

    logger.info(
        "Syncing user %s (backfill_done=%s, budget used=%d remaining=%d)",
        state.user_id, state.initial_backfill_done, budget.used(), budget.remaining(),
    )

    if not budget.can_request():
        return {
            "next_allowed_at": window.ends_at,
            "window_started_at": window.started_at,
            "window_request_count": budget.used(),
        }

    updates: dict[str, Any] = {column: getattr(state, column) for column in CURSOR_COLUMNS}
    updates["initial_backfill_done"] = bool(state.initial_backfill_done)

    next_allowed_at: datetime | None = None
    last_429_at = state.last_429_at

    try:
        if not state.initial_backfill_done:
            _run_initial_backfill(db, client, budget, state, updates, allowed)
        else:
            _run_incremental(db, client, budget, state, updates, allowed)
    except ReaderApiError as e:
        if not e.is_rate_limited:
            raise
        logger.warning("Reader API rate limited user %s (retry after %s)", state.user_id, e.retry_after_seconds)
        last_429_at = now
        next_allowed_at = compute_backoff(now, window, e.retry_after_seconds)
    except BudgetExceeded:
        logger.info("Request budget spent for user %s", state.user_id)
        next_allowed_at = compute_backoff(now, window)
    except CacheWriteError as e:
        raise PartialSyncError(e, {
            **updates,
            "window_started_at": window.started_at,
            "window_request_count": budget.used(),
        }) from e

    if next_allowed_at is None and budget.used() > 0:
        next_allowed_at = window.ends_at

    return {
        **updates,
        "next_allowed_at": next_allowed_at,
        "last_429_at": last_429_at,
        "window_started_at": window.started_at,
        "window_request_count": budget.used(),
    }
