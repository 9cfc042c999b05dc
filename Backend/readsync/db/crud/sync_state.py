from __future__ import annotations
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID
from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from readsync.db.models.sync_state import ReaderSyncState


def get_sync_state(db: Session, user_id: UUID) -> ReaderSyncState | None:
    return db.get(ReaderSyncState, user_id)


def get_or_create_sync_state(db: Session, user_id: UUID) -> ReaderSyncState:
    """Called when a user connects their Reader token. New rows start with every cursor empty."""
    state = get_sync_state(db, user_id)
    if state:
        return state
    state = ReaderSyncState(user_id=user_id, initial_backfill_done=False, in_progress=False, window_request_count=0)
    db.add(state)
    db.commit()
    db.refresh(state)
    return state


def _is_free(now: datetime):
    return and_(
        ReaderSyncState.in_progress.is_(False),
        or_(ReaderSyncState.next_allowed_at.is_(None), ReaderSyncState.next_allowed_at <= now),
    )


def _is_stale(now: datetime, stale_after: timedelta):
    return and_(
        ReaderSyncState.in_progress.is_(True),
        or_(ReaderSyncState.lock_acquired_at.is_(None), ReaderSyncState.lock_acquired_at < now - stale_after),
    )


def select_eligible_states(db: Session, now: datetime, stale_after: timedelta) -> list[ReaderSyncState]:
    stmt = (
        select(ReaderSyncState)
        .where(or_(_is_free(now), _is_stale(now, stale_after)))
        .order_by(ReaderSyncState.next_allowed_at.asc().nulls_first())
    )
    return list(db.execute(stmt).scalars().all())


def acquire_lock(
    db: Session,
    user_id: UUID,
    now: datetime,
    stale_after: timedelta,
) -> ReaderSyncState | None:
    """
    Take the per-user sync lock with a single conditional UPDATE.

    Succeeds when the row is free and due, or when another holder's lock is
    older than stale_after. Exactly one of several concurrent callers sees
    rowcount == 1; the rest get None.
    """
    result = db.execute(
        update(ReaderSyncState)
        .where(
            ReaderSyncState.user_id == user_id,
            or_(_is_free(now), _is_stale(now, stale_after)),
        )
        .values(in_progress=True, lock_acquired_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount != 1:
        return None

    state = db.get(ReaderSyncState, user_id)
    db.refresh(state)
    return state


def claim_lock(
    db: Session,
    user_id: UUID,
    held_since: datetime,
    claimed_at: datetime,
) -> ReaderSyncState | None:
    """
    Take over a lock acquired elsewhere at held_since, restamping it with
    claimed_at. Returns None when the lock was released or reclaimed in the
    meantime, or when another worker already claimed it.
    """
    result = db.execute(
        update(ReaderSyncState)
        .where(
            ReaderSyncState.user_id == user_id,
            ReaderSyncState.in_progress.is_(True),
            ReaderSyncState.lock_acquired_at == held_since,
        )
        .values(lock_acquired_at=claimed_at)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount != 1:
        return None

    state = db.get(ReaderSyncState, user_id)
    db.refresh(state)
    return state


def release_lock(db: Session, user_id: UUID, updates: dict[str, Any], held_since: datetime) -> bool:
    """
    Write updates and clear the lock, but only while it is still the one
    taken at held_since. False means a stale-lock reclaim got there first and
    nothing was written.
    """
    result = db.execute(
        update(ReaderSyncState)
        .where(
            ReaderSyncState.user_id == user_id,
            ReaderSyncState.in_progress.is_(True),
            ReaderSyncState.lock_acquired_at == held_since,
        )
        .values(**updates, in_progress=False, lock_acquired_at=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1
