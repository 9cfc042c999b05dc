from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable
from uuid import UUID
import logging

from cryptography.fernet import InvalidToken
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from readsync.config import get_stale_lock_after
from readsync.db.crud import sync_state as sync_state_crud
from readsync.db.models.sync_state import ReaderSyncState
from readsync.db.models.user import User
from readsync.reader.client import ReaderClient
from readsync.sync.budget import WINDOW, as_utc
from readsync.sync.errors import (
    CredentialError,
    PartialSyncError,
    SyncInProgress,
    SyncRateLimited,
    SyncStateNotFound,
)
from readsync.sync.orchestrator import sync_user
from readsync.utils.crypto import decrypt_text

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_SYNC_FAILED = "sync_failed"
STATUS_UPDATE_FAILED = "update_failed"
STATUS_LOCK_LOST = "lock_lost"

ClientFactory = Callable[[str], ReaderClient]


@dataclass(frozen=True)
class SyncResult:
    user_id: UUID
    status: str

    def to_dict(self) -> dict:
        return {"userId": str(self.user_id), "status": self.status}


def resolve_reader_token(user: User | None) -> str:
    """Prefer the encrypted token; the plaintext column is a migration fallback."""
    if user is None:
        raise CredentialError("User not found")
    if user.reader_access_token_encrypted:
        try:
            return decrypt_text(user.reader_access_token_encrypted)
        except (InvalidToken, ValueError) as e:
            raise CredentialError(f"Failed to decrypt Reader token for user {user.id}") from e
    if user.reader_access_token:
        return user.reader_access_token
    raise CredentialError(f"Reader is not connected for user {user.id}")


def _release(db: Session, user_id: UUID, updates: dict, held_since: datetime) -> bool:
    released = sync_state_crud.release_lock(db, user_id, updates, held_since)
    if not released:
        logger.warning("Sync lock for user %s was reclaimed by another worker, state not written", user_id)
    return released


def _sync_locked(
    db: Session,
    state: ReaderSyncState,
    token: str,
    now: datetime,
    client_factory: ClientFactory,
    held_since: datetime,
) -> str:
    """
    Run a pass for a user whose lock we hold since held_since, then release
    the lock whatever happens, unless someone else holds it by then.
    """
    user_id = state.user_id
    try:
        updates = sync_user(db, state, client_factory(token), now)
    except Exception as e:
        logger.exception("Reader sync failed for user %s", user_id)
        db.rollback()
        failure_updates = {"next_allowed_at": now + WINDOW}
        if isinstance(e, PartialSyncError):
            failure_updates = {**e.updates, **failure_updates}
        try:
            if not _release(db, user_id, failure_updates, held_since):
                return STATUS_LOCK_LOST
        except SQLAlchemyError:
            logger.exception("Failed to release sync lock for user %s", user_id)
            db.rollback()
        return STATUS_SYNC_FAILED

    try:
        if not _release(db, user_id, {**updates, "last_sync_at": now}, held_since):
            return STATUS_LOCK_LOST
    except SQLAlchemyError:
        # The lock stays set and is reclaimed once it goes stale.
        logger.exception("Failed to update sync state for user %s", user_id)
        db.rollback()
        return STATUS_UPDATE_FAILED
    return STATUS_OK


def run_sync_pass(
    db: Session,
    now: datetime | None = None,
    client_factory: ClientFactory = ReaderClient,
) -> list[SyncResult]:
    """
    One scheduled pass: sync every eligible user once. A failure for one user
    is recorded in its result and never stops the batch.
    """
    now = now or datetime.now(timezone.utc)
    stale_after = get_stale_lock_after()
    results: list[SyncResult] = []

    candidates = [state.user_id for state in sync_state_crud.select_eligible_states(db, now, stale_after)]
    logger.info("Reader sync pass: %d eligible users", len(candidates))

    for user_id in candidates:
        try:
            token = resolve_reader_token(db.get(User, user_id))
        except CredentialError as e:
            logger.warning("Skipping user %s: %s", user_id, e)
            continue

        state = sync_state_crud.acquire_lock(db, user_id, now, stale_after)
        if state is None:
            logger.info("User %s was locked by another worker, skipping", user_id)
            continue

        results.append(SyncResult(user_id, _sync_locked(db, state, token, now, client_factory, held_since=now)))

    return results


def start_manual_sync(db: Session, user_id: UUID, now: datetime | None = None) -> ReaderSyncState:
    """
    Validate and lock a user-initiated sync. The lock is stamped with `now`;
    the caller hands that same timestamp to run_manual_sync, usually on a
    worker.
    """
    now = now or datetime.now(timezone.utc)
    stale_after = get_stale_lock_after()

    state = sync_state_crud.get_sync_state(db, user_id)
    if state is None:
        raise SyncStateNotFound(f"No sync state for user {user_id}")

    resolve_reader_token(db.get(User, user_id))

    lock_acquired_at = as_utc(state.lock_acquired_at)
    if state.in_progress and lock_acquired_at is not None and now - lock_acquired_at < stale_after:
        raise SyncInProgress("Sync already in progress")

    next_allowed_at = as_utc(state.next_allowed_at)
    if not state.in_progress and next_allowed_at is not None and next_allowed_at > now:
        raise SyncRateLimited(next_allowed_at)

    locked = sync_state_crud.acquire_lock(db, user_id, now, stale_after)
    if locked is None:
        raise SyncInProgress("Failed to acquire sync lock")
    logger.info("Manual sync locked for user %s", user_id)
    return locked


def run_manual_sync(
    db: Session,
    user_id: UUID,
    now: datetime,
    client_factory: ClientFactory = ReaderClient,
    claimed_at: datetime | None = None,
) -> str:
    """
    Finish a sync locked by start_manual_sync at `now`. The lock is first
    restamped with claimed_at, so a redelivered task or a worker that reclaimed
    the stale lock in between makes this run back off without touching state.
    """
    claimed_at = claimed_at or datetime.now(timezone.utc)
    state = sync_state_crud.claim_lock(db, user_id, held_since=now, claimed_at=claimed_at)
    if state is None:
        logger.warning("Manual sync for user %s no longer holds the lock taken at %s, ignoring",
                       user_id, now.isoformat())
        return STATUS_LOCK_LOST

    try:
        token = resolve_reader_token(db.get(User, user_id))
    except CredentialError as e:
        # No backoff: the user can retry as soon as the token is fixed.
        logger.warning("Manual sync for user %s aborted: %s", user_id, e)
        _release(db, user_id, {}, claimed_at)
        return STATUS_SYNC_FAILED

    return _sync_locked(db, state, token, now, client_factory, held_since=claimed_at)
