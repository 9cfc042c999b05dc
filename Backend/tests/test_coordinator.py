"""Tests for the per-user lock protocol and the batch pass."""

import threading
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from readsync.db.base import Base
from readsync.db.crud import sync_state as sync_state_crud
from readsync.db.crud.documents import upsert_documents
from readsync.db.models.sync_state import ReaderSyncState
from readsync.reader.types import ReaderApiError
from readsync.sync.budget import as_utc
from readsync.sync.coordinator import (
    STATUS_LOCK_LOST,
    STATUS_OK,
    STATUS_SYNC_FAILED,
    STATUS_UPDATE_FAILED,
    resolve_reader_token,
    run_manual_sync,
    run_sync_pass,
    start_manual_sync,
)
from readsync.sync.errors import CredentialError, SyncInProgress, SyncRateLimited, SyncStateNotFound
from tests.fakes import FakeReaderClient, create_user, make_doc, page

STALE = timedelta(minutes=5)
DONE = "2026-02-20T00:00:00+00:00"


def reload(db, user_id):
    db.expire_all()
    return db.get(ReaderSyncState, user_id)


class TestLock:
    def test_only_one_acquirer_wins(self, session_factory, make_user, now):
        user, _ = make_user()
        first, second = session_factory(), session_factory()
        try:
            won = sync_state_crud.acquire_lock(first, user.id, now, STALE)
            lost = sync_state_crud.acquire_lock(second, user.id, now, STALE)
        finally:
            first.close()
            second.close()

        assert won is not None
        assert won.in_progress is True
        assert lost is None

    def test_sets_lock_timestamp(self, db, make_user, now):
        user, _ = make_user()
        state = sync_state_crud.acquire_lock(db, user.id, now, STALE)
        assert as_utc(state.lock_acquired_at) == now

    def test_fresh_lock_is_respected(self, db, make_user, now):
        user, _ = make_user(in_progress=True, lock_acquired_at=now - timedelta(minutes=1))
        assert sync_state_crud.acquire_lock(db, user.id, now, STALE) is None

    def test_stale_lock_is_reclaimed(self, db, make_user, now):
        user, _ = make_user(in_progress=True, lock_acquired_at=now - timedelta(minutes=6))
        state = sync_state_crud.acquire_lock(db, user.id, now, STALE)
        assert state is not None
        assert as_utc(state.lock_acquired_at) == now

    def test_lock_without_timestamp_is_stale(self, db, make_user, now):
        user, _ = make_user(in_progress=True, lock_acquired_at=None)
        assert sync_state_crud.acquire_lock(db, user.id, now, STALE) is not None

    def test_not_before_next_allowed(self, db, make_user, now):
        user, _ = make_user(next_allowed_at=now + timedelta(seconds=10))
        assert sync_state_crud.acquire_lock(db, user.id, now, STALE) is None

    def test_release_clears_lock_and_writes_updates(self, db, make_user, now):
        user, _ = make_user()
        sync_state_crud.acquire_lock(db, user.id, now, STALE)
        assert sync_state_crud.release_lock(db, user.id, {"inbox_cursor": DONE, "window_request_count": 4}, now)

        state = reload(db, user.id)
        assert state.in_progress is False
        assert state.lock_acquired_at is None
        assert state.inbox_cursor == DONE
        assert state.window_request_count == 4

    def test_release_after_reclaim_leaves_new_holder(self, db, session_factory, make_user, now):
        user, _ = make_user()
        sync_state_crud.acquire_lock(db, user.id, now, STALE)
        other = session_factory()
        try:
            assert sync_state_crud.acquire_lock(other, user.id, now + timedelta(minutes=6), STALE) is not None
        finally:
            other.close()

        released = sync_state_crud.release_lock(db, user.id, {"inbox_cursor": DONE}, now)

        assert released is False
        state = reload(db, user.id)
        assert state.in_progress is True
        assert as_utc(state.lock_acquired_at) == now + timedelta(minutes=6)
        assert state.inbox_cursor is None

    def test_claim_only_succeeds_once(self, db, make_user, now):
        user, _ = make_user()
        sync_state_crud.acquire_lock(db, user.id, now, STALE)

        first = sync_state_crud.claim_lock(db, user.id, held_since=now, claimed_at=now + timedelta(seconds=1))
        second = sync_state_crud.claim_lock(db, user.id, held_since=now, claimed_at=now + timedelta(seconds=2))

        assert first is not None
        assert as_utc(first.lock_acquired_at) == now + timedelta(seconds=1)
        assert second is None

    def test_concurrent_acquirers_on_one_row(self, tmp_path, now):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'locks.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(bind=engine)
        factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
        with factory() as setup:
            user, _ = create_user(setup)
            user_id = user.id

        workers = 4
        barrier = threading.Barrier(workers)
        outcomes, errors = [], []

        def contend():
            session = factory()
            try:
                barrier.wait()
                outcomes.append(sync_state_crud.acquire_lock(session, user_id, now, STALE) is not None)
            except Exception as e:
                errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=contend) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)
        engine.dispose()

        assert errors == []
        assert sorted(outcomes) == [False, False, False, True]


class TestEligibility:
    def test_selects_due_and_stale_rows(self, db, make_user, now):
        idle, _ = make_user()
        due, _ = make_user(next_allowed_at=now - timedelta(seconds=1))
        later, _ = make_user(next_allowed_at=now + timedelta(seconds=30))
        busy, _ = make_user(in_progress=True, lock_acquired_at=now - timedelta(seconds=30))
        stale, _ = make_user(in_progress=True, lock_acquired_at=now - timedelta(minutes=10))

        eligible = {s.user_id for s in sync_state_crud.select_eligible_states(db, now, STALE)}
        assert eligible == {idle.id, due.id, stale.id}
        assert later.id not in eligible
        assert busy.id not in eligible


class TestResolveToken:
    def test_encrypted_token(self, make_user):
        user, _ = make_user(token="secret-reader-token-value")
        assert resolve_reader_token(user) == "secret-reader-token-value"

    def test_plaintext_fallback(self, make_user):
        user, _ = make_user(token="legacy-reader-token-value", encrypted=False)
        assert resolve_reader_token(user) == "legacy-reader-token-value"

    def test_undecryptable(self, db, make_user):
        user, _ = make_user()
        user.reader_access_token_encrypted = "not-a-fernet-token"
        with pytest.raises(CredentialError):
            resolve_reader_token(user)

    def test_not_connected(self, make_user):
        user, _ = make_user(token=None)
        with pytest.raises(CredentialError):
            resolve_reader_token(user)


class TestSyncPass:
    def test_synced_user_is_released_with_state(self, db, make_user, now):
        user, _ = make_user(token="token-for-user-one-000", initial_backfill_done=True,
                            inbox_cursor=DONE, library_cursor=DONE, archive_cursor=DONE,
                            shortlist_cursor=DONE, feed_cursor=DONE)
        results = run_sync_pass(db, now, client_factory=lambda token: FakeReaderClient())

        assert [r.to_dict() for r in results] == [{"userId": str(user.id), "status": STATUS_OK}]
        state = reload(db, user.id)
        assert state.in_progress is False
        assert state.lock_acquired_at is None
        assert as_utc(state.last_sync_at) == now
        assert as_utc(state.next_allowed_at) == now + timedelta(seconds=60)
        assert state.window_request_count == 5

    def test_failure_of_one_user_does_not_affect_another(self, db, make_user, now):
        bad, _ = make_user(token="token-for-failing-user-0", inbox_cursor="page:c3")
        good, _ = make_user(token="token-for-healthy-user-0")
        clients = {
            "token-for-failing-user-0": FakeReaderClient(errors={1: ReaderApiError("Internal error", 500)}),
            "token-for-healthy-user-0": FakeReaderClient(pages={"new": {None: page([make_doc("n1")])}}),
        }
        results = run_sync_pass(db, now, client_factory=clients.__getitem__)

        statuses = {r.user_id: r.status for r in results}
        assert statuses == {bad.id: STATUS_SYNC_FAILED, good.id: STATUS_OK}

        failed = reload(db, bad.id)
        assert failed.in_progress is False
        assert failed.inbox_cursor == "page:c3"
        assert failed.last_sync_at is None
        assert as_utc(failed.next_allowed_at) == now + timedelta(seconds=60)

        healthy = reload(db, good.id)
        assert healthy.in_progress is False
        assert healthy.inbox_cursor == "2026-02-01T00:00:00+00:00"

    def test_undecryptable_user_is_skipped_without_backoff(self, db, make_user, now):
        user, _ = make_user()
        user.reader_access_token_encrypted = "garbage"
        db.commit()

        factory_calls = []
        results = run_sync_pass(db, now, client_factory=lambda token: factory_calls.append(token))

        assert results == []
        assert factory_calls == []
        state = reload(db, user.id)
        assert state.in_progress is False
        assert state.next_allowed_at is None

    def test_locked_user_is_skipped(self, db, make_user, now):
        make_user(in_progress=True, lock_acquired_at=now - timedelta(seconds=5))
        assert run_sync_pass(db, now, client_factory=lambda token: FakeReaderClient()) == []

    def test_stale_lock_is_recovered_by_next_pass(self, db, make_user, now):
        user, _ = make_user(in_progress=True, lock_acquired_at=now - timedelta(minutes=30))
        results = run_sync_pass(db, now, client_factory=lambda token: FakeReaderClient())
        assert [r.status for r in results] == [STATUS_OK]
        assert reload(db, user.id).in_progress is False

    def test_final_write_failure_leaves_lock_for_recovery(self, db, make_user, now):
        user, _ = make_user()
        with patch.object(sync_state_crud, "release_lock", side_effect=OperationalError("update", {}, Exception("gone"))):
            results = run_sync_pass(db, now, client_factory=lambda token: FakeReaderClient())

        assert [r.status for r in results] == [STATUS_UPDATE_FAILED]
        state = reload(db, user.id)
        assert state.in_progress is True
        assert sync_state_crud.acquire_lock(db, user.id, now + timedelta(minutes=6), STALE) is not None

    def test_run_that_lost_its_lock_does_not_overwrite_new_holder(self, db, session_factory, make_user, now):
        user, _ = make_user()
        other = session_factory()
        reclaimed_at = now + timedelta(minutes=6)

        class SlowClient(FakeReaderClient):
            def list_documents(self, **kwargs):
                if not self.calls:
                    sync_state_crud.acquire_lock(other, user.id, reclaimed_at, STALE)
                return super().list_documents(**kwargs)

        client = SlowClient(pages={"new": {None: page([make_doc("n1")])}})
        try:
            results = run_sync_pass(db, now, client_factory=lambda token: client)
        finally:
            other.close()

        assert [r.status for r in results] == [STATUS_LOCK_LOST]
        state = reload(db, user.id)
        assert state.in_progress is True
        assert as_utc(state.lock_acquired_at) == reclaimed_at
        assert state.inbox_cursor is None
        assert state.last_sync_at is None

    def test_cache_failure_keeps_completed_cursors(self, db, make_user, now):
        user, _ = make_user()
        client = FakeReaderClient(pages={
            "new": {None: page([make_doc("n1", "2026-02-05T00:00:00+00:00")])},
            "later": {None: page([make_doc("l1", location="later")])},
        })
        def flaky_upsert(session, *, user_id, documents):
            if any(doc.location == "later" for doc, _ in documents):
                raise OperationalError("upsert", {}, Exception("disk full"))
            return upsert_documents(session, user_id=user_id, documents=documents)

        with patch("readsync.sync.location.upsert_documents", side_effect=flaky_upsert):
            results = run_sync_pass(db, now, client_factory=lambda token: client)

        assert [r.status for r in results] == [STATUS_SYNC_FAILED]
        state = reload(db, user.id)
        assert state.inbox_cursor == "2026-02-05T00:00:00+00:00"
        assert state.library_cursor is None
        assert state.in_progress is False
        assert as_utc(state.next_allowed_at) == now + timedelta(seconds=60)


class TestManualSync:
    def test_locks_and_runs(self, db, make_user, now):
        user, _ = make_user()
        locked = start_manual_sync(db, user.id, now)
        assert locked.in_progress is True

        status = run_manual_sync(db, user.id, now, client_factory=lambda token: FakeReaderClient())
        assert status == STATUS_OK
        assert reload(db, user.id).in_progress is False

    def test_missing_state(self, db, make_user, now):
        user, state = make_user()
        db.delete(state)
        db.commit()
        with pytest.raises(SyncStateNotFound):
            start_manual_sync(db, user.id, now)

    def test_already_running(self, db, make_user, now):
        user, _ = make_user(in_progress=True, lock_acquired_at=now - timedelta(seconds=20))
        with pytest.raises(SyncInProgress):
            start_manual_sync(db, user.id, now)

    def test_stale_run_can_be_replaced(self, db, make_user, now):
        user, _ = make_user(in_progress=True, lock_acquired_at=now - timedelta(minutes=20))
        assert start_manual_sync(db, user.id, now).in_progress is True

    def test_rate_limited(self, db, make_user, now):
        user, _ = make_user(next_allowed_at=now + timedelta(seconds=42))
        with pytest.raises(SyncRateLimited) as excinfo:
            start_manual_sync(db, user.id, now)
        assert excinfo.value.next_allowed_at == now + timedelta(seconds=42)

    def test_not_connected(self, db, make_user, now):
        user, _ = make_user(token=None)
        with pytest.raises(CredentialError):
            start_manual_sync(db, user.id, now)
        assert reload(db, user.id).in_progress is False

    def test_run_without_lock_is_ignored(self, db, make_user, now):
        user, _ = make_user()
        factory_calls = []
        status = run_manual_sync(db, user.id, now, client_factory=lambda token: factory_calls.append(token))
        assert status == STATUS_LOCK_LOST
        assert factory_calls == []

    def test_task_backs_off_when_lock_was_reclaimed(self, db, session_factory, make_user, now):
        user, _ = make_user()
        start_manual_sync(db, user.id, now)
        other = session_factory()
        try:
            assert sync_state_crud.acquire_lock(other, user.id, now + timedelta(minutes=6), STALE) is not None
        finally:
            other.close()

        factory_calls = []
        status = run_manual_sync(db, user.id, now, client_factory=lambda token: factory_calls.append(token))

        assert status == STATUS_LOCK_LOST
        assert factory_calls == []
        state = reload(db, user.id)
        assert state.in_progress is True
        assert as_utc(state.lock_acquired_at) == now + timedelta(minutes=6)

    def test_redelivered_task_runs_once(self, db, make_user, now):
        user, _ = make_user()
        start_manual_sync(db, user.id, now)
        first = FakeReaderClient()
        second_calls = []

        def redeliver(token):
            second_calls.append(run_manual_sync(db, user.id, now, client_factory=lambda t: FakeReaderClient(),
                                                claimed_at=now + timedelta(seconds=2)))
            return first

        status = run_manual_sync(db, user.id, now, client_factory=redeliver, claimed_at=now + timedelta(seconds=1))

        assert status == STATUS_OK
        assert second_calls == [STATUS_LOCK_LOST]
        assert reload(db, user.id).in_progress is False
