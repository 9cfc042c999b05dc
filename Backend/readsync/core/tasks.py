from datetime import datetime
from uuid import UUID
import logging

from readsync.core.celery_app import celery_app
from readsync.db.engine import SessionLocal
from readsync.sync.coordinator import run_manual_sync, run_sync_pass

logger = logging.getLogger(__name__)


@celery_app.task(name="readsync.core.tasks.run_sync_pass_task")
def run_sync_pass_task() -> list[dict]:
    """
    Periodic entry point. Overlapping runs are safe: each user is guarded by
    the row lock in reader_sync_state.
    """
    db = SessionLocal()
    try:
        results = run_sync_pass(db)
        return [r.to_dict() for r in results]
    finally:
        db.close()


@celery_app.task(name="readsync.core.tasks.sync_single_user_task")
def sync_single_user_task(user_id: str, now_iso: str) -> str:
    """Finish a manual sync whose lock was taken by the trigger endpoint."""
    db = SessionLocal()
    try:
        status = run_manual_sync(db, UUID(user_id), datetime.fromisoformat(now_iso))
        logger.info("Manual sync for user %s finished: %s", user_id, status)
        return status
    finally:
        db.close()
