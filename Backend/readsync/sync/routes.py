from datetime import datetime, timezone
import hmac
import logging
import math

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from readsync.config import get_sync_api_key
from readsync.core.tasks import sync_single_user_task
from readsync.db.crud.sync_state import get_sync_state
from readsync.db.models.user import User
from readsync.db.schemas.sync import SyncPassResponse, SyncStatusRead, SyncTriggerResponse
from readsync.dependencies import get_current_user, get_db
from readsync.sync.budget import as_utc
from readsync.sync.coordinator import run_sync_pass, start_manual_sync
from readsync.sync.errors import CredentialError, SyncInProgress, SyncRateLimited, SyncStateNotFound

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync/reader", tags=["Reader Sync"])


def _check_secret(token: str | None, header_token: str | None) -> None:
    secret = get_sync_api_key()
    if not secret:
        raise HTTPException(status_code=500, detail="SYNC_API_KEY is not configured")
    supplied = token or header_token or ""
    if not hmac.compare_digest(supplied.encode("utf-8"), secret.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.api_route("", methods=["GET", "POST"], response_model=SyncPassResponse)
def run_pass(
    token: str | None = Query(default=None),
    x_readwise_sync_secret: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    """Scheduler entry point: one pass over every eligible user."""
    _check_secret(token, x_readwise_sync_secret)
    results = run_sync_pass(db)
    return {"ok": True, "results": [r.to_dict() for r in results]}


@router.post("/trigger", response_model=SyncTriggerResponse)
def trigger_sync(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    now = datetime.now(timezone.utc)
    try:
        start_manual_sync(db, user.id, now)
    except SyncStateNotFound:
        raise HTTPException(status_code=404, detail="Sync state not found")
    except CredentialError:
        raise HTTPException(status_code=400, detail="Reader is not connected or its token cannot be read. Please reconnect your account.")
    except SyncInProgress:
        raise HTTPException(status_code=409, detail="Sync already in progress")
    except SyncRateLimited as e:
        logger.info("Manual sync for user %s refused until %s", user.id, e.next_allowed_at.isoformat())
        wait_seconds = math.ceil((e.next_allowed_at - now).total_seconds())
        return JSONResponse(
            status_code=429,
            content={
                "error": "Rate limited",
                "nextAllowedAt": e.next_allowed_at.isoformat(),
                "waitSeconds": wait_seconds,
            },
        )

    sync_single_user_task.delay(str(user.id), now.isoformat())
    logger.info("Manual sync queued for user %s", user.id)
    return {"success": True, "jobId": str(user.id)}


@router.get("/status", response_model=SyncStatusRead)
def sync_status(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    state = get_sync_state(db, user.id)
    if state is None:
        raise HTTPException(status_code=404, detail="Sync state not found")
    return SyncStatusRead(
        inProgress=state.in_progress,
        lastSyncAt=as_utc(state.last_sync_at),
        nextAllowedAt=as_utc(state.next_allowed_at),
    )
