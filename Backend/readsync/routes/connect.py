from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging
import requests

from readsync.dependencies import get_current_user, get_db
from readsync.db.crud.sync_state import get_or_create_sync_state
from readsync.db.crud.user import clear_reader_token, store_reader_token
from readsync.db.models.user import User
from readsync.db.schemas.reader import ConnectReaderRequest, ConnectReaderResponse
from readsync.reader.client import ReaderClient
from readsync.reader.types import ReaderApiError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/connect-reader", tags=["Reader Auth"])

MIN_TOKEN_LENGTH = 20


@router.post("", response_model=ConnectReaderResponse)
def connect_reader(
    payload: ConnectReaderRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Validate a Reader access token against the API, store it encrypted and
    enable sync for the user.
    """
    if len(payload.token) < MIN_TOKEN_LENGTH:
        raise HTTPException(status_code=400, detail="Invalid token format")

    try:
        ReaderClient(payload.token).validate_token()
    except ReaderApiError as e:
        if e.status in (401, 403):
            raise HTTPException(status_code=400, detail="Invalid access token. Please check your token and try again.")
        if e.is_rate_limited:
            raise HTTPException(status_code=429, detail="Too many requests. Please try again later.")
        raise HTTPException(status_code=502, detail="Failed to validate token with Readwise. Please try again.")
    except requests.exceptions.RequestException as e:
        raise HTTPException(status_code=503, detail=f"Failed to connect to Readwise: {str(e)}")

    store_reader_token(db, user, payload.token)
    get_or_create_sync_state(db, user.id)
    logger.info("Reader connected for user %s", user.id)
    return {"success": True}


@router.delete("", response_model=ConnectReaderResponse)
def disconnect_reader(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """The sync state row is kept; without a token the user is simply skipped."""
    clear_reader_token(db, user)
    return {"success": True}
