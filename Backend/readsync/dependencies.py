from uuid import UUID
from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from readsync.db.engine import SessionLocal
from readsync.db.models.user import User
from readsync.auth.session import decode_session_token
from readsync.config import APP_SECRET_KEY

# --- Database Dependency ---
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

bearer_scheme = HTTPBearer(auto_error=True)

async def get_current_user(
    creds: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    raw_token = creds.credentials
    try:
        payload = decode_session_token(raw_token, secret_key=APP_SECRET_KEY)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid or expired session token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Malformed token (missing 'sub')")

    try:
        user = db.get(User, UUID(user_id))
    except ValueError:
        raise HTTPException(status_code=401, detail="Malformed token (bad 'sub')")
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return user
