from sqlalchemy.orm import Session
from readsync.db.models.user import User
from readsync.utils.crypto import encrypt_text


def store_reader_token(db: Session, user: User, token: str) -> User:
    user.reader_access_token_encrypted = encrypt_text(token)
    user.reader_access_token = None
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def clear_reader_token(db: Session, user: User) -> User:
    user.reader_access_token_encrypted = None
    user.reader_access_token = None
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
