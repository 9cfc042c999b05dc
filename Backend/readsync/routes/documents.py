from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from readsync.dependencies import get_current_user, get_db
from readsync.db.crud.documents import get_cached_article, list_cached_documents
from readsync.db.models.user import User
from readsync.db.schemas.documents import CachedArticleRead, CachedDocumentRead
from readsync.reader.types import DocumentLocation

router = APIRouter(prefix="/reader/documents", tags=["Reader Documents"])


@router.get("", response_model=list[CachedDocumentRead])
def get_documents(
    location: DocumentLocation | None = Query(default=None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return list_cached_documents(db, user_id=user.id, location=location)


@router.get("/{document_id}", response_model=CachedArticleRead)
def get_document(
    document_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    article = get_cached_article(db, user_id=user.id, reader_document_id=document_id)
    if not article:
        raise HTTPException(status_code=404, detail="Document not cached")
    return article
