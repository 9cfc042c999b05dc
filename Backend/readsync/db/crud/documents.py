from __future__ import annotations
from datetime import datetime, timezone
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.dialects import postgresql, sqlite

from readsync.db.models.cached_document import CachedDocument, CachedArticle
from readsync.reader.types import ReaderDocument
from readsync.reader.html import html_to_plain_text

CONFLICT_KEYS = ["user_id", "reader_document_id"]


def _insert_for(db: Session):
    if db.get_bind().dialect.name == "sqlite":
        return sqlite.insert
    return postgresql.insert


def _bulk_upsert(db: Session, model, rows: list[dict]):
    if not rows:
        return
    ins = _insert_for(db)(model).values(rows)
    update_cols = {
        col: getattr(ins.excluded, col)
        for col in rows[0].keys()
        if col not in CONFLICT_KEYS
    }
    stmt = ins.on_conflict_do_update(index_elements=CONFLICT_KEYS, set_=update_cols)
    db.execute(stmt)


def _document_row(user_id: UUID, doc: ReaderDocument, cached_at: datetime) -> dict:
    published = doc.published_date
    return {
        "user_id": user_id,
        "reader_document_id": doc.id,
        "title": doc.title,
        "author": doc.author,
        "source": doc.source,
        "site_name": doc.site_name,
        "url": doc.url,
        "source_url": doc.source_url,
        "category": doc.category,
        "location": doc.location,
        "tags": doc.tags or {},
        "word_count": doc.word_count,
        "reading_progress": doc.reading_progress or 0,
        "summary": doc.summary,
        "image_url": doc.image_url,
        "published_date": str(published) if published is not None else None,
        "reader_created_at": doc.created_at,
        "reader_updated_at": doc.updated_at,
        "reader_last_moved_at": doc.last_moved_at,
        "reader_saved_at": doc.saved_at,
        "first_opened_at": doc.first_opened_at,
        "last_opened_at": doc.last_opened_at,
        "cached_at": cached_at,
    }


def _article_row(user_id: UUID, doc: ReaderDocument, html: str | None, cached_at: datetime) -> dict:
    return {
        "user_id": user_id,
        "reader_document_id": doc.id,
        "html_content": html,
        "plain_text": html_to_plain_text(html) if html else None,
        "word_count": doc.word_count,
        "reader_updated_at": doc.updated_at,
        "cached_at": cached_at,
    }


def upsert_documents(
    db: Session,
    *,
    user_id: UUID,
    documents: list[tuple[ReaderDocument, str | None]],
) -> int:
    """
    Insert-or-overwrite metadata and content for (document, html) pairs, keyed
    on (user_id, reader_document_id). Commits; the caller rolls back on failure.
    """
    if not documents:
        return 0
    cached_at = datetime.now(timezone.utc)
    _bulk_upsert(db, CachedArticle, [_article_row(user_id, doc, html, cached_at) for doc, html in documents])
    _bulk_upsert(db, CachedDocument, [_document_row(user_id, doc, cached_at) for doc, _ in documents])
    db.commit()
    return len(documents)


def list_cached_documents(
    db: Session,
    *,
    user_id: UUID,
    location: str | None = None,
) -> list[CachedDocument]:
    """Most-recently-moved first."""
    stmt = select(CachedDocument).where(CachedDocument.user_id == user_id)
    if location:
        stmt = stmt.where(CachedDocument.location == location)
    stmt = stmt.order_by(
        CachedDocument.reader_last_moved_at.desc().nulls_last(),
        CachedDocument.reader_updated_at.desc(),
    )
    return list(db.execute(stmt).scalars().all())


def get_cached_article(db: Session, *, user_id: UUID, reader_document_id: str) -> CachedArticle | None:
    stmt = select(CachedArticle).where(
        CachedArticle.user_id == user_id,
        CachedArticle.reader_document_id == reader_document_id,
    )
    return db.execute(stmt).scalar_one_or_none()
