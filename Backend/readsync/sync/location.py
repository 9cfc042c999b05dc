from __future__ import annotations
from dataclasses import dataclass
from typing import Literal
from uuid import UUID
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from readsync.config import get_page_size
from readsync.db.crud.documents import upsert_documents
from readsync.reader.client import ReaderClient
from readsync.reader.types import ReaderDocument
from readsync.sync import cursor as cursor_codec
from readsync.sync.budget import RequestBudget
from readsync.sync.cursor import CompletedCursor, PageCursor
from readsync.sync.errors import CacheWriteError

logger = logging.getLogger(__name__)

SyncMode = Literal["initial", "incremental"]


@dataclass(frozen=True)
class LocationResult:
    next_cursor: str | None
    latest_updated_at: str | None
    completed: bool


def _watermark(decoded: cursor_codec.Cursor, mode: SyncMode) -> str | None:
    if mode == "initial":
        return None
    if isinstance(decoded, CompletedCursor):
        return decoded.updated_at
    if isinstance(decoded, PageCursor):
        return decoded.updated_after
    return None


def _write_page(db: Session, user_id: UUID, location: str, batch: list[tuple[ReaderDocument, str | None]]) -> None:
    if not batch:
        return
    try:
        upsert_documents(db, user_id=user_id, documents=batch)
    except SQLAlchemyError as e:
        db.rollback()
        raise CacheWriteError(f"Failed to cache {len(batch)} documents for {location}: {e}") from e
    logger.info("%s: cached %d documents", location, len(batch))


def sync_location(
    db: Session,
    client: ReaderClient,
    budget: RequestBudget,
    *,
    user_id: UUID,
    location: str,
    cursor_value: str | None,
    mode: SyncMode,
    page_size: int | None = None,
) -> LocationResult:
    """
    Page through one Reader location, caching every document, until the
    location is exhausted or the request budget runs out.

    The returned cursor never points past a document that was not written:
    when a page is cut short because a content fetch could not be afforded,
    the cursor stays on that page and the whole page is fetched again next
    time (upserts make the rewrite harmless).
    """
    decoded = cursor_codec.decode(cursor_value)
    updated_after = _watermark(decoded, mode)
    page_cursor = (decoded.page_token or None) if isinstance(decoded, PageCursor) else None
    page_size = page_size or get_page_size()

    latest_updated_at: str | None = None
    total_docs = 0

    logger.info("%s: syncing (mode=%s, resume=%s, budget remaining=%d)",
                location, mode, page_cursor is not None, budget.remaining())

    while budget.can_request():
        response = budget.track(
            client.list_documents,
            location=location,
            page_cursor=page_cursor,
            page_size=page_size,
            updated_after=updated_after,
            with_html_content=True,
        )

        batch: list[tuple[ReaderDocument, str | None]] = []
        deferred = False
        for doc in response.results:
            html = doc.html_content
            if not html:
                if not budget.can_request():
                    deferred = True
                    break
                full = budget.track(client.get_document, doc.id, include_content=True)
                html = full.html_content
            batch.append((doc, html))

        _write_page(db, user_id, location, batch)
        for doc, _ in batch:
            latest_updated_at = cursor_codec.max_timestamp(latest_updated_at, doc.updated_at)
        total_docs += len(batch)

        if deferred:
            # Stay on the page we were reading.
            if page_cursor is not None:
                resume = cursor_codec.encode(PageCursor(page_cursor, updated_after))
            else:
                resume = cursor_value
            logger.info("%s: budget ran out mid-page after %d documents, deferring", location, total_docs)
            return LocationResult(resume, latest_updated_at, completed=False)

        if not response.next_page_cursor:
            watermark = latest_updated_at or updated_after or cursor_codec.now_iso()
            logger.info("%s: completed, %d documents", location, total_docs)
            return LocationResult(cursor_codec.encode(CompletedCursor(watermark)), latest_updated_at, completed=True)

        page_cursor = response.next_page_cursor

    logger.info("%s: budget exhausted after %d documents", location, total_docs)
    if page_cursor is not None:
        return LocationResult(cursor_codec.encode(PageCursor(page_cursor, updated_after)), latest_updated_at, completed=False)
    return LocationResult(cursor_value, latest_updated_at, completed=False)
