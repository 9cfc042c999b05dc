from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy import String, DateTime, Text, UniqueConstraint, ForeignKey, Integer, Float, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column
from readsync.db.base import Base


class CachedDocument(Base):
    """Reader document metadata, so the library can be listed without calling the API."""
    __tablename__ = "cached_documents"
    __table_args__ = (
        UniqueConstraint("user_id", "reader_document_id", name="uq_cached_documents_user_doc"),
        Index("ix_cached_documents_user_location", "user_id", "location"),
        Index("ix_cached_documents_last_moved", "user_id", "reader_last_moved_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    reader_document_id: Mapped[str] = mapped_column(String, nullable=False)

    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    author: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str | None] = mapped_column(Text, nullable=True)
    site_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    source_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    location: Mapped[str | None] = mapped_column(String(32), nullable=True)
    tags: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    word_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reading_progress: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    published_date: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reader_created_at: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reader_updated_at: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reader_last_moved_at: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reader_saved_at: Mapped[str | None] = mapped_column(String(64), nullable=True)
    first_opened_at: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_opened_at: Mapped[str | None] = mapped_column(String(64), nullable=True)

    cached_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class CachedArticle(Base):
    """Full document content plus a plain-text rendition of it."""
    __tablename__ = "cached_articles"
    __table_args__ = (
        UniqueConstraint("user_id", "reader_document_id", name="uq_cached_articles_user_doc"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    reader_document_id: Mapped[str] = mapped_column(String, nullable=False)

    html_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    plain_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    word_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reader_updated_at: Mapped[str | None] = mapped_column(String(64), nullable=True)

    cached_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
