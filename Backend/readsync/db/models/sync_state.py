from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy import Boolean, DateTime, Text, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column
from readsync.db.base import Base


class ReaderSyncState(Base):
    """
    One row per user. Holds the per-location cursors, the execution lock and
    the rate-limit window for the Reader sync engine.

    Cursor columns hold either an ISO8601 watermark (location completed) or
    `page:<token>|updated:<ts>` (pagination interrupted mid-pass).
    """
    __tablename__ = "reader_sync_state"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )

    inbox_cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    library_cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    archive_cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    shortlist_cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    feed_cursor: Mapped[str | None] = mapped_column(Text, nullable=True)

    initial_backfill_done: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    in_progress: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    lock_acquired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    window_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    window_request_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_429_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    next_allowed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True, nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
