from __future__ import annotations
from typing import Any, Literal
from pydantic import BaseModel, ConfigDict, Field

DocumentLocation = Literal["new", "later", "shortlist", "archive", "feed"]


class ReaderDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    url: str
    source_url: str | None = None
    title: str | None = None
    author: str | None = None
    source: str | None = None
    category: str | None = None
    location: str | None = None
    tags: dict[str, Any] | None = None
    site_name: str | None = None
    word_count: int | None = None
    reading_progress: float | None = 0
    summary: str | None = None
    image_url: str | None = None
    published_date: str | int | None = None
    created_at: str | None = None
    updated_at: str
    saved_at: str | None = None
    last_moved_at: str | None = None
    first_opened_at: str | None = None
    last_opened_at: str | None = None
    html_content: str | None = None


class ListDocumentsResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    count: int = 0
    next_page_cursor: str | None = Field(default=None, alias="nextPageCursor")
    results: list[ReaderDocument] = Field(default_factory=list)


class ReaderApiError(Exception):
    """Non-2xx response from the Reader API."""

    def __init__(
        self,
        message: str,
        status: int,
        detail: str | None = None,
        retry_after_seconds: int | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.detail = detail
        self.retry_after_seconds = retry_after_seconds

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429
