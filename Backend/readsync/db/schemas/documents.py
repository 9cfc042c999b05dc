from datetime import datetime
from pydantic import BaseModel, ConfigDict


class CachedDocumentRead(BaseModel):
    reader_document_id: str
    title: str | None
    author: str | None
    site_name: str | None
    url: str
    category: str | None
    location: str | None
    tags: dict | None
    word_count: int | None
    reading_progress: float
    image_url: str | None
    reader_updated_at: str | None
    reader_last_moved_at: str | None
    model_config = ConfigDict(from_attributes=True)


class CachedArticleRead(BaseModel):
    reader_document_id: str
    html_content: str | None
    plain_text: str | None
    word_count: int | None
    cached_at: datetime
    model_config = ConfigDict(from_attributes=True)
