"""
Per-location progress markers.

Wire format, stable across versions:
    <ISO8601>                        location completed; watermark for the next pass
    page:<token>                     pagination interrupted, no watermark
    page:<token>|updated:<ISO8601>   pagination interrupted, watermark of the pass
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone

PAGE_PREFIX = "page:"
UPDATED_AFTER_PREFIX = "updated:"
PART_SEPARATOR = "|"


@dataclass(frozen=True)
class CompletedCursor:
    updated_at: str


@dataclass(frozen=True)
class PageCursor:
    page_token: str
    updated_after: str | None = None


Cursor = CompletedCursor | PageCursor | None


def encode(cursor: Cursor) -> str | None:
    if cursor is None:
        return None
    if isinstance(cursor, CompletedCursor):
        return cursor.updated_at
    if isinstance(cursor, PageCursor):
        value = f"{PAGE_PREFIX}{cursor.page_token}"
        if cursor.updated_after:
            value += f"{PART_SEPARATOR}{UPDATED_AFTER_PREFIX}{cursor.updated_after}"
        return value
    raise TypeError(f"Not a cursor: {cursor!r}")


def decode(value: str | None) -> Cursor:
    if not value:
        return None
    if not value.startswith(PAGE_PREFIX):
        return CompletedCursor(value)

    head, *rest = value.split(PART_SEPARATOR)
    updated_after = None
    for part in rest:
        if part.startswith(UPDATED_AFTER_PREFIX):
            updated_after = part[len(UPDATED_AFTER_PREFIX):] or None
    return PageCursor(head[len(PAGE_PREFIX):], updated_after)


def parse_timestamp(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_completed(value: str | None) -> bool:
    """True only for a stored watermark, i.e. the location finished its last pass."""
    cursor = decode(value)
    return isinstance(cursor, CompletedCursor) and parse_timestamp(cursor.updated_at) is not None


def max_timestamp(a: str | None, b: str | None) -> str | None:
    if not a:
        return b
    if not b:
        return a
    pa, pb = parse_timestamp(a), parse_timestamp(b)
    if pa is None:
        return b
    if pb is None:
        return a
    return a if pa >= pb else b


def now_iso(now: datetime | None = None) -> str:
    return (now or datetime.now(timezone.utc)).astimezone(timezone.utc).isoformat()

