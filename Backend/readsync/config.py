import os
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()

SQLALCHEMY_DATABASE_URL = os.getenv("SQLALCHEMY_DATABASE_URL", "sqlite:///./readsync.db")

APP_SECRET_KEY = os.getenv("APP_SECRET_KEY", "dev-insecure-change-me")

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

READER_API_BASE_URL = os.getenv("READER_API_BASE_URL", "https://readwise.io/api/v3")

READWISE_SYNC_INTERVAL_SECONDS = int(os.getenv("READWISE_SYNC_INTERVAL_SECONDS", "60"))

DEFAULT_MAX_REQUESTS_PER_WINDOW = 20
DEFAULT_PAGE_SIZE = 100
DEFAULT_STALE_LOCK_SECONDS = 5 * 60


def get_sync_api_key() -> str | None:
    return os.getenv("SYNC_API_KEY") or None


def _positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw:
        try:
            parsed = int(raw)
        except ValueError:
            return default
        if parsed > 0:
            return parsed
    return default


def get_max_requests_per_window() -> int:
    return _positive_int("READWISE_SYNC_MAX_REQUESTS_OVERRIDE", DEFAULT_MAX_REQUESTS_PER_WINDOW)


def get_page_size() -> int:
    return _positive_int("READWISE_SYNC_PAGE_SIZE_OVERRIDE", DEFAULT_PAGE_SIZE)


def get_stale_lock_after() -> timedelta:
    return timedelta(seconds=_positive_int("READWISE_SYNC_STALE_LOCK_SECONDS", DEFAULT_STALE_LOCK_SECONDS))


def get_location_override() -> list[str] | None:
    """Comma separated list of locations to restrict syncing to, or None."""
    raw = os.getenv("READWISE_SYNC_LOCATION_OVERRIDE")
    if not raw:
        return None
    return [value.strip() for value in raw.split(",") if value.strip()]
