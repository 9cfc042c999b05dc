from .user import User
from .sync_state import ReaderSyncState
from .cached_document import CachedDocument, CachedArticle


__all__ = [
    "User",
    "ReaderSyncState",
    "CachedDocument",
    "CachedArticle",
]
