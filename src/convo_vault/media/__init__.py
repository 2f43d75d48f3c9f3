"""Deduplicating, content-addressed storage for conversation attachments."""

from .registry import GcResult, MediaEntry, MediaRegistry, MediaStats
from .resolver import LinkResolver
from .store import DownloadResult, MediaError, MediaSettings, MediaStore, StoredMedia

__all__ = [
    "DownloadResult",
    "GcResult",
    "LinkResolver",
    "MediaEntry",
    "MediaError",
    "MediaRegistry",
    "MediaSettings",
    "MediaStats",
    "MediaStore",
    "StoredMedia",
]
