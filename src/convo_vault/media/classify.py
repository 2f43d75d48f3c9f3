"""Media classification: storage category and file extension."""

import mimetypes
import re
from collections.abc import Iterable
from urllib.parse import urlparse

MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
    "application/pdf": ".pdf",
}

CATEGORY_DEFAULT_EXTENSIONS = {
    "image/": ".jpg",
    "video/": ".mp4",
    "audio/": ".mp3",
}

DEFAULT_MIME_TYPE = "application/octet-stream"

_URL_EXTENSION = re.compile(r"\.[a-z0-9]+$", re.IGNORECASE)


def normalize_mime(mime_type: str | None) -> str:
    """Strip parameters from a Content-Type value ('image/png; q=1' -> 'image/png')."""
    if not mime_type:
        return DEFAULT_MIME_TYPE
    return mime_type.split(";", 1)[0].strip().lower() or DEFAULT_MIME_TYPE


def media_category(attachment_type: str | None, mime_type: str | None) -> str:
    """Directory under media/ that a file belongs in."""
    mime = normalize_mime(mime_type)
    if attachment_type == "image" or mime.startswith("image/"):
        return "images"
    if attachment_type == "video" or mime.startswith("video/"):
        return "videos"
    if attachment_type == "audio" or mime.startswith("audio/"):
        return "audio"
    return "documents"


def _url_extension(url: str | None) -> str | None:
    if not url:
        return None
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    match = _URL_EXTENSION.search(path)
    return match.group(0).lower() if match else None


def file_extension(mime_type: str | None, url: str | None = None, attachment_type: str | None = None) -> str:
    """Pick a file extension for stored media.

    Fallback chain: known MIME table, the mimetypes database, the URL path,
    a per-category default, and finally '.bin'.
    """
    mime = normalize_mime(mime_type)
    if mime in MIME_EXTENSIONS:
        return MIME_EXTENSIONS[mime]

    if mime != DEFAULT_MIME_TYPE:
        guessed = mimetypes.guess_extension(mime)
        if guessed:
            return guessed

    from_url = _url_extension(url)
    if from_url:
        return from_url

    for prefix, extension in CATEGORY_DEFAULT_EXTENSIONS.items():
        if mime.startswith(prefix):
            return extension

    category = media_category(attachment_type, None)
    if category == "images":
        return ".jpg"
    if category == "videos":
        return ".mp4"
    if category == "audio":
        return ".mp3"
    return ".bin"


def is_blank_url(url: str | None) -> bool:
    return not url or not url.strip()


def is_unsupported_url(url: str, prefixes: Iterable[str]) -> bool:
    """True for URLs in a platform's private asset scheme (e.g. sediment://)."""
    stripped = url.strip()
    return any(stripped.startswith(prefix) for prefix in prefixes)
