"""Content-addressed media store.

Every attachment's bytes are written to a temporary file while a rolling
SHA-256 digest is computed. The digest alone decides where the file lives:

    <base>/<provider>/media/<category>/<sha256><ext>

so identical content downloaded for any number of conversations is stored
once and referenced many times through the media registry.
"""

import asyncio
import hashlib
import os
import secrets
import shutil
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

import aiofiles
import aiofiles.os
import httpx

from convo_vault import __version__
from convo_vault.config import DEFAULT_UNSUPPORTED_PREFIXES, MediaConfig
from convo_vault.errors import DownloadError
from convo_vault.logging import get_logger
from convo_vault.media.classify import (
    file_extension,
    is_blank_url,
    is_unsupported_url,
    media_category,
    normalize_mime,
)
from convo_vault.media.registry import (
    REGISTRY_FILENAME,
    GcResult,
    MediaEntry,
    MediaRegistry,
    MediaStats,
)
from convo_vault.media.resolver import (
    DEFAULT_LINK_RESOLVERS,
    LinkResolver,
    build_resolvers,
    find_resolver,
)
from convo_vault.models import Attachment, Conversation
from convo_vault.retry import media_retry_policy

logger = get_logger("media")

USER_AGENT = f"convo-vault/{__version__}"
TEMP_DIRNAME = ".temp"


def default_concurrency(cpu_count: int | None = None) -> int:
    """Half the cores, but never fewer than 2 or more than 5 downloads at once."""
    if cpu_count is None:
        cpu_count = os.cpu_count() or 1
    return max(2, min(cpu_count // 2, 5))


def place_file(source: Path, dest: Path) -> None:
    """Copy ``source`` to ``dest`` so that ``dest`` is never seen half-written.

    The bytes land in a sibling ``.part`` file first and are renamed into
    place; copying rather than renaming lets the temp directory sit on another
    filesystem than the archive.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    staging = dest.with_name(f"{dest.name}.{secrets.token_hex(4)}.part")
    try:
        shutil.copyfile(source, staging)
        os.replace(staging, dest)
    except OSError:
        staging.unlink(missing_ok=True)
        raise


@dataclass
class MediaSettings:
    concurrency: int | None = None
    max_retries: int = 3
    retry_base_delay: float = 5.0
    rate_limit_delay: float = 0.5
    timeout_seconds: float = 60.0
    unsupported_prefixes: tuple[str, ...] = tuple(DEFAULT_UNSUPPORTED_PREFIXES)
    link_resolvers: tuple[LinkResolver, ...] = DEFAULT_LINK_RESOLVERS
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def from_config(cls, config: MediaConfig) -> "MediaSettings":
        return cls(
            concurrency=config.concurrency,
            max_retries=config.max_retries,
            retry_base_delay=config.retry_base_delay,
            rate_limit_delay=config.rate_limit_delay,
            timeout_seconds=config.timeout_seconds,
            unsupported_prefixes=tuple(config.unsupported_prefixes),
            link_resolvers=build_resolvers(config.link_resolvers),
        )


@dataclass
class StoredMedia:
    path: Path
    hash: str
    size: int
    skipped: bool  # True when the content was already in the registry


@dataclass
class MediaError:
    url: str
    error: str
    status: int | None = None


@dataclass
class DownloadResult:
    downloaded: int = 0
    skipped: int = 0
    failed: int = 0
    bytes: int = 0
    errors: list[MediaError] = field(default_factory=list)


class MediaStore:
    """Per-provider content store with an owned or injected HTTP client.

    Use as an async context manager; the registry is loaded on entry and the
    HTTP client (when owned) is closed on exit.
    """

    def __init__(
        self,
        base_dir: Path,
        provider: str,
        client: httpx.AsyncClient | None = None,
        settings: MediaSettings | None = None,
        rate_limit_sensitive: bool = False,
    ) -> None:
        self.base_dir = Path(base_dir)
        self.provider = provider
        self.settings = settings or MediaSettings()
        self.rate_limit_sensitive = rate_limit_sensitive

        self._client = client
        self._owns_client = client is None
        self._registry = MediaRegistry(self.base_dir / provider / REGISTRY_FILENAME)
        self._loaded = False
        self._dirty = False
        self._lock = asyncio.Lock()
        self._retry = media_retry_policy(
            max_retries=self.settings.max_retries,
            base_delay=self.settings.retry_base_delay,
            sleep=self.settings.sleep,
        )

    async def __aenter__(self) -> "MediaStore":
        self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def open(self) -> None:
        if not self._loaded:
            self._registry.load()
            self._loaded = True

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.timeout_seconds,
                follow_redirects=True,
            )
        return self._client

    @property
    def registry(self) -> MediaRegistry:
        self.open()
        return self._registry

    @property
    def temp_dir(self) -> Path:
        return self.base_dir / TEMP_DIRNAME

    @property
    def media_dir(self) -> Path:
        return self.base_dir / self.provider / "media"

    @property
    def concurrency(self) -> int:
        if self.rate_limit_sensitive:
            return 1
        if self.settings.concurrency is not None:
            return self.settings.concurrency
        return default_concurrency()

    def _temp_path(self) -> Path:
        # Timestamp plus 8 random bytes; a counter would collide across tasks
        return self.temp_dir / f"download-{time.time_ns()}-{secrets.token_hex(8)}"

    def _headers(self, cookies: dict[str, str] | None, access_token: str | None) -> dict[str, str]:
        headers = {"User-Agent": USER_AGENT}
        if cookies:
            headers["Cookie"] = "; ".join(f"{key}={value}" for key, value in cookies.items())
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def _download_to_temp(self, url: str, headers: dict[str, str]) -> tuple[Path, str, int, str | None]:
        """Stream ``url`` into a fresh temp file, hashing as bytes arrive.

        Returns:
            Tuple of (temp path, sha256 hex digest, size in bytes, content type)
        """
        await aiofiles.os.makedirs(self.temp_dir, exist_ok=True)
        temp_path = self._temp_path()
        digest = hashlib.sha256()
        size = 0
        completed = False

        try:
            async with self.client.stream("GET", url, headers=headers) as response:
                if response.status_code >= 400:
                    raise DownloadError(
                        f"HTTP {response.status_code} downloading {url}",
                        url=url,
                        status=response.status_code,
                    )
                content_type = response.headers.get("content-type")
                async with aiofiles.open(temp_path, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        digest.update(chunk)
                        size += len(chunk)
                        await f.write(chunk)
            completed = True
        except httpx.HTTPError as exc:
            raise DownloadError(f"{type(exc).__name__}: {exc} - {url}", url=url) from exc
        finally:
            if not completed:
                await asyncio.to_thread(temp_path.unlink, missing_ok=True)

        return temp_path, digest.hexdigest(), size, content_type

    async def _download(
        self,
        url: str,
        cookies: dict[str, str] | None,
        access_token: str | None,
    ) -> tuple[Path, str, int, str | None]:
        headers = self._headers(cookies, access_token)
        try:
            return await self._retry.call(self._download_to_temp, url, headers)
        except DownloadError as exc:
            if not exc.is_gone:
                raise
            resolver = find_resolver(url, self.settings.link_resolvers)
            if resolver is None:
                raise
            resolved = await resolver.resolve(self.client, url, headers)
            if resolved is None:
                raise
            try:
                return await self._retry.call(self._download_to_temp, resolved, headers)
            except DownloadError as retry_exc:
                logger.warning("Resolved URL also failed: url=%s error=%s", resolved, retry_exc)
                raise exc from retry_exc

    async def store_attachment(
        self,
        attachment: Attachment,
        conversation_id: str,
        cookies: dict[str, str] | None = None,
        access_token: str | None = None,
        defer_save: bool = False,
    ) -> StoredMedia:
        """Make sure the attachment's bytes are stored once and referenced by the conversation.

        Attachments carrying pre-fetched ``data`` are hashed straight from the
        buffer; everything else is downloaded. The temporary file never
        outlives this call.

        Args:
            attachment: Attachment to store
            conversation_id: Conversation that references it
            cookies: Cookies sent with the download
            access_token: Bearer token sent with the download
            defer_save: Leave the registry unsaved (caller saves once per batch)

        Returns:
            StoredMedia describing the permanent file

        Raises:
            DownloadError: If the download failed after retries and link resolution
        """
        self.open()
        temp_path: Path | None = None
        content_type: str | None = None

        try:
            if attachment.data is not None:
                digest = hashlib.sha256(attachment.data).hexdigest()
                size = len(attachment.data)
            else:
                temp_path, digest, size, content_type = await self._download(
                    attachment.url.strip(), cookies, access_token
                )

            existing = await self._reference_existing(digest, conversation_id, defer_save)
            if existing is not None:
                return existing

            mime_type = normalize_mime(attachment.mime_type or content_type)
            category = media_category(attachment.type, mime_type)
            extension = file_extension(mime_type, attachment.url, attachment.type)
            dest_path = self.media_dir / category / f"{digest}{extension}"

            if temp_path is None:
                temp_path = await self._write_temp(attachment.data)
            await asyncio.to_thread(place_file, temp_path, dest_path)

            async with self._lock:
                entry = self._registry.get(digest)
                if entry is not None:
                    # Another task stored the same content while this one was copying
                    if Path(entry.path) != dest_path:
                        await asyncio.to_thread(dest_path.unlink, missing_ok=True)
                    if self._registry.add_reference(digest, conversation_id):
                        await self._mark_dirty(defer_save)
                    return StoredMedia(path=Path(entry.path), hash=digest, size=entry.size, skipped=True)

                self._registry.insert(
                    digest,
                    MediaEntry(
                        path=str(dest_path),
                        size=size,
                        mime_type=mime_type,
                        references=[conversation_id],
                    ),
                )
                await self._mark_dirty(defer_save)
            logger.info("Stored media: hash=%s size=%d path=%s", digest, size, dest_path)
            return StoredMedia(path=dest_path, hash=digest, size=size, skipped=False)
        finally:
            if temp_path is not None:
                await asyncio.to_thread(temp_path.unlink, missing_ok=True)

    async def _reference_existing(self, digest: str, conversation_id: str, defer_save: bool) -> StoredMedia | None:
        async with self._lock:
            entry = self._registry.get(digest)
            if entry is None:
                return None
            if self._registry.add_reference(digest, conversation_id):
                await self._mark_dirty(defer_save)
        logger.debug("Media already stored: hash=%s conversation=%s", digest, conversation_id)
        return StoredMedia(path=Path(entry.path), hash=digest, size=entry.size, skipped=True)

    async def _write_temp(self, data: bytes) -> Path:
        await aiofiles.os.makedirs(self.temp_dir, exist_ok=True)
        temp_path = self._temp_path()
        async with aiofiles.open(temp_path, "wb") as f:
            await f.write(data)
        return temp_path

    async def _mark_dirty(self, defer_save: bool) -> None:
        """Record a registry change. Must be called with the lock held."""
        if defer_save:
            self._dirty = True
        else:
            await asyncio.to_thread(self._registry.save)

    async def save(self) -> None:
        """Flush deferred registry changes, if any."""
        async with self._lock:
            if self._dirty:
                await asyncio.to_thread(self._registry.save)
                self._dirty = False

    async def download_conversation_media(
        self,
        conversation: Conversation,
        cookies: dict[str, str] | None = None,
        access_token: str | None = None,
    ) -> DownloadResult:
        """Store every attachment of ``conversation`` with bounded concurrency.

        Download failures are recorded in the result, never raised. Any other
        error (a full disk, say) is raised once every sibling download has
        settled and the registry has been saved, so files already placed stay
        referenced.
        """
        self.open()
        result = DownloadResult()
        attachments = [a for a in conversation.attachments if self._is_storable(a)]
        result.skipped = len(conversation.attachments) - len(attachments)
        if not attachments:
            return result

        semaphore = asyncio.Semaphore(self.concurrency)
        last = len(attachments) - 1

        async def worker(position: int, attachment: Attachment) -> StoredMedia | MediaError:
            async with semaphore:
                try:
                    return await self.store_attachment(
                        attachment,
                        conversation.id,
                        cookies=cookies,
                        access_token=access_token,
                        defer_save=True,
                    )
                except DownloadError as exc:
                    logger.error(
                        "Media download failed: conversation=%s url=%s error=%s",
                        conversation.id,
                        exc.url,
                        exc,
                    )
                    return MediaError(url=exc.url or "(empty URL)", error=str(exc), status=exc.status)
                finally:
                    # Pause only between downloads, not after the last one
                    if self.rate_limit_sensitive and position < last:
                        await self.settings.sleep(self.settings.rate_limit_delay)

        outcomes = await asyncio.gather(
            *(worker(i, a) for i, a in enumerate(attachments)),
            return_exceptions=True,
        )

        unexpected: BaseException | None = None
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                if unexpected is None:
                    unexpected = outcome
            elif isinstance(outcome, MediaError):
                result.failed += 1
                result.errors.append(outcome)
            elif outcome.skipped:
                result.skipped += 1
            else:
                result.downloaded += 1
                result.bytes += outcome.size

        await self.save()

        if unexpected is not None:
            logger.error("Conversation media aborted: conversation=%s error=%s", conversation.id, unexpected)
            raise unexpected

        logger.info(
            "Conversation media done: conversation=%s downloaded=%d skipped=%d failed=%d bytes=%d",
            conversation.id,
            result.downloaded,
            result.skipped,
            result.failed,
            result.bytes,
        )
        return result

    def _is_storable(self, attachment: Attachment) -> bool:
        if attachment.data is not None:
            return True
        if is_blank_url(attachment.url):
            logger.debug("Skipping attachment with empty URL: id=%s", attachment.id)
            return False
        if is_unsupported_url(attachment.url, self.settings.unsupported_prefixes):
            logger.debug("Skipping attachment with internal URL: id=%s url=%s", attachment.id, attachment.url)
            return False
        return True

    async def garbage_collect(self, live_ids: set[str] | list[str], dry_run: bool = False) -> GcResult:
        self.open()
        async with self._lock:
            return await asyncio.to_thread(self._registry.garbage_collect, live_ids, dry_run=dry_run)

    def stats(self) -> MediaStats:
        return self.registry.stats()

    def registry_snapshot(self) -> dict[str, MediaEntry]:
        return self.registry.snapshot()
