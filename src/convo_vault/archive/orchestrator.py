"""One archive pass: list, decide, fetch, write, download media, index."""

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

from convo_vault.archive.index import ArchiveIndex, IndexEntry
from convo_vault.archive.writer import ConversationWriter
from convo_vault.errors import ProviderError, RateLimitError, SyncError, VaultError
from convo_vault.logging import get_logger
from convo_vault.media.store import MediaStore
from convo_vault.models import ConversationSummary
from convo_vault.providers.base import ListOptions, Provider
from convo_vault.reconcile.diff import DEFAULT_TOLERANCE_MS, is_stale
from convo_vault.retry import fetch_retry_policy

logger = get_logger("archiver")

MediaFactory = Callable[[str, bool], MediaStore]


@dataclass
class ArchiveOptions:
    since: datetime | None = None
    until: datetime | None = None
    limit: int | None = None
    conversation_ids: list[str] = field(default_factory=list)
    search_query: str | None = None
    skip_existing: bool = True
    update_stale: bool = False  # With skip_existing, still re-archive conversations changed remotely
    dry_run: bool = False
    download_media: bool = True


@dataclass
class ArchiveError:
    id: str
    kind: str  # conversation, media, rate_limit, assets, workspaces
    message: str


@dataclass
class ArchiveResult:
    archived: int = 0
    skipped: int = 0
    media_downloaded: int = 0
    media_skipped: int = 0
    bytes_downloaded: int = 0
    duration: float = 0.0
    errors: list[ArchiveError] = field(default_factory=list)
    would_archive: list[str] = field(default_factory=list)
    rate_limit_events: int = 0
    assets_archived: int = 0
    workspaces_archived: int = 0


@dataclass
class ArchiverSettings:
    tolerance_ms: int = DEFAULT_TOLERANCE_MS
    fetch_retries: int = 2
    fetch_base_delay: float = 1.0
    rate_limit_base_delay: float = 2.0
    rate_limit_max_delay: float = 60.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep


class RateLimitTracker:
    """Backoff state for provider rate limiting during a single pass.

    Each RateLimitError doubles the wait, starting at ``base_delay`` and
    capped at ``max_delay``. A ``retry_after`` hint from the provider wins.
    """

    def __init__(
        self,
        base_delay: float = 2.0,
        max_delay: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.sleep = sleep
        self.events = 0

    def record(self, error: RateLimitError) -> float:
        """Count a rate limit and return how long to back off."""
        self.events += 1
        if error.retry_after:
            return min(error.retry_after, self.max_delay)
        return min(self.base_delay * 2 ** (self.events - 1), self.max_delay)

    async def backoff(self, error: RateLimitError) -> float:
        delay = self.record(error)
        await self.sleep(delay)
        return delay


def select_conversations(
    summaries: list[ConversationSummary],
    options: ArchiveOptions,
) -> list[ConversationSummary]:
    """Apply the explicit-ID, search and limit filters in that order."""
    selected = summaries
    if options.conversation_ids:
        wanted = set(options.conversation_ids)
        selected = [s for s in selected if s.id in wanted]

    if options.search_query:
        query = options.search_query.lower()
        selected = [
            s
            for s in selected
            if query in s.title.lower() or (s.preview is not None and query in s.preview.lower())
        ]

    if options.limit is not None:
        selected = selected[: options.limit]
    return selected


class Archiver:
    """Drives archive passes against one archive directory."""

    def __init__(
        self,
        index: ArchiveIndex,
        writer: ConversationWriter,
        media_factory: MediaFactory,
        settings: ArchiverSettings | None = None,
    ) -> None:
        self.index = index
        self.writer = writer
        self.media_factory = media_factory
        self.settings = settings or ArchiverSettings()
        self._fetch_retry = fetch_retry_policy(
            max_retries=self.settings.fetch_retries,
            base_delay=self.settings.fetch_base_delay,
            sleep=self.settings.sleep,
        )

    async def archive(self, provider: Provider, options: ArchiveOptions | None = None) -> ArchiveResult:
        """Run one archive pass for ``provider``.

        Failures of individual conversations or attachments are collected in
        the result. Only setup failures raise.

        Raises:
            SyncError: If the conversation list cannot be fetched or storage is unusable
        """
        options = options or ArchiveOptions()
        started = time.monotonic()
        result = ArchiveResult()
        tracker = RateLimitTracker(
            base_delay=self.settings.rate_limit_base_delay,
            max_delay=self.settings.rate_limit_max_delay,
            sleep=self.settings.sleep,
        )

        try:
            summaries = await provider.list_conversations(
                ListOptions(since=options.since, until=options.until, limit=options.limit)
            )
        except (ProviderError, ValueError, OSError) as exc:
            raise SyncError(f"Failed to list conversations for {provider.name}: {exc}") from exc

        selected = select_conversations(summaries, options)
        logger.info(
            "Starting archive pass: provider=%s listed=%d selected=%d dry_run=%s",
            provider.name,
            len(summaries),
            len(selected),
            options.dry_run,
        )

        if not options.dry_run:
            try:
                self.writer.provider_dir(provider.name).mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise SyncError(f"Archive directory is not writable: {exc}") from exc
            await self._archive_library(provider, result)

        async with contextlib.AsyncExitStack() as stack:
            media = None
            if options.download_media and not options.dry_run:
                media = await stack.enter_async_context(
                    self.media_factory(provider.name, provider.rate_limit_sensitive)
                )

            for summary in selected:
                if self._should_skip(provider.name, summary, options):
                    result.skipped += 1
                    continue

                if options.dry_run:
                    logger.info("Would archive: provider=%s id=%s title=%s", provider.name, summary.id, summary.title)
                    result.would_archive.append(summary.id)
                    continue

                try:
                    await self._archive_one(provider, summary, media, result)
                except RateLimitError as exc:
                    delay = await tracker.backoff(exc)
                    logger.warning(
                        "Rate limited: provider=%s id=%s backoff=%.1fs",
                        provider.name,
                        summary.id,
                        delay,
                    )
                    result.errors.append(ArchiveError(summary.id, "rate_limit", f"Rate limited: {exc}"))
                except (VaultError, TimeoutError, ValueError, OSError) as exc:
                    logger.error("Failed to archive: provider=%s id=%s error=%s", provider.name, summary.id, exc)
                    result.errors.append(ArchiveError(summary.id, "conversation", str(exc)))

        result.rate_limit_events = tracker.events
        result.duration = time.monotonic() - started
        logger.info(
            "Archive pass complete: provider=%s archived=%d skipped=%d media=%d errors=%d duration=%.1fs",
            provider.name,
            result.archived,
            result.skipped,
            result.media_downloaded,
            len(result.errors),
            result.duration,
        )
        return result

    async def _archive_library(self, provider: Provider, result: ArchiveResult) -> None:
        """Save assets and workspaces when the provider has them. Failures never stop the pass."""
        try:
            assets = await provider.list_assets()
            if assets:
                self.writer.write_assets(provider.name, assets)
                result.assets_archived = len(assets)
        except (VaultError, TimeoutError, ValueError, OSError) as exc:
            logger.warning("Failed to archive assets: provider=%s error=%s", provider.name, exc)
            result.errors.append(ArchiveError(provider.name, "assets", str(exc)))

        try:
            workspaces = await provider.list_workspaces()
            if workspaces:
                self.writer.write_workspaces(provider.name, workspaces)
                result.workspaces_archived = len(workspaces)
        except (VaultError, TimeoutError, ValueError, OSError) as exc:
            logger.warning("Failed to archive workspaces: provider=%s error=%s", provider.name, exc)
            result.errors.append(ArchiveError(provider.name, "workspaces", str(exc)))

    def _should_skip(self, provider_name: str, summary: ConversationSummary, options: ArchiveOptions) -> bool:
        if not options.skip_existing:
            return False
        local = self.index.get(provider_name, summary.id)
        if local is None:
            return False
        if options.update_stale and is_stale(summary.updated_at, local.updated_at, self.settings.tolerance_ms):
            logger.info("Re-archiving updated conversation: provider=%s id=%s", provider_name, summary.id)
            return False
        return True

    async def _archive_one(
        self,
        provider: Provider,
        summary: ConversationSummary,
        media: MediaStore | None,
        result: ArchiveResult,
    ) -> None:
        conversation = await self._fetch_retry.call(provider.fetch_conversation, summary.id)
        conversation.provider = provider.name

        self.writer.write(conversation)

        if media is not None and conversation.attachments:
            media_result = await media.download_conversation_media(
                conversation,
                cookies=provider.cookies,
                access_token=provider.access_token,
            )
            result.media_downloaded += media_result.downloaded
            result.media_skipped += media_result.skipped
            result.bytes_downloaded += media_result.bytes
            for error in media_result.errors:
                result.errors.append(
                    ArchiveError(conversation.id, "media", f"Failed to download {error.url}: {error.error}")
                )

        self.index.upsert(
            provider.name,
            conversation.id,
            IndexEntry.from_conversation(conversation, self.writer.relative_path(conversation)),
        )
        result.archived += 1
        logger.info("Archived conversation: provider=%s id=%s title=%s", provider.name, conversation.id, conversation.title)
