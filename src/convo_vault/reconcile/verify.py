"""Archive integrity and remote parity checks."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from convo_vault.archive.index import IndexEntry
from convo_vault.archive.writer import CONTENT_FILES
from convo_vault.errors import PermissionDeniedError, ProviderError, SyncError, VaultError
from convo_vault.logging import get_logger
from convo_vault.media.registry import MediaEntry
from convo_vault.models import ConversationSummary
from convo_vault.providers.base import ListOptions, Provider
from convo_vault.reconcile.diff import DEFAULT_TOLERANCE_MS, is_stale

logger = get_logger("verify")


@dataclass
class VerifyOptions:
    since: datetime | None = None
    until: datetime | None = None
    limit: int | None = None
    full: bool = False
    local_only: bool = False
    tolerance_ms: int = DEFAULT_TOLERANCE_MS
    full_parity_concurrency: int = 2


@dataclass
class ParityMismatch:
    id: str
    title: str
    remote_messages: int
    local_messages: int
    remote_media: int
    local_media: int


@dataclass
class FetchFailure:
    id: str
    error: str
    kind: str  # permission or other


@dataclass
class VerifyReport:
    provider: str
    conversations: int = 0
    media_files: int = 0
    missing_dirs: list[str] = field(default_factory=list)
    missing_content: list[str] = field(default_factory=list)
    missing_media: list[str] = field(default_factory=list)
    dangling_refs: list[str] = field(default_factory=list)
    remote_checked: bool = False
    remote_conversations: int = 0
    missing_local: list[ConversationSummary] = field(default_factory=list)
    stale_local: list[ConversationSummary] = field(default_factory=list)
    count_mismatch: list[ConversationSummary] = field(default_factory=list)
    count_unknown: list[ConversationSummary] = field(default_factory=list)
    local_only: list[str] = field(default_factory=list)
    full_checked: bool = False
    full_mismatches: list[ParityMismatch] = field(default_factory=list)
    full_errors: list[FetchFailure] = field(default_factory=list)

    @property
    def permission_errors(self) -> int:
        return sum(1 for e in self.full_errors if e.kind == "permission")

    @property
    def has_issues(self) -> bool:
        """Any actionable finding. Unknown counts and local-only entries are informational."""
        return bool(
            self.missing_dirs
            or self.missing_content
            or self.missing_media
            or self.dangling_refs
            or self.missing_local
            or self.stale_local
            or self.count_mismatch
            or self.full_mismatches
            or self.full_errors
        )


def check_local(
    report: VerifyReport,
    provider_dir: Path,
    local_index: dict[str, IndexEntry],
) -> None:
    """Every indexed conversation has a directory with at least one content file."""
    for conv_id, entry in local_index.items():
        conv_dir = provider_dir / entry.path
        if not conv_dir.is_dir():
            report.missing_dirs.append(conv_id)
            continue
        if not any((conv_dir / name).exists() for name in CONTENT_FILES):
            report.missing_content.append(conv_id)


def check_media(
    report: VerifyReport,
    registry: dict[str, MediaEntry],
    local_index: dict[str, IndexEntry],
) -> None:
    """Every registry file exists and every reference points at an indexed conversation."""
    referenced: dict[str, int] = {}
    for entry in registry.values():
        if not Path(entry.path).exists():
            report.missing_media.append(entry.path)
        for ref in entry.references:
            referenced[ref] = referenced.get(ref, 0) + 1

    report.dangling_refs = [conv_id for conv_id in referenced if conv_id not in local_index]


def check_remote(
    report: VerifyReport,
    remote: list[ConversationSummary],
    local_index: dict[str, IndexEntry],
    tolerance_ms: int = DEFAULT_TOLERANCE_MS,
) -> None:
    report.remote_checked = True
    report.remote_conversations = len(remote)
    remote_ids = {s.id for s in remote}
    # Listings that never carry counts cannot be compared
    listing_has_counts = any(s.message_count > 0 for s in remote)

    for summary in remote:
        local = local_index.get(summary.id)
        if local is None:
            report.missing_local.append(summary)
        elif is_stale(summary.updated_at, local.updated_at, tolerance_ms):
            report.stale_local.append(summary)
        elif not listing_has_counts:
            report.count_unknown.append(summary)
        elif summary.message_count != local.message_count:
            report.count_mismatch.append(summary)

    report.local_only = [conv_id for conv_id in local_index if conv_id not in remote_ids]


async def check_full_parity(
    report: VerifyReport,
    provider: Provider,
    remote: list[ConversationSummary],
    local_index: dict[str, IndexEntry],
    concurrency: int = 2,
) -> None:
    """Re-fetch every archived remote conversation and compare message and media counts."""
    report.full_checked = True
    semaphore = asyncio.Semaphore(concurrency)

    async def check(summary: ConversationSummary) -> None:
        local = local_index.get(summary.id)
        if local is None:
            return
        async with semaphore:
            try:
                conversation = await provider.fetch_conversation(summary.id)
            except PermissionDeniedError as exc:
                report.full_errors.append(FetchFailure(summary.id, str(exc), "permission"))
                return
            except (VaultError, TimeoutError, ValueError, OSError) as exc:
                report.full_errors.append(FetchFailure(summary.id, str(exc), "other"))
                return

        remote_messages = len(conversation.messages)
        remote_media = conversation.metadata.media_count
        if remote_messages != local.message_count or remote_media != local.media_count:
            report.full_mismatches.append(
                ParityMismatch(
                    id=summary.id,
                    title=summary.title,
                    remote_messages=remote_messages,
                    local_messages=local.message_count,
                    remote_media=remote_media,
                    local_media=local.media_count,
                )
            )

    await asyncio.gather(*(check(s) for s in remote))


async def verify_archive(
    provider_name: str,
    local_index: dict[str, IndexEntry],
    registry: dict[str, MediaEntry],
    base_dir: Path,
    provider: Provider | None = None,
    options: VerifyOptions | None = None,
) -> VerifyReport:
    """Check one provider's archive.

    Local and media integrity are always checked. Remote parity needs a
    ``provider`` and is skipped with ``local_only``.

    Raises:
        SyncError: If the remote conversation list cannot be fetched
    """
    options = options or VerifyOptions()
    report = VerifyReport(
        provider=provider_name,
        conversations=len(local_index),
        media_files=len(registry),
    )

    check_local(report, Path(base_dir) / provider_name, local_index)
    check_media(report, registry, local_index)

    if options.local_only or provider is None:
        return report

    try:
        remote = await provider.list_conversations(
            ListOptions(since=options.since, until=options.until, limit=options.limit)
        )
    except (ProviderError, ValueError, OSError) as exc:
        raise SyncError(f"Failed to list conversations for {provider_name}: {exc}") from exc

    check_remote(report, remote, local_index, options.tolerance_ms)

    if options.full:
        await check_full_parity(
            report,
            provider,
            remote,
            local_index,
            concurrency=options.full_parity_concurrency,
        )

    logger.info(
        "Verify complete: provider=%s issues=%s missing_local=%d stale_local=%d full_mismatches=%d",
        provider_name,
        report.has_issues,
        len(report.missing_local),
        len(report.stale_local),
        len(report.full_mismatches),
    )
    return report
