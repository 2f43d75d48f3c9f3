"""CLI entry point for convo-vault.

Exit codes: 0 on success, 1 when a pass could not be set up (configuration,
authentication, listing, storage), 2 when ``verify`` found issues.
"""

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

import click

from convo_vault.archive.index import ArchiveIndex
from convo_vault.archive.orchestrator import ArchiveOptions, Archiver, ArchiveResult, ArchiverSettings
from convo_vault.archive.writer import ConversationWriter
from convo_vault.config import Config, load_config
from convo_vault.errors import AuthenticationError, ConfigurationError, VaultError
from convo_vault.logging import setup_logging
from convo_vault.media.store import MediaSettings, MediaStore
from convo_vault.models import parse_timestamp
from convo_vault.providers import ListOptions, Provider, ProviderRegistry
from convo_vault.reconcile.diff import HierarchyChange, StatusDiff, classify, detect_hierarchy_changes
from convo_vault.reconcile.verify import VerifyOptions, VerifyReport, verify_archive

EXIT_OK = 0
EXIT_SETUP_FAILURE = 1
EXIT_ISSUES = 2

LIST_PREVIEW = 10


def format_bytes(size: int) -> str:
    """Format a byte count for display."""
    if size < 1024:
        return f"{size} B"
    value = size / 1024
    for unit in ("KB", "MB"):
        if value < 1024:
            return f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} GB"


def parse_date(value: str | None, option: str) -> datetime | None:
    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid date for {option}: {value}") from exc


def select_providers(config: Config, provider: str | None) -> list[str]:
    """Names of the providers a command should run against."""
    if provider is not None:
        if provider not in config.providers:
            raise ConfigurationError(f"Provider {provider!r} is not configured")
        return [provider]
    names = config.enabled_providers()
    if not names:
        raise ConfigurationError("No providers configured")
    return names


async def connect(config: Config, name: str) -> Provider:
    """Create and authenticate the configured provider ``name``."""
    provider_config = config.providers[name]
    provider = ProviderRegistry.create(name, provider_config)
    await provider.authenticate(provider_config)
    if not await provider.is_authenticated():
        raise AuthenticationError(f"Authentication failed for {name}; refresh its credentials")
    return provider


def build_archiver(config: Config) -> Archiver:
    settings = MediaSettings.from_config(config.media)

    def media_factory(provider_name: str, rate_limit_sensitive: bool) -> MediaStore:
        return MediaStore(
            config.archive_dir,
            provider_name,
            settings=settings,
            rate_limit_sensitive=rate_limit_sensitive,
        )

    return Archiver(
        ArchiveIndex(config.archive_dir),
        ConversationWriter(
            config.archive_dir,
            formats=config.storage.formats,
            organize_by_date=config.storage.organize_by_date,
        ),
        media_factory,
        ArchiverSettings(tolerance_ms=config.reconcile.tolerance_ms),
    )


def print_archive_result(name: str, result: ArchiveResult, dry_run: bool) -> None:
    click.echo(f"\n=== Archive summary: {name} ===")
    if dry_run:
        click.echo("DRY RUN - nothing was written")
        click.echo(f"  Would archive: {len(result.would_archive)}")
        for conv_id in result.would_archive[:LIST_PREVIEW]:
            click.echo(f"    + {conv_id}")
    else:
        click.echo(f"  Archived: {result.archived}")
    click.echo(f"  Skipped:  {result.skipped}")

    if result.media_downloaded or result.media_skipped:
        click.echo(f"  Media downloaded: {result.media_downloaded}")
        click.echo(f"  Media reused:     {result.media_skipped}")
        click.echo(f"  Size:             {format_bytes(result.bytes_downloaded)}")

    if result.assets_archived:
        click.echo(f"  Assets:           {result.assets_archived}")
    if result.workspaces_archived:
        click.echo(f"  Workspaces:       {result.workspaces_archived}")

    if result.rate_limit_events:
        click.echo(f"  Rate limits hit:  {result.rate_limit_events}")

    if result.errors:
        click.echo(f"  Errors: {len(result.errors)}")
        for error in result.errors[:5]:
            click.echo(f"    - [{error.kind}] {error.id}: {error.message}")
        if len(result.errors) > 5:
            click.echo(f"    ... and {len(result.errors) - 5} more")

    click.echo(f"  Completed in {result.duration:.1f}s")


def print_status(name: str, diff: StatusDiff, changes: list[HierarchyChange]) -> None:
    click.echo(f"\n=== Archive status: {name} ===")
    click.echo(f"  Already archived:  {len(diff.archived)}")
    click.echo(f"  Updated on remote: {len(diff.updated)}")
    click.echo(f"  New:               {len(diff.new)}")
    click.echo(f"  Hierarchy changed: {len(changes)}")
    click.echo(f"  Local only:        {len(diff.local_only)}")
    click.echo(f"  Total remote:      {diff.total_remote}")

    if diff.new:
        click.echo("\nNew conversations:")
        for summary in diff.new[:LIST_PREVIEW]:
            click.echo(f"  + {summary.title} ({summary.message_count} messages)")
        if len(diff.new) > LIST_PREVIEW:
            click.echo(f"  ... and {len(diff.new) - LIST_PREVIEW} more")

    if diff.updated:
        click.echo("\nUpdated on remote:")
        for item in diff.updated[:LIST_PREVIEW]:
            click.echo(
                f"  o {item.summary.title} (remote {item.summary.updated_at:%Y-%m-%d}, "
                f"local {item.local_updated_at:%Y-%m-%d})"
            )
        if len(diff.updated) > LIST_PREVIEW:
            click.echo(f"  ... and {len(diff.updated) - LIST_PREVIEW} more")

    if changes:
        click.echo("\nHierarchy changed:")
        for change in changes[:LIST_PREVIEW]:
            click.echo(f"  <> {change.title}: {change.change}")

    if diff.has_pending or changes:
        click.echo("\nRun `convo-vault archive` to bring the archive up to date.")


def print_verify_report(report: VerifyReport) -> None:
    click.echo(f"\n=== Verify: {report.provider} ===")
    click.echo("Local archive:")
    click.echo(f"  Conversations: {report.conversations}")
    if report.missing_dirs:
        click.echo(f"  Missing dirs: {len(report.missing_dirs)}")
    if report.missing_content:
        click.echo(f"  Missing content files: {len(report.missing_content)}")

    click.echo("Media registry:")
    click.echo(f"  Media files indexed: {report.media_files}")
    if report.missing_media:
        click.echo(f"  Missing media files: {len(report.missing_media)}")
    if report.dangling_refs:
        click.echo(f"  Dangling references: {len(report.dangling_refs)}")

    if report.remote_checked:
        click.echo("Remote parity:")
        click.echo(f"  Remote conversations: {report.remote_conversations}")
        if report.missing_local:
            click.echo(f"  Missing locally: {len(report.missing_local)}")
        if report.stale_local:
            click.echo(f"  Stale locally: {len(report.stale_local)}")
        if report.count_mismatch:
            click.echo(f"  Message count mismatch: {len(report.count_mismatch)}")
        if report.count_unknown:
            click.echo(f"  Message count unavailable: {len(report.count_unknown)}")
        if report.local_only:
            click.echo(f"  Local only (deleted remotely?): {len(report.local_only)}")

    if report.full_checked:
        click.echo("Full parity:")
        click.echo(f"  Message/media mismatches: {len(report.full_mismatches)}")
        for mismatch in report.full_mismatches[:3]:
            click.echo(
                f"    {mismatch.id}: messages {mismatch.local_messages} local / {mismatch.remote_messages} remote, "
                f"media {mismatch.local_media} local / {mismatch.remote_media} remote"
            )
        if report.full_errors:
            click.echo(f"  Fetch errors: {len(report.full_errors)}")
            if report.permission_errors:
                click.echo(f"  Permission errors: {report.permission_errors}")
            for failure in report.full_errors[:3]:
                click.echo(f"    {failure.id}: {failure.error}")

    click.echo("Verify result: " + ("Issues detected" if report.has_issues else "OK"))


async def run_archive(config: Config, names: list[str], options: ArchiveOptions) -> bool:
    """Archive each provider in turn. Returns False if any pass failed to set up."""
    archiver = build_archiver(config)
    ok = True
    for name in names:
        provider = None
        try:
            provider = await connect(config, name)
            result = await archiver.archive(provider, options)
        except VaultError as exc:
            click.echo(f"Error ({name}): {exc}", err=True)
            ok = False
            continue
        finally:
            if provider is not None:
                await provider.cleanup()
        print_archive_result(name, result, options.dry_run)
    return ok


async def run_status(config: Config, names: list[str], list_options: ListOptions) -> bool:
    index = ArchiveIndex(config.archive_dir)
    ok = True
    for name in names:
        provider = None
        try:
            provider = await connect(config, name)
            remote = await provider.list_conversations(list_options)
            local_index = index.get_index(name)
            diff = classify(remote, local_index, config.reconcile.tolerance_ms)
            changes = []
            if config.reconcile.hierarchy_sample:
                changes = await detect_hierarchy_changes(
                    provider, remote, local_index, sample=config.reconcile.hierarchy_sample
                )
        except VaultError as exc:
            click.echo(f"Error ({name}): {exc}", err=True)
            ok = False
            continue
        finally:
            if provider is not None:
                await provider.cleanup()
        print_status(name, diff, changes)
    return ok


async def run_verify(config: Config, names: list[str], options: VerifyOptions) -> tuple[bool, bool]:
    """Verify each provider. Returns (setup ok, issues found)."""
    index = ArchiveIndex(config.archive_dir)
    ok = True
    issues = False
    for name in names:
        provider = None
        try:
            if not options.local_only:
                provider = await connect(config, name)
            async with MediaStore(config.archive_dir, name) as media:
                report = await verify_archive(
                    name,
                    index.get_index(name),
                    media.registry_snapshot(),
                    config.archive_dir,
                    provider=provider,
                    options=options,
                )
        except VaultError as exc:
            click.echo(f"Error ({name}): {exc}", err=True)
            ok = False
            continue
        finally:
            if provider is not None:
                await provider.cleanup()
        print_verify_report(report)
        issues = issues or report.has_issues
    return ok, issues


async def run_gc(config: Config, names: list[str], dry_run: bool) -> None:
    index = ArchiveIndex(config.archive_dir)
    for name in names:
        live_ids = set(index.get_index(name))
        async with MediaStore(config.archive_dir, name) as media:
            result = await media.garbage_collect(live_ids, dry_run=dry_run)
        prefix = "Would remove" if dry_run else "Removed"
        click.echo(
            f"{name}: {prefix} {result.files_removed} files, {format_bytes(result.bytes_freed)} "
            f"({result.references_pruned} stale references)"
        )
        for path in result.failed:
            click.echo(f"  ! could not remove {path}", err=True)


def gc_providers(config: Config, provider: str | None) -> list[str]:
    """Providers for maintenance commands: explicit, else every archived one."""
    if provider is not None:
        return [provider]
    return ArchiveIndex(config.archive_dir).providers()


@click.group()
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Path to config.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """Archive chat platform conversations into a local, deduplicated store."""
    try:
        config = load_config(config_path)
    except ConfigurationError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(EXIT_SETUP_FAILURE)

    setup_logging(
        "convo-vault",
        log_dir=config.log_dir,
        level=logging.DEBUG if verbose else logging.INFO,
        console=verbose,
    )
    ctx.obj = config


@cli.command()
@click.option("--provider", "-p", help="Only archive this provider")
@click.option("--since", help="Only conversations updated on or after this date")
@click.option("--until", help="Only conversations updated on or before this date")
@click.option("--limit", "-n", type=click.IntRange(min=1), help="Maximum conversations to archive")
@click.option("--dry-run", is_flag=True, help="Show what would be archived without writing")
@click.option("--skip-media", is_flag=True, help="Do not download attachments")
@click.option("--id", "conversation_ids", multiple=True, help="Archive only this conversation (repeatable)")
@click.option("--search", "search_query", help="Only conversations whose title or preview matches")
@click.option("--no-skip-existing", is_flag=True, help="Re-archive conversations already in the index")
@click.pass_obj
def archive(
    config: Config,
    provider: str | None,
    since: str | None,
    until: str | None,
    limit: int | None,
    dry_run: bool,
    skip_media: bool,
    conversation_ids: tuple[str, ...],
    search_query: str | None,
    no_skip_existing: bool,
) -> None:
    """Archive conversations from configured providers."""
    try:
        names = select_providers(config, provider)
        options = ArchiveOptions(
            since=parse_date(since, "--since"),
            until=parse_date(until, "--until"),
            limit=limit,
            conversation_ids=list(conversation_ids),
            search_query=search_query,
            skip_existing=not no_skip_existing,
            update_stale=True,
            dry_run=dry_run,
            download_media=not skip_media,
        )
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(EXIT_SETUP_FAILURE)

    ok = asyncio.run(run_archive(config, names, options))
    sys.exit(EXIT_OK if ok else EXIT_SETUP_FAILURE)


@cli.command()
@click.option("--provider", "-p", help="Only check this provider")
@click.option("--since", help="Only conversations updated on or after this date")
@click.option("--until", help="Only conversations updated on or before this date")
@click.option("--limit", "-n", type=click.IntRange(min=1), help="Maximum remote conversations to compare")
@click.pass_obj
def status(config: Config, provider: str | None, since: str | None, until: str | None, limit: int | None) -> None:
    """Show what differs between the remote and the local archive."""
    try:
        names = select_providers(config, provider)
        list_options = ListOptions(since=parse_date(since, "--since"), until=parse_date(until, "--until"), limit=limit)
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(EXIT_SETUP_FAILURE)

    ok = asyncio.run(run_status(config, names, list_options))
    sys.exit(EXIT_OK if ok else EXIT_SETUP_FAILURE)


@cli.command()
@click.option("--provider", "-p", help="Only verify this provider")
@click.option("--since", help="Only conversations updated on or after this date")
@click.option("--until", help="Only conversations updated on or before this date")
@click.option("--limit", "-n", type=click.IntRange(min=1), help="Maximum remote conversations to compare")
@click.option("--full", is_flag=True, help="Re-fetch every conversation and compare message/media counts")
@click.option("--local-only", is_flag=True, help="Skip remote parity checks")
@click.pass_obj
def verify(
    config: Config,
    provider: str | None,
    since: str | None,
    until: str | None,
    limit: int | None,
    full: bool,
    local_only: bool,
) -> None:
    """Check archive integrity and parity with the remote."""
    try:
        names = select_providers(config, provider)
        options = VerifyOptions(
            since=parse_date(since, "--since"),
            until=parse_date(until, "--until"),
            limit=limit,
            full=full,
            local_only=local_only,
            tolerance_ms=config.reconcile.tolerance_ms,
            full_parity_concurrency=config.reconcile.full_parity_concurrency,
        )
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(EXIT_SETUP_FAILURE)

    ok, issues = asyncio.run(run_verify(config, names, options))
    if not ok:
        sys.exit(EXIT_SETUP_FAILURE)
    sys.exit(EXIT_ISSUES if issues else EXIT_OK)


@cli.command()
@click.option("--provider", "-p", help="Only collect this provider's media")
@click.option("--dry-run", is_flag=True, help="Report what would be removed")
@click.pass_obj
def gc(config: Config, provider: str | None, dry_run: bool) -> None:
    """Delete media no archived conversation references."""
    names = gc_providers(config, provider)
    if not names:
        click.echo("Nothing archived yet.")
        return
    asyncio.run(run_gc(config, names, dry_run))


@cli.command()
@click.option("--provider", "-p", help="Only show this provider")
@click.pass_obj
def stats(config: Config, provider: str | None) -> None:
    """Show archive and media statistics."""
    names = gc_providers(config, provider)
    if not names:
        click.echo("Nothing archived yet.")
        return

    index = ArchiveIndex(config.archive_dir)
    for name in names:
        index_stats = index.stats(name)
        media_stats = MediaStore(config.archive_dir, name).stats()
        click.echo(f"\n=== {name} ===")
        click.echo(f"  Conversations:  {index_stats.conversations}")
        click.echo(f"  Messages:       {index_stats.messages}")
        click.echo(f"  Attachments:    {index_stats.media}")
        click.echo(f"  Media files:    {media_stats.unique_files} unique / {media_stats.total_files} referenced")
        click.echo(f"  Media size:     {format_bytes(media_stats.total_size)}")
        click.echo(f"  Dedup savings:  {format_bytes(media_stats.dedup_savings)}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
