"""Classify remote conversations against the local index."""

from dataclasses import dataclass, field
from datetime import datetime

from convo_vault.archive.index import IndexEntry
from convo_vault.errors import ProviderError
from convo_vault.logging import get_logger
from convo_vault.models import ConversationSummary, Hierarchy, to_millis
from convo_vault.providers.base import Provider

logger = get_logger("reconcile")

# Absorbs clock and rounding skew between remote and stored timestamps
DEFAULT_TOLERANCE_MS = 1000
DEFAULT_HIERARCHY_SAMPLE = 20


def is_stale(
    remote_updated: datetime,
    local_updated: datetime,
    tolerance_ms: int = DEFAULT_TOLERANCE_MS,
) -> bool:
    """True when the remote copy is newer than the archived one beyond the tolerance."""
    return to_millis(remote_updated) > to_millis(local_updated) + tolerance_ms


@dataclass
class UpdatedConversation:
    summary: ConversationSummary
    local_updated_at: datetime


@dataclass
class StatusDiff:
    new: list[ConversationSummary] = field(default_factory=list)
    updated: list[UpdatedConversation] = field(default_factory=list)
    archived: list[ConversationSummary] = field(default_factory=list)
    local_only: list[str] = field(default_factory=list)

    @property
    def total_remote(self) -> int:
        return len(self.new) + len(self.updated) + len(self.archived)

    @property
    def has_pending(self) -> bool:
        """Whether an archive pass would have something to do."""
        return bool(self.new or self.updated)


def classify(
    remote: list[ConversationSummary],
    local_index: dict[str, IndexEntry],
    tolerance_ms: int = DEFAULT_TOLERANCE_MS,
) -> StatusDiff:
    diff = StatusDiff()
    remote_ids = set()

    for summary in remote:
        remote_ids.add(summary.id)
        local = local_index.get(summary.id)
        if local is None:
            diff.new.append(summary)
        elif is_stale(summary.updated_at, local.updated_at, tolerance_ms):
            diff.updated.append(UpdatedConversation(summary=summary, local_updated_at=local.updated_at))
        else:
            diff.archived.append(summary)

    diff.local_only = [conv_id for conv_id in local_index if conv_id not in remote_ids]
    return diff


@dataclass
class HierarchyChange:
    id: str
    title: str
    change: str
    before: Hierarchy
    after: Hierarchy


def describe_hierarchy_change(before: Hierarchy, after: Hierarchy) -> str | None:
    """Human description of how a conversation moved, or None if it did not."""
    placed_before = before.workspace_id or before.project_id or before.folder
    placed_after = after.workspace_id or after.project_id or after.folder

    changed = (
        placed_before != placed_after
        or before.workspace_id != after.workspace_id
        or before.project_id != after.project_id
        or before.workspace_name != after.workspace_name
        or before.project_name != after.project_name
    )
    if not changed:
        return None

    if not placed_before and placed_after:
        return "Added to workspace/project"
    if placed_before and not placed_after:
        return "Removed from workspace/project"
    if before.workspace_id != after.workspace_id:
        return "Moved to different workspace"
    if before.project_id != after.project_id:
        if not before.project_id:
            return "Added to project"
        if not after.project_id:
            return "Removed from project"
        return "Moved to different project"
    if before.workspace_name != after.workspace_name or before.project_name != after.project_name:
        return "Workspace/project renamed"
    return "Organizational structure changed"


async def detect_hierarchy_changes(
    provider: Provider,
    remote: list[ConversationSummary],
    local_index: dict[str, IndexEntry],
    sample: int = DEFAULT_HIERARCHY_SAMPLE,
) -> list[HierarchyChange]:
    """Re-fetch up to ``sample`` archived conversations and report moves.

    Conversations that fail to fetch are left out of the report.
    """
    candidates = [s for s in remote if s.id in local_index][:sample]
    changes: list[HierarchyChange] = []

    for summary in candidates:
        try:
            conversation = await provider.fetch_conversation(summary.id)
        except ProviderError as exc:
            logger.debug("Hierarchy check skipped: id=%s error=%s", summary.id, exc)
            continue

        before = local_index[summary.id].hierarchy
        change = describe_hierarchy_change(before, conversation.hierarchy)
        if change is not None:
            changes.append(
                HierarchyChange(
                    id=summary.id,
                    title=summary.title,
                    change=change,
                    before=before,
                    after=conversation.hierarchy,
                )
            )

    return changes
