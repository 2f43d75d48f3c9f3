"""Per-provider conversation index.

Each provider directory carries one ``index.json`` mapping conversation ID to
where the conversation lives on disk and the remote ``updatedAt`` it was
archived at. The file is loaded once, kept in memory and rewritten whole on
every mutation.
"""

import copy
import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from convo_vault.logging import get_logger
from convo_vault.models import Conversation, Hierarchy, format_timestamp, parse_timestamp

logger = get_logger("index")

INDEX_FILENAME = "index.json"


@dataclass
class IndexEntry:
    title: str
    provider: str
    message_count: int
    created_at: datetime
    updated_at: datetime  # Remote updatedAt, never the local clock
    archived_at: datetime
    path: str  # Relative to <base>/<provider>
    has_media: bool = False
    media_count: int = 0
    hierarchy: Hierarchy = field(default_factory=Hierarchy)

    @classmethod
    def from_conversation(
        cls,
        conversation: Conversation,
        path: str,
        archived_at: datetime | None = None,
    ) -> "IndexEntry":
        media_count = conversation.metadata.media_count
        return cls(
            title=conversation.title,
            provider=conversation.provider,
            message_count=conversation.metadata.message_count,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
            archived_at=archived_at or datetime.now(timezone.utc),
            path=path,
            has_media=media_count > 0,
            media_count=media_count,
            hierarchy=conversation.hierarchy,
        )

    def to_dict(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "title": self.title,
            "provider": self.provider,
            "messageCount": self.message_count,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "archivedAt": format_timestamp(self.archived_at),
            "hasMedia": self.has_media,
            "mediaCount": self.media_count,
            "path": self.path,
        }
        doc.update(self.hierarchy.to_dict())
        return doc

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexEntry":
        return cls(
            title=data.get("title") or "",
            provider=data.get("provider") or "",
            message_count=int(data.get("messageCount") or 0),
            created_at=parse_timestamp(data.get("createdAt") or 0),
            updated_at=parse_timestamp(data.get("updatedAt") or 0),
            archived_at=parse_timestamp(data.get("archivedAt") or 0),
            path=data.get("path") or "",
            has_media=bool(data.get("hasMedia", False)),
            media_count=int(data.get("mediaCount") or 0),
            hierarchy=Hierarchy.from_dict(data),
        )


@dataclass
class IndexStats:
    conversations: int = 0
    messages: int = 0
    media: int = 0


class ArchiveIndex:
    """Conversation indexes for every provider under one archive directory."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)
        self._cache: dict[str, dict[str, IndexEntry]] = {}

    def index_path(self, provider: str) -> Path:
        return self.base_dir / provider / INDEX_FILENAME

    def _load(self, provider: str) -> dict[str, IndexEntry]:
        if provider in self._cache:
            return self._cache[provider]

        path = self.index_path(provider)
        entries: dict[str, IndexEntry] = {}
        if path.exists():
            with open(path, encoding="utf-8") as f:
                raw = json.load(f)
            entries = {conv_id: IndexEntry.from_dict(entry) for conv_id, entry in raw.items()}
            logger.debug("Loaded index: provider=%s entries=%d", provider, len(entries))

        self._cache[provider] = entries
        return entries

    def _save(self, provider: str) -> None:
        path = self.index_path(provider)
        path.parent.mkdir(parents=True, exist_ok=True)
        entries = self._cache.get(provider, {})
        tmp_path = path.with_name(path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump({conv_id: entry.to_dict() for conv_id, entry in entries.items()}, f, indent=2)
        os.replace(tmp_path, path)

    def get_index(self, provider: str) -> dict[str, IndexEntry]:
        """Snapshot of a provider's index; mutating it does not touch the index."""
        return copy.deepcopy(self._load(provider))

    def get(self, provider: str, conversation_id: str) -> IndexEntry | None:
        entry = self._load(provider).get(conversation_id)
        return copy.deepcopy(entry) if entry is not None else None

    def contains(self, provider: str, conversation_id: str) -> bool:
        return conversation_id in self._load(provider)

    def upsert(self, provider: str, conversation_id: str, entry: IndexEntry) -> None:
        """Insert or replace one entry and persist the provider's index."""
        self._load(provider)[conversation_id] = copy.deepcopy(entry)
        self._save(provider)

    def remove(self, provider: str, conversation_id: str) -> bool:
        """Delete one entry on explicit request. The archive pass never calls this."""
        entries = self._load(provider)
        if conversation_id not in entries:
            return False
        del entries[conversation_id]
        self._save(provider)
        logger.info("Removed index entry: provider=%s id=%s", provider, conversation_id)
        return True

    def providers(self) -> list[str]:
        """Provider directories under the archive that carry an index."""
        if not self.base_dir.exists():
            return []
        return sorted(
            child.name
            for child in self.base_dir.iterdir()
            if child.is_dir() and (child / INDEX_FILENAME).exists()
        )

    def stats(self, provider: str) -> IndexStats:
        entries = self._load(provider)
        return IndexStats(
            conversations=len(entries),
            messages=sum(e.message_count for e in entries.values()),
            media=sum(e.media_count for e in entries.values()),
        )
