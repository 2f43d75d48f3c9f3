"""Media registry: content hash -> stored file and its referencing conversations."""

import copy
import json
import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from convo_vault.logging import get_logger
from convo_vault.models import format_timestamp

logger = get_logger("registry")

REGISTRY_FILENAME = "media-registry.json"


@dataclass
class MediaEntry:
    """One unique blob on disk."""

    path: str
    size: int
    mime_type: str
    first_seen: str = field(default_factory=lambda: format_timestamp(datetime.now(timezone.utc)))
    references: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "size": self.size,
            "mimeType": self.mime_type,
            "firstSeen": self.first_seen,
            "references": list(self.references),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MediaEntry":
        references: list[str] = []
        for ref in data.get("references") or []:
            if ref not in references:
                references.append(ref)
        return cls(
            path=data["path"],
            size=int(data.get("size", 0)),
            mime_type=data.get("mimeType", "application/octet-stream"),
            first_seen=data.get("firstSeen", ""),
            references=references,
        )


@dataclass
class MediaStats:
    total_files: int = 0  # Total references, i.e. files a non-deduplicating store would hold
    unique_files: int = 0
    total_size: int = 0
    dedup_savings: int = 0  # Bytes not re-stored thanks to reuse


@dataclass
class GcResult:
    files_removed: int = 0
    bytes_freed: int = 0
    references_pruned: int = 0
    failed: list[str] = field(default_factory=list)  # Paths that could not be deleted


class MediaRegistry:
    """JSON-backed map of SHA-256 hex digest to MediaEntry.

    The whole document is loaded into memory and rewritten on save. Callers
    running concurrent downloads must serialize mutations themselves (the
    MediaStore holds a lock around every read-modify-write).
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._entries: dict[str, MediaEntry] = {}

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> "MediaRegistry":
        """Load entries from disk. A missing file is an empty registry."""
        if not self._path.exists():
            self._entries = {}
            return self

        with open(self._path, encoding="utf-8") as f:
            raw = json.load(f)

        self._entries = {digest: MediaEntry.from_dict(entry) for digest, entry in raw.items()}
        logger.debug("Loaded media registry: path=%s entries=%d", self._path, len(self._entries))
        return self

    def save(self) -> None:
        """Rewrite the registry file atomically."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(
                {digest: entry.to_dict() for digest, entry in self._entries.items()},
                f,
                indent=2,
            )
        os.replace(tmp_path, self._path)

    def __contains__(self, digest: object) -> bool:
        return digest in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def get(self, digest: str) -> MediaEntry | None:
        return self._entries.get(digest)

    def items(self) -> list[tuple[str, MediaEntry]]:
        return list(self._entries.items())

    def snapshot(self) -> dict[str, MediaEntry]:
        """Deep copy of all entries, safe to inspect while the store keeps working."""
        return copy.deepcopy(self._entries)

    def insert(self, digest: str, entry: MediaEntry) -> None:
        if digest in self._entries:
            raise ValueError(f"Registry already holds {digest}")
        self._entries[digest] = entry

    def add_reference(self, digest: str, conversation_id: str) -> bool:
        """Record that ``conversation_id`` uses ``digest``.

        Returns:
            True if the reference list changed
        """
        entry = self._entries[digest]
        if conversation_id in entry.references:
            return False
        entry.references.append(conversation_id)
        return True

    def stats(self) -> MediaStats:
        stats = MediaStats(unique_files=len(self._entries))
        for entry in self._entries.values():
            refs = len(entry.references)
            stats.total_files += refs
            stats.total_size += entry.size
            stats.dedup_savings += entry.size * max(refs - 1, 0)
        return stats

    def garbage_collect(self, live_ids: Iterable[str], dry_run: bool = False) -> GcResult:
        """Drop entries no live conversation references and delete their files.

        Entries that keep at least one live reference are narrowed to the live
        references. Deleting a file that is already gone is not an error; an
        entry whose file cannot be deleted is kept so a later run retries it.
        """
        live = set(live_ids)
        result = GcResult()
        doomed: list[str] = []

        for digest, entry in self._entries.items():
            valid = [ref for ref in entry.references if ref in live]
            if not valid:
                doomed.append(digest)
                result.files_removed += 1
                result.bytes_freed += entry.size
                result.references_pruned += len(entry.references)
            elif len(valid) != len(entry.references):
                result.references_pruned += len(entry.references) - len(valid)
                if not dry_run:
                    entry.references = valid

        if dry_run:
            return result

        for digest in doomed:
            entry = self._entries[digest]
            try:
                Path(entry.path).unlink()
            except FileNotFoundError:
                logger.debug("Media file already gone: path=%s", entry.path)
            except OSError as exc:
                logger.warning("Could not remove media: hash=%s path=%s error=%s", digest, entry.path, exc)
                result.files_removed -= 1
                result.bytes_freed -= entry.size
                result.references_pruned -= len(entry.references)
                result.failed.append(entry.path)
                continue
            del self._entries[digest]
            logger.info("Removed unreferenced media: hash=%s path=%s", digest, entry.path)

        if result.files_removed or result.references_pruned:
            self.save()

        return result
