"""Canonical data models.

Providers normalize their remote payloads into these types at the boundary;
nothing past the provider layer handles untyped remote JSON. The
``to_dict``/``from_dict`` pairs use the persisted camelCase keys.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

ATTACHMENT_TYPES = ("image", "video", "audio", "document", "artifact", "code")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Normalize a timestamp into an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (with or without a trailing 'Z'),
    and epoch numbers in seconds or milliseconds.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Anything past year ~33658 in seconds is really milliseconds
        seconds = value / 1000 if value > 1e12 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str) and value:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return parse_timestamp(datetime.fromisoformat(text))
    raise ValueError(f"Unrecognized timestamp: {value!r}")


def format_timestamp(value: datetime) -> str:
    """Render a datetime as ISO-8601 UTC with millisecond precision."""
    value = parse_timestamp(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def to_millis(value: datetime) -> int:
    """Milliseconds since the epoch, the unit reconciliation compares in."""
    delta = parse_timestamp(value) - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


@dataclass
class Attachment:
    """A reference to media attached to a message.

    Attachments have no identity in storage; once downloaded, their content
    is identified solely by the SHA-256 of its bytes.
    """

    id: str
    type: str
    url: str = ""
    mime_type: str | None = None
    size: int | None = None
    content: str | None = None  # Inline text for artifacts/code
    data: bytes | None = field(default=None, repr=False)  # Pre-fetched bytes, never persisted
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        doc: dict[str, Any] = {"id": self.id, "type": self.type, "url": self.url}
        if self.mime_type is not None:
            doc["mimeType"] = self.mime_type
        if self.size is not None:
            doc["size"] = self.size
        if self.content is not None:
            doc["content"] = self.content
        if self.metadata:
            doc["metadata"] = self.metadata
        return doc

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attachment":
        return cls(
            id=str(data.get("id", "")),
            type=data.get("type", "document"),
            url=data.get("url") or "",
            mime_type=data.get("mimeType"),
            size=data.get("size"),
            content=data.get("content"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class Message:
    id: str
    role: str  # user, assistant, system
    content: str
    timestamp: datetime
    attachments: list[Attachment] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": format_timestamp(self.timestamp),
        }
        if self.attachments:
            doc["attachments"] = [a.to_dict() for a in self.attachments]
        return doc

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(
            id=str(data.get("id", "")),
            role=data.get("role", "user"),
            content=data.get("content") or "",
            timestamp=parse_timestamp(data.get("timestamp") or 0),
            attachments=[Attachment.from_dict(a) for a in data.get("attachments") or []],
        )


@dataclass
class Hierarchy:
    """Optional organizational placement of a conversation on the remote."""

    workspace_id: str | None = None
    workspace_name: str | None = None
    project_id: str | None = None
    project_name: str | None = None
    folder: str | None = None

    _KEYS = (
        ("workspace_id", "workspaceId"),
        ("workspace_name", "workspaceName"),
        ("project_id", "projectId"),
        ("project_name", "projectName"),
        ("folder", "folder"),
    )

    def is_empty(self) -> bool:
        return not any(getattr(self, attr) for attr, _ in self._KEYS)

    def to_dict(self) -> dict[str, str]:
        return {
            key: getattr(self, attr)
            for attr, key in self._KEYS
            if getattr(self, attr) is not None
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Hierarchy":
        data = data or {}
        return cls(**{attr: data.get(key) for attr, key in cls._KEYS})


@dataclass
class ConversationMetadata:
    message_count: int = 0
    character_count: int = 0
    media_count: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.extra,
            "messageCount": self.message_count,
            "characterCount": self.character_count,
            "mediaCount": self.media_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ConversationMetadata":
        data = dict(data or {})
        return cls(
            message_count=int(data.pop("messageCount", 0) or 0),
            character_count=int(data.pop("characterCount", 0) or 0),
            media_count=int(data.pop("mediaCount", 0) or 0),
            extra=data,
        )


@dataclass
class Conversation:
    id: str
    provider: str
    title: str
    messages: list[Message]
    created_at: datetime
    updated_at: datetime
    hierarchy: Hierarchy = field(default_factory=Hierarchy)
    metadata: ConversationMetadata = field(default_factory=ConversationMetadata)

    @classmethod
    def build(
        cls,
        id: str,
        provider: str,
        title: str,
        messages: list[Message],
        created_at: Any,
        updated_at: Any,
        hierarchy: Hierarchy | None = None,
        extra: dict[str, Any] | None = None,
    ) -> "Conversation":
        """Create a conversation with metadata derived from its messages."""
        return cls(
            id=id,
            provider=provider,
            title=title,
            messages=messages,
            created_at=parse_timestamp(created_at),
            updated_at=parse_timestamp(updated_at),
            hierarchy=hierarchy or Hierarchy(),
            metadata=ConversationMetadata(
                message_count=len(messages),
                character_count=sum(len(m.content) for m in messages),
                media_count=sum(len(m.attachments) for m in messages),
                extra=dict(extra or {}),
            ),
        )

    @property
    def attachments(self) -> list[Attachment]:
        """All attachments across all messages, in message order."""
        return [a for m in self.messages for a in m.attachments]

    def to_dict(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "id": self.id,
            "provider": self.provider,
            "title": self.title,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "messages": [m.to_dict() for m in self.messages],
            "metadata": self.metadata.to_dict(),
        }
        if not self.hierarchy.is_empty():
            doc["hierarchy"] = self.hierarchy.to_dict()
        return doc

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Conversation":
        messages = [Message.from_dict(m) for m in data.get("messages") or []]
        metadata = ConversationMetadata.from_dict(data.get("metadata"))
        if not metadata.message_count:
            metadata.message_count = len(messages)
        if not metadata.media_count:
            metadata.media_count = sum(len(m.attachments) for m in messages)
        if not metadata.character_count:
            metadata.character_count = sum(len(m.content) for m in messages)
        return cls(
            id=str(data["id"]),
            provider=data.get("provider", ""),
            title=data.get("title") or "",
            messages=messages,
            created_at=parse_timestamp(data.get("createdAt") or 0),
            updated_at=parse_timestamp(data.get("updatedAt") or 0),
            hierarchy=Hierarchy.from_dict(data.get("hierarchy")),
            metadata=metadata,
        )


@dataclass
class ConversationSummary:
    """Lightweight listing entry returned by Provider.list_conversations."""

    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    message_count: int = 0
    has_media: bool = False
    preview: str | None = None


def _format_optional(value: datetime | None) -> str | None:
    return format_timestamp(value) if value is not None else None


def _parse_optional(value: Any) -> datetime | None:
    return parse_timestamp(value) if value not in (None, "") else None


@dataclass
class Asset:
    """A file kept in a provider's library, independent of any conversation."""

    id: str
    name: str
    type: str
    created_at: datetime
    url: str | None = None
    local_path: str | None = None
    mime_type: str | None = None
    size: int | None = None
    last_used_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "url": self.url,
            "localPath": self.local_path,
            "mimeType": self.mime_type,
            "size": self.size,
            "createdAt": format_timestamp(self.created_at),
            "lastUsedAt": _format_optional(self.last_used_at),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Asset":
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            type=data.get("type") or "file",
            created_at=parse_timestamp(data.get("createdAt") or 0),
            url=data.get("url"),
            local_path=data.get("localPath"),
            mime_type=data.get("mimeType"),
            size=data.get("size"),
            last_used_at=_parse_optional(data.get("lastUsedAt")),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class ProjectFile:
    name: str
    content: str
    path: str | None = None
    language: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "path": self.path, "language": self.language, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProjectFile":
        return cls(
            name=data.get("name") or "",
            content=data.get("content") or "",
            path=data.get("path"),
            language=data.get("language"),
        )


@dataclass
class Project:
    """A project inside a workspace: instructions, knowledge files, code."""

    id: str
    name: str
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    type: str | None = None
    content: str | None = None
    files: list[ProjectFile] = field(default_factory=list)
    last_used_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "content": self.content,
            "files": [f.to_dict() for f in self.files],
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "lastUsedAt": _format_optional(self.last_used_at),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            created_at=parse_timestamp(data.get("createdAt") or 0),
            updated_at=parse_timestamp(data.get("updatedAt") or data.get("createdAt") or 0),
            description=data.get("description"),
            type=data.get("type"),
            content=data.get("content"),
            files=[ProjectFile.from_dict(f) for f in data.get("files") or []],
            last_used_at=_parse_optional(data.get("lastUsedAt")),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class Workspace:
    """A provider-side grouping of projects (a "space" or "gem collection")."""

    id: str
    provider: str
    name: str
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    last_used_at: datetime | None = None
    projects: list[Project] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider,
            "name": self.name,
            "description": self.description,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "lastUsedAt": _format_optional(self.last_used_at),
            "projects": [p.to_dict() for p in self.projects],
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Workspace":
        return cls(
            id=str(data["id"]),
            provider=data.get("provider", ""),
            name=data.get("name") or "",
            created_at=parse_timestamp(data.get("createdAt") or 0),
            updated_at=parse_timestamp(data.get("updatedAt") or data.get("createdAt") or 0),
            description=data.get("description"),
            last_used_at=_parse_optional(data.get("lastUsedAt")),
            projects=[Project.from_dict(p) for p in data.get("projects") or []],
            metadata=dict(data.get("metadata") or {}),
        )
