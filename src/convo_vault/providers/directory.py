"""Provider that reads exported conversations from a local directory.

The directory holds one JSON document per conversation, in the same
camelCase layout convo-vault writes to ``conversation.json``. Useful for
archiving platform data exports and as the reference provider.

An optional ``library/`` subdirectory may hold ``assets.json`` and
``workspaces.json`` (lists in the archive's own camelCase layout).
"""

import json
from pathlib import Path

from convo_vault.config import ProviderConfig, expand_path
from convo_vault.errors import ConfigurationError, NotFoundError, PermissionDeniedError, ProviderError
from convo_vault.logging import get_logger
from convo_vault.models import Asset, Conversation, ConversationSummary, Workspace
from convo_vault.providers.base import ListOptions, Provider

logger = get_logger("providers.directory")

PREVIEW_LENGTH = 100

# Optional asset and workspace exports live in a subdirectory so the
# conversation glob never sees them
LIBRARY_DIRNAME = "library"


class DirectoryProvider(Provider):
    kind = "directory"
    display_name = "Local export directory"

    def __init__(self, name: str, config: ProviderConfig | None = None) -> None:
        super().__init__(name, config)
        path = self.config.options.get("path")
        if not path:
            raise ConfigurationError(f"Provider {name!r} needs options.path")
        self.root = expand_path(str(path))
        self.pattern = self.config.options.get("glob", "*.json")
        self._files: dict[str, Path] = {}
        self._authenticated = False

    async def authenticate(self, config: ProviderConfig) -> None:
        if not self.root.is_dir():
            raise ProviderError(f"Export directory does not exist: {self.root}")
        self._authenticated = True

    async def is_authenticated(self) -> bool:
        return self._authenticated

    def _read(self, path: Path) -> Conversation:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except PermissionError as exc:
            raise PermissionDeniedError(f"Cannot read {path}: {exc}", code="EACCES") from exc
        except ValueError as exc:
            raise ProviderError(f"Invalid JSON in {path}: {exc}") from exc

        try:
            conversation = Conversation.from_dict(data)
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise ProviderError(f"Malformed conversation export {path}: {exc!r}") from exc
        conversation.provider = self.name
        return conversation

    def _scan(self) -> dict[str, Path]:
        files: dict[str, Path] = {}
        for path in sorted(self.root.glob(self.pattern)):
            try:
                with open(path, encoding="utf-8") as f:
                    conv_id = json.load(f).get("id")
            except (OSError, json.JSONDecodeError, AttributeError) as exc:
                logger.warning("Skipping unreadable export: path=%s error=%s", path, exc)
                continue
            if conv_id:
                files[str(conv_id)] = path
        self._files = files
        return files

    async def list_conversations(self, options: ListOptions) -> list[ConversationSummary]:
        summaries: list[ConversationSummary] = []
        for path in self._scan().values():
            conversation = self._read(path)
            if options.since and conversation.updated_at < options.since:
                continue
            if options.until and conversation.updated_at > options.until:
                continue

            preview = None
            if conversation.messages:
                preview = conversation.messages[0].content[:PREVIEW_LENGTH]

            summaries.append(
                ConversationSummary(
                    id=conversation.id,
                    title=conversation.title,
                    created_at=conversation.created_at,
                    updated_at=conversation.updated_at,
                    message_count=conversation.metadata.message_count,
                    has_media=conversation.metadata.media_count > 0,
                    preview=preview,
                )
            )

        summaries.sort(key=lambda s: s.updated_at, reverse=True)
        if options.limit is not None:
            summaries = summaries[: options.limit]
        return summaries

    async def fetch_conversation(self, conversation_id: str) -> Conversation:
        path = self._files.get(conversation_id)
        if path is None:
            path = self._scan().get(conversation_id)
        if path is None or not path.exists():
            raise NotFoundError(f"Conversation {conversation_id} not found in {self.root}")
        return self._read(path)

    def _read_library(self, filename: str) -> list | None:
        path = self.root / LIBRARY_DIRNAME / filename
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except PermissionError as exc:
            raise PermissionDeniedError(f"Cannot read {path}: {exc}", code="EACCES") from exc
        except ValueError as exc:
            raise ProviderError(f"Invalid JSON in {path}: {exc}") from exc
        if not isinstance(data, list):
            raise ProviderError(f"Expected a list in {path}")
        return data

    async def list_assets(self) -> list[Asset] | None:
        data = self._read_library("assets.json")
        if data is None:
            return None
        try:
            return [Asset.from_dict(item) for item in data]
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise ProviderError(f"Malformed asset export: {exc!r}") from exc

    async def list_workspaces(self) -> list[Workspace] | None:
        data = self._read_library("workspaces.json")
        if data is None:
            return None
        try:
            workspaces = [Workspace.from_dict(item) for item in data]
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise ProviderError(f"Malformed workspace export: {exc!r}") from exc
        for workspace in workspaces:
            workspace.provider = self.name
        return workspaces
