"""Shared fixtures and fakes for convo-vault tests."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest

from convo_vault.config import ProviderConfig
from convo_vault.media.store import MediaSettings, MediaStore
from convo_vault.models import (
    Asset,
    Attachment,
    Conversation,
    ConversationSummary,
    Message,
    Project,
    ProjectFile,
    Workspace,
)
from convo_vault.providers.base import ListOptions, Provider

T0 = datetime(2025, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


def make_conversation(
    conv_id: str = "conv-1",
    provider: str = "fake",
    title: str = "Test conversation",
    attachments: list[Attachment] | None = None,
    messages: int = 2,
    updated_at: datetime = T0,
) -> Conversation:
    """Build a conversation whose first message carries ``attachments``."""
    msgs = [
        Message(
            id=f"{conv_id}-m{i}",
            role="user" if i % 2 == 0 else "assistant",
            content=f"message {i}",
            timestamp=T0 + timedelta(seconds=i),
            attachments=list(attachments or []) if i == 0 else [],
        )
        for i in range(messages)
    ]
    return Conversation.build(
        id=conv_id,
        provider=provider,
        title=title,
        messages=msgs,
        created_at=T0,
        updated_at=updated_at,
    )


def make_workspace(ws_id: str = "ws-1", provider: str = "fake") -> Workspace:
    """A workspace holding one project with one knowledge file."""
    project = Project(
        id="proj/1",
        name="Launch plan",
        created_at=T0,
        updated_at=T0 + timedelta(hours=1),
        description="Planning notes",
        type="instructions",
        content="Be concise.",
        files=[ProjectFile(name="notes.md", content="# Notes\n", path="docs/notes.md", language="markdown")],
    )
    return Workspace(
        id=ws_id,
        provider=provider,
        name="Research",
        created_at=T0,
        updated_at=T0,
        description="Shared research space",
        projects=[project],
        metadata={"color": "blue"},
    )


def make_asset(asset_id: str = "asset-1", asset_type: str = "image") -> Asset:
    return Asset(
        id=asset_id,
        name=f"{asset_id}.png",
        type=asset_type,
        created_at=T0,
        url=f"https://cdn.example.com/{asset_id}.png",
        mime_type="image/png",
        size=123,
    )


class FakeProvider(Provider):
    """In-memory provider that records every fetch."""

    kind = "fake"
    display_name = "Fake"

    def __init__(
        self,
        conversations: list[Conversation] | None = None,
        name: str = "fake",
        config: ProviderConfig | None = None,
    ) -> None:
        super().__init__(name, config)
        self.conversations = {c.id: c for c in conversations or []}
        self.summary_overrides: dict[str, dict] = {}
        self.fetch_errors: dict[str, list[Exception]] = {}
        self.list_error: Exception | None = None
        self.fetched: list[str] = []
        self.cleaned_up = False
        self.assets: list[Asset] | None = None
        self.workspaces: list[Workspace] | None = None
        self.library_error: Exception | None = None

    async def authenticate(self, config: ProviderConfig) -> None:
        pass

    async def is_authenticated(self) -> bool:
        return True

    async def list_conversations(self, options: ListOptions) -> list[ConversationSummary]:
        if self.list_error is not None:
            raise self.list_error
        summaries = []
        for conv in self.conversations.values():
            fields = {
                "id": conv.id,
                "title": conv.title,
                "created_at": conv.created_at,
                "updated_at": conv.updated_at,
                "message_count": len(conv.messages),
                "has_media": bool(conv.attachments),
            }
            fields.update(self.summary_overrides.get(conv.id, {}))
            summaries.append(ConversationSummary(**fields))
        if options.limit is not None:
            summaries = summaries[: options.limit]
        return summaries

    async def fetch_conversation(self, conversation_id: str) -> Conversation:
        self.fetched.append(conversation_id)
        pending = self.fetch_errors.get(conversation_id)
        if pending:
            raise pending.pop(0)
        return self.conversations[conversation_id]

    async def list_assets(self) -> list[Asset] | None:
        if self.library_error is not None:
            raise self.library_error
        return self.assets

    async def list_workspaces(self) -> list[Workspace] | None:
        return self.workspaces

    async def cleanup(self) -> None:
        self.cleaned_up = True


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def mock_client(routes: dict[str, httpx.Response | list[httpx.Response]]) -> tuple[httpx.AsyncClient, list[str]]:
    """AsyncClient serving canned responses per URL and recording requested URLs.

    A list of responses is consumed in order; the last one repeats.
    """
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        requested.append(url)
        response = routes.get(url)
        if response is None:
            return httpx.Response(404)
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), requested


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def media_factory(tmp_path: Path, sleep: RecordingSleep):
    """Build MediaStores under tmp_path/archive sharing one mocked client."""

    def build(routes: dict, concurrency: int = 2):
        client, requested = mock_client(routes)
        settings = MediaSettings(concurrency=concurrency, sleep=sleep)

        def factory(provider_name: str, rate_limit_sensitive: bool) -> MediaStore:
            return MediaStore(
                tmp_path / "archive",
                provider_name,
                client=client,
                settings=settings,
                rate_limit_sensitive=rate_limit_sensitive,
            )

        return factory, requested

    return build
