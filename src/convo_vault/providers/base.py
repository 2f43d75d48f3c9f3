"""Base provider interface and registry."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from convo_vault.config import ProviderConfig
from convo_vault.errors import ConfigurationError
from convo_vault.models import Asset, Conversation, ConversationSummary, Workspace

__all__ = ["ListOptions", "Provider", "ProviderFactory", "ProviderRegistry"]


@dataclass
class ListOptions:
    since: datetime | None = None
    until: datetime | None = None
    limit: int | None = None


class Provider(ABC):
    """Source of conversations from one chat platform.

    Implementations normalize whatever the platform returns into
    Conversation/Message/Attachment before handing it over. Download
    credentials are exposed through ``cookies`` and ``access_token``.
    """

    kind: str
    display_name: str = ""
    rate_limit_sensitive: bool = False

    def __init__(self, name: str, config: ProviderConfig | None = None) -> None:
        self.name = name
        self.config = config or ProviderConfig(kind=self.kind)
        if config is not None and config.rate_limit_sensitive:
            self.rate_limit_sensitive = True

    @property
    def cookies(self) -> dict[str, str] | None:
        return self.config.cookies or None

    @property
    def access_token(self) -> str | None:
        return self.config.access_token

    @abstractmethod
    async def authenticate(self, config: ProviderConfig) -> None:
        """Establish a session.

        Raises:
            AuthenticationError: If the credentials are rejected
        """

    @abstractmethod
    async def is_authenticated(self) -> bool:
        """Whether the current session can list and fetch."""

    @abstractmethod
    async def list_conversations(self, options: ListOptions) -> list[ConversationSummary]:
        """List remote conversations matching ``options``, newest first."""

    @abstractmethod
    async def fetch_conversation(self, conversation_id: str) -> Conversation:
        """Fetch one full conversation.

        Raises:
            NotFoundError: If the conversation no longer exists
            PermissionDeniedError: If the session may not read it
            RateLimitError: If the platform asks us to back off
        """

    async def list_assets(self) -> list[Asset] | None:
        """The provider's asset library, or None if the platform has none."""
        return None

    async def list_workspaces(self) -> list[Workspace] | None:
        """Workspaces with their projects, or None if the platform has none."""
        return None

    async def cleanup(self) -> None:
        """Release sessions or browsers. Optional."""


ProviderFactory = Callable[[str, ProviderConfig], Provider]


class ProviderRegistry:
    """Registry of provider factories by kind."""

    _factories: dict[str, ProviderFactory] = {}

    @classmethod
    def register(cls, kind: str, factory: ProviderFactory) -> None:
        """Register a provider factory."""
        cls._factories[kind] = factory

    @classmethod
    def get(cls, kind: str) -> ProviderFactory | None:
        """Get factory by kind."""
        return cls._factories.get(kind)

    @classmethod
    def kinds(cls) -> list[str]:
        """List all registered provider kinds."""
        return list(cls._factories.keys())

    @classmethod
    def create(cls, name: str, config: ProviderConfig) -> Provider:
        """Instantiate the configured provider ``name``.

        Raises:
            ConfigurationError: If no factory is registered for its kind
        """
        factory = cls._factories.get(config.kind)
        if factory is None:
            raise ConfigurationError(
                f"Provider {name!r} has unknown kind {config.kind!r}; "
                f"available: {', '.join(sorted(cls._factories)) or 'none'}"
            )
        return factory(name, config)
