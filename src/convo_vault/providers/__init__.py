"""Conversation sources for the archive pass."""

from .base import ListOptions, Provider, ProviderFactory, ProviderRegistry
from .directory import DirectoryProvider

__all__ = [
    "DirectoryProvider",
    "ListOptions",
    "Provider",
    "ProviderFactory",
    "ProviderRegistry",
]

# Register built-in providers
ProviderRegistry.register(DirectoryProvider.kind, DirectoryProvider)
