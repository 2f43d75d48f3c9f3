"""convo-vault: incremental, deduplicated archive of chat conversations."""

__version__ = "0.1.0"
