"""Exception hierarchy for convo-vault.

Per-attachment and per-conversation failures are caught at their boundary and
folded into result objects. Only setup failures (configuration, storage,
authentication, listing) propagate out of an archive pass.
"""


class VaultError(Exception):
    """Base class for all convo-vault errors."""


class ConfigurationError(VaultError):
    """Missing or invalid configuration. Fatal before a pass starts."""


class SyncError(VaultError):
    """An archive pass could not be set up (provider unreachable, storage unusable)."""


class ProviderError(VaultError):
    """Error reported by a provider collaborator."""


class AuthenticationError(ProviderError):
    """Provider credentials were rejected or have expired."""


class NotFoundError(ProviderError):
    """The requested conversation does not exist on the remote."""


class PermissionDeniedError(ProviderError):
    """Platform-specific access-scope denial. Never retried."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class RateLimitError(ProviderError):
    """The provider asked us to slow down."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class DownloadError(VaultError):
    """An attachment download failed with an HTTP status or transport error."""

    def __init__(self, message: str, url: str, status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429

    @property
    def is_gone(self) -> bool:
        """True for 404/403, the statuses an expired signed URL produces."""
        return self.status in (403, 404)
