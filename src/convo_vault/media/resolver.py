"""Lazy resolution of expired signed asset URLs.

Some platforms hand out media links that expire. When a download of such a
link fails with 404/403, one metadata lookup against a secondary endpoint
yields the asset's storage key, from which a fresh URL is built.
"""

import re
from dataclasses import dataclass

import httpx

from convo_vault.config import LinkResolverConfig
from convo_vault.logging import get_logger

logger = get_logger("resolver")


@dataclass
class LinkResolver:
    """Describes one platform's expiring-URL shape.

    ``pattern`` must capture the asset id in its first group. ``metadata_url``
    and ``asset_url`` are format strings taking ``{asset_id}`` and ``{key}``.
    """

    name: str
    pattern: str
    metadata_url: str
    asset_url: str
    key_field: str = "key"

    def __post_init__(self) -> None:
        self._regex = re.compile(self.pattern, re.IGNORECASE)

    @classmethod
    def from_config(cls, config: LinkResolverConfig) -> "LinkResolver":
        return cls(
            name=config.name,
            pattern=config.pattern,
            metadata_url=config.metadata_url,
            asset_url=config.asset_url,
            key_field=config.key_field,
        )

    def asset_id(self, url: str) -> str | None:
        match = self._regex.search(url)
        return match.group(1) if match else None

    def matches(self, url: str) -> bool:
        return self.asset_id(url) is not None

    async def resolve(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str] | None = None,
    ) -> str | None:
        """Look up a fresh URL for ``url``. Returns None when it cannot be resolved."""
        asset_id = self.asset_id(url)
        if asset_id is None:
            return None

        lookup = self.metadata_url.format(asset_id=asset_id)
        try:
            response = await client.get(lookup, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Asset lookup failed: resolver=%s asset=%s error=%s", self.name, asset_id, exc)
            return None

        if response.status_code >= 400:
            logger.warning(
                "Asset lookup rejected: resolver=%s asset=%s status=%d",
                self.name,
                asset_id,
                response.status_code,
            )
            return None

        try:
            payload = response.json()
        except ValueError:
            return None

        key = payload.get(self.key_field) if isinstance(payload, dict) else None
        if not key:
            return None

        resolved = self.asset_url.format(asset_id=asset_id, key=key)
        logger.info("Resolved expired asset URL: resolver=%s asset=%s", self.name, asset_id)
        return resolved


GROK_GENERATED_ASSETS = LinkResolver(
    name="grok-generated",
    pattern=r"grok\.com/(?:.*/)?generated/([a-f0-9-]{36})/",
    metadata_url="https://grok.com/rest/assets/{asset_id}",
    asset_url="https://assets.grok.com/{key}",
)

DEFAULT_LINK_RESOLVERS = (GROK_GENERATED_ASSETS,)


def build_resolvers(configs: list[LinkResolverConfig] | None) -> tuple[LinkResolver, ...]:
    """Resolvers from configuration, or the built-in set when unconfigured."""
    if configs is None:
        return DEFAULT_LINK_RESOLVERS
    return tuple(LinkResolver.from_config(c) for c in configs)


def find_resolver(url: str, resolvers: tuple[LinkResolver, ...]) -> LinkResolver | None:
    for resolver in resolvers:
        if resolver.matches(url):
            return resolver
    return None
