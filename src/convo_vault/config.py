"""Configuration loading and management."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from convo_vault.errors import ConfigurationError

VALID_FORMATS = ("json", "markdown", "json.gz")
DEFAULT_UNSUPPORTED_PREFIXES = ["file-service://", "sediment://"]


@dataclass
class StorageConfig:
    formats: list[str] = field(default_factory=lambda: ["json", "markdown"])
    organize_by_date: bool = False


@dataclass
class LinkResolverConfig:
    name: str
    pattern: str
    metadata_url: str
    asset_url: str
    key_field: str = "key"


@dataclass
class MediaConfig:
    concurrency: int | None = None  # None = clamp(cpu_count // 2, 2, 5)
    max_retries: int = 3
    retry_base_delay: float = 5.0
    rate_limit_delay: float = 0.5
    timeout_seconds: float = 60.0
    unsupported_prefixes: list[str] = field(
        default_factory=lambda: list(DEFAULT_UNSUPPORTED_PREFIXES)
    )
    link_resolvers: list[LinkResolverConfig] | None = None  # None = built-in defaults


@dataclass
class ReconcileConfig:
    tolerance_ms: int = 1000
    full_parity_concurrency: int = 2
    hierarchy_sample: int = 20


@dataclass
class ProviderConfig:
    kind: str = "directory"
    enabled: bool = True
    rate_limit_sensitive: bool = False
    cookies: dict[str, str] = field(default_factory=dict)
    access_token: str | None = None
    api_key: str | None = None
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class Config:
    archive_dir: Path = field(default_factory=lambda: Path.home() / "convo-vault" / "archive")
    log_dir: Path = field(default_factory=lambda: Path.home() / "convo-vault" / "logs")
    storage: StorageConfig = field(default_factory=StorageConfig)
    media: MediaConfig = field(default_factory=MediaConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    providers: dict[str, ProviderConfig] = field(default_factory=dict)

    def enabled_providers(self) -> list[str]:
        """Names of configured providers that are not disabled."""
        return [name for name, cfg in self.providers.items() if cfg.enabled]


def expand_env_var(value: str) -> str:
    """Expand environment variables in string (e.g. ${VAR})."""
    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, value)
    return value


def expand_path(path_str: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(os.path.expanduser(path_str)))


def _positive(value: Any, name: str, allow_zero: bool = False) -> Any:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigurationError(f"{name} must be positive, got {value!r}")
    return value


def _parse_storage(data: dict[str, Any]) -> StorageConfig:
    formats = data.get("formats", ["json", "markdown"])
    if isinstance(formats, str):
        formats = [formats]
    for fmt in formats:
        if fmt not in VALID_FORMATS:
            raise ConfigurationError(
                f"Unknown storage format {fmt!r}; expected one of {', '.join(VALID_FORMATS)}"
            )
    if not formats:
        raise ConfigurationError("storage.formats must list at least one format")
    return StorageConfig(
        formats=list(formats),
        organize_by_date=bool(data.get("organize_by_date", False)),
    )


def _parse_media(data: dict[str, Any]) -> MediaConfig:
    concurrency = data.get("concurrency")
    if concurrency is not None:
        _positive(concurrency, "media.concurrency")

    resolvers = None
    if "link_resolvers" in data:
        resolvers = []
        for entry in data.get("link_resolvers") or []:
            try:
                resolvers.append(
                    LinkResolverConfig(
                        name=entry["name"],
                        pattern=entry["pattern"],
                        metadata_url=entry["metadata_url"],
                        asset_url=entry["asset_url"],
                        key_field=entry.get("key_field", "key"),
                    )
                )
            except (KeyError, TypeError) as exc:
                raise ConfigurationError(f"Invalid link resolver entry: {entry!r}") from exc

    return MediaConfig(
        concurrency=concurrency,
        max_retries=_positive(data.get("max_retries", 3), "media.max_retries", allow_zero=True),
        retry_base_delay=_positive(
            data.get("retry_base_delay", 5.0), "media.retry_base_delay", allow_zero=True
        ),
        rate_limit_delay=_positive(
            data.get("rate_limit_delay", 0.5), "media.rate_limit_delay", allow_zero=True
        ),
        timeout_seconds=_positive(data.get("timeout_seconds", 60.0), "media.timeout_seconds"),
        unsupported_prefixes=list(
            data.get("unsupported_prefixes", DEFAULT_UNSUPPORTED_PREFIXES)
        ),
        link_resolvers=resolvers,
    )


def _parse_reconcile(data: dict[str, Any]) -> ReconcileConfig:
    return ReconcileConfig(
        tolerance_ms=_positive(data.get("tolerance_ms", 1000), "reconcile.tolerance_ms", allow_zero=True),
        full_parity_concurrency=_positive(
            data.get("full_parity_concurrency", 2), "reconcile.full_parity_concurrency"
        ),
        hierarchy_sample=_positive(
            data.get("hierarchy_sample", 20), "reconcile.hierarchy_sample", allow_zero=True
        ),
    )


def _parse_provider(name: str, data: dict[str, Any] | None) -> ProviderConfig:
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Provider {name!r} must be a mapping")

    cookies = {
        str(key): expand_env_var(str(value))
        for key, value in (data.get("cookies") or {}).items()
    }
    access_token = data.get("access_token")
    api_key = data.get("api_key")

    return ProviderConfig(
        kind=data.get("kind", "directory"),
        enabled=data.get("enabled", True),
        rate_limit_sensitive=data.get("rate_limit_sensitive", False),
        cookies=cookies,
        access_token=expand_env_var(access_token) if access_token else None,
        api_key=expand_env_var(api_key) if api_key else None,
        options=dict(data.get("options") or {}),
    )


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file."""
    if config_path is None:
        # Look for config in standard locations
        search_paths = [
            Path.cwd() / "config.yaml",
            Path.home() / ".config" / "convo-vault" / "config.yaml",
            Path("/etc/convo-vault/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = path
                break

    if config_path is None or not config_path.exists():
        return Config()

    with open(config_path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config root must be a mapping: {config_path}")

    providers = {
        name: _parse_provider(name, provider_data)
        for name, provider_data in (data.get("providers") or {}).items()
    }

    defaults = Config()
    archive_dir = data.get("archive_dir")
    log_dir = data.get("log_dir")

    return Config(
        archive_dir=expand_path(archive_dir) if archive_dir else defaults.archive_dir,
        log_dir=expand_path(log_dir) if log_dir else defaults.log_dir,
        storage=_parse_storage(data.get("storage") or {}),
        media=_parse_media(data.get("media") or {}),
        reconcile=_parse_reconcile(data.get("reconcile") or {}),
        providers=providers,
    )
