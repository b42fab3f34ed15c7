"""Configuration loading and management."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

DEFAULT_SCOPES = [
    "https://www.googleapis.com/auth/chat.spaces.readonly",
    "https://www.googleapis.com/auth/chat.messages.readonly",
    "https://www.googleapis.com/auth/drive.readonly",
]

# 50 MB
DEFAULT_MAX_ATTACHMENT_BYTES = 50 * 1024 * 1024


@dataclass
class GoogleConfig:
    service_account_file: Path = field(
        default_factory=lambda: Path.home() / "chat-mirror" / "service-account.json"
    )
    scopes: list[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    organization_domain: str = "example.com"


@dataclass
class StorageConfig:
    database: Path = field(default_factory=lambda: Path.home() / "chat-mirror" / "state" / "mirror.db")
    media_root: Path = field(default_factory=lambda: Path.home() / "chat-mirror" / "media")
    max_attachment_bytes: int = DEFAULT_MAX_ATTACHMENT_BYTES
    download_timeout_seconds: float = 30.0
    retention_days: int = 180
    ffprobe_path: str = "ffprobe"
    ffmpeg_path: str = "ffmpeg"


@dataclass
class SyncConfig:
    interval_seconds: int = 6 * 60 * 60
    account_delay_seconds: float = 2.0
    page_size: int = 100
    max_pages: int = 0  # 0 = no cap
    accounts: list[str] = field(default_factory=list)


@dataclass
class TypesenseConfig:
    enabled: bool = False
    host: str = "localhost"
    port: int = 8108
    protocol: str = "http"
    api_key: str = "dev-api-key"


@dataclass
class Config:
    google: GoogleConfig = field(default_factory=GoogleConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    typesense: TypesenseConfig = field(default_factory=TypesenseConfig)


def expand_env_var(value: str) -> str:
    """Expand environment variables in string (e.g. ${VAR})."""
    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, value)
    return value


def expand_path(path_str: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(os.path.expanduser(str(path_str))))


def find_config_file() -> Path | None:
    """Return the first config file found in the standard locations."""
    search_paths = [
        Path.cwd() / "config.yaml",
        Path.home() / ".config" / "chat-mirror" / "config.yaml",
        Path("/etc/chat-mirror/config.yaml"),
    ]
    for path in search_paths:
        if path.exists():
            return path
    return None


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file."""
    if config_path is None:
        config_path = find_config_file()

    if config_path is None or not config_path.exists():
        return Config()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    defaults = Config()

    google_data = data.get("google", {}) or {}
    google = GoogleConfig(
        service_account_file=expand_path(
            expand_env_var(
                str(google_data.get("service_account_file", defaults.google.service_account_file))
            )
        ),
        scopes=list(google_data.get("scopes") or DEFAULT_SCOPES),
        organization_domain=google_data.get("organization_domain", defaults.google.organization_domain),
    )

    storage_data = data.get("storage", {}) or {}
    storage = StorageConfig(
        database=expand_path(storage_data.get("database", defaults.storage.database)),
        media_root=expand_path(storage_data.get("media_root", defaults.storage.media_root)),
        max_attachment_bytes=int(
            storage_data.get("max_attachment_bytes", DEFAULT_MAX_ATTACHMENT_BYTES)
        ),
        download_timeout_seconds=float(storage_data.get("download_timeout_seconds", 30.0)),
        retention_days=int(storage_data.get("retention_days", 180)),
        ffprobe_path=storage_data.get("ffprobe_path", "ffprobe"),
        ffmpeg_path=storage_data.get("ffmpeg_path", "ffmpeg"),
    )

    sync_data = data.get("sync", {}) or {}
    sync = SyncConfig(
        interval_seconds=int(sync_data.get("interval_seconds", defaults.sync.interval_seconds)),
        account_delay_seconds=float(sync_data.get("account_delay_seconds", 2.0)),
        page_size=int(sync_data.get("page_size", 100)),
        max_pages=int(sync_data.get("max_pages", 0)),
        accounts=[expand_env_var(email) for email in sync_data.get("accounts", []) or []],
    )

    # Parse typesense config
    ts_data = data.get("typesense", {}) or {}
    api_key = expand_env_var(ts_data.get("api_key", "dev-api-key"))

    typesense = TypesenseConfig(
        enabled=bool(ts_data.get("enabled", False)),
        host=ts_data.get("host", "localhost"),
        port=ts_data.get("port", 8108),
        protocol=ts_data.get("protocol", "http"),
        api_key=api_key,
    )

    return Config(
        google=google,
        storage=storage,
        sync=sync,
        typesense=typesense,
    )
