"""Application configuration loaded via python-decouple with typed helpers."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Final

from decouple import Config as DecoupleConfig, RepositoryEmpty, RepositoryEnv

_DOTENV_PATH: Final[Path] = Path(".env")

DEFAULT_GRAPH_SCOPES: Final[str] = "User.Read,Mail.ReadWrite,Mail.Send,Sites.ReadWrite.All,User.ReadBasic.All"


def _decouple_config() -> DecoupleConfig:
    if _DOTENV_PATH.exists():
        return DecoupleConfig(RepositoryEnv(str(_DOTENV_PATH)))
    return DecoupleConfig(RepositoryEmpty())


@dataclass(slots=True, frozen=True)
class GraphSettings:
    """Microsoft Graph and SharePoint list coordinates."""

    base_url: str
    timeout_seconds: float
    site_id: str
    list_id: str
    site_url: str
    filter_mode: str  # "server" | "client" | "auto"
    page_size: int
    directory_page_size: int


@dataclass(slots=True, frozen=True)
class IdentitySettings:
    """Public-client identity configuration."""

    client_id: str
    authority: str
    scopes: list[str]
    sharepoint_tenant: str


@dataclass(slots=True, frozen=True)
class HostSettings:
    """Mail host signals that are not read from the message itself."""

    platform: str
    desktop_platforms: list[str]
    thread_index_fallback_platforms: list[str]
    user_display_name: str
    poll_interval_seconds: float
    poll_max_attempts: int


@dataclass(slots=True, frozen=True)
class SyncSettings:
    """Polling refresh behaviour."""

    refresh_interval_seconds: float


@dataclass(slots=True, frozen=True)
class Settings:
    """Top-level application settings."""

    environment: str
    graph: GraphSettings
    identity: IdentitySettings
    host: HostSettings
    sync: SyncSettings
    # Logging
    log_level: str
    log_rich_enabled: bool
    log_json_enabled: bool


def _bool(value: str, *, default: bool) -> bool:
    normalized = value.strip().lower()
    if normalized in {"1", "true", "t", "yes", "y"}:
        return True
    if normalized in {"0", "false", "f", "no", "n"}:
        return False
    return default


def _int(value: str, *, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _float(value: str, *, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _csv(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""
    config = _decouple_config()
    environment = config("APP_ENVIRONMENT", default="development")

    filter_mode = config("STORE_FILTER_MODE", default="auto").strip().lower()
    if filter_mode not in {"server", "client", "auto"}:
        filter_mode = "auto"

    graph_settings = GraphSettings(
        base_url=config("GRAPH_BASE_URL", default="https://graph.microsoft.com/v1.0").rstrip("/"),
        timeout_seconds=_float(config("GRAPH_TIMEOUT_SECONDS", default="30"), default=30.0),
        site_id=config("SHAREPOINT_SITE_ID", default=""),
        list_id=config("SHAREPOINT_LIST_ID", default=""),
        site_url=config("SHAREPOINT_SITE_URL", default="").rstrip("/"),
        filter_mode=filter_mode,
        page_size=_int(config("STORE_PAGE_SIZE", default="200"), default=200),
        directory_page_size=_int(config("DIRECTORY_PAGE_SIZE", default="50"), default=50),
    )

    identity_settings = IdentitySettings(
        client_id=config("AZURE_CLIENT_ID", default=""),
        authority=config("AZURE_AUTHORITY", default="https://login.microsoftonline.com/common"),
        scopes=_csv(config("GRAPH_SCOPES", default=DEFAULT_GRAPH_SCOPES)),
        sharepoint_tenant=config("SHAREPOINT_TENANT", default=""),
    )

    host_settings = HostSettings(
        platform=config("HOST_PLATFORM", default="OfficeOnline"),
        desktop_platforms=_csv(config("HOST_DESKTOP_PLATFORMS", default="PC,Mac")),
        thread_index_fallback_platforms=_csv(config("THREAD_INDEX_FALLBACK_PLATFORMS", default="Mac")),
        user_display_name=config("MAIL_USER_DISPLAY_NAME", default=""),
        poll_interval_seconds=_float(config("HOST_POLL_INTERVAL_SECONDS", default="0.1"), default=0.1),
        poll_max_attempts=max(1, _int(config("HOST_POLL_MAX_ATTEMPTS", default="600"), default=600)),
    )

    sync_settings = SyncSettings(
        refresh_interval_seconds=_float(config("SYNC_REFRESH_INTERVAL_SECONDS", default="15"), default=15.0),
    )

    return Settings(
        environment=environment,
        graph=graph_settings,
        identity=identity_settings,
        host=host_settings,
        sync=sync_settings,
        log_level=config("LOG_LEVEL", default="INFO"),
        log_rich_enabled=_bool(config("LOG_RICH_ENABLED", default="true"), default=True),
        log_json_enabled=_bool(config("LOG_JSON_ENABLED", default="false"), default=False),
    )


def clear_settings_cache() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()
