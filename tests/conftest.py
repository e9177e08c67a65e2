from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from mail_comments import rich_logger
from mail_comments.config import Settings, get_settings
from mail_comments.models import AccessToken, Audience
from mail_comments.profile import TransportProfile, select_profile

SITE_ID = "site-1"
LIST_ID = "list-1"
GRAPH = "https://graph.test/v1.0"
SITE_URL = "https://contoso.sharepoint.com/sites/ops"


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    """Keep the CLI from binding structlog to a test runner's stream."""
    monkeypatch.setattr(rich_logger, "_LOGGING_CONFIGURED", True)


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    """Provide isolated settings for tests and reset caches."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("APP_ENVIRONMENT", "test")
    monkeypatch.setenv("GRAPH_BASE_URL", GRAPH)
    monkeypatch.setenv("SHAREPOINT_SITE_ID", SITE_ID)
    monkeypatch.setenv("SHAREPOINT_LIST_ID", LIST_ID)
    monkeypatch.setenv("SHAREPOINT_SITE_URL", SITE_URL)
    monkeypatch.setenv("SHAREPOINT_TENANT", "contoso")
    monkeypatch.setenv("AZURE_CLIENT_ID", "00000000-0000-0000-0000-000000000001")
    monkeypatch.setenv("HOST_PLATFORM", "OfficeOnline")
    monkeypatch.setenv("MAIL_USER_DISPLAY_NAME", "Dana Reviewer")
    monkeypatch.setenv("HOST_POLL_INTERVAL_SECONDS", "0.001")
    monkeypatch.setenv("HOST_POLL_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("SYNC_REFRESH_INTERVAL_SECONDS", "3600")
    get_settings.cache_clear()
    try:
        yield
    finally:
        get_settings.cache_clear()


@pytest.fixture
def settings(isolated_env) -> Settings:
    return get_settings()


@pytest.fixture
def web_profile(settings) -> TransportProfile:
    return select_profile(settings, "OfficeOnline")


@pytest.fixture
def desktop_profile(settings) -> TransportProfile:
    return select_profile(settings, "PC")


class StubBroker:
    """Hands out fixed tokens and records which audiences were requested."""

    def __init__(self, profile: TransportProfile | None = None) -> None:
        self.profile = profile
        self.requests: list[Audience] = []

    async def acquire(self, audience: Audience) -> AccessToken:
        self.requests.append(audience)
        return AccessToken(audience=audience, value=f"tok-{audience.value}")


@pytest.fixture
def broker(web_profile) -> StubBroker:
    return StubBroker(web_profile)


@pytest.fixture
def mock_http() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    def _factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _factory
