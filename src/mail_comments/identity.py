"""Token broker for the collaboration and document-store audiences.

Acquisition always tries the identity library's silent path first. When no
account is cached, one interactive sign-in is performed and shared by every
audience; when silent acquisition still fails for an audience (typically
missing consent for the SharePoint scope) a prompt scoped to that audience
alone is shown. The library's own token cache is the only cache: callers
re-acquire per logical operation.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol

import msal
import structlog

from .config import Settings
from .errors import AuthRequired
from .models import AccessToken, Audience
from .profile import TransportProfile

_logger = structlog.get_logger(__name__)


class IdentityClient(Protocol):
    """The subset of ``msal.PublicClientApplication`` the broker relies on."""

    def get_accounts(self, username: Optional[str] = None) -> list[dict[str, Any]]: ...

    def acquire_token_silent(self, scopes: list[str], account: Optional[dict[str, Any]], **kwargs: Any) -> Optional[dict[str, Any]]: ...

    def acquire_token_interactive(self, scopes: list[str], **kwargs: Any) -> dict[str, Any]: ...


def build_identity_client(settings: Settings) -> msal.PublicClientApplication:
    if not settings.identity.client_id:
        raise ValueError("AZURE_CLIENT_ID must be configured to sign in.")
    return msal.PublicClientApplication(
        settings.identity.client_id,
        authority=settings.identity.authority,
    )


def _token_from_result(audience: Audience, result: dict[str, Any]) -> AccessToken:
    expires_on: datetime | None = None
    expires_in = result.get("expires_in")
    if expires_in is not None:
        try:
            expires_on = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
        except (TypeError, ValueError):
            expires_on = None
    return AccessToken(audience=audience, value=str(result["access_token"]), expires_on=expires_on)


def _describe_failure(result: Optional[dict[str, Any]]) -> str:
    if not result:
        return "no result"
    error = result.get("error") or "unknown_error"
    description = str(result.get("error_description") or "").splitlines()
    return f"{error}: {description[0]}" if description else str(error)


class TokenBroker:
    """Acquires audience-scoped access tokens with silent-then-interactive escalation."""

    def __init__(self, client: IdentityClient, profile: TransportProfile) -> None:
        self._client = client
        self._profile = profile
        self._account: Optional[dict[str, Any]] = None
        self._sign_in_lock = asyncio.Lock()

    @property
    def profile(self) -> TransportProfile:
        return self._profile

    async def acquire(self, audience: Audience) -> AccessToken:
        """Return a token for ``audience``; raises ``AuthRequired`` if prompting fails."""
        scopes = self._profile.scopes_for(audience)
        if not scopes:
            raise AuthRequired(audience.value, "No scopes configured for this audience.")

        account = await self._ensure_account(scopes, audience)
        result = await asyncio.to_thread(self._client.acquire_token_silent, scopes, account=account)
        if result and "access_token" in result:
            _logger.debug("identity.silent.ok", audience=audience.value)
            return _token_from_result(audience, result)

        _logger.info("identity.silent.failed", audience=audience.value, reason=_describe_failure(result))
        result = await self._interactive(scopes, audience, account=account)
        return _token_from_result(audience, result)

    async def _ensure_account(self, scopes: list[str], audience: Audience) -> dict[str, Any]:
        if self._account is not None:
            return self._account
        async with self._sign_in_lock:
            if self._account is not None:
                return self._account
            accounts = await asyncio.to_thread(self._client.get_accounts)
            if accounts:
                self._account = accounts[0]
                return self._account
            _logger.info("identity.sign_in", audience=audience.value)
            await self._interactive(scopes, audience, account=None)
            accounts = await asyncio.to_thread(self._client.get_accounts)
            if not accounts:
                raise AuthRequired(audience.value, "Sign-in completed without an account.")
            self._account = accounts[0]
            return self._account

    async def _interactive(
        self,
        scopes: list[str],
        audience: Audience,
        *,
        account: Optional[dict[str, Any]],
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if account is not None and account.get("username"):
            kwargs["login_hint"] = account["username"]
        try:
            result = await asyncio.to_thread(self._client.acquire_token_interactive, scopes, **kwargs)
        except Exception as exc:
            # The library raises when the browser flow is aborted or cannot start
            raise AuthRequired(audience.value, str(exc)) from exc
        if not result or "access_token" not in result:
            raise AuthRequired(audience.value, _describe_failure(result))
        _logger.info("identity.interactive.ok", audience=audience.value)
        return result
