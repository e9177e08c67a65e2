"""Platform capabilities selected once from the host's platform signal."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from .config import Settings
from .models import Audience

UploadProtocol = Literal["add_endpoint", "content_put"]


@dataclass(slots=True, frozen=True)
class TransportProfile:
    """Everything that differs between desktop and non-desktop mail hosts.

    Components receive the profile instead of re-checking the platform at
    each call site.
    """

    platform: str
    desktop: bool
    upload_protocol: UploadProtocol
    thread_index_fallback: bool
    collaboration_scopes: tuple[str, ...]
    document_store_scopes: tuple[str, ...]

    def scopes_for(self, audience: Audience) -> list[str]:
        if audience is Audience.COLLABORATION:
            return list(self.collaboration_scopes)
        return list(self.document_store_scopes)


def document_store_scope(tenant: str, *, desktop: bool) -> str:
    resource = f"https://{tenant}.sharepoint.com"
    if desktop:
        return f"{resource}/AllSites.Write"
    return f"{resource}/.default"


def select_profile(settings: Settings, platform: str | None = None) -> TransportProfile:
    """Build the profile for ``platform`` (defaults to the configured host platform)."""
    resolved = (platform or settings.host.platform).strip()
    lowered = resolved.lower()
    desktop = lowered in {p.lower() for p in settings.host.desktop_platforms}
    fallback = lowered in {p.lower() for p in settings.host.thread_index_fallback_platforms}
    tenant = settings.identity.sharepoint_tenant
    document_scopes: tuple[str, ...] = (document_store_scope(tenant, desktop=desktop),) if tenant else ()
    return TransportProfile(
        platform=resolved,
        desktop=desktop,
        upload_protocol="add_endpoint" if desktop else "content_put",
        thread_index_fallback=fallback,
        collaboration_scopes=tuple(settings.identity.scopes),
        document_store_scopes=document_scopes,
    )
