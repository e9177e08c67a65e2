"""Directory lookup feeding the mention picker."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx
import structlog

from .config import Settings
from .graph import bearer_headers, json_object
from .identity import TokenBroker
from .mentions import format_mention
from .models import Audience

_logger = structlog.get_logger(__name__)


@dataclass(slots=True, frozen=True)
class DirectoryPerson:
    display_name: str
    address: str

    @property
    def mention(self) -> str:
        return format_mention(self.display_name, self.address)


def _person_from_user(user: Any) -> Optional[DirectoryPerson]:
    if not isinstance(user, dict):
        return None
    address = user.get("mail") or user.get("userPrincipalName")
    if not address:
        return None
    display_name = str(user.get("displayName") or address)
    try:
        format_mention(display_name, str(address))
    except ValueError as exc:
        # Markup cannot carry brackets in names or spaces in addresses
        _logger.warning("directory.person.skipped", display_name=display_name, error=str(exc))
        return None
    return DirectoryPerson(display_name=display_name, address=str(address))


class DirectoryClient:
    def __init__(self, settings: Settings, broker: TokenBroker, http: httpx.AsyncClient) -> None:
        self._users_url = f"{settings.graph.base_url}/users"
        self._page_size = settings.graph.directory_page_size
        self._broker = broker
        self._http = http

    async def people(self) -> list[DirectoryPerson]:
        """Return the first page of directory users; empty on failure."""
        token = await self._broker.acquire(Audience.COLLABORATION)
        try:
            response = await self._http.get(
                self._users_url,
                headers=bearer_headers(token),
                params={"$top": str(self._page_size), "$select": "displayName,mail,userPrincipalName"},
            )
            response.raise_for_status()
            users = json_object(response).get("value") or []
        except (httpx.HTTPError, ValueError) as exc:
            _logger.warning("directory.people.failed", error=str(exc))
            return []
        people = [_person_from_user(user) for user in (users if isinstance(users, list) else [])]
        return [person for person in people if person is not None]
