"""Mail host boundary: reading the currently open message."""

from __future__ import annotations

import asyncio
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from pathlib import Path
from typing import Optional, Protocol

import structlog

from .errors import HostNotReady
from .models import HostMessage

_logger = structlog.get_logger(__name__)

# Headers Outlook uses to index a conversation.
THREAD_HEADERS = ("Thread-Index", "Thread-Topic")


class MailHost(Protocol):
    """What the engine consumes from the mail client."""

    platform: str
    user_display_name: str

    async def current_item(self) -> Optional[HostMessage]:
        """Return the open message, or ``None`` while the host is still initializing."""
        ...


async def wait_for_item(host: MailHost, *, interval: float = 0.1, max_attempts: int = 600) -> HostMessage:
    """Poll the host at a fixed interval until it exposes an item.

    Raises ``HostNotReady`` after ``max_attempts`` polls. Cancelling the
    awaiting task stops the wait.
    """
    for attempt in range(1, max_attempts + 1):
        item = await host.current_item()
        if item is not None:
            if attempt > 1:
                _logger.debug("host.ready", attempts=attempt)
            return item
        if attempt < max_attempts:
            await asyncio.sleep(interval)
    raise HostNotReady(max_attempts)


def _html_body(message: EmailMessage) -> str:
    part = message.get_body(preferencelist=("html", "plain"))
    if part is None:
        return ""
    content = part.get_content()
    if part.get_content_type() == "text/plain":
        return f"<pre>{content}</pre>"
    return str(content)


class EmlMailHost:
    """A mail host backed by an RFC 822 file on disk, used by the CLI."""

    def __init__(
        self,
        path: Path,
        *,
        platform: str,
        user_display_name: str,
        conversation_id: Optional[str] = None,
    ) -> None:
        self.path = path
        self.platform = platform
        self.user_display_name = user_display_name
        self._conversation_id = conversation_id
        self._item: Optional[HostMessage] = None

    async def current_item(self) -> Optional[HostMessage]:
        if self._item is None:
            self._item = await asyncio.to_thread(self._load)
        return self._item

    def _load(self) -> HostMessage:
        with self.path.open("rb") as fh:
            message = BytesParser(policy=policy.default).parse(fh)
        headers = {name: str(message[name]) for name in THREAD_HEADERS if message[name] is not None}
        return HostMessage(
            item_id=str(message["Message-ID"] or self.path.name),
            body_html=_html_body(message),
            conversation_id=self._conversation_id,
            subject=str(message["Subject"] or ""),
            sender=str(message["From"] or ""),
            internet_headers=headers,
        )
