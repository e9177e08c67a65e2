"""Mention notifications for newly posted comments.

Mentioned collaborators receive a new message that wraps the original mail:
who sent it and its subject, the latest comment, then the original rendered
body untouched. The body always carries a ``CONVERSATION_ID:`` marker so the
recipient's own client resolves the same thread key.
"""

from __future__ import annotations

import html
import logging
from collections.abc import Sequence
from typing import Any

import httpx

from .config import Settings
from .errors import NotificationError
from .graph import bearer_headers, error_detail
from .identity import TokenBroker
from .models import Audience, HostMessage
from .thread_identity import find_marker, format_marker

logger = logging.getLogger(__name__)

SUBJECT_PREFIX = "You were mentioned in a comment"


def ensure_marker(body_html: str, thread_key: str) -> str:
    """Append the conversation marker unless the body already has one."""
    if find_marker(body_html):
        return body_html
    return f'{body_html}\n<div style="display:none">{html.escape(format_marker(thread_key))}</div>'


def build_notification_body(message: HostMessage, thread_key: str, latest_comment: str) -> str:
    """Return the HTML body sent to mentioned recipients."""
    context = (
        "<p>Hi, you were mentioned in a comment on this email. "
        "Please review the original message below.</p>"
        f"<p><b>From:</b> {html.escape(message.sender)}<br/>"
        f"<b>Subject:</b> {html.escape(message.subject)}</p>"
        f"<blockquote>{html.escape(latest_comment)}</blockquote>"
        "<hr/>"
    )
    return ensure_marker(context + message.body_html, thread_key)


def build_send_mail_payload(
    message: HostMessage,
    recipients: Sequence[str],
    thread_key: str,
    latest_comment: str,
) -> dict[str, Any]:
    subject = f"{SUBJECT_PREFIX}: {message.subject}" if message.subject else SUBJECT_PREFIX
    return {
        "message": {
            "subject": subject,
            "body": {
                "contentType": "HTML",
                "content": build_notification_body(message, thread_key, latest_comment),
            },
            "toRecipients": [{"emailAddress": {"address": address}} for address in recipients],
        },
        "saveToSentItems": True,
    }


class NotificationDispatcher:
    """Sends the mention notification through Graph ``sendMail``."""

    def __init__(self, settings: Settings, broker: TokenBroker, http: httpx.AsyncClient) -> None:
        self._send_url = f"{settings.graph.base_url}/me/sendMail"
        self._broker = broker
        self._http = http

    async def forward(
        self,
        message: HostMessage,
        recipients: Sequence[str],
        thread_key: str,
        latest_comment: str,
    ) -> bool:
        """
        Forward ``message`` to ``recipients`` with the latest comment on top.

        Args:
            message: The message the comment was posted on
            recipients: Deduplicated recipient addresses
            thread_key: Key embedded as the conversation marker
            latest_comment: Plain text of the comment just posted

        Returns:
            True if the notification was accepted, False otherwise
            (failures are logged, never raised or retried)
        """
        if not recipients:
            return False
        payload = build_send_mail_payload(message, recipients, thread_key, latest_comment)
        try:
            token = await self._broker.acquire(Audience.COLLABORATION)
            response = await self._http.post(
                self._send_url,
                headers=bearer_headers(token, **{"Content-Type": "application/json"}),
                json=payload,
            )
            if response.status_code >= 300:
                raise NotificationError(
                    f"sendMail returned {response.status_code}: {error_detail(response)}",
                    status_code=response.status_code,
                )
        except (httpx.HTTPError, NotificationError) as e:
            logger.warning(f"Mention notification failed for {len(recipients)} recipient(s): {e}")
            return False
        logger.info(f"Mention notification sent to {', '.join(recipients)}")
        return True
