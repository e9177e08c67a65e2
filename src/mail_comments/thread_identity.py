"""Derive the thread key that correlates comments with a mail conversation."""

from __future__ import annotations

import base64
import binascii
import re
from typing import Optional

import structlog

from .models import HostMessage
from .profile import TransportProfile

_logger = structlog.get_logger(__name__)

MARKER_PREFIX = "CONVERSATION_ID:"
_MARKER_RE = re.compile(r"CONVERSATION_ID:([A-Za-z0-9\-]+)")

# The first 22 bytes of Thread-Index are shared by every message in a conversation.
_THREAD_INDEX_PREFIX_BYTES = 22


def find_marker(body: str) -> Optional[str]:
    match = _MARKER_RE.search(body or "")
    return match.group(1) if match else None


def format_marker(thread_key: str) -> str:
    return f"{MARKER_PREFIX}{thread_key}"


def key_from_thread_headers(headers: dict[str, str]) -> Optional[str]:
    lowered = {name.lower(): value for name, value in headers.items()}
    raw_index = (lowered.get("thread-index") or "").strip()
    if raw_index:
        try:
            decoded = base64.b64decode(raw_index, validate=True)
        except (binascii.Error, ValueError):
            decoded = b""
        if len(decoded) >= _THREAD_INDEX_PREFIX_BYTES:
            return decoded[:_THREAD_INDEX_PREFIX_BYTES].hex()
    topic = (lowered.get("thread-topic") or "").strip()
    if topic:
        return re.sub(r"[^A-Za-z0-9]+", "-", topic).strip("-") or None
    return None


def resolve_thread_key(message: HostMessage, profile: TransportProfile) -> Optional[str]:
    """Return the conversation key for ``message``.

    An embedded ``CONVERSATION_ID:`` marker wins, then the host conversation
    id. Thread-indexing headers are consulted only on platforms where the
    host may expose neither.
    """
    marker = find_marker(message.body_html)
    if marker:
        return marker
    if message.conversation_id and message.conversation_id.strip():
        return message.conversation_id.strip()
    if profile.thread_index_fallback:
        key = key_from_thread_headers(message.internet_headers)
        if key:
            _logger.info("thread.key.from_headers", platform=profile.platform)
            return key
    _logger.warning("thread.key.unavailable", item_id=message.item_id, platform=profile.platform)
    return None
