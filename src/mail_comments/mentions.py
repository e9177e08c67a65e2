"""Inline @-mention markup: ``@[Display Name](recipient@example.com)``.

The picker that feeds the comment box writes one markup span per mention.
Stored comment text never carries the markup; the display names travel
separately as a comma-joined list and the addresses become notification
targets.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from .models import MentionToken

__all__ = [
    "extract",
    "format_mention",
    "join_display_names",
    "split_display_names",
    "unique_recipients",
]

# Brackets and parens may not nest; anything unbalanced is not a mention.
_MENTION_RE = re.compile(r"(?P<lead>[ \t]*)@\[(?P<display>[^\[\]]+)\]\((?P<address>[^()\s]+)\)")

DISPLAY_NAME_SEPARATOR = ", "


def extract(text: str) -> tuple[str, list[MentionToken]]:
    """Split comment text into plain text and the mentions it contains.

    Each markup span is removed together with the spaces directly before it,
    so ``"Hi @[Alice](alice@x.com) check this"`` becomes ``"Hi check this"``.
    Malformed spans stay in the plain text and are not reported.
    """
    mentions: list[MentionToken] = []

    def _strip(match: re.Match[str]) -> str:
        mentions.append(
            MentionToken(
                display_name=match.group("display"),
                address=match.group("address"),
                span=(match.start("lead") + len(match.group("lead")), match.end()),
            )
        )
        return ""

    plain = _MENTION_RE.sub(_strip, text)
    return plain.strip(), mentions


def format_mention(display_name: str, address: str) -> str:
    """Encode a mention the way the picker does."""
    if not display_name.strip() or not address.strip():
        raise ValueError("Mentions need both a display name and an address.")
    if any(ch in display_name for ch in "[]") or any(ch in address for ch in "() \t"):
        raise ValueError(f"Cannot encode mention for '{display_name}' <{address}>.")
    return f"@[{display_name}]({address})"


def unique_recipients(mentions: Iterable[MentionToken]) -> list[str]:
    """Return recipient addresses deduplicated in first-occurrence order."""
    seen: set[str] = set()
    recipients: list[str] = []
    for mention in mentions:
        if mention.address in seen:
            continue
        seen.add(mention.address)
        recipients.append(mention.address)
    return recipients


def join_display_names(names: Sequence[str]) -> str:
    return DISPLAY_NAME_SEPARATOR.join(names)


def split_display_names(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [name.strip() for name in raw.split(",") if name.strip()]
