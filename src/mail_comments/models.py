"""Value types exchanged between the synchronization components."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

_PADDING_CHARS = "="


def normalize_thread_key(key: str) -> str:
    """Return the comparison form of a thread key.

    Trims surrounding whitespace, strips trailing padding and case-folds.
    """
    return key.strip().rstrip(_PADDING_CHARS).casefold()


def thread_keys_equal(left: str, right: str) -> bool:
    return normalize_thread_key(left) == normalize_thread_key(right)


class Audience(str, Enum):
    """Resource a token is minted for."""

    COLLABORATION = "collaboration"
    DOCUMENT_STORE = "document_store"


@dataclass(slots=True, frozen=True)
class AccessToken:
    audience: Audience
    value: str
    expires_on: Optional[datetime] = None


@dataclass(slots=True, frozen=True)
class MentionToken:
    display_name: str
    address: str
    # Character offsets of the markup in the source text
    span: tuple[int, int] = (0, 0)


@dataclass(slots=True, frozen=True)
class AttachmentRef:
    file_name: str
    locator: str


@dataclass(slots=True)
class CommentRecord:
    thread_key: str
    author_display_name: str
    body_plain_text: str
    mentioned_display_names: list[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    id: Optional[str] = None
    attachments: list[AttachmentRef] = field(default_factory=list)
    submission_key: Optional[str] = None


@dataclass(slots=True, frozen=True)
class HostMessage:
    """Snapshot of the message currently open in the mail host."""

    item_id: str
    body_html: str
    conversation_id: Optional[str] = None
    subject: str = ""
    sender: str = ""
    internet_headers: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class UploadFile:
    name: str
    content: bytes

    @classmethod
    async def from_path(cls, path: Path) -> "UploadFile":
        content = await asyncio.to_thread(path.read_bytes)
        return cls(name=path.name, content=content)


@dataclass(slots=True, frozen=True)
class DownloadedAttachment:
    """Either a direct link or fetched bytes for one attachment."""

    file_name: str
    url: Optional[str] = None
    content: Optional[bytes] = None

    @property
    def is_link(self) -> bool:
        return self.url is not None

    async def save(self, path: Path) -> Path:
        if self.content is None:
            raise ValueError(f"Attachment '{self.file_name}' is a link; fetch {self.url} instead.")
        await asyncio.to_thread(path.write_bytes, self.content)
        return path
