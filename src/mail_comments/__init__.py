"""Conversation-correlated internal comments for mail threads."""

from .errors import (
    AttachmentTransferError,
    AuthRequired,
    CommentSyncError,
    EmptyCommentError,
    HostNotReady,
    NotificationError,
    StoreReadError,
    StoreWriteError,
)
from .models import AttachmentRef, Audience, CommentRecord, HostMessage, MentionToken, normalize_thread_key
from .sync import CommentSession, SubmitResult, SyncState

__all__ = [
    "AttachmentRef",
    "AttachmentTransferError",
    "Audience",
    "AuthRequired",
    "CommentRecord",
    "CommentSession",
    "CommentSyncError",
    "EmptyCommentError",
    "HostMessage",
    "HostNotReady",
    "MentionToken",
    "NotificationError",
    "StoreReadError",
    "StoreWriteError",
    "SubmitResult",
    "SyncState",
    "normalize_thread_key",
]
