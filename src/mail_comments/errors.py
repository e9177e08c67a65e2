"""Error taxonomy shared by the comment synchronization components."""

from __future__ import annotations

__all__ = [
    "AttachmentTransferError",
    "AuthRequired",
    "CommentSyncError",
    "EmptyCommentError",
    "HostNotReady",
    "NotificationError",
    "StoreReadError",
    "StoreWriteError",
]


class CommentSyncError(RuntimeError):
    """Base class for failures raised by the synchronization engine."""


class HostNotReady(CommentSyncError):
    """The mail host never exposed an open item within the polling budget."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Mail host item not available after {attempts} attempts.")
        self.attempts = attempts


class AuthRequired(CommentSyncError):
    """Interactive sign-in failed or was cancelled by the user."""

    def __init__(self, audience: str, detail: str = "") -> None:
        message = f"Authentication required for audience '{audience}'."
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)
        self.audience = audience
        self.detail = detail


class _RemoteError(CommentSyncError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StoreWriteError(_RemoteError):
    """Creating a comment record failed."""


class StoreReadError(_RemoteError):
    """Listing comment records failed."""


class AttachmentTransferError(_RemoteError):
    """A single attachment upload, listing, or download failed."""


class NotificationError(_RemoteError):
    """Sending the mention notification failed."""


class EmptyCommentError(ValueError):
    """A submission carried no comment text."""
