"""Comment session: initial load, periodic refresh and submission for one open message."""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import structlog

from .attachments import AttachmentTransfer
from .config import Settings
from .errors import AttachmentTransferError, AuthRequired, CommentSyncError, EmptyCommentError, StoreReadError
from .host import MailHost, wait_for_item
from .mentions import extract, unique_recipients
from .models import AttachmentRef, CommentRecord, HostMessage, UploadFile
from .notifications import NotificationDispatcher
from .profile import TransportProfile
from .store import CommentStoreClient
from .thread_identity import resolve_thread_key

_logger = structlog.get_logger(__name__)

HistoryListener = Callable[[list[CommentRecord]], None]


class SyncState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUBMITTING = "submitting"


@dataclass(slots=True)
class SubmitResult:
    record: CommentRecord
    attachments: list[AttachmentRef] = field(default_factory=list)
    recipients: list[str] = field(default_factory=list)
    notified: bool = False


class CommentSession:
    """Keeps ``comment_history`` in step with the remote store for the open message.

    Fetches are fenced by a sequence number: a response is applied only if it
    belongs to the most recently issued fetch, so a slow timer refresh cannot
    overwrite a newer post-submit refresh.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        host: MailHost,
        profile: TransportProfile,
        store: CommentStoreClient,
        dispatcher: NotificationDispatcher,
        transfer: Optional[AttachmentTransfer] = None,
    ) -> None:
        self._settings = settings
        self._host = host
        self._profile = profile
        self._store = store
        self._dispatcher = dispatcher
        self._transfer = transfer
        self._interval = settings.sync.refresh_interval_seconds

        self._message: Optional[HostMessage] = None
        self._thread_key: Optional[str] = None
        self._history: list[CommentRecord] = []
        self._listeners: list[HistoryListener] = []
        self._fetch_seq = 0
        self._in_flight = 0
        self._sending = False
        self._timer: Optional[asyncio.Task[None]] = None

    # ------------------------------------------------------------------ state

    @property
    def thread_key(self) -> Optional[str]:
        return self._thread_key

    @property
    def message(self) -> Optional[HostMessage]:
        return self._message

    @property
    def comment_history(self) -> list[CommentRecord]:
        return list(self._history)

    @property
    def loading(self) -> bool:
        return self._in_flight > 0

    @property
    def sending(self) -> bool:
        return self._sending

    @property
    def state(self) -> SyncState:
        if self._sending:
            return SyncState.SUBMITTING
        if self._in_flight:
            return SyncState.LOADING
        return SyncState.IDLE

    @property
    def polling(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def subscribe(self, listener: HistoryListener) -> Callable[[], None]:
        """Register ``listener`` for every applied history; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    # -------------------------------------------------------------- lifecycle

    async def start(self) -> Optional[str]:
        """Wait for the host item, resolve its thread key and begin syncing."""
        host_settings = self._settings.host
        self._message = await wait_for_item(
            self._host,
            interval=host_settings.poll_interval_seconds,
            max_attempts=host_settings.poll_max_attempts,
        )
        await self.set_thread_key(resolve_thread_key(self._message, self._profile))
        return self._thread_key

    async def set_thread_key(self, thread_key: Optional[str]) -> None:
        """Switch the session to ``thread_key``; ``None`` stops polling."""
        if thread_key == self._thread_key and (thread_key is None or self.polling):
            return
        self._thread_key = thread_key
        self._stop_timer()
        if thread_key is None:
            return
        _logger.info("sync.thread_key", thread_key=thread_key)
        await self.refresh()
        self._timer = asyncio.create_task(self._poll(), name="comment-refresh")

    async def close(self) -> None:
        timer = self._timer
        self._stop_timer()
        if timer is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await timer

    async def __aenter__(self) -> "CommentSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _stop_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.refresh()
            except AuthRequired as exc:
                # Re-prompting every interval would nag the user; wait for a manual refresh
                _logger.warning("sync.poll.stopped", error=str(exc))
                return

    # ---------------------------------------------------------------- fetches

    async def refresh(self) -> bool:
        """Re-fetch the history; returns True when the result was applied.

        Read failures keep the previous history. ``AuthRequired`` propagates.
        """
        thread_key = self._thread_key
        if thread_key is None:
            return False
        self._fetch_seq += 1
        seq = self._fetch_seq
        self._in_flight += 1
        try:
            records = await self._store.list(thread_key)
            await self._enrich(records)
        except StoreReadError as exc:
            _logger.warning("sync.refresh.failed", thread_key=thread_key, error=str(exc))
            return False
        finally:
            self._in_flight -= 1

        if seq != self._fetch_seq or thread_key != self._thread_key:
            _logger.debug("sync.refresh.stale", seq=seq, latest=self._fetch_seq)
            return False
        self._history = records
        for listener in list(self._listeners):
            listener(self.comment_history)
        return True

    async def _enrich(self, records: list[CommentRecord]) -> None:
        transfer = self._transfer
        if transfer is None or not transfer.enabled:
            return

        async def _attach(record: CommentRecord, record_id: str) -> None:
            try:
                record.attachments = await transfer.list(record_id)
            except AttachmentTransferError as exc:
                _logger.warning("sync.attachments.failed", record_id=record_id, error=str(exc))

        tasks = [asyncio.create_task(_attach(record, record.id)) for record in records if record.id]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            # One listing failed past its boundary; siblings must not outlive the refresh
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    # ------------------------------------------------------------- submission

    async def submit(self, text: str, files: Sequence[UploadFile] = ()) -> SubmitResult:
        """Post a comment: create, upload attachments, notify mentions, refresh.

        ``StoreWriteError`` and ``AuthRequired`` propagate and abort the
        remaining steps; attachment and notification failures do not.
        """
        if not text or not text.strip():
            raise EmptyCommentError("Please add a comment before saving.")
        thread_key = self._thread_key
        if thread_key is None:
            raise CommentSyncError("No conversation is resolved for the open message.")

        plain_text, mentions = extract(text)
        record = CommentRecord(
            thread_key=thread_key,
            author_display_name=self._host.user_display_name,
            body_plain_text=plain_text,
            mentioned_display_names=[mention.display_name for mention in mentions],
            created_at=datetime.now(timezone.utc),
            submission_key=uuid.uuid4().hex,
        )
        result = SubmitResult(record=record, recipients=unique_recipients(mentions))

        self._sending = True
        try:
            record_id = await self._store.create(record)
            if files:
                if self._transfer is not None and self._transfer.enabled:
                    result.attachments = await self._transfer.upload(record_id, files)
                    record.attachments = list(result.attachments)
                else:
                    _logger.warning("sync.attachments.disabled", record_id=record_id, files=len(files))
            if result.recipients and self._message is not None:
                result.notified = await self._dispatcher.forward(
                    self._message, result.recipients, thread_key, plain_text
                )
        finally:
            self._sending = False

        await self.refresh()
        return result
