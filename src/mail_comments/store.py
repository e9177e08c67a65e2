"""Comment records kept as items of a SharePoint list, reached through Graph.

Each comment is one list item; the item fields are::

    Title          constant "Email Comment"
    EmailID        thread key the comment belongs to
    Comment        plain text with mention markup stripped
    MentionedUsers display names joined with ", "
    CreatedBy      author display name
    CreatedDate    ISO-8601 timestamp assigned by the client
    SubmissionKey  client-generated idempotency key

Records are append-only: this client creates and lists, never updates.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import structlog

from .config import Settings
from .errors import StoreReadError, StoreWriteError
from .graph import bearer_headers, error_detail, iter_pages, json_object, odata_literal
from .identity import TokenBroker
from .mentions import join_display_names, split_display_names
from .models import Audience, CommentRecord, normalize_thread_key

_logger = structlog.get_logger(__name__)

RECORD_TITLE = "Email Comment"
_NON_INDEXED_PREFER = "HonorNonIndexedQueriesWarningMayFailRandomly"
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _parse_timestamp(raw: Any) -> Optional[datetime]:
    if not raw or not isinstance(raw, str):
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def record_to_fields(record: CommentRecord) -> dict[str, Any]:
    created = record.created_at or datetime.now(timezone.utc)
    fields: dict[str, Any] = {
        "Title": RECORD_TITLE,
        "EmailID": record.thread_key,
        "Comment": record.body_plain_text,
        "MentionedUsers": join_display_names(record.mentioned_display_names),
        "CreatedBy": record.author_display_name,
        "CreatedDate": created.astimezone(timezone.utc).isoformat(),
    }
    if record.submission_key:
        fields["SubmissionKey"] = record.submission_key
    return fields


def item_to_record(item: dict[str, Any]) -> CommentRecord:
    fields = item.get("fields")
    if not isinstance(fields, dict):
        fields = {}
    created = _parse_timestamp(fields.get("CreatedDate")) or _parse_timestamp(item.get("createdDateTime"))
    return CommentRecord(
        id=str(item.get("id") or fields.get("id") or "") or None,
        thread_key=str(fields.get("EmailID") or ""),
        author_display_name=str(fields.get("CreatedBy") or ""),
        body_plain_text=str(fields.get("Comment") or ""),
        mentioned_display_names=split_display_names(fields.get("MentionedUsers")),
        created_at=created,
        submission_key=fields.get("SubmissionKey") or None,
    )


def _collapse_resubmissions(records: list[CommentRecord]) -> list[CommentRecord]:
    seen: set[str] = set()
    kept: list[CommentRecord] = []
    for record in records:
        if record.submission_key:
            if record.submission_key in seen:
                continue
            seen.add(record.submission_key)
        kept.append(record)
    return kept


class CommentStoreClient:
    """Creates and lists comment records for one SharePoint list."""

    def __init__(self, settings: Settings, broker: TokenBroker, http: httpx.AsyncClient) -> None:
        graph = settings.graph
        if not graph.site_id or not graph.list_id:
            raise ValueError("SHAREPOINT_SITE_ID and SHAREPOINT_LIST_ID must be configured.")
        self._items_url = f"{graph.base_url}/sites/{graph.site_id}/lists/{graph.list_id}/items"
        self._filter_mode = graph.filter_mode
        self._page_size = graph.page_size
        self._broker = broker
        self._http = http

    async def create(self, record: CommentRecord) -> str:
        """Persist ``record`` and return the store-assigned id.

        Raises ``StoreWriteError`` on any non-success response; never retries.
        """
        token = await self._broker.acquire(Audience.COLLABORATION)
        body = {"fields": record_to_fields(record)}
        try:
            response = await self._http.post(
                self._items_url,
                headers=bearer_headers(token, **{"Content-Type": "application/json"}),
                json=body,
            )
        except httpx.HTTPError as exc:
            raise StoreWriteError(f"Failed to create comment record: {exc}") from exc
        if response.status_code >= 300:
            raise StoreWriteError(
                f"Failed to create comment record: {response.status_code} {error_detail(response)}",
                status_code=response.status_code,
            )
        try:
            item = json_object(response)
        except ValueError as exc:
            raise StoreWriteError(
                f"Store returned an unreadable reply: {exc}", status_code=response.status_code
            ) from exc
        record_id = str(item.get("id") or "")
        if not record_id:
            raise StoreWriteError("Store accepted the record but returned no id.", status_code=response.status_code)
        record.id = record_id
        _logger.info("store.create.ok", record_id=record_id, thread_key=record.thread_key)
        return record_id

    async def list(self, thread_key: str) -> list[CommentRecord]:
        """Return every record of ``thread_key`` ordered by creation time.

        Raises ``StoreReadError`` when the store cannot be read.
        """
        token = await self._broker.acquire(Audience.COLLABORATION)
        if self._filter_mode == "client":
            items = await self._scan(token_headers=bearer_headers(token))
        else:
            try:
                items = await self._filtered(thread_key, token_headers=bearer_headers(token))
            except StoreReadError as exc:
                # A 400 means the filter itself was rejected (e.g. non-indexed column)
                if self._filter_mode != "auto" or exc.status_code != 400:
                    raise
                _logger.info("store.list.filter_rejected", thread_key=thread_key)
                items = await self._scan(token_headers=bearer_headers(token))

        wanted = normalize_thread_key(thread_key)
        records = [item_to_record(item) for item in items]
        records = [record for record in records if normalize_thread_key(record.thread_key) == wanted]
        records.sort(key=lambda record: record.created_at or _EPOCH)
        return _collapse_resubmissions(records)

    async def _filtered(self, thread_key: str, *, token_headers: dict[str, str]) -> list[dict[str, Any]]:
        params = {
            "expand": "fields",
            "$filter": f"fields/EmailID eq {odata_literal(thread_key)}",
            "$orderby": "createdDateTime asc",
            "$top": str(self._page_size),
        }
        headers = dict(token_headers, Prefer=_NON_INDEXED_PREFER)
        return await self._collect(params, headers)

    async def _scan(self, *, token_headers: dict[str, str]) -> list[dict[str, Any]]:
        params = {"expand": "fields", "$top": str(self._page_size)}
        return await self._collect(params, token_headers)

    async def _collect(self, params: dict[str, str], headers: dict[str, str]) -> list[dict[str, Any]]:
        try:
            return [item async for item in iter_pages(self._http, self._items_url, headers=headers, params=params)]
        except httpx.HTTPStatusError as exc:
            raise StoreReadError(
                f"Failed to list comment records: {exc.response.status_code} {error_detail(exc.response)}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise StoreReadError(f"Failed to list comment records: {exc}") from exc
        except ValueError as exc:
            raise StoreReadError(f"Store returned an unreadable page: {exc}") from exc
