"""Attachment transfer for comment records via SharePoint list-item attachments.

Two upload protocols exist and the transport profile picks one:

* ``add_endpoint`` posts the raw bytes to
  ``items(<id>)/AttachmentFiles/add(FileName='<name>')``;
* ``content_put`` puts the raw bytes to
  ``items(<id>)/AttachmentFiles('<name>')/$value``.

Uploads are best-effort per file: a failed file is logged and skipped, the
remaining files and the comment itself are unaffected.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any, Optional
from urllib.parse import urlsplit

import httpx
import structlog

from .config import Settings
from .errors import AttachmentTransferError
from .graph import bearer_headers, encode_path_segment, error_detail, json_object
from .identity import TokenBroker
from .models import AccessToken, Audience, AttachmentRef, DownloadedAttachment, UploadFile
from .profile import TransportProfile

_logger = structlog.get_logger(__name__)


def _file_literal(name: str) -> str:
    # SharePoint REST literal: single quotes doubled, then percent-encoded
    return encode_path_segment(name.replace("'", "''"))


class AttachmentTransfer:
    """Uploads, lists and downloads the attachments of one comment record."""

    def __init__(
        self,
        settings: Settings,
        broker: TokenBroker,
        http: httpx.AsyncClient,
        profile: TransportProfile,
    ) -> None:
        self._site_url = settings.graph.site_url
        self._list_id = settings.graph.list_id
        self._broker = broker
        self._http = http
        self._profile = profile

    @property
    def enabled(self) -> bool:
        return bool(self._site_url and self._list_id and self._profile.document_store_scopes)

    def _item_url(self, record_id: str) -> str:
        return f"{self._site_url}/_api/web/lists(guid'{self._list_id}')/items({record_id})"

    def upload_url(self, record_id: str, file_name: str) -> str:
        base = self._item_url(record_id)
        if self._profile.upload_protocol == "add_endpoint":
            return f"{base}/AttachmentFiles/add(FileName='{_file_literal(file_name)}')"
        return f"{base}/AttachmentFiles('{_file_literal(file_name)}')/$value"

    async def upload(self, record_id: str, files: Sequence[UploadFile]) -> list[AttachmentRef]:
        """Upload ``files`` against ``record_id``; returns the refs that succeeded."""
        if not files:
            return []
        token = await self._broker.acquire(Audience.DOCUMENT_STORE)
        results = await asyncio.gather(*(self._upload_one(token, record_id, upload) for upload in files))
        uploaded = [ref for ref in results if ref is not None]
        _logger.info(
            "attachments.upload.done",
            record_id=record_id,
            uploaded=len(uploaded),
            failed=len(files) - len(uploaded),
        )
        return uploaded

    async def _upload_one(self, token: AccessToken, record_id: str, upload: UploadFile) -> Optional[AttachmentRef]:
        url = self.upload_url(record_id, upload.name)
        headers = bearer_headers(
            token,
            **{"Accept": "application/json;odata=nometadata", "Content-Type": "application/octet-stream"},
        )
        try:
            if self._profile.upload_protocol == "add_endpoint":
                response = await self._http.post(url, headers=headers, content=upload.content)
            else:
                response = await self._http.put(url, headers=headers, content=upload.content)
            if response.status_code >= 300:
                raise AttachmentTransferError(
                    f"Upload of '{upload.name}' failed: {response.status_code} {error_detail(response)}",
                    status_code=response.status_code,
                )
        except (httpx.HTTPError, AttachmentTransferError) as exc:
            _logger.warning("attachments.upload.failed", record_id=record_id, file_name=upload.name, error=str(exc))
            return None
        return AttachmentRef(file_name=upload.name, locator=self._locator_from(response, upload.name))

    def _locator_from(self, response: httpx.Response, file_name: str) -> str:
        try:
            payload: Any = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get("ServerRelativeUrl"):
            return str(payload["ServerRelativeUrl"])
        return file_name

    async def list(self, record_id: str) -> list[AttachmentRef]:
        """Return the attachments of ``record_id``; raises ``AttachmentTransferError``."""
        token = await self._broker.acquire(Audience.DOCUMENT_STORE)
        url = f"{self._item_url(record_id)}/AttachmentFiles"
        try:
            response = await self._http.get(
                url, headers=bearer_headers(token, Accept="application/json;odata=nometadata")
            )
        except httpx.HTTPError as exc:
            raise AttachmentTransferError(f"Listing attachments of {record_id} failed: {exc}") from exc
        if response.status_code >= 300:
            raise AttachmentTransferError(
                f"Listing attachments of {record_id} failed: {response.status_code} {error_detail(response)}",
                status_code=response.status_code,
            )
        try:
            entries = json_object(response).get("value") or []
        except ValueError as exc:
            raise AttachmentTransferError(
                f"Listing attachments of {record_id} returned an unreadable reply: {exc}",
                status_code=response.status_code,
            ) from exc
        refs: list[AttachmentRef] = []
        for entry in entries if isinstance(entries, list) else []:
            if not isinstance(entry, dict):
                continue
            name = str(entry.get("FileName") or "")
            if not name:
                continue
            refs.append(AttachmentRef(file_name=name, locator=str(entry.get("ServerRelativeUrl") or name)))
        return refs

    async def download(self, record_id: str, locator: str) -> DownloadedAttachment:
        """Resolve an attachment to a direct link or to its fetched bytes.

        Server-relative paths become links on the site origin; anything else
        is treated as an opaque file name fetched with the document-store token.
        """
        if locator.startswith("/"):
            parts = urlsplit(self._site_url)
            file_name = locator.rsplit("/", 1)[-1]
            return DownloadedAttachment(file_name=file_name, url=f"{parts.scheme}://{parts.netloc}{locator}")

        token = await self._broker.acquire(Audience.DOCUMENT_STORE)
        url = f"{self._item_url(record_id)}/AttachmentFiles('{_file_literal(locator)}')/$value"
        try:
            response = await self._http.get(url, headers=bearer_headers(token, Accept="application/octet-stream"))
        except httpx.HTTPError as exc:
            raise AttachmentTransferError(f"Download of '{locator}' failed: {exc}") from exc
        if response.status_code >= 300:
            raise AttachmentTransferError(
                f"Download of '{locator}' failed: {response.status_code} {error_detail(response)}",
                status_code=response.status_code,
            )
        return DownloadedAttachment(file_name=locator, content=response.content)
