"""Small helpers shared by every Microsoft Graph / SharePoint caller."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Optional
from urllib.parse import quote

import httpx

from .config import Settings
from .models import AccessToken

_ERROR_PREVIEW_CHARS = 300


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.graph.timeout_seconds)


def bearer_headers(token: AccessToken, **extra: str) -> dict[str, str]:
    headers = {
        "Authorization": f"Bearer {token.value}",
        "Accept": "application/json",
    }
    headers.update(extra)
    return headers


def encode_path_segment(value: str) -> str:
    """Percent-encode a value that is embedded inside a URL path or OData literal."""
    return quote(value, safe="")


def odata_literal(value: str) -> str:
    """Quote a string for an OData expression, doubling embedded single quotes."""
    return "'" + value.replace("'", "''") + "'"


def error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:_ERROR_PREVIEW_CHARS]
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        error = payload["error"]
        return str(error.get("message") or error.get("code") or error)[:_ERROR_PREVIEW_CHARS]
    return response.text[:_ERROR_PREVIEW_CHARS]


def json_object(response: httpx.Response) -> dict[str, Any]:
    """Decode a JSON object body; raises ``ValueError`` for anything else (e.g. an HTML login page)."""
    payload = response.json()
    if not isinstance(payload, dict):
        raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")
    return payload


async def iter_pages(
    client: httpx.AsyncClient,
    url: str,
    *,
    headers: dict[str, str],
    params: Optional[dict[str, Any]] = None,
) -> AsyncIterator[dict[str, Any]]:
    """Yield items from a Graph collection, following ``@odata.nextLink``.

    Raises ``httpx.HTTPStatusError`` on the first non-success page and
    ``ValueError`` when a page body is not a JSON object.
    """
    next_url: Optional[str] = url
    next_params = params
    while next_url:
        response = await client.get(next_url, headers=headers, params=next_params)
        response.raise_for_status()
        payload = json_object(response)
        items = payload.get("value") or []
        if not isinstance(items, list):
            raise ValueError("Collection page has no value list")
        for item in items:
            if isinstance(item, dict):
                yield item
        next_link = payload.get("@odata.nextLink")
        next_url = next_link if isinstance(next_link, str) else None
        # nextLink already carries the query string
        next_params = None
