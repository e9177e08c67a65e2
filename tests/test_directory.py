from __future__ import annotations

import httpx
import pytest

from mail_comments.directory import DirectoryClient, DirectoryPerson
from mail_comments.rich_logger import render_people


@pytest.mark.asyncio
async def test_people_maps_users(settings, broker, mock_http):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1.0/users"
        assert request.url.params["$top"] == "50"
        return httpx.Response(
            200,
            json={
                "value": [
                    {"displayName": "Alice", "mail": "alice@x.com"},
                    {"displayName": "Guest", "mail": None, "userPrincipalName": "guest@x.onmicrosoft.com"},
                    {"displayName": "Nobody"},
                ]
            },
        )

    async with mock_http(handler) as http:
        people = await DirectoryClient(settings, broker, http).people()

    assert people == [
        DirectoryPerson("Alice", "alice@x.com"),
        DirectoryPerson("Guest", "guest@x.onmicrosoft.com"),
    ]
    assert people[0].mention == "@[Alice](alice@x.com)"


@pytest.mark.asyncio
async def test_people_failure_returns_empty(settings, broker, mock_http):
    async with mock_http(lambda request: httpx.Response(403)) as http:
        assert await DirectoryClient(settings, broker, http).people() == []


@pytest.mark.asyncio
async def test_people_skips_names_that_cannot_be_mentioned(settings, broker, mock_http):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "value": [
                    {"displayName": "Alice", "mail": "alice@x.com"},
                    {"displayName": "Bob [Contractor]", "mail": "bob@x.com"},
                    "junk",
                ]
            },
        )

    async with mock_http(handler) as http:
        people = await DirectoryClient(settings, broker, http).people()

    assert [person.address for person in people] == ["alice@x.com"]
    table = render_people(people)
    assert table.row_count == 1


@pytest.mark.asyncio
async def test_people_unreadable_reply_returns_empty(settings, broker, mock_http):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>login</html>", headers={"Content-Type": "text/html"})

    async with mock_http(handler) as http:
        assert await DirectoryClient(settings, broker, http).people() == []
