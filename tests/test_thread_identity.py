from __future__ import annotations

import base64

import pytest

from mail_comments.errors import HostNotReady
from mail_comments.host import EmlMailHost, wait_for_item
from mail_comments.models import HostMessage, normalize_thread_key, thread_keys_equal
from mail_comments.profile import select_profile
from mail_comments.thread_identity import find_marker, key_from_thread_headers, resolve_thread_key

THREAD_INDEX = base64.b64encode(bytes(range(22)) + b"\x01\x02\x03\x04\x05").decode("ascii")


class TestNormalize:
    @pytest.mark.parametrize(
        "left,right",
        [
            ("AAQkADAwATM=", "aaqkadawatm"),
            ("  AAQkADAwATM==  ", "AAQKADAWATM"),
            ("abc-123", "ABC-123="),
        ],
    )
    def test_padding_and_case_do_not_matter(self, left, right):
        assert normalize_thread_key(left) == normalize_thread_key(right)
        assert thread_keys_equal(left, right)

    def test_different_keys_stay_different(self):
        assert not thread_keys_equal("abc", "abd")
        # Only trailing padding is stripped
        assert not thread_keys_equal("a=bc", "abc")


class TestResolve:
    def test_marker_in_body_wins(self, web_profile):
        message = HostMessage(
            item_id="1",
            body_html="<p>fw</p><div>CONVERSATION_ID:abc-123</div>",
            conversation_id="host-conv",
        )
        assert resolve_thread_key(message, web_profile) == "abc-123"

    def test_falls_back_to_host_conversation_id(self, web_profile):
        message = HostMessage(item_id="1", body_html="<p>hello</p>", conversation_id="AAQkADAwATM=")
        assert resolve_thread_key(message, web_profile) == "AAQkADAwATM="

    def test_thread_headers_only_on_fallback_platform(self, settings):
        message = HostMessage(item_id="1", body_html="", internet_headers={"Thread-Index": THREAD_INDEX})
        assert resolve_thread_key(message, select_profile(settings, "OfficeOnline")) is None
        key = resolve_thread_key(message, select_profile(settings, "Mac"))
        assert key == bytes(range(22)).hex()

    def test_marker_pattern_stops_at_non_token_characters(self):
        assert find_marker("CONVERSATION_ID:abc-1_2") == "abc-1"
        assert find_marker("no marker") is None

    def test_thread_topic_when_index_missing(self):
        assert key_from_thread_headers({"thread-topic": "Q3 budget: review"}) == "Q3-budget-review"
        assert key_from_thread_headers({"Thread-Index": "not base64!"}) is None


class _SlowHost:
    platform = "OfficeOnline"
    user_display_name = "Dana"

    def __init__(self, ready_after: int) -> None:
        self.calls = 0
        self.ready_after = ready_after

    async def current_item(self):
        self.calls += 1
        if self.calls >= self.ready_after:
            return HostMessage(item_id="ready", body_html="")
        return None


@pytest.mark.asyncio
async def test_wait_for_item_polls_until_ready():
    host = _SlowHost(ready_after=3)
    item = await wait_for_item(host, interval=0, max_attempts=5)
    assert item.item_id == "ready"
    assert host.calls == 3


@pytest.mark.asyncio
async def test_wait_for_item_gives_up():
    host = _SlowHost(ready_after=100)
    with pytest.raises(HostNotReady) as excinfo:
        await wait_for_item(host, interval=0, max_attempts=4)
    assert excinfo.value.attempts == 4
    assert host.calls == 4


@pytest.mark.asyncio
async def test_eml_host_reads_message(tmp_path):
    path = tmp_path / "message.eml"
    path.write_text(
        "From: Sam Sender <sam@x.com>\r\n"
        "Subject: Budget\r\n"
        "Message-ID: <m1@x.com>\r\n"
        f"Thread-Index: {THREAD_INDEX}\r\n"
        "Content-Type: text/html; charset=utf-8\r\n"
        "\r\n"
        "<p>Numbers attached</p>\r\n",
        encoding="utf-8",
    )
    host = EmlMailHost(path, platform="Mac", user_display_name="Dana", conversation_id=None)
    item = await host.current_item()
    assert item is not None
    assert item.subject == "Budget"
    assert "sam@x.com" in item.sender
    assert "Numbers attached" in item.body_html
    assert item.internet_headers["Thread-Index"] == THREAD_INDEX
