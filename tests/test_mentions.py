from __future__ import annotations

import re

import pytest

from mail_comments.mentions import (
    extract,
    format_mention,
    join_display_names,
    split_display_names,
    unique_recipients,
)


def _visible(text: str) -> str:
    return re.sub(r"\s+", "", text)


class TestExtract:
    def test_strips_markup_and_reports_mention(self):
        plain, mentions = extract("Hi @[Alice](alice@x.com) check this")
        assert plain == "Hi check this"
        assert [(m.display_name, m.address) for m in mentions] == [("Alice", "alice@x.com")]

    def test_order_is_first_occurrence(self):
        text = "@[Bob](bob@x.com) and @[Alice](alice@x.com) and @[Bob](bob@x.com)"
        plain, mentions = extract(text)
        assert plain == "and and"
        assert [m.display_name for m in mentions] == ["Bob", "Alice", "Bob"]

    def test_span_points_at_markup(self):
        text = "Hi @[Alice](alice@x.com) check"
        _, mentions = extract(text)
        start, end = mentions[0].span
        assert text[start:end] == "@[Alice](alice@x.com)"

    def test_punctuation_after_mention_stays_attached(self):
        plain, _ = extract("Thanks @[Alice](alice@x.com), see below")
        assert plain == "Thanks, see below"

    @pytest.mark.parametrize(
        "text",
        [
            "ping @[Alice(alice@x.com)",
            "ping @[Alice]alice@x.com)",
            "ping @[Alice](alice@x.com",
            "ping @[Al[ice](alice@x.com)",
            "ping @[](alice@x.com)",
        ],
    )
    def test_malformed_markup_is_left_untouched(self, text):
        plain, mentions = extract(text)
        assert plain == text
        assert mentions == []

    def test_addresses_are_not_normalized(self):
        _, mentions = extract("@[Alice](Alice@X.com)")
        assert mentions[0].address == "Alice@X.com"

    def test_visible_text_is_preserved(self):
        text = "  Please @[Alice](alice@x.com) and @[Bob Smith](bob@x.com) review the draft.  "
        plain, mentions = extract(text)
        rebuilt = plain
        for mention in mentions:
            rebuilt += text[mention.span[0] : mention.span[1]]
        without_markup = text
        for mention in mentions:
            without_markup = without_markup.replace(text[mention.span[0] : mention.span[1]], "", 1)
        assert _visible(plain) == _visible(without_markup)
        assert sorted(_visible(rebuilt)) == sorted(_visible(text))

    def test_plain_text_only(self):
        assert extract("  nothing to see  ") == ("nothing to see", [])


def test_unique_recipients_dedupes_by_address_in_order():
    _, mentions = extract("@[Alice](alice@x.com) @[Bob](bob@x.com) @[Ali](alice@x.com)")
    assert unique_recipients(mentions) == ["alice@x.com", "bob@x.com"]


def test_format_mention_round_trips_through_extract():
    markup = format_mention("Alice Doe", "alice@x.com")
    assert markup == "@[Alice Doe](alice@x.com)"
    _, mentions = extract(f"hi {markup}")
    assert mentions[0].display_name == "Alice Doe"


@pytest.mark.parametrize("display,address", [("", "a@x.com"), ("A]", "a@x.com"), ("A", "a b@x.com")])
def test_format_mention_rejects_unencodable_values(display, address):
    with pytest.raises(ValueError):
        format_mention(display, address)


def test_display_names_join_and_split():
    assert join_display_names(["Alice", "Bob"]) == "Alice, Bob"
    assert split_display_names("Alice, Bob ,") == ["Alice", "Bob"]
    assert split_display_names(None) == []
