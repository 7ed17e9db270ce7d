"""
Tests for link discovery and classification.
"""
import pytest

from utils.links import LinkDetector, classify_url, field_text, find_urls, slack_permalink_ts
from utils.schemas import PlatformType


def adf(*paragraphs) -> dict:
    """Atlassian Document Format body with one text node per paragraph."""
    return {
        "type": "doc",
        "version": 1,
        "content": [{"type": "paragraph", "content": [{"type": "text", "text": text}]} for text in paragraphs],
    }


@pytest.mark.parametrize("url,platform,external_id", [
    ("https://docs.google.com/document/d/1AbC-_x/edit", PlatformType.GOOGLE_DOCS, "1AbC-_x"),
    ("https://docs.google.com/spreadsheets/d/s9/edit#gid=0", PlatformType.GOOGLE_SHEETS, "s9"),
    ("https://docs.google.com/presentation/d/p7", PlatformType.GOOGLE_SLIDES, "p7"),
    ("https://acme.atlassian.net/wiki/spaces/ENG/pages/98765/Runbook", PlatformType.CONFLUENCE_PAGE, "98765"),
    ("https://github.com/acme/api/pull/42", PlatformType.GITHUB_PR, "42"),
    ("https://github.com/acme/api/issues/7", PlatformType.GITHUB_ISSUE, "7"),
    ("https://github.com/acme/api/commit/0a1b2c3d", PlatformType.GITHUB_COMMIT, "0a1b2c3d"),
    ("https://status.example.com/incidents/1", PlatformType.UNKNOWN, "status.example.com"),
])
def test_classify_url(url, platform, external_id):
    link = classify_url(url, "ENG-1.description")

    assert link.platform == platform
    assert link.external_id == external_id
    assert link.context == "ENG-1.description"


def test_slack_message_and_thread():
    message = classify_url("https://acme.slack.com/archives/C024BE91L/p1700000050000200")
    thread = classify_url(
        "https://acme.slack.com/archives/C024BE91L/p1700000050000200?thread_ts=1700000000.000100"
    )

    assert message.platform == PlatformType.SLACK_MESSAGE
    assert message.external_id == "C024BE91L/1700000050.000200"
    assert message.attributes["workspace"] == "acme"
    assert thread.platform == PlatformType.SLACK_THREAD
    assert thread.external_id == "C024BE91L/1700000000.000100"
    assert thread.attributes["message_ts"] == "1700000050.000200"


def test_slack_permalink_ts():
    assert slack_permalink_ts("1700000050000200") == "1700000050.000200"
    assert slack_permalink_ts("123") == "123"


def test_find_urls_strips_trailing_punctuation():
    text = "See (https://example.com/a), then https://example.com/b. Done!"

    assert list(find_urls(text)) == ["https://example.com/a", "https://example.com/b"]


def test_field_text_flattens_adf_and_inline_cards():
    body = {
        "type": "doc",
        "content": [
            {"type": "paragraph", "content": [
                {"type": "text", "text": "Design"},
                {"type": "inlineCard", "attrs": {"url": "https://docs.google.com/document/d/card1"}},
            ]},
        ],
    }

    text = field_text(body)

    assert "Design" in text
    assert "https://docs.google.com/document/d/card1" in text


def test_field_text_skips_api_self_links():
    assignee = {
        "self": "https://acme.atlassian.net/rest/api/3/user?accountId=1",
        "avatarUrls": {"48x48": "https://avatar.example.com/1.png"},
        "displayName": "Alice",
    }

    assert field_text(assignee) == "Alice"


def test_extract_links_scans_all_fields_in_order():
    fields = {
        "summary": "Outage https://acme.slack.com/archives/C1/p1700000050000200",
        "description": adf("Doc: https://docs.google.com/document/d/doc1/edit"),
        "comment": {
            "comments": [
                {"body": adf("dup https://docs.google.com/document/d/doc1/edit")},
                {"body": adf("PR https://github.com/acme/api/pull/5")},
            ]
        },
        "customfield_10010": "https://docs.google.com/spreadsheets/d/s1",
        "assignee": {"self": "https://acme.atlassian.net/rest/api/3/user?accountId=1"},
    }

    links = LinkDetector().extract_links(fields, "ENG-1")

    assert [(link.platform, link.context) for link in links] == [
        (PlatformType.GOOGLE_DOCS, "ENG-1.description"),
        (PlatformType.GITHUB_PR, "ENG-1.comment.1"),
        (PlatformType.SLACK_MESSAGE, "ENG-1.summary"),
        (PlatformType.GOOGLE_SHEETS, "ENG-1.customfield_10010"),
    ]


def test_extract_links_without_urls():
    assert LinkDetector().extract_links({"summary": "nothing here", "labels": ["a"]}, "ENG-2") == []
