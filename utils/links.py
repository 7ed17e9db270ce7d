"""
Link discovery inside work item fields.

Collects text from descriptions, comments, the summary and any other field
(flattening Atlassian Document Format trees), finds URLs and classifies each
one by platform.
"""

import re
from typing import Any, Iterable
from urllib.parse import urlparse

from utils.schemas import LinkDescriptor, PlatformType

URL_RE = re.compile(r"""https?://[^\s<>"'\]\[|}{]{2,}""")

GOOGLE_DOCS_RE = re.compile(r"https://docs\.google\.com/document/d/([a-zA-Z0-9_-]+)")
GOOGLE_SHEETS_RE = re.compile(r"https://docs\.google\.com/spreadsheets/d/([a-zA-Z0-9_-]+)")
GOOGLE_SLIDES_RE = re.compile(r"https://docs\.google\.com/presentation/d/([a-zA-Z0-9_-]+)")
SLACK_RE = re.compile(
    r"https://([^./]+)\.slack\.com/archives/([^/?#]+)/p(\d+)(?:\?thread_ts=(\d+\.\d+))?"
)
CONFLUENCE_RE = re.compile(r"https://([^./]+)\.atlassian\.net/wiki/spaces/([^/]+)/pages/(\d+)")
GITHUB_PR_RE = re.compile(r"https://github\.com/([^/]+)/([^/]+)/pull/(\d+)")
GITHUB_ISSUE_RE = re.compile(r"https://github\.com/([^/]+)/([^/]+)/issues/(\d+)")
GITHUB_COMMIT_RE = re.compile(r"https://github\.com/([^/]+)/([^/]+)/commit/([a-f0-9]{7,40})")

# Trailing punctuation that belongs to the surrounding prose, not the URL
_TRAILING = ".,;:!?)'"

# Tracker-internal resource links present on most nested objects
_API_LINK_KEYS = frozenset({"self", "avatarUrls", "iconUrl"})


def slack_permalink_ts(digits: str) -> str:
    """Convert a permalink `p1234567890123456` id to a message ts `1234567890.123456`."""
    if len(digits) <= 6:
        return digits
    return f"{digits[:-6]}.{digits[-6:]}"


def classify_url(url: str, context: str = "") -> LinkDescriptor:
    """Classify a single URL into a LinkDescriptor."""
    match = GOOGLE_DOCS_RE.match(url)
    if match:
        return LinkDescriptor(url=url, platform=PlatformType.GOOGLE_DOCS,
                              external_id=match.group(1), context=context)

    match = GOOGLE_SHEETS_RE.match(url)
    if match:
        return LinkDescriptor(url=url, platform=PlatformType.GOOGLE_SHEETS,
                              external_id=match.group(1), context=context)

    match = GOOGLE_SLIDES_RE.match(url)
    if match:
        return LinkDescriptor(url=url, platform=PlatformType.GOOGLE_SLIDES,
                              external_id=match.group(1), context=context)

    match = SLACK_RE.match(url)
    if match:
        workspace, channel, message_digits, thread_ts = match.groups()
        message_ts = slack_permalink_ts(message_digits)
        attributes = {"workspace": workspace, "channel": channel, "message_ts": message_ts}
        if thread_ts:
            attributes["thread_ts"] = thread_ts
            return LinkDescriptor(url=url, platform=PlatformType.SLACK_THREAD,
                                  external_id=f"{channel}/{thread_ts}", context=context,
                                  attributes=attributes)
        return LinkDescriptor(url=url, platform=PlatformType.SLACK_MESSAGE,
                              external_id=f"{channel}/{message_ts}", context=context,
                              attributes=attributes)

    match = CONFLUENCE_RE.match(url)
    if match:
        site, space, page_id = match.groups()
        return LinkDescriptor(url=url, platform=PlatformType.CONFLUENCE_PAGE,
                              external_id=page_id, context=context,
                              attributes={"site": site, "space": space})

    for pattern, platform in (
        (GITHUB_PR_RE, PlatformType.GITHUB_PR),
        (GITHUB_ISSUE_RE, PlatformType.GITHUB_ISSUE),
        (GITHUB_COMMIT_RE, PlatformType.GITHUB_COMMIT),
    ):
        match = pattern.match(url)
        if match:
            owner, repo, ref = match.groups()
            return LinkDescriptor(url=url, platform=platform, external_id=ref, context=context,
                                  attributes={"owner": owner, "repo": repo})

    domain = urlparse(url).hostname or "unknown"
    return LinkDescriptor(url=url, platform=PlatformType.UNKNOWN, external_id=domain, context=context)


def _adf_text(node: Any) -> str:
    if isinstance(node, list):
        return " ".join(filter(None, (_adf_text(child) for child in node)))
    if not isinstance(node, dict):
        return ""
    if node.get("type") == "text":
        return str(node.get("text") or "")
    parts = []
    # Inline cards and links carry their URL in attrs rather than text
    url = (node.get("attrs") or {}).get("url") or (node.get("attrs") or {}).get("href")
    if url:
        parts.append(str(url))
    if "content" in node:
        parts.append(_adf_text(node["content"]))
    return " ".join(filter(None, parts))


def field_text(value: Any) -> str:
    """Flatten a field value into searchable text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        if "content" in value:
            return _adf_text(value["content"])
        return " ".join(filter(None, (
            field_text(item) for key, item in value.items() if key not in _API_LINK_KEYS
        )))
    if isinstance(value, list):
        return " ".join(filter(None, (field_text(item) for item in value)))
    return str(value)


def find_urls(text: str) -> Iterable[str]:
    for match in URL_RE.finditer(text):
        yield match.group(0).rstrip(_TRAILING)


class LinkDetector:
    """Discovers and classifies links in a work item's fields."""

    def extract_links(self, fields: dict[str, Any], context: str) -> list[LinkDescriptor]:
        """Find every distinct URL in the item's fields.

        Args:
            fields: The item's `fields` object
            context: Prefix for each link's context path, usually the item key

        Returns:
            Links in discovery order, first occurrence wins
        """
        links: list[LinkDescriptor] = []
        seen: set[str] = set()

        def collect(text: str, where: str) -> None:
            for url in find_urls(text):
                if url in seen:
                    continue
                seen.add(url)
                links.append(classify_url(url, f"{context}.{where}"))

        collect(field_text(fields.get("description")), "description")

        comment_field = fields.get("comment")
        comments = comment_field.get("comments") if isinstance(comment_field, dict) else None
        for idx, comment in enumerate(comments or []):
            if isinstance(comment, dict):
                collect(field_text(comment.get("body")), f"comment.{idx}")

        summary = fields.get("summary")
        if isinstance(summary, str):
            collect(summary, "summary")

        for name, value in fields.items():
            if name in ("description", "comment", "summary"):
                continue
            text = field_text(value)
            if text:
                collect(text, name)

        return links
