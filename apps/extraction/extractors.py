"""
Platform Extractors - Fetch linked documents and conversations

One extractor per supported platform family:
- Google Docs, Sheets and Slides (public REST APIs, Drive for file metadata)
- Slack threads and single messages (Web API)

Every request goes through the shared ApiClient and RetryPolicy with the
credential of the job's owning user. Drive metadata is best effort: a
failure there leaves the metadata fields empty instead of failing the job.

Usage:
    registry = build_extractors(client, settings)
    document = await registry.get(job.link.platform).extract(job)
"""

import logging
from typing import Any, Mapping, Optional

from utils.auth import Credential, StaticUserCredentials, UserCredentialProvider
from utils.config import Settings
from utils.errors import ApiError, ConfigurationError, ExtractionError, ParseError
from utils.http import ApiClient, ApiResponse
from utils.retry import RetryPolicy
from utils.schemas import DocumentMetadata, ExtractedDocument, ExtractionJob, PlatformType

logger = logging.getLogger(__name__)

GOOGLE_DOCS_URL = "https://docs.googleapis.com/v1/documents/{file_id}"
GOOGLE_SHEETS_URL = "https://sheets.googleapis.com/v4/spreadsheets/{file_id}"
GOOGLE_SHEET_VALUES_URL = "https://sheets.googleapis.com/v4/spreadsheets/{file_id}/values:batchGet"
GOOGLE_SLIDES_URL = "https://slides.googleapis.com/v1/presentations/{file_id}"
DRIVE_FILE_URL = "https://www.googleapis.com/drive/v3/files/{file_id}"
DRIVE_FILE_FIELDS = "createdTime,modifiedTime,owners,webViewLink"
DRIVE_LIST_URL = "https://www.googleapis.com/drive/v3/files/{file_id}/{resource}"

SLACK_API_URL = "https://slack.com/api/{method}"

UNTITLED = "Untitled"


class Extractor:
    """Base class: subclasses implement `extract` for one platform family."""

    platforms: frozenset[PlatformType] = frozenset()

    def __init__(
        self,
        client: ApiClient,
        credentials: UserCredentialProvider,
        retry_policy: RetryPolicy,
    ) -> None:
        self.client = client
        self.credentials = credentials
        self.retry_policy = retry_policy

    async def extract(self, job: ExtractionJob) -> ExtractedDocument:
        raise NotImplementedError

    async def _get(
        self,
        url: str,
        credential: Credential,
        params: Optional[Mapping[str, Any]] = None,
    ) -> ApiResponse:
        return await self.retry_policy.send(lambda: self.client.get(url, credential, params=params))

    async def _get_json(
        self,
        url: str,
        credential: Credential,
        params: Optional[Mapping[str, Any]] = None,
    ) -> dict:
        body = (await self._get(url, credential, params)).json()
        if not isinstance(body, dict):
            raise ParseError(f"Expected a JSON object from {url}")
        return body

    @staticmethod
    def _document(
        job: ExtractionJob,
        title: str,
        body_text: str,
        metadata: Optional[dict] = None,
    ) -> ExtractedDocument:
        fields = dict(metadata or {})
        fields["content_length"] = len(body_text)
        return ExtractedDocument(
            job_id=job.id,
            platform=job.link.platform,
            source_url=job.link.url,
            title=title,
            body_text=body_text,
            metadata=DocumentMetadata(**fields),
            source_item_ids=[job.source_item_id],
        )


class GoogleExtractor(Extractor):
    """Shared Drive metadata lookup for the Google editors."""

    async def _drive_metadata(self, file_id: str, credential: Credential) -> dict:
        url = DRIVE_FILE_URL.format(file_id=file_id)
        try:
            drive = await self._get_json(url, credential, {"fields": DRIVE_FILE_FIELDS})
        except (ApiError, ParseError) as e:
            logger.warning("Drive metadata unavailable for %s: %s", file_id, e)
            return {}

        owners = drive.get("owners") or []
        author = owners[0].get("displayName") if owners and isinstance(owners[0], dict) else None
        platform_specific = {}
        if drive.get("webViewLink"):
            platform_specific["web_view_link"] = drive["webViewLink"]
        return {
            "author": author,
            "created_time": drive.get("createdTime"),
            "modified_time": drive.get("modifiedTime"),
            "platform_specific": platform_specific,
        }

    async def _drive_count(self, file_id: str, resource: str, credential: Credential) -> int:
        """Number of Drive comments or revisions on a file; 0 when unavailable."""
        url = DRIVE_LIST_URL.format(file_id=file_id, resource=resource)
        try:
            listing = await self._get_json(url, credential, {"fields": f"{resource}(id)"})
        except (ApiError, ParseError) as e:
            logger.debug("Drive %s unavailable for %s: %s", resource, file_id, e)
            return 0
        return len(listing.get(resource) or [])


def _text_runs(elements: list) -> str:
    return "".join(
        (element.get("textRun") or {}).get("content", "")
        for element in elements
        if isinstance(element, dict)
    )


class GoogleDocsExtractor(GoogleExtractor):
    platforms = frozenset({PlatformType.GOOGLE_DOCS})

    async def extract(self, job: ExtractionJob) -> ExtractedDocument:
        file_id = job.link.external_id
        credential = await self.credentials.credential_for(job.user_id)

        doc = await self._get_json(GOOGLE_DOCS_URL.format(file_id=file_id), credential)
        body_text = self.body_text(doc.get("body") or {})
        metadata = await self._drive_metadata(file_id, credential)
        metadata["comments_count"] = await self._drive_count(file_id, "comments", credential)
        metadata["revisions_count"] = await self._drive_count(file_id, "revisions", credential)

        return self._document(job, doc.get("title") or UNTITLED, body_text, metadata)

    @staticmethod
    def body_text(body: dict) -> str:
        """Concatenate the text runs of every paragraph in a document body."""
        parts = []
        for element in body.get("content") or []:
            paragraph = element.get("paragraph") if isinstance(element, dict) else None
            if paragraph:
                parts.append(_text_runs(paragraph.get("elements") or []))
        return "".join(parts)


class GoogleSheetsExtractor(GoogleExtractor):
    platforms = frozenset({PlatformType.GOOGLE_SHEETS})

    async def extract(self, job: ExtractionJob) -> ExtractedDocument:
        file_id = job.link.external_id
        credential = await self.credentials.credential_for(job.user_id)

        spreadsheet = await self._get_json(
            GOOGLE_SHEETS_URL.format(file_id=file_id), credential, {"includeGridData": "false"}
        )
        title = (spreadsheet.get("properties") or {}).get("title") or UNTITLED
        sheet_titles = [
            (sheet.get("properties") or {}).get("title") or UNTITLED
            for sheet in spreadsheet.get("sheets") or []
        ]

        sections = []
        if sheet_titles:
            ranges = [quote_sheet_name(name) for name in sheet_titles]
            values = await self._get_json(
                GOOGLE_SHEET_VALUES_URL.format(file_id=file_id), credential, {"ranges": ranges}
            )
            for name, value_range in zip(sheet_titles, values.get("valueRanges") or []):
                rows = value_range.get("values") or []
                lines = ["\t".join(str(cell) for cell in row) for row in rows]
                sections.append(f"## {name}\n" + "\n".join(lines))

        metadata = await self._drive_metadata(file_id, credential)
        metadata.setdefault("platform_specific", {})["sheet_count"] = len(sheet_titles)

        return self._document(job, title, "\n\n".join(sections), metadata)


def quote_sheet_name(name: str) -> str:
    """A1 range selecting a whole sheet, quoting names with spaces or quotes."""
    return "'" + name.replace("'", "''") + "'"


class GoogleSlidesExtractor(GoogleExtractor):
    platforms = frozenset({PlatformType.GOOGLE_SLIDES})

    async def extract(self, job: ExtractionJob) -> ExtractedDocument:
        file_id = job.link.external_id
        credential = await self.credentials.credential_for(job.user_id)

        presentation = await self._get_json(GOOGLE_SLIDES_URL.format(file_id=file_id), credential)
        slides = presentation.get("slides") or []
        body_text = "\n\n".join(self.slide_text(slide) for slide in slides)

        metadata = await self._drive_metadata(file_id, credential)
        metadata.setdefault("platform_specific", {})["slide_count"] = len(slides)

        return self._document(job, presentation.get("title") or UNTITLED, body_text, metadata)

    @staticmethod
    def slide_text(slide: dict) -> str:
        parts = []
        for element in slide.get("pageElements") or []:
            text = ((element.get("shape") or {}).get("text") or {}) if isinstance(element, dict) else {}
            parts.append(_text_runs(text.get("textElements") or []))
        return "".join(parts)


class SlackConversationExtractor(Extractor):
    """Slack threads via conversations.replies, single messages via conversations.history."""

    platforms = frozenset({PlatformType.SLACK_THREAD, PlatformType.SLACK_MESSAGE})

    async def call(self, method: str, credential: Credential, params: Mapping[str, Any]) -> dict:
        """Call a Web API method; Slack reports errors in the body with `ok: false`.

        Raises:
            ExtractionError: If the response has `ok: false`
        """
        body = await self._get_json(SLACK_API_URL.format(method=method), credential, params)
        if not body.get("ok"):
            raise ExtractionError(f"Slack API error in {method}: {body.get('error', 'unknown_error')}")
        return body

    async def extract(self, job: ExtractionJob) -> ExtractedDocument:
        attributes = job.link.attributes
        channel = attributes.get("channel")
        if not channel:
            raise ExtractionError(f"Slack link without a channel: {job.link.url}")
        credential = await self.credentials.credential_for(job.user_id)

        if job.link.platform == PlatformType.SLACK_THREAD:
            thread_ts = attributes.get("thread_ts") or attributes.get("message_ts")
            body = await self.call("conversations.replies", credential, {"channel": channel, "ts": thread_ts})
        else:
            body = await self.call(
                "conversations.history",
                credential,
                {"channel": channel, "latest": attributes.get("message_ts"), "inclusive": "true", "limit": 1},
            )
        messages = [m for m in body.get("messages") or [] if isinstance(m, dict)]

        try:
            info = await self.call("conversations.info", credential, {"channel": channel})
            channel_name = (info.get("channel") or {}).get("name") or channel
        except (ApiError, ParseError, ExtractionError) as e:
            logger.warning("Channel info unavailable for %s: %s", channel, e)
            channel_name = channel

        body_text = "\n".join(
            f"{m.get('user') or m.get('username') or 'unknown'}: {m.get('text', '')}" for m in messages
        )
        first = messages[0] if messages else {}
        metadata = {
            "author": first.get("user"),
            "created_time": first.get("ts"),
            "modified_time": messages[-1].get("ts") if messages else None,
            "comments_count": max(len(messages) - 1, 0),
            "platform_specific": {
                "channel": channel,
                "channel_name": channel_name,
                "workspace": attributes.get("workspace"),
                "message_count": len(messages),
                "participants": sorted({m["user"] for m in messages if m.get("user")}),
            },
        }
        return self._document(job, f"#{channel_name}", body_text, metadata)


class ExtractorRegistry:
    """Extractor lookup by platform."""

    def __init__(self, extractors: list[Extractor]) -> None:
        self._by_platform: dict[PlatformType, Extractor] = {}
        for extractor in extractors:
            for platform in extractor.platforms:
                self._by_platform[platform] = extractor

    def __contains__(self, platform: PlatformType) -> bool:
        return platform in self._by_platform

    def get(self, platform: PlatformType) -> Extractor:
        """
        Raises:
            ConfigurationError: If no extractor handles the platform
        """
        try:
            return self._by_platform[platform]
        except KeyError:
            raise ConfigurationError(f"No extractor registered for {platform.value}") from None


def build_extractors(
    client: ApiClient,
    settings: Settings,
    retry_policy: Optional[RetryPolicy] = None,
) -> ExtractorRegistry:
    """Build the extractor registry from configured platform tokens."""
    retry_policy = retry_policy or RetryPolicy.from_settings(settings)
    google = StaticUserCredentials(default_token=settings.GOOGLE_ACCESS_TOKEN)
    slack = StaticUserCredentials(default_token=settings.SLACK_BOT_TOKEN)

    if not settings.GOOGLE_ACCESS_TOKEN:
        logger.warning("GOOGLE_ACCESS_TOKEN not configured, Google extraction jobs will fail")
    if not settings.SLACK_BOT_TOKEN:
        logger.warning("SLACK_BOT_TOKEN not configured, Slack extraction jobs will fail")

    return ExtractorRegistry([
        GoogleDocsExtractor(client, google, retry_policy),
        GoogleSheetsExtractor(client, google, retry_policy),
        GoogleSlidesExtractor(client, google, retry_policy),
        SlackConversationExtractor(client, slack, retry_policy),
    ])
