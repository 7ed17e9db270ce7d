"""
Pydantic Schemas - Data Validation Models

Defines all Pydantic schemas used throughout the pipeline:
- Tracker search and item responses (WorkItemSummary, WorkItemDetail)
- Link descriptors discovered inside work items
- Extraction jobs and the documents they produce
- Redis Pub/Sub event payloads

Usage:
    from utils.schemas import WorkItemSummary

    summary = WorkItemSummary.from_api(raw_issue)
"""

from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Optional
from uuid import UUID, uuid4

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from utils.errors import ParseError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def dump_json(value: Any) -> Optional[str]:
    """Serialize a raw JSON value to text, keeping None as None."""
    if value is None:
        return None
    return orjson.dumps(value).decode("utf-8")


def _name_of(value: Any, key: str = "name") -> Optional[str]:
    if isinstance(value, dict):
        found = value.get(key)
        return str(found) if found is not None else None
    return None


def _person(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("displayName") or value.get("accountId") or value.get("emailAddress")
    return None


class PlatformType(str, Enum):
    """External platform a discovered link points to."""

    GOOGLE_DOCS = "google_docs"
    GOOGLE_SHEETS = "google_sheets"
    GOOGLE_SLIDES = "google_slides"
    SLACK_THREAD = "slack_thread"
    SLACK_MESSAGE = "slack_message"
    CONFLUENCE_PAGE = "confluence_page"
    GITHUB_PR = "github_pr"
    GITHUB_ISSUE = "github_issue"
    GITHUB_COMMIT = "github_commit"
    UNKNOWN = "unknown"


class LinkDescriptor(BaseModel):
    """A link found inside a work item, classified by platform."""

    model_config = ConfigDict(frozen=True)

    url: str
    platform: PlatformType
    external_id: str = Field(..., description="Document/thread/PR identifier on the platform")
    context: str = Field(default="", description="Where the link was found, e.g. ENG-1.description")
    attributes: dict[str, str] = Field(default_factory=dict)


class WorkItemSummary(BaseModel):
    """Minimal work item as returned by a search page."""

    model_config = ConfigDict(frozen=True)

    id: str
    key: str
    summary: Optional[str] = None
    status: Optional[str] = None
    created: Optional[str] = None
    updated: Optional[str] = None

    @classmethod
    def from_api(cls, raw: Any) -> "WorkItemSummary":
        """Build a summary from one entry of the search `issues` array.

        Raises:
            ParseError: If the entry is not an object or lacks id/key
        """
        if not isinstance(raw, dict) or raw.get("id") is None or raw.get("key") is None:
            raise ParseError(f"Search result entry lacks id/key: {raw!r:.200}")

        fields = raw.get("fields") or {}
        if not isinstance(fields, dict):
            raise ParseError(f"Search result entry {raw['key']} has non-object fields")

        try:
            return cls(
                id=str(raw["id"]),
                key=str(raw["key"]),
                summary=fields.get("summary"),
                status=_name_of(fields.get("status")),
                created=fields.get("created"),
                updated=fields.get("updated"),
            )
        except ValidationError as e:
            raise ParseError(f"Search result entry {raw['key']} is malformed: {e}") from e


# Item fields mapped onto typed WorkItemDetail attributes; everything else
# lands in WorkItemDetail.extra_fields.
KNOWN_FIELDS = frozenset({
    "summary", "status", "issuetype", "priority", "assignee", "reporter",
    "labels", "created", "updated", "project", "description", "comment",
    "issuelinks", "attachment", "subtasks", "watches", "worklog", "timetracking",
})

# Expansion objects stored verbatim as serialized text.
RAW_SUBDOCUMENTS = {
    "renderedFields": "rendered_fields",
    "names": "names",
    "schema": "field_schema",
    "transitions": "transitions",
    "editmeta": "edit_meta",
    "changelog": "changelog",
    "versionedRepresentations": "versioned_representations",
}


class WorkItemDetail(BaseModel):
    """Fully resolved work item, written once by the batch writer."""

    model_config = ConfigDict(frozen=True)

    id: str
    key: str
    self_link: Optional[str] = None
    summary: Optional[str] = None
    status: Optional[str] = None
    issue_type: Optional[str] = None
    priority: Optional[str] = None
    assignee: Optional[str] = None
    reporter: Optional[str] = None
    labels: list[str] = Field(default_factory=list)
    created: Optional[str] = None
    updated: Optional[str] = None
    project_key: Optional[str] = None
    project_name: Optional[str] = None

    # Free-text and people/link blobs, serialized JSON
    description: Optional[str] = None
    comment: Optional[str] = None
    issue_links: Optional[str] = None
    attachment: Optional[str] = None
    sub_tasks: Optional[str] = None
    watcher: Optional[str] = None
    work_log: Optional[str] = None
    time_tracking: Optional[str] = None

    # Opaque expansion objects, serialized JSON ("{}" when absent)
    rendered_fields: str = "{}"
    names: str = "{}"
    field_schema: str = "{}"
    transitions: str = "{}"
    edit_meta: str = "{}"
    changelog: str = "{}"
    versioned_representations: str = "{}"

    extra_fields: dict[str, Any] = Field(default_factory=dict)
    links: list[LinkDescriptor] = Field(default_factory=list)

    @classmethod
    def from_api(
        cls,
        body: Any,
        summary: WorkItemSummary,
        links: Optional[list[LinkDescriptor]] = None,
    ) -> "WorkItemDetail":
        """Build a detail record from an item endpoint response.

        Args:
            body: Decoded item response
            summary: Search-page summary the fetch was issued for
            links: Links already discovered in the item's fields

        Raises:
            ParseError: If the body is not an object or lacks `fields`
        """
        if not isinstance(body, dict):
            raise ParseError(f"Item {summary.key} response is not an object")

        fields = body.get("fields")
        if not isinstance(fields, dict):
            raise ParseError(f"Item {summary.key} response is missing the 'fields' object")

        try:
            return cls._from_fields(body, fields, summary, links or [])
        except (ValidationError, TypeError) as e:
            raise ParseError(f"Item {summary.key} response is malformed: {e}") from e

    @classmethod
    def _from_fields(
        cls,
        body: dict[str, Any],
        fields: dict[str, Any],
        summary: WorkItemSummary,
        links: list[LinkDescriptor],
    ) -> "WorkItemDetail":
        project = fields.get("project")
        raw_docs = {
            attr: dump_json(body[source]) if body.get(source) is not None else "{}"
            for source, attr in RAW_SUBDOCUMENTS.items()
        }

        return cls(
            id=str(body.get("id") or summary.id),
            key=str(body.get("key") or summary.key),
            self_link=body.get("self"),
            summary=fields.get("summary", summary.summary),
            status=_name_of(fields.get("status")) or summary.status,
            issue_type=_name_of(fields.get("issuetype")),
            priority=_name_of(fields.get("priority")),
            assignee=_person(fields.get("assignee")),
            reporter=_person(fields.get("reporter")),
            labels=[str(label) for label in fields.get("labels") or []],
            created=fields.get("created", summary.created),
            updated=fields.get("updated", summary.updated),
            project_key=_name_of(project, "key"),
            project_name=_name_of(project),
            description=dump_json(fields.get("description")),
            comment=dump_json(fields.get("comment")),
            issue_links=dump_json(fields.get("issuelinks")),
            attachment=dump_json(fields.get("attachment")),
            sub_tasks=dump_json(fields.get("subtasks")),
            watcher=dump_json(fields.get("watches")),
            work_log=dump_json(fields.get("worklog")),
            time_tracking=dump_json(fields.get("timetracking")),
            extra_fields={k: v for k, v in fields.items() if k not in KNOWN_FIELDS},
            links=links,
            **raw_docs,
        )


class JobPriority(IntEnum):
    """Extraction priority; lower value is served first."""

    HIGH = 0  # recently updated items or user requested
    MEDIUM = 1
    LOW = 2  # bulk historical processing

    @classmethod
    def from_name(cls, name: str) -> "JobPriority":
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown job priority: {name!r}") from None


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    RETRYING = "retrying"
    FAILED = "failed"


class ExtractionJob(BaseModel):
    """A request to extract one external document.

    Mutable: the queue and the worker holding it update status, retry count
    and schedule in place.
    """

    id: UUID = Field(default_factory=uuid4)
    source_item_id: str
    link: LinkDescriptor
    user_id: str
    priority: JobPriority = JobPriority.MEDIUM
    retry_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    scheduled_for: datetime = Field(default_factory=utcnow)
    status: JobStatus = JobStatus.PENDING
    failure_reason: Optional[str] = None


class DocumentMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    author: Optional[str] = None
    created_time: Optional[str] = None
    modified_time: Optional[str] = None
    comments_count: int = 0
    revisions_count: int = 0
    content_length: int = 0
    platform_specific: dict[str, Any] = Field(default_factory=dict)


class ExtractedDocument(BaseModel):
    """Content produced by one successful extraction attempt."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    job_id: UUID
    platform: PlatformType
    source_url: str
    title: str
    body_text: str
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    extracted_at: datetime = Field(default_factory=utcnow)
    source_item_ids: list[str] = Field(default_factory=list)


class PipelineEvent(BaseModel):
    """Redis Pub/Sub event payload.

    Standard format for sync completion events:
    {
        "type": "sync_completed",
        "run_id": "9f0c...",
        "projects": ["ENG", "OPS"],
        "item_ids": ["10001", "10002"],
        "ts": "2025-01-15T03:15:02Z"
    }
    """

    type: str = Field(..., description="Event type")
    run_id: str = Field(default="", description="Sync run identifier")
    projects: list[str] = Field(default_factory=list)
    item_ids: list[str] = Field(default_factory=list)
    ts: datetime = Field(default_factory=utcnow, description="Timestamp")
