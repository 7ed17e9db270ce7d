"""
Sync Controller - Top-level driver of an ingestion run

Wires the pipeline together for a set of projects:
- Paginator -> MetadataResolver -> result channel -> BatchWriter -> storage
- One global fetch semaphore shared by every project
- One writer for all concurrently syncing projects

Failure scoping is decided here and nowhere else:
- Item failures are counted and skipped by the resolver
- A pagination failure aborts only its own project
- A storage failure is fatal to the whole run

Usage:
    controller = SyncController(client, credentials, db, settings)
    report = await controller.run(["ENG", "OPS"])
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from apps.sync.paginator import Paginator
from apps.sync.resolver import MetadataResolver
from apps.sync.writer import BatchWriter, WorkItemStore
from utils.auth import CredentialProvider
from utils.channel import Channel
from utils.config import Settings
from utils.errors import PaginationError
from utils.http import ApiClient
from utils.links import LinkDetector
from utils.retry import RetryPolicy
from utils.schemas import WorkItemDetail

logger = logging.getLogger(__name__)


@dataclass
class ProjectReport:
    project_id: str
    pages: int = 0
    succeeded: int = 0
    failed: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SyncReport:
    run_id: str
    projects: list[ProjectReport] = field(default_factory=list)
    persisted: int = 0
    item_ids: list[str] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def succeeded(self) -> int:
        return sum(p.succeeded for p in self.projects)

    @property
    def failed(self) -> int:
        return sum(p.failed for p in self.projects)

    @property
    def failed_projects(self) -> list[str]:
        return [p.project_id for p in self.projects if not p.ok]


class _TrackingChannel(Channel[WorkItemDetail]):
    """Result channel that remembers which item ids went through it."""

    def __init__(self, maxsize: int = 0) -> None:
        super().__init__(maxsize)
        self.item_ids: list[str] = []

    async def send(self, item: WorkItemDetail) -> None:
        await super().send(item)
        self.item_ids.append(item.id)


class SyncController:
    def __init__(
        self,
        client: ApiClient,
        credentials: CredentialProvider,
        store: WorkItemStore,
        settings: Settings,
        retry_policy: Optional[RetryPolicy] = None,
        link_detector: Optional[LinkDetector] = None,
    ) -> None:
        self.client = client
        self.credentials = credentials
        self.store = store
        self.settings = settings
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.link_detector = link_detector or LinkDetector()

    async def run(self, project_ids: list[str]) -> SyncReport:
        """Sync all projects concurrently and persist their items.

        Raises:
            StorageError: If the writer fails; project tasks are cancelled
        """
        report = SyncReport(run_id=uuid.uuid4().hex)
        start_time = time.time()

        credential = await self.credentials.get_credential()
        semaphore = asyncio.Semaphore(self.settings.fetch_concurrency())
        channel = _TrackingChannel(self.settings.RESULT_CHANNEL_SIZE)
        writer = BatchWriter(self.store, self.settings.BATCH_SIZE)
        resolver = MetadataResolver(
            self.client, credential, self.retry_policy, semaphore, channel, self.link_detector
        )
        paginator = Paginator(self.client, credential, self.retry_policy, self.settings.PAGE_SIZE)

        logger.info(
            "Starting sync run %s for %d project(s) (fetch_concurrency=%d, page_size=%d, batch_size=%d)",
            report.run_id, len(project_ids), self.settings.fetch_concurrency(),
            self.settings.PAGE_SIZE, self.settings.BATCH_SIZE,
        )

        writer_task = asyncio.create_task(writer.run(channel), name="batch-writer")
        projects_task = asyncio.gather(
            *(self.sync_project(project_id, paginator, resolver) for project_id in project_ids)
        )

        done, _ = await asyncio.wait({writer_task, projects_task}, return_when=asyncio.FIRST_COMPLETED)
        if writer_task in done and projects_task not in done:
            # Writer died while producers were still running
            projects_task.cancel()
            try:
                await projects_task
            except asyncio.CancelledError:
                pass
            report.elapsed = time.time() - start_time
            logger.error("Sync run %s aborted: batch writer failed", report.run_id)
            writer_task.result()

        try:
            report.projects = await projects_task
        except Exception:
            writer_task.cancel()
            raise
        await channel.close()
        report.persisted = await writer_task
        report.item_ids = channel.item_ids
        report.elapsed = time.time() - start_time

        logger.info(
            "Sync run %s finished: %d succeeded, %d failed, %d persisted, failed projects=%s, elapsed=%.3fs",
            report.run_id, report.succeeded, report.failed, report.persisted,
            report.failed_projects, report.elapsed,
        )
        return report

    async def sync_project(
        self,
        project_id: str,
        paginator: Paginator,
        resolver: MetadataResolver,
    ) -> ProjectReport:
        """Sync one project page by page; pagination errors end only this project."""
        project = ProjectReport(project_id=project_id)
        logger.info("Syncing project %s", project_id)

        try:
            async for page in paginator.pages(project_id):
                project.pages += 1
                result = await resolver.resolve_page(page)
                project.succeeded += result.succeeded
                project.failed += result.failed
        except PaginationError as e:
            project.error = str(e)
            logger.error(
                "Project %s sync aborted: %s", project_id, e,
                extra={"project": project_id, "pages": project.pages},
            )
            return project

        logger.info(
            "Project %s synced: pages=%d, succeeded=%d, failed=%d",
            project_id, project.pages, project.succeeded, project.failed,
        )
        return project
