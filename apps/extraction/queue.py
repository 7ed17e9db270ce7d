"""
In-memory priority job queue shared by all extraction workers.

Jobs wait in one list kept sorted by (priority, created_at): High before
Medium before Low, earliest first within a tier. Workers pull the first job
that is due; claim and insert are serialized by a lock so ordering is global.

Every job ever added stays in a registry so that statistics and per-item
listings also cover jobs that are being processed or have finished.
"""

import asyncio
import logging
from collections import Counter
from datetime import datetime
from typing import Callable, Iterable, Optional
from uuid import UUID

from utils.schemas import ExtractionJob, JobStatus, utcnow

logger = logging.getLogger(__name__)

CLAIMABLE = frozenset({JobStatus.PENDING, JobStatus.RETRYING})


def _sort_key(job: ExtractionJob) -> tuple:
    return (int(job.priority), job.created_at)


class JobQueue:
    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._lock = asyncio.Lock()
        self._waiting: list[ExtractionJob] = []
        self._jobs: dict[UUID, ExtractionJob] = {}

    async def add_jobs(self, jobs: Iterable[ExtractionJob]) -> int:
        """Insert a batch of jobs and restore priority order.

        Returns:
            Number of jobs inserted
        """
        jobs = list(jobs)
        async with self._lock:
            for job in jobs:
                self._jobs[job.id] = job
                self._waiting.append(job)
            self._waiting.sort(key=_sort_key)

        if jobs:
            logger.info("Queued %d extraction job(s) (waiting=%d)", len(jobs), len(self._waiting))
        return len(jobs)

    async def requeue(self, job: ExtractionJob) -> None:
        """Put a job back after a transient failure."""
        await self.add_jobs([job])

    async def claim(self) -> Optional[ExtractionJob]:
        """Remove and return the first due job, marked PROCESSING.

        Returns:
            The claimed job, or None when nothing is due yet
        """
        now = self._clock()
        async with self._lock:
            for index, job in enumerate(self._waiting):
                if job.status in CLAIMABLE and job.scheduled_for <= now:
                    del self._waiting[index]
                    job.status = JobStatus.PROCESSING
                    return job
        return None

    @property
    def waiting(self) -> int:
        return len(self._waiting)

    def has_unfinished(self) -> bool:
        """True while any job is waiting or being processed."""
        return any(job.status not in (JobStatus.COMPLETED, JobStatus.FAILED) for job in self._jobs.values())

    def total_jobs(self) -> int:
        return len(self._jobs)

    def count_by_status(self) -> dict[JobStatus, int]:
        return dict(Counter(job.status for job in self._jobs.values()))

    def status(self) -> tuple[int, dict[JobStatus, int]]:
        """Total job count and per-status breakdown."""
        return self.total_jobs(), self.count_by_status()

    def jobs_for_item(self, source_item_id: str) -> list[ExtractionJob]:
        return [job for job in self._jobs.values() if job.source_item_id == source_item_id]

    def get(self, job_id: UUID) -> Optional[ExtractionJob]:
        return self._jobs.get(job_id)
