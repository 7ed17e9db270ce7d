"""
Extraction Worker Pool

A fixed number of long-running worker loops sharing one JobQueue:
- Claim the highest-priority due job, or idle-sleep and rescan
- Hold a permit of the job's platform rate limiter during extraction
- Emit the ExtractedDocument to the results channel on success
- On failure, reschedule with a linearly growing delay until the retry cap

A job whose platform has no limiter or no extractor is a configuration
error: it is failed immediately, logged at ERROR and kept in
`configuration_errors` for the caller to surface.

Usage:
    pool = WorkerPool(queue, limiters, extractors, results, worker_count=4)
    await pool.start()
    ...
    await pool.stop()
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from apps.extraction.extractors import ExtractorRegistry
from apps.extraction.limiters import RateLimiterRegistry, rate_category_for
from apps.extraction.queue import JobQueue
from utils.channel import Channel
from utils.config import Settings
from utils.errors import ConfigurationError, PipelineError
from utils.schemas import ExtractedDocument, ExtractionJob, JobStatus, utcnow

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = timedelta(minutes=5)


class WorkerPool:
    def __init__(
        self,
        queue: JobQueue,
        limiters: RateLimiterRegistry,
        extractors: ExtractorRegistry,
        results: Channel[ExtractedDocument],
        worker_count: int = 4,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: timedelta = DEFAULT_RETRY_DELAY,
        idle_sleep: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.queue = queue
        self.limiters = limiters
        self.extractors = extractors
        self.results = results
        self.worker_count = worker_count
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.idle_sleep = idle_sleep
        self._clock = clock
        self._sleep = sleep

        self.completed = 0
        self.failed = 0
        self.configuration_errors: list[ExtractionJob] = []
        self._tasks: list[asyncio.Task] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        queue: JobQueue,
        limiters: RateLimiterRegistry,
        extractors: ExtractorRegistry,
        results: Channel[ExtractedDocument],
    ) -> "WorkerPool":
        return cls(
            queue,
            limiters,
            extractors,
            results,
            worker_count=settings.EXTRACTION_WORKERS,
            max_retries=settings.EXTRACTION_MAX_RETRIES,
            retry_delay=timedelta(minutes=settings.EXTRACTION_RETRY_DELAY_MINUTES),
            idle_sleep=settings.EXTRACTION_IDLE_SLEEP,
        )

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._worker_loop(worker_id), name=f"extraction-worker-{worker_id}")
            for worker_id in range(self.worker_count)
        ]
        logger.info("Started %d extraction worker(s)", self.worker_count)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info(
            "Extraction workers stopped (completed=%d, failed=%d, configuration_errors=%d)",
            self.completed, self.failed, len(self.configuration_errors),
        )

    async def _worker_loop(self, worker_id: int) -> None:
        logger.debug("Worker %d started", worker_id)
        while True:
            job = await self.queue.claim()
            if job is None:
                await self._sleep(self.idle_sleep)
                continue

            logger.debug("Worker %d processing job %s (%s)", worker_id, job.id, job.link.url)
            try:
                await self.process(job)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Unexpected failure: fail the job so it does not stay PROCESSING forever
                self._mark_failed(job, f"Unexpected error: {type(e).__name__}: {e}")
                logger.error("Worker %d crashed on job %s", worker_id, job.id, exc_info=True)

    async def process(self, job: ExtractionJob) -> bool:
        """Run one extraction attempt for a claimed job.

        Returns:
            True if the job completed
        """
        category = rate_category_for(job.link)
        try:
            limiter = self.limiters.get(category)
            extractor = self.extractors.get(job.link.platform)
        except ConfigurationError as e:
            self.configuration_errors.append(job)
            self._mark_failed(job, f"Configuration error: {e}")
            logger.error(
                "Job %s cannot run: %s", job.id, e,
                extra={"job_id": str(job.id), "category": category.value, "url": job.link.url},
            )
            return False

        try:
            async with limiter:
                document = await extractor.extract(job)
        except PipelineError as e:
            await self._handle_failure(job, e)
            return False

        await self.results.send(document)
        job.status = JobStatus.COMPLETED
        job.failure_reason = None
        self.completed += 1
        logger.info("Job %s completed (%s, retries=%d)", job.id, job.link.platform.value, job.retry_count)
        return True

    async def _handle_failure(self, job: ExtractionJob, error: Exception) -> None:
        job.retry_count += 1
        if job.retry_count < self.max_retries:
            job.status = JobStatus.RETRYING
            job.scheduled_for = self._clock() + self.retry_delay * job.retry_count
            job.failure_reason = str(error)
            await self.queue.requeue(job)
            logger.warning(
                "Job %s failed, retry %d scheduled for %s: %s",
                job.id, job.retry_count, job.scheduled_for.isoformat(), error,
            )
            return

        self._mark_failed(job, str(error))
        logger.error("Job %s failed permanently after %d attempt(s): %s", job.id, job.retry_count, error)

    def _mark_failed(self, job: ExtractionJob, reason: str) -> None:
        job.status = JobStatus.FAILED
        job.failure_reason = reason
        self.failed += 1
