"""
Extraction Consumer - Redis Pub/Sub Event Handler

Consumes sync completion events from Redis Pub/Sub and turns the links found
in the freshly synced work items into extraction jobs. This is the entry point
for Phase 2 of the pipeline.

Features:
- Redis Pub/Sub subscription via production wrapper
- Event validation and filtering
- Job production into the shared priority queue
- Long-running worker pool and a single document saver
- Graceful shutdown handling

Usage:
    # Consumer mode (default)
    python -m apps.extraction

    # Handle one event, wait for its jobs to finish, then exit
    RUN_ONCE=true python -m apps.extraction
"""

import asyncio
import logging
import os
import signal
import sys
import time
from typing import Any, Dict, Optional, Protocol, Sequence

from pydantic import ValidationError

from apps.extraction.extractors import build_extractors
from apps.extraction.jobs import create_extraction_jobs
from apps.extraction.limiters import RateLimiterRegistry
from apps.extraction.queue import JobQueue
from apps.extraction.workers import WorkerPool
from utils.channel import Channel
from utils.config import settings
from utils.db import Database
from utils.http import ApiClient
from utils.logging import setup_logging
from utils.mq import RedisSubscriber
from utils.schemas import ExtractedDocument, JobPriority, PipelineEvent, WorkItemDetail

logger = logging.getLogger(__name__)

SYNC_COMPLETED = "sync_completed"


class WorkItemSource(Protocol):
    def get_work_items(self, ids: Sequence[str]) -> list[WorkItemDetail]: ...


class DocumentStore(Protocol):
    def save_extracted_documents(self, documents: Sequence[ExtractedDocument]) -> None: ...


class DocumentSaver:
    """Single consumer of the worker pool's results channel."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self.saved = 0

    async def run(self, results: Channel[ExtractedDocument]) -> int:
        """Persist documents as they arrive until the channel is closed.

        Raises:
            StorageError: If a save fails
        """
        async for document in results:
            await asyncio.to_thread(self.store.save_extracted_documents, [document])
            self.saved += 1
            logger.debug("Saved extracted document %s (%s)", document.id, document.source_url)

        logger.info("Document saver finished (documents=%d)", self.saved)
        return self.saved


class ExtractionConsumer:
    """
    Consumer for sync completion events from Redis Pub/Sub.

    Handles:
    - Redis subscription management
    - Event validation and filtering
    - Extraction job production for synced work items
    - Signal handling for graceful shutdown
    """

    def __init__(
        self,
        source: WorkItemSource,
        queue: JobQueue,
        pool: WorkerPool,
        run_once: bool = False,
        user_id: Optional[str] = None,
        priority: Optional[JobPriority] = None,
    ) -> None:
        """
        Initialize extraction consumer.

        Args:
            source: Storage the synced work items are loaded from
            queue: Job queue shared with the worker pool
            pool: Worker pool processing the queued jobs
            run_once: If True, handle one event, wait for its jobs and exit
            user_id: Owning user of produced jobs (default EXTRACTION_DEFAULT_USER)
            priority: Priority of produced jobs (default EXTRACTION_DEFAULT_PRIORITY)
        """
        self.source = source
        self.queue = queue
        self.pool = pool
        self.run_once = run_once
        self.user_id = user_id or settings.EXTRACTION_DEFAULT_USER
        self.priority = priority if priority is not None else JobPriority.from_name(
            settings.EXTRACTION_DEFAULT_PRIORITY
        )
        self.subscriber: RedisSubscriber | None = None
        self.shutdown_event = asyncio.Event()
        self._processed_count = 0

        logger.info(
            "ExtractionConsumer initialized",
            extra={
                "run_once": run_once,
                "target_channel": settings.REDIS_CHANNEL_SYNC,
                "priority": self.priority.name,
            },
        )

    async def handle_message(self, channel: str, message: Dict[str, Any]) -> None:
        """
        Handle incoming Redis Pub/Sub message.

        Validates the event structure and processes sync_completed events.

        Args:
            channel: Redis channel name
            message: Decoded message payload
        """
        try:
            event = PipelineEvent(**message)
        except ValidationError as e:
            logger.warning(
                "Invalid event payload",
                extra={"channel": channel, "payload": message, "error": str(e)},
            )
            return

        if event.type != SYNC_COMPLETED:
            logger.debug(
                "Ignoring non-sync_completed event",
                extra={"channel": channel, "event_type": event.type},
            )
            return

        try:
            await self.handle_sync_completed(event)
        except Exception as e:
            logger.error(
                "Failed to process message",
                extra={"channel": channel, "run_id": event.run_id, "error": str(e)},
                exc_info=True,
            )
            raise

        self._processed_count += 1

        if self.run_once:
            await self._wait_for_jobs()
            logger.info("RUN_ONCE mode: signaling shutdown after processing event")
            self.shutdown_event.set()

    async def handle_sync_completed(self, event: PipelineEvent) -> int:
        """
        Produce extraction jobs for every work item of a finished sync run.

        Returns:
            Number of jobs queued
        """
        start_time = time.time()
        items = await asyncio.to_thread(self.source.get_work_items, event.item_ids)

        jobs = []
        for item in items:
            jobs.extend(create_extraction_jobs(item.id, item.links, self.user_id, self.priority))
        queued = await self.queue.add_jobs(jobs)

        total, by_status = self.queue.status()
        logger.info(
            "Sync run %s: %d item(s) loaded, %d job(s) queued, elapsed=%.3fs",
            event.run_id, len(items), queued, time.time() - start_time,
            extra={
                "run_id": event.run_id,
                "total_jobs": total,
                "by_status": {status.value: count for status, count in by_status.items()},
            },
        )
        return queued

    async def _wait_for_jobs(self) -> None:
        while self.queue.has_unfinished():
            await asyncio.sleep(self.pool.idle_sleep)

    def setup_signal_handlers(self) -> None:
        """Setup handlers for graceful shutdown on SIGINT/SIGTERM."""

        def signal_handler(signum: int, frame: object) -> None:
            logger.info("Received signal %d, initiating graceful shutdown", signum)
            self.shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def start(self) -> None:
        """
        Start workers and process messages until shutdown signal.

        Connects to Redis, subscribes to the sync channel, and processes
        messages continuously until graceful shutdown is requested.
        """
        self.setup_signal_handlers()

        logger.info("Starting extraction consumer")
        await self.pool.start()

        self.subscriber = RedisSubscriber(channels=[settings.REDIS_CHANNEL_SYNC])

        try:
            await self.subscriber.connect()
            logger.info(
                "Connected to Redis and subscribed to channel",
                extra={"channel": settings.REDIS_CHANNEL_SYNC},
            )

            subscription_task = asyncio.create_task(self.subscriber.subscribe(self.handle_message))

            logger.info("Consumer started, waiting for messages...")

            done, pending = await asyncio.wait(
                [
                    asyncio.create_task(self.shutdown_event.wait()),
                    subscription_task,
                ],
                return_when=asyncio.FIRST_COMPLETED,
            )

            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

            # Surface a subscription failure instead of exiting quietly
            for task in done:
                task.result()

            total, by_status = self.queue.status()
            logger.info(
                "Consumer shutdown complete",
                extra={
                    "processed_events": self._processed_count,
                    "total_jobs": total,
                    "by_status": {status.value: count for status, count in by_status.items()},
                    "configuration_errors": len(self.pool.configuration_errors),
                },
            )

        except Exception as e:
            logger.error("Consumer failed", extra={"error": str(e)}, exc_info=True)
            raise

        finally:
            await self.pool.stop()
            if self.subscriber:
                self.subscriber.stop()
                await self.subscriber.close()
                logger.info("Redis subscriber connection closed")


async def main() -> None:
    """Main entry point for the extraction consumer."""
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    run_once = os.getenv("RUN_ONCE", "false").lower() in ("true", "1", "yes")

    db = Database(settings.SQLITE_PATH)
    db.init_schema()

    queue = JobQueue()
    results: Channel[ExtractedDocument] = Channel(settings.RESULT_CHANNEL_SIZE)
    saver = DocumentSaver(db)

    async with ApiClient(timeout=settings.API_TIMEOUT) as client:
        pool = WorkerPool.from_settings(
            settings,
            queue,
            RateLimiterRegistry.from_settings(settings),
            build_extractors(client, settings),
            results,
        )
        consumer = ExtractionConsumer(db, queue, pool, run_once=run_once)
        saver_task = asyncio.create_task(saver.run(results), name="document-saver")

        try:
            await consumer.start()
        except Exception as e:
            logger.error("Consumer failed", extra={"error": str(e)}, exc_info=True)
            sys.exit(1)
        finally:
            await results.close()
            await saver_task


if __name__ == "__main__":
    asyncio.run(main())
