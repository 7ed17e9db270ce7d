"""
Event Publisher for Sync Service

Publishes a sync completion event to Redis Pub/Sub after a run so that
downstream consumers (content extraction, dashboards) can pick up the
freshly persisted work items.

Usage:
    from apps.sync.publisher import publish_sync_event

    await publish_sync_event(report)
"""

import logging

from apps.sync.controller import SyncReport
from utils.config import settings
from utils.mq import RedisPublisher
from utils.schemas import PipelineEvent

logger = logging.getLogger(__name__)


async def publish_sync_event(report: SyncReport, publisher: RedisPublisher | None = None) -> None:
    """
    Publish a sync_completed event for a finished run.

    Args:
        report: Report of the finished sync run
        publisher: Publisher to use; a short-lived one is created when omitted

    Raises:
        redis.RedisError: If publishing fails
    """
    owns_publisher = publisher is None
    publisher = publisher or RedisPublisher()

    event = PipelineEvent(
        type="sync_completed",
        run_id=report.run_id,
        projects=[p.project_id for p in report.projects if p.ok],
        item_ids=report.item_ids,
    )

    try:
        await publisher.publish(settings.REDIS_CHANNEL_SYNC, event)

        logger.info(
            "Published sync event",
            extra={
                "channel": settings.REDIS_CHANNEL_SYNC,
                "run_id": report.run_id,
                "item_count": len(report.item_ids),
            },
        )

    except Exception as e:
        logger.error(
            "Failed to publish event",
            extra={
                "channel": settings.REDIS_CHANNEL_SYNC,
                "run_id": report.run_id,
                "error": str(e),
            },
        )
        raise

    finally:
        if owns_publisher:
            await publisher.close()
