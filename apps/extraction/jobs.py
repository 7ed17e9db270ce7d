"""
Extraction job producer.

Turns the links discovered in a work item into extraction jobs. Only links to
platforms with an extractor produce jobs; everything else is ignored.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from utils.schemas import ExtractionJob, JobPriority, LinkDescriptor, PlatformType, utcnow

logger = logging.getLogger(__name__)

SUPPORTED_PLATFORMS = frozenset({
    PlatformType.GOOGLE_DOCS,
    PlatformType.GOOGLE_SHEETS,
    PlatformType.GOOGLE_SLIDES,
    PlatformType.SLACK_THREAD,
    PlatformType.SLACK_MESSAGE,
})


def create_extraction_jobs(
    source_item_id: str,
    links: Iterable[LinkDescriptor],
    user_id: str,
    priority: JobPriority = JobPriority.MEDIUM,
    now: Optional[datetime] = None,
) -> list[ExtractionJob]:
    """Create one pending job per supported link.

    All jobs of one call share the same creation time and are eligible
    immediately.
    """
    now = now or utcnow()
    jobs = [
        ExtractionJob(
            source_item_id=source_item_id,
            link=link,
            user_id=user_id,
            priority=priority,
            created_at=now,
            scheduled_for=now,
        )
        for link in links
        if link.platform in SUPPORTED_PLATFORMS
    ]

    logger.debug("Created %d extraction job(s) for item %s", len(jobs), source_item_id)
    return jobs
