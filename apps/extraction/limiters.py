"""
Per-platform rate limiting for extraction workers.

Each platform family has its own semaphore sized from settings, since the
external services have very different throughput ceilings. A link maps to
its family through `rate_category_for`; a family without a registered
limiter is a deployment error and raises instead of running unthrottled.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, Mapping

from utils.config import Settings
from utils.errors import ConfigurationError
from utils.schemas import LinkDescriptor, PlatformType

logger = logging.getLogger(__name__)


class RateCategory(str, Enum):
    GOOGLE_DOCS = "google_docs"
    GOOGLE_SHEETS = "google_sheets"
    GOOGLE_SLIDES = "google_slides"
    SLACK_THREAD = "slack_thread"
    SLACK_MESSAGE = "slack_message"
    CONFLUENCE = "confluence"
    GITHUB = "github"
    UNKNOWN = "unknown"


_CATEGORY_BY_PLATFORM = {
    PlatformType.GOOGLE_DOCS: RateCategory.GOOGLE_DOCS,
    PlatformType.GOOGLE_SHEETS: RateCategory.GOOGLE_SHEETS,
    PlatformType.GOOGLE_SLIDES: RateCategory.GOOGLE_SLIDES,
    PlatformType.SLACK_THREAD: RateCategory.SLACK_THREAD,
    PlatformType.SLACK_MESSAGE: RateCategory.SLACK_MESSAGE,
    PlatformType.CONFLUENCE_PAGE: RateCategory.CONFLUENCE,
    PlatformType.GITHUB_PR: RateCategory.GITHUB,
    PlatformType.GITHUB_ISSUE: RateCategory.GITHUB,
    PlatformType.GITHUB_COMMIT: RateCategory.GITHUB,
}


def rate_category_for(link: LinkDescriptor) -> RateCategory:
    return _CATEGORY_BY_PLATFORM.get(link.platform, RateCategory.UNKNOWN)


class RateLimiterRegistry:
    """Semaphores keyed by rate category."""

    def __init__(self, permits: Mapping[RateCategory, int]) -> None:
        self.permits = dict(permits)
        self._limiters = {category: asyncio.Semaphore(count) for category, count in self.permits.items()}

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiterRegistry":
        return cls({
            RateCategory.GOOGLE_DOCS: settings.GOOGLE_DOCS_PERMITS,
            RateCategory.GOOGLE_SHEETS: settings.GOOGLE_SHEETS_PERMITS,
            RateCategory.GOOGLE_SLIDES: settings.GOOGLE_SLIDES_PERMITS,
            RateCategory.SLACK_THREAD: settings.SLACK_THREAD_PERMITS,
            RateCategory.SLACK_MESSAGE: settings.SLACK_MESSAGE_PERMITS,
        })

    def __contains__(self, category: RateCategory) -> bool:
        return category in self._limiters

    def get(self, category: RateCategory) -> asyncio.Semaphore:
        """
        Raises:
            ConfigurationError: If no limiter is registered for the category
        """
        try:
            return self._limiters[category]
        except KeyError:
            raise ConfigurationError(f"No rate limiter registered for {category.value}") from None

    @asynccontextmanager
    async def acquire(self, category: RateCategory) -> AsyncIterator[None]:
        """Hold one permit of the category's limiter."""
        async with self.get(category):
            yield
