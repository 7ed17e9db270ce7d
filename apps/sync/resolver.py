"""
Bounded metadata resolver.

Fans out one detail fetch per summary in a page. Every fetch holds a permit
of the shared semaphore, so the number of in-flight requests never exceeds
the global cap no matter how many pages or projects are resolving at once.
"""

import asyncio
import logging
from dataclasses import dataclass

from utils.auth import Credential
from utils.channel import Channel
from utils.errors import ApiError, ParseError
from utils.http import ApiClient
from utils.links import LinkDetector
from utils.retry import RetryPolicy
from utils.schemas import WorkItemDetail, WorkItemSummary

logger = logging.getLogger(__name__)

ITEM_PATH = "/rest/api/3/issue/{item_id}"
ITEM_EXPAND = "renderedFields,names,schema,transitions,editmeta,changelog,versionedRepresentations"


@dataclass
class ResolveResult:
    succeeded: int = 0
    failed: int = 0


class MetadataResolver:
    """Resolves summaries into details and sends them to the result channel.

    The channel is shared with other resolvers and is never closed here.
    """

    def __init__(
        self,
        client: ApiClient,
        credential: Credential,
        retry_policy: RetryPolicy,
        semaphore: asyncio.Semaphore,
        results: Channel[WorkItemDetail],
        link_detector: LinkDetector | None = None,
    ) -> None:
        self.client = client
        self.credential = credential
        self.retry_policy = retry_policy
        self.semaphore = semaphore
        self.results = results
        self.link_detector = link_detector or LinkDetector()

    async def resolve_page(self, page: list[WorkItemSummary]) -> ResolveResult:
        """Resolve every item of a page; returns once all fetches finished."""
        outcomes = await asyncio.gather(*(self._resolve_item(summary) for summary in page))

        result = ResolveResult(succeeded=sum(outcomes), failed=len(outcomes) - sum(outcomes))
        logger.info(
            "Resolved page: %d item(s) (%d succeeded, %d failed)",
            len(outcomes), result.succeeded, result.failed,
        )
        return result

    async def _resolve_item(self, summary: WorkItemSummary) -> bool:
        async with self.semaphore:
            try:
                detail = await self.fetch_detail(summary)
            except (ApiError, ParseError) as e:
                logger.warning(
                    "Skipped item %s: %s", summary.key, e,
                    extra={"item_id": summary.id, "item_key": summary.key},
                )
                return False

        await self.results.send(detail)
        return True

    async def fetch_detail(self, summary: WorkItemSummary) -> WorkItemDetail:
        """Fetch and parse one item.

        Raises:
            ApiError: On request failure, non-success status or exhausted retries
            ParseError: On a malformed body
        """
        response = await self.retry_policy.send(
            lambda: self.client.get(
                ITEM_PATH.format(item_id=summary.id),
                self.credential,
                params={"expand": ITEM_EXPAND},
            )
        )
        body = response.json()
        fields = body.get("fields") if isinstance(body, dict) else None
        links = self.link_detector.extract_links(fields, summary.key) if isinstance(fields, dict) else []
        detail = WorkItemDetail.from_api(body, summary, links)

        logger.debug("Resolved item %s (%d link(s))", detail.key, len(detail.links))
        return detail
