"""
Search pagination for one project.

Pages are requested strictly in order: startAt=0, PAGE_SIZE, 2*PAGE_SIZE, ...
until a page comes back empty or the offset reaches the reported total.
"""

import logging
from typing import AsyncIterator

from utils.auth import Credential
from utils.errors import ApiError, PaginationError, ParseError
from utils.http import ApiClient
from utils.retry import RetryPolicy
from utils.schemas import WorkItemSummary

logger = logging.getLogger(__name__)

SEARCH_PATH = "/rest/api/3/search"


def search_params(project_id: str, start_at: int, page_size: int) -> dict[str, str | int]:
    return {"jql": f"project={project_id}", "startAt": start_at, "maxResults": page_size}


class Paginator:
    """Yields pages of WorkItemSummary for a project."""

    def __init__(
        self,
        client: ApiClient,
        credential: Credential,
        retry_policy: RetryPolicy,
        page_size: int = 50,
    ) -> None:
        self.client = client
        self.credential = credential
        self.retry_policy = retry_policy
        self.page_size = page_size

    async def pages(self, project_id: str) -> AsyncIterator[list[WorkItemSummary]]:
        """Iterate over the project's search pages.

        Raises:
            PaginationError: On any failed page; the project sync must stop
        """
        start_at = 0
        while True:
            logger.debug("Fetching search page (project=%s, start_at=%d)", project_id, start_at)

            try:
                response = await self.retry_policy.send(
                    lambda: self.client.get(
                        SEARCH_PATH,
                        self.credential,
                        params=search_params(project_id, start_at, self.page_size),
                    )
                )
                body = response.json()
                issues, total = self._parse_page(body)
                page = [WorkItemSummary.from_api(issue) for issue in issues]
            except (ApiError, ParseError) as e:
                raise PaginationError(project_id, start_at, e) from e

            if not page:
                logger.info("No more items for project %s (start_at=%d)", project_id, start_at)
                return

            logger.info(
                "Retrieved %d item(s) for project %s (start_at=%d, total=%d)",
                len(page), project_id, start_at, total,
            )
            yield page

            start_at += self.page_size
            if start_at >= total:
                logger.info("Completed pagination for project %s (%d items)", project_id, total)
                return

    @staticmethod
    def _parse_page(body) -> tuple[list, int]:
        if not isinstance(body, dict) or not isinstance(body.get("issues"), list):
            raise ParseError("Search response is missing the 'issues' array")
        total = body.get("total")
        if not isinstance(total, int):
            total = 0
        return body["issues"], total
