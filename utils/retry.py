"""
Shared retry policy for rate-limited API calls.

Used by the paginator, the metadata resolver and the content extractors:
- Retry only on HTTP 429, up to `max_retries` times
- Wait the server's Retry-After hint, else base_delay * 2^(attempt-1)
- Add 0..max_jitter seconds of random jitter to every wait
- Any other non-success status fails immediately

Usage:
    policy = RetryPolicy.from_settings(settings)
    response = await policy.send(lambda: client.get(url, credential))
"""

import asyncio
import logging
from typing import Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from utils.config import Settings
from utils.errors import ApiStatusError, RateLimitExceeded
from utils.http import ApiResponse

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5


def is_rate_limited(response: ApiResponse) -> bool:
    return response.rate_limited


class wait_retry_after(wait_base):
    """Wait the Retry-After hint of the last response, else fall back."""

    def __init__(self, fallback: wait_base) -> None:
        self.fallback = fallback

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is not None and not outcome.failed:
            hint = outcome.result().retry_after
            if hint is not None:
                return hint
        return self.fallback(retry_state)


class RetryPolicy:
    """Bounded rate-limit retry with exponential backoff and jitter."""

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = 1.0,
        max_jitter: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_jitter = max_jitter
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.RETRY_MAX_RETRIES,
            base_delay=settings.RETRY_BASE_DELAY,
            max_jitter=settings.RETRY_MAX_JITTER,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_result(is_rate_limited),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_retry_after(wait_exponential(multiplier=self.base_delay, exp_base=2))
            + wait_random(0, self.max_jitter),
            sleep=self._sleep,
            before_sleep=self._log_backoff,
        )

    @staticmethod
    def _log_backoff(retry_state: RetryCallState) -> None:
        response = retry_state.outcome.result()
        logger.warning(
            "Rate limited, backing off %.2fs (attempt=%d, url=%s)",
            retry_state.next_action.sleep,
            retry_state.attempt_number,
            response.url,
        )

    async def send(self, request: Callable[[], Awaitable[ApiResponse]]) -> ApiResponse:
        """Run `request` under the policy and return a successful response.

        Args:
            request: Zero-argument coroutine function issuing one attempt

        Raises:
            RateLimitExceeded: If still rate limited after max_retries retries
            ApiStatusError: On any other non-success status
            ApiRequestError: On network failures (not retried)
        """
        async def attempt() -> ApiResponse:
            return await request()

        try:
            response = await self._retrying()(attempt)
        except RetryError as e:
            last = e.last_attempt.result()
            raise RateLimitExceeded(url=last.url, attempts=e.last_attempt.attempt_number) from e

        if not response.ok:
            raise ApiStatusError(
                f"HTTP {response.status} from {response.url}: {response.text()}",
                url=response.url,
                status=response.status,
            )
        return response
