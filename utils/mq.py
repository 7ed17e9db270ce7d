"""
Redis Pub/Sub wrapper for pipeline events, with connection pooling and retries.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import orjson
import redis.asyncio as redis
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from utils.config import settings
from utils.schemas import PipelineEvent

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, dict[str, Any]], Awaitable[None]]


def _client(redis_url: str) -> redis.Redis:
    return redis.from_url(
        redis_url,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        decode_responses=False,  # Handle bytes for orjson
    )


class RedisPublisher:
    """Publishes pipeline events to Redis channels."""

    def __init__(self, redis_url: Optional[str] = None) -> None:
        """Initialize Redis publisher.

        Args:
            redis_url: Redis connection URL, defaults to settings.REDIS_URL
        """
        self.redis_url = redis_url or settings.REDIS_URL
        self.client: Optional[redis.Redis] = None

    async def connect(self) -> None:
        """Establish Redis connection with connection pooling."""
        if self.client is None:
            self.client = _client(self.redis_url)

    @retry(
        retry=retry_if_exception_type((redis.RedisError, redis.ConnectionError, redis.TimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
    )
    async def publish(self, channel: str, event: PipelineEvent) -> int:
        """Publish an event, retrying transient Redis failures.

        Returns:
            Number of subscribers that received the message

        Raises:
            redis.RedisError: If publishing fails after retries
        """
        if self.client is None:
            await self.connect()

        payload = orjson.dumps(event.model_dump(mode="json"))
        return await self.client.publish(channel, payload)

    async def close(self) -> None:
        """Close Redis connection and cleanup resources."""
        if self.client:
            await self.client.aclose()
            self.client = None


class RedisSubscriber:
    """Subscribes to Redis channels and hands decoded messages to a handler."""

    def __init__(self, channels: list[str], redis_url: Optional[str] = None) -> None:
        """Initialize Redis subscriber.

        Args:
            channels: List of channels to subscribe to
            redis_url: Redis connection URL, defaults to settings.REDIS_URL
        """
        self.redis_url = redis_url or settings.REDIS_URL
        self.channels = channels
        self.client: Optional[redis.Redis] = None
        self.pubsub: Optional[redis.client.PubSub] = None
        self._stop_event = asyncio.Event()

    async def connect(self) -> None:
        """Establish Redis connection and subscribe to channels."""
        if self.client is None:
            self.client = _client(self.redis_url)

        self.pubsub = self.client.pubsub()
        await self.pubsub.subscribe(*self.channels)

    async def subscribe(self, handler: MessageHandler) -> None:
        """Poll subscribed channels until stop() is called.

        Undecodable messages are logged and skipped; handler errors propagate.

        Args:
            handler: Async callback handler(channel, payload_dict)
        """
        if self.pubsub is None:
            await self.connect()

        while not self._stop_event.is_set():
            try:
                message = await self.pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except redis.RedisError as e:
                logger.error("Redis error during subscription", extra={"error": str(e)})
                await asyncio.sleep(1)
                continue

            if not message or message["type"] != "message":
                continue

            try:
                channel = message["channel"].decode("utf-8")
                payload = orjson.loads(message["data"])
            except (orjson.JSONDecodeError, UnicodeDecodeError, KeyError) as e:
                logger.warning(
                    "Failed to decode message, skipping",
                    extra={"error": str(e), "raw_data": message.get("data")},
                )
                continue

            await handler(channel, payload)

    def stop(self) -> None:
        """Signal the subscription loop to stop."""
        self._stop_event.set()

    async def close(self) -> None:
        """Unsubscribe and close Redis connection."""
        try:
            if self.pubsub:
                await self.pubsub.unsubscribe(*self.channels)
                await self.pubsub.aclose()
                self.pubsub = None
        finally:
            if self.client:
                await self.client.aclose()
                self.client = None
