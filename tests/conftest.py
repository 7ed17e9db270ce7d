"""
Pytest configuration and fixtures.
"""
from typing import Callable
from unittest.mock import AsyncMock

import httpx
import pytest

from utils.auth import Credential
from utils.config import Settings
from utils.db import Database
from utils.http import ApiClient
from utils.retry import RetryPolicy
from tests.factories import TRACKER_URL


@pytest.fixture
def test_settings():
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        TRACKER_BASE_URL=TRACKER_URL,
        TRACKER_EMAIL="bot@example.com",
        TRACKER_API_TOKEN="test-token",
        SYNC_PROJECTS=["ENG"],
        PAGE_SIZE=50,
        BATCH_SIZE=50,
        FETCH_CONCURRENCY=8,
        RETRY_BASE_DELAY=0.0,
        RETRY_MAX_JITTER=0.0,
        REDIS_URL="redis://localhost:6379/0",
    )


@pytest.fixture
def credential():
    return Credential(scheme="Bearer", token="test-token")


@pytest.fixture
def fake_sleep():
    """Records backoff sleeps instead of waiting."""
    return AsyncMock()


@pytest.fixture
def retry_policy(fake_sleep):
    return RetryPolicy(max_retries=5, base_delay=1.0, max_jitter=0.0, sleep=fake_sleep)


@pytest.fixture
def make_client() -> Callable[..., ApiClient]:
    """Build an ApiClient whose requests are answered by `handler`."""

    def _make(handler, base_url: str = TRACKER_URL) -> ApiClient:
        return ApiClient(base_url=base_url, transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / "db" / "test.db"))
    database.init_schema()
    return database
