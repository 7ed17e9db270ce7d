"""
Tests for extraction job production and rate-limit categories.
"""
from datetime import datetime, timezone

import pytest

from apps.extraction.jobs import SUPPORTED_PLATFORMS, create_extraction_jobs
from apps.extraction.limiters import RateCategory, RateLimiterRegistry, rate_category_for
from utils.errors import ConfigurationError
from utils.links import classify_url
from utils.schemas import JobPriority, JobStatus, PlatformType

NOW = datetime(2025, 1, 15, 3, 0, tzinfo=timezone.utc)

LINKS = [
    classify_url("https://docs.google.com/document/d/doc1/edit"),
    classify_url("https://github.com/acme/api/pull/42"),
    classify_url("https://acme.slack.com/archives/C024BE91L/p1700000050000200"),
    classify_url("https://acme.atlassian.net/wiki/spaces/ENG/pages/123"),
    classify_url("https://example.com/readme"),
    classify_url("https://docs.google.com/spreadsheets/d/sheet1"),
]


def test_only_supported_platforms_produce_jobs():
    jobs = create_extraction_jobs("10001", LINKS, "alice", JobPriority.HIGH, now=NOW)

    assert [j.link.platform for j in jobs] == [
        PlatformType.GOOGLE_DOCS,
        PlatformType.SLACK_MESSAGE,
        PlatformType.GOOGLE_SHEETS,
    ]
    assert all(j.link.platform in SUPPORTED_PLATFORMS for j in jobs)


def test_jobs_start_pending_and_due():
    jobs = create_extraction_jobs("10001", LINKS[:1], "alice", now=NOW)

    assert len(jobs) == 1
    created = jobs[0]
    assert created.status == JobStatus.PENDING
    assert created.retry_count == 0
    assert created.priority == JobPriority.MEDIUM
    assert created.created_at == created.scheduled_for == NOW
    assert created.source_item_id == "10001"
    assert created.user_id == "alice"


def test_job_ids_are_unique():
    links = [classify_url(f"https://docs.google.com/document/d/doc{i}") for i in range(20)]

    jobs = create_extraction_jobs("10001", links, "alice", now=NOW)

    assert len({j.id for j in jobs}) == 20


def test_no_links_no_jobs():
    assert create_extraction_jobs("10001", [], "alice") == []


@pytest.mark.parametrize("url,category", [
    ("https://docs.google.com/document/d/x", RateCategory.GOOGLE_DOCS),
    ("https://docs.google.com/spreadsheets/d/x", RateCategory.GOOGLE_SHEETS),
    ("https://docs.google.com/presentation/d/x", RateCategory.GOOGLE_SLIDES),
    ("https://acme.slack.com/archives/C1/p1700000050000200?thread_ts=1700000000.000100", RateCategory.SLACK_THREAD),
    ("https://acme.slack.com/archives/C1/p1700000050000200", RateCategory.SLACK_MESSAGE),
    ("https://acme.atlassian.net/wiki/spaces/ENG/pages/1", RateCategory.CONFLUENCE),
    ("https://github.com/acme/api/issues/7", RateCategory.GITHUB),
    ("https://github.com/acme/api/commit/abcdef1", RateCategory.GITHUB),
    ("https://example.com/page", RateCategory.UNKNOWN),
])
def test_rate_category_for(url, category):
    assert rate_category_for(classify_url(url)) == category


def test_category_ignores_link_details():
    first = classify_url("https://docs.google.com/document/d/one")
    second = classify_url("https://docs.google.com/document/d/two")

    assert rate_category_for(first) == rate_category_for(second)


def test_registry_from_settings_sizes_each_family(test_settings):
    settings = test_settings.model_copy(update={"GOOGLE_SHEETS_PERMITS": 7, "SLACK_THREAD_PERMITS": 3})

    registry = RateLimiterRegistry.from_settings(settings)

    assert registry.permits[RateCategory.GOOGLE_SHEETS] == 7
    assert registry.permits[RateCategory.SLACK_THREAD] == 3
    assert registry.permits[RateCategory.GOOGLE_DOCS] == 50
    assert RateCategory.GITHUB not in registry


def test_registry_missing_category_raises():
    registry = RateLimiterRegistry({RateCategory.GOOGLE_DOCS: 1})

    with pytest.raises(ConfigurationError):
        registry.get(RateCategory.CONFLUENCE)


@pytest.mark.asyncio
async def test_registry_acquire_holds_a_permit():
    registry = RateLimiterRegistry({RateCategory.GOOGLE_DOCS: 1})

    async with registry.acquire(RateCategory.GOOGLE_DOCS):
        assert registry.get(RateCategory.GOOGLE_DOCS).locked()

    assert not registry.get(RateCategory.GOOGLE_DOCS).locked()
