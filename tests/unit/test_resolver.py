"""
Tests for the bounded metadata resolver.
"""
import asyncio

import httpx
import pytest

from apps.sync.resolver import MetadataResolver
from tests.factories import item_body, summary
from utils.channel import Channel


def drain(channel: Channel) -> list:
    items = []
    while not channel._queue.empty():
        items.append(channel._queue.get_nowait())
    return items


@pytest.mark.asyncio
@pytest.mark.parametrize("batch_size,cap", [(8, 8), (40, 8), (100, 3), (5, 1)])
async def test_in_flight_fetches_never_exceed_cap(batch_size, cap, make_client, credential, retry_policy):
    in_flight = 0
    peak = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.005)
        in_flight -= 1
        item_id = request.url.path.rsplit("/", 1)[-1]
        return httpx.Response(200, json=item_body(item_id, f"KEY-{item_id}"))

    results = Channel()
    async with make_client(handler) as client:
        resolver = MetadataResolver(client, credential, retry_policy, asyncio.Semaphore(cap), results)
        result = await resolver.resolve_page([summary(i) for i in range(batch_size)])

    assert peak <= cap
    assert peak == cap
    assert result.succeeded == batch_size
    assert len(drain(results)) == batch_size


@pytest.mark.asyncio
async def test_failed_items_are_counted_and_skipped(make_client, credential, retry_policy):
    def handler(request: httpx.Request) -> httpx.Response:
        item_id = request.url.path.rsplit("/", 1)[-1]
        if item_id == "10001":
            return httpx.Response(404, json={"errorMessages": ["not found"]})
        if item_id == "10002":
            return httpx.Response(200, json={"id": item_id, "key": "ENG-2"})
        return httpx.Response(200, json=item_body(item_id, f"ENG-{item_id}"))

    results = Channel()
    async with make_client(handler) as client:
        resolver = MetadataResolver(client, credential, retry_policy, asyncio.Semaphore(4), results)
        result = await resolver.resolve_page([summary(i) for i in range(4)])

    assert result.succeeded == 2
    assert result.failed == 2
    assert sorted(detail.id for detail in drain(results)) == ["10000", "10003"]


@pytest.mark.asyncio
async def test_detail_carries_links_and_raw_expansions(make_client, credential, retry_policy):
    body = item_body(
        "10000",
        "ENG-0",
        description="Design at https://docs.google.com/document/d/abc123/edit.",
        labels=["backend"],
    )
    body["changelog"] = {"histories": []}

    async with make_client(lambda request: httpx.Response(200, json=body)) as client:
        resolver = MetadataResolver(client, credential, retry_policy, asyncio.Semaphore(1), Channel())
        detail = await resolver.fetch_detail(summary(0))

    assert detail.key == "ENG-0"
    assert detail.labels == ["backend"]
    assert detail.changelog == '{"histories":[]}'
    assert detail.rendered_fields == "{}"
    assert [link.external_id for link in detail.links] == ["abc123"]
    assert detail.links[0].context == "ENG-0.description"


@pytest.mark.asyncio
async def test_requests_expansions(make_client, credential, retry_policy):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=item_body("10000", "ENG-0"))

    async with make_client(handler) as client:
        resolver = MetadataResolver(client, credential, retry_policy, asyncio.Semaphore(1), Channel())
        await resolver.fetch_detail(summary(0))

    assert seen[0].url.path == "/rest/api/3/issue/10000"
    assert "changelog" in seen[0].url.params["expand"]
