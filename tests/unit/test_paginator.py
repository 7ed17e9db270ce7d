"""
Tests for project search pagination.
"""
import math

import httpx
import pytest

from apps.sync.paginator import SEARCH_PATH, Paginator, search_params
from tests.factories import search_body
from utils.errors import PaginationError, ParseError
from utils.schemas import WorkItemDetail, WorkItemSummary


def search_handler(total: int, page_size: int, calls: list):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == SEARCH_PATH
        start_at = int(request.url.params["startAt"])
        calls.append(start_at)
        return httpx.Response(200, json=search_body(start_at, page_size, total))

    return handler


async def collect(paginator: Paginator, project_id: str = "ENG") -> list:
    return [page async for page in paginator.pages(project_id)]


@pytest.mark.asyncio
@pytest.mark.parametrize("total,page_size", [(125, 50), (100, 50), (1, 50), (50, 10), (7, 3)])
async def test_issues_ceil_n_over_p_pages(total, page_size, make_client, credential, retry_policy):
    calls = []
    async with make_client(search_handler(total, page_size, calls)) as client:
        paginator = Paginator(client, credential, retry_policy, page_size)
        pages = await collect(paginator)

    assert len(calls) == math.ceil(total / page_size)
    assert len(pages) == math.ceil(total / page_size)
    assert sum(len(page) for page in pages) == total
    assert calls == [i * page_size for i in range(len(calls))]


@pytest.mark.asyncio
async def test_empty_project_issues_one_request(make_client, credential, retry_policy):
    calls = []
    async with make_client(search_handler(0, 50, calls)) as client:
        pages = await collect(Paginator(client, credential, retry_policy, 50))

    assert calls == [0]
    assert pages == []


@pytest.mark.asyncio
async def test_stops_on_empty_page_even_if_total_is_larger(make_client, credential, retry_policy):
    def handler(request: httpx.Request) -> httpx.Response:
        start_at = int(request.url.params["startAt"])
        body = search_body(start_at, 50, 60)
        body["total"] = 500
        return httpx.Response(200, json=body)

    async with make_client(handler) as client:
        pages = await collect(Paginator(client, credential, retry_policy, 50))

    assert [len(page) for page in pages] == [50, 10]


@pytest.mark.asyncio
async def test_sends_project_query_and_auth(make_client, credential, retry_policy):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=search_body(0, 50, 0))

    async with make_client(handler) as client:
        await collect(Paginator(client, credential, retry_policy, 50), "OPS")

    assert seen[0].url.params["jql"] == "project=OPS"
    assert seen[0].url.params["maxResults"] == "50"
    assert seen[0].headers["Authorization"] == "Bearer test-token"


@pytest.mark.asyncio
async def test_error_status_is_pagination_error(make_client, credential, retry_policy):
    async with make_client(lambda request: httpx.Response(503, text="unavailable")) as client:
        with pytest.raises(PaginationError) as exc_info:
            await collect(Paginator(client, credential, retry_policy, 50))

    assert exc_info.value.project_id == "ENG"
    assert exc_info.value.start_at == 0


@pytest.mark.asyncio
async def test_failure_on_later_page_keeps_earlier_pages(make_client, credential, retry_policy):
    def handler(request: httpx.Request) -> httpx.Response:
        start_at = int(request.url.params["startAt"])
        if start_at >= 50:
            return httpx.Response(500)
        return httpx.Response(200, json=search_body(start_at, 50, 120))

    received = []
    async with make_client(handler) as client:
        with pytest.raises(PaginationError) as exc_info:
            async for page in Paginator(client, credential, retry_policy, 50).pages("ENG"):
                received.append(page)

    assert len(received) == 1
    assert exc_info.value.start_at == 50


@pytest.mark.asyncio
async def test_malformed_body_is_pagination_error(make_client, credential, retry_policy):
    async with make_client(lambda request: httpx.Response(200, json={"total": 3})) as client:
        with pytest.raises(PaginationError):
            await collect(Paginator(client, credential, retry_policy, 50))


@pytest.mark.asyncio
async def test_rate_limited_page_is_retried(make_client, credential, retry_policy, fake_sleep):
    responses = [httpx.Response(429, headers={"Retry-After": "1"}), httpx.Response(200, json=search_body(0, 50, 3))]

    async with make_client(lambda request: responses.pop(0)) as client:
        pages = await collect(Paginator(client, credential, retry_policy, 50))

    assert [len(page) for page in pages] == [3]
    assert fake_sleep.await_count == 1


def test_search_params():
    assert search_params("ENG", 100, 50) == {"jql": "project=ENG", "startAt": 100, "maxResults": 50}


@pytest.mark.parametrize("entry", [
    {"id": "1", "key": "ENG-1", "fields": "not an object"},
    {"id": "1", "key": "ENG-1", "fields": {"summary": {"type": "doc", "content": []}}},
    {"id": "1", "key": "ENG-1", "fields": {"created": 1700000000}},
])
def test_malformed_search_entry_raises_parse_error(entry):
    with pytest.raises(ParseError):
        WorkItemSummary.from_api(entry)


@pytest.mark.parametrize("fields", [
    {"created": 1700000000},
    {"labels": 5},
    {"assignee": {"displayName": {"first": "Ada"}}},
])
def test_malformed_item_raises_parse_error(fields):
    base = WorkItemSummary(id="1", key="ENG-1")

    with pytest.raises(ParseError):
        WorkItemDetail.from_api({"id": "1", "key": "ENG-1", "fields": fields}, base)
