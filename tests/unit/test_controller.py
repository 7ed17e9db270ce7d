"""
Tests for the sync controller: end-to-end runs against a mocked tracker.
"""
import httpx
import pytest

from apps.sync.controller import SyncController
from tests.factories import item_body, search_body
from utils.auth import StaticCredentialProvider
from utils.errors import StorageError


def tracker(projects: dict[str, int], failing_projects: frozenset = frozenset(), failing_items: frozenset = frozenset()):
    """Mock tracker with `projects[name]` items per project."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/rest/api/3/search":
            project = request.url.params["jql"].split("=", 1)[1]
            if project in failing_projects:
                return httpx.Response(500, text="search broken")
            start_at = int(request.url.params["startAt"])
            page_size = int(request.url.params["maxResults"])
            body = search_body(start_at, page_size, projects[project])
            for issue in body["issues"]:
                issue["id"] = f"{project}-{issue['id']}"
            return httpx.Response(200, json=body)

        item_id = request.url.path.rsplit("/", 1)[-1]
        if item_id in failing_items:
            return httpx.Response(404)
        return httpx.Response(200, json=item_body(item_id, item_id))

    return handler


def with_overrides(handler, items: dict = None, search: dict = None):
    """Wrap `tracker` so chosen items or search entries carry malformed fields."""

    def wrapped(request: httpx.Request) -> httpx.Response:
        response = handler(request)
        if response.status_code != 200:
            return response
        body = response.json()
        if request.url.path == "/rest/api/3/search":
            project = request.url.params["jql"].split("=", 1)[1]
            for issue in body["issues"][:1]:
                issue["fields"].update((search or {}).get(project, {}))
        else:
            body["fields"].update((items or {}).get(body["id"], {}))
        return httpx.Response(200, json=body)

    return wrapped


@pytest.mark.asyncio
async def test_malformed_item_is_skipped(controller_for, db):
    handler = with_overrides(
        tracker({"ENG": 6}, failing_items=frozenset({"ENG-10003"})),
        items={"ENG-10001": {"created": 1700000000}},
    )
    controller = controller_for(handler)

    report = await controller.run(["ENG"])

    assert report.succeeded == 4
    assert report.failed == 2
    assert report.failed_projects == []
    assert db.count_work_items() == 4


@pytest.mark.asyncio
async def test_malformed_search_entry_only_aborts_its_project(controller_for, db):
    handler = with_overrides(tracker({"ENG": 5, "OPS": 5}), search={"OPS": {"summary": {"type": "doc"}}})
    controller = controller_for(handler)

    report = await controller.run(["ENG", "OPS"])

    assert report.failed_projects == ["OPS"]
    assert report.succeeded == 5
    assert db.count_work_items() == 5


@pytest.fixture
def controller_for(make_client, credential, retry_policy, test_settings, db):
    def _build(handler, store=None, **overrides):
        settings = test_settings.model_copy(update=overrides)
        client = make_client(handler)
        return SyncController(
            client,
            StaticCredentialProvider(credential),
            store or db,
            settings,
            retry_policy=retry_policy,
        )

    return _build


@pytest.mark.asyncio
async def test_run_persists_all_items(controller_for, db):
    controller = controller_for(tracker({"ENG": 120, "OPS": 30}), PAGE_SIZE=50, BATCH_SIZE=25)

    report = await controller.run(["ENG", "OPS"])

    assert report.succeeded == 150
    assert report.failed == 0
    assert report.persisted == 150
    assert report.failed_projects == []
    assert db.count_work_items() == 150
    assert {p.project_id: p.pages for p in report.projects} == {"ENG": 3, "OPS": 1}
    assert len(report.item_ids) == 150


@pytest.mark.asyncio
async def test_pagination_failure_only_aborts_its_project(controller_for, db):
    controller = controller_for(tracker({"ENG": 10, "OPS": 5}, failing_projects=frozenset({"OPS"})))

    report = await controller.run(["ENG", "OPS"])

    assert report.failed_projects == ["OPS"]
    assert report.succeeded == 10
    assert db.count_work_items() == 10


@pytest.mark.asyncio
async def test_item_failures_are_counted(controller_for, db):
    handler = tracker({"ENG": 5}, failing_items=frozenset({"ENG-10001", "ENG-10003"}))
    controller = controller_for(handler)

    report = await controller.run(["ENG"])

    assert report.succeeded == 3
    assert report.failed == 2
    assert report.failed_projects == []
    assert db.count_work_items() == 3


@pytest.mark.asyncio
async def test_rerun_upserts_instead_of_duplicating(controller_for, db):
    controller = controller_for(tracker({"ENG": 12}))

    await controller.run(["ENG"])
    await controller.run(["ENG"])

    assert db.count_work_items() == 12


class BrokenStore:
    def upsert_work_items(self, records):
        raise StorageError("disk full")


@pytest.mark.asyncio
async def test_storage_failure_is_fatal(controller_for):
    controller = controller_for(tracker({"ENG": 60}), store=BrokenStore(), BATCH_SIZE=10)

    with pytest.raises(StorageError):
        await controller.run(["ENG"])
