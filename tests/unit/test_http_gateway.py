"""Tests for the HTTP task gateway using httpx.MockTransport."""

import json

import httpx
import pytest

from src.core.errors import TaskGatewayError, TaskNotFoundError
from src.domain.task import TaskCreate, TaskPatch
from src.interface.http_gateway import HttpTaskGateway
from tests.unit.mocks import utc


TASK_JSON = {
    "id": "t1",
    "title": "Remote task",
    "description": "",
    "priority": "MEDIUM",
    "startDate": "2024-01-05T00:00:00Z",
    "dueDate": "2024-01-10T00:00:00Z",
    "completed": False,
    "originalDueDate": None,
    "parentId": None,
    "tags": [],
    "groupId": None,
}


def _gateway(handler, api_key: str | None = "") -> HttpTaskGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://tasks.test")
    return HttpTaskGateway(client=client, api_key=api_key)


@pytest.mark.unit
class TestHttpTaskGateway:
    """Tests for request shape and error mapping."""

    async def test_get_task_parses_camel_case(self):
        def handler(request):
            assert request.method == "GET"
            assert request.url.path == "/api/tasks/t1"
            return httpx.Response(200, json=TASK_JSON)

        task = await _gateway(handler).get_task("t1")

        assert task.id == "t1"
        assert task.start_date == utc(2024, 1, 5)
        assert task.due_date == utc(2024, 1, 10)

    async def test_get_missing_task_returns_none(self):
        task = await _gateway(lambda request: httpx.Response(404, json={"error": "Task not found"})).get_task("x")

        assert task is None

    async def test_update_sends_only_set_fields_with_conflict_header(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            seen["header"] = request.headers.get("x-conflict-resolution")
            return httpx.Response(200, json={**TASK_JSON, "dueDate": "2024-02-01T00:00:00Z"})

        task = await _gateway(handler).update_task(
            "t1", TaskPatch(due_date=utc(2024, 2, 1)), conflict_resolution=True
        )

        assert seen["method"] == "PUT"
        assert seen["path"] == "/api/tasks/t1"
        assert seen["body"] == {"dueDate": "2024-02-01T00:00:00Z"}
        assert seen["header"] == "true"
        assert task.due_date == utc(2024, 2, 1)

    async def test_update_without_hint_has_no_header(self):
        seen = {}

        def handler(request):
            seen["header"] = request.headers.get("x-conflict-resolution")
            return httpx.Response(200, json=TASK_JSON)

        await _gateway(handler).update_task("t1", TaskPatch(title="x"))

        assert seen["header"] is None

    async def test_update_missing_raises_not_found(self):
        gateway = _gateway(lambda request: httpx.Response(404))

        with pytest.raises(TaskNotFoundError):
            await gateway.update_task("gone", TaskPatch(completed=True))

    async def test_server_error_raises_gateway_error(self):
        gateway = _gateway(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(TaskGatewayError, match="500"):
            await gateway.update_task("t1", TaskPatch(completed=True))

    async def test_transport_error_raises_gateway_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TaskGatewayError, match="connection refused"):
            await _gateway(handler).list_tasks()

    async def test_create_posts_camel_case_body(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={**TASK_JSON, "id": "new", "parentId": "p1"})

        task = await _gateway(handler).create_task(TaskCreate(title="Child", parent_id="p1"))

        assert seen["body"]["parentId"] == "p1"
        assert seen["body"]["title"] == "Child"
        assert "id" not in seen["body"]
        assert task.parent_id == "p1"

    async def test_delete(self):
        gateway = _gateway(lambda request: httpx.Response(200, json={"success": True}))

        assert await gateway.delete_task("t1") is True

    async def test_delete_missing(self):
        gateway = _gateway(lambda request: httpx.Response(404))

        assert await gateway.delete_task("t1") is False

    async def test_list_tasks_accepts_plain_or_wrapped_payload(self):
        child = {**TASK_JSON, "id": "t2", "parentId": "t1"}

        plain = await _gateway(lambda request: httpx.Response(200, json=[TASK_JSON, child])).list_tasks()
        wrapped = await _gateway(lambda request: httpx.Response(200, json={"tasks": [TASK_JSON]})).list_tasks()

        assert [task.id for task in plain] == ["t1", "t2"]
        assert plain[1].parent_id == "t1"
        assert [task.id for task in wrapped] == ["t1"]

    async def test_bearer_key_is_sent(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json=[])

        await _gateway(handler, api_key="secret").list_tasks()

        assert seen["auth"] == "Bearer secret"

    async def test_list_tasks_maps_original_tag_and_timestamp_shape(self):
        record = {
            **TASK_JSON,
            "description": None,
            "status": "completed",
            "createdAt": "2024-01-01T08:00:00Z",
            "updatedAt": "2024-01-02T08:00:00Z",
            "tags": [
                {"taskId": "t1", "tagId": "tag-1", "tag": {"id": "tag-1", "name": "work", "color": "#f00"}},
                {"taskId": "t1", "tagId": "tag-2", "tag": {"id": "tag-2", "name": "urgent", "color": "#0f0"}},
            ],
            "subtasks": [{**TASK_JSON, "id": "t2", "parentId": "t1", "tags": []}],
        }
        del record["completed"]

        tasks = await _gateway(lambda request: httpx.Response(200, json=[record])).list_tasks()

        assert tasks[0].tags == ("work", "urgent")
        assert tasks[0].description == ""
        assert tasks[0].completed is True
        assert tasks[0].created == utc(2024, 1, 1, 8)
        assert tasks[0].updated == utc(2024, 1, 2, 8)

    async def test_update_sends_tag_ids_and_status(self):
        seen = {}
        tagged = {**TASK_JSON, "tags": [{"tagId": "tag-1", "tag": {"id": "tag-1", "name": "work"}}]}

        def handler(request):
            if request.method == "GET":
                return httpx.Response(200, json=[tagged])
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=tagged)

        gateway = _gateway(handler)
        await gateway.list_tasks()
        await gateway.update_task("t1", TaskPatch(tags=("work",), completed=True))

        assert seen["body"] == {"tagIds": ["tag-1"], "completed": True, "status": "completed"}

    async def test_unknown_tag_names_are_resolved_through_tags_endpoint(self):
        seen = {"paths": []}

        def handler(request):
            seen["paths"].append((request.method, request.url.path))
            if request.url.path == "/api/tags":
                return httpx.Response(200, json=[{"id": "tag-9", "name": "home", "color": "#00f"}])
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={**TASK_JSON, "id": "new"})

        await _gateway(handler).create_task(TaskCreate(title="Chores", tags=("home", "missing")))

        assert seen["paths"] == [("GET", "/api/tags"), ("POST", "/api/tasks")]
        assert seen["body"]["tagIds"] == ["tag-9"]
        assert "tags" not in seen["body"]

    async def test_malformed_body_raises_gateway_error(self):
        gateway = _gateway(lambda request: httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(TaskGatewayError, match="Malformed task API response"):
            await gateway.update_task("t1", TaskPatch(completed=True))

    async def test_invalid_record_raises_gateway_error(self):
        gateway = _gateway(lambda request: httpx.Response(200, json=[{"id": "t1"}]))

        with pytest.raises(TaskGatewayError, match="Malformed task API response"):
            await gateway.list_tasks()
