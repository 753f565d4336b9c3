"""Task gateway that talks to the remote task REST API over httpx."""

import logging
from collections.abc import Callable
from typing import Any, TypeVar

import httpx
from pydantic import ValidationError

from src.core.config import constants, settings
from src.core.errors import TaskGatewayError, TaskNotFoundError
from src.core.logging import span
from src.domain.task import Task, TaskCreate, TaskPatch


logger = logging.getLogger(__name__)

T = TypeVar("T")

COMPLETED_STATUS = "completed"
PENDING_STATUS = "pending"


class HttpTaskGateway:
    """Remote task store behind `/api/tasks`.

    Bodies are camelCase JSON. A patch sent after a client-side date conflict
    resolution carries the `x-conflict-resolution: true` header.

    The API links tags by id (`tagIds` on writes, `[{tagId, tag: {id, name}}]` on
    reads) while tasks carry tag names, so the gateway keeps a name -> id cache
    filled from every task it reads and from `/api/tags` when a name is unknown.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        key = api_key if api_key is not None else settings.task_api_key
        if key:
            headers["Authorization"] = f"Bearer {key}"

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.task_api_url,
            timeout=constants.API_TIMEOUT_SECONDS,
        )
        self._headers = headers
        self._tag_ids: dict[str, str] = {}

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _task_url(self, task_id: str | None = None) -> str:
        if task_id is None:
            return constants.TASKS_ENDPOINT
        return f"{constants.TASKS_ENDPOINT}/{task_id}"

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, url, json=json, headers={**self._headers, **(headers or {})})
        except httpx.HTTPError as e:
            logger.error("Task API request failed: %s %s: %s", method, url, e)
            msg = f"Task API request failed: {e}"
            raise TaskGatewayError(msg) from e

        if response.status_code == constants.HTTP_NOT_FOUND:
            msg = f"Task not found: {url}"
            raise TaskNotFoundError(msg)
        if not response.is_success:
            logger.error("Task API returned %s for %s %s: %s", response.status_code, method, url, response.text)
            msg = f"Task API error {response.status_code}: {response.text}"
            raise TaskGatewayError(msg)
        return response

    def _parse(self, response: httpx.Response, build: Callable[[Any], T]) -> T:
        """Decode a successful response body; unreadable bodies become TaskGatewayError."""
        try:
            return build(response.json())
        except (ValueError, ValidationError) as e:
            request = response.request
            logger.error("Task API sent an unreadable body for %s %s: %s", request.method, request.url, e)
            msg = f"Malformed task API response: {e}"
            raise TaskGatewayError(msg) from e

    # Payload mapping

    def _remember_tags(self, entries: list[Any]) -> list[str]:
        names = []
        for entry in entries:
            if isinstance(entry, str):
                names.append(entry)
                continue
            if not isinstance(entry, dict):
                msg = f"Unexpected tag entry: {entry!r}"
                raise ValueError(msg)
            tag = entry.get("tag") if isinstance(entry.get("tag"), dict) else entry
            name = tag.get("name")
            if not name:
                continue
            tag_id = tag.get("id") or entry.get("tagId")
            if tag_id:
                self._tag_ids[name] = tag_id
            names.append(name)
        return names

    def _to_task(self, payload: Any) -> Task:
        # Some endpoints wrap the record as {"task": {...}}
        if isinstance(payload, dict) and isinstance(payload.get("task"), dict):
            payload = payload["task"]
        if not isinstance(payload, dict):
            msg = f"Expected a task object, got {type(payload).__name__}"
            raise ValueError(msg)

        data = dict(payload)
        # Nested subtasks are listed again as flat records linked by parentId
        data.pop("subtasks", None)
        if data.get("description") is None:
            data["description"] = ""
        data["tags"] = self._remember_tags(data.get("tags") or [])
        for wire_name, field_name in (("createdAt", "created"), ("updatedAt", "updated")):
            if wire_name in data:
                data.setdefault(field_name, data.pop(wire_name))
        if "completed" not in data and "status" in data:
            data["completed"] = data["status"] == COMPLETED_STATUS
        return Task.model_validate(data)

    def _to_task_list(self, payload: Any) -> list[Task]:
        if isinstance(payload, dict):
            payload = payload.get("tasks", [])
        if not isinstance(payload, list):
            msg = f"Expected a list of tasks, got {type(payload).__name__}"
            raise ValueError(msg)
        return [self._to_task(item) for item in payload]

    async def _resolve_tag_ids(self, names: list[str]) -> list[str]:
        if any(name not in self._tag_ids for name in names):
            response = await self._request("GET", constants.TAGS_ENDPOINT)
            self._parse(response, self._remember_tags)
        missing = [name for name in names if name not in self._tag_ids]
        if missing:
            logger.warning("Unknown tags not sent to the task API: %s", missing)
        return [self._tag_ids[name] for name in names if name in self._tag_ids]

    async def _to_body(self, data: dict[str, Any]) -> dict[str, Any]:
        """Turn a camelCase model dump into the API's write body."""
        body = dict(data)
        tags = body.pop("tags", None)
        if tags is not None:
            body["tagIds"] = await self._resolve_tag_ids(list(tags))
        if "completed" in body:
            body["status"] = COMPLETED_STATUS if body["completed"] else PENDING_STATUS
        return body

    # Gateway protocol

    async def get_task(self, task_id: str) -> Task | None:
        with span("http_gateway.get_task"):
            try:
                response = await self._request("GET", self._task_url(task_id))
            except TaskNotFoundError:
                return None
            return self._parse(response, self._to_task)

    async def create_task(self, fields: TaskCreate) -> Task:
        with span("http_gateway.create_task"):
            body = await self._to_body(fields.model_dump(by_alias=True, mode="json", exclude_none=True))
            response = await self._request("POST", self._task_url(), json=body)
            return self._parse(response, self._to_task)

    async def update_task(self, task_id: str, patch: TaskPatch, *, conflict_resolution: bool = False) -> Task:
        with span("http_gateway.update_task"):
            body = await self._to_body(patch.model_dump(by_alias=True, mode="json", exclude_unset=True))
            headers = {constants.CONFLICT_RESOLUTION_HEADER: "true"} if conflict_resolution else None
            response = await self._request("PUT", self._task_url(task_id), json=body, headers=headers)
            return self._parse(response, self._to_task)

    async def delete_task(self, task_id: str) -> bool:
        with span("http_gateway.delete_task"):
            try:
                await self._request("DELETE", self._task_url(task_id))
            except TaskNotFoundError:
                logger.info("Task %s already deleted remotely", task_id)
                return False
            return True

    async def list_tasks(self) -> list[Task]:
        with span("http_gateway.list_tasks"):
            response = await self._request("GET", self._task_url())
            return self._parse(response, self._to_task_list)
