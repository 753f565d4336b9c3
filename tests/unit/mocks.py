"""Pure Python in-memory task gateway for unit testing."""

import asyncio
import uuid
from datetime import UTC, datetime
from typing import Any

from src.core.errors import TaskGatewayError, TaskNotFoundError
from src.domain.task import Task, TaskCreate, TaskPatch


def utc(year: int, month: int, day: int, hour: int = 0) -> datetime:
    """Timezone-aware UTC datetime shorthand."""
    return datetime(year, month, day, hour, tzinfo=UTC)


def make_task(task_id: str, **overrides: Any) -> Task:
    """Build a Task with sensible defaults."""
    data: dict[str, Any] = {"id": task_id, "title": f"Task {task_id}"}
    data.update(overrides)
    return Task(**data)


class InMemoryTaskGateway:
    """In-memory implementation of the TaskGateway protocol.

    Mirrors the SQLite gateway's completion rule: completing a task without an
    explicit due date moves `due_date` to `now` and keeps the planned date in
    `original_due_date`.

    Test helpers:
        calls: every gateway call as (method, task_id, payload)
        fail_updates: task ids whose update raises TaskGatewayError
        gate: when set, update_task waits on this event before writing
    """

    def __init__(self, *, now: datetime | None = None) -> None:
        """Initialize empty store."""
        self._tasks: dict[str, Task] = {}
        self.now = now or datetime(2024, 6, 1, 12, 0, tzinfo=UTC)
        self.calls: list[tuple[str, str | None, dict[str, Any]]] = []
        self.fail_updates: set[str] = set()
        self.fail_creates = False
        self.fail_deletes = False
        self.gate: asyncio.Event | None = None

    def seed(self, *tasks: Task) -> None:
        """Store tasks directly, bypassing call recording."""
        for task in tasks:
            self._tasks[task.id] = task.model_copy(update={"children": ()})

    def stored(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def calls_for(self, method: str) -> list[tuple[str, str | None, dict[str, Any]]]:
        return [call for call in self.calls if call[0] == method]

    async def get_task(self, task_id: str) -> Task | None:
        self.calls.append(("get_task", task_id, {}))
        return self._tasks.get(task_id)

    async def create_task(self, fields: TaskCreate) -> Task:
        self.calls.append(("create_task", fields.id, fields.model_dump(mode="json")))
        if self.fail_creates:
            raise TaskGatewayError("Simulated create failure")

        task_id = fields.id or uuid.uuid4().hex
        if task_id in self._tasks:
            raise TaskGatewayError(f"Duplicate task id: {task_id}")
        if fields.parent_id is not None and fields.parent_id not in self._tasks:
            raise TaskNotFoundError(f"Parent task not found: {fields.parent_id}")

        data = fields.model_dump(exclude={"id"})
        task = Task(id=task_id, created=self.now, updated=self.now, **data)
        self._tasks[task_id] = task
        return task

    async def update_task(self, task_id: str, patch: TaskPatch, *, conflict_resolution: bool = False) -> Task:
        payload = patch.to_fields()
        if conflict_resolution:
            payload["conflict_resolution"] = True
        self.calls.append(("update_task", task_id, payload))

        if self.gate is not None:
            await self.gate.wait()
        else:
            # Yield so concurrent callers interleave at the suspension point
            await asyncio.sleep(0)

        if task_id in self.fail_updates:
            raise TaskGatewayError(f"Simulated update failure for {task_id}")

        existing = self._tasks.get(task_id)
        if existing is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")

        changes = patch.changes()
        if changes.get("completed") is True and not existing.completed and "due_date" not in changes:
            changes["due_date"] = self.now
            if existing.due_date is not None and existing.original_due_date is None:
                changes.setdefault("original_due_date", existing.due_date)

        updated = existing.model_copy(update={**changes, "updated": self.now})
        self._tasks[task_id] = updated
        return updated

    async def delete_task(self, task_id: str) -> bool:
        self.calls.append(("delete_task", task_id, {}))
        if self.fail_deletes:
            raise TaskGatewayError("Simulated delete failure")
        if task_id not in self._tasks:
            return False

        doomed = [task_id]
        index = 0
        while index < len(doomed):
            parent_id = doomed[index]
            doomed.extend(task.id for task in self._tasks.values() if task.parent_id == parent_id)
            index += 1
        for doomed_id in doomed:
            self._tasks.pop(doomed_id, None)
        return True

    async def list_tasks(self) -> list[Task]:
        self.calls.append(("list_tasks", None, {}))
        return list(self._tasks.values())
