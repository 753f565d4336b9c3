"""Task gateway backed by a local SQLite database."""

import json
import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from src.core import db_client, schema
from src.core.errors import TaskGatewayError, TaskNotFoundError
from src.core.logging import span
from src.domain.task import Task, TaskCreate, TaskPatch, as_utc
from src.models.service_models import ActivityEntry


logger = logging.getLogger(__name__)

TASKS = "tasks"
ACTIVITIES = "task_activities"


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _parse_timestamp(value: object) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(str(value)))


def _record_to_task(record: dict[str, Any]) -> Task:
    tags = record.get("tags") or "[]"
    return Task.model_validate(
        {
            **record,
            "completed": bool(record.get("completed")),
            "tags": json.loads(tags) if isinstance(tags, str) else tags,
        }
    )


def describe_completion_timing(due_date: datetime | None, completed_at: datetime) -> str:
    """Activity text comparing the completion day with the planned due day."""
    if due_date is None:
        return "Task completed (no previous due date)"

    days = (as_utc(completed_at).date() - as_utc(due_date).date()).days
    if days < 0:
        early = abs(days)
        return f"Task completed {early} day{'' if early == 1 else 's'} early"
    if days > 0:
        return f"Task completed {days} day{'' if days == 1 else 's'} late"
    return "Task completed on the planned date"


def _format_day(value: object) -> str:
    parsed = _parse_timestamp(value)
    return parsed.strftime("%d %b %Y") if parsed else "no date"


def _describe_changes(existing: dict[str, Any], changes: dict[str, Any]) -> list[str]:
    descriptions = []
    for field in ("title", "description", "priority"):
        if field in changes and changes[field] != existing.get(field):
            descriptions.append(f'{field} changed from "{existing.get(field) or ""}" to "{changes[field] or ""}"')
    for field in ("start_date", "due_date"):
        if field in changes and _parse_timestamp(changes[field]) != _parse_timestamp(existing.get(field)):
            label = field.replace("_", " ")
            descriptions.append(
                f"{label} changed from {_format_day(existing.get(field))} to {_format_day(changes[field])}"
            )
    if "completed" in changes and bool(changes["completed"]) != bool(existing.get("completed")):
        new_status = "completed" if changes["completed"] else "pending"
        descriptions.append(f"status changed to {new_status}")
    return descriptions


class SqliteTaskGateway:
    """Stores tasks in the `tasks` table and writes an activity row per update.

    Completing a task moves its due date to the completion time and keeps the
    planned date in `original_due_date`, unless the caller sets the due date
    explicitly in the same patch.
    """

    def __init__(self, *, db_path: str | None = None, clock: Callable[[], datetime] = _utc_now) -> None:
        self._db_path = db_path
        self._clock = clock

    async def initialize(self) -> None:
        await schema.init_db(db_path=self._db_path)

    async def close(self) -> None:
        await db_client.close_connection(db_path=self._db_path)

    async def _fetch(self, task_id: str) -> dict[str, Any]:
        try:
            return await db_client.get_record(collection=TASKS, record_id=task_id, db_path=self._db_path)
        except KeyError as e:
            msg = f"Task not found: {task_id}"
            raise TaskNotFoundError(msg) from e
        except RuntimeError as e:
            raise TaskGatewayError(str(e)) from e

    async def get_task(self, task_id: str) -> Task | None:
        with span("sqlite_gateway.get_task"):
            try:
                record = await self._fetch(task_id)
            except TaskNotFoundError:
                return None
            return _record_to_task(record)

    async def create_task(self, fields: TaskCreate) -> Task:
        with span("sqlite_gateway.create_task"):
            now = self._clock()
            data = fields.model_dump(mode="json")
            data["id"] = fields.id or uuid.uuid4().hex
            data["created"] = now
            data["updated"] = now
            try:
                record = await db_client.create_record(collection=TASKS, data=data, db_path=self._db_path)
            except RuntimeError as e:
                raise TaskGatewayError(str(e)) from e

            await self._log_activity(record["id"], "CREATED", f'Task "{record["title"]}" created')
            return _record_to_task(record)

    async def update_task(self, task_id: str, patch: TaskPatch, *, conflict_resolution: bool = False) -> Task:
        with span("sqlite_gateway.update_task"):
            existing = await self._fetch(task_id)
            changes = patch.to_fields()
            now = self._clock()

            completion_text = None
            if changes.get("completed") is True and not existing.get("completed"):
                previous_due = _parse_timestamp(existing.get("due_date"))
                completion_text = describe_completion_timing(previous_due, now)
                if "due_date" not in changes:
                    changes["due_date"] = now
                    if previous_due is not None and not existing.get("original_due_date"):
                        changes.setdefault("original_due_date", previous_due)

            if not changes:
                return _record_to_task(existing)

            changes["updated"] = now
            try:
                record = await db_client.update_record(
                    collection=TASKS,
                    record_id=task_id,
                    data=changes,
                    db_path=self._db_path,
                )
            except KeyError as e:
                msg = f"Task not found: {task_id}"
                raise TaskNotFoundError(msg) from e
            except RuntimeError as e:
                raise TaskGatewayError(str(e)) from e

            descriptions = _describe_changes(existing, changes)
            if conflict_resolution:
                details = (
                    f'Parent task "{record["title"]}" adjusted automatically for a date conflict '
                    f"with a subtask: {', '.join(descriptions)}"
                )
                await self._log_activity(task_id, "UPDATED", details)
            elif completion_text is not None:
                await self._log_activity(task_id, "COMPLETED", completion_text)
            elif descriptions:
                await self._log_activity(task_id, "UPDATED", ", ".join(descriptions))

            return _record_to_task(record)

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task; subtasks go with it through the parent_id foreign key."""
        with span("sqlite_gateway.delete_task"):
            try:
                await db_client.delete_record(collection=TASKS, record_id=task_id, db_path=self._db_path)
            except KeyError:
                logger.info("Task %s already deleted", task_id)
                return False
            except RuntimeError as e:
                raise TaskGatewayError(str(e)) from e
            return True

    async def list_tasks(self) -> list[Task]:
        with span("sqlite_gateway.list_tasks"):
            try:
                records = await db_client.list_all_records(collection=TASKS, db_path=self._db_path)
            except RuntimeError as e:
                raise TaskGatewayError(str(e)) from e
            return [_record_to_task(record) for record in records]

    async def list_activities(self, task_id: str) -> list[ActivityEntry]:
        """Activity log of one task, oldest first."""
        try:
            records = await db_client.list_all_records(
                collection=ACTIVITIES,
                where={"task_id": task_id},
                db_path=self._db_path,
            )
        except RuntimeError as e:
            raise TaskGatewayError(str(e)) from e
        return [ActivityEntry.model_validate(record) for record in records]

    async def _log_activity(self, task_id: str, kind: str, details: str) -> None:
        data = {
            "id": uuid.uuid4().hex,
            "task_id": task_id,
            "kind": kind,
            "details": details,
            "created": self._clock(),
        }
        try:
            await db_client.create_record(collection=ACTIVITIES, data=data, db_path=self._db_path)
        except RuntimeError as e:
            raise TaskGatewayError(str(e)) from e
