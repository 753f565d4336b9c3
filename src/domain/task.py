"""Task domain models and enums."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class Priority(StrEnum):
    """Task priority."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


def as_utc(value: datetime) -> datetime:
    """Return `value` on the UTC clock; naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def check_date_range(start_date: datetime | None, due_date: datetime | None) -> None:
    if start_date is None or due_date is None:
        return
    if as_utc(start_date) > as_utc(due_date):
        msg = f"Invalid date range: start date {start_date.isoformat()} is after due date {due_date.isoformat()}"
        raise ValueError(msg)


class _WireModel(BaseModel):
    """Base for models that travel over the wire with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class TaskInterval(_WireModel):
    """Optional [start, end] date range attached to a task."""

    start: datetime | None = None
    end: datetime | None = None


class Task(_WireModel):
    """Task node as held by the task tree.

    `children` is owned by the tree; records coming from the persistence gateway
    carry an empty tuple and are linked through `parent_id`.
    The start <= due ordering is checked where tasks are created or patched;
    a completed task keeps whatever due date the gateway settled on.
    """

    id: str = Field(..., description="Opaque task identifier")
    title: str = Field(..., description="Task title")
    description: str = Field(default="", description="Detailed task description")
    priority: Priority = Field(default=Priority.MEDIUM, description="Task priority")
    start_date: datetime | None = Field(default=None, description="Interval start")
    due_date: datetime | None = Field(default=None, description="Interval end")
    completed: bool = Field(default=False, description="Completion flag")
    original_due_date: datetime | None = Field(
        default=None,
        description="Due date before an early or late completion moved it",
    )
    parent_id: str | None = Field(default=None, description="Parent task id")
    children: tuple[str, ...] = Field(default=(), description="Ordered child task ids")
    tags: tuple[str, ...] = Field(default=(), description="Tag names")
    group_id: str | None = Field(default=None, description="Task group id")
    created: datetime | None = Field(default=None, description="Creation timestamp")
    updated: datetime | None = Field(default=None, description="Last update timestamp")

    @property
    def interval(self) -> TaskInterval:
        """The task's date interval."""
        return TaskInterval(start=self.start_date, end=self.due_date)

    def with_patch(self, patch: "TaskPatch") -> "Task":
        """Return a copy with the explicitly set patch fields applied."""
        changes = patch.changes()
        if not changes:
            return self
        return Task.model_validate({**self.model_dump(), **changes})


class TaskPatch(_WireModel):
    """Partial update for a task; only explicitly set fields are applied.

    Structural fields (id, parent, children) are not patchable.
    """

    title: str | None = None
    description: str | None = None
    priority: Priority | None = None
    start_date: datetime | None = None
    due_date: datetime | None = None
    completed: bool | None = None
    original_due_date: datetime | None = None
    tags: tuple[str, ...] | None = None
    group_id: str | None = None

    def changes(self) -> dict[str, Any]:
        """Fields explicitly set on this patch (a field set to None clears it)."""
        return {name: getattr(self, name) for name in self.model_fields_set}

    def to_fields(self) -> dict[str, Any]:
        """JSON-safe dict of the set fields, used as a command payload."""
        return self.model_dump(mode="json", exclude_unset=True)

    @classmethod
    def from_task(cls, task: Task, fields: set[str]) -> "TaskPatch":
        """Build a patch that restores `fields` to their values on `task`."""
        return cls.model_validate({name: getattr(task, name) for name in fields})


class TaskCreate(_WireModel):
    """Payload for creating a task.

    An explicit `id` is only given when recreating a deleted task.
    """

    id: str | None = None
    title: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    start_date: datetime | None = None
    due_date: datetime | None = None
    completed: bool = False
    original_due_date: datetime | None = None
    parent_id: str | None = None
    tags: tuple[str, ...] = ()
    group_id: str | None = None

    @model_validator(mode="after")
    def _validate_interval(self) -> "TaskCreate":
        # A completed record may carry a completion date before its start
        if not self.completed:
            check_date_range(self.start_date, self.due_date)
        return self

    @classmethod
    def from_task(cls, task: Task) -> "TaskCreate":
        """Creation payload that recreates `task` with the same id."""
        return cls.model_validate(task.model_dump(exclude={"children", "created", "updated"}))


# Fields whose values a completion toggle may change on the server
COMPLETION_FIELDS: frozenset[str] = frozenset({"completed", "due_date", "original_due_date"})
