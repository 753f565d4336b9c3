"""Pydantic models for service layer return types.

These models provide type safety at service boundaries.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from src.domain.task import Task
from src.services.date_conflict_service import DateConflictResult


class CascadeFailure(BaseModel):
    """A cascade step whose remote write failed; the walk stopped at `task_id`."""

    task_id: str
    error: str
    occurred_at: datetime


class CascadeResult(BaseModel):
    """Outcome of one bottom-up completion walk."""

    trigger_id: str
    completed_ids: list[str] = Field(default_factory=list)
    halted_at: str | None = None
    error: str | None = None


class ActivityEntry(BaseModel):
    """Activity log line written by the SQLite gateway."""

    id: str
    task_id: str
    kind: str
    details: str
    created: str


class SubtaskCreation(BaseModel):
    """A created subtask together with the parent date adjustment it caused, if any."""

    task: Task
    parent: Task | None = None
    conflict: DateConflictResult | None = None
