"""Persistence gateway consumed by the task-tree core."""

from typing import Protocol

from src.domain.task import Task, TaskCreate, TaskPatch


class TaskGateway(Protocol):
    """Durable task store. Every call is a suspension point for the core.

    Implementations raise `TaskNotFoundError` from `update_task` when the id is
    unknown and `TaskGatewayError` for any other failure.
    """

    async def get_task(self, task_id: str) -> Task | None:
        """Return the task, or None when it does not exist."""
        ...

    async def create_task(self, fields: TaskCreate) -> Task:
        """Create a task and return the stored record."""
        ...

    async def update_task(self, task_id: str, patch: TaskPatch, *, conflict_resolution: bool = False) -> Task:
        """Apply `patch` and return the full canonical record after the update.

        The returned record includes server-side adjustments (for example the
        due date moved on completion). `conflict_resolution` tells the store that
        the caller already resolved a date conflict client-side.
        """
        ...

    async def delete_task(self, task_id: str) -> bool:
        """Delete the task and its subtasks; False when it did not exist."""
        ...

    async def list_tasks(self) -> list[Task]:
        """Return every task as a flat list linked by `parent_id`."""
        ...
