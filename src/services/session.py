"""Explicit session context for the task-tree core.

A session owns the only mutable state of the core: the current tree
snapshot, the set of task ids with an outstanding cascade write, the
undo/redo history and the log of failed cascade steps. It is created
empty (or loaded from a gateway), passed to the services that need it and
closed when the user session ends.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from src.domain.task import Task
from src.interface.task_gateway import TaskGateway
from src.models.service_models import CascadeFailure
from src.services.history_service import CommandHistory
from src.services.task_tree import TaskTree, normalize_id


logger = logging.getLogger(__name__)

# Receives (task_id, task); task is None when the task left the tree
TaskStateCallback = Callable[[str, Task | None], None]


class TaskSession:
    """Mutable holder of the current tree snapshot and per-session bookkeeping.

    Writers always replace the whole snapshot (last writer wins).
    """

    def __init__(
        self,
        *,
        tree: TaskTree | None = None,
        history: CommandHistory | None = None,
        on_task_state_update: TaskStateCallback | None = None,
    ) -> None:
        """Initialize session with empty stacks and an empty in-flight set."""
        self._tree = tree or TaskTree()
        self.history = history or CommandHistory()
        self.in_flight: set[str] = set()
        self.cascade_failures: list[CascadeFailure] = []
        self._on_task_state_update = on_task_state_update
        self._closed = False

    @classmethod
    async def load(
        cls,
        gateway: TaskGateway,
        *,
        history: CommandHistory | None = None,
        on_task_state_update: TaskStateCallback | None = None,
    ) -> "TaskSession":
        """Build a session whose tree is the gateway's current task list."""
        tasks = await gateway.list_tasks()
        logger.info("Loaded %d tasks into new session", len(tasks))
        return cls(
            tree=TaskTree.from_records(tasks),
            history=history,
            on_task_state_update=on_task_state_update,
        )

    async def reload(self, gateway: TaskGateway) -> TaskTree:
        """Replace the snapshot with the gateway's authoritative state."""
        tasks = await gateway.list_tasks()
        self.replace_tree(TaskTree.from_records(tasks))
        logger.info("Reloaded %d tasks from gateway", len(tasks))
        return self._tree

    @property
    def tree(self) -> TaskTree:
        return self._tree

    @property
    def closed(self) -> bool:
        return self._closed

    def replace_tree(self, tree: TaskTree) -> None:
        self._tree = tree

    # Snapshot writers that notify the presentation layer

    def apply_remote(self, task: Task) -> Task | None:
        """Merge a canonical gateway record into the tree; returns the merged node."""
        new_tree = self._tree.merge(task)
        self._tree = new_tree
        merged = new_tree.find(task.id)
        if merged is not None:
            self._notify(merged.id, merged)
        return merged

    def add_task(self, task: Task) -> Task | None:
        """Insert a freshly created record under its parent (or as a root)."""
        new_tree = self._tree.insert(task)
        if new_tree is self._tree:
            logger.warning("Task %s was not inserted into the tree", task.id)
            return None
        self._tree = new_tree
        inserted = new_tree.find(task.id)
        if inserted is not None:
            self._notify(inserted.id, inserted)
            if inserted.parent_id is not None:
                parent = new_tree.find(inserted.parent_id)
                self._notify(inserted.parent_id, parent)
        return inserted

    def drop_task(self, task_id: str) -> list[Task]:
        """Remove a task and its subtree; returns the removed nodes, parents first."""
        removed = self._tree.subtree(task_id)
        if not removed:
            return []
        parent_id = removed[0].parent_id
        self._tree = self._tree.remove(task_id)
        for task in removed:
            self._notify(task.id, None)
        if parent_id is not None:
            self._notify(parent_id, self._tree.find(parent_id))
        return removed

    def _notify(self, task_id: str, task: Task | None) -> None:
        if self._on_task_state_update is None:
            return
        try:
            self._on_task_state_update(task_id, task)
        except Exception:
            logger.exception("Task state update callback failed for %s", task_id)

    # In-flight guard

    def try_mark_in_flight(self, task_id: str) -> bool:
        """Mark a task as having an outstanding cascade write; False if it already has one."""
        key = normalize_id(task_id) or task_id
        if key in self.in_flight:
            return False
        self.in_flight.add(key)
        return True

    def clear_in_flight(self, task_id: str) -> None:
        self.in_flight.discard(normalize_id(task_id) or task_id)

    def record_cascade_failure(self, task_id: str, error: Exception) -> CascadeFailure:
        failure = CascadeFailure(task_id=task_id, error=str(error), occurred_at=datetime.now(UTC))
        self.cascade_failures.append(failure)
        return failure

    def close(self) -> None:
        """Dispose of all session state."""
        self.history.clear()
        self.history.hide_toast()
        self.in_flight.clear()
        self.cascade_failures.clear()
        self._tree = TaskTree()
        self._closed = True
        logger.info("Task session closed")
