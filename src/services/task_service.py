"""Direct, user-initiated task mutations and the command dispatcher.

Every mutation here validates its input synchronously, calls the persistence
gateway, merges the canonical record into the session tree and, when the
history is not itself replaying, records an undoable action. Remote failures
propagate to the caller. Completion transitions start the completion cascade.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from src.core.errors import TaskValidationError
from src.core.logging import log_with_task_context, span
from src.domain.history import ActionType, Command, CommandOp
from src.domain.task import COMPLETION_FIELDS, Task, TaskCreate, TaskPatch
from src.interface.task_gateway import TaskGateway
from src.models.service_models import SubtaskCreation
from src.services.cascade_service import CascadeCompletionEngine
from src.services.date_conflict_service import build_parent_patch, resolve_for_tasks, validate_date_range
from src.services.session import TaskSession
from src.services.task_tree import normalize_id


logger = logging.getLogger(__name__)


def validate_task_id(task_id: object) -> str:
    """Return the trimmed id or raise TaskValidationError."""
    normalized = normalize_id(task_id)
    if normalized is None:
        msg = f"Invalid task id: {task_id!r}"
        raise TaskValidationError(msg)
    return normalized


def _validate_patch_dates(task: Task, patch: TaskPatch) -> None:
    candidate = task.with_patch(patch)
    if candidate.completed and "due_date" not in patch.model_fields_set:
        # Completion moves the due date server-side
        return
    if not validate_date_range(candidate.start_date, candidate.due_date):
        msg = f"Invalid date range for task {task.id}: start date is after due date"
        raise TaskValidationError(msg)


def _completion_label(completed: bool) -> str:
    return "completed" if completed else "pending"


def _completion_state(task: Task) -> dict[str, Any]:
    return TaskPatch.from_task(task, set(COMPLETION_FIELDS)).to_fields()


def _as_command(steps: list[Command]) -> Command:
    if len(steps) == 1:
        return steps[0]
    return Command(op=CommandOp.SEQUENCE, steps=tuple(steps))


class TaskService:
    """Mutations over one session, backed by one gateway."""

    def __init__(self, *, session: TaskSession, gateway: TaskGateway) -> None:
        self._session = session
        self._gateway = gateway
        self.cascade = CascadeCompletionEngine(session=session, gateway=gateway)
        self._handlers: dict[CommandOp, Callable[[Command], Awaitable[None]]] = {
            CommandOp.UPDATE: self._apply_update,
            CommandOp.BULK_UPDATE: self._apply_bulk_update,
            CommandOp.CREATE: self._apply_create,
            CommandOp.DELETE: self._apply_delete,
            CommandOp.SEQUENCE: self._apply_sequence,
        }
        session.history.bind_executor(self.apply)

    @property
    def session(self) -> TaskSession:
        return self._session

    async def _resolve_task(self, task_id: str, *, operation: str) -> Task | None:
        """Find the task locally, falling back to one fetch from the gateway."""
        task = self._session.tree.find(task_id)
        if task is not None:
            return task

        fetched = await self._gateway.get_task(task_id)
        if fetched is None:
            log_with_task_context(logger, "warning", "Task not found, aborting", task_id=task_id, operation=operation)
            return None

        inserted = self._session.add_task(fetched)
        return inserted or fetched

    def _should_record(self) -> bool:
        return not self._session.history.is_busy

    async def _persist_update(
        self,
        task_id: str,
        patch: TaskPatch,
        *,
        conflict_resolution: bool = False,
    ) -> tuple[Task, bool]:
        """Write a patch, merge the result, and report whether this write flipped the completed flag.

        The prior state is read when the write lands, so of two concurrent writes of
        the same flag only the first reports the flip.
        """
        canonical = await self._gateway.update_task(task_id, patch, conflict_resolution=conflict_resolution)
        before = self._session.tree.find(task_id)
        merged = self._session.apply_remote(canonical) or canonical
        was_completed = before.completed if before is not None else False
        return merged, merged.completed != was_completed

    # User operations

    async def toggle_task(self, task_id: str, completed: bool) -> Task | None:
        """Set a task's completed flag.

        Returns the updated task, or None when the task does not exist.
        """
        task_id = validate_task_id(task_id)
        if not isinstance(completed, bool):
            msg = f"completed must be a boolean, got {type(completed).__name__}"
            raise TaskValidationError(msg)

        with span("task_service.toggle_task"):
            task = await self._resolve_task(task_id, operation="toggle")
            if task is None:
                return None
            if task.completed == completed:
                logger.debug("Task %s already %s", task_id, _completion_label(completed))
                return task

            previous = _completion_state(task)
            merged, flipped = await self._persist_update(task.id, TaskPatch(completed=completed))
            if not flipped:
                logger.debug("Task %s was already %s when the write landed", task.id, _completion_label(completed))
                return self._session.tree.find(task.id) or merged
            logger.info("Marked task %s as %s", task.id, _completion_label(completed))

            new_state = _completion_state(merged)
            forward_steps = [Command(op=CommandOp.UPDATE, task_id=task.id, fields=new_state)]
            inverse_steps = [Command(op=CommandOp.UPDATE, task_id=task.id, fields=previous)]
            if completed:
                for subtask_id, before, after in await self._complete_subtasks(task.id):
                    forward_steps.append(Command(op=CommandOp.UPDATE, task_id=subtask_id, fields=after))
                    inverse_steps.insert(0, Command(op=CommandOp.UPDATE, task_id=subtask_id, fields=before))

            if self._should_record():
                self._session.history.record(
                    action_type=ActionType.TASK_TOGGLE,
                    description=f'Mark task "{task.title}" as {_completion_label(completed)}',
                    previous_state=previous,
                    new_state=new_state,
                    forward=_as_command(forward_steps),
                    inverse=_as_command(inverse_steps),
                )

            if completed:
                await self.cascade.on_task_completed(task.id)
            return self._session.tree.find(task.id) or merged

    async def _complete_subtasks(self, task_id: str) -> list[tuple[str, dict[str, Any], dict[str, Any]]]:
        """Complete every pending descendant, parents first.

        Returns (task_id, completion state before, completion state after) per write.
        """
        written = []
        for subtask in self._session.tree.subtree(task_id)[1:]:
            if subtask.completed:
                continue
            before = _completion_state(subtask)
            merged, _ = await self._persist_update(subtask.id, TaskPatch(completed=True))
            written.append((subtask.id, before, _completion_state(merged)))
        if written:
            logger.info("Completed %d pending subtasks of task %s", len(written), task_id)
        return written

    async def update_task(
        self,
        task_id: str,
        patch: TaskPatch,
        *,
        conflict_resolution: bool = False,
    ) -> Task | None:
        """Apply a partial update to one task."""
        task_id = validate_task_id(task_id)
        if not validate_date_range(patch.start_date, patch.due_date):
            msg = "Invalid date range: start date is after due date"
            raise TaskValidationError(msg)

        with span("task_service.update_task"):
            task = await self._resolve_task(task_id, operation="update")
            if task is None:
                return None
            _validate_patch_dates(task, patch)

            previous = TaskPatch.from_task(task, patch.model_fields_set).to_fields()
            merged, flipped = await self._persist_update(task.id, patch, conflict_resolution=conflict_resolution)
            logger.info("Updated task %s fields: %s", task.id, sorted(patch.model_fields_set))

            if self._should_record():
                self._session.history.record(
                    action_type=ActionType.TASK_UPDATE,
                    description=f'Edit task "{merged.title}"',
                    previous_state=previous,
                    new_state=patch.to_fields(),
                    forward=Command(
                        op=CommandOp.UPDATE,
                        task_id=task.id,
                        fields=patch.to_fields(),
                        conflict_resolution=conflict_resolution,
                    ),
                    inverse=Command(
                        op=CommandOp.UPDATE,
                        task_id=task.id,
                        fields=previous,
                        conflict_resolution=conflict_resolution,
                    ),
                )

            if flipped and merged.completed:
                await self.cascade.on_task_completed(task.id)
            return self._session.tree.find(task.id) or merged

    async def bulk_update(self, task_ids: list[str], patch: TaskPatch) -> list[Task]:
        """Apply the same patch to several tasks, recorded as one undoable action."""
        normalized = [validate_task_id(task_id) for task_id in task_ids]
        if not validate_date_range(patch.start_date, patch.due_date):
            msg = "Invalid date range: start date is after due date"
            raise TaskValidationError(msg)

        with span("task_service.bulk_update"):
            tasks: list[Task] = []
            for task_id in normalized:
                task = await self._resolve_task(task_id, operation="bulk_update")
                if task is not None:
                    _validate_patch_dates(task, patch)
                    tasks.append(task)

            previous: dict[str, dict[str, Any]] = {}
            updated: list[Task] = []
            newly_completed: list[str] = []
            for task in tasks:
                previous[task.id] = TaskPatch.from_task(task, patch.model_fields_set).to_fields()
                merged, flipped = await self._persist_update(task.id, patch)
                updated.append(merged)
                if flipped and merged.completed:
                    newly_completed.append(task.id)

            logger.info("Bulk updated %d tasks", len(updated))

            if updated and self._should_record():
                forward_fields = patch.to_fields()
                self._session.history.record(
                    action_type=ActionType.BULK_UPDATE,
                    description=f"Edit {len(updated)} tasks",
                    previous_state=previous,
                    new_state={task.id: forward_fields for task in updated},
                    forward=Command(
                        op=CommandOp.BULK_UPDATE,
                        updates={task.id: forward_fields for task in updated},
                    ),
                    inverse=Command(op=CommandOp.BULK_UPDATE, updates=previous),
                )

            for task_id in newly_completed:
                await self.cascade.on_task_completed(task_id)
            return [self._session.tree.find(task.id) or task for task in updated]

    async def create_task(self, fields: TaskCreate) -> Task:
        """Create a top-level task."""
        with span("task_service.create_task"):
            created = await self._gateway.create_task(fields.model_copy(update={"parent_id": None}))
            self._session.add_task(created)
            logger.info("Created task %s: %s", created.id, created.title)

            if self._should_record():
                record = TaskCreate.from_task(created).model_dump(mode="json")
                self._session.history.record(
                    action_type=ActionType.TASK_CREATE,
                    description=f'Create task "{created.title}"',
                    new_state=record,
                    forward=Command(op=CommandOp.CREATE, records=(record,)),
                    inverse=Command(op=CommandOp.DELETE, task_id=created.id),
                )
            return self._session.tree.find(created.id) or created

    async def create_subtask(self, parent_id: str, fields: TaskCreate) -> SubtaskCreation | None:
        """Create a subtask, expanding the parent's interval first when the subtask falls outside it.

        Returns None when the parent does not exist.
        """
        parent_id = validate_task_id(parent_id)
        with span("task_service.create_subtask"):
            parent = await self._resolve_task(parent_id, operation="create_subtask")
            if parent is None:
                return None

            conflict = resolve_for_tasks(
                child_title=fields.title,
                child_start=fields.start_date,
                child_end=fields.due_date,
                parent=parent,
            )

            forward_steps: list[Command] = []
            inverse_steps: list[Command] = []
            updated_parent: Task | None = None

            if conflict.has_conflict:
                parent_patch = build_parent_patch(conflict)
                parent_previous = TaskPatch.from_task(parent, parent_patch.model_fields_set).to_fields()
                updated_parent, _ = await self._persist_update(parent.id, parent_patch, conflict_resolution=True)
                logger.info("Expanded dates of parent task %s: %s", parent.id, conflict.message)
                forward_steps.append(
                    Command(
                        op=CommandOp.UPDATE,
                        task_id=parent.id,
                        fields=parent_patch.to_fields(),
                        conflict_resolution=True,
                    )
                )
                inverse_steps.append(
                    Command(op=CommandOp.UPDATE, task_id=parent.id, fields=parent_previous, conflict_resolution=True)
                )

            created = await self._gateway.create_task(fields.model_copy(update={"parent_id": parent.id}))
            self._session.add_task(created)
            logger.info("Created subtask %s under %s", created.id, parent.id)
            record = TaskCreate.from_task(created).model_dump(mode="json")
            forward_steps.append(Command(op=CommandOp.CREATE, records=(record,)))
            inverse_steps.insert(0, Command(op=CommandOp.DELETE, task_id=created.id))

            current_parent = self._session.tree.find(parent.id) or updated_parent or parent
            if current_parent.completed and not created.completed:
                # A completed task cannot keep a pending subtask
                reopened_from = _completion_state(current_parent)
                updated_parent, _ = await self._persist_update(parent.id, TaskPatch(completed=False))
                logger.info("Reopened task %s after adding pending subtask %s", parent.id, created.id)
                forward_steps.append(Command(op=CommandOp.UPDATE, task_id=parent.id, fields={"completed": False}))
                inverse_steps.insert(0, Command(op=CommandOp.UPDATE, task_id=parent.id, fields=reopened_from))

            if self._should_record():
                self._session.history.record(
                    action_type=ActionType.SUBTASK_CREATE,
                    description=f'Create subtask "{created.title}" in "{parent.title}"',
                    new_state=record,
                    forward=Command(op=CommandOp.SEQUENCE, steps=tuple(forward_steps)),
                    inverse=Command(op=CommandOp.SEQUENCE, steps=tuple(inverse_steps)),
                )

            return SubtaskCreation(
                task=self._session.tree.find(created.id) or created,
                parent=updated_parent,
                conflict=conflict if conflict.has_conflict else None,
            )

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task with its subtree; undo recreates the same records."""
        task_id = validate_task_id(task_id)
        with span("task_service.delete_task"):
            task = await self._resolve_task(task_id, operation="delete")
            if task is None:
                return False

            snapshot = self._session.tree.subtree(task.id) or [task]
            records = tuple(TaskCreate.from_task(node).model_dump(mode="json") for node in snapshot)

            deleted = await self._gateway.delete_task(task.id)
            self._session.drop_task(task.id)
            if not deleted:
                log_with_task_context(logger, "warning", "Task already gone remotely", task_id=task.id)
                return False
            logger.info("Deleted task %s with %d subtasks", task.id, len(snapshot) - 1)

            if self._should_record():
                self._session.history.record(
                    action_type=ActionType.TASK_DELETE,
                    description=f'Delete task "{task.title}"',
                    previous_state={"records": list(records)},
                    forward=Command(op=CommandOp.DELETE, task_id=task.id),
                    inverse=Command(op=CommandOp.CREATE, records=records),
                )
            return True

    # Command dispatch

    async def apply(self, command: Command) -> None:
        """Execute a data-only command against the gateway and the session tree."""
        handler = self._handlers[command.op]
        with span(f"task_service.apply.{command.op.lower()}"):
            await handler(command)

    async def _apply_update(self, command: Command) -> None:
        task_id = validate_task_id(command.task_id)
        patch = TaskPatch.model_validate(command.fields)
        merged, flipped = await self._persist_update(task_id, patch, conflict_resolution=command.conflict_resolution)
        if flipped and merged.completed:
            await self.cascade.on_task_completed(task_id)

    async def _apply_bulk_update(self, command: Command) -> None:
        newly_completed = []
        for task_id, fields in command.updates.items():
            merged, flipped = await self._persist_update(task_id, TaskPatch.model_validate(fields))
            if flipped and merged.completed:
                newly_completed.append(task_id)
        for task_id in newly_completed:
            await self.cascade.on_task_completed(task_id)

    async def _apply_create(self, command: Command) -> None:
        for record in command.records:
            created = await self._gateway.create_task(TaskCreate.model_validate(record))
            self._session.add_task(created)

    async def _apply_delete(self, command: Command) -> None:
        task_id = validate_task_id(command.task_id)
        if not await self._gateway.delete_task(task_id):
            log_with_task_context(logger, "warning", "Task already gone remotely", task_id=task_id)
        self._session.drop_task(task_id)

    async def _apply_sequence(self, command: Command) -> None:
        for step in command.steps:
            await self.apply(step)
