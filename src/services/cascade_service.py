"""Bottom-up completion cascade.

When a task becomes completed, its parent is completed automatically once
every child of that parent is completed, and the check repeats one level up.
Each level's remote write is awaited and merged into the tree before the
next ancestor is evaluated.

The cascade is a background consistency action: a failed remote write stops
the walk at that level, is logged and recorded on the session, and is never
raised to the caller. Levels already completed stay completed.
"""

import logging
from enum import StrEnum

from src.core.errors import TaskGatewayError
from src.core.logging import span
from src.domain.task import TaskPatch
from src.interface.task_gateway import TaskGateway
from src.models.service_models import CascadeResult
from src.services.session import TaskSession


logger = logging.getLogger(__name__)


class CascadeState(StrEnum):
    """Per-task processing state during a cascade step."""

    IDLE = "IDLE"
    CHECKING = "CHECKING"
    PERSISTING = "PERSISTING"


class CascadeCompletionEngine:
    """Walks ancestors of a newly completed task and completes the eligible ones."""

    def __init__(self, *, session: TaskSession, gateway: TaskGateway) -> None:
        self._session = session
        self._gateway = gateway
        self._states: dict[str, CascadeState] = {}

    def state_of(self, task_id: str) -> CascadeState:
        return self._states.get(task_id, CascadeState.IDLE)

    async def on_task_completed(self, task_id: str) -> CascadeResult:
        """Run the cascade for a task whose completed flag just became true."""
        with span("cascade.on_task_completed"):
            result = CascadeResult(trigger_id=task_id)
            current_id = task_id

            while True:
                tree = self._session.tree
                parent = tree.parent_of(current_id)
                if parent is None or parent.completed:
                    break

                if parent.id in self._session.in_flight:
                    logger.info("Task %s already has a cascade write in flight, skipping", parent.id)
                    break

                self._states[parent.id] = CascadeState.CHECKING
                if not tree.all_children_completed(parent.id) or not self._session.try_mark_in_flight(parent.id):
                    self._states.pop(parent.id, None)
                    logger.debug("Not all subtasks of %s are completed, stopping cascade", parent.id)
                    break

                self._states[parent.id] = CascadeState.PERSISTING
                try:
                    canonical = await self._gateway.update_task(parent.id, TaskPatch(completed=True))
                except TaskGatewayError as e:
                    self._session.record_cascade_failure(parent.id, e)
                    logger.error(
                        "Auto-completion of task %s failed, cascade halted: %s",
                        parent.id,
                        e,
                        extra={"trigger_id": task_id, "completed_ids": result.completed_ids},
                    )
                    result.halted_at = parent.id
                    result.error = str(e)
                    break
                finally:
                    self._session.clear_in_flight(parent.id)
                    self._states.pop(parent.id, None)

                self._session.apply_remote(canonical)
                result.completed_ids.append(parent.id)
                logger.info("Auto-completed task %s after all subtasks completed", parent.id)
                current_id = parent.id

            if result.completed_ids:
                logger.info(
                    "Cascade from %s completed %d ancestor(s)",
                    task_id,
                    len(result.completed_ids),
                )
            return result
