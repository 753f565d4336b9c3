"""Undo/redo history over already-executed task mutations.

Actions are recorded only after their mutation succeeded remotely. Each action
carries a forward and an inverse `Command`; undo and redo hand those commands
to an executor (the task service's `apply`) rather than calling closures.
"""

import logging
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from src.core.config import settings
from src.core.logging import span
from src.domain.history import ActionType, Command, HistoryInfo, ToastState, UndoableAction


logger = logging.getLogger(__name__)

CommandExecutor = Callable[[Command], Awaitable[None]]
NotifyCallback = Callable[[ToastState], None]


class CommandHistory:
    """Paired undo/redo stacks with a single-flight guard.

    At most one undo or redo runs at a time; calls made while one is running
    are dropped, not queued. When an effect fails the action goes back on the
    stack it came from and the error is re-raised.
    """

    def __init__(
        self,
        *,
        limit: int | None = None,
        executor: CommandExecutor | None = None,
        on_notify: NotifyCallback | None = None,
    ) -> None:
        """Initialize empty history."""
        self._limit = limit or settings.undo_history_limit
        self._undo_stack: deque[UndoableAction] = deque(maxlen=self._limit)
        self._redo_stack: list[UndoableAction] = []
        self._executor = executor
        self._on_notify = on_notify
        self._is_undoing = False
        self._is_redoing = False
        self.toast = ToastState()

    def bind_executor(self, executor: CommandExecutor) -> None:
        """Set the function that applies commands on undo and redo."""
        self._executor = executor

    @property
    def is_undoing(self) -> bool:
        return self._is_undoing

    @property
    def is_redoing(self) -> bool:
        return self._is_redoing

    @property
    def is_busy(self) -> bool:
        return self._is_undoing or self._is_redoing

    @property
    def undo_stack(self) -> list[UndoableAction]:
        """Oldest first."""
        return list(self._undo_stack)

    @property
    def redo_stack(self) -> list[UndoableAction]:
        """Oldest first; the next action to redo is last."""
        return list(self._redo_stack)

    def record(
        self,
        *,
        action_type: ActionType,
        description: str,
        forward: Command,
        inverse: Command,
        previous_state: dict[str, Any] | None = None,
        new_state: dict[str, Any] | None = None,
    ) -> UndoableAction:
        """Register a successfully executed mutation as undoable.

        Clears the redo stack and points the toast at the new action.
        """
        action = UndoableAction(
            id=f"action_{uuid.uuid4().hex}",
            type=action_type,
            timestamp=datetime.now(UTC),
            description=description,
            previous_state=previous_state or {},
            new_state=new_state or {},
            forward=forward,
            inverse=inverse,
        )
        if len(self._undo_stack) == self._limit:
            logger.debug("Undo history full, evicting %s", self._undo_stack[0].id)
        self._undo_stack.append(action)
        self._redo_stack.clear()
        self.show_toast(description, action.id)
        logger.info("Recorded undoable action %s (%s): %s", action.id, action_type, description)
        return action

    def show_toast(self, message: str, action_id: str) -> None:
        self.toast = ToastState(is_visible=True, message=message, action_id=action_id)
        if self._on_notify is not None:
            self._on_notify(self.toast)

    def hide_toast(self) -> None:
        """Dismiss the toast; the action it points at stays undoable."""
        self.toast = self.toast.model_copy(update={"is_visible": False})
        if self._on_notify is not None:
            self._on_notify(self.toast)

    async def undo(self) -> UndoableAction | None:
        """Undo the most recent action; returns it, or None when nothing ran."""
        if not self._undo_stack or self.is_busy:
            return None
        return await self._undo_last()

    async def undo_from_toast(self) -> UndoableAction | None:
        """Undo only if the toast still points at the most recent action."""
        if not self._undo_stack or self.is_busy:
            return None
        if self._undo_stack[-1].id != self.toast.action_id:
            logger.info("Toast for %s is stale, ignoring undo", self.toast.action_id)
            return None
        self.hide_toast()
        return await self._undo_last()

    async def _undo_last(self) -> UndoableAction:
        executor = self._require_executor()
        action = self._undo_stack.pop()
        self._is_undoing = True
        try:
            with span("history.undo"):
                await executor(action.inverse)
        except Exception:
            self._undo_stack.append(action)
            logger.exception("Failed to undo action %s: %s", action.id, action.description)
            raise
        finally:
            self._is_undoing = False
        self._redo_stack.append(action)
        logger.info("Undid action %s: %s", action.id, action.description)
        return action

    async def redo(self) -> UndoableAction | None:
        """Re-apply the most recently undone action; returns it, or None when nothing ran."""
        if not self._redo_stack or self.is_busy:
            return None
        executor = self._require_executor()
        action = self._redo_stack.pop()
        self._is_redoing = True
        try:
            with span("history.redo"):
                await executor(action.forward)
        except Exception:
            self._redo_stack.append(action)
            logger.exception("Failed to redo action %s: %s", action.id, action.description)
            raise
        finally:
            self._is_redoing = False
        self._undo_stack.append(action)
        logger.info("Redid action %s: %s", action.id, action.description)
        return action

    def _require_executor(self) -> CommandExecutor:
        if self._executor is None:
            msg = "No command executor bound to history"
            raise RuntimeError(msg)
        return self._executor

    def clear(self) -> None:
        """Drop both stacks."""
        self._undo_stack.clear()
        self._redo_stack.clear()

    def info(self) -> HistoryInfo:
        """Summary of the stacks for the presentation layer."""
        return HistoryInfo(
            can_undo=bool(self._undo_stack) and not self.is_busy,
            can_redo=bool(self._redo_stack) and not self.is_busy,
            undo_count=len(self._undo_stack),
            redo_count=len(self._redo_stack),
            last_action=self._undo_stack[-1] if self._undo_stack else None,
            next_redo_action=self._redo_stack[-1] if self._redo_stack else None,
        )
