"""Undo/redo history domain models.

Effects are stored as data-only commands so an action can be logged,
serialized or replayed without the call site that created it.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ActionType(StrEnum):
    """Kind of user mutation an undoable action represents."""

    TASK_TOGGLE = "TASK_TOGGLE"
    TASK_UPDATE = "TASK_UPDATE"
    TASK_DELETE = "TASK_DELETE"
    TASK_CREATE = "TASK_CREATE"
    BULK_UPDATE = "BULK_UPDATE"
    SUBTASK_CREATE = "SUBTASK_CREATE"


class CommandOp(StrEnum):
    """Operations understood by the command dispatcher."""

    UPDATE = "UPDATE"  # Patch one task
    BULK_UPDATE = "BULK_UPDATE"  # Patch several tasks, each with its own fields
    CREATE = "CREATE"  # Create records in order (parents before children)
    DELETE = "DELETE"  # Delete one task and its subtree
    SEQUENCE = "SEQUENCE"  # Run nested commands in order


class Command(BaseModel):
    """A declarative remote mutation.

    Only the payload fields relevant to `op` are populated:
    UPDATE uses task_id + fields (+ conflict_resolution), BULK_UPDATE uses updates,
    CREATE uses records, DELETE uses task_id, SEQUENCE uses steps.
    """

    model_config = ConfigDict(frozen=True)

    op: CommandOp
    task_id: str | None = None
    fields: dict[str, Any] = Field(default_factory=dict)
    updates: dict[str, dict[str, Any]] = Field(default_factory=dict)
    records: tuple[dict[str, Any], ...] = ()
    steps: tuple["Command", ...] = ()
    conflict_resolution: bool = False


class UndoableAction(BaseModel):
    """A successfully executed mutation together with the commands that redo and undo it."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: ActionType
    timestamp: datetime
    description: str
    previous_state: dict[str, Any] = Field(default_factory=dict)
    new_state: dict[str, Any] = Field(default_factory=dict)
    forward: Command
    inverse: Command


class ToastState(BaseModel):
    """Transient, dismissible notification pointing at the most recent action."""

    is_visible: bool = False
    message: str = ""
    action_id: str = ""


class HistoryInfo(BaseModel):
    """Snapshot of the undo/redo stacks for the presentation layer."""

    can_undo: bool
    can_redo: bool
    undo_count: int
    redo_count: int
    last_action: UndoableAction | None = None
    next_redo_action: UndoableAction | None = None
