"""Domain models and DTOs."""

from src.domain.history import ActionType, Command, CommandOp, HistoryInfo, ToastState, UndoableAction
from src.domain.task import Priority, Task, TaskCreate, TaskInterval, TaskPatch


__all__ = [
    "ActionType",
    "Command",
    "CommandOp",
    "HistoryInfo",
    "Priority",
    "Task",
    "TaskCreate",
    "TaskInterval",
    "TaskPatch",
    "ToastState",
    "UndoableAction",
]
