"""Date-interval conflict resolution between a subtask and its parent.

A child's interval must sit inside its parent's interval. When it does not,
the parent is expanded (never the child shrunk), and only the violated bound
is moved.
"""

from datetime import datetime

from pydantic import BaseModel

from src.domain.task import Task, TaskPatch, as_utc


class DateConflictResult(BaseModel):
    """Outcome of checking a child interval against its parent interval."""

    has_conflict: bool
    message: str
    suggested_parent_start: datetime | None = None
    suggested_parent_end: datetime | None = None


def _format_date(value: datetime) -> str:
    return f"{value.day} {value.strftime('%b %Y')}"


def resolve_date_conflict(
    *,
    child_title: str,
    child_start: datetime | None,
    child_end: datetime | None,
    parent_start: datetime | None,
    parent_end: datetime | None,
    parent_title: str | None = None,
) -> DateConflictResult:
    """Check a child interval against a parent interval and propose a parent repair.

    Rules, in order:
        1. Child missing either bound: no conflict (nothing to judge).
        2. Parent missing either bound: conflict, parent adopts both child bounds.
        3. Child starts earlier and/or ends later: conflict, only the violated
           bound is suggested.
        4. Otherwise: no conflict.

    Pure and total: the same inputs always give the same result and nothing is raised.
    """
    if child_start is None or child_end is None:
        return DateConflictResult(has_conflict=False, message="No dates defined to validate")

    if parent_start is None or parent_end is None:
        return DateConflictResult(
            has_conflict=True,
            message=(
                f'Subtask "{child_title}" has dates but its parent does not. '
                "The parent dates will be set to include this subtask."
            ),
            suggested_parent_start=child_start,
            suggested_parent_end=child_end,
        )

    starts_before = as_utc(child_start) < as_utc(parent_start)
    ends_after = as_utc(child_end) > as_utc(parent_end)

    if not (starts_before or ends_after):
        return DateConflictResult(
            has_conflict=False,
            message="Subtask dates are within the parent task's range",
        )

    parent_label = f' "{parent_title}"' if parent_title else ""
    message = f'Subtask "{child_title}" has dates outside the range of the parent task{parent_label}.'
    parent_range = f"{_format_date(parent_start)} - {_format_date(parent_end)}"
    if starts_before and ends_after:
        message += (
            f" The subtask starts earlier ({_format_date(child_start)}) and ends later"
            f" ({_format_date(child_end)}) than the parent ({parent_range})."
        )
    elif starts_before:
        message += (
            f" The subtask starts earlier ({_format_date(child_start)}) than the parent"
            f" ({_format_date(parent_start)})."
        )
    else:
        message += (
            f" The subtask ends later ({_format_date(child_end)}) than the parent ({_format_date(parent_end)})."
        )

    return DateConflictResult(
        has_conflict=True,
        message=message,
        suggested_parent_start=child_start if starts_before else None,
        suggested_parent_end=child_end if ends_after else None,
    )


def resolve_for_tasks(
    *,
    child_title: str,
    child_start: datetime | None,
    child_end: datetime | None,
    parent: Task,
) -> DateConflictResult:
    """Check a prospective child interval against an existing parent task."""
    return resolve_date_conflict(
        child_title=child_title,
        child_start=child_start,
        child_end=child_end,
        parent_start=parent.interval.start,
        parent_end=parent.interval.end,
        parent_title=parent.title,
    )


def validate_date_range(start: datetime | None, end: datetime | None) -> bool:
    """Return True when either bound is missing or start <= end."""
    if start is None or end is None:
        return True
    return as_utc(start) <= as_utc(end)


def build_parent_patch(result: DateConflictResult) -> TaskPatch:
    """Patch that applies the suggested bounds to the parent, leaving the other bound untouched."""
    fields = {}
    if result.suggested_parent_start is not None:
        fields["start_date"] = result.suggested_parent_start
    if result.suggested_parent_end is not None:
        fields["due_date"] = result.suggested_parent_end
    return TaskPatch.model_validate(fields)
