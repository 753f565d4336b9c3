"""Unit tests for TaskService mutations and command dispatch."""

import asyncio

import pytest

from src.core.errors import TaskGatewayError, TaskValidationError
from src.domain.history import ActionType, Command, CommandOp
from src.domain.task import Priority, TaskCreate, TaskPatch
from src.services.task_tree import TaskTree
from tests.unit.mocks import make_task, utc


@pytest.mark.unit
class TestToggleTask:
    """Tests for TaskService.toggle_task."""

    async def test_completing_last_child_completes_parent(self, loaded_service, gateway):
        task = await loaded_service.toggle_task("C3", True)

        assert task.completed is True
        assert loaded_service.session.tree.find("P").completed is True
        assert [call[1] for call in gateway.calls_for("update_task")] == ["C3", "P"]

    async def test_toggle_then_undo_restores_exact_state(self, loaded_service):
        session = loaded_service.session
        before = session.tree.find("C3")

        await loaded_service.toggle_task("C3", True)
        toggled = session.tree.find("C3")
        assert toggled.due_date == utc(2024, 6, 1, 12)
        assert toggled.original_due_date == utc(2024, 1, 20)

        await session.history.undo()

        after = session.tree.find("C3")
        assert after.completed is False
        assert after.due_date == before.due_date
        assert after.original_due_date == before.original_due_date

    async def test_redo_reapplies_exact_completion_state(self, loaded_service, gateway):
        session = loaded_service.session
        await loaded_service.toggle_task("C3", True)
        await session.history.undo()
        gateway.now = utc(2024, 7, 1)

        await session.history.redo()

        redone = session.tree.find("C3")
        assert redone.completed is True
        assert redone.due_date == utc(2024, 6, 1, 12)
        assert redone.original_due_date == utc(2024, 1, 20)

    async def test_records_toggle_action(self, loaded_service):
        await loaded_service.toggle_task("C3", True)

        action = loaded_service.session.history.info().last_action
        assert action.type == ActionType.TASK_TOGGLE
        assert action.inverse.fields["completed"] is False
        assert action.forward.fields["completed"] is True
        assert loaded_service.session.history.toast.action_id == action.id

    async def test_unchanged_value_makes_no_remote_call(self, loaded_service, gateway):
        task = await loaded_service.toggle_task("C1", True)

        assert task.completed is True
        assert gateway.calls_for("update_task") == []
        assert loaded_service.session.history.info().undo_count == 0

    @pytest.mark.parametrize("bad_id", ["", "   ", None, 42])
    async def test_invalid_id_is_rejected_before_any_call(self, loaded_service, gateway, bad_id):
        with pytest.raises(TaskValidationError):
            await loaded_service.toggle_task(bad_id, True)

        assert gateway.calls == []

    async def test_non_boolean_completion_is_rejected(self, loaded_service, gateway):
        with pytest.raises(TaskValidationError, match="completed must be a boolean"):
            await loaded_service.toggle_task("C3", "yes")

        assert gateway.calls == []

    async def test_missing_locally_falls_back_to_gateway(self, loaded_service, gateway):
        gateway.seed(make_task("remote-only"))

        task = await loaded_service.toggle_task("remote-only", True)

        assert task.completed is True
        assert gateway.calls_for("get_task") == [("get_task", "remote-only", {})]
        assert loaded_service.session.tree.find("remote-only").completed is True

    async def test_missing_everywhere_aborts(self, loaded_service, gateway):
        assert await loaded_service.toggle_task("ghost", True) is None
        assert gateway.calls_for("update_task") == []

    async def test_remote_failure_propagates_and_records_nothing(self, loaded_service, gateway):
        gateway.fail_updates.add("C3")

        with pytest.raises(TaskGatewayError):
            await loaded_service.toggle_task("C3", True)

        assert loaded_service.session.tree.find("C3").completed is False
        assert loaded_service.session.history.info().undo_count == 0

    async def test_cascade_failure_is_not_raised(self, loaded_service, gateway):
        gateway.fail_updates.add("P")

        task = await loaded_service.toggle_task("C3", True)

        assert task.completed is True
        assert loaded_service.session.tree.find("P").completed is False
        assert [failure.task_id for failure in loaded_service.session.cascade_failures] == ["P"]

    async def test_emits_state_updates(self, loaded_service, state_updates):
        await loaded_service.toggle_task("C3", True)

        assert [task_id for task_id, _ in state_updates] == ["C3", "P"]

    async def test_concurrent_identical_toggles_record_one_action(self, loaded_service, gateway):
        await asyncio.gather(loaded_service.toggle_task("C3", True), loaded_service.toggle_task("C3", True))

        assert [call[1] for call in gateway.calls_for("update_task")].count("P") == 1
        assert loaded_service.session.history.info().undo_count == 1
        assert loaded_service.session.tree.find("C3").completed is True


@pytest.mark.unit
class TestCompletingParent:
    """Tests for completing a task that still has pending subtasks."""

    @pytest.fixture
    def parent_service(self, session, gateway, service):
        tasks = [
            make_task("P", due_date=utc(2024, 3, 1)),
            make_task("A", parent_id="P", due_date=utc(2024, 2, 1)),
            make_task("A1", parent_id="A"),
            make_task("B", parent_id="P", completed=True, due_date=utc(2024, 1, 15)),
        ]
        gateway.seed(*tasks)
        session.replace_tree(TaskTree.from_records(tasks))
        return service

    async def test_completes_pending_subtasks(self, parent_service, gateway):
        await parent_service.toggle_task("P", True)

        tree = parent_service.session.tree
        assert all(tree.find(task_id).completed for task_id in ("P", "A", "A1", "B"))
        assert [call[1] for call in gateway.calls_for("update_task")] == ["P", "A", "A1"]
        assert gateway.stored("A").original_due_date == utc(2024, 2, 1)

    async def test_undo_restores_subtasks_exactly(self, parent_service):
        session = parent_service.session
        await parent_service.toggle_task("P", True)
        assert session.history.info().undo_count == 1

        await session.history.undo()

        tree = session.tree
        assert tree.find("P").completed is False
        assert tree.find("A").completed is False
        assert tree.find("A").due_date == utc(2024, 2, 1)
        assert tree.find("A").original_due_date is None
        assert tree.find("A1").completed is False
        assert tree.find("B").completed is True

        await session.history.redo()

        assert all(session.tree.find(task_id).completed for task_id in ("P", "A", "A1"))

    async def test_reopening_parent_leaves_subtasks_completed(self, parent_service):
        await parent_service.toggle_task("P", True)

        await parent_service.toggle_task("P", False)

        tree = parent_service.session.tree
        assert tree.find("P").completed is False
        assert tree.find("A").completed is True


@pytest.mark.unit
class TestUpdateTask:
    """Tests for TaskService.update_task and bulk_update."""

    async def test_update_and_undo(self, loaded_service):
        session = loaded_service.session

        updated = await loaded_service.update_task("C3", TaskPatch(title="Renamed", priority=Priority.HIGH))
        assert updated.title == "Renamed"

        await session.history.undo()

        restored = session.tree.find("C3")
        assert restored.title == "Task C3"
        assert restored.priority == Priority.MEDIUM

    async def test_inverted_patch_range_is_rejected(self, loaded_service, gateway):
        with pytest.raises(TaskValidationError, match="date"):
            await loaded_service.update_task(
                "C3", TaskPatch(start_date=utc(2024, 2, 1), due_date=utc(2024, 1, 1))
            )

        assert gateway.calls == []

    async def test_patch_inverting_existing_range_is_rejected(self, loaded_service, gateway):
        with pytest.raises(TaskValidationError, match="date"):
            await loaded_service.update_task("P", TaskPatch(start_date=utc(2024, 2, 15)))

        assert gateway.calls_for("update_task") == []

    async def test_conflict_hint_is_forwarded(self, loaded_service, gateway):
        await loaded_service.update_task("P", TaskPatch(due_date=utc(2024, 2, 1)), conflict_resolution=True)

        _, task_id, payload = gateway.calls_for("update_task")[0]
        assert task_id == "P"
        assert payload["conflict_resolution"] is True

    async def test_bulk_update_is_one_undoable_action(self, loaded_service):
        session = loaded_service.session

        updated = await loaded_service.bulk_update(["C1", "C2"], TaskPatch(priority=Priority.URGENT))

        assert [task.priority for task in updated] == [Priority.URGENT, Priority.URGENT]
        assert session.history.info().last_action.type == ActionType.BULK_UPDATE

        await session.history.undo()

        assert session.tree.find("C1").priority == Priority.MEDIUM
        assert session.tree.find("C2").priority == Priority.MEDIUM

    async def test_bulk_completion_cascades(self, loaded_service):
        await loaded_service.bulk_update(["C3"], TaskPatch(completed=True))

        assert loaded_service.session.tree.find("P").completed is True


@pytest.mark.unit
class TestCreateAndDelete:
    """Tests for creating and deleting tasks."""

    async def test_create_task_undo_redo_keeps_id(self, service, gateway):
        session = service.session
        created = await service.create_task(TaskCreate(title="New"))
        assert session.tree.find(created.id) is not None

        await session.history.undo()
        assert session.tree.find(created.id) is None
        assert gateway.stored(created.id) is None

        await session.history.redo()
        assert session.tree.find(created.id).title == "New"

    async def test_subtask_outside_parent_expands_parent(self, loaded_service, gateway):
        result = await loaded_service.create_subtask(
            "P",
            TaskCreate(title="Late work", start_date=utc(2024, 1, 10), due_date=utc(2024, 2, 10)),
        )

        assert result.conflict is not None
        assert result.conflict.suggested_parent_end == utc(2024, 2, 10)
        assert result.conflict.suggested_parent_start is None
        assert result.parent.due_date == utc(2024, 2, 10)
        assert result.parent.start_date == utc(2024, 1, 1)
        assert result.task.parent_id == "P"

        parent_update = gateway.calls_for("update_task")[0]
        assert parent_update[1] == "P"
        assert parent_update[2]["conflict_resolution"] is True

        tree = loaded_service.session.tree
        assert tree.find("P").children[-1] == result.task.id

    async def test_subtask_undo_removes_child_and_restores_parent(self, loaded_service, gateway):
        session = loaded_service.session
        result = await loaded_service.create_subtask(
            "P",
            TaskCreate(title="Early work", start_date=utc(2023, 12, 20), due_date=utc(2024, 1, 5)),
        )
        assert session.tree.find("P").start_date == utc(2023, 12, 20)

        await session.history.undo()

        assert session.tree.find(result.task.id) is None
        assert session.tree.find("P").start_date == utc(2024, 1, 1)
        assert gateway.stored("P").start_date == utc(2024, 1, 1)

        await session.history.redo()

        assert session.tree.find(result.task.id).parent_id == "P"
        assert session.tree.find("P").start_date == utc(2023, 12, 20)

    async def test_subtask_inside_parent_leaves_parent_alone(self, loaded_service, gateway):
        result = await loaded_service.create_subtask(
            "P",
            TaskCreate(title="Inside", start_date=utc(2024, 1, 2), due_date=utc(2024, 1, 3)),
        )

        assert result.conflict is None
        assert result.parent is None
        assert gateway.calls_for("update_task") == []

    async def test_subtask_of_missing_parent(self, loaded_service):
        assert await loaded_service.create_subtask("ghost", TaskCreate(title="x")) is None

    async def test_pending_subtask_reopens_completed_parent(self, session, gateway, service):
        tasks = [
            make_task("P", completed=True, due_date=utc(2024, 5, 1), original_due_date=utc(2024, 5, 10)),
            make_task("C1", parent_id="P", completed=True),
        ]
        gateway.seed(*tasks)
        session.replace_tree(TaskTree.from_records(tasks))

        result = await service.create_subtask("P", TaskCreate(title="new"))

        assert result.parent.completed is False
        assert session.tree.find("P").completed is False
        assert gateway.stored("P").completed is False
        assert session.history.info().undo_count == 1

        await session.history.undo()

        parent = session.tree.find("P")
        assert session.tree.find(result.task.id) is None
        assert parent.completed is True
        assert parent.due_date == utc(2024, 5, 1)
        assert parent.original_due_date == utc(2024, 5, 10)

        await session.history.redo()

        assert session.tree.find("P").completed is False
        assert session.tree.find(result.task.id).parent_id == "P"

    async def test_delete_and_undo_recreates_subtree(self, loaded_service, gateway):
        session = loaded_service.session

        assert await loaded_service.delete_task("P") is True
        assert len(session.tree) == 0
        assert gateway.stored("C1") is None

        await session.history.undo()

        parent = session.tree.find("P")
        assert parent.children == ("C1", "C2", "C3")
        assert session.tree.find("C1").completed is True
        assert gateway.stored("C3").parent_id == "P"

    async def test_delete_missing_task(self, loaded_service):
        assert await loaded_service.delete_task("ghost") is False


@pytest.mark.unit
class TestApply:
    """Tests for the command dispatcher."""

    async def test_sequence_runs_steps_in_order(self, loaded_service, gateway):
        command = Command(
            op=CommandOp.SEQUENCE,
            steps=(
                Command(op=CommandOp.UPDATE, task_id="C3", fields={"title": "First"}),
                Command(op=CommandOp.DELETE, task_id="C3"),
            ),
        )

        await loaded_service.apply(command)

        assert [call[0] for call in gateway.calls] == ["update_task", "delete_task"]
        assert loaded_service.session.tree.find("C3") is None

    async def test_apply_does_not_record_history(self, loaded_service):
        await loaded_service.apply(Command(op=CommandOp.UPDATE, task_id="C3", fields={"title": "Quiet"}))

        assert loaded_service.session.history.info().undo_count == 0
        assert loaded_service.session.tree.find("C3").title == "Quiet"

    async def test_apply_update_to_unknown_task_raises(self, loaded_service):
        with pytest.raises(TaskGatewayError):
            await loaded_service.apply(Command(op=CommandOp.UPDATE, task_id="ghost", fields={"title": "x"}))
