"""Pytest configuration and fixtures for unit tests."""

import pytest

from src.services.history_service import CommandHistory
from src.services.session import TaskSession
from src.services.task_service import TaskService
from src.services.task_tree import TaskTree
from tests.unit.mocks import InMemoryTaskGateway, make_task, utc


@pytest.fixture
def gateway():
    """Provides a fresh InMemoryTaskGateway for each test."""
    return InMemoryTaskGateway()


@pytest.fixture
def state_updates():
    """Collects (task_id, task) notifications emitted by the session."""
    return []


@pytest.fixture
def session(state_updates):
    """Empty session whose notifications land in `state_updates`."""
    return TaskSession(
        history=CommandHistory(limit=50),
        on_task_state_update=lambda task_id, task: state_updates.append((task_id, task)),
    )


@pytest.fixture
def service(session, gateway):
    """TaskService wired to the in-memory gateway."""
    return TaskService(session=session, gateway=gateway)


@pytest.fixture
def project_tasks():
    """A parent with three subtasks, two of them already completed.

    P (1 Jan - 31 Jan)
      C1 completed
      C2 completed
      C3 pending
    """
    return [
        make_task("P", title="Project", start_date=utc(2024, 1, 1), due_date=utc(2024, 1, 31)),
        make_task("C1", parent_id="P", completed=True),
        make_task("C2", parent_id="P", completed=True),
        make_task("C3", parent_id="P", due_date=utc(2024, 1, 20)),
    ]


@pytest.fixture
def loaded_service(session, gateway, project_tasks):
    """TaskService whose session and gateway both hold `project_tasks`."""
    gateway.seed(*project_tasks)
    session.replace_tree(TaskTree.from_records(project_tasks))
    return TaskService(session=session, gateway=gateway)
