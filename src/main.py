"""tasktree - hierarchical task consistency engine."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Literal

from src.core.config import settings
from src.core.logging import configure_logfire, instrument_httpx
from src.interface.http_gateway import HttpTaskGateway
from src.interface.sqlite_gateway import SqliteTaskGateway
from src.interface.task_gateway import TaskGateway
from src.services.session import TaskSession, TaskStateCallback
from src.services.task_service import TaskService


logger = logging.getLogger(__name__)

Backend = Literal["sqlite", "http"]


class Workspace:
    """A loaded session wired to its gateway and task service."""

    def __init__(self, *, session: TaskSession, gateway: TaskGateway, service: TaskService) -> None:
        self.session = session
        self.gateway = gateway
        self.service = service

    async def reload(self) -> None:
        """Re-read the authoritative task list; the only reconciliation after a halted cascade."""
        await self.session.reload(self.gateway)


async def build_gateway(backend: Backend) -> SqliteTaskGateway | HttpTaskGateway:
    """Create and prepare the gateway for `backend`."""
    if backend == "sqlite":
        gateway = SqliteTaskGateway(db_path=settings.sqlite_db_path)
        await gateway.initialize()
        logger.info("startup", extra={"backend": backend, "db_path": settings.sqlite_db_path})
        return gateway
    if backend == "http":
        instrument_httpx()
        logger.info("startup", extra={"backend": backend, "task_api_url": settings.task_api_url})
        return HttpTaskGateway()
    msg = f"Unknown task backend: {backend}"
    raise ValueError(msg)


async def build_workspace(
    gateway: TaskGateway,
    *,
    on_task_state_update: TaskStateCallback | None = None,
) -> Workspace:
    """Load a session from `gateway` and wire the task service to it."""
    session = await TaskSession.load(gateway, on_task_state_update=on_task_state_update)
    service = TaskService(session=session, gateway=gateway)
    return Workspace(session=session, gateway=gateway, service=service)


@asynccontextmanager
async def open_workspace(
    backend: Backend = "sqlite",
    *,
    on_task_state_update: TaskStateCallback | None = None,
) -> AsyncIterator[Workspace]:
    """Session lifespan: configure logging, load tasks, and dispose of everything on exit."""
    configure_logfire()
    gateway = await build_gateway(backend)
    try:
        workspace = await build_workspace(gateway, on_task_state_update=on_task_state_update)
        logger.info("Workspace ready with %d tasks", len(workspace.session.tree))
        try:
            yield workspace
        finally:
            workspace.session.close()
    finally:
        await gateway.close()
        logger.info("Workspace closed")
