"""SQLite schema management (code-first approach)."""

import logging

from src.core import db_client


logger = logging.getLogger(__name__)


# Central list of all tables in the schema, in creation order
TABLES = ["tasks", "task_activities"]

_TABLE_DDL = {
    "tasks": """
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            priority TEXT NOT NULL DEFAULT 'MEDIUM',
            start_date TEXT,
            due_date TEXT,
            completed INTEGER NOT NULL DEFAULT 0,
            original_due_date TEXT,
            parent_id TEXT REFERENCES tasks (id) ON DELETE CASCADE,
            tags TEXT NOT NULL DEFAULT '[]',
            group_id TEXT,
            created TEXT NOT NULL,
            updated TEXT NOT NULL
        )
    """,
    "task_activities": """
        CREATE TABLE IF NOT EXISTS task_activities (
            id TEXT PRIMARY KEY,
            task_id TEXT NOT NULL,
            kind TEXT NOT NULL,
            details TEXT NOT NULL,
            created TEXT NOT NULL
        )
    """,
}

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks (parent_id)",
    "CREATE INDEX IF NOT EXISTS idx_task_activities_task ON task_activities (task_id)",
]


async def init_db(*, db_path: str | None = None) -> None:
    """Create any missing tables and indexes."""
    conn = await db_client.get_connection(db_path=db_path)
    for table in TABLES:
        await conn.execute(_TABLE_DDL[table])
    for index in _INDEXES:
        await conn.execute(index)
    await conn.commit()
    logger.info("Database schema initialized", extra={"tables": TABLES, "db_path": str(db_client.get_db_path(db_path))})
