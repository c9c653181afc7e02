"""Relational backend shared by all users of a board (SQLite via aiosqlite)."""

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite

from sprint_service.errors import NotFoundError
from sprint_service.models import Project, Sprint, Task
from sprint_service.storage.base import PersistenceAdapter
from sprint_service.utils.logging import get_logger

logger = get_logger(__name__)

# Array columns hold JSON text
SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        created_at TEXT NOT NULL,
        user_id TEXT NOT NULL,
        assignees TEXT NOT NULL DEFAULT '[]'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        priority TEXT NOT NULL DEFAULT 'medium',
        points INTEGER NOT NULL DEFAULT 1,
        status TEXT NOT NULL DEFAULT 'todo',
        assignees TEXT NOT NULL DEFAULT '[]',
        project_id TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sprints (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        "startDate" TEXT NOT NULL,
        "endDate" TEXT NOT NULL,
        tasks TEXT NOT NULL DEFAULT '[]',
        project_id TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id)",
    'CREATE INDEX IF NOT EXISTS idx_sprints_project_start ON sprints(project_id, "startDate")',
]

TASK_COLUMNS = ("id", "title", "description", "priority", "points", "status", "assignees", "project_id")
SPRINT_COLUMNS = ("id", "name", "startDate", "endDate", "tasks", "project_id")
PROJECT_COLUMNS = ("id", "title", "created_at", "user_id", "assignees")


def _quote(column: str) -> str:
    return f'"{column}"'


def _encode_row(row: dict[str, Any], columns: tuple[str, ...], arrays: tuple[str, ...]) -> tuple[Any, ...]:
    return tuple(json.dumps(row[c]) if c in arrays else row[c] for c in columns)


def _decode_row(row: aiosqlite.Row, arrays: tuple[str, ...]) -> dict[str, Any]:
    data = dict(row)
    for column in arrays:
        data[column] = json.loads(data[column]) if data.get(column) else []
    return data


class RemoteAdapter(PersistenceAdapter):
    """Adapter for the shared relational store.

    Provides:
    - Schema initialization
    - Task and sprint CRUD, scoped to a project when one is bound
    - Project creation and listing
    - Cascading task deletion in a single transaction

    Single-row reads and writes see only rows of the bound project; rows of
    other projects behave as absent.
    """

    storage_name = "remote"

    def __init__(self, database_path: str | Path = ":memory:", project_id: str | None = None) -> None:
        """Initialize remote adapter.

        Args:
            database_path: SQLite database file (":memory:" for an ephemeral store)
            project_id: Restrict reads and stamp writes with this project
        """
        self.database_path = str(database_path)
        self.project_id = project_id
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the database and create tables."""
        async with self._operation("initialize"):
            if self.database_path != ":memory:":
                Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self.database_path)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            for statement in SCHEMA:
                await self._db.execute(statement)
            await self._db.commit()
        logger.info("remote_adapter_initialized", path=self.database_path, project_id=self.project_id)

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        assert self._db is not None
        return self._db

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run writes as one transaction on the shared connection.

        Writers take the adapter lock, so no other coroutine can commit
        while a multi-statement write is half done.
        """
        db = await self._conn()
        async with self._lock:
            try:
                yield db
            except BaseException:
                await db.rollback()
                raise
            await db.commit()

    def _scope(self, prefix: str = "WHERE") -> tuple[str, tuple[Any, ...]]:
        if self.project_id is None:
            return "", ()
        return f" {prefix} project_id = ?", (self.project_id,)

    def _stamp(self, row: dict[str, Any]) -> dict[str, Any]:
        if self.project_id is not None and not row.get("project_id"):
            row["project_id"] = self.project_id
        return row

    async def _select_one(self, table: str, row_id: str) -> aiosqlite.Row | None:
        """Fetch one row by id, invisible when it belongs to another project."""
        db = await self._conn()
        clause, params = self._scope("AND")
        cursor = await db.execute(f"SELECT * FROM {table} WHERE id = ?{clause}", (row_id, *params))
        return await cursor.fetchone()

    # Tasks

    async def fetch_tasks(self) -> list[Task]:
        async with self._operation("fetch_tasks"):
            db = await self._conn()
            clause, params = self._scope()
            cursor = await db.execute(f"SELECT * FROM tasks{clause} ORDER BY rowid", params)
            rows = await cursor.fetchall()
            return [Task.from_row(_decode_row(r, ("assignees",))) for r in rows]

    async def get_task(self, task_id: str) -> Task | None:
        async with self._operation("get_task"):
            row = await self._select_one("tasks", task_id)
            return Task.from_row(_decode_row(row, ("assignees",))) if row else None

    async def create_task(self, task: Task) -> Task:
        async with self._operation("create_task"), self._transaction() as db:
            row = self._stamp(task.to_row())
            placeholders = ", ".join("?" for _ in TASK_COLUMNS)
            await db.execute(
                f"INSERT INTO tasks ({', '.join(TASK_COLUMNS)}) VALUES ({placeholders})",
                _encode_row(row, TASK_COLUMNS, ("assignees",)),
            )
        logger.debug("remote_task_created", task_id=task.id)
        return Task.from_row(row)

    async def update_task(self, task: Task) -> Task:
        async with self._operation("update_task"), self._transaction() as db:
            row = self._stamp(task.to_row())
            columns = TASK_COLUMNS[1:]
            assignments = ", ".join(f"{c} = ?" for c in columns)
            clause, params = self._scope("AND")
            cursor = await db.execute(
                f"UPDATE tasks SET {assignments} WHERE id = ?{clause}",
                (*_encode_row(row, columns, ("assignees",)), task.id, *params),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Task", task.id)
        return Task.from_row(row)

    async def delete_task(self, task_id: str) -> list[Sprint]:
        """Delete a task and remove it from all sprints in one transaction."""
        changed: list[Sprint] = []
        async with self._operation("delete_task"), self._transaction() as db:
            clause, params = self._scope("AND")
            cursor = await db.execute(f"DELETE FROM tasks WHERE id = ?{clause}", (task_id, *params))
            if cursor.rowcount == 0:
                raise NotFoundError("Task", task_id)

            cursor = await db.execute(
                f"SELECT * FROM sprints WHERE tasks LIKE ?{clause}",
                (f"%{json.dumps(task_id)}%", *params),
            )
            for row in await cursor.fetchall():
                sprint = Sprint.from_row(_decode_row(row, ("tasks",)))
                if not sprint.contains(task_id):
                    continue
                sprint = sprint.with_task_ids([t for t in sprint.task_ids if t != task_id])
                await db.execute(
                    "UPDATE sprints SET tasks = ? WHERE id = ?",
                    (json.dumps(sprint.task_ids), sprint.id),
                )
                changed.append(sprint)
        logger.debug("remote_task_deleted", task_id=task_id, sprints_updated=len(changed))
        return changed

    # Sprints

    async def fetch_sprints(self) -> list[Sprint]:
        async with self._operation("fetch_sprints"):
            db = await self._conn()
            clause, params = self._scope()
            cursor = await db.execute(
                f'SELECT * FROM sprints{clause} ORDER BY "startDate" ASC, rowid ASC',
                params,
            )
            rows = await cursor.fetchall()
            return [Sprint.from_row(_decode_row(r, ("tasks",))) for r in rows]

    async def get_sprint(self, sprint_id: str) -> Sprint | None:
        async with self._operation("get_sprint"):
            row = await self._select_one("sprints", sprint_id)
            return Sprint.from_row(_decode_row(row, ("tasks",))) if row else None

    async def create_sprint(self, sprint: Sprint) -> Sprint:
        async with self._operation("create_sprint"), self._transaction() as db:
            row = self._stamp(sprint.to_row())
            placeholders = ", ".join("?" for _ in SPRINT_COLUMNS)
            await db.execute(
                f"INSERT INTO sprints ({', '.join(_quote(c) for c in SPRINT_COLUMNS)}) VALUES ({placeholders})",
                _encode_row(row, SPRINT_COLUMNS, ("tasks",)),
            )
        logger.debug("remote_sprint_created", sprint_id=sprint.id)
        return Sprint.from_row(row)

    async def update_sprint(self, sprint: Sprint) -> Sprint:
        async with self._operation("update_sprint"), self._transaction() as db:
            row = self._stamp(sprint.to_row())
            columns = SPRINT_COLUMNS[1:]
            assignments = ", ".join(f"{_quote(c)} = ?" for c in columns)
            clause, params = self._scope("AND")
            cursor = await db.execute(
                f"UPDATE sprints SET {assignments} WHERE id = ?{clause}",
                (*_encode_row(row, columns, ("tasks",)), sprint.id, *params),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Sprint", sprint.id)
        return Sprint.from_row(row)

    async def delete_sprint(self, sprint_id: str) -> None:
        async with self._operation("delete_sprint"), self._transaction() as db:
            clause, params = self._scope("AND")
            cursor = await db.execute(f"DELETE FROM sprints WHERE id = ?{clause}", (sprint_id, *params))
            if cursor.rowcount == 0:
                raise NotFoundError("Sprint", sprint_id)

    # Projects

    async def create_project(self, project: Project) -> Project:
        async with self._operation("create_project"), self._transaction() as db:
            row = project.to_row()
            placeholders = ", ".join("?" for _ in PROJECT_COLUMNS)
            await db.execute(
                f"INSERT INTO projects ({', '.join(PROJECT_COLUMNS)}) VALUES ({placeholders})",
                _encode_row(row, PROJECT_COLUMNS, ("assignees",)),
            )
        logger.info("remote_project_created", project_id=project.id)
        return project

    async def fetch_projects(self) -> list[Project]:
        """Return all projects, newest first."""
        async with self._operation("fetch_projects"):
            db = await self._conn()
            cursor = await db.execute("SELECT * FROM projects ORDER BY created_at DESC")
            rows = await cursor.fetchall()
            return [Project.from_row(_decode_row(r, ("assignees",))) for r in rows]

    async def get_project(self, project_id: str) -> Project | None:
        async with self._operation("get_project"):
            db = await self._conn()
            cursor = await db.execute("SELECT * FROM projects WHERE id = ?", (project_id,))
            row = await cursor.fetchone()
            return Project.from_row(_decode_row(row, ("assignees",))) if row else None
