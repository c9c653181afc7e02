"""Per-user local backend over a namespaced key-value store."""

import json
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from sprint_service.config import validate_user_id
from sprint_service.errors import NotFoundError, ValidationError
from sprint_service.models import Sprint, Task
from sprint_service.storage.base import PersistenceAdapter
from sprint_service.storage.kv_store import KeyValueStore
from sprint_service.utils.logging import get_logger

logger = get_logger(__name__)

# Base keys, suffixed with "_<user_id>"
SPRINTS_KEY = "sprints"
TASKS_KEY = "tasks"
PRODUCT_BACKLOG_KEY = "productBacklog"

BASE_KEYS = (SPRINTS_KEY, TASKS_KEY, PRODUCT_BACKLOG_KEY)


def user_key(base_key: str, user_id: str) -> str:
    """Build the storage key for one collection of one user."""
    return f"{base_key}_{user_id}"


class LocalAdapter(PersistenceAdapter):
    """Adapter storing each collection as one JSON array per user.

    Every write reads the full collection, changes it in memory and writes
    it back. Distinct users never share a key; two clients acting as the
    same user can still overwrite each other's changes.
    """

    storage_name = "local"

    def __init__(self, store: KeyValueStore, user_id: str, owns_store: bool = True) -> None:
        """Initialize local adapter.

        Args:
            store: Key-value store holding the collections
            user_id: Acting user; namespaces every key
            owns_store: Close the store when the adapter is closed
        """
        if not validate_user_id(user_id):
            raise ValidationError(f"Invalid user id for local storage: {user_id!r}")
        self.store = store
        self.user_id = user_id
        self.owns_store = owns_store

    def key(self, base_key: str) -> str:
        return user_key(base_key, self.user_id)

    async def initialize(self) -> None:
        """Create empty collections for a new user and migrate legacy data."""
        async with self._operation("initialize"):
            await self.store.initialize()
            for base_key in BASE_KEYS:
                if await self.store.get(self.key(base_key)) is None:
                    await self.store.set(self.key(base_key), "[]")
            await self._migrate_product_backlog()
        logger.info("local_adapter_initialized", user_id=self.user_id)

    async def _migrate_product_backlog(self) -> None:
        """Fold tasks stored under the legacy backlog key into the task list.

        The backlog is derived from sprint membership, so the key is only
        kept for layout compatibility and emptied after migration.
        """
        legacy = await self._read(PRODUCT_BACKLOG_KEY)
        if not legacy:
            return
        tasks = await self._read(TASKS_KEY)
        known = {row.get("id") for row in tasks}
        migrated: list[dict[str, Any]] = []
        for row in legacy:
            if not isinstance(row, dict) or row.get("id") in known:
                continue
            try:
                migrated.append(Task.from_row(row).to_row())
            except PydanticValidationError as e:
                logger.warning("local_backlog_row_skipped", user_id=self.user_id, error=str(e))
        if migrated:
            await self._write(TASKS_KEY, [*tasks, *migrated])
        await self._write(PRODUCT_BACKLOG_KEY, [])
        logger.info("local_backlog_migrated", user_id=self.user_id, migrated=len(migrated))

    async def close(self) -> None:
        if self.owns_store:
            await self.store.close()

    async def _read(self, base_key: str) -> list[dict[str, Any]]:
        raw = await self.store.get(self.key(base_key))
        return json.loads(raw) if raw else []

    async def _write(self, base_key: str, rows: list[dict[str, Any]]) -> None:
        await self.store.set(self.key(base_key), json.dumps(rows))

    # Tasks

    async def fetch_tasks(self) -> list[Task]:
        async with self._operation("fetch_tasks"):
            return [Task.from_row(row) for row in await self._read(TASKS_KEY)]

    async def get_task(self, task_id: str) -> Task | None:
        async with self._operation("get_task"):
            for row in await self._read(TASKS_KEY):
                if row.get("id") == task_id:
                    return Task.from_row(row)
            return None

    async def create_task(self, task: Task) -> Task:
        async with self._operation("create_task"):
            rows = await self._read(TASKS_KEY)
            if any(row.get("id") == task.id for row in rows):
                raise ValueError(f"Task id already exists: {task.id}")
            rows.append(task.to_row())
            await self._write(TASKS_KEY, rows)
            return task

    async def update_task(self, task: Task) -> Task:
        async with self._operation("update_task"):
            rows = await self._read(TASKS_KEY)
            for index, row in enumerate(rows):
                if row.get("id") == task.id:
                    rows[index] = task.to_row()
                    break
            else:
                raise NotFoundError("Task", task.id)
            await self._write(TASKS_KEY, rows)
            return task

    async def delete_task(self, task_id: str) -> list[Sprint]:
        async with self._operation("delete_task"):
            rows = await self._read(TASKS_KEY)
            remaining = [row for row in rows if row.get("id") != task_id]
            if len(remaining) == len(rows):
                raise NotFoundError("Task", task_id)
            await self._write(TASKS_KEY, remaining)

            changed: list[Sprint] = []
            sprints = [Sprint.from_row(row) for row in await self._read(SPRINTS_KEY)]
            for index, sprint in enumerate(sprints):
                if sprint.contains(task_id):
                    sprints[index] = sprint.with_task_ids([t for t in sprint.task_ids if t != task_id])
                    changed.append(sprints[index])
            if changed:
                await self._write(SPRINTS_KEY, [s.to_row() for s in sprints])
            return changed

    # Sprints

    async def fetch_sprints(self) -> list[Sprint]:
        async with self._operation("fetch_sprints"):
            sprints = [Sprint.from_row(row) for row in await self._read(SPRINTS_KEY)]
            return sorted(sprints, key=lambda s: s.start_date)

    async def get_sprint(self, sprint_id: str) -> Sprint | None:
        async with self._operation("get_sprint"):
            for row in await self._read(SPRINTS_KEY):
                if row.get("id") == sprint_id:
                    return Sprint.from_row(row)
            return None

    async def create_sprint(self, sprint: Sprint) -> Sprint:
        async with self._operation("create_sprint"):
            rows = await self._read(SPRINTS_KEY)
            if any(row.get("id") == sprint.id for row in rows):
                raise ValueError(f"Sprint id already exists: {sprint.id}")
            rows.append(sprint.to_row())
            await self._write(SPRINTS_KEY, rows)
            return sprint

    async def update_sprint(self, sprint: Sprint) -> Sprint:
        async with self._operation("update_sprint"):
            rows = await self._read(SPRINTS_KEY)
            for index, row in enumerate(rows):
                if row.get("id") == sprint.id:
                    rows[index] = sprint.to_row()
                    break
            else:
                raise NotFoundError("Sprint", sprint.id)
            await self._write(SPRINTS_KEY, rows)
            return sprint

    async def delete_sprint(self, sprint_id: str) -> None:
        async with self._operation("delete_sprint"):
            rows = await self._read(SPRINTS_KEY)
            remaining = [row for row in rows if row.get("id") != sprint_id]
            if len(remaining) == len(rows):
                raise NotFoundError("Sprint", sprint_id)
            await self._write(SPRINTS_KEY, remaining)
