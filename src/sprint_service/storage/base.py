"""Persistence contract shared by the relational and key-value backends."""

import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sprint_service.errors import NotFoundError, PersistenceError, SprintBoardError
from sprint_service.models import Sprint, Task
from sprint_service.utils.logging import get_logger
from sprint_service.utils.metrics import get_metrics

logger = get_logger(__name__)
metrics = get_metrics()


class PersistenceAdapter(ABC):
    """Uniform CRUD and membership interface over a storage backend.

    Every method is a coroutine. Backend failures surface as
    PersistenceError; updates and deletes of absent rows raise
    NotFoundError. Membership mutations read the current sprint row,
    compute the new task list in memory and write the whole list back.
    There is no version check between the read and the write, so two
    concurrent mutations of one sprint can lose an update (last write wins).
    """

    storage_name: str = "base"

    async def initialize(self) -> None:
        """Prepare the backend (schema, default keys)."""

    async def close(self) -> None:
        """Release backend resources."""

    async def health_check(self) -> bool:
        """Check if the backend is reachable.

        Returns:
            True if healthy, False otherwise
        """
        try:
            await self.fetch_sprints()
            metrics.storage_connection_status.labels(storage=self.storage_name).set(1)
            return True
        except Exception as e:
            logger.error("storage_health_check_failed", storage=self.storage_name, error=str(e))
            metrics.storage_connection_status.labels(storage=self.storage_name).set(0)
            return False

    @asynccontextmanager
    async def _operation(self, operation: str) -> AsyncIterator[None]:
        """Time an operation and translate backend exceptions.

        Board errors raised inside the block pass through unchanged; any
        other exception is wrapped in PersistenceError.
        """
        start = time.perf_counter()
        try:
            yield
        except SprintBoardError:
            metrics.record_storage_operation(self.storage_name, operation, "error")
            raise
        except Exception as e:
            metrics.record_storage_operation(self.storage_name, operation, "error")
            logger.error(
                "storage_operation_failed",
                storage=self.storage_name,
                operation=operation,
                error=str(e),
            )
            raise PersistenceError(self.storage_name, operation, e) from e
        metrics.record_storage_operation(
            self.storage_name,
            operation,
            "success",
            time.perf_counter() - start,
        )

    # Tasks

    @abstractmethod
    async def fetch_tasks(self) -> list[Task]:
        """Return all tasks visible to this adapter."""

    @abstractmethod
    async def get_task(self, task_id: str) -> Task | None:
        """Return one task, or None when absent."""

    @abstractmethod
    async def create_task(self, task: Task) -> Task:
        """Insert a new task."""

    @abstractmethod
    async def update_task(self, task: Task) -> Task:
        """Replace an existing task row."""

    @abstractmethod
    async def delete_task(self, task_id: str) -> list[Sprint]:
        """Delete a task and strip its id from every sprint.

        Returns:
            The sprints whose task lists changed
        """

    # Sprints

    @abstractmethod
    async def fetch_sprints(self) -> list[Sprint]:
        """Return all sprints ordered by start date ascending."""

    @abstractmethod
    async def get_sprint(self, sprint_id: str) -> Sprint | None:
        """Return one sprint, or None when absent."""

    @abstractmethod
    async def create_sprint(self, sprint: Sprint) -> Sprint:
        """Insert a new sprint."""

    @abstractmethod
    async def update_sprint(self, sprint: Sprint) -> Sprint:
        """Replace an existing sprint row, task list included."""

    @abstractmethod
    async def delete_sprint(self, sprint_id: str) -> None:
        """Delete a sprint. Member tasks are untouched."""

    # Membership

    async def _require_sprint(self, sprint_id: str) -> Sprint:
        sprint = await self.get_sprint(sprint_id)
        if sprint is None:
            raise NotFoundError("Sprint", sprint_id)
        return sprint

    async def add_task_to_sprint(self, sprint_id: str, task_id: str) -> Sprint:
        """Append ``task_id`` to a sprint's task list.

        Returns:
            The sprint as written (unchanged if already a member)
        """
        sprint = await self._require_sprint(sprint_id)
        if sprint.contains(task_id):
            return sprint
        updated = sprint.with_task_ids([*sprint.task_ids, task_id])
        await self.update_sprint(updated)
        logger.debug("sprint_task_appended", storage=self.storage_name, sprint_id=sprint_id, task_id=task_id)
        return updated

    async def remove_task_from_sprint(self, sprint_id: str, task_id: str) -> Sprint:
        """Remove ``task_id`` from a sprint's task list.

        Returns:
            The sprint as written (unchanged if not a member)
        """
        sprint = await self._require_sprint(sprint_id)
        if not sprint.contains(task_id):
            return sprint
        updated = sprint.with_task_ids([tid for tid in sprint.task_ids if tid != task_id])
        await self.update_sprint(updated)
        logger.debug("sprint_task_removed", storage=self.storage_name, sprint_id=sprint_id, task_id=task_id)
        return updated

    async def replace_sprint_tasks(self, sprint_id: str, task_ids: list[str]) -> Sprint:
        """Overwrite a sprint's task list (used for reordering)."""
        sprint = await self._require_sprint(sprint_id)
        updated = sprint.with_task_ids(task_ids)
        await self.update_sprint(updated)
        return updated
