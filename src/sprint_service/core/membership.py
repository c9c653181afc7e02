"""Task-to-sprint membership rules.

A task belongs to at most one sprint. Tasks in no sprint form the backlog,
which is always derived from the current collections and never stored.
"""

from typing import Iterable

from sprint_service.core.ordering import reorder
from sprint_service.errors import NotFoundError
from sprint_service.models import Sprint, Task
from sprint_service.storage.base import PersistenceAdapter
from sprint_service.utils.logging import get_logger

logger = get_logger(__name__)


def derive_backlog(tasks: Iterable[Task], sprints: Iterable[Sprint]) -> list[Task]:
    """Tasks not referenced by any sprint, in task collection order."""
    assigned = {task_id for sprint in sprints for task_id in sprint.task_ids}
    return [task for task in tasks if task.id not in assigned]


class MembershipCoordinator:
    """Moves tasks between sprints and the backlog through an adapter.

    Every mutation reads current rows from the adapter, so it works on
    whatever the backend holds rather than on a client cache. Each method
    returns the sprints whose task lists it wrote, letting the caller
    refresh its cache only after the writes succeeded.
    """

    def __init__(self, adapter: PersistenceAdapter) -> None:
        self.adapter = adapter

    async def _require_task(self, task_id: str) -> Task:
        task = await self.adapter.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    async def _require_sprint(self, sprint_id: str) -> Sprint:
        sprint = await self.adapter.get_sprint(sprint_id)
        if sprint is None:
            raise NotFoundError("Sprint", sprint_id)
        return sprint

    async def _holders(self, task_id: str) -> list[Sprint]:
        return [s for s in await self.adapter.fetch_sprints() if s.contains(task_id)]

    async def sprint_of(self, task_id: str) -> Sprint | None:
        """The sprint currently holding ``task_id``, or None for backlog tasks."""
        holders = await self._holders(task_id)
        return holders[0] if holders else None

    async def move_to_sprint(self, task_id: str, target_sprint_id: str) -> list[Sprint]:
        """Move a task to the end of another sprint's list.

        Moving a task to the sprint that already holds it changes nothing,
        so its position is kept.

        Returns:
            Sprints written (source first, target last); empty for a no-op

        Raises:
            NotFoundError: If the task or target sprint does not exist
        """
        await self._require_task(task_id)
        target = await self._require_sprint(target_sprint_id)
        if target.contains(task_id):
            logger.debug("move_to_sprint_noop", task_id=task_id, sprint_id=target_sprint_id)
            return []

        sources = await self._holders(task_id)
        changed: list[Sprint] = []
        for source in sources:
            changed.append(await self.adapter.remove_task_from_sprint(source.id, task_id))
        try:
            changed.append(await self.adapter.add_task_to_sprint(target.id, task_id))
        except Exception:
            await self._restore(sources)
            raise

        logger.info(
            "task_moved_to_sprint",
            task_id=task_id,
            sprint_id=target_sprint_id,
            from_sprint=sources[0].id if sources else None,
        )
        return changed

    async def add_task_to_sprint(self, sprint_id: str, task_id: str) -> list[Sprint]:
        """Assign a task, typically a new one, to a sprint."""
        return await self.move_to_sprint(task_id, sprint_id)

    async def move_to_backlog(self, task_id: str) -> list[Sprint]:
        """Take a task out of whichever sprint holds it.

        Raises:
            NotFoundError: If the task does not exist
        """
        await self._require_task(task_id)
        changed = [
            await self.adapter.remove_task_from_sprint(source.id, task_id)
            for source in await self._holders(task_id)
        ]
        if changed:
            logger.info("task_moved_to_backlog", task_id=task_id, from_sprint=changed[0].id)
        return changed

    async def delete_task(self, task_id: str) -> list[Sprint]:
        """Delete a task together with every sprint reference to it.

        Raises:
            NotFoundError: If the task does not exist
        """
        await self._require_task(task_id)
        changed = await self.adapter.delete_task(task_id)
        logger.info("task_deleted", task_id=task_id, sprints_updated=len(changed))
        return changed

    async def delete_sprint(self, sprint_id: str) -> Sprint:
        """Delete a sprint; its tasks fall back to the backlog.

        Returns:
            The deleted sprint

        Raises:
            NotFoundError: If the sprint does not exist
        """
        sprint = await self._require_sprint(sprint_id)
        await self.adapter.delete_sprint(sprint_id)
        logger.info("sprint_deleted", sprint_id=sprint_id, released_tasks=len(sprint.task_ids))
        return sprint

    async def reorder_in_sprint(self, sprint_id: str, source_id: str, target_id: str) -> Sprint:
        """Move ``source_id`` into ``target_id``'s slot within one sprint.

        Returns:
            The sprint as stored afterwards
        """
        sprint = await self._require_sprint(sprint_id)
        task_ids = reorder(sprint.task_ids, source_id, target_id)
        if task_ids == sprint.task_ids:
            return sprint
        updated = await self.adapter.update_sprint(sprint.with_task_ids(task_ids))
        logger.debug("sprint_reordered", sprint_id=sprint_id, source_id=source_id, target_id=target_id)
        return updated

    async def _restore(self, sprints: list[Sprint]) -> None:
        """Write back pre-move task lists after a failed move."""
        for sprint in sprints:
            try:
                await self.adapter.replace_sprint_tasks(sprint.id, sprint.task_ids)
            except Exception as e:
                logger.error("membership_restore_failed", sprint_id=sprint.id, error=str(e))
