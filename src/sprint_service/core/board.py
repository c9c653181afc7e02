"""Board orchestration: cached collections, serialized mutations, feedback."""

import asyncio
import time
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from datetime import date
from typing import Any, Generic, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from sprint_service.collaborators import AuthProvider, Notifier, Severity, UserDirectory
from sprint_service.core import progress
from sprint_service.core.membership import MembershipCoordinator, derive_backlog
from sprint_service.errors import NotFoundError, PersistenceError, SprintBoardError, ValidationError
from sprint_service.models import Project, Sprint, Task, TaskStatus, UserProfile
from sprint_service.storage.base import PersistenceAdapter
from sprint_service.storage.remote_adapter import RemoteAdapter
from sprint_service.utils.logging import get_logger
from sprint_service.utils.metrics import get_metrics

logger = get_logger(__name__)
metrics = get_metrics()

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


@dataclass
class OperationResult(Generic[T]):
    """Outcome of a board mutation."""

    ok: bool
    value: T | None = None
    error: SprintBoardError | None = None

    @property
    def message(self) -> str:
        return str(self.error) if self.error else ""


def _validate(model: type[M], data: M | dict[str, Any]) -> M:
    """Validate submitted data, translating pydantic errors."""
    if isinstance(data, model):
        data = data.model_dump()
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e


class BoardService:
    """Facade between user events and the membership/persistence layers.

    Holds the task and sprint collections in memory. The cache changes only
    after the backend confirmed a write, so a failed call leaves the last
    known good state in place. Mutations touching the same sprint are
    serialized with per-sprint locks. Every mutation reports its outcome to
    the notifier and returns an OperationResult instead of raising.
    """

    def __init__(
        self,
        adapter: PersistenceAdapter,
        notifier: Notifier,
        user_directory: UserDirectory | None = None,
        auth: AuthProvider | None = None,
    ) -> None:
        """Initialize board service.

        Args:
            adapter: Active persistence backend
            notifier: Receives user feedback for every mutation
            user_directory: Resolves assignee ids for display
            auth: Supplies the acting user (needed for project creation)
        """
        self.adapter = adapter
        self.notifier = notifier
        self.user_directory = user_directory
        self.auth = auth
        self.coordinator = MembershipCoordinator(adapter)
        self._tasks: dict[str, Task] = {}
        self._sprints: dict[str, Sprint] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # Cache

    async def load(self) -> OperationResult[None]:
        """Fetch tasks and sprints from the backend into the cache."""

        async def _load() -> None:
            tasks = await self.adapter.fetch_tasks()
            sprints = await self.adapter.fetch_sprints()
            self._tasks = {t.id: t for t in tasks}
            self._sprints = {s.id: s for s in sprints}
            self._update_backlog_gauge()

        return await self._run("load", _load, failure_title="Failed to load board")

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks.values())

    @property
    def sprints(self) -> list[Sprint]:
        """Sprints ordered by start date."""
        return sorted(self._sprints.values(), key=lambda s: s.start_date)

    def get_task(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise NotFoundError("Task", task_id) from None

    def get_sprint(self, sprint_id: str) -> Sprint:
        try:
            return self._sprints[sprint_id]
        except KeyError:
            raise NotFoundError("Sprint", sprint_id) from None

    def backlog(self) -> list[Task]:
        """Tasks in no sprint, derived from the current cache."""
        return derive_backlog(self._tasks.values(), self._sprints.values())

    def sprint_of(self, task_id: str) -> Sprint | None:
        for sprint in self._sprints.values():
            if sprint.contains(task_id):
                return sprint
        return None

    def sprint_tasks(self, sprint_id: str) -> list[Task]:
        """Member tasks of a sprint in list order."""
        sprint = self.get_sprint(sprint_id)
        return [self._tasks[tid] for tid in sprint.task_ids if tid in self._tasks]

    def summary(self, sprint_id: str) -> progress.SprintSummary:
        return progress.summarize(self.get_sprint(sprint_id), self.sprint_tasks(sprint_id))

    def active_sprint_count(self, today: date | None = None) -> int:
        return progress.active_sprint_count(self._sprints.values(), today)

    async def resolve_assignees(self, task_id: str) -> list[UserProfile]:
        """Display data for a task's assignees (empty without a directory)."""
        task = self.get_task(task_id)
        if self.user_directory is None or not task.assignees:
            return []
        return await self.user_directory.resolve(task.assignees)

    def _apply_sprints(self, sprints: list[Sprint]) -> None:
        for sprint in sprints:
            self._sprints[sprint.id] = sprint
        self._update_backlog_gauge()

    async def _discard_created(self, task_id: str) -> None:
        """Delete a task whose sprint assignment failed right after creation."""
        try:
            await self.adapter.delete_task(task_id)
        except SprintBoardError as e:
            logger.error("task_create_rollback_failed", task_id=task_id, error=str(e))

    def _update_backlog_gauge(self) -> None:
        metrics.backlog_size.set(len(self.backlog()))

    # Plumbing

    @asynccontextmanager
    async def _hold(self, *sprint_ids: str | None) -> AsyncIterator[None]:
        """Hold the locks of the given sprints, acquired in sorted order."""
        async with AsyncExitStack() as stack:
            for sprint_id in sorted({s for s in sprint_ids if s}):
                await stack.enter_async_context(self._locks[sprint_id])
            yield

    @asynccontextmanager
    async def _hold_task(self, task_id: str, *sprint_ids: str | None) -> AsyncIterator[None]:
        """Hold the locks of ``sprint_ids`` and of the sprint holding ``task_id``.

        The holder is looked up again once the locks are held. If another
        mutation moved the task in the meantime, the locks are released and
        taken again for the new holder.
        """
        while True:
            holder = self.sprint_of(task_id)
            held = {s for s in (*sprint_ids, holder.id if holder else None) if s}
            async with self._hold(*held):
                current = self.sprint_of(task_id)
                if current is None or current.id in held:
                    yield
                    return
            logger.debug("task_holder_changed", task_id=task_id)

    async def _run(
        self,
        operation: str,
        action: Callable[[], Awaitable[T]],
        failure_title: str,
        success: tuple[str, str] | None = None,
    ) -> OperationResult[T]:
        start = time.perf_counter()
        try:
            value = await action()
        except SprintBoardError as e:
            metrics.record_board_operation(operation, "error", time.perf_counter() - start)
            logger.warning("board_operation_failed", operation=operation, error=str(e), error_type=type(e).__name__)
            self.notifier.notify(failure_title, str(e), Severity.DESTRUCTIVE)
            return OperationResult(ok=False, error=e)

        metrics.record_board_operation(operation, "success", time.perf_counter() - start)
        if success:
            self.notifier.notify(success[0], success[1], Severity.SUCCESS)
        return OperationResult(ok=True, value=value)

    # Tasks

    async def create_task(self, data: Task | dict[str, Any], sprint_id: str | None = None) -> OperationResult[Task]:
        """Create a task, optionally assigning it straight to a sprint."""

        async def _create() -> Task:
            task = _validate(Task, data)
            if sprint_id is not None and sprint_id not in self._sprints:
                raise NotFoundError("Sprint", sprint_id)
            created = await self.adapter.create_task(task)
            if sprint_id is not None:
                async with self._hold(sprint_id):
                    try:
                        changed = await self.coordinator.add_task_to_sprint(sprint_id, created.id)
                    except SprintBoardError:
                        await self._discard_created(created.id)
                        raise
                    self._tasks[created.id] = created
                    self._apply_sprints(changed)
            else:
                self._tasks[created.id] = created
                self._update_backlog_gauge()
            return created

        return await self._run(
            "create_task",
            _create,
            failure_title="Failed to create task",
            success=("Task created", "Your task has been created successfully."),
        )

    async def update_task(self, task_id: str, changes: dict[str, Any]) -> OperationResult[Task]:
        """Apply field changes to a task. The id cannot change."""

        async def _update() -> Task:
            current = self.get_task(task_id)
            task = _validate(Task, {**current.model_dump(), **changes, "id": task_id})
            updated = await self.adapter.update_task(task)
            self._tasks[task_id] = updated
            return updated

        return await self._run(
            "update_task",
            _update,
            failure_title="Failed to update task",
            success=("Task updated", "The task has been successfully updated."),
        )

    async def set_task_status(self, task_id: str, status: TaskStatus | str) -> OperationResult[Task]:
        async def _set_status() -> Task:
            current = self.get_task(task_id)
            task = _validate(Task, {**current.model_dump(), "status": status})
            updated = await self.adapter.update_task(task)
            self._tasks[task_id] = updated
            return updated

        return await self._run(
            "set_task_status",
            _set_status,
            failure_title="Failed to update task",
            success=("Task updated", "Task status updated successfully."),
        )

    async def delete_task(self, task_id: str) -> OperationResult[None]:
        """Delete a task and drop it from every sprint."""

        async def _delete() -> None:
            async with self._hold_task(task_id):
                changed = await self.coordinator.delete_task(task_id)
                self._tasks.pop(task_id, None)
                for sprint in list(self._sprints.values()):
                    if sprint.contains(task_id):
                        self._sprints[sprint.id] = sprint.with_task_ids(
                            [t for t in sprint.task_ids if t != task_id]
                        )
                self._apply_sprints(changed)

        return await self._run(
            "delete_task",
            _delete,
            failure_title="Failed to delete task",
            success=("Task deleted", "The task has been removed."),
        )

    # Sprints

    async def create_sprint(self, data: Sprint | dict[str, Any]) -> OperationResult[Sprint]:
        """Create an empty sprint."""

        async def _create() -> Sprint:
            sprint = _validate(Sprint, data)
            if sprint.task_ids:
                sprint = sprint.with_task_ids([])
            created = await self.adapter.create_sprint(sprint)
            self._sprints[created.id] = created
            return created

        return await self._run(
            "create_sprint",
            _create,
            failure_title="Failed to create sprint",
            success=("Sprint created", "Your sprint has been created successfully."),
        )

    async def delete_sprint(self, sprint_id: str) -> OperationResult[Sprint]:
        """Delete a sprint; its tasks return to the backlog."""

        async def _delete() -> Sprint:
            async with self._hold(sprint_id):
                deleted = await self.coordinator.delete_sprint(sprint_id)
            self._sprints.pop(sprint_id, None)
            self._update_backlog_gauge()
            return deleted

        return await self._run(
            "delete_sprint",
            _delete,
            failure_title="Failed to delete sprint",
            success=("Sprint deleted", "The sprint has been deleted. Its tasks are back in the backlog."),
        )

    # Membership

    async def move_to_sprint(self, task_id: str, sprint_id: str) -> OperationResult[list[Sprint]]:
        async def _move() -> list[Sprint]:
            async with self._hold_task(task_id, sprint_id):
                changed = await self.coordinator.move_to_sprint(task_id, sprint_id)
                self._apply_sprints(changed)
            return changed

        return await self._run(
            "move_to_sprint",
            _move,
            failure_title="Failed to move task",
            success=("Task moved", "Task has been moved to a different sprint."),
        )

    async def move_to_backlog(self, task_id: str) -> OperationResult[list[Sprint]]:
        async def _move() -> list[Sprint]:
            async with self._hold_task(task_id):
                changed = await self.coordinator.move_to_backlog(task_id)
                self._apply_sprints(changed)
            return changed

        return await self._run(
            "move_to_backlog",
            _move,
            failure_title="Failed to remove task",
            success=("Task removed", "Task removed from sprint successfully."),
        )

    async def reorder_sprint(self, sprint_id: str, source_id: str, target_id: str) -> OperationResult[Sprint]:
        """Drop ``source_id`` onto ``target_id`` within one sprint's list."""

        async def _reorder() -> Sprint:
            async with self._hold(sprint_id):
                updated = await self.coordinator.reorder_in_sprint(sprint_id, source_id, target_id)
            self._apply_sprints([updated])
            return updated

        return await self._run(
            "reorder_sprint",
            _reorder,
            failure_title="Failed to reorder tasks",
            success=("Task reordered", "The task has been moved to a new position."),
        )

    async def move_task_index(self, sprint_id: str, old_index: int, new_index: int) -> OperationResult[Sprint]:
        """Reorder by list positions, as reported by a drag gesture."""
        try:
            task_ids = self.get_sprint(sprint_id).task_ids
        except NotFoundError as e:
            self.notifier.notify("Failed to reorder tasks", str(e), Severity.DESTRUCTIVE)
            return OperationResult(ok=False, error=e)
        if not (0 <= old_index < len(task_ids) and 0 <= new_index < len(task_ids)):
            return OperationResult(ok=True, value=self._sprints[sprint_id])
        return await self.reorder_sprint(sprint_id, task_ids[old_index], task_ids[new_index])

    # Projects

    def _project_store(self) -> RemoteAdapter:
        if not isinstance(self.adapter, RemoteAdapter):
            raise PersistenceError(self.adapter.storage_name, "projects", NotImplementedError("projects need the remote backend"))
        return self.adapter

    async def create_project(self, data: dict[str, Any]) -> OperationResult[Project]:
        """Create a project owned by the acting user."""

        async def _create() -> Project:
            user_id = self.auth.current_user_id() if self.auth else None
            if not user_id:
                raise ValidationError("User not authenticated")
            project = _validate(Project, {**data, "user_id": user_id})
            return await self._project_store().create_project(project)

        return await self._run(
            "create_project",
            _create,
            failure_title="Failed to create project",
            success=("Project created", "Your project has been created successfully."),
        )

    async def list_projects(self) -> OperationResult[list[Project]]:
        async def _list() -> list[Project]:
            return await self._project_store().fetch_projects()

        return await self._run("list_projects", _list, failure_title="Error fetching projects")
