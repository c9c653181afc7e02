"""Unit tests for task-to-sprint membership rules."""

from unittest.mock import AsyncMock

import pytest

from sprint_service.core.membership import MembershipCoordinator, derive_backlog
from sprint_service.errors import NotFoundError, PersistenceError
from sprint_service.models import Sprint, Task
from sprint_service.storage import PersistenceAdapter
from tests.fixtures.factories import SprintFactory, TaskFactory


async def seed(adapter: PersistenceAdapter, tasks: list[Task], sprints: list[Sprint]) -> None:
    for task in tasks:
        await adapter.create_task(task)
    for sprint in sprints:
        await adapter.create_sprint(sprint)


async def holders(adapter: PersistenceAdapter, task_id: str) -> list[str]:
    return [s.id for s in await adapter.fetch_sprints() if s.contains(task_id)]


class TestDeriveBacklog:
    """Tests for derive_backlog."""

    def test_tasks_outside_sprints(self) -> None:
        a, b, c = TaskFactory.create_batch(3)
        sprint = SprintFactory.create(task_ids=[b.id])

        assert derive_backlog([a, b, c], [sprint]) == [a, c]

    def test_no_sprints(self) -> None:
        tasks = TaskFactory.create_batch(2)

        assert derive_backlog(tasks, []) == tasks


class TestMembershipCoordinator:
    """Tests against both real backends."""

    @pytest.mark.asyncio
    async def test_move_from_backlog(self, adapter: PersistenceAdapter) -> None:
        task = TaskFactory.create()
        sprint = SprintFactory.create()
        await seed(adapter, [task], [sprint])

        changed = await MembershipCoordinator(adapter).move_to_sprint(task.id, sprint.id)

        assert [s.id for s in changed] == [sprint.id]
        assert await holders(adapter, task.id) == [sprint.id]

    @pytest.mark.asyncio
    async def test_move_between_sprints_appends(self, adapter: PersistenceAdapter) -> None:
        t1, t2 = TaskFactory.create_batch(2)
        source = SprintFactory.create(task_ids=[t1.id])
        target = SprintFactory.create(task_ids=[t2.id])
        await seed(adapter, [t1, t2], [source, target])

        changed = await MembershipCoordinator(adapter).move_to_sprint(t1.id, target.id)

        assert [s.id for s in changed] == [source.id, target.id]
        assert (await adapter.get_sprint(source.id)).task_ids == []  # type: ignore[union-attr]
        assert (await adapter.get_sprint(target.id)).task_ids == [t2.id, t1.id]  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_move_to_current_sprint_is_noop(self, adapter: PersistenceAdapter) -> None:
        t1, t2 = TaskFactory.create_batch(2)
        sprint = SprintFactory.create(task_ids=[t1.id, t2.id])
        await seed(adapter, [t1, t2], [sprint])

        changed = await MembershipCoordinator(adapter).move_to_sprint(t1.id, sprint.id)

        assert changed == []
        assert (await adapter.get_sprint(sprint.id)).task_ids == [t1.id, t2.id]  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_move_repairs_double_membership(self, adapter: PersistenceAdapter) -> None:
        """A task found in several sprints ends up only in the target."""
        task = TaskFactory.create()
        a = SprintFactory.create(task_ids=[task.id])
        b = SprintFactory.create(task_ids=[task.id])
        target = SprintFactory.create()
        await seed(adapter, [task], [a, b, target])

        await MembershipCoordinator(adapter).move_to_sprint(task.id, target.id)

        assert await holders(adapter, task.id) == [target.id]

    @pytest.mark.asyncio
    async def test_move_unknown_task_or_sprint(self, adapter: PersistenceAdapter) -> None:
        task = TaskFactory.create()
        sprint = SprintFactory.create()
        await seed(adapter, [task], [sprint])
        coordinator = MembershipCoordinator(adapter)

        with pytest.raises(NotFoundError):
            await coordinator.move_to_sprint("ghost", sprint.id)
        with pytest.raises(NotFoundError):
            await coordinator.move_to_sprint(task.id, "ghost")

    @pytest.mark.asyncio
    async def test_move_to_backlog(self, adapter: PersistenceAdapter) -> None:
        t1, t2 = TaskFactory.create_batch(2)
        sprint = SprintFactory.create(task_ids=[t1.id, t2.id])
        await seed(adapter, [t1, t2], [sprint])
        coordinator = MembershipCoordinator(adapter)

        changed = await coordinator.move_to_backlog(t1.id)

        assert changed[0].task_ids == [t2.id]
        assert await coordinator.sprint_of(t1.id) is None
        assert await coordinator.move_to_backlog(t1.id) == []

    @pytest.mark.asyncio
    async def test_delete_task_cascades(self, adapter: PersistenceAdapter) -> None:
        t1, t2 = TaskFactory.create_batch(2)
        sprint = SprintFactory.create(task_ids=[t1.id, t2.id])
        await seed(adapter, [t1, t2], [sprint])

        changed = await MembershipCoordinator(adapter).delete_task(t1.id)

        assert changed[0].task_ids == [t2.id]
        assert await holders(adapter, t1.id) == []

    @pytest.mark.asyncio
    async def test_delete_sprint_releases_tasks(self, adapter: PersistenceAdapter) -> None:
        task = TaskFactory.create()
        sprint = SprintFactory.create(task_ids=[task.id])
        await seed(adapter, [task], [sprint])

        deleted = await MembershipCoordinator(adapter).delete_sprint(sprint.id)

        assert deleted.task_ids == [task.id]
        backlog = derive_backlog(await adapter.fetch_tasks(), await adapter.fetch_sprints())
        assert [t.id for t in backlog] == [task.id]

    @pytest.mark.asyncio
    async def test_reorder_in_sprint(self, adapter: PersistenceAdapter) -> None:
        tasks = TaskFactory.create_batch(4)
        ids = [t.id for t in tasks]
        sprint = SprintFactory.create(task_ids=ids)
        await seed(adapter, tasks, [sprint])

        updated = await MembershipCoordinator(adapter).reorder_in_sprint(sprint.id, ids[0], ids[2])

        assert updated.task_ids == [ids[1], ids[2], ids[0], ids[3]]
        assert (await adapter.get_sprint(sprint.id)).task_ids == updated.task_ids  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_reorder_with_foreign_id_is_noop(self, adapter: PersistenceAdapter) -> None:
        tasks = TaskFactory.create_batch(2)
        sprint = SprintFactory.create(task_ids=[t.id for t in tasks])
        await seed(adapter, tasks, [sprint])

        updated = await MembershipCoordinator(adapter).reorder_in_sprint(sprint.id, "ghost", tasks[0].id)

        assert updated.task_ids == [t.id for t in tasks]


class TestMoveCompensation:
    """A failed append puts the task back where it was."""

    @pytest.mark.asyncio
    async def test_restores_source_on_failed_append(self, local_adapter: PersistenceAdapter) -> None:
        task = TaskFactory.create()
        source = SprintFactory.create(task_ids=[task.id])
        target = SprintFactory.create()
        await seed(local_adapter, [task], [source, target])
        local_adapter.add_task_to_sprint = AsyncMock(  # type: ignore[method-assign]
            side_effect=PersistenceError("local", "update_sprint", OSError("disk full"))
        )

        with pytest.raises(PersistenceError):
            await MembershipCoordinator(local_adapter).move_to_sprint(task.id, target.id)

        assert await holders(local_adapter, task.id) == [source.id]
