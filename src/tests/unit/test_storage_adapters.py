"""Unit tests for the persistence adapters.

The contract tests run against both real backends on temporary files.
"""

import asyncio
import json
from pathlib import Path

import pytest

from sprint_service.config import Settings
from sprint_service.errors import NotFoundError, PersistenceError, ValidationError
from sprint_service.models import Task, TaskStatus
from sprint_service.storage import (
    KeyValueStore,
    LocalAdapter,
    PersistenceAdapter,
    RemoteAdapter,
    create_adapter,
)
from sprint_service.storage.local_adapter import PRODUCT_BACKLOG_KEY, user_key
from tests.fixtures.factories import ProjectFactory, SprintFactory, TaskFactory


class TestAdapterContract:
    """Behaviour shared by every backend."""

    @pytest.mark.asyncio
    async def test_task_crud(self, adapter: PersistenceAdapter) -> None:
        task = TaskFactory.create(points=3, assignees=["bob"])

        await adapter.create_task(task)
        fetched = await adapter.get_task(task.id)

        assert fetched is not None
        assert fetched.title == task.title
        assert fetched.assignees == ["bob"]

        updated = await adapter.update_task(fetched.model_copy(update={"status": TaskStatus.DONE.value}))
        assert updated.is_done
        assert (await adapter.get_task(task.id)).is_done  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_fetch_tasks_keeps_insertion_order(self, adapter: PersistenceAdapter) -> None:
        tasks = TaskFactory.create_batch(3)
        for task in tasks:
            await adapter.create_task(task)

        assert [t.id for t in await adapter.fetch_tasks()] == [t.id for t in tasks]

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, adapter: PersistenceAdapter) -> None:
        assert await adapter.get_task("nope") is None
        assert await adapter.get_sprint("nope") is None

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, adapter: PersistenceAdapter) -> None:
        with pytest.raises(NotFoundError):
            await adapter.update_task(TaskFactory.create())
        with pytest.raises(NotFoundError):
            await adapter.update_sprint(SprintFactory.create())

    @pytest.mark.asyncio
    async def test_delete_missing_raises(self, adapter: PersistenceAdapter) -> None:
        with pytest.raises(NotFoundError):
            await adapter.delete_task("nope")
        with pytest.raises(NotFoundError):
            await adapter.delete_sprint("nope")

    @pytest.mark.asyncio
    async def test_duplicate_create_is_persistence_error(self, adapter: PersistenceAdapter) -> None:
        task = TaskFactory.create()
        await adapter.create_task(task)

        with pytest.raises(PersistenceError) as exc_info:
            await adapter.create_task(task)

        assert exc_info.value.backend == adapter.storage_name
        assert exc_info.value.operation == "create_task"

    @pytest.mark.asyncio
    async def test_sprints_ordered_by_start_date(self, adapter: PersistenceAdapter) -> None:
        late = SprintFactory.create(start_date=SprintFactory.create().start_date.replace(month=6))
        early = SprintFactory.create()
        await adapter.create_sprint(late)
        await adapter.create_sprint(early)

        assert [s.id for s in await adapter.fetch_sprints()] == [early.id, late.id]

    @pytest.mark.asyncio
    async def test_sprint_round_trip_keeps_dates(self, adapter: PersistenceAdapter) -> None:
        sprint = SprintFactory.create()
        await adapter.create_sprint(sprint)

        fetched = await adapter.get_sprint(sprint.id)

        assert fetched == sprint

    @pytest.mark.asyncio
    async def test_membership_helpers(self, adapter: PersistenceAdapter) -> None:
        sprint = SprintFactory.create()
        await adapter.create_sprint(sprint)

        await adapter.add_task_to_sprint(sprint.id, "a")
        await adapter.add_task_to_sprint(sprint.id, "b")
        again = await adapter.add_task_to_sprint(sprint.id, "a")
        assert again.task_ids == ["a", "b"]

        await adapter.replace_sprint_tasks(sprint.id, ["b", "a"])
        assert (await adapter.get_sprint(sprint.id)).task_ids == ["b", "a"]  # type: ignore[union-attr]

        removed = await adapter.remove_task_from_sprint(sprint.id, "b")
        assert removed.task_ids == ["a"]
        unchanged = await adapter.remove_task_from_sprint(sprint.id, "b")
        assert unchanged.task_ids == ["a"]

    @pytest.mark.asyncio
    async def test_membership_on_missing_sprint(self, adapter: PersistenceAdapter) -> None:
        with pytest.raises(NotFoundError):
            await adapter.add_task_to_sprint("nope", "a")

    @pytest.mark.asyncio
    async def test_delete_task_strips_sprint_references(self, adapter: PersistenceAdapter) -> None:
        task = TaskFactory.create()
        other = TaskFactory.create()
        await adapter.create_task(task)
        await adapter.create_task(other)
        sprint = SprintFactory.create(task_ids=[other.id, task.id])
        untouched = SprintFactory.create(task_ids=[other.id + "-x"])
        await adapter.create_sprint(sprint)
        await adapter.create_sprint(untouched)

        changed = await adapter.delete_task(task.id)

        assert [s.id for s in changed] == [sprint.id]
        assert await adapter.get_task(task.id) is None
        assert (await adapter.get_sprint(sprint.id)).task_ids == [other.id]  # type: ignore[union-attr]
        assert (await adapter.get_sprint(untouched.id)).task_ids == [other.id + "-x"]  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_delete_sprint_keeps_tasks(self, adapter: PersistenceAdapter) -> None:
        task = TaskFactory.create()
        await adapter.create_task(task)
        sprint = SprintFactory.create(task_ids=[task.id])
        await adapter.create_sprint(sprint)

        await adapter.delete_sprint(sprint.id)

        assert await adapter.get_sprint(sprint.id) is None
        assert await adapter.get_task(task.id) is not None

    @pytest.mark.asyncio
    async def test_health_check(self, adapter: PersistenceAdapter) -> None:
        assert await adapter.health_check() is True


class TestLocalAdapter:
    """Tests for the per-user key-value backend."""

    @pytest.mark.asyncio
    async def test_initialize_creates_user_keys(self, kv_store: KeyValueStore, local_adapter: LocalAdapter) -> None:
        assert await kv_store.keys("") == ["productBacklog_alice", "sprints_alice", "tasks_alice"]
        assert await kv_store.get("tasks_alice") == "[]"

    @pytest.mark.asyncio
    async def test_rows_stored_as_json_arrays(self, kv_store: KeyValueStore, local_adapter: LocalAdapter) -> None:
        sprint = SprintFactory.create(task_ids=["t1"])
        await local_adapter.create_sprint(sprint)

        stored = json.loads(await kv_store.get("sprints_alice") or "[]")

        assert stored == [sprint.to_row()]
        assert "startDate" in stored[0]

    @pytest.mark.asyncio
    async def test_users_are_isolated(self, kv_store: KeyValueStore, local_adapter: LocalAdapter) -> None:
        bob = LocalAdapter(kv_store, user_id="bob", owns_store=False)
        await bob.initialize()
        await local_adapter.create_task(TaskFactory.create())

        assert await bob.fetch_tasks() == []
        assert len(await local_adapter.fetch_tasks()) == 1

    def test_invalid_user_id_rejected(self, kv_store: KeyValueStore) -> None:
        with pytest.raises(ValidationError):
            LocalAdapter(kv_store, user_id="../etc")

    @pytest.mark.asyncio
    async def test_legacy_backlog_migrated(self, kv_store: KeyValueStore) -> None:
        legacy = [
            {"id": "old-1", "title": "Carried over", "points": 2},
            {"id": "old-2", "title": ""},
            {"id": "known", "title": "Duplicate"},
        ]
        await kv_store.set(user_key(PRODUCT_BACKLOG_KEY, "carol"), json.dumps(legacy))
        await kv_store.set(user_key("tasks", "carol"), json.dumps([Task(id="known", title="Known").to_row()]))

        adapter = LocalAdapter(kv_store, user_id="carol", owns_store=False)
        await adapter.initialize()

        tasks = await adapter.fetch_tasks()
        assert [t.id for t in tasks] == ["known", "old-1"]
        assert tasks[1].points == 2
        assert await kv_store.get(user_key(PRODUCT_BACKLOG_KEY, "carol")) == "[]"

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, kv_store: KeyValueStore, local_adapter: LocalAdapter) -> None:
        await local_adapter.create_task(TaskFactory.create())

        await local_adapter.initialize()

        assert len(await local_adapter.fetch_tasks()) == 1


class TestRemoteAdapter:
    """Tests specific to the relational backend."""

    @pytest.mark.asyncio
    async def test_projects_newest_first(self, remote_adapter: RemoteAdapter) -> None:
        first = ProjectFactory.create()
        second = ProjectFactory.create(created_at=first.created_at.replace(year=first.created_at.year + 1))
        await remote_adapter.create_project(first)
        await remote_adapter.create_project(second)

        projects = await remote_adapter.fetch_projects()

        assert [p.id for p in projects] == [second.id, first.id]
        assert await remote_adapter.get_project(first.id) == first

    @pytest.mark.asyncio
    async def test_project_scope(self, tmp_path: Path) -> None:
        scoped = RemoteAdapter(tmp_path / "board.db", project_id="p1")
        unscoped = RemoteAdapter(tmp_path / "board.db")
        await scoped.initialize()
        await unscoped.initialize()
        try:
            await unscoped.create_task(TaskFactory.create(title="elsewhere"))
            created = await scoped.create_task(TaskFactory.create(title="mine"))
            await scoped.create_sprint(SprintFactory.create())

            assert created.project_id == "p1"
            assert [t.title for t in await scoped.fetch_tasks()] == ["mine"]
            assert len(await unscoped.fetch_tasks()) == 2
            assert (await scoped.fetch_sprints())[0].project_id == "p1"
        finally:
            await scoped.close()
            await unscoped.close()

    @pytest.mark.asyncio
    async def test_rows_of_other_projects_are_absent(self, tmp_path: Path) -> None:
        mine = RemoteAdapter(tmp_path / "board.db", project_id="p1")
        theirs = RemoteAdapter(tmp_path / "board.db", project_id="p2")
        await mine.initialize()
        await theirs.initialize()
        try:
            foreign_task = await theirs.create_task(TaskFactory.create(id="task-1"))
            foreign_sprint = await theirs.create_sprint(SprintFactory.create(id="sprint-x", task_ids=["task-1"]))
            own_sprint = await mine.create_sprint(SprintFactory.create(task_ids=["task-1"]))

            assert await mine.get_task("task-1") is None
            assert await mine.get_sprint("sprint-x") is None
            with pytest.raises(NotFoundError):
                await mine.update_task(foreign_task)
            with pytest.raises(NotFoundError):
                await mine.update_sprint(foreign_sprint)
            with pytest.raises(NotFoundError):
                await mine.delete_task("task-1")
            with pytest.raises(NotFoundError):
                await mine.delete_sprint("sprint-x")
            with pytest.raises(NotFoundError):
                await mine.add_task_to_sprint("sprint-x", "task-2")

            assert await theirs.get_task("task-1") == foreign_task
            assert (await theirs.get_sprint("sprint-x")).task_ids == ["task-1"]  # type: ignore[union-attr]

            await theirs.delete_task("task-1")
            assert (await mine.get_sprint(own_sprint.id)).task_ids == ["task-1"]  # type: ignore[union-attr]
        finally:
            await mine.close()
            await theirs.close()

    @pytest.mark.asyncio
    async def test_writes_wait_for_running_transaction(self, remote_adapter: RemoteAdapter) -> None:
        async with remote_adapter._transaction() as db:
            await db.execute("DELETE FROM tasks")
            pending = asyncio.create_task(remote_adapter.create_task(TaskFactory.create()))
            await asyncio.sleep(0.05)
            assert not pending.done()
        await pending

        assert len(await remote_adapter.fetch_tasks()) == 1

    @pytest.mark.asyncio
    async def test_failed_cascade_rolls_back(self, remote_adapter: RemoteAdapter) -> None:
        await remote_adapter.create_task(TaskFactory.create(id="t1"))
        await remote_adapter.create_sprint(SprintFactory.create(id="s1", task_ids=["t1"]))

        with pytest.raises(PersistenceError):
            async with remote_adapter._operation("delete_task"), remote_adapter._transaction() as db:
                await db.execute("DELETE FROM tasks WHERE id = 't1'")
                raise OSError("connection lost")

        assert await remote_adapter.get_task("t1") is not None

    @pytest.mark.asyncio
    async def test_delete_task_ignores_id_prefix_matches(self, remote_adapter: RemoteAdapter) -> None:
        await remote_adapter.create_task(TaskFactory.create(id="t1"))
        sprint = SprintFactory.create(task_ids=["t10", "t1"])
        other = SprintFactory.create(task_ids=["t10"])
        await remote_adapter.create_sprint(sprint)
        await remote_adapter.create_sprint(other)

        changed = await remote_adapter.delete_task("t1")

        assert [s.id for s in changed] == [sprint.id]
        assert (await remote_adapter.get_sprint(other.id)).task_ids == ["t10"]  # type: ignore[union-attr]


class TestCreateAdapter:
    """Tests for the backend factory."""

    def test_remote(self, test_settings: Settings) -> None:
        adapter = create_adapter(test_settings)

        assert isinstance(adapter, RemoteAdapter)
        assert adapter.database_path == test_settings.database_path

    def test_local(self, test_settings: Settings) -> None:
        adapter = create_adapter(test_settings.model_copy(update={"backend": "local"}))

        assert isinstance(adapter, LocalAdapter)
        assert adapter.user_id == "alice"
