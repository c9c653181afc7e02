"""CLI entry point for sprint-board.

Usage:
    sprint-board init-config                      # Create config file
    sprint-board check-db                         # Verify the active backend
    sprint-board add-sprint "Sprint 1" 2024-05-01 2024-05-14
    sprint-board add-task "Write docs" --points 3 --sprint <sprint-id>
    sprint-board move <task-id> <sprint-id>       # Move task to a sprint
    sprint-board to-backlog <task-id>             # Take task out of its sprint
    sprint-board reorder <sprint-id> <source-id> <target-id>
    sprint-board summary <sprint-id>              # Duration, points, progress
"""

import asyncio
import contextlib
import json
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import click

from sprint_service import __version__
from sprint_service.collaborators import InMemoryUserDirectory, LoggingNotifier, StaticAuthProvider
from sprint_service.config import Settings, get_config_path, load_settings_with_toml, validate_user_id
from sprint_service.core.board import BoardService, OperationResult
from sprint_service.errors import SprintBoardError
from sprint_service.models import TaskPriority, TaskStatus, UserProfile
from sprint_service.storage.factory import create_adapter
from sprint_service.utils.logging import setup_logging
from sprint_service.utils.metrics import start_metrics_server


def get_default_config() -> dict[str, Any]:
    """Get default configuration for init-config."""
    return {
        "storage": {
            "backend": "remote",
            "database_path": "~/.local/share/sprint-board/board.db",
            "local_store_path": "~/.local/share/sprint-board/local.db",
        },
        "session": {
            "user_id": "local-user",
        },
        "server": {
            "log_level": "WARNING",
            "log_format": "console",
        },
        "metrics": {
            "enabled": False,
            "port": 9090,
        },
    }


def emit(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def fail(message: str) -> None:
    emit({"error": message})
    sys.exit(1)


def run_board(settings: Settings, action: Callable[[BoardService], Awaitable[Any]]) -> Any:
    """Open the configured backend, load the board and run ``action`` on it."""

    async def _main() -> Any:
        adapter = create_adapter(settings)
        await adapter.initialize()
        try:
            board = BoardService(
                adapter,
                notifier=LoggingNotifier(),
                user_directory=InMemoryUserDirectory(
                    UserProfile(**u.model_dump()) for u in settings.known_users
                ),
                auth=StaticAuthProvider(settings.user_id),
            )
            loaded = await board.load()
            if not loaded.ok:
                raise loaded.error  # type: ignore[misc]
            return await action(board)
        finally:
            await adapter.close()

    setup_logging(settings, use_stderr=True)
    if settings.metrics_enabled:
        start_metrics_server(settings.metrics_port)
    try:
        return asyncio.run(_main())
    except SprintBoardError as e:
        fail(str(e))


def emit_result(result: OperationResult[Any], render: Callable[[Any], Any] | None = None) -> None:
    if not result.ok:
        fail(result.message)
    emit(render(result.value) if render else {"status": "ok"})


def task_view(task: Any) -> dict[str, Any]:
    return task.to_row()


def sprint_view(sprint: Any) -> dict[str, Any]:
    return sprint.to_row()


@click.group()
@click.option("--backend", type=click.Choice(["remote", "local"]), help="Override storage backend")
@click.option("--user", "user_id", type=str, help="Acting user identifier")
@click.option("--project", "project_id", type=str, help="Project scope (remote backend)")
@click.option("--config", "config_path", type=click.Path(exists=False), help="Override global config file path")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(version=__version__, prog_name="sprint-board")
@click.pass_context
def cli(
    ctx: click.Context,
    backend: str | None,
    user_id: str | None,
    project_id: str | None,
    config_path: str | None,
    verbose: bool,
) -> None:
    """Sprint Board - plan tasks across sprints and the product backlog.

    Configuration is loaded from (in priority order):
    1. CLI arguments
    2. Environment variables (SPRINT_BOARD_*)
    3. Global config file (~/.config/sprint-board/config.toml)
    4. Built-in defaults
    """
    if user_id is not None and not validate_user_id(user_id):
        click.echo(f"Error: invalid user id '{user_id}'", err=True)
        sys.exit(1)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["settings"] = load_settings_with_toml(
        Path(config_path) if config_path else None,
        backend=backend,
        user_id=user_id,
        project_id=project_id,
        log_level="DEBUG" if verbose else None,
    )


def settings_of(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


@cli.command("init-config")
@click.pass_context
def init_config(ctx: click.Context) -> None:
    """Create global configuration file with defaults."""
    import tomli_w

    config_path = Path(ctx.obj.get("config_path") or get_config_path())

    if config_path.exists():
        click.echo(f"Config file already exists: {config_path}")
        if not click.confirm("Overwrite?"):
            sys.exit(0)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "wb") as f:
        tomli_w.dump(get_default_config(), f)

    with contextlib.suppress(OSError):
        config_path.chmod(0o600)

    click.echo(f"Created config file: {config_path}")


@cli.command("check-db")
@click.pass_context
def check_db(ctx: click.Context) -> None:
    """Verify the configured backend is reachable."""
    settings = settings_of(ctx)

    async def _check() -> bool:
        adapter = create_adapter(settings)
        try:
            await adapter.initialize()
            return await adapter.health_check()
        except SprintBoardError as e:
            click.echo(f"  Error: {e}")
            return False
        finally:
            await adapter.close()

    setup_logging(settings, use_stderr=True)
    click.echo(f"{settings.backend} backend... ", nl=False)
    if asyncio.run(_check()):
        click.echo(click.style("OK", fg="green"))
        sys.exit(0)
    click.echo(click.style("FAILED", fg="red"))
    sys.exit(1)


# Projects


@cli.command("projects")
@click.pass_context
def list_projects(ctx: click.Context) -> None:
    """List projects, newest first (remote backend)."""

    async def _list(board: BoardService) -> OperationResult[Any]:
        return await board.list_projects()

    result = run_board(settings_of(ctx), _list)
    emit_result(result, lambda projects: [p.to_row() for p in projects])


@cli.command("create-project")
@click.argument("title")
@click.option("--assignees", default="", help="Comma-separated member emails")
@click.pass_context
def create_project(ctx: click.Context, title: str, assignees: str) -> None:
    """Create a project owned by the acting user."""

    async def _create(board: BoardService) -> OperationResult[Any]:
        return await board.create_project({"title": title, "assignees": assignees})

    emit_result(run_board(settings_of(ctx), _create), lambda p: p.to_row())


# Reads


@cli.command("tasks")
@click.pass_context
def list_tasks(ctx: click.Context) -> None:
    """List all tasks."""

    async def _list(board: BoardService) -> list[dict[str, Any]]:
        return [task_view(t) for t in board.tasks]

    emit(run_board(settings_of(ctx), _list))


@cli.command("sprints")
@click.pass_context
def list_sprints(ctx: click.Context) -> None:
    """List sprints by start date with their progress."""

    async def _list(board: BoardService) -> list[dict[str, Any]]:
        return [
            {**sprint_view(s), "progress_percentage": board.summary(s.id).progress_percentage}
            for s in board.sprints
        ]

    emit(run_board(settings_of(ctx), _list))


@cli.command("backlog")
@click.pass_context
def show_backlog(ctx: click.Context) -> None:
    """List tasks not assigned to any sprint."""

    async def _list(board: BoardService) -> list[dict[str, Any]]:
        return [task_view(t) for t in board.backlog()]

    emit(run_board(settings_of(ctx), _list))


@cli.command("summary")
@click.argument("sprint_id")
@click.pass_context
def sprint_summary(ctx: click.Context, sprint_id: str) -> None:
    """Show duration, story points and progress of a sprint."""

    async def _summary(board: BoardService) -> dict[str, Any]:
        data = board.summary(sprint_id).to_dict()
        data["tasks"] = []
        for task in board.sprint_tasks(sprint_id):
            names = [u.name for u in await board.resolve_assignees(task.id)]
            data["tasks"].append({**task_view(task), "assignee_names": names})
        return data

    emit(run_board(settings_of(ctx), _summary))


# Mutations


@cli.command("add-task")
@click.argument("title")
@click.option("--description", default="", help="Task details")
@click.option("--priority", type=click.Choice([p.value for p in TaskPriority]), default=TaskPriority.MEDIUM.value)
@click.option("--points", type=int, default=1, show_default=True)
@click.option("--status", type=click.Choice([s.value for s in TaskStatus]), default=TaskStatus.TODO.value)
@click.option("--assignee", "assignees", multiple=True, help="Assignee user id (repeatable)")
@click.option("--sprint", "sprint_id", default=None, help="Assign directly to this sprint")
@click.pass_context
def add_task(
    ctx: click.Context,
    title: str,
    description: str,
    priority: str,
    points: int,
    status: str,
    assignees: tuple[str, ...],
    sprint_id: str | None,
) -> None:
    """Create a task."""
    settings = settings_of(ctx)
    data = {
        "title": title,
        "description": description,
        "priority": priority,
        "points": points,
        "status": status,
        "assignees": list(assignees),
        "project_id": settings.project_id,
    }

    async def _create(board: BoardService) -> OperationResult[Any]:
        return await board.create_task(data, sprint_id=sprint_id)

    emit_result(run_board(settings, _create), task_view)


@cli.command("add-sprint")
@click.argument("name")
@click.argument("start_date")
@click.argument("end_date")
@click.pass_context
def add_sprint(ctx: click.Context, name: str, start_date: str, end_date: str) -> None:
    """Create an empty sprint (dates as YYYY-MM-DD)."""
    settings = settings_of(ctx)
    data = {"name": name, "startDate": start_date, "endDate": end_date, "project_id": settings.project_id}

    async def _create(board: BoardService) -> OperationResult[Any]:
        return await board.create_sprint(data)

    emit_result(run_board(settings, _create), sprint_view)


@cli.command("status")
@click.argument("task_id")
@click.argument("status", type=click.Choice([s.value for s in TaskStatus]))
@click.pass_context
def set_status(ctx: click.Context, task_id: str, status: str) -> None:
    """Change the status of a task."""

    async def _set(board: BoardService) -> OperationResult[Any]:
        return await board.set_task_status(task_id, status)

    emit_result(run_board(settings_of(ctx), _set), task_view)


@cli.command("move")
@click.argument("task_id")
@click.argument("sprint_id")
@click.pass_context
def move_task(ctx: click.Context, task_id: str, sprint_id: str) -> None:
    """Move a task to the end of a sprint."""

    async def _move(board: BoardService) -> OperationResult[Any]:
        return await board.move_to_sprint(task_id, sprint_id)

    emit_result(run_board(settings_of(ctx), _move), lambda sprints: [sprint_view(s) for s in sprints])


@cli.command("to-backlog")
@click.argument("task_id")
@click.pass_context
def to_backlog(ctx: click.Context, task_id: str) -> None:
    """Take a task out of its sprint."""

    async def _move(board: BoardService) -> OperationResult[Any]:
        return await board.move_to_backlog(task_id)

    emit_result(run_board(settings_of(ctx), _move), lambda sprints: [sprint_view(s) for s in sprints])


@cli.command("reorder")
@click.argument("sprint_id")
@click.argument("source_id")
@click.argument("target_id")
@click.pass_context
def reorder_tasks(ctx: click.Context, sprint_id: str, source_id: str, target_id: str) -> None:
    """Move SOURCE_ID into TARGET_ID's position within a sprint."""

    async def _reorder(board: BoardService) -> OperationResult[Any]:
        return await board.reorder_sprint(sprint_id, source_id, target_id)

    emit_result(run_board(settings_of(ctx), _reorder), sprint_view)


@cli.command("delete-task")
@click.argument("task_id")
@click.pass_context
def delete_task(ctx: click.Context, task_id: str) -> None:
    """Delete a task and remove it from every sprint."""

    async def _delete(board: BoardService) -> OperationResult[Any]:
        return await board.delete_task(task_id)

    emit_result(run_board(settings_of(ctx), _delete))


@cli.command("delete-sprint")
@click.argument("sprint_id")
@click.pass_context
def delete_sprint(ctx: click.Context, sprint_id: str) -> None:
    """Delete a sprint; its tasks return to the backlog."""

    async def _delete(board: BoardService) -> OperationResult[Any]:
        return await board.delete_sprint(sprint_id)

    emit_result(run_board(settings_of(ctx), _delete))


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
