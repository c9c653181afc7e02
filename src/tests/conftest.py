"""Pytest fixtures for the sprint board tests."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio

from sprint_service.collaborators import InMemoryUserDirectory, LoggingNotifier, StaticAuthProvider
from sprint_service.config import Settings
from sprint_service.core.board import BoardService
from sprint_service.models import UserProfile
from sprint_service.storage import KeyValueStore, LocalAdapter, PersistenceAdapter, RemoteAdapter
from tests.fixtures.factories import BoardFactory


@pytest.fixture(autouse=True)
def reset_factories() -> None:
    """Give every test the same generated ids."""
    BoardFactory.reset()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings pointing at temporary files."""
    return Settings(
        backend="remote",
        database_path=str(tmp_path / "board.db"),
        local_store_path=str(tmp_path / "local.db"),
        user_id="alice",
        log_level="DEBUG",
        log_format="console",
        metrics_enabled=False,
    )


@pytest_asyncio.fixture
async def remote_adapter(tmp_path: Path) -> AsyncGenerator[RemoteAdapter, None]:
    """Initialized relational backend on a temporary database."""
    adapter = RemoteAdapter(tmp_path / "board.db")
    await adapter.initialize()
    yield adapter
    await adapter.close()


@pytest_asyncio.fixture
async def kv_store(tmp_path: Path) -> AsyncGenerator[KeyValueStore, None]:
    store = KeyValueStore(tmp_path / "local.db")
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def local_adapter(kv_store: KeyValueStore) -> AsyncGenerator[LocalAdapter, None]:
    """Initialized per-user backend for user 'alice'."""
    adapter = LocalAdapter(kv_store, user_id="alice", owns_store=False)
    await adapter.initialize()
    yield adapter
    await adapter.close()


@pytest_asyncio.fixture(params=["remote", "local"])
async def adapter(request: pytest.FixtureRequest, tmp_path: Path) -> AsyncGenerator[PersistenceAdapter, None]:
    """Each real backend in turn."""
    if request.param == "remote":
        backend: PersistenceAdapter = RemoteAdapter(tmp_path / "board.db")
    else:
        backend = LocalAdapter(KeyValueStore(tmp_path / "local.db"), user_id="alice")
    await backend.initialize()
    yield backend
    await backend.close()


@pytest.fixture
def notifier() -> LoggingNotifier:
    return LoggingNotifier()


@pytest.fixture
def user_directory() -> InMemoryUserDirectory:
    return InMemoryUserDirectory(
        [
            UserProfile(id="alice", name="Alice", email="alice@example.com"),
            UserProfile(id="bob", name="Bob", email="bob@example.com"),
        ]
    )


@pytest_asyncio.fixture
async def board(
    adapter: PersistenceAdapter,
    notifier: LoggingNotifier,
    user_directory: InMemoryUserDirectory,
) -> BoardService:
    """Loaded board service over each backend."""
    service = BoardService(adapter, notifier, user_directory=user_directory, auth=StaticAuthProvider("alice"))
    result = await service.load()
    assert result.ok
    return service
