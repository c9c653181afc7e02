"""Build the configured persistence backend."""

from sprint_service.config import Settings
from sprint_service.storage.base import PersistenceAdapter
from sprint_service.storage.kv_store import KeyValueStore
from sprint_service.storage.local_adapter import LocalAdapter
from sprint_service.storage.remote_adapter import RemoteAdapter


def create_adapter(settings: Settings) -> PersistenceAdapter:
    """Instantiate the adapter selected by ``settings.backend``.

    The adapter is not initialized; call ``await adapter.initialize()``.
    """
    if settings.backend == "local":
        store = KeyValueStore(settings.resolved_local_store_path())
        return LocalAdapter(store, user_id=settings.user_id)
    return RemoteAdapter(settings.resolved_database_path(), project_id=settings.project_id)
