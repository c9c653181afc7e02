"""Persistence backends: shared relational store and per-user key-value store."""

from sprint_service.storage.base import PersistenceAdapter
from sprint_service.storage.factory import create_adapter
from sprint_service.storage.kv_store import KeyValueStore
from sprint_service.storage.local_adapter import LocalAdapter
from sprint_service.storage.remote_adapter import RemoteAdapter

__all__ = [
    "PersistenceAdapter",
    "RemoteAdapter",
    "LocalAdapter",
    "KeyValueStore",
    "create_adapter",
]
