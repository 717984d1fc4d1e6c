"""Persistence adapters: where an entity's current state and history live."""

from entitystate.persistence.base import Adapter
from entitystate.persistence.memory import MemoryAdapter
from entitystate.persistence.sqlite import SqliteAdapter, SqliteConfig

__all__ = [
    "Adapter",
    "MemoryAdapter",
    "SqliteAdapter",
    "SqliteConfig",
]
