"""Entity store boundary and its implementations."""

from .base import EntityKind, EntityStore, Record
from .memory import InMemoryEntityStore
from .postgres import PostgresEntityStore

__all__ = [
    "EntityKind",
    "EntityStore",
    "InMemoryEntityStore",
    "PostgresEntityStore",
    "Record",
]
