"""Persistence gateway backends."""
from .base import AlertRecord, KeyValuePersistence, LoadedData, PersistenceGateway, StateKeys
from .memory_store import MemoryPersistence
from .redis_store import RedisPersistence
from .sqlite_store import SQLitePersistence, init_database

__all__ = [
    "PersistenceGateway",
    "KeyValuePersistence",
    "LoadedData",
    "AlertRecord",
    "StateKeys",
    "MemoryPersistence",
    "SQLitePersistence",
    "RedisPersistence",
    "init_database",
]
