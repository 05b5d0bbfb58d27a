from .base import StorageGateway
from .kv import InMemoryTTLStore, RedisTTLStore, TTLStore, build_ttl_store
from .sqlite import SQLiteStorage

__all__ = ["InMemoryTTLStore", "RedisTTLStore", "SQLiteStorage", "StorageGateway", "TTLStore", "build_ttl_store"]
