"""
Memory layer: key-value backends and the snapshot store
"""

from .kv import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from .snapshot_store import SnapshotStore

__all__ = ["InMemoryKeyValueStore", "KeyValueStore", "RedisKeyValueStore", "SnapshotStore"]
