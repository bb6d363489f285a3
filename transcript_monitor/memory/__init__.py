"""
Memory layer: dedup bookkeeping and its persisted blob stores
"""

from .dedup_store import DedupStore
from .state_store import (
    JsonFileStateStore,
    MemoryStateStore,
    RedisStateStore,
    StateStore,
    build_state_store,
)

__all__ = [
    "DedupStore",
    "StateStore",
    "MemoryStateStore",
    "JsonFileStateStore",
    "RedisStateStore",
    "build_state_store",
]
