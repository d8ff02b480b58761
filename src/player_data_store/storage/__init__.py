"""Storage backend subpackage.

Document backends implement ``DocumentBackend``; sorted backends implement
``SortedBackend``.  Every concrete backend here implements both.

Public surface
--------------
- DocumentBackend / DocumentSession  — exclusive-session document contract
- SortedBackend / SortedPages / SortedEntry — sorted numeric contract
- InMemoryBackend  — in-process dicts (useful for testing)
- SQLiteBackend    — local SQLite file via aiosqlite
- RedisBackend     — Redis via redis.asyncio
"""
from __future__ import annotations

from player_data_store.storage.base import (
    DocumentBackend,
    DocumentSession,
    SortedBackend,
    SortedEntry,
    SortedPages,
)
from player_data_store.storage.memory import InMemoryBackend
from player_data_store.storage.redis import RedisBackend
from player_data_store.storage.sqlite import SQLiteBackend

__all__ = [
    "DocumentBackend",
    "DocumentSession",
    "InMemoryBackend",
    "RedisBackend",
    "SQLiteBackend",
    "SortedBackend",
    "SortedEntry",
    "SortedPages",
]
