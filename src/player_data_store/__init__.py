"""player-data-store — Session-locked per-client records with autosave.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import player_data_store
>>> player_data_store.__version__
'0.1.0'
"""
from __future__ import annotations

# Errors and configuration
from player_data_store.errors import (
    BackendUnavailableError,
    PlayerDataError,
    SessionDeniedError,
    SessionEndedError,
    UsageError,
)
from player_data_store.config import StoreConfig, load_config
from player_data_store.keys import DEFAULT_KEY_FORMAT, client_key, parse_client_key

# Retry
from player_data_store.reliability.retry import RetryOutcome, RetryPolicy, execute

# Storage backends
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

# Records
from player_data_store.client import ClientConnection, NumericValue
from player_data_store.records.autosave import AutosaveScheduler, AutosaveState
from player_data_store.records.document_store import SessionDocumentStore, reconcile
from player_data_store.records.handle import (
    DocumentRecordHandle,
    RecordHandle,
    RecordKind,
    SortedRecordHandle,
)
from player_data_store.records.sorted_store import SortedStore
from player_data_store.service import PlayerDataService

# Extras
from player_data_store.helpers import attach_sorted_records, sorted_records_for
from player_data_store.leaderboard import LeaderboardPoller, RankedEntry, rank_entries

__version__: str = "0.1.0"

__all__ = [
    "__version__",
    # Errors and configuration
    "BackendUnavailableError",
    "DEFAULT_KEY_FORMAT",
    "PlayerDataError",
    "SessionDeniedError",
    "SessionEndedError",
    "StoreConfig",
    "UsageError",
    "client_key",
    "load_config",
    "parse_client_key",
    # Retry
    "RetryOutcome",
    "RetryPolicy",
    "execute",
    # Storage
    "DocumentBackend",
    "DocumentSession",
    "InMemoryBackend",
    "RedisBackend",
    "SQLiteBackend",
    "SortedBackend",
    "SortedEntry",
    "SortedPages",
    # Records
    "AutosaveScheduler",
    "AutosaveState",
    "ClientConnection",
    "DocumentRecordHandle",
    "NumericValue",
    "PlayerDataService",
    "RecordHandle",
    "RecordKind",
    "SessionDocumentStore",
    "SortedRecordHandle",
    "SortedStore",
    "reconcile",
    # Extras
    "LeaderboardPoller",
    "RankedEntry",
    "attach_sorted_records",
    "rank_entries",
    "sorted_records_for",
]
