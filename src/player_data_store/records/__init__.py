"""Record layer subpackage.

Public surface
--------------
- SessionDocumentStore  — session-locked documents with reconciliation
- reconcile             — pure fill-missing merge against a template
- SortedStore           — numeric values with ranked range queries
- RecordKind            — DOCUMENT | SORTED_NUMERIC
- RecordHandle          — uniform handle over both kinds
- DocumentRecordHandle / SortedRecordHandle — the two variants
- AutosaveScheduler     — periodic saves plus the disconnect hook
"""
from __future__ import annotations

from player_data_store.records.autosave import AutosaveScheduler, AutosaveState
from player_data_store.records.document_store import SessionDocumentStore, reconcile
from player_data_store.records.handle import (
    ClientAttachment,
    DocumentRecordHandle,
    RecordHandle,
    RecordKind,
    SortedRecordHandle,
)
from player_data_store.records.sorted_store import SortedStore

__all__ = [
    "AutosaveScheduler",
    "AutosaveState",
    "ClientAttachment",
    "DocumentRecordHandle",
    "RecordHandle",
    "RecordKind",
    "SessionDocumentStore",
    "SortedRecordHandle",
    "SortedStore",
    "reconcile",
]
