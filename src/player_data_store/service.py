"""Service facade: creates record handles for named stores.

Example
-------
::

    from player_data_store import InMemoryBackend, PlayerDataService, RecordKind

    service = PlayerDataService(InMemoryBackend())
    gold = service.get_data_store("Gold", RecordKind.DOCUMENT, {"coins": 0, "level": 1})
    kills = service.get_data_store("Kills", RecordKind.SORTED_NUMERIC)
"""
from __future__ import annotations

import logging
from typing import Any, Mapping

from player_data_store.config import StoreConfig
from player_data_store.errors import UsageError
from player_data_store.records.document_store import SessionDocumentStore
from player_data_store.records.handle import (
    DocumentRecordHandle,
    RecordHandle,
    RecordKind,
    SortedRecordHandle,
)
from player_data_store.records.sorted_store import SortedStore
from player_data_store.storage.base import DocumentBackend, SortedBackend

logger = logging.getLogger(__name__)


class PlayerDataService:
    """Factory and registry of record handles over one backend.

    Parameters
    ----------
    backend:
        Backend serving document stores, and sorted stores too unless
        ``sorted_backend`` is given.
    config:
        Service configuration.  Defaults to ``StoreConfig()``.
    sorted_backend:
        Optional separate backend for sorted stores.
    """

    def __init__(
        self,
        backend: DocumentBackend | SortedBackend,
        config: StoreConfig | None = None,
        sorted_backend: SortedBackend | None = None,
    ) -> None:
        self.config = config or StoreConfig()
        self._document_backend = backend if isinstance(backend, DocumentBackend) else None
        if sorted_backend is None and isinstance(backend, SortedBackend):
            sorted_backend = backend
        self._sorted_backend = sorted_backend
        self._handles: dict[str, RecordHandle] = {}

    def get_data_store(
        self,
        store_name: str,
        kind: RecordKind | str,
        schema_default: Mapping[str, Any] | None = None,
    ) -> RecordHandle:
        """Return the handle for ``store_name``, creating it on first use.

        Parameters
        ----------
        store_name:
            Name of the store.
        kind:
            ``RecordKind.DOCUMENT`` or ``RecordKind.SORTED_NUMERIC`` (or the
            enum's string value).
        schema_default:
            Template of a document; required for document stores and ignored
            for sorted ones.

        Raises
        ------
        UsageError
            On an invalid name, kind or schema, on a missing backend for the
            kind, or when ``store_name`` already exists with another kind.
        """
        if not isinstance(store_name, str) or not store_name:
            raise UsageError(f"Store name must be a non-empty string, got {store_name!r}.")
        try:
            record_kind = RecordKind(kind)
        except ValueError:
            raise UsageError(f"Unknown record kind {kind!r}.") from None

        existing = self._handles.get(store_name)
        if existing is not None:
            if not existing.is_a(record_kind):
                raise UsageError(
                    f"Store {store_name!r} already exists as {existing.kind.value}."
                )
            return existing

        handle = self._build(store_name, record_kind, schema_default)
        self._handles[store_name] = handle
        logger.debug("Created %s store %r.", record_kind.value, store_name)
        return handle

    def _build(
        self,
        store_name: str,
        kind: RecordKind,
        schema_default: Mapping[str, Any] | None,
    ) -> RecordHandle:
        if kind is RecordKind.DOCUMENT:
            if not isinstance(schema_default, Mapping):
                raise UsageError("Document stores need a mapping as schema_default.")
            if self._document_backend is None:
                raise UsageError("This service has no document backend.")
            store = SessionDocumentStore(store_name, self._document_backend, schema_default)
            return DocumentRecordHandle(store, self.config)

        if self._sorted_backend is None:
            raise UsageError("This service has no sorted backend.")
        sorted_store = SortedStore(
            store_name,
            self._sorted_backend,
            policy=self.config.retry_policy(),
            default_min=self.config.sorted_min,
            default_max=self.config.sorted_max,
        )
        return SortedRecordHandle(sorted_store, self.config)

    def handles(self) -> list[RecordHandle]:
        """Return every handle created so far, in creation order."""
        return list(self._handles.values())

    def __repr__(self) -> str:
        return f"PlayerDataService(stores={sorted(self._handles)!r})"


__all__ = ["PlayerDataService"]
