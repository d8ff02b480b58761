"""In-memory storage backend.

Keeps documents, leases and sorted values in plain Python dicts guarded by an
``asyncio.Lock``.  All data is lost when the process exits.  This backend is
primarily useful for tests and local prototyping, and records a few counters
(writes, session ends) that tests can assert on.

Classes
-------
- InMemoryDocumentSession  — session whose lease lives in the backend dict
- InMemoryBackend          — document and sorted backend in one object
"""
from __future__ import annotations

import asyncio
import copy
from collections import Counter
from typing import Any

from player_data_store.storage.base import (
    DocumentBackend,
    DocumentSession,
    SortedBackend,
    SortedEntry,
)


class InMemoryDocumentSession(DocumentSession):
    """Session on an :class:`InMemoryBackend` document."""

    def __init__(
        self,
        backend: InMemoryBackend,
        store: str,
        key: str,
        data: dict[str, Any],
        user_ids: list[int],
    ) -> None:
        super().__init__(store, key, data, user_ids=user_ids)
        self._backend = backend

    async def _write(self, document: dict[str, Any]) -> bool:
        return await self._backend._write_document(self, document)

    async def _release(self) -> None:
        await self._backend._release_lease(self)


class InMemoryBackend(DocumentBackend, SortedBackend):
    """Ephemeral document and sorted storage backed by Python dicts.

    Parameters
    ----------
    documents:
        Optional pre-populated documents as ``{store: {key: data}}``.  Deep
        copies are taken so the caller's dicts are not mutated.
    scores:
        Optional pre-populated sorted values as ``{store: {key: value}}``.
    acquire_timeout:
        Seconds to wait for a held lease before denying a session.
    """

    def __init__(
        self,
        documents: dict[str, dict[str, dict[str, Any]]] | None = None,
        scores: dict[str, dict[str, float | int]] | None = None,
        acquire_timeout: float = 0.0,
    ) -> None:
        super().__init__(acquire_timeout=acquire_timeout)
        self._documents: dict[tuple[str, str], dict[str, Any]] = {}
        for store, entries in (documents or {}).items():
            for key, data in entries.items():
                self._documents[(store, key)] = {
                    "data": copy.deepcopy(data),
                    "user_ids": [],
                }
        self._scores: dict[str, dict[str, float | int]] = {
            store: dict(entries) for store, entries in (scores or {}).items()
        }
        self._leases: dict[tuple[str, str], InMemoryDocumentSession] = {}
        self._lock: asyncio.Lock = asyncio.Lock()
        self.writes: Counter[tuple[str, str]] = Counter()
        self.session_ends: Counter[tuple[str, str]] = Counter()

    # ------------------------------------------------------------------
    # DocumentBackend interface
    # ------------------------------------------------------------------

    async def _try_acquire(self, store: str, key: str) -> DocumentSession | None:
        async with self._lock:
            if (store, key) in self._leases:
                return None
            stored = self._documents.get((store, key), {"data": {}, "user_ids": []})
            session = InMemoryDocumentSession(
                self,
                store,
                key,
                copy.deepcopy(stored["data"]),
                list(stored["user_ids"]),
            )
            self._leases[(store, key)] = session
            return session

    async def peek(self, store: str, key: str) -> dict[str, Any] | None:
        """Return a copy of the persisted data for ``key``, or None."""
        async with self._lock:
            stored = self._documents.get((store, key))
            return None if stored is None else copy.deepcopy(stored["data"])

    async def revoke(self, store: str, key: str) -> bool:
        """Drop the lease on ``key`` and end its session with ``forced=True``."""
        async with self._lock:
            session = self._leases.pop((store, key), None)
        if session is None:
            return False
        session.revoke()
        return True

    def holder(self, store: str, key: str) -> DocumentSession | None:
        """Return the session currently holding the lease on ``key``."""
        return self._leases.get((store, key))

    async def _write_document(
        self, session: InMemoryDocumentSession, document: dict[str, Any]
    ) -> bool:
        async with self._lock:
            if self._leases.get((session.store, session.key)) is not session:
                return False
            self._documents[(session.store, session.key)] = copy.deepcopy(document)
            self.writes[(session.store, session.key)] += 1
            return True

    async def _release_lease(self, session: InMemoryDocumentSession) -> None:
        async with self._lock:
            if self._leases.get((session.store, session.key)) is session:
                del self._leases[(session.store, session.key)]
                self.session_ends[(session.store, session.key)] += 1

    # ------------------------------------------------------------------
    # SortedBackend interface
    # ------------------------------------------------------------------

    async def get(self, store: str, key: str) -> float | int | None:
        """Return the value for ``key`` in ``store`` or None."""
        async with self._lock:
            return self._scores.get(store, {}).get(key)

    async def set(self, store: str, key: str, value: float | int) -> None:
        """Store ``value`` under ``key`` in ``store``."""
        async with self._lock:
            self._scores.setdefault(store, {})[key] = value

    async def fetch_sorted_page(
        self,
        store: str,
        ascending: bool,
        min_value: float,
        max_value: float,
        offset: int,
        limit: int,
    ) -> list[SortedEntry]:
        """Return a slice of the entries within bounds, ordered by value."""
        async with self._lock:
            rows = [
                SortedEntry(key=key, value=value)
                for key, value in self._scores.get(store, {}).items()
                if min_value <= value <= max_value
            ]
        rows.sort(key=lambda entry: (entry.value, entry.key), reverse=not ascending)
        return rows[offset: offset + limit]

    # ------------------------------------------------------------------
    # Extras
    # ------------------------------------------------------------------

    async def clear(self) -> None:
        """Remove all documents, leases and sorted values."""
        async with self._lock:
            self._documents.clear()
            self._leases.clear()
            self._scores.clear()

    def __repr__(self) -> str:
        return (
            f"InMemoryBackend(documents={len(self._documents)}, "
            f"leases={len(self._leases)}, sorted_stores={len(self._scores)})"
        )


__all__ = ["InMemoryBackend", "InMemoryDocumentSession"]
