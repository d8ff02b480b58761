"""Abstract contracts for the storage engines consumed by the record layer.

Two kinds of backend are consumed:

- a **document backend**, which grants exclusive, revocable sessions on a
  per-client document and persists the session's working copy on demand;
- a **sorted backend**, which stores one number per client and answers
  paginated range queries ordered by value.

A concrete engine usually implements both.  All methods are coroutines.

Classes
-------
- DocumentSession  — an exclusive lease plus its in-memory working copy
- DocumentBackend  — grants ``DocumentSession`` objects
- SortedEntry      — one ``(key, value)`` row of a sorted query
- SortedPages      — lazily fetched pages of a sorted query
- SortedBackend    — numeric get/set and sorted range pages
"""
from __future__ import annotations

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable

from player_data_store.errors import SessionEndedError
from player_data_store.reliability.retry import RetryPolicy, execute

logger = logging.getLogger(__name__)

_POLL_INTERVAL_SECONDS: float = 0.1  # between lease-acquisition attempts

SessionEndCallback = Callable[["DocumentSession", bool], None]


def normalise_number(value: float | int) -> float | int:
    """Return ``value`` as an ``int`` when it has no fractional part."""
    number = float(value)
    if number.is_integer():
        return int(number)
    return number


# ---------------------------------------------------------------------------
# Document sessions
# ---------------------------------------------------------------------------


class DocumentSession(ABC):
    """Exclusive lease on one document together with its working copy.

    All reads and writes during the session's lifetime go through ``data``;
    the backend is only touched by :meth:`save`, :meth:`end_session` and the
    optional lease keepalive.

    Parameters
    ----------
    store:
        Name of the store the document belongs to.
    key:
        Backend key of the document.
    data:
        Working copy loaded from the backend (empty for a new document).
    user_ids:
        Client ids previously associated with the document.
    renew_interval:
        When set, :meth:`start_keepalive` renews the lease every
        ``renew_interval`` seconds.  A failed renewal ends the session with
        ``forced=True``.
    """

    def __init__(
        self,
        store: str,
        key: str,
        data: dict[str, Any] | None = None,
        *,
        user_ids: list[int] | None = None,
        renew_interval: float | None = None,
    ) -> None:
        self.store = store
        self.key = key
        self.data: dict[str, Any] = data if data is not None else {}
        self.user_ids: list[int] = list(user_ids or [])
        self._renew_interval = renew_interval
        self._keepalive: asyncio.Task[None] | None = None
        self._callbacks: list[SessionEndCallback] = []
        self._ended = False
        self._forced = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def active(self) -> bool:
        """True until the session is ended or revoked."""
        return not self._ended

    @property
    def forced_end(self) -> bool:
        """True if the backend revoked the session."""
        return self._forced

    def add_user_id(self, user_id: int) -> None:
        """Associate ``user_id`` with the document (persisted on next save)."""
        if user_id not in self.user_ids:
            self.user_ids.append(user_id)

    def on_session_end(self, callback: SessionEndCallback) -> None:
        """Register ``callback(session, forced)`` to run once when the session ends.

        If the session already ended, ``callback`` runs immediately.
        """
        if self._ended:
            callback(self, self._forced)
            return
        self._callbacks.append(callback)

    def snapshot(self) -> dict[str, Any]:
        """Return the persisted form of the session: data plus user ids."""
        return {"data": copy.deepcopy(self.data), "user_ids": list(self.user_ids)}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save(self, data: dict[str, Any] | None = None) -> None:
        """Persist the working copy, or ``data`` which then becomes it.

        Raises
        ------
        SessionEndedError
            If the session has ended, or the backend reports the lease lost
            (in which case the session ends with ``forced=True``).
        """
        if self._ended:
            raise SessionEndedError(self.key)
        candidate = self.data if data is None else data
        document = {"data": copy.deepcopy(candidate), "user_ids": list(self.user_ids)}
        if not await self._write(document):
            self._mark_ended(forced=True)
            raise SessionEndedError(self.key)
        self.data = candidate

    async def end_session(self) -> None:
        """Release the lease.  Calling it on an ended session does nothing."""
        if self._ended:
            return
        self._stop_keepalive()
        try:
            await self._release()
        finally:
            self._mark_ended(forced=False)

    def revoke(self) -> None:
        """End the session from the backend side (lease taken over or expired)."""
        self._mark_ended(forced=True)

    # ------------------------------------------------------------------
    # Keepalive
    # ------------------------------------------------------------------

    def start_keepalive(self) -> None:
        """Start periodic lease renewal if this session has a renew interval."""
        if self._renew_interval is None or self._keepalive is not None:
            return
        self._keepalive = asyncio.get_running_loop().create_task(
            self._keepalive_loop(self._renew_interval)
        )

    async def _keepalive_loop(self, interval: float) -> None:
        while not self._ended:
            await asyncio.sleep(interval)
            if self._ended:
                return
            try:
                renewed = await self._renew()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Lease renewal for %r failed: %s", self.key, exc)
                continue
            if not renewed:
                logger.warning("Lease for %r was lost; ending session.", self.key)
                self._mark_ended(forced=True)
                return

    def _stop_keepalive(self) -> None:
        task = self._keepalive
        self._keepalive = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _mark_ended(self, forced: bool) -> None:
        if self._ended:
            return
        self._ended = True
        self._forced = forced
        self._stop_keepalive()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(self, forced)

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def _write(self, document: dict[str, Any]) -> bool:
        """Persist ``document`` under the lease.

        Returns
        -------
        bool
            False if the lease is no longer held by this session.
        """

    @abstractmethod
    async def _release(self) -> None:
        """Give the lease back to the backend."""

    async def _renew(self) -> bool:
        """Extend the lease.  Backends without lease expiry keep the default."""
        return True

    def __repr__(self) -> str:
        state = "active" if self.active else ("revoked" if self._forced else "ended")
        return f"{type(self).__name__}(store={self.store!r}, key={self.key!r}, {state})"


class DocumentBackend(ABC):
    """Grants exclusive sessions on per-client documents.

    Parameters
    ----------
    acquire_timeout:
        Seconds :meth:`start_session` keeps retrying a held lease before it
        gives up and denies the session.
    """

    poll_interval: float = _POLL_INTERVAL_SECONDS

    def __init__(self, acquire_timeout: float = 10.0) -> None:
        self.acquire_timeout = acquire_timeout

    async def start_session(
        self,
        store: str,
        key: str,
        cancel: Callable[[], bool] | None = None,
    ) -> DocumentSession | None:
        """Request an exclusive session on ``key`` in ``store``.

        ``cancel`` is evaluated before every acquisition attempt; when it
        returns True the request is abandoned.

        Returns
        -------
        DocumentSession | None
            The active session, or None if the lease was not granted within
            ``acquire_timeout`` or the request was cancelled.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.acquire_timeout
        while True:
            if cancel is not None and cancel():
                logger.info("Session request for %r in %r cancelled.", key, store)
                return None
            try:
                session = await self._try_acquire(store, key)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Session request for %r in %r failed: %s", key, store, exc
                )
                session = None
            if session is not None:
                session.start_keepalive()
                return session
            if loop.time() >= deadline:
                logger.warning(
                    "Session for %r in %r not granted within %.1fs.",
                    key,
                    store,
                    self.acquire_timeout,
                )
                return None
            await asyncio.sleep(self.poll_interval)

    @abstractmethod
    async def _try_acquire(self, store: str, key: str) -> DocumentSession | None:
        """Take the lease if it is free; return None if someone else holds it."""

    @abstractmethod
    async def peek(self, store: str, key: str) -> dict[str, Any] | None:
        """Return the persisted data of ``key`` without taking the lease."""

    @abstractmethod
    async def revoke(self, store: str, key: str) -> bool:
        """Forcibly release the lease on ``key``.

        Returns
        -------
        bool
            True if a lease was held and has been released.
        """


# ---------------------------------------------------------------------------
# Sorted numeric storage
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SortedEntry:
    """One row of a sorted range query."""

    key: str
    value: float | int


class SortedPages:
    """Pages of a sorted range query, fetched one round trip at a time.

    Parameters
    ----------
    fetch:
        ``fetch(offset, limit)`` returns up to ``limit`` entries starting at
        ``offset`` in query order.
    page_size:
        Number of entries per page.
    policy:
        When given, each page fetch after the first runs under this policy.
    """

    def __init__(
        self,
        fetch: Callable[[int, int], Awaitable[list[SortedEntry]]],
        page_size: int,
        policy: RetryPolicy | None = None,
    ) -> None:
        self._fetch = fetch
        self.page_size = page_size
        self.policy = policy
        self._offset = 0
        self._page: list[SortedEntry] = []
        self._finished = True

    @property
    def is_finished(self) -> bool:
        """True when the current page is the last one."""
        return self._finished

    def current_page(self) -> list[SortedEntry]:
        """Return the entries of the current page."""
        return list(self._page)

    async def load_first(self) -> None:
        """Fetch the first page."""
        await self._load(0)

    async def advance(self) -> bool:
        """Move to the next page.

        Returns
        -------
        bool
            False if there was no next page.

        Raises
        ------
        BackendUnavailableError
            If the fetch failed on every attempt allowed by ``policy``.
        """
        if self._finished:
            return False
        offset = self._offset + self.page_size
        if self.policy is None:
            await self._load(offset)
        else:
            outcome = await execute(
                self.policy, self._load, offset, description="sorted page fetch"
            )
            outcome.unwrap("sorted page fetch")
        return True

    async def _load(self, offset: int) -> None:
        rows = await self._fetch(offset, self.page_size + 1)
        self._offset = offset
        self._page = rows[: self.page_size]
        self._finished = len(rows) <= self.page_size

    async def __aiter__(self) -> AsyncIterator[list[SortedEntry]]:
        yield self.current_page()
        while await self.advance():
            yield self.current_page()


class SortedBackend(ABC):
    """Numeric value per key with range queries ordered by value."""

    @abstractmethod
    async def get(self, store: str, key: str) -> float | int | None:
        """Return the value stored under ``key`` or None if absent."""

    @abstractmethod
    async def set(self, store: str, key: str, value: float | int) -> None:
        """Store ``value`` under ``key``."""

    @abstractmethod
    async def fetch_sorted_page(
        self,
        store: str,
        ascending: bool,
        min_value: float,
        max_value: float,
        offset: int,
        limit: int,
    ) -> list[SortedEntry]:
        """Return up to ``limit`` entries with ``min_value <= value <= max_value``.

        Entries are ordered by value (then key) in the requested direction,
        skipping the first ``offset``.
        """

    async def get_sorted(
        self,
        store: str,
        ascending: bool,
        page_size: int,
        min_value: float,
        max_value: float,
    ) -> SortedPages:
        """Run a range query and return its first page."""

        async def fetch(offset: int, limit: int) -> list[SortedEntry]:
            return await self.fetch_sorted_page(
                store, ascending, min_value, max_value, offset, limit
            )

        pages = SortedPages(fetch, page_size)
        await pages.load_first()
        return pages


__all__ = [
    "DocumentBackend",
    "DocumentSession",
    "SessionEndCallback",
    "SortedBackend",
    "SortedEntry",
    "SortedPages",
    "normalise_number",
]
