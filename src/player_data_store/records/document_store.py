"""Session-locked document store.

``SessionDocumentStore`` owns at most one active session per client key in
one named store.  It reconciles freshly loaded documents against the store's
schema default, merges saves into the session's working copy, and releases
its bookkeeping whenever a session ends, whether the holder ended it or the
backend revoked it.

Classes
-------
- SessionDocumentStore  — start / reconcile / save / end sessions

Functions
---------
- reconcile  — fill missing top-level keys of a document from a template
"""
from __future__ import annotations

import asyncio
import copy
import logging
from types import MappingProxyType
from typing import Any, Callable, Mapping

from player_data_store.errors import SessionEndedError
from player_data_store.storage.base import DocumentBackend, DocumentSession

logger = logging.getLogger(__name__)

SessionObserver = Callable[[DocumentSession], None]


def reconcile(data: Mapping[str, Any], template: Mapping[str, Any]) -> dict[str, Any]:
    """Return ``data`` with every key of ``template`` it lacks added.

    The merge is shallow: keys already present in ``data`` keep their value
    even when its type differs from the template's.  Added values are deep
    copies, so the template is never shared with a document.

    Parameters
    ----------
    data:
        Loaded document.
    template:
        Schema default of the store.

    Returns
    -------
    dict[str, Any]
        A new dict; neither argument is modified.
    """
    result = dict(data)
    for key, value in template.items():
        if key not in result:
            result[key] = copy.deepcopy(value)
    return result


class SessionDocumentStore:
    """Exclusive-session access to the documents of one named store.

    Parameters
    ----------
    name:
        Store name; namespaces the documents inside the backend.
    backend:
        Document backend granting sessions.
    schema_default:
        Canonical top-level shape of a document in this store.
    """

    def __init__(
        self,
        name: str,
        backend: DocumentBackend,
        schema_default: Mapping[str, Any],
    ) -> None:
        self.name = name
        self._backend = backend
        self._schema_default: dict[str, Any] = copy.deepcopy(dict(schema_default))
        self._sessions: dict[str, DocumentSession] = {}
        self._pending: set[str] = set()
        self._reconciled: set[int] = set()

    @property
    def schema_default(self) -> Mapping[str, Any]:
        """Read-only view of the schema default."""
        return MappingProxyType(self._schema_default)

    # ------------------------------------------------------------------
    # Active-session bookkeeping
    # ------------------------------------------------------------------

    def active_sessions(self) -> Mapping[str, DocumentSession]:
        """Return a snapshot of the active sessions keyed by client key."""
        return MappingProxyType(dict(self._sessions))

    def get_session(self, client_key: str) -> DocumentSession | None:
        """Return the active session for ``client_key``, if any."""
        return self._sessions.get(client_key)

    def _forget(self, session: DocumentSession) -> None:
        if self._sessions.get(session.key) is session:
            del self._sessions[session.key]
        self._reconciled.discard(id(session))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_session(
        self,
        client_key: str,
        cancel: Callable[[], bool] | None = None,
    ) -> DocumentSession | None:
        """Ask the backend for an exclusive session on ``client_key``.

        While this store still holds or is requesting a session on the same
        key (a client rejoining during its final save, for instance), the
        request waits for that session to go away, for at most the backend's
        ``acquire_timeout``, before asking the backend.

        Parameters
        ----------
        client_key:
            Backend key of the client's document.
        cancel:
            Polled while the request is in flight; returning True abandons it.

        Returns
        -------
        DocumentSession | None
            The active session, or None when it was denied or cancelled.
            Callers must treat None as a hard failure for this client.
        """
        if not await self._wait_local_release(client_key, cancel):
            logger.warning("Store %r: session for %r denied.", self.name, client_key)
            return None
        self._pending.add(client_key)
        try:
            session = await self._backend.start_session(self.name, client_key, cancel)
        finally:
            self._pending.discard(client_key)
        if session is None:
            logger.warning("Store %r: session for %r denied.", self.name, client_key)
            return None
        self._sessions[client_key] = session
        session.on_session_end(lambda ended, _forced: self._forget(ended))
        logger.info("Store %r: session started for %r.", self.name, client_key)
        return session

    async def _wait_local_release(
        self, client_key: str, cancel: Callable[[], bool] | None
    ) -> bool:
        if client_key not in self._sessions and client_key not in self._pending:
            return True
        logger.info(
            "Store %r: waiting for the previous session on %r to end.", self.name, client_key
        )
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._backend.acquire_timeout
        while client_key in self._sessions or client_key in self._pending:
            if cancel is not None and cancel():
                return False
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self._backend.poll_interval)
        return True

    def reconcile(self, session: DocumentSession) -> None:
        """Fill keys missing from ``session.data`` from the schema default.

        Applied at most once per session; later calls do nothing.
        """
        if id(session) in self._reconciled:
            return
        session.data.update(reconcile(session.data, self._schema_default))
        self._reconciled.add(id(session))

    def register_session_end_observer(
        self, session: DocumentSession, callback: SessionObserver
    ) -> None:
        """Run ``callback(session)`` once if the backend revokes ``session``.

        A session ended by its holder never triggers ``callback``.
        """

        def observe(ended: DocumentSession, forced: bool) -> None:
            self._forget(ended)
            if forced:
                logger.warning(
                    "Store %r: session for %r was ended by the backend.",
                    self.name,
                    ended.key,
                )
                callback(ended)

        session.on_session_end(observe)

    async def save(self, session: DocumentSession, patch: Mapping[str, Any]) -> bool:
        """Merge ``patch`` into the working copy and persist it.

        Keys absent from ``patch`` keep their current value.  The working copy
        only changes once the backend accepted the write.

        Returns
        -------
        bool
            False if the session has ended or the write failed.
        """
        if not session.active:
            logger.warning(
                "Store %r: save for %r skipped, session already ended.",
                self.name,
                session.key,
            )
            return False
        merged = {**session.data, **patch}
        try:
            await session.save(merged)
        except SessionEndedError:
            logger.warning(
                "Store %r: save for %r rejected, lease no longer held.",
                self.name,
                session.key,
            )
            return False
        except Exception as exc:  # noqa: BLE001
            logger.error("Store %r: save for %r failed: %s", self.name, session.key, exc)
            return False
        logger.debug("Store %r: saved %r: %r", self.name, session.key, session.data)
        return True

    async def end_session(
        self,
        session: DocumentSession,
        patch: Mapping[str, Any] | None = None,
    ) -> bool:
        """Flush the working copy (merged with ``patch``) and release the lease.

        Ending an already-ended session is a no-op that returns True.

        Returns
        -------
        bool
            False if the final flush failed; the lease is released regardless.
        """
        if not session.active:
            self._forget(session)
            return True
        saved = await self.save(session, patch or {})
        try:
            await session.end_session()
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Store %r: releasing session for %r failed: %s",
                self.name,
                session.key,
                exc,
            )
        self._forget(session)
        logger.info("Store %r: session ended for %r.", self.name, session.key)
        return saved

    def __repr__(self) -> str:
        return f"SessionDocumentStore(name={self.name!r}, active={len(self._sessions)})"


__all__ = ["SessionDocumentStore", "reconcile"]
