"""Record handles: the application-facing front of a named store.

A handle is created for one store of a fixed kind and exposes one interface
for both kinds.  The kind is chosen at construction time by picking the
variant class; an operation that makes no sense for a variant raises
``UsageError`` instead of silently doing nothing.

Per-client state (working representation, session, save lock, autosave
scheduler) lives in a ``ClientAttachment`` stored on the client connection.

Classes
-------
- RecordKind            — DOCUMENT | SORTED_NUMERIC
- ClientAttachment      — per-client state of one attached record
- RecordHandle          — shared interface and save serialisation
- DocumentRecordHandle  — session-locked structured documents
- SortedRecordHandle    — single numbers with ranked range queries
"""
from __future__ import annotations

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Mapping

from player_data_store.client import ClientConnection, NumericValue
from player_data_store.config import StoreConfig
from player_data_store.errors import BackendUnavailableError, SessionDeniedError, UsageError
from player_data_store.keys import client_key
from player_data_store.records.autosave import AutosaveScheduler, AutosaveState
from player_data_store.records.document_store import SessionDocumentStore
from player_data_store.records.sorted_store import SortedStore, is_number
from player_data_store.storage.base import DocumentSession, SortedPages

logger = logging.getLogger(__name__)

KICK_LOAD_FAILED = "Profile failed to load. Please rejoin."
KICK_SESSION_ENDED = "Profile session ended - Please rejoin"


class RecordKind(str, Enum):
    """The two kinds of record a handle can front."""

    DOCUMENT = "document"
    SORTED_NUMERIC = "sorted_numeric"


@dataclass
class ClientAttachment:
    """State of one record attached to one client."""

    client: ClientConnection
    target: Any
    session: DocumentSession | None = None
    scheduler: AutosaveScheduler | None = None
    closed: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class RecordHandle(ABC):
    """Uniform front for one named store.

    Parameters
    ----------
    name:
        Store name.
    config:
        Shared service configuration (key format, autosave default).
    """

    kind: ClassVar[RecordKind]

    def __init__(self, name: str, config: StoreConfig) -> None:
        self.name = name
        self.config = config

    # ------------------------------------------------------------------
    # Kind discrimination
    # ------------------------------------------------------------------

    def is_a(self, kind: RecordKind | str) -> bool:
        """Return True if this handle fronts a store of ``kind``."""
        try:
            return RecordKind(kind) is self.kind
        except ValueError:
            return False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def client_key(self, client: ClientConnection) -> str:
        """Return the backend key of ``client``'s record."""
        return client_key(client.client_id, self.config.key_format)

    def attachment(self, client: ClientConnection) -> ClientAttachment | None:
        """Return the attachment of this record on ``client``, if any."""
        return client.records.get(self.name)

    def _check_not_attached(self, client: ClientConnection) -> None:
        if self.name in client.records:
            raise UsageError(f"Record {self.name!r} is already attached to client {client.name}.")

    def _start_autosave(self, attachment: ClientAttachment, interval: float | None) -> None:
        if interval is None:
            interval = self.config.autosave_interval
        client = attachment.client

        async def save(end_session: bool) -> bool:
            return await self._save_attachment(attachment, attachment.target, end_session)

        attachment.scheduler = AutosaveScheduler(
            client, save, interval, label=f"{self.name}/{client.name}"
        )
        attachment.scheduler.start()

    def _detach(self, attachment: ClientAttachment) -> None:
        if attachment.client.records.get(self.name) is attachment:
            del attachment.client.records[self.name]

    # ------------------------------------------------------------------
    # Shared operations
    # ------------------------------------------------------------------

    async def save(
        self,
        client: ClientConnection,
        target: Any,
        end_session: bool = False,
    ) -> bool:
        """Persist ``target`` for ``client``; with ``end_session`` also close.

        Saves for one client are serialised.  After the closing save every
        later save is a no-op: periodic ones return False, repeated closing
        ones return True.

        Returns
        -------
        bool
            True if the data was persisted (or the record was already closed
            and ``end_session`` was requested).
        """
        attachment = self.attachment(client)
        if attachment is None:
            logger.warning("Record %r is not attached to client %s.", self.name, client.name)
            return end_session
        return await self._save_attachment(attachment, target, end_session)

    async def _save_attachment(
        self,
        attachment: ClientAttachment,
        target: Any,
        end_session: bool,
    ) -> bool:
        async with attachment.lock:
            if attachment.closed:
                logger.debug(
                    "Record %r for %s already closed.", self.name, attachment.client.name
                )
                return end_session
            if end_session:
                attachment.closed = True
                self._detach(attachment)
                scheduler = attachment.scheduler
                if scheduler is not None and scheduler.state is not AutosaveState.STOPPING:
                    scheduler.stop()
            return await self._write(attachment, target, end_session)

    async def get_sorted_range(
        self,
        ascending: bool,
        page_size: int,
        min_value: float | None = None,
        max_value: float | None = None,
    ) -> SortedPages | None:
        """Ranked range query; only sorted records support it."""
        raise UsageError(f"Record {self.name!r} ({self.kind.value}) has no sorted range.")

    # ------------------------------------------------------------------
    # Variant operations
    # ------------------------------------------------------------------

    @abstractmethod
    async def attach_client(
        self,
        client: ClientConnection,
        target: Any = None,
        autosave_interval: float | None = None,
    ) -> Any:
        """Load ``client``'s record into ``target`` and start autosaving."""

    @abstractmethod
    async def load(self, client: ClientConnection, target: Any) -> None:
        """Copy the stored record of ``client`` into ``target``."""

    @abstractmethod
    async def get(self, client: ClientConnection) -> Any:
        """Return the current stored value of ``client``'s record."""

    @abstractmethod
    async def set(self, client: ClientConnection, value: Any) -> bool:
        """Write ``value`` to ``client``'s record."""

    @abstractmethod
    async def _write(self, attachment: ClientAttachment, target: Any, end_session: bool) -> bool:
        """Persist ``target``; called with the attachment lock held."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class DocumentRecordHandle(RecordHandle):
    """Handle for a session-locked document store.

    Parameters
    ----------
    store:
        The document store this handle fronts.
    config:
        Shared service configuration.
    """

    kind = RecordKind.DOCUMENT

    def __init__(self, store: SessionDocumentStore, config: StoreConfig) -> None:
        super().__init__(store.name, config)
        self.store = store

    async def attach_client(
        self,
        client: ClientConnection,
        target: Mapping[str, Any] | None = None,
        autosave_interval: float | None = None,
    ) -> dict[str, Any]:
        """Start ``client``'s session and return its working representation.

        The working representation is a copy of ``target`` (the schema
        default when omitted) filled from the reconciled document.

        Raises
        ------
        SessionDeniedError
            If no session was granted.  A still-connected client is kicked.
        UsageError
            If ``target`` is not a mapping or the record is already attached.
        """
        if target is None:
            target = self.store.schema_default
        if not isinstance(target, Mapping):
            raise UsageError(f"Document target must be a mapping, got {type(target).__name__}.")
        self._check_not_attached(client)
        key = self.client_key(client)
        working = copy.deepcopy(dict(target))

        session = await self.store.start_session(key, cancel=lambda: not client.connected)
        if session is None:
            if client.connected:
                logger.warning("Failed to load record %r for client %s.", self.name, client.name)
                client.kick(KICK_LOAD_FAILED)
                raise SessionDeniedError(key, KICK_LOAD_FAILED)
            raise SessionDeniedError(key, "client left before the session was granted")

        session.add_user_id(client.client_id)
        self.store.reconcile(session)
        attachment = ClientAttachment(client=client, target=working, session=session)
        self.store.register_session_end_observer(
            session, lambda _ended: self._on_forced_end(attachment)
        )
        if not client.connected:
            await self.store.end_session(session)
            raise SessionDeniedError(key, "client left before the session was granted")

        client.records[self.name] = attachment
        await self.load(client, working)
        self._start_autosave(attachment, autosave_interval)
        return working

    def _on_forced_end(self, attachment: ClientAttachment) -> None:
        attachment.closed = True
        if attachment.scheduler is not None:
            attachment.scheduler.stop()
        self._detach(attachment)
        attachment.client.kick(KICK_SESSION_ENDED)

    def _attached(self, client: ClientConnection) -> tuple[ClientAttachment, DocumentSession]:
        attachment = self.attachment(client)
        if attachment is None or attachment.session is None:
            raise UsageError(f"Record {self.name!r} is not attached to client {client.name}.")
        return attachment, attachment.session

    async def load(self, client: ClientConnection, target: Any) -> None:
        """Copy session values into the keys ``target`` already has.

        Raises
        ------
        UsageError
            If the record is not attached to ``client``.
        """
        _, session = self._attached(client)
        for key, value in session.data.items():
            if key in target:
                target[key] = copy.deepcopy(value)
        logger.info(
            "Document %r loaded for client %s: %r", self.name, client.name, session.data
        )

    async def get(self, client: ClientConnection) -> dict[str, Any]:
        """Return a copy of the session's working copy."""
        _, session = self._attached(client)
        return copy.deepcopy(session.data)

    async def set(self, client: ClientConnection, value: Mapping[str, Any]) -> bool:
        """Merge ``value`` into the document and persist it."""
        if not isinstance(value, Mapping):
            raise UsageError(f"Document value must be a mapping, got {type(value).__name__}.")
        attachment, session = self._attached(client)
        async with attachment.lock:
            if attachment.closed:
                return False
            return await self.store.save(session, value)

    async def _write(self, attachment: ClientAttachment, target: Any, end_session: bool) -> bool:
        session = attachment.session
        if session is None:
            raise UsageError(
                f"Record {self.name!r} has no session for client {attachment.client.name}."
            )
        patch = copy.deepcopy(dict(target))
        if end_session:
            return await self.store.end_session(session, patch)
        return await self.store.save(session, patch)


class SortedRecordHandle(RecordHandle):
    """Handle for a sorted numeric store.

    Parameters
    ----------
    store:
        The sorted store this handle fronts.
    config:
        Shared service configuration.
    """

    kind = RecordKind.SORTED_NUMERIC

    def __init__(self, store: SortedStore, config: StoreConfig) -> None:
        super().__init__(store.name, config)
        self.store = store

    @staticmethod
    def _check_target(target: Any) -> NumericValue:
        if not isinstance(target, NumericValue):
            raise UsageError(
                f"Sorted record target must be a NumericValue, got {type(target).__name__}."
            )
        return target

    async def attach_client(
        self,
        client: ClientConnection,
        target: NumericValue | None = None,
        autosave_interval: float | None = None,
    ) -> None:
        """Load ``client``'s value into ``target`` and start autosaving it.

        Raises
        ------
        BackendUnavailableError
            If the value could not be read; the client is kicked.
        UsageError
            If ``target`` is not a ``NumericValue`` or the record is already
            attached.
        """
        target = self._check_target(target)
        self._check_not_attached(client)
        await self.load(client, target)
        if not client.connected:
            return
        attachment = ClientAttachment(client=client, target=target)
        client.records[self.name] = attachment
        self._start_autosave(attachment, autosave_interval)

    async def load(self, client: ClientConnection, target: Any) -> None:
        """Read ``client``'s value into ``target.value``.

        Raises
        ------
        BackendUnavailableError
            If every read attempt failed.  A connected client is kicked.
        """
        target = self._check_target(target)
        try:
            value = await self.store.get(self.client_key(client))
        except BackendUnavailableError:
            if client.connected:
                client.kick(KICK_LOAD_FAILED)
            raise
        target.value = value
        logger.info("Sorted record %r loaded for client %s: %r", self.name, client.name, value)

    async def get(self, client: ClientConnection) -> float | int:
        """Return ``client``'s stored value (``0`` when absent)."""
        return await self.store.get(self.client_key(client))

    async def set(self, client: ClientConnection, value: float | int) -> bool:
        """Store ``value`` for ``client`` directly."""
        return await self.store.set(self.client_key(client), value)

    async def get_sorted_range(
        self,
        ascending: bool,
        page_size: int,
        min_value: float | None = None,
        max_value: float | None = None,
    ) -> SortedPages | None:
        """Return the first page of values ordered by value, or None on failure."""
        return await self.store.get_sorted_range(ascending, page_size, min_value, max_value)

    async def _write(self, attachment: ClientAttachment, target: Any, end_session: bool) -> bool:
        target = self._check_target(target)
        if not is_number(target.value):
            raise UsageError(
                f"Cannot save non-numeric value {target.value!r} to sorted store {self.name!r}."
            )
        return await self.store.set(self.client_key(attachment.client), target.value)


__all__ = [
    "ClientAttachment",
    "DocumentRecordHandle",
    "KICK_LOAD_FAILED",
    "KICK_SESSION_ENDED",
    "RecordHandle",
    "RecordKind",
    "SortedRecordHandle",
]
