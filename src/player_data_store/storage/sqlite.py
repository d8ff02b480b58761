"""SQLite storage backend built on aiosqlite.

Documents and sorted values share one database file.  Leases are columns on
the document row: a session owns a document while ``holder`` carries its
token and ``lease_expires`` lies in the future.  Every write is conditional
on the holder, so a process whose lease was taken over can never overwrite
the new owner's data.

Classes
-------
- SQLiteDocumentSession  — lease-guarded session on one document row
- SQLiteBackend          — document and sorted backend in one database
"""
from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any
from uuid import uuid4

import aiosqlite

from player_data_store.storage.base import (
    DocumentBackend,
    DocumentSession,
    SortedBackend,
    SortedEntry,
    normalise_number,
)

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH: Path = Path.home() / ".player-data" / "records.db"

_EMPTY_DOCUMENT = json.dumps({"data": {}, "user_ids": []})

_CREATE_SQL = (
    """
    CREATE TABLE IF NOT EXISTS documents (
        store         TEXT NOT NULL,
        key           TEXT NOT NULL,
        payload       TEXT NOT NULL,
        holder        TEXT,
        lease_expires REAL,
        saved_at      TEXT NOT NULL DEFAULT (datetime('now')),
        PRIMARY KEY (store, key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scores (
        store TEXT NOT NULL,
        key   TEXT NOT NULL,
        value REAL NOT NULL,
        PRIMARY KEY (store, key)
    )
    """,
    "CREATE INDEX IF NOT EXISTS scores_by_value ON scores (store, value)",
)

_CLAIM_SQL = """
UPDATE documents SET holder = ?, lease_expires = ?
WHERE store = ? AND key = ? AND (holder IS NULL OR lease_expires < ?)
"""

_WRITE_SQL = """
UPDATE documents SET payload = ?, lease_expires = ?, saved_at = datetime('now')
WHERE store = ? AND key = ? AND holder = ?
"""

_UPSERT_SCORE_SQL = """
INSERT INTO scores (store, key, value) VALUES (?, ?, ?)
ON CONFLICT(store, key) DO UPDATE SET value = excluded.value
"""


class SQLiteDocumentSession(DocumentSession):
    """Session whose lease is the ``holder`` column of its document row."""

    def __init__(
        self,
        backend: SQLiteBackend,
        store: str,
        key: str,
        token: str,
        document: dict[str, Any],
    ) -> None:
        super().__init__(
            store,
            key,
            dict(document.get("data") or {}),
            user_ids=list(document.get("user_ids") or []),
            renew_interval=backend.lease_ttl / 3,
        )
        self.token = token
        self._backend = backend

    async def _write(self, document: dict[str, Any]) -> bool:
        return await self._backend._write_document(self, document)

    async def _release(self) -> None:
        await self._backend._release_lease(self)

    async def _renew(self) -> bool:
        return await self._backend._renew_lease(self)


class SQLiteBackend(DocumentBackend, SortedBackend):
    """Persists documents and sorted values in a local SQLite database.

    Parameters
    ----------
    db_path:
        Path to the SQLite file.  Defaults to ``~/.player-data/records.db``.
        The parent directory and tables are created on first use.
    lease_ttl:
        Seconds a lease stays valid without renewal.  Active sessions renew
        every ``lease_ttl / 3`` seconds.
    acquire_timeout:
        Seconds to wait for a held lease before denying a session.
    """

    def __init__(
        self,
        db_path: str | Path | None = None,
        lease_ttl: float = 30.0,
        acquire_timeout: float = 10.0,
    ) -> None:
        super().__init__(acquire_timeout=acquire_timeout)
        self._db_path: Path = Path(db_path) if db_path is not None else _DEFAULT_DB_PATH
        self.lease_ttl = lease_ttl
        self._schema_initialised = False
        self._local: dict[tuple[str, str], SQLiteDocumentSession] = {}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_schema(self) -> None:
        """Create the tables on first use."""
        if self._schema_initialised:
            return
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as conn:
            await conn.execute("PRAGMA journal_mode=WAL")
            for statement in _CREATE_SQL:
                await conn.execute(statement)
            await conn.commit()
        self._schema_initialised = True

    async def _execute(self, sql: str, params: tuple[Any, ...]) -> int:
        """Run a write statement and return the affected row count."""
        await self._ensure_schema()
        async with aiosqlite.connect(str(self._db_path)) as conn:
            cursor = await conn.execute(sql, params)
            await conn.commit()
        return cursor.rowcount

    async def _fetchone(self, sql: str, params: tuple[Any, ...]) -> aiosqlite.Row | None:
        await self._ensure_schema()
        async with aiosqlite.connect(str(self._db_path)) as conn:
            conn.row_factory = aiosqlite.Row
            async with conn.execute(sql, params) as cursor:
                return await cursor.fetchone()

    # ------------------------------------------------------------------
    # DocumentBackend interface
    # ------------------------------------------------------------------

    async def _try_acquire(self, store: str, key: str) -> DocumentSession | None:
        await self._ensure_schema()
        token = uuid4().hex
        now = time.time()
        async with aiosqlite.connect(str(self._db_path)) as conn:
            conn.row_factory = aiosqlite.Row
            await conn.execute(
                "INSERT OR IGNORE INTO documents (store, key, payload) VALUES (?, ?, ?)",
                (store, key, _EMPTY_DOCUMENT),
            )
            cursor = await conn.execute(
                _CLAIM_SQL, (token, now + self.lease_ttl, store, key, now)
            )
            await conn.commit()
            if cursor.rowcount != 1:
                return None
            async with conn.execute(
                "SELECT payload FROM documents WHERE store = ? AND key = ?", (store, key)
            ) as select:
                row = await select.fetchone()
        document = json.loads(row["payload"]) if row is not None else {}
        session = SQLiteDocumentSession(self, store, key, token, document)
        self._local[(store, key)] = session
        return session

    async def peek(self, store: str, key: str) -> dict[str, Any] | None:
        """Return the persisted data of ``key`` without taking the lease."""
        row = await self._fetchone(
            "SELECT payload FROM documents WHERE store = ? AND key = ?", (store, key)
        )
        if row is None:
            return None
        return dict(json.loads(row["payload"]).get("data") or {})

    async def revoke(self, store: str, key: str) -> bool:
        """Clear the lease columns of ``key``.

        A session held by this process ends immediately; one held by another
        process notices on its next write or renewal.
        """
        released = await self._execute(
            "UPDATE documents SET holder = NULL, lease_expires = NULL "
            "WHERE store = ? AND key = ? AND holder IS NOT NULL",
            (store, key),
        )
        session = self._local.pop((store, key), None)
        if session is not None:
            session.revoke()
        return released > 0

    async def _write_document(
        self, session: SQLiteDocumentSession, document: dict[str, Any]
    ) -> bool:
        updated = await self._execute(
            _WRITE_SQL,
            (
                json.dumps(document, default=str),
                time.time() + self.lease_ttl,
                session.store,
                session.key,
                session.token,
            ),
        )
        return updated == 1

    async def _renew_lease(self, session: SQLiteDocumentSession) -> bool:
        updated = await self._execute(
            "UPDATE documents SET lease_expires = ? "
            "WHERE store = ? AND key = ? AND holder = ?",
            (time.time() + self.lease_ttl, session.store, session.key, session.token),
        )
        return updated == 1

    async def _release_lease(self, session: SQLiteDocumentSession) -> None:
        self._local.pop((session.store, session.key), None)
        released = await self._execute(
            "UPDATE documents SET holder = NULL, lease_expires = NULL "
            "WHERE store = ? AND key = ? AND holder = ?",
            (session.store, session.key, session.token),
        )
        if released == 0:
            logger.debug("Lease on %r was already gone at release.", session.key)

    # ------------------------------------------------------------------
    # SortedBackend interface
    # ------------------------------------------------------------------

    async def get(self, store: str, key: str) -> float | int | None:
        """Return the value for ``key`` in ``store`` or None."""
        row = await self._fetchone(
            "SELECT value FROM scores WHERE store = ? AND key = ?", (store, key)
        )
        return None if row is None else normalise_number(row["value"])

    async def set(self, store: str, key: str, value: float | int) -> None:
        """Upsert ``value`` for ``key`` in ``store``."""
        await self._execute(_UPSERT_SCORE_SQL, (store, key, value))

    async def fetch_sorted_page(
        self,
        store: str,
        ascending: bool,
        min_value: float,
        max_value: float,
        offset: int,
        limit: int,
    ) -> list[SortedEntry]:
        """Return one page of ``store`` ordered by value."""
        direction = "ASC" if ascending else "DESC"
        await self._ensure_schema()
        async with aiosqlite.connect(str(self._db_path)) as conn:
            async with conn.execute(
                "SELECT key, value FROM scores "
                "WHERE store = ? AND value BETWEEN ? AND ? "
                f"ORDER BY value {direction}, key {direction} LIMIT ? OFFSET ?",
                (store, min_value, max_value, limit, offset),
            ) as cursor:
                rows = await cursor.fetchall()
        return [SortedEntry(key=str(row[0]), value=normalise_number(row[1])) for row in rows]

    def __repr__(self) -> str:
        return f"SQLiteBackend(db_path={str(self._db_path)!r}, lease_ttl={self.lease_ttl!r})"


__all__ = ["SQLiteBackend", "SQLiteDocumentSession"]
