"""Redis storage backend built on ``redis.asyncio``.

Key layout (``<prefix>`` defaults to ``"player_data:"``):

- ``<prefix><store>:<key>``        — JSON document ``{"data": ..., "user_ids": ...}``
- ``<prefix><store>:<key>:lease``  — lease token, set with ``NX`` and a TTL
- ``<prefix><store>:sorted``       — sorted set of ``key -> value``

Document writes, renewals and releases run as Lua scripts that first compare
the lease token, so they are atomic with respect to a competing owner.

Classes
-------
- RedisDocumentSession  — lease-guarded session on one Redis document
- RedisBackend          — document and sorted backend on one Redis client
"""
from __future__ import annotations

import json
from typing import Any
from uuid import uuid4

import redis.asyncio as redis_asyncio

from player_data_store.storage.base import (
    DocumentBackend,
    DocumentSession,
    SortedBackend,
    SortedEntry,
    normalise_number,
)

_WRITE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    redis.call('SET', KEYS[2], ARGV[2])
    redis.call('PEXPIRE', KEYS[1], ARGV[3])
    return 1
end
return 0
"""

_RENEW_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('PEXPIRE', KEYS[1], ARGV[2])
end
return 0
"""

_RELEASE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class RedisDocumentSession(DocumentSession):
    """Session whose lease is a token key with a TTL."""

    def __init__(
        self,
        backend: RedisBackend,
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


class RedisBackend(DocumentBackend, SortedBackend):
    """Persists documents and sorted values in a Redis instance.

    Parameters
    ----------
    url:
        Redis connection URL (e.g. ``"redis://localhost:6379/0"``).  Ignored
        when ``client`` is given.
    key_prefix:
        String prepended to every Redis key.
    lease_ttl:
        Seconds a lease stays valid without renewal.
    acquire_timeout:
        Seconds to wait for a held lease before denying a session.
    client:
        A ready ``redis.asyncio.Redis`` client created with
        ``decode_responses=True``.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        key_prefix: str = "player_data:",
        lease_ttl: float = 30.0,
        acquire_timeout: float = 10.0,
        client: Any | None = None,
    ) -> None:
        super().__init__(acquire_timeout=acquire_timeout)
        if client is None:
            client = redis_asyncio.Redis.from_url(url, decode_responses=True)
        self._client = client
        self._key_prefix = key_prefix
        self.lease_ttl = lease_ttl
        self._local: dict[tuple[str, str], RedisDocumentSession] = {}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _doc_key(self, store: str, key: str) -> str:
        """Return the Redis key holding the document ``key`` of ``store``."""
        return f"{self._key_prefix}{store}:{key}"

    def _lease_key(self, store: str, key: str) -> str:
        return f"{self._doc_key(store, key)}:lease"

    def _sorted_key(self, store: str) -> str:
        return f"{self._key_prefix}{store}:sorted"

    @property
    def _ttl_ms(self) -> int:
        return int(self.lease_ttl * 1000)

    # ------------------------------------------------------------------
    # DocumentBackend interface
    # ------------------------------------------------------------------

    async def _try_acquire(self, store: str, key: str) -> DocumentSession | None:
        token = uuid4().hex
        acquired = await self._client.set(
            self._lease_key(store, key), token, nx=True, px=self._ttl_ms
        )
        if not acquired:
            return None
        raw = await self._client.get(self._doc_key(store, key))
        document = json.loads(raw) if raw else {}
        session = RedisDocumentSession(self, store, key, token, document)
        self._local[(store, key)] = session
        return session

    async def peek(self, store: str, key: str) -> dict[str, Any] | None:
        """Return the persisted data of ``key`` without taking the lease."""
        raw = await self._client.get(self._doc_key(store, key))
        if not raw:
            return None
        return dict(json.loads(raw).get("data") or {})

    async def revoke(self, store: str, key: str) -> bool:
        """Delete the lease key of ``key``.

        A session held by this process ends immediately; one held by another
        process notices on its next write or renewal.
        """
        deleted = await self._client.delete(self._lease_key(store, key))
        session = self._local.pop((store, key), None)
        if session is not None:
            session.revoke()
        return bool(deleted)

    async def _write_document(
        self, session: RedisDocumentSession, document: dict[str, Any]
    ) -> bool:
        written = await self._client.eval(
            _WRITE_SCRIPT,
            2,
            self._lease_key(session.store, session.key),
            self._doc_key(session.store, session.key),
            session.token,
            json.dumps(document, default=str),
            self._ttl_ms,
        )
        return bool(written)

    async def _renew_lease(self, session: RedisDocumentSession) -> bool:
        renewed = await self._client.eval(
            _RENEW_SCRIPT,
            1,
            self._lease_key(session.store, session.key),
            session.token,
            self._ttl_ms,
        )
        return bool(renewed)

    async def _release_lease(self, session: RedisDocumentSession) -> None:
        self._local.pop((session.store, session.key), None)
        await self._client.eval(
            _RELEASE_SCRIPT,
            1,
            self._lease_key(session.store, session.key),
            session.token,
        )

    # ------------------------------------------------------------------
    # SortedBackend interface
    # ------------------------------------------------------------------

    async def get(self, store: str, key: str) -> float | int | None:
        """Return the score of ``key`` in the store's sorted set, or None."""
        score = await self._client.zscore(self._sorted_key(store), key)
        return None if score is None else normalise_number(score)

    async def set(self, store: str, key: str, value: float | int) -> None:
        """Set the score of ``key`` in the store's sorted set."""
        await self._client.zadd(self._sorted_key(store), {key: value})

    async def fetch_sorted_page(
        self,
        store: str,
        ascending: bool,
        min_value: float,
        max_value: float,
        offset: int,
        limit: int,
    ) -> list[SortedEntry]:
        """Return one page of the store's sorted set."""
        name = self._sorted_key(store)
        if ascending:
            rows = await self._client.zrangebyscore(
                name, min_value, max_value, start=offset, num=limit, withscores=True
            )
        else:
            rows = await self._client.zrevrangebyscore(
                name, max_value, min_value, start=offset, num=limit, withscores=True
            )
        return [SortedEntry(key=str(member), value=normalise_number(score)) for member, score in rows]

    async def close(self) -> None:
        """Close the underlying Redis connection pool."""
        await self._client.aclose()

    def __repr__(self) -> str:
        return (
            f"RedisBackend(key_prefix={self._key_prefix!r}, "
            f"lease_ttl={self.lease_ttl!r})"
        )


__all__ = ["RedisBackend", "RedisDocumentSession"]
