"""Unit tests for player_data_store.records.document_store."""
from __future__ import annotations

import asyncio
from typing import Any

import pytest

from player_data_store.records.document_store import SessionDocumentStore, reconcile
from player_data_store.storage.memory import InMemoryBackend

SCHEMA: dict[str, Any] = {"coins": 0, "level": 1, "inventory": []}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def backend() -> InMemoryBackend:
    return InMemoryBackend(documents={"Gold": {"Player_1": {"coins": 50}}})


@pytest.fixture()
def store(backend: InMemoryBackend) -> SessionDocumentStore:
    return SessionDocumentStore("Gold", backend, SCHEMA)


# ---------------------------------------------------------------------------
# reconcile (pure)
# ---------------------------------------------------------------------------


class TestReconcile:
    def test_fills_missing_keys(self) -> None:
        assert reconcile({"coins": 50}, SCHEMA) == {"coins": 50, "level": 1, "inventory": []}

    def test_existing_values_win(self) -> None:
        assert reconcile({"level": 9}, {"level": 1})["level"] == 9

    def test_extra_keys_kept(self) -> None:
        assert reconcile({"legacy": True}, {"coins": 0}) == {"legacy": True, "coins": 0}

    def test_shallow_only(self) -> None:
        result = reconcile({"stats": {"hp": 5}}, {"stats": {"hp": 10, "mp": 3}})
        assert result["stats"] == {"hp": 5}

    def test_idempotent(self) -> None:
        once = reconcile({"coins": 3}, SCHEMA)
        assert reconcile(once, SCHEMA) == once

    def test_filled_values_are_copies(self) -> None:
        result = reconcile({}, SCHEMA)
        result["inventory"].append("sword")
        assert SCHEMA["inventory"] == []

    def test_inputs_not_mutated(self) -> None:
        data = {"coins": 1}
        reconcile(data, SCHEMA)
        assert data == {"coins": 1}


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_start_registers_active_session(self, store: SessionDocumentStore) -> None:
        session = await store.start_session("Player_1")
        assert session is not None
        assert store.get_session("Player_1") is session
        assert dict(store.active_sessions()) == {"Player_1": session}

    @pytest.mark.asyncio
    async def test_duplicate_start_denied_while_held(self, store: SessionDocumentStore) -> None:
        first = await store.start_session("Player_1")
        assert await store.start_session("Player_1") is None
        assert store.get_session("Player_1") is first

    @pytest.mark.asyncio
    async def test_start_waits_for_ending_session(self) -> None:
        backend = InMemoryBackend(
            documents={"Gold": {"Player_1": {"coins": 50}}}, acquire_timeout=2.0
        )
        backend.poll_interval = 0.01
        store = SessionDocumentStore("Gold", backend, SCHEMA)
        first = await store.start_session("Player_1")
        assert first is not None
        second_request = asyncio.ensure_future(store.start_session("Player_1"))
        await asyncio.sleep(0.03)
        assert not second_request.done()
        assert await store.end_session(first, {"coins": 60}) is True
        second = await asyncio.wait_for(second_request, timeout=1)
        assert second is not None and second is not first
        assert second.data == {"coins": 60}
        assert store.get_session("Player_1") is second

    @pytest.mark.asyncio
    async def test_waiting_start_cancelled(
        self, store: SessionDocumentStore, backend: InMemoryBackend
    ) -> None:
        backend.acquire_timeout = 2.0
        await store.start_session("Player_1")
        assert await store.start_session("Player_1", cancel=lambda: True) is None

    @pytest.mark.asyncio
    async def test_other_store_on_same_backend_is_denied(
        self, store: SessionDocumentStore, backend: InMemoryBackend
    ) -> None:
        assert await store.start_session("Player_1") is not None
        other = SessionDocumentStore("Gold", backend, SCHEMA)
        assert await other.start_session("Player_1") is None
        assert other.get_session("Player_1") is None

    @pytest.mark.asyncio
    async def test_reconcile_applied_once(self, store: SessionDocumentStore) -> None:
        session = await store.start_session("Player_1")
        assert session is not None
        store.reconcile(session)
        assert session.data == {"coins": 50, "level": 1, "inventory": []}
        del session.data["level"]
        store.reconcile(session)
        assert "level" not in session.data

    @pytest.mark.asyncio
    async def test_schema_default_is_read_only(self, store: SessionDocumentStore) -> None:
        with pytest.raises(TypeError):
            store.schema_default["coins"] = 5  # type: ignore[index]


# ---------------------------------------------------------------------------
# save / end_session
# ---------------------------------------------------------------------------


class TestSaveAndEnd:
    @pytest.mark.asyncio
    async def test_saves_merge(
        self, store: SessionDocumentStore, backend: InMemoryBackend
    ) -> None:
        session = await store.start_session("Player_2")
        assert session is not None
        assert await store.save(session, {"a": 1}) is True
        assert await store.save(session, {"b": 2}) is True
        assert session.data == {"a": 1, "b": 2}
        assert await backend.peek("Gold", "Player_2") == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_save_after_end_returns_false(self, store: SessionDocumentStore) -> None:
        session = await store.start_session("Player_1")
        assert session is not None
        await store.end_session(session)
        assert await store.save(session, {"coins": 1}) is False

    @pytest.mark.asyncio
    async def test_end_flushes_and_releases(
        self, store: SessionDocumentStore, backend: InMemoryBackend
    ) -> None:
        session = await store.start_session("Player_1")
        assert session is not None
        assert await store.end_session(session, {"coins": 80}) is True
        assert await backend.peek("Gold", "Player_1") == {"coins": 80}
        assert store.get_session("Player_1") is None
        assert backend.session_ends[("Gold", "Player_1")] == 1

    @pytest.mark.asyncio
    async def test_end_twice_is_noop(
        self, store: SessionDocumentStore, backend: InMemoryBackend
    ) -> None:
        session = await store.start_session("Player_1")
        assert session is not None
        await store.end_session(session)
        assert await store.end_session(session) is True
        assert backend.session_ends[("Gold", "Player_1")] == 1
        assert backend.writes[("Gold", "Player_1")] == 1

    @pytest.mark.asyncio
    async def test_save_after_revoke_returns_false(
        self, store: SessionDocumentStore, backend: InMemoryBackend
    ) -> None:
        session = await store.start_session("Player_1")
        assert session is not None
        await backend.revoke("Gold", "Player_1")
        assert await store.save(session, {"coins": 1}) is False
        assert await backend.peek("Gold", "Player_1") == {"coins": 50}


# ---------------------------------------------------------------------------
# Session-end observer
# ---------------------------------------------------------------------------


class TestSessionEndObserver:
    @pytest.mark.asyncio
    async def test_called_on_revoke(
        self, store: SessionDocumentStore, backend: InMemoryBackend
    ) -> None:
        session = await store.start_session("Player_1")
        assert session is not None
        seen: list[Any] = []
        store.register_session_end_observer(session, seen.append)
        await backend.revoke("Gold", "Player_1")
        assert seen == [session]
        assert store.get_session("Player_1") is None

    @pytest.mark.asyncio
    async def test_not_called_on_own_end(self, store: SessionDocumentStore) -> None:
        session = await store.start_session("Player_1")
        assert session is not None
        seen: list[Any] = []
        store.register_session_end_observer(session, seen.append)
        await store.end_session(session)
        assert seen == []
