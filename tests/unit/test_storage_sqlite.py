"""Unit tests for player_data_store.storage.sqlite.SQLiteBackend.

Each test uses a fresh database under ``tmp_path``.  Two backend objects on
the same file stand in for two server processes sharing the database.
"""
from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from player_data_store.errors import SessionEndedError
from player_data_store.storage.base import SortedEntry
from player_data_store.storage.sqlite import SQLiteBackend


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "records.db"


@pytest.fixture()
def backend(db_path: Path) -> SQLiteBackend:
    return SQLiteBackend(db_path=db_path, acquire_timeout=0.0)


# ---------------------------------------------------------------------------
# Documents and leases
# ---------------------------------------------------------------------------


class TestSQLiteDocuments:
    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, tmp_path: Path) -> None:
        nested = tmp_path / "a" / "b" / "records.db"
        backend = SQLiteBackend(db_path=nested, acquire_timeout=0.0)
        assert await backend.peek("Gold", "Player_1") is None
        assert nested.exists()

    @pytest.mark.asyncio
    async def test_save_end_and_peek(self, backend: SQLiteBackend) -> None:
        session = await backend.start_session("Gold", "Player_1")
        assert session is not None
        assert session.data == {}
        await session.save({"coins": 10, "level": 2})
        await session.end_session()
        assert await backend.peek("Gold", "Player_1") == {"coins": 10, "level": 2}

    @pytest.mark.asyncio
    async def test_second_process_denied_while_held(
        self, backend: SQLiteBackend, db_path: Path
    ) -> None:
        other = SQLiteBackend(db_path=db_path, acquire_timeout=0.0)
        session = await backend.start_session("Gold", "Player_1")
        assert session is not None
        try:
            assert await other.start_session("Gold", "Player_1") is None
        finally:
            await session.end_session()
        again = await other.start_session("Gold", "Player_1")
        assert again is not None
        await again.end_session()

    @pytest.mark.asyncio
    async def test_expired_lease_can_be_taken_over(self, db_path: Path) -> None:
        short = SQLiteBackend(db_path=db_path, lease_ttl=0.001, acquire_timeout=0.0)
        stale = await short._try_acquire("Gold", "Player_1")
        assert stale is not None
        await asyncio.sleep(0.01)
        other = SQLiteBackend(db_path=db_path, acquire_timeout=0.0)
        fresh = await other.start_session("Gold", "Player_1")
        assert fresh is not None
        with pytest.raises(SessionEndedError):
            await stale.save({"coins": 1})
        assert stale.forced_end
        await fresh.end_session()

    @pytest.mark.asyncio
    async def test_revoke_from_other_process(
        self, backend: SQLiteBackend, db_path: Path
    ) -> None:
        session = await backend.start_session("Gold", "Player_1")
        assert session is not None
        admin = SQLiteBackend(db_path=db_path)
        assert await admin.revoke("Gold", "Player_1") is True
        with pytest.raises(SessionEndedError):
            await session.save({"coins": 5})
        assert session.forced_end

    @pytest.mark.asyncio
    async def test_revoke_local_session_ends_it(self, backend: SQLiteBackend) -> None:
        session = await backend.start_session("Gold", "Player_1")
        assert session is not None
        assert await backend.revoke("Gold", "Player_1") is True
        assert not session.active
        assert await backend.revoke("Gold", "Player_1") is False


# ---------------------------------------------------------------------------
# Sorted values
# ---------------------------------------------------------------------------


class TestSQLiteSorted:
    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, backend: SQLiteBackend) -> None:
        assert await backend.get("Kills", "Player_1") is None

    @pytest.mark.asyncio
    async def test_set_overwrites(self, backend: SQLiteBackend) -> None:
        await backend.set("Kills", "Player_1", 3)
        await backend.set("Kills", "Player_1", 4)
        assert await backend.get("Kills", "Player_1") == 4

    @pytest.mark.asyncio
    async def test_integral_values_come_back_as_int(self, backend: SQLiteBackend) -> None:
        await backend.set("Kills", "Player_1", 7)
        value = await backend.get("Kills", "Player_1")
        assert value == 7
        assert isinstance(value, int)

    @pytest.mark.asyncio
    async def test_sorted_pages(self, backend: SQLiteBackend) -> None:
        for index in range(12):
            await backend.set("Kills", f"Player_{index}", index * 10)
        pages = await backend.get_sorted("Kills", False, 5, 0, 100)
        assert pages.current_page()[0] == SortedEntry("Player_10", 100)
        assert not pages.is_finished
        assert await pages.advance() is True
        assert [entry.value for entry in pages.current_page()] == [50, 40, 30, 20, 10]
        assert not pages.is_finished
        assert await pages.advance() is True
        assert pages.current_page() == [SortedEntry("Player_0", 0)]
        assert pages.is_finished
