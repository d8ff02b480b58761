"""Unit tests for player_data_store.storage.memory.InMemoryBackend.

Covers leases, lease-guarded writes, revocation, sorted values and
pagination of sorted range queries.
"""
from __future__ import annotations

import asyncio
from typing import Any

import pytest

from player_data_store.errors import SessionEndedError
from player_data_store.storage.base import DocumentSession, SortedEntry
from player_data_store.storage.memory import InMemoryBackend


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def backend() -> InMemoryBackend:
    return InMemoryBackend(documents={"Gold": {"Player_1": {"coins": 50}}})


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class TestInMemorySessions:
    @pytest.mark.asyncio
    async def test_session_loads_existing_document(self, backend: InMemoryBackend) -> None:
        session = await backend.start_session("Gold", "Player_1")
        assert session is not None
        assert session.data == {"coins": 50}
        assert session.active

    @pytest.mark.asyncio
    async def test_new_document_starts_empty(self, backend: InMemoryBackend) -> None:
        session = await backend.start_session("Gold", "Player_2")
        assert session is not None
        assert session.data == {}

    @pytest.mark.asyncio
    async def test_second_session_denied_while_held(self, backend: InMemoryBackend) -> None:
        first = await backend.start_session("Gold", "Player_1")
        assert first is not None
        assert await backend.start_session("Gold", "Player_1") is None

    @pytest.mark.asyncio
    async def test_lease_free_again_after_end(self, backend: InMemoryBackend) -> None:
        first = await backend.start_session("Gold", "Player_1")
        assert first is not None
        await first.end_session()
        second = await backend.start_session("Gold", "Player_1")
        assert second is not None

    @pytest.mark.asyncio
    async def test_cancelled_request_returns_none(self, backend: InMemoryBackend) -> None:
        assert await backend.start_session("Gold", "Player_1", cancel=lambda: True) is None
        assert backend.holder("Gold", "Player_1") is None

    @pytest.mark.asyncio
    async def test_save_persists_data_and_user_ids(self, backend: InMemoryBackend) -> None:
        session = await backend.start_session("Gold", "Player_1")
        assert session is not None
        session.add_user_id(1)
        await session.save({"coins": 75})
        assert session.data == {"coins": 75}
        assert await backend.peek("Gold", "Player_1") == {"coins": 75}
        assert backend.writes[("Gold", "Player_1")] == 1

    @pytest.mark.asyncio
    async def test_user_ids_survive_next_session(self, backend: InMemoryBackend) -> None:
        session = await backend.start_session("Gold", "Player_1")
        assert session is not None
        session.add_user_id(1)
        session.add_user_id(1)
        await session.save()
        await session.end_session()
        again = await backend.start_session("Gold", "Player_1")
        assert again is not None
        assert again.user_ids == [1]

    @pytest.mark.asyncio
    async def test_end_session_is_idempotent(self, backend: InMemoryBackend) -> None:
        session = await backend.start_session("Gold", "Player_1")
        assert session is not None
        await session.end_session()
        await session.end_session()
        assert backend.session_ends[("Gold", "Player_1")] == 1

    @pytest.mark.asyncio
    async def test_save_after_end_raises(self, backend: InMemoryBackend) -> None:
        session = await backend.start_session("Gold", "Player_1")
        assert session is not None
        await session.end_session()
        with pytest.raises(SessionEndedError):
            await session.save({"coins": 1})


# ---------------------------------------------------------------------------
# Revocation
# ---------------------------------------------------------------------------


class TestInMemoryRevoke:
    @pytest.mark.asyncio
    async def test_revoke_forces_session_end(self, backend: InMemoryBackend) -> None:
        session = await backend.start_session("Gold", "Player_1")
        assert session is not None
        ended: list[bool] = []
        session.on_session_end(lambda _session, forced: ended.append(forced))
        assert await backend.revoke("Gold", "Player_1") is True
        assert not session.active
        assert session.forced_end
        assert ended == [True]

    @pytest.mark.asyncio
    async def test_revoke_without_lease_returns_false(self, backend: InMemoryBackend) -> None:
        assert await backend.revoke("Gold", "Player_1") is False

    @pytest.mark.asyncio
    async def test_callback_registered_after_end_runs_immediately(
        self, backend: InMemoryBackend
    ) -> None:
        session = await backend.start_session("Gold", "Player_1")
        assert session is not None
        await session.end_session()
        ended: list[bool] = []
        session.on_session_end(lambda _session, forced: ended.append(forced))
        assert ended == [False]


# ---------------------------------------------------------------------------
# Sorted values
# ---------------------------------------------------------------------------


class TestInMemorySorted:
    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, backend: InMemoryBackend) -> None:
        assert await backend.get("Kills", "Player_1") is None

    @pytest.mark.asyncio
    async def test_set_then_get(self, backend: InMemoryBackend) -> None:
        await backend.set("Kills", "Player_1", 3)
        assert await backend.get("Kills", "Player_1") == 3

    @pytest.mark.asyncio
    async def test_descending_order_and_bounds(self) -> None:
        backend = InMemoryBackend(
            scores={"Kills": {"Player_1": 5, "Player_2": 9, "Player_3": 1, "Player_4": 500}}
        )
        pages = await backend.get_sorted("Kills", False, 10, 0, 100)
        assert pages.current_page() == [
            SortedEntry("Player_2", 9),
            SortedEntry("Player_1", 5),
            SortedEntry("Player_3", 1),
        ]
        assert pages.is_finished

    @pytest.mark.asyncio
    async def test_pages_fetched_in_order(self) -> None:
        backend = InMemoryBackend(scores={"Kills": {f"Player_{i}": i for i in range(25)}})
        pages = await backend.get_sorted("Kills", True, 10, 0, 100)
        seen = [[entry.value for entry in page] async for page in pages]
        assert [len(page) for page in seen] == [10, 10, 5]
        assert seen[0][0] == 0
        assert seen[-1][-1] == 24
        assert pages.is_finished
        assert await pages.advance() is False

    @pytest.mark.asyncio
    async def test_clear(self, backend: InMemoryBackend) -> None:
        await backend.set("Kills", "Player_1", 3)
        await backend.clear()
        assert await backend.get("Kills", "Player_1") is None
        assert await backend.peek("Gold", "Player_1") is None


# ---------------------------------------------------------------------------
# Lease keepalive
# ---------------------------------------------------------------------------


class ExpiringSession(DocumentSession):
    """Session whose lease renewal reports the lease as lost."""

    def __init__(self, renewed: bool) -> None:
        super().__init__("Gold", "Player_1", renew_interval=0.01)
        self.renewed = renewed
        self.renewals = 0

    async def _write(self, document: dict[str, Any]) -> bool:
        return True

    async def _release(self) -> None:
        return None

    async def _renew(self) -> bool:
        self.renewals += 1
        return self.renewed


class TestKeepalive:
    @pytest.mark.asyncio
    async def test_lost_lease_forces_end(self) -> None:
        session = ExpiringSession(renewed=False)
        ended: list[bool] = []
        session.on_session_end(lambda _session, forced: ended.append(forced))
        session.start_keepalive()
        await asyncio.sleep(0.05)
        assert not session.active
        assert session.forced_end
        assert ended == [True]

    @pytest.mark.asyncio
    async def test_renewed_lease_keeps_session(self) -> None:
        session = ExpiringSession(renewed=True)
        session.start_keepalive()
        await asyncio.sleep(0.05)
        assert session.active
        assert session.renewals >= 1
        await session.end_session()
        assert not session.forced_end
