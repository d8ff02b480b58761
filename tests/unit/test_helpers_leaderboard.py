"""Unit tests for player_data_store.helpers and player_data_store.leaderboard."""
from __future__ import annotations

import asyncio

import pytest

from player_data_store.client import ClientConnection
from player_data_store.config import StoreConfig
from player_data_store.errors import UsageError
from player_data_store.helpers import attach_sorted_records, sorted_records_for
from player_data_store.leaderboard import LeaderboardPoller, RankedEntry, rank_entries
from player_data_store.records.handle import RecordKind
from player_data_store.service import PlayerDataService
from player_data_store.storage.base import SortedEntry
from player_data_store.storage.memory import InMemoryBackend


@pytest.fixture()
def backend() -> InMemoryBackend:
    return InMemoryBackend(scores={"Kills_Data": {"Player_1": 3}})


@pytest.fixture()
def service(backend: InMemoryBackend) -> PlayerDataService:
    return PlayerDataService(backend, StoreConfig(retry_delay=0))


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


class TestSortedHelpers:
    def test_one_store_per_counter(self, service: PlayerDataService) -> None:
        handles = sorted_records_for(service, {"Kills": 0, "Wins": 0})
        assert set(handles) == {"Kills", "Wins"}
        assert handles["Kills"].name == "Kills_Data"
        assert handles["Wins"].is_a(RecordKind.SORTED_NUMERIC)

    @pytest.mark.asyncio
    async def test_attach_all(self, service: PlayerDataService) -> None:
        client = ClientConnection(1)
        handles = sorted_records_for(service, {"Kills": 0, "Wins": 5})
        values = await attach_sorted_records(client, handles, {"Kills": 0, "Wins": 5})
        assert values["Kills"].value == 3
        assert values["Wins"].value == 0
        assert set(client.records) == {"Kills_Data", "Wins_Data"}

    @pytest.mark.asyncio
    async def test_values_saved_on_disconnect(self, service: PlayerDataService) -> None:
        client = ClientConnection(1)
        handles = sorted_records_for(service, {"Kills": 0})
        values = await attach_sorted_records(client, handles, {"Kills": 0})
        scheduler = client.records["Kills_Data"].scheduler
        values["Kills"].value = 10
        client.disconnect()
        await scheduler.wait_stopped()
        assert await handles["Kills"].get(client) == 10


# ---------------------------------------------------------------------------
# rank_entries
# ---------------------------------------------------------------------------


class TestRankEntries:
    def test_ranks_from_one(self) -> None:
        entries = [SortedEntry("Player_9", 7), SortedEntry("Player_2", 5)]
        assert rank_entries(entries) == [RankedEntry(1, 9, 7), RankedEntry(2, 2, 5)]

    def test_foreign_keys_skipped(self) -> None:
        entries = [SortedEntry("Bot_1", 9), SortedEntry("Player_4", 5)]
        assert rank_entries(entries, start=11) == [RankedEntry(11, 4, 5)]


# ---------------------------------------------------------------------------
# LeaderboardPoller
# ---------------------------------------------------------------------------


class TestLeaderboardPoller:
    def test_requires_sorted_handle(self, service: PlayerDataService) -> None:
        gold = service.get_data_store("Gold", RecordKind.DOCUMENT, {"coins": 0})
        with pytest.raises(UsageError, match="sorted record"):
            LeaderboardPoller(gold, lambda rows: None)

    def test_requires_positive_interval(self, service: PlayerDataService) -> None:
        kills = service.get_data_store("Kills_Data", RecordKind.SORTED_NUMERIC)
        with pytest.raises(UsageError):
            LeaderboardPoller(kills, lambda rows: None, interval=0)

    @pytest.mark.asyncio
    async def test_refresh_publishes_ranking(
        self, service: PlayerDataService, backend: InMemoryBackend
    ) -> None:
        await backend.set("Kills_Data", "Player_9", 7)
        kills = service.get_data_store("Kills_Data", RecordKind.SORTED_NUMERIC)
        published: list[list[RankedEntry]] = []
        poller = LeaderboardPoller(kills, published.append)
        rows = await poller.refresh()
        assert rows == [RankedEntry(1, 9, 7), RankedEntry(2, 1, 3)]
        assert published == [rows]

    @pytest.mark.asyncio
    async def test_start_and_stop(self, service: PlayerDataService) -> None:
        kills = service.get_data_store("Kills_Data", RecordKind.SORTED_NUMERIC)
        updated = asyncio.Event()
        poller = LeaderboardPoller(kills, lambda rows: updated.set(), interval=0.01)
        poller.start()
        await asyncio.wait_for(updated.wait(), timeout=1)
        await poller.stop()
        await poller.stop()
