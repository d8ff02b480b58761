"""Periodic leaderboard refresh over a sorted record.

``LeaderboardPoller`` fetches the first page of a sorted store on an interval
and hands ranked rows to a callback.  Rendering is the callback's business.
A fetch that fails after its retries only skips that cycle.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from player_data_store.errors import UsageError
from player_data_store.keys import DEFAULT_KEY_FORMAT, parse_client_key
from player_data_store.records.handle import RecordHandle, RecordKind
from player_data_store.storage.base import SortedEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankedEntry:
    """One leaderboard row."""

    rank: int
    client_id: int
    value: float | int


def rank_entries(
    entries: list[SortedEntry],
    key_format: str = DEFAULT_KEY_FORMAT,
    start: int = 1,
) -> list[RankedEntry]:
    """Number ``entries`` from ``start`` and decode their client ids.

    Entries whose key does not match ``key_format`` are skipped.
    """
    ranked: list[RankedEntry] = []
    rank = start
    for entry in entries:
        try:
            client_id = parse_client_key(entry.key, key_format)
        except UsageError:
            logger.debug("Skipping foreign key %r in leaderboard.", entry.key)
            continue
        ranked.append(RankedEntry(rank=rank, client_id=client_id, value=entry.value))
        rank += 1
    return ranked


class LeaderboardPoller:
    """Refresh a ranking from a sorted record every ``interval`` seconds.

    Parameters
    ----------
    handle:
        A sorted record handle.
    on_update:
        Called with the ranked first page after every successful fetch.
    interval:
        Seconds between refreshes.
    page_size:
        Rows per refresh.
    ascending:
        Rank lowest values first when True.
    min_value / max_value:
        Value bounds; the store defaults apply when omitted.
    """

    def __init__(
        self,
        handle: RecordHandle,
        on_update: Callable[[list[RankedEntry]], None],
        interval: float = 300.0,
        page_size: int = 10,
        ascending: bool = False,
        min_value: float | None = None,
        max_value: float | None = None,
    ) -> None:
        if not handle.is_a(RecordKind.SORTED_NUMERIC):
            raise UsageError(f"Leaderboards need a sorted record, got {handle!r}.")
        if interval <= 0:
            raise UsageError(f"Leaderboard interval must be positive, got {interval!r}.")
        self._handle = handle
        self._on_update = on_update
        self.interval = interval
        self.page_size = page_size
        self.ascending = ascending
        self.min_value = min_value
        self.max_value = max_value
        self._task: asyncio.Task[None] | None = None

    async def refresh(self) -> list[RankedEntry] | None:
        """Fetch and publish one ranking; return None if the fetch failed."""
        pages = await self._handle.get_sorted_range(
            self.ascending, self.page_size, self.min_value, self.max_value
        )
        if pages is None:
            logger.warning("Leaderboard for %r not updated this cycle.", self._handle.name)
            return None
        ranked = rank_entries(pages.current_page(), self._handle.config.key_format)
        self._on_update(ranked)
        return ranked

    async def _run(self) -> None:
        while True:
            await self.refresh()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        """Start refreshing in the background."""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        """Stop refreshing and wait for the task to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.wait({task})


__all__ = ["LeaderboardPoller", "RankedEntry", "rank_entries"]
