"""Shortcuts for wiring several sorted records at once.

Applications often keep a small set of per-client counters (kills, wins,
playtime) that should each be ranked.  These helpers create one sorted store
per counter and attach all of them to a client in one call.
"""
from __future__ import annotations

from typing import Mapping

from player_data_store.client import ClientConnection, NumericValue
from player_data_store.errors import UsageError
from player_data_store.records.handle import RecordKind, SortedRecordHandle
from player_data_store.service import PlayerDataService

SORTED_STORE_SUFFIX = "_Data"


def sorted_records_for(
    service: PlayerDataService,
    values: Mapping[str, float | int],
) -> dict[str, SortedRecordHandle]:
    """Return one sorted handle per counter in ``values``.

    Each store is named ``<counter>_Data``.
    """
    handles: dict[str, SortedRecordHandle] = {}
    for name in values:
        handle = service.get_data_store(f"{name}{SORTED_STORE_SUFFIX}", RecordKind.SORTED_NUMERIC)
        if not isinstance(handle, SortedRecordHandle):
            raise UsageError(f"Store {handle.name!r} is not a sorted numeric store.")
        handles[name] = handle
    return handles


async def attach_sorted_records(
    client: ClientConnection,
    handles: Mapping[str, SortedRecordHandle],
    values: Mapping[str, float | int],
    autosave_interval: float | None = None,
) -> dict[str, NumericValue]:
    """Attach every handle to ``client`` with its own ``NumericValue``.

    ``values`` supplies the starting value of each counter; the stored value
    replaces it once loaded.

    Returns
    -------
    dict[str, NumericValue]
        The client's working values keyed by counter name.
    """
    working: dict[str, NumericValue] = {}
    for name, handle in handles.items():
        target = NumericValue(values.get(name, 0))
        await handle.attach_client(client, target, autosave_interval)
        working[name] = target
    return working


__all__ = ["SORTED_STORE_SUFFIX", "attach_sorted_records", "sorted_records_for"]
