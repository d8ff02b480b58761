#!/usr/bin/env python3
"""Example: Quickstart — player-data-store

Minimal working example: attach a client to a document record and a
sorted record, change its data, disconnect, and read the saved values
back from an in-memory backend.

Usage:
    python examples/01_quickstart.py

Requirements:
    pip install player-data-store
"""
from __future__ import annotations

import asyncio

import player_data_store
from player_data_store import (
    ClientConnection,
    InMemoryBackend,
    NumericValue,
    PlayerDataService,
    RecordKind,
    StoreConfig,
)


async def main() -> None:
    print(f"player-data-store version: {player_data_store.__version__}")

    # Step 1: A service over one backend, with a stored document for client 1
    backend = InMemoryBackend(documents={"Gold": {"Player_1": {"coins": 50}}})
    service = PlayerDataService(backend, StoreConfig(autosave_interval=60))
    gold = service.get_data_store("Gold", RecordKind.DOCUMENT, {"coins": 0, "level": 1})
    kills = service.get_data_store("Kills", RecordKind.SORTED_NUMERIC)

    # Step 2: Attach the client; missing fields come from the schema default
    client = ClientConnection(1, name="alice")
    working = await gold.attach_client(client)
    kill_count = NumericValue()
    await kills.attach_client(client, kill_count)
    print(f"Loaded document: {working}")
    print(f"Loaded kills:    {kill_count.value}")

    # Step 3: Play a little, then leave; the final save runs on disconnect
    working["coins"] += 25
    kill_count.value += 3
    schedulers = [record.scheduler for record in client.records.values()]
    client.disconnect()
    for scheduler in schedulers:
        await scheduler.wait_stopped()

    # Step 4: Read back what was persisted
    print(f"\nSaved document: {await backend.peek('Gold', 'Player_1')}")
    pages = await kills.get_sorted_range(False, 10)
    if pages is not None:
        for entry in pages.current_page():
            print(f"  {entry.key}: {entry.value} kills")


if __name__ == "__main__":
    asyncio.run(main())
