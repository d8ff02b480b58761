#!/usr/bin/env python3
"""Example: Storage Backends

Demonstrates the session lock on the in-memory and SQLite backends: a
second server asking for a client's document while the first one holds it
is denied, and gets it once the first server has released it.

Usage:
    python examples/02_storage_backends.py

Requirements:
    pip install player-data-store
"""
from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path

import player_data_store
from player_data_store import (
    ClientConnection,
    DocumentBackend,
    InMemoryBackend,
    PlayerDataService,
    RecordKind,
    SessionDeniedError,
    SQLiteBackend,
)

SCHEMA = {"coins": 0, "level": 1}


async def demo_backend(label: str, first: DocumentBackend, second: DocumentBackend) -> None:
    server_a = PlayerDataService(first).get_data_store("Gold", RecordKind.DOCUMENT, SCHEMA)
    server_b = PlayerDataService(second).get_data_store("Gold", RecordKind.DOCUMENT, SCHEMA)

    on_a = ClientConnection(7)
    working = await server_a.attach_client(on_a)
    working["coins"] = 120

    on_b = ClientConnection(7)
    try:
        await server_b.attach_client(on_b)
    except SessionDeniedError as exc:
        print(f"  [{label}] second server denied: {on_b.kick_reason!r} ({exc.key})")

    scheduler = server_a.attachment(on_a).scheduler
    on_a.disconnect()
    await scheduler.wait_stopped()

    retry = ClientConnection(7)
    loaded = await server_b.attach_client(retry)
    print(f"  [{label}] second server after release: {loaded}")
    await server_b.save(retry, loaded, end_session=True)


async def main() -> None:
    print(f"player-data-store version: {player_data_store.__version__}")

    print("\nIn-memory backend:")
    shared = InMemoryBackend()
    await demo_backend("memory", shared, shared)

    print("\nSQLite backend:")
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "records.db"
        await demo_backend(
            "sqlite",
            SQLiteBackend(db_path=db_path, acquire_timeout=0.5),
            SQLiteBackend(db_path=db_path, acquire_timeout=0.5),
        )
        print(f"  DB size: {db_path.stat().st_size} bytes")


if __name__ == "__main__":
    asyncio.run(main())
