"""Per-client autosave loop and disconnect hook.

State machine per attached record::

    IDLE ──start(interval > 0)──▶ SCHEDULED ──disconnect──▶ STOPPING ──▶ STOPPED
      └───────────────disconnect──────────────────────────────▲
    any ──stop()──────────────────────────────────────────────┘

The periodic task and the disconnect hook share one ``save`` callable that
the record handle serialises with a per-client lock.  On disconnect the hook
never interrupts a running periodic save: it cancels the timer only while it
sleeps, otherwise waits for the tick to finish, then performs the single
final ``save(end_session=True)``.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable

from player_data_store.client import ClientConnection
from player_data_store.errors import UsageError

logger = logging.getLogger(__name__)

SaveCallable = Callable[[bool], Awaitable[bool]]


class AutosaveState(str, Enum):
    """Lifecycle states of an ``AutosaveScheduler``."""

    IDLE = "idle"
    SCHEDULED = "scheduled"
    STOPPING = "stopping"
    STOPPED = "stopped"


class AutosaveScheduler:
    """Periodic saves for one client plus a final save on disconnect.

    Parameters
    ----------
    client:
        The connection whose disconnect signal ends the schedule.
    save:
        ``save(end_session)`` persists the client's working representation
        and returns False on failure.
    interval:
        Seconds between periodic saves.  ``None`` or ``0`` creates no timer;
        the disconnect hook is installed either way.
    label:
        Name used in log messages.
    """

    def __init__(
        self,
        client: ClientConnection,
        save: SaveCallable,
        interval: float | None = None,
        label: str = "",
    ) -> None:
        self._client = client
        self._save = save
        self.interval = interval
        self.label = label or client.name
        self.state = AutosaveState.IDLE
        self.periodic_saves = 0
        self._timer: asyncio.Task[None] | None = None
        self._final: asyncio.Task[None] | None = None
        self._saving = False
        self._stopped = asyncio.Event()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Install the disconnect hook and, with an interval, the timer.

        Raises
        ------
        UsageError
            If the scheduler was already started.
        """
        if self.state is not AutosaveState.IDLE or self._stopped.is_set():
            raise UsageError(f"Autosave for {self.label} was already started.")
        if self.interval:
            if self.interval < 0:
                raise UsageError(f"Autosave interval must be positive, got {self.interval!r}.")
            self.state = AutosaveState.SCHEDULED
            self._timer = asyncio.get_running_loop().create_task(self._run(self.interval))
        self._client.on_disconnect(self._on_disconnect)

    def stop(self) -> None:
        """Stop without a final save (used when the session was revoked)."""
        if self.state is AutosaveState.STOPPED:
            return
        self.state = AutosaveState.STOPPED
        if self._timer is not None and not self._saving:
            self._timer.cancel()
        self._stopped.set()

    async def wait_stopped(self) -> None:
        """Wait until the scheduler reaches ``STOPPED``."""
        await self._stopped.wait()
        if self._final is not None:
            await asyncio.wait({self._final})

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(self, interval: float) -> None:
        while self._client.connected and self.state is AutosaveState.SCHEDULED:
            await asyncio.sleep(interval)
            if not self._client.connected or self.state is not AutosaveState.SCHEDULED:
                return
            self._saving = True
            try:
                saved = await self._save(False)
            except Exception as exc:  # noqa: BLE001
                logger.error("Autosave for %s raised: %s", self.label, exc)
                saved = False
            finally:
                self._saving = False
            self.periodic_saves += 1
            if not saved:
                logger.warning("Autosave for %s failed; will retry next cycle.", self.label)

    def _on_disconnect(self, _client: ClientConnection) -> None:
        if self.state in (AutosaveState.STOPPING, AutosaveState.STOPPED):
            return
        self.state = AutosaveState.STOPPING
        if self._timer is not None and not self._saving:
            self._timer.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error(
                "Final save for %s skipped: client disconnected outside the event loop.",
                self.label,
            )
            self.state = AutosaveState.STOPPED
            self._stopped.set()
            return
        self._final = loop.create_task(self._finish())

    async def _finish(self) -> None:
        try:
            if self._timer is not None:
                await asyncio.wait({self._timer})
            try:
                saved = await self._save(True)
            except Exception as exc:  # noqa: BLE001
                logger.error("Final save for %s raised: %s", self.label, exc)
                saved = False
            if not saved:
                logger.error(
                    "Final save for %s failed; changes since the last save are lost.",
                    self.label,
                )
        finally:
            self.state = AutosaveState.STOPPED
            self._stopped.set()

    def __repr__(self) -> str:
        return f"AutosaveScheduler(label={self.label!r}, state={self.state.value!r})"


__all__ = ["AutosaveScheduler", "AutosaveState", "SaveCallable"]
