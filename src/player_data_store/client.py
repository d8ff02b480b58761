"""Connected-client context.

``ClientConnection`` is the application's view of one connected client: its
numeric identity, a liveness flag with a single-delivery disconnect signal,
and the per-record state the record handles attach to it.  Ownership of that
state lives here rather than in module-level tables, so it disappears with
the connection.

Classes
-------
- ClientConnection  — identity, liveness and attached records of one client
- NumericValue      — mutable holder used as the target of sorted records
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

DisconnectListener = Callable[["ClientConnection"], None]


@dataclass
class NumericValue:
    """Working representation of a sorted record: a single number."""

    value: float | int = 0


class ClientConnection:
    """One connected client.

    Parameters
    ----------
    client_id:
        Numeric identity; record keys are derived from it.
    name:
        Display name used in log messages.  Defaults to the id.
    """

    def __init__(self, client_id: int, name: str | None = None) -> None:
        self.client_id = client_id
        self.name = name or str(client_id)
        self.kick_reason: str | None = None
        self.records: dict[str, Any] = {}
        self._connected = True
        self._listeners: list[DisconnectListener] = []

    @property
    def connected(self) -> bool:
        """True until :meth:`disconnect` (or :meth:`kick`) is called."""
        return self._connected

    def on_disconnect(self, listener: DisconnectListener) -> None:
        """Call ``listener(client)`` once when the client disconnects.

        A listener registered after the disconnect runs immediately.
        """
        if not self._connected:
            listener(self)
            return
        self._listeners.append(listener)

    def disconnect(self) -> None:
        """Mark the client as gone and notify listeners exactly once.

        Call it from the event loop running the attached records; their
        autosave hooks schedule the final save on that loop.  A listener that
        raises is logged and does not stop the remaining ones.
        """
        if not self._connected:
            return
        self._connected = False
        logger.debug("Client %s disconnected.", self.name)
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            try:
                listener(self)
            except Exception:  # noqa: BLE001
                logger.exception("Disconnect listener for client %s failed.", self.name)

    def kick(self, reason: str) -> None:
        """Disconnect the client, recording ``reason`` for the application."""
        if not self._connected:
            return
        logger.info("Kicking client %s: %s", self.name, reason)
        self.kick_reason = reason
        self.disconnect()

    def __repr__(self) -> str:
        state = "connected" if self._connected else "disconnected"
        return f"ClientConnection(client_id={self.client_id!r}, {state})"


__all__ = ["ClientConnection", "DisconnectListener", "NumericValue"]
