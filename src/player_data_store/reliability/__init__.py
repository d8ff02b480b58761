"""Retry support for backend calls."""
from __future__ import annotations

from player_data_store.reliability.retry import RetryOutcome, RetryPolicy, execute

__all__ = ["RetryOutcome", "RetryPolicy", "execute"]
