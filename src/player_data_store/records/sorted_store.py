"""Sorted numeric store used for rankings.

A thin facade over a ``SortedBackend``: one number per client key plus
paginated range queries.  Every backend call runs under the store's
``RetryPolicy``.
"""
from __future__ import annotations

import logging
import math

from player_data_store.errors import UsageError
from player_data_store.reliability.retry import RetryPolicy, execute
from player_data_store.storage.base import SortedBackend, SortedPages

logger = logging.getLogger(__name__)

DEFAULT_VALUE = 0


def is_number(value: object) -> bool:
    """Return True for finite ints and floats (``bool`` excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


class SortedStore:
    """Numeric values per client, queryable in value order.

    Parameters
    ----------
    name:
        Store name; namespaces the values inside the backend.
    backend:
        Sorted backend holding the values.
    policy:
        Retry policy for every backend call.
    default_min / default_max:
        Bounds used by :meth:`get_sorted_range` when none are given.
    """

    def __init__(
        self,
        name: str,
        backend: SortedBackend,
        policy: RetryPolicy | None = None,
        default_min: float = 0,
        default_max: float = 100,
    ) -> None:
        self.name = name
        self._backend = backend
        self.policy = policy or RetryPolicy()
        self.default_min = default_min
        self.default_max = default_max

    async def get(self, client_key: str) -> float | int:
        """Return the value for ``client_key``, or ``0`` if none is stored.

        Raises
        ------
        BackendUnavailableError
            If every attempt failed.
        """
        outcome = await execute(
            self.policy,
            self._backend.get,
            self.name,
            client_key,
            description=f"get {client_key!r} from {self.name!r}",
        )
        if not outcome.success:
            logger.warning(
                "Store %r: reading %r failed after %d attempt(s): %s",
                self.name,
                client_key,
                outcome.attempts,
                outcome.error,
            )
        value = outcome.unwrap(f"get {client_key!r} from {self.name!r}")
        return DEFAULT_VALUE if value is None else value

    async def set(self, client_key: str, value: float | int) -> bool:
        """Store ``value`` for ``client_key``.

        Returns
        -------
        bool
            False if every attempt failed.

        Raises
        ------
        UsageError
            If ``value`` is not a finite number.
        """
        if not is_number(value):
            raise UsageError(
                f"Cannot save non-numeric value {value!r} to sorted store {self.name!r}."
            )
        outcome = await execute(
            self.policy,
            self._backend.set,
            self.name,
            client_key,
            value,
            description=f"set {client_key!r} in {self.name!r}",
        )
        if not outcome.success:
            logger.warning(
                "Store %r: writing %r failed after %d attempt(s): %s",
                self.name,
                client_key,
                outcome.attempts,
                outcome.error,
            )
            return False
        logger.debug("Store %r: set %r to %r", self.name, client_key, value)
        return True

    async def get_sorted_range(
        self,
        ascending: bool,
        page_size: int,
        min_value: float | None = None,
        max_value: float | None = None,
    ) -> SortedPages | None:
        """Return the first page of entries ordered by value.

        Later pages are fetched on demand with ``SortedPages.advance``, one
        round trip each, under the same retry policy.

        Returns
        -------
        SortedPages | None
            None if the first page could not be fetched.

        Raises
        ------
        UsageError
            If ``page_size`` is not a positive integer or a bound is not a
            number.
        """
        if isinstance(page_size, bool) or not isinstance(page_size, int) or page_size < 1:
            raise UsageError(f"page_size must be a positive integer, got {page_size!r}.")
        for bound in (min_value, max_value):
            if bound is not None and not is_number(bound):
                raise UsageError(f"Range bound {bound!r} is not a number.")
        low = self.default_min if min_value is None else min_value
        high = self.default_max if max_value is None else max_value
        outcome = await execute(
            self.policy,
            self._backend.get_sorted,
            self.name,
            bool(ascending),
            page_size,
            low,
            high,
            description=f"sorted range of {self.name!r}",
        )
        if not outcome.success:
            logger.warning(
                "Store %r: sorted range failed after %d attempt(s): %s",
                self.name,
                outcome.attempts,
                outcome.error,
            )
            return None
        pages = outcome.result
        if pages is not None:
            pages.policy = self.policy
        return pages

    def __repr__(self) -> str:
        return f"SortedStore(name={self.name!r})"


__all__ = ["DEFAULT_VALUE", "SortedStore", "is_number"]
