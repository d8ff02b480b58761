"""Bounded retry with a fixed delay.

Every backend call that is not already scoped to a live session goes through
:func:`execute`.  Errors are not classified: any ``Exception`` counts as a
failed attempt, and the caller decides what an exhausted budget means for its
operation.

Classes
-------
- RetryPolicy   — attempt budget and delay, attached per call site
- RetryOutcome  — result of :func:`execute`
"""
from __future__ import annotations

import asyncio
import logging
import traceback
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from pydantic import BaseModel, Field

from player_data_store.errors import BackendUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Attempt budget for one call site.

    Parameters
    ----------
    max_attempts:
        Total number of invocations allowed, including the first.
    delay:
        Seconds to sleep between a failed attempt and the next one.
    """

    max_attempts: int = Field(default=10, ge=1)
    delay: float = Field(default=3.0, ge=0.0)

    model_config = {"frozen": True}


@dataclass
class RetryOutcome(Generic[T]):
    """What happened when an operation was run under a ``RetryPolicy``.

    Parameters
    ----------
    success:
        True when some attempt returned normally.
    result:
        Return value of the successful attempt, otherwise None.
    attempts:
        Number of times the operation was invoked.
    error:
        Message of the last failure (empty on success).
    traceback:
        Formatted traceback of the last failure (empty on success).
    """

    success: bool
    result: T | None
    attempts: int
    error: str = ""
    traceback: str = ""

    def unwrap(self, operation: str = "operation") -> T | None:
        """Return ``result`` or raise ``BackendUnavailableError`` on failure."""
        if not self.success:
            raise BackendUnavailableError(operation, self.attempts, self.error)
        return self.result


async def execute(
    policy: RetryPolicy,
    operation: Callable[..., Awaitable[T]],
    *args: Any,
    description: str | None = None,
) -> RetryOutcome[T]:
    """Await ``operation(*args)`` until it succeeds or the budget runs out.

    Parameters
    ----------
    policy:
        Attempt budget and delay for this call.
    operation:
        Coroutine function to invoke.  It is called afresh on every attempt.
    *args:
        Positional arguments passed to ``operation``.
    description:
        Label used in log messages.  Defaults to the operation's name.

    Returns
    -------
    RetryOutcome
        ``success`` is False only after ``policy.max_attempts`` failures.
    """
    label = description or getattr(operation, "__qualname__", repr(operation))
    last_error = ""
    last_traceback = ""

    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = await operation(*args)
        except Exception as exc:  # noqa: BLE001
            last_error = f"{type(exc).__name__}: {exc}"
            last_traceback = traceback.format_exc()
            logger.warning(
                "%s: attempt %d of %d failed: %s",
                label,
                attempt,
                policy.max_attempts,
                last_error,
            )
            logger.debug("%s: traceback of attempt %d:\n%s", label, attempt, last_traceback)
            if attempt < policy.max_attempts and policy.delay > 0:
                await asyncio.sleep(policy.delay)
            continue
        return RetryOutcome(success=True, result=result, attempts=attempt)

    return RetryOutcome(
        success=False,
        result=None,
        attempts=policy.max_attempts,
        error=last_error,
        traceback=last_traceback,
    )


__all__ = ["RetryOutcome", "RetryPolicy", "execute"]
