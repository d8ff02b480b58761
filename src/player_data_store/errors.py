"""Exception hierarchy for player-data-store.

Every failure that leaves the package is one of the classes below; backend
exceptions are either retried (see ``reliability.retry``) or classified into
one of these before they reach a caller.

Classes
-------
- PlayerDataError          — base class for all package errors
- UsageError               — caller misuse; fatal and never retried
- SessionDeniedError       — no document session could be obtained
- BackendUnavailableError  — a retried backend call ran out of attempts
- SessionEndedError        — write attempted against an ended lease
"""
from __future__ import annotations


class PlayerDataError(Exception):
    """Base class for all errors raised by player-data-store."""


class UsageError(PlayerDataError, ValueError):
    """Raised for invalid arguments or an operation on the wrong record kind."""


class SessionDeniedError(PlayerDataError):
    """Raised when the backend refuses (or never grants) a document session.

    Parameters
    ----------
    key:
        Backend key of the document that could not be leased.
    reason:
        Human-readable explanation, also used as the kick message.
    """

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Session for {key!r} denied: {reason}")


class BackendUnavailableError(PlayerDataError):
    """Raised when a retried backend operation exhausts its attempt budget.

    Parameters
    ----------
    operation:
        Description of the operation that failed.
    attempts:
        Number of attempts made.
    cause:
        Message of the last failure.
    """

    def __init__(self, operation: str, attempts: int, cause: str) -> None:
        self.operation = operation
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {cause}"
        )


class SessionEndedError(PlayerDataError):
    """Raised by a backend session when it is written to after it ended."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Session for {key!r} has already ended.")


__all__ = [
    "BackendUnavailableError",
    "PlayerDataError",
    "SessionDeniedError",
    "SessionEndedError",
    "UsageError",
]
