"""Backend key derivation for per-client records.

The key format is load-bearing: records saved under one format are invisible
under another, so it should only ever change together with a data migration.
"""
from __future__ import annotations

from player_data_store.errors import UsageError

DEFAULT_KEY_FORMAT = "Player_{client_id}"

_PLACEHOLDER = "{client_id}"


def _check_format(key_format: str) -> tuple[str, str]:
    if key_format.count(_PLACEHOLDER) != 1:
        raise UsageError(
            f"Key format {key_format!r} must contain exactly one {_PLACEHOLDER} placeholder."
        )
    prefix, suffix = key_format.split(_PLACEHOLDER)
    return prefix, suffix


def client_key(client_id: int, key_format: str = DEFAULT_KEY_FORMAT) -> str:
    """Return the backend key for ``client_id``.

    Raises
    ------
    UsageError
        If ``client_id`` is not an integer or the format is malformed.
    """
    if isinstance(client_id, bool) or not isinstance(client_id, int):
        raise UsageError(f"Client id must be an integer, got {client_id!r}.")
    _check_format(key_format)
    return key_format.format(client_id=client_id)


def parse_client_key(key: str, key_format: str = DEFAULT_KEY_FORMAT) -> int:
    """Recover the client id from a key produced by :func:`client_key`.

    Raises
    ------
    UsageError
        If ``key`` does not match ``key_format``.
    """
    prefix, suffix = _check_format(key_format)
    end = len(key) - len(suffix)
    if not key.startswith(prefix) or not key.endswith(suffix) or end <= len(prefix):
        raise UsageError(f"Key {key!r} does not match format {key_format!r}.")
    try:
        return int(key[len(prefix):end])
    except ValueError:
        raise UsageError(f"Key {key!r} does not match format {key_format!r}.") from None


__all__ = ["DEFAULT_KEY_FORMAT", "client_key", "parse_client_key"]
