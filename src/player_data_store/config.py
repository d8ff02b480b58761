"""Service configuration.

``StoreConfig`` holds every tunable of the package.  It can be built in code
or loaded from a YAML file with :func:`load_config`::

    key_format: "Player_{client_id}"
    max_retries: 5
    retry_delay: 1.5
    autosave_interval: 120

Unknown keys are rejected so that typos surface at startup.
"""
from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from player_data_store.errors import UsageError
from player_data_store.keys import DEFAULT_KEY_FORMAT, client_key
from player_data_store.reliability.retry import RetryPolicy


class StoreConfig(BaseModel):
    """Tunables shared by every record handle of a service.

    Parameters
    ----------
    key_format:
        Template for per-client backend keys; must contain ``{client_id}``.
    max_retries:
        Attempt budget for retried backend calls.
    retry_delay:
        Seconds to wait between failed attempts.
    autosave_interval:
        Default autosave period in seconds.  ``None`` or ``0`` disables the
        periodic timer.
    acquire_timeout:
        Seconds a document backend keeps trying to obtain a lease before it
        denies the session.
    lease_ttl:
        Lifetime of a lease in backends that expire them.  Leases are renewed
        while the session is active.
    sorted_min / sorted_max:
        Default value bounds for sorted range queries.
    """

    key_format: str = DEFAULT_KEY_FORMAT
    max_retries: int = Field(default=10, ge=1)
    retry_delay: float = Field(default=3.0, ge=0.0)
    autosave_interval: float | None = Field(default=None, ge=0.0)
    acquire_timeout: float = Field(default=10.0, ge=0.0)
    lease_ttl: float = Field(default=30.0, gt=0.0)
    sorted_min: float = 0
    sorted_max: float = 100

    model_config = {"extra": "forbid", "frozen": True}

    @model_validator(mode="after")
    def _check(self) -> StoreConfig:
        client_key(0, self.key_format)
        if self.sorted_min > self.sorted_max:
            raise ValueError("sorted_min must not exceed sorted_max")
        return self

    def retry_policy(self) -> RetryPolicy:
        """Return the default ``RetryPolicy`` described by this config."""
        return RetryPolicy(max_attempts=self.max_retries, delay=self.retry_delay)


def load_config(path: str | Path) -> StoreConfig:
    """Read a ``StoreConfig`` from a YAML file.

    An empty file yields the defaults.

    Raises
    ------
    UsageError
        If the file is not a YAML mapping or fails validation.
    """
    raw = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise UsageError(f"Config file {str(path)!r} must contain a mapping.")
    try:
        return StoreConfig.model_validate(raw)
    except ValidationError as exc:
        raise UsageError(f"Invalid config file {str(path)!r}: {exc}") from exc


__all__ = ["StoreConfig", "load_config"]
