"""Runtime configuration, read from environment variables."""

import os
from dataclasses import dataclass
from typing import Mapping, Self

from matchsync.core.exceptions import ConfigError

ENV_PREFIX = "MATCHSYNC_"

DEFAULT_API_BASE = "http://localhost:8080"
DEFAULT_RECONNECT_DELAY_SECONDS = 3.0
DEFAULT_PENDING_MOVE_TIMEOUT_SECONDS = 8.0
DEFAULT_MATCHMAKING_POLL_SECONDS = 2.5
DEFAULT_HTTP_TIMEOUT_SECONDS = 10.0
DEFAULT_DATABASE_URL = "sqlite:///matchsync.db"

# Fixed backoff for the realtime channel
RECONNECT_DELAY_BOUNDS = (3.0, 5.0)


@dataclass(frozen=True)
class SyncConfig:
    api_base: str = DEFAULT_API_BASE
    reconnect_delay_seconds: float = DEFAULT_RECONNECT_DELAY_SECONDS
    pending_move_timeout_seconds: float = DEFAULT_PENDING_MOVE_TIMEOUT_SECONDS
    matchmaking_poll_seconds: float = DEFAULT_MATCHMAKING_POLL_SECONDS
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    database_url: str = DEFAULT_DATABASE_URL

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Self:
        """
        Build the configuration from MATCHSYNC_* variables, falling back to the defaults.
        ----

        Raises ConfigError for values that cannot be parsed, or a reconnect delay outside of 3-5 seconds.
        """
        env = os.environ if environ is None else environ

        reconnect_delay = _read_seconds(
            env, "RECONNECT_DELAY_SECONDS", DEFAULT_RECONNECT_DELAY_SECONDS
        )
        low, high = RECONNECT_DELAY_BOUNDS
        if not (low <= reconnect_delay <= high):
            raise ConfigError(
                f"{ENV_PREFIX}RECONNECT_DELAY_SECONDS must be between {low} and {high}, got {reconnect_delay}"
            )

        return cls(
            api_base=env.get(f"{ENV_PREFIX}API_BASE", DEFAULT_API_BASE).rstrip("/"),
            reconnect_delay_seconds=reconnect_delay,
            pending_move_timeout_seconds=_read_seconds(
                env,
                "PENDING_MOVE_TIMEOUT_SECONDS",
                DEFAULT_PENDING_MOVE_TIMEOUT_SECONDS,
            ),
            matchmaking_poll_seconds=_read_seconds(
                env, "MATCHMAKING_POLL_SECONDS", DEFAULT_MATCHMAKING_POLL_SECONDS
            ),
            http_timeout_seconds=_read_seconds(
                env, "HTTP_TIMEOUT_SECONDS", DEFAULT_HTTP_TIMEOUT_SECONDS
            ),
            database_url=env.get(f"{ENV_PREFIX}DATABASE_URL", DEFAULT_DATABASE_URL),
        )


def _read_seconds(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(f"{ENV_PREFIX}{name}")
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{ENV_PREFIX}{name} is not a number: {raw!r}") from exc
    if value < 0:
        raise ConfigError(f"{ENV_PREFIX}{name} cannot be negative: {raw!r}")
    return value
