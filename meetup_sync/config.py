"""Runtime configuration for a meetup sync session."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import voluptuous as vol
from yarl import URL

from .const import (
    CONF_BASE_URL,
    CONF_HYDRATION_CONCURRENCY,
    CONF_HYDRATION_TIMEOUT,
    CONF_MAX_RECONNECT_ATTEMPTS,
    CONF_RECONCILE_INTERVAL,
    CONF_RECONNECT_BASE_DELAY,
    CONF_RECONNECT_MAX_DELAY,
    CONF_REQUEST_TIMEOUT,
    CONF_SNAPSHOT_COOLDOWN,
    CONF_STREAM_CONNECT_TIMEOUT,
    CONF_STREAM_IDLE_TIMEOUT,
    DEFAULT_HYDRATION_CONCURRENCY,
    DEFAULT_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_RECONCILE_INTERVAL,
    DEFAULT_RECONNECT_BASE_DELAY,
    DEFAULT_RECONNECT_MAX_DELAY,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SNAPSHOT_COOLDOWN,
    DEFAULT_STREAM_CONNECT_TIMEOUT,
    DEFAULT_STREAM_IDLE_TIMEOUT,
    MIN_RECONCILE_INTERVAL,
)


class ConfigError(ValueError):
    """Raised when session options fail validation."""

    def __init__(self, message: str, *, path: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.path = path


def _base_url(value: Any) -> str:
    text = str(value or "").strip()
    if not text:
        raise vol.Invalid("base URL is required")
    url = URL(text)
    if url.scheme not in ("http", "https") or not url.host:
        raise vol.Invalid(f"base URL must be an absolute http(s) URL: {text}")
    return text.rstrip("/")


def _seconds(minimum: float = 0.0) -> vol.All:
    return vol.All(vol.Coerce(float), vol.Range(min=minimum))


CONFIG_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_BASE_URL): _base_url,
        vol.Optional(CONF_REQUEST_TIMEOUT, default=DEFAULT_REQUEST_TIMEOUT): _seconds(1.0),
        vol.Optional(CONF_STREAM_CONNECT_TIMEOUT, default=DEFAULT_STREAM_CONNECT_TIMEOUT): _seconds(1.0),
        vol.Optional(CONF_STREAM_IDLE_TIMEOUT, default=DEFAULT_STREAM_IDLE_TIMEOUT): vol.Any(
            None, vol.All(vol.Coerce(float), vol.Range(min=0, min_included=False))
        ),
        vol.Optional(CONF_RECONNECT_BASE_DELAY, default=DEFAULT_RECONNECT_BASE_DELAY): _seconds(),
        vol.Optional(CONF_RECONNECT_MAX_DELAY, default=DEFAULT_RECONNECT_MAX_DELAY): _seconds(),
        vol.Optional(CONF_MAX_RECONNECT_ATTEMPTS, default=DEFAULT_MAX_RECONNECT_ATTEMPTS): vol.All(
            vol.Coerce(int), vol.Range(min=0)
        ),
        vol.Optional(CONF_SNAPSHOT_COOLDOWN, default=DEFAULT_SNAPSHOT_COOLDOWN): vol.All(
            vol.Coerce(float), vol.Range(min=0, max=300)
        ),
        vol.Optional(CONF_RECONCILE_INTERVAL, default=DEFAULT_RECONCILE_INTERVAL): vol.All(
            vol.Coerce(int), vol.Clamp(min=MIN_RECONCILE_INTERVAL)
        ),
        vol.Optional(CONF_HYDRATION_CONCURRENCY, default=DEFAULT_HYDRATION_CONCURRENCY): vol.All(
            vol.Coerce(int), vol.Range(min=1)
        ),
        vol.Optional(CONF_HYDRATION_TIMEOUT, default=None): vol.Any(
            None, vol.All(vol.Coerce(float), vol.Range(min=0, min_included=False))
        ),
    },
    extra=vol.REMOVE_EXTRA,
)


@dataclass(slots=True, frozen=True)
class SyncConfig:
    """Validated options for a single document session."""

    base_url: str
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    stream_connect_timeout: float = DEFAULT_STREAM_CONNECT_TIMEOUT
    stream_idle_timeout: float | None = DEFAULT_STREAM_IDLE_TIMEOUT
    reconnect_base_delay: float = DEFAULT_RECONNECT_BASE_DELAY
    reconnect_max_delay: float = DEFAULT_RECONNECT_MAX_DELAY
    max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS
    snapshot_cooldown: float = DEFAULT_SNAPSHOT_COOLDOWN
    reconcile_interval: int = DEFAULT_RECONCILE_INTERVAL
    hydration_concurrency: int = DEFAULT_HYDRATION_CONCURRENCY
    hydration_timeout: float | None = None

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> SyncConfig:
        try:
            data = CONFIG_SCHEMA(dict(options))
        except vol.Invalid as err:
            path = tuple(str(part) for part in err.path)
            raise ConfigError(f"invalid sync options: {err}", path=path) from err
        if data[CONF_RECONNECT_MAX_DELAY] < data[CONF_RECONNECT_BASE_DELAY]:
            raise ConfigError(
                "reconnect_max_delay must not be smaller than reconnect_base_delay",
                path=(CONF_RECONNECT_MAX_DELAY,),
            )
        return cls(
            base_url=data[CONF_BASE_URL],
            request_timeout=data[CONF_REQUEST_TIMEOUT],
            stream_connect_timeout=data[CONF_STREAM_CONNECT_TIMEOUT],
            stream_idle_timeout=data[CONF_STREAM_IDLE_TIMEOUT],
            reconnect_base_delay=data[CONF_RECONNECT_BASE_DELAY],
            reconnect_max_delay=data[CONF_RECONNECT_MAX_DELAY],
            max_reconnect_attempts=data[CONF_MAX_RECONNECT_ATTEMPTS],
            snapshot_cooldown=data[CONF_SNAPSHOT_COOLDOWN],
            reconcile_interval=data[CONF_RECONCILE_INTERVAL],
            hydration_concurrency=data[CONF_HYDRATION_CONCURRENCY],
            hydration_timeout=data[CONF_HYDRATION_TIMEOUT],
        )

    def backoff_delay(self, attempt: int) -> float:
        """Return the reconnect delay for a zero-based *attempt* number."""

        return min(self.reconnect_base_delay * (2 ** max(attempt, 0)), self.reconnect_max_delay)
