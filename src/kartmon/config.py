"""Monitor configuration for kartmon."""

from __future__ import annotations

import dataclasses
import json
import os
from collections.abc import Callable
from typing import Any, TypeVar

from kartmon._constants import (
    CLEANUP_INTERVAL,
    DEFAULT_INIT_TOKEN,
    DEFAULT_TRACKS,
    FLASH_DURATION,
    LAP_HISTORY_SIZE,
    PERSISTENCE_DRAIN_TIMEOUT,
    RECONNECT_BASE_DELAY,
    RECONNECT_FACTOR,
    RECONNECT_MAX_DELAY,
    RETENTION_HOURS,
    SUPERVISOR_STOP_TIMEOUT,
)
from kartmon.exceptions import KartmonConfigError

T = TypeVar("T")


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(name: str, value: str, cast: Callable[[str], T]) -> T:
    try:
        return cast(value)
    except ValueError as exc:
        raise KartmonConfigError(f"{name} must be numeric, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class TrackConfig:
    """One monitored venue.

    Parameters
    ----------
    id : str
        Stable identifier used as the storage key.
    display_name : str
        Human readable name, used in logs.
    endpoint_url : str
        WebSocket URL of the live-timing feed.
    """

    id: str
    display_name: str
    endpoint_url: str

    def __post_init__(self) -> None:
        if not self.id.strip():
            raise KartmonConfigError("track id must be non-empty")
        if not self.endpoint_url.startswith(("ws://", "wss://")):
            raise KartmonConfigError(f"track {self.id}: endpoint_url must be a ws:// or wss:// URL")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TrackConfig:
        """Build from ``{"id", "name", "url"}`` (long field names also accepted)."""
        try:
            track_id = str(data.get("id") or "")
            name = str(data.get("name") or data.get("display_name") or track_id)
            url = str(data.get("url") or data.get("endpoint_url") or data.get("websocket") or "")
        except AttributeError as exc:
            raise KartmonConfigError(f"track entry must be an object, got {data!r}") from exc
        return cls(id=track_id, display_name=name, endpoint_url=url)


def _default_tracks() -> tuple[TrackConfig, ...]:
    return tuple(TrackConfig(id=i, display_name=n, endpoint_url=u) for i, n, u in DEFAULT_TRACKS)


def parse_tracks(raw: str) -> tuple[TrackConfig, ...]:
    """Parse the ``KARTMON_TRACKS`` JSON list."""
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise KartmonConfigError(f"KARTMON_TRACKS is not valid JSON: {exc}") from exc
    if not isinstance(decoded, list):
        raise KartmonConfigError("KARTMON_TRACKS must be a JSON list")
    tracks = tuple(TrackConfig.from_dict(item) for item in decoded)
    ids = [track.id for track in tracks]
    if len(set(ids)) != len(ids):
        raise KartmonConfigError(f"duplicate track ids in KARTMON_TRACKS: {ids}")
    return tracks


@dataclasses.dataclass(frozen=True)
class MonitorConfig:
    """Runtime configuration.

    Parameters
    ----------
    tracks : tuple of TrackConfig
        Venues to monitor, in start order.
    database_path : str
        SQLite file used by the bundled storage gateway.
    persistence_enabled : bool
        Forward accepted laps to the storage gateway.
    init_token : str
        Text sent to the feed right after connecting. Empty disables it.
    reconnect_base_delay, reconnect_factor, reconnect_max_delay : float
        Reconnect backoff, in seconds.
    heartbeat : float or None
        WebSocket ping interval; ``None`` disables client pings.
    flash_duration : float
        Seconds a row keeps its flash flag.
    lap_history_size : int
        Number of recent lap times kept per kart for the rolling average.
    retention_hours : float
        Durable lap records older than this are swept. ``0`` disables the sweep.
    cleanup_interval : float
        Seconds between retention sweeps.
    drain_timeout : float
        Seconds a stopping supervisor waits for queued upserts.
    stop_timeout : float
        Seconds a stopping supervisor waits for its connection loop to exit.
    """

    tracks: tuple[TrackConfig, ...] = dataclasses.field(default_factory=_default_tracks)
    database_path: str = "kartmon.db"
    persistence_enabled: bool = True
    init_token: str = DEFAULT_INIT_TOKEN
    reconnect_base_delay: float = RECONNECT_BASE_DELAY
    reconnect_factor: float = RECONNECT_FACTOR
    reconnect_max_delay: float = RECONNECT_MAX_DELAY
    heartbeat: float | None = 30.0
    flash_duration: float = FLASH_DURATION
    lap_history_size: int = LAP_HISTORY_SIZE
    retention_hours: float = RETENTION_HOURS
    cleanup_interval: float = CLEANUP_INTERVAL
    drain_timeout: float = PERSISTENCE_DRAIN_TIMEOUT
    stop_timeout: float = SUPERVISOR_STOP_TIMEOUT

    def __post_init__(self) -> None:
        if self.reconnect_base_delay <= 0:
            raise KartmonConfigError("reconnect_base_delay must be positive")
        if self.reconnect_max_delay < self.reconnect_base_delay:
            raise KartmonConfigError("reconnect_max_delay must be >= reconnect_base_delay")
        if self.reconnect_factor < 1.0:
            raise KartmonConfigError("reconnect_factor must be >= 1.0")
        if self.lap_history_size < 1:
            raise KartmonConfigError("lap_history_size must be at least 1")
        if self.flash_duration < 0:
            raise KartmonConfigError("flash_duration must not be negative")
        if self.drain_timeout <= 0 or self.stop_timeout <= 0:
            raise KartmonConfigError("drain_timeout and stop_timeout must be positive")

    def track(self, track_id: str) -> TrackConfig:
        for track in self.tracks:
            if track.id == track_id:
                return track
        raise KartmonConfigError(f"unknown track {track_id!r}")

    @classmethod
    def from_env(cls, **overrides: Any) -> MonitorConfig:
        """Create configuration from ``KARTMON_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        tracks_env = env.get("KARTMON_TRACKS")
        if tracks_env is not None and "tracks" not in overrides:
            config_kwargs["tracks"] = parse_tracks(tracks_env)

        _ENV_STR_MAP = {
            "KARTMON_DATABASE_PATH": "database_path",
            "KARTMON_INIT_TOKEN": "init_token",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_FLOAT_MAP = {
            "KARTMON_RECONNECT_BASE_DELAY": "reconnect_base_delay",
            "KARTMON_RECONNECT_MAX_DELAY": "reconnect_max_delay",
            "KARTMON_FLASH_DURATION": "flash_duration",
            "KARTMON_RETENTION_HOURS": "retention_hours",
            "KARTMON_CLEANUP_INTERVAL": "cleanup_interval",
            "KARTMON_DRAIN_TIMEOUT": "drain_timeout",
            "KARTMON_STOP_TIMEOUT": "stop_timeout",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, float)

        history_env = env.get("KARTMON_LAP_HISTORY_SIZE")
        if history_env is not None and "lap_history_size" not in overrides:
            config_kwargs["lap_history_size"] = _env_number("KARTMON_LAP_HISTORY_SIZE", history_env, int)

        if "persistence_enabled" not in overrides:
            config_kwargs["persistence_enabled"] = _env_bool(env.get("KARTMON_PERSISTENCE_ENABLED"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
