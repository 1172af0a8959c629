"""kartmon - Async live-timing monitor for kart tracks."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kartmon")
except PackageNotFoundError:
    __version__ = "0+local"
from kartmon.config import MonitorConfig, TrackConfig
from kartmon.exceptions import (
    KartmonConfigError,
    KartmonError,
    KartmonFeedError,
    KartmonPersistenceError,
)
from kartmon.ingestion.decoder import ProtocolDecoder, decode_frame, decode_line
from kartmon.pool import TrackSupervisorPool
from kartmon.state.stats import KartBestLap, KartLapStat, LapObservation, LapRecord, LapStatsAggregator
from kartmon.state.store import DriverRow, RaceStateStore
from kartmon.state.track import RaceInfo, TrackSnapshot, TrackState
from kartmon.storage.gateway import PersistenceDispatcher, PersistenceGateway
from kartmon.storage.sqlite import SqliteGateway
from kartmon.supervisor import ConnectionSupervisor, ReconnectBackoff, SupervisorState

__all__ = [
    "__version__",
    "ConnectionSupervisor",
    "DriverRow",
    "KartBestLap",
    "KartLapStat",
    "KartmonConfigError",
    "KartmonError",
    "KartmonFeedError",
    "KartmonPersistenceError",
    "LapObservation",
    "LapRecord",
    "LapStatsAggregator",
    "MonitorConfig",
    "PersistenceDispatcher",
    "PersistenceGateway",
    "ProtocolDecoder",
    "RaceInfo",
    "RaceStateStore",
    "ReconnectBackoff",
    "SqliteGateway",
    "SupervisorState",
    "TrackConfig",
    "TrackSnapshot",
    "TrackState",
    "TrackSupervisorPool",
    "decode_frame",
    "decode_line",
]
