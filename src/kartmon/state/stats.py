"""Per-track lap statistics.

Lap observations come from the best-lap column of the timing table. The feed
repeats cells (style-only refreshes, re-sent snapshots), so an observation is
only counted when it differs from the kart's immediately previous accepted
time. A genuinely repeated lap that is not consecutive is counted again.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from kartmon._constants import LAP_HISTORY_SIZE
from kartmon.ingestion.normalize import parse_lap_time_ms

_logger = logging.getLogger(__name__)


class LapObservation(BaseModel):
    """A best-lap value seen on the timing table, attributed to a kart."""

    model_config = ConfigDict(frozen=True)

    kart_number: str
    kart_class: str = ""
    time_display: str
    driver_name: str = ""


class LapRecord(BaseModel):
    """An accepted observation on its way to durable storage."""

    model_config = ConfigDict(frozen=True)

    track_id: str
    kart_number: str
    kart_class: str = ""
    driver_name: str = ""
    time_ms: int
    time_display: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class KartBestLap(BaseModel):
    """Durable per-kart aggregate as stored by a persistence gateway."""

    model_config = ConfigDict(frozen=True)

    track_id: str
    kart_number: str
    kart_class: str = ""
    best_lap_time: int
    best_lap_display: str
    best_lap_driver: str = ""
    lap_count: int = 1
    updated_at: datetime | None = None


class KartLapStat(BaseModel):
    """Rolling statistics for one kart on one track."""

    model_config = ConfigDict(extra="forbid")

    kart_number: str
    kart_class: str = ""
    best_lap_time_ms: int
    best_lap_display: str
    best_lap_driver: str = ""
    lap_count: int = 1
    recent_lap_times_ms: deque[int] = Field(default_factory=deque)
    average_lap_time_ms: float
    last_driver: str = ""

    @property
    def last_lap_time_ms(self) -> int | None:
        return self.recent_lap_times_ms[-1] if self.recent_lap_times_ms else None


class LapStatsAggregator:
    """Kart number -> :class:`KartLapStat` for a single track.

    ``sink`` receives every accepted observation as a :class:`LapRecord`;
    it must not block. Exceptions raised by the sink are logged and dropped
    so that live statistics never depend on storage health.
    """

    def __init__(
        self,
        track_id: str,
        *,
        history_size: int = LAP_HISTORY_SIZE,
        sink: Callable[[LapRecord], None] | None = None,
    ) -> None:
        self._track_id = track_id
        self._history_size = history_size
        self._sink = sink
        self._stats: dict[str, KartLapStat] = {}

    def __len__(self) -> int:
        return len(self._stats)

    def __contains__(self, kart_number: object) -> bool:
        return kart_number in self._stats

    def get(self, kart_number: str) -> KartLapStat | None:
        stat = self._stats.get(kart_number)
        return stat.model_copy(deep=True) if stat is not None else None

    def ranking(self) -> list[KartLapStat]:
        """All karts, fastest best lap first."""
        ordered = sorted(self._stats.values(), key=lambda stat: stat.best_lap_time_ms)
        return [stat.model_copy(deep=True) for stat in ordered]

    def record(self, observation: LapObservation) -> KartLapStat | None:
        """Apply one observation.

        Returns the updated statistic when the observation was accepted, or
        ``None`` when it was discarded (placeholder, unparsable, or a repeat of
        the previous time).
        """
        kart_number = observation.kart_number.strip()
        if not kart_number:
            return None
        time_ms = parse_lap_time_ms(observation.time_display)
        if time_ms is None:
            return None
        display = observation.time_display.strip()

        stat = self._stats.get(kart_number)
        if stat is None:
            stat = KartLapStat(
                kart_number=kart_number,
                kart_class=observation.kart_class,
                best_lap_time_ms=time_ms,
                best_lap_display=display,
                best_lap_driver=observation.driver_name,
                lap_count=1,
                recent_lap_times_ms=deque([time_ms]),
                average_lap_time_ms=float(time_ms),
                last_driver=observation.driver_name,
            )
            self._stats[kart_number] = stat
            _logger.info(
                "[%s] New kart #%s - %s: %s", self._track_id, kart_number, observation.driver_name, display
            )
        else:
            # Identity refresh applies even to a repeated time; counting does not.
            if observation.kart_class:
                stat.kart_class = observation.kart_class
            if observation.driver_name:
                stat.last_driver = observation.driver_name
            if stat.last_lap_time_ms == time_ms:
                return None
            stat.recent_lap_times_ms.append(time_ms)
            while len(stat.recent_lap_times_ms) > self._history_size:
                stat.recent_lap_times_ms.popleft()
            stat.lap_count += 1
            stat.average_lap_time_ms = sum(stat.recent_lap_times_ms) / len(stat.recent_lap_times_ms)
            if time_ms < stat.best_lap_time_ms:
                stat.best_lap_time_ms = time_ms
                stat.best_lap_display = display
                stat.best_lap_driver = observation.driver_name
                _logger.info(
                    "[%s] New best lap #%s - %s: %s", self._track_id, kart_number, observation.driver_name, display
                )

        self._forward(
            LapRecord(
                track_id=self._track_id,
                kart_number=kart_number,
                kart_class=observation.kart_class,
                driver_name=observation.driver_name,
                time_ms=time_ms,
                time_display=display,
            )
        )
        return stat.model_copy(deep=True)

    def restore(self, best_laps: Iterable[KartBestLap]) -> int:
        """Seed statistics from durable best laps (e.g. after a restart).

        Karts already tracked live are left alone. Returns the number seeded.
        """
        seeded = 0
        for best in best_laps:
            if best.kart_number in self._stats:
                continue
            self._stats[best.kart_number] = KartLapStat(
                kart_number=best.kart_number,
                kart_class=best.kart_class,
                best_lap_time_ms=best.best_lap_time,
                best_lap_display=best.best_lap_display,
                best_lap_driver=best.best_lap_driver,
                lap_count=best.lap_count,
                recent_lap_times_ms=deque([best.best_lap_time]),
                average_lap_time_ms=float(best.best_lap_time),
                last_driver=best.best_lap_driver,
            )
            seeded += 1
        return seeded

    def _forward(self, record: LapRecord) -> None:
        if self._sink is None:
            return
        try:
            self._sink(record)
        except Exception:
            _logger.warning("[%s] Lap sink failed for kart #%s", self._track_id, record.kart_number, exc_info=True)
