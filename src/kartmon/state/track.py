"""Per-track state arena.

A :class:`TrackState` bundles everything one track's feed can change: the
driver table, the lap statistics, race metadata and the badge style table.
Its owner (the track's supervisor) is the only writer; everything handed out
by the read accessors is a copy.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from pydantic import BaseModel, ConfigDict, Field

from kartmon._constants import FLASH_DURATION, LAP_HISTORY_SIZE
from kartmon.ingestion.normalize import safe_int
from kartmon.state.events import (
    CellUpdateEvent,
    EventKind,
    FeedEvent,
    FlashEvent,
    GridSnapshotEvent,
    IgnoredLine,
    PositionUpdateEvent,
    RaceInfoEvent,
    RaceInfoField,
    StyleDefEvent,
)
from kartmon.state.stats import KartLapStat, LapObservation, LapRecord, LapStatsAggregator
from kartmon.state.store import DriverRow, RaceStateStore, Scheduler

_logger = logging.getLogger(__name__)


class RaceInfo(BaseModel):
    """Display metadata; last value wins."""

    model_config = ConfigDict(extra="forbid")

    title1: str = ""
    title2: str = ""
    track: str = ""
    message: str = ""
    countdown: int = 0
    light: str = ""
    comments: str = ""


_RACE_INFO_ATTRS: dict[RaceInfoField, str] = {
    RaceInfoField.TITLE1: "title1",
    RaceInfoField.TITLE2: "title2",
    RaceInfoField.TRACK: "track",
    RaceInfoField.MESSAGE: "message",
    RaceInfoField.LIGHT: "light",
    RaceInfoField.COMMENTS: "comments",
}


class KartStyle(BaseModel):
    model_config = ConfigDict(frozen=True)

    background_color: str
    text_color: str


class TrackSnapshot(BaseModel):
    """Read-only view of a track, suitable for a query surface."""

    model_config = ConfigDict(frozen=True)

    track_id: str
    rows: list[DriverRow] = Field(default_factory=list)
    race_info: RaceInfo = Field(default_factory=RaceInfo)
    styles: dict[str, KartStyle] = Field(default_factory=dict)
    kart_stats: list[KartLapStat] = Field(default_factory=list)


class TrackState:
    """State owned by a single track's supervisor."""

    def __init__(
        self,
        track_id: str,
        *,
        flash_duration: float = FLASH_DURATION,
        history_size: int = LAP_HISTORY_SIZE,
        lap_sink: Callable[[LapRecord], None] | None = None,
        schedule: Scheduler | None = None,
    ) -> None:
        self.track_id = track_id
        self.store = RaceStateStore(flash_duration=flash_duration, schedule=schedule)
        self.stats = LapStatsAggregator(track_id, history_size=history_size, sink=lap_sink)
        self._race_info = RaceInfo()
        self._styles: dict[str, KartStyle] = {}
        self.applied_events = 0
        self.ignored_lines = 0

        self._handlers: dict[EventKind, Callable[[FeedEvent], None]] = {
            EventKind.INIT: self._on_init,
            EventKind.STYLE_DEF: self._on_style,
            EventKind.RACE_INFO: self._on_race_info,
            EventKind.GRID_SNAPSHOT: self._on_grid,
            EventKind.CELL_UPDATE: self._on_cell,
            EventKind.POSITION_UPDATE: self._on_position,
            EventKind.FLASH: self._on_flash,
            EventKind.IGNORED: self._on_ignored,
        }

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def race_info(self) -> RaceInfo:
        return self._race_info.model_copy()

    @property
    def styles(self) -> dict[str, KartStyle]:
        return dict(self._styles)

    def snapshot(self) -> TrackSnapshot:
        return TrackSnapshot(
            track_id=self.track_id,
            rows=self.store.snapshot(),
            race_info=self.race_info,
            styles=self.styles,
            kart_stats=self.stats.ranking(),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def apply(self, event: FeedEvent) -> None:
        """Apply one decoded event. Runs to completion; never re-entered."""
        self._handlers[event.kind](event)
        if event.kind != EventKind.IGNORED:
            self.applied_events += 1

    def close(self) -> None:
        """Cancel scheduled work (flash clears)."""
        self.store.cancel_timers()

    def _record(self, observation: LapObservation | None) -> None:
        if observation is not None:
            self.stats.record(observation)

    def _on_init(self, _event: FeedEvent) -> None:
        _logger.info("[%s] Init received - clearing rows", self.track_id)
        self.store.clear()

    def _on_style(self, event: FeedEvent) -> None:
        assert isinstance(event, StyleDefEvent)  # noqa: S101
        self._styles[event.name] = KartStyle(
            background_color=event.background_color,
            text_color=event.text_color,
        )

    def _on_race_info(self, event: FeedEvent) -> None:
        assert isinstance(event, RaceInfoEvent)  # noqa: S101
        if event.field == RaceInfoField.COUNTDOWN:
            self._race_info.countdown = safe_int(event.value) or 0
            return
        setattr(self._race_info, _RACE_INFO_ATTRS[event.field], event.value)

    def _on_grid(self, event: FeedEvent) -> None:
        assert isinstance(event, GridSnapshotEvent)  # noqa: S101
        observations = self.store.apply_snapshot(event.rows)
        _logger.debug("[%s] Grid snapshot rows=%d laps=%d", self.track_id, len(event.rows), len(observations))
        for observation in observations:
            self._record(observation)

    def _on_cell(self, event: FeedEvent) -> None:
        assert isinstance(event, CellUpdateEvent)  # noqa: S101
        self._record(self.store.apply_cell_update(event.row_id, event.column, event.css_class, event.value))

    def _on_position(self, event: FeedEvent) -> None:
        assert isinstance(event, PositionUpdateEvent)  # noqa: S101
        self.store.apply_position_update(event.row_id, event.position)

    def _on_flash(self, event: FeedEvent) -> None:
        assert isinstance(event, FlashEvent)  # noqa: S101
        self.store.apply_flash(event.row_id, event.flash_kind)

    def _on_ignored(self, event: FeedEvent) -> None:
        assert isinstance(event, IgnoredLine)  # noqa: S101
        self.ignored_lines += 1
        _logger.debug("[%s] Ignored line (%s): %.120s", self.track_id, event.reason, event.line)
