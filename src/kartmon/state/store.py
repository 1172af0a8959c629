"""In-memory race state for one track.

This is the only component allowed to mutate driver rows. Rows exist only
after a grid snapshot; incremental updates for an unknown row id are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from kartmon._constants import (
    COL_BEST_LAP,
    COL_GROUP,
    COL_KART,
    COL_LAPS,
    COL_LAST_LAP,
    COL_NAME,
    COL_RANK,
    COL_SECTOR1,
    COL_SECTOR2,
    COL_SECTOR3,
    COL_STATUS,
    FLASH_DURATION,
)
from kartmon.ingestion.normalize import is_placeholder
from kartmon.state.events import GridRow
from kartmon.state.stats import LapObservation

_logger = logging.getLogger(__name__)


class Cancellable(Protocol):
    def cancel(self) -> None: ...


Scheduler = Callable[[float, Callable[[], None]], Cancellable]
"""``schedule(delay_seconds, callback) -> handle``; ``loop.call_later`` shaped."""


def _loop_scheduler(delay: float, callback: Callable[[], None]) -> Cancellable:
    return asyncio.get_running_loop().call_later(delay, callback)


class CellState(BaseModel):
    model_config = ConfigDict(extra="forbid")

    value: str = ""
    style_class: str = ""


class DriverRow(BaseModel):
    """One live-timing table entry."""

    model_config = ConfigDict(extra="forbid")

    row_id: str
    position: int = 0
    kart_number: str = ""
    kart_class: str = ""
    name: str = ""
    name_class: str = ""
    group_class: str = ""
    status_class: str = ""
    rank: CellState = Field(default_factory=CellState)
    sector1: CellState = Field(default_factory=CellState)
    sector2: CellState = Field(default_factory=CellState)
    sector3: CellState = Field(default_factory=CellState)
    laps: CellState = Field(default_factory=CellState)
    last_lap: CellState = Field(default_factory=CellState)
    best_lap: CellState = Field(default_factory=CellState)
    flash_active: bool = False
    flash_kind: str = ""
    flash_generation: int = Field(default=0, exclude=True)

    @classmethod
    def from_grid(cls, row: GridRow) -> DriverRow:
        def cell(column: int) -> CellState:
            grid_cell = row.cell(column)
            return CellState(value=grid_cell.value, style_class=grid_cell.css_class)

        kart = row.cell(COL_KART)
        name = row.cell(COL_NAME)
        return cls(
            row_id=row.row_id,
            position=row.position,
            kart_number=kart.value,
            kart_class=row.kart_class or kart.css_class,
            name=name.value,
            name_class=name.css_class,
            group_class=row.cell(COL_GROUP).css_class,
            status_class=row.cell(COL_STATUS).css_class,
            rank=cell(COL_RANK),
            sector1=cell(COL_SECTOR1),
            sector2=cell(COL_SECTOR2),
            sector3=cell(COL_SECTOR3),
            laps=cell(COL_LAPS),
            last_lap=cell(COL_LAST_LAP),
            best_lap=cell(COL_BEST_LAP),
        )

    def lap_observation(self) -> LapObservation | None:
        """The current best-lap cell as an observation, if it holds a time."""
        if not self.kart_number or is_placeholder(self.best_lap.value):
            return None
        return LapObservation(
            kart_number=self.kart_number,
            kart_class=self.kart_class,
            time_display=self.best_lap.value,
            driver_name=self.name,
        )


_SECTOR_FIELDS: dict[int, str] = {
    COL_SECTOR1: "sector1",
    COL_SECTOR2: "sector2",
    COL_SECTOR3: "sector3",
}


class RaceStateStore:
    """Row table for one track.

    Parameters
    ----------
    flash_duration : float
        Seconds a flash keeps ``flash_active`` set.
    schedule : Scheduler, optional
        Timer factory used for flash clears. Defaults to the running event
        loop's ``call_later``.
    """

    def __init__(
        self,
        *,
        flash_duration: float = FLASH_DURATION,
        schedule: Scheduler | None = None,
    ) -> None:
        self._flash_duration = flash_duration
        self._schedule = schedule or _loop_scheduler
        self._rows: dict[str, DriverRow] = {}
        self._flash_generation = 0
        self._pending_clears: dict[int, Cancellable] = {}

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, row_id: object) -> bool:
        return row_id in self._rows

    @property
    def pending_flash_clears(self) -> int:
        return len(self._pending_clears)

    def get(self, row_id: str) -> DriverRow | None:
        row = self._rows.get(row_id)
        return row.model_copy(deep=True) if row is not None else None

    def snapshot(self) -> list[DriverRow]:
        """All rows ordered by position; equal positions keep insertion order."""
        ordered = sorted(self._rows.values(), key=lambda row: row.position)
        return [row.model_copy(deep=True) for row in ordered]

    def apply_snapshot(self, rows: Iterable[GridRow]) -> list[LapObservation]:
        """Replace the whole table.

        The new table is built aside and swapped in with one assignment, so a
        reader never sees a half-filled table. Returns one lap observation per
        row whose best-lap cell holds a time.
        """
        table: dict[str, DriverRow] = {}
        observations: list[LapObservation] = []
        for grid_row in rows:
            row = DriverRow.from_grid(grid_row)
            table[row.row_id] = row
            observation = row.lap_observation()
            if observation is not None:
                observations.append(observation)

        self.cancel_timers()
        self._rows = table
        return observations

    def clear(self) -> None:
        self.cancel_timers()
        self._rows = {}

    def apply_cell_update(
        self,
        row_id: str,
        column: int,
        css_class: str,
        value: str | None,
    ) -> LapObservation | None:
        """Apply one cell change. Returns a lap observation for best-lap changes."""
        row = self._rows.get(row_id)
        if row is None:
            return None
        text = value or ""
        has_text = bool(text.strip())

        if column == COL_GROUP:
            row.group_class = css_class
        elif column == COL_STATUS:
            row.status_class = css_class
        elif column == COL_RANK:
            if has_text:
                row.rank.value = text
            row.rank.style_class = css_class
        elif column == COL_KART:
            if has_text:
                row.kart_number = text
            if css_class:
                row.kart_class = css_class
        elif column == COL_NAME:
            if has_text:
                row.name = text
            row.name_class = css_class
        elif column in _SECTOR_FIELDS:
            # Sectors reset every lap and may legitimately go blank.
            sector: CellState = getattr(row, _SECTOR_FIELDS[column])
            sector.value = text
            sector.style_class = css_class
        elif column == COL_LAPS:
            if has_text:
                row.laps.value = text
            row.laps.style_class = css_class
        elif column == COL_LAST_LAP:
            row.last_lap.value = text
            row.last_lap.style_class = css_class
        elif column == COL_BEST_LAP:
            row.best_lap.value = text
            row.best_lap.style_class = css_class
            if has_text and row.kart_number:
                return LapObservation(
                    kart_number=row.kart_number,
                    kart_class=row.kart_class,
                    time_display=text,
                    driver_name=row.name,
                )
        else:
            _logger.debug("Ignoring update for unknown column %s on %s", column, row_id)
        return None

    def apply_position_update(self, row_id: str, position: int) -> bool:
        row = self._rows.get(row_id)
        if row is None:
            return False
        row.position = position
        return True

    def apply_flash(self, row_id: str, kind: str) -> bool:
        """Set the row's flash flag and schedule its own clear.

        Every flash takes a fresh store-wide generation number. A clear only
        resets the flag while the row still carries the generation it was
        scheduled for, so an earlier clear cannot cut a later flash short.
        """
        row = self._rows.get(row_id)
        if row is None:
            return False

        self._flash_generation += 1
        generation = self._flash_generation
        row.flash_active = True
        row.flash_kind = kind
        row.flash_generation = generation

        handle = self._schedule(self._flash_duration, lambda: self._clear_flash(row_id, generation))
        if row.flash_generation == generation and row.flash_active:
            self._pending_clears[generation] = handle
        return True

    def _clear_flash(self, row_id: str, generation: int) -> None:
        self._pending_clears.pop(generation, None)
        row = self._rows.get(row_id)
        if row is None or row.flash_generation != generation:
            return
        row.flash_active = False
        row.flash_kind = ""

    def cancel_timers(self) -> None:
        """Cancel every pending flash clear."""
        pending = list(self._pending_clears.values())
        self._pending_clears.clear()
        for handle in pending:
            handle.cancel()
