"""Decoded feed events.

The protocol decoder turns every feed line into exactly one of these events.
Only the state layer (:mod:`kartmon.state.track`) is allowed to apply them.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventKind(StrEnum):
    INIT = "init"
    STYLE_DEF = "style_def"
    RACE_INFO = "race_info"
    GRID_SNAPSHOT = "grid_snapshot"
    CELL_UPDATE = "cell_update"
    POSITION_UPDATE = "position_update"
    FLASH = "flash"
    IGNORED = "ignored"


class RaceInfoField(StrEnum):
    TITLE1 = "title1"
    TITLE2 = "title2"
    TRACK = "track"
    MESSAGE = "msg"
    COUNTDOWN = "countdown"
    LIGHT = "light"
    COMMENTS = "com"


class _FeedEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class GridCell(BaseModel):
    """One ``<td>`` of a grid row: its text and its CSS class."""

    model_config = ConfigDict(frozen=True)

    value: str = ""
    css_class: str = ""


class GridRow(BaseModel):
    """One driver row of a ``grid||`` snapshot."""

    model_config = ConfigDict(frozen=True)

    row_id: str
    position: int = 0
    kart_class: str = ""
    cells: dict[int, GridCell] = Field(default_factory=dict)

    def cell(self, column: int) -> GridCell:
        return self.cells.get(column) or GridCell()


class InitEvent(_FeedEvent):
    kind: Literal[EventKind.INIT] = EventKind.INIT


class StyleDefEvent(_FeedEvent):
    kind: Literal[EventKind.STYLE_DEF] = EventKind.STYLE_DEF
    name: str
    background_color: str
    text_color: str


class RaceInfoEvent(_FeedEvent):
    kind: Literal[EventKind.RACE_INFO] = EventKind.RACE_INFO
    field: RaceInfoField
    value: str = ""


class GridSnapshotEvent(_FeedEvent):
    kind: Literal[EventKind.GRID_SNAPSHOT] = EventKind.GRID_SNAPSHOT
    payload: str = Field(default="", repr=False)
    rows: tuple[GridRow, ...] = ()


class CellUpdateEvent(_FeedEvent):
    kind: Literal[EventKind.CELL_UPDATE] = EventKind.CELL_UPDATE
    row_id: str
    column: int
    css_class: str = ""
    value: str | None = None

    @field_validator("column")
    @classmethod
    def _positive_column(cls, value: int) -> int:
        if value < 1:
            raise ValueError("column must be positive")
        return value


class PositionUpdateEvent(_FeedEvent):
    kind: Literal[EventKind.POSITION_UPDATE] = EventKind.POSITION_UPDATE
    row_id: str
    position: int


class FlashEvent(_FeedEvent):
    kind: Literal[EventKind.FLASH] = EventKind.FLASH
    row_id: str
    flash_kind: str = ""


class IgnoredLine(_FeedEvent):
    """Explicit "nothing to apply" result; callers may log it."""

    kind: Literal[EventKind.IGNORED] = EventKind.IGNORED
    line: str
    reason: str = "unrecognized"


FeedEvent = Annotated[
    InitEvent
    | StyleDefEvent
    | RaceInfoEvent
    | GridSnapshotEvent
    | CellUpdateEvent
    | PositionUpdateEvent
    | FlashEvent
    | IgnoredLine,
    Field(discriminator="kind"),
]
"""Closed union of everything the decoder can produce."""
