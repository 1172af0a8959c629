"""Grid snapshot parsing.

A ``grid||`` line carries the whole timing table as HTML table rows::

    <tr data-id="r42" data-pos="1">
      <td data-id="r42c1" class="gs"></td>
      ...
      <td class="no"><div data-id="r42c4" class="no1">12</div></td>
      <td data-id="r42c5" class="dr">Alice</td>
      ...
    </tr>

Cells are located by their ``data-id`` (``<row id>c<column>``) wherever they
sit in the row, because the feed nests some of them (kart number inside a
``div``, rank inside a ``p``). The class of the kart-number element is the
kart class used for badge colouring.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser

from kartmon._constants import COL_KART, HEADER_ROW_ID
from kartmon.ingestion.normalize import safe_int
from kartmon.state.events import GridCell, GridRow

_logger = logging.getLogger(__name__)

_ROW_ID_RE = re.compile(r"^r\d+$")


@dataclass
class _RowBuilder:
    row_id: str
    position: int
    cells: dict[int, GridCell] = field(default_factory=dict)

    def build(self) -> GridRow:
        return GridRow(
            row_id=self.row_id,
            position=self.position,
            kart_class=self.cells.get(COL_KART, GridCell()).css_class,
            cells=self.cells,
        )


class _GridMarkupParser(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.rows: list[_RowBuilder] = []
        self._row: _RowBuilder | None = None
        self._cell_re: re.Pattern[str] | None = None
        self._cell_column: int | None = None
        self._cell_tag = ""
        self._cell_class = ""
        self._cell_depth = 0
        self._cell_text: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        attributes = {key: value or "" for key, value in attrs}

        if tag == "tr":
            self._finish_cell()
            row_id = attributes.get("data-id", "").strip()
            if _ROW_ID_RE.match(row_id):
                self._row = _RowBuilder(row_id=row_id, position=safe_int(attributes.get("data-pos")) or 0)
                self._cell_re = re.compile(rf"^{row_id}c(\d+)$")
                self.rows.append(self._row)
            else:
                self._row = None
                self._cell_re = None
            return

        if self._row is None:
            return

        if self._cell_column is not None:
            if tag == self._cell_tag:
                self._cell_depth += 1
            return

        assert self._cell_re is not None  # noqa: S101
        match = self._cell_re.match(attributes.get("data-id", "").strip())
        if match is None:
            return
        self._cell_column = int(match.group(1))
        self._cell_tag = tag
        self._cell_class = attributes.get("class", "").strip()
        self._cell_depth = 1
        self._cell_text = []

    def handle_endtag(self, tag: str) -> None:
        if tag == "tr":
            self._finish_cell()
            self._row = None
            self._cell_re = None
            return
        if self._cell_column is not None and tag == self._cell_tag:
            self._cell_depth -= 1
            if self._cell_depth <= 0:
                self._finish_cell()

    def handle_data(self, data: str) -> None:
        if self._cell_column is not None:
            self._cell_text.append(data)

    def _finish_cell(self) -> None:
        if self._cell_column is None or self._row is None:
            self._cell_column = None
            return
        self._row.cells[self._cell_column] = GridCell(
            value="".join(self._cell_text).strip(),
            css_class=self._cell_class,
        )
        self._cell_column = None
        self._cell_tag = ""
        self._cell_class = ""
        self._cell_depth = 0
        self._cell_text = []


def parse_grid(payload: str) -> tuple[GridRow, ...]:
    """Parse a grid payload into driver rows, in document order.

    The header row is skipped. Markup the parser cannot make sense of simply
    yields fewer rows; this function does not raise on malformed input.
    """
    parser = _GridMarkupParser()
    parser.feed(payload)
    parser.close()
    # Feed payloads are sometimes cut short; keep a trailing unclosed cell.
    parser._finish_cell()  # noqa: SLF001

    rows = tuple(builder.build() for builder in parser.rows if builder.row_id != HEADER_ROW_ID)
    _logger.debug("Parsed grid payload length=%d rows=%d", len(payload), len(rows))
    return rows
