"""Live-timing protocol decoder.

The feed sends newline separated, pipe delimited lines. Each line is matched
against a single ordered dispatch table (most specific shape first) and turned
into one :mod:`kartmon.state.events` event. Nothing in here keeps state and
nothing raises: lines that match no rule, or match but carry garbage, come
back as :class:`~kartmon.state.events.IgnoredLine`.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from kartmon.ingestion.grid import parse_grid
from kartmon.ingestion.normalize import leading_int, parse_css_rule
from kartmon.state.events import (
    CellUpdateEvent,
    FeedEvent,
    FlashEvent,
    GridSnapshotEvent,
    IgnoredLine,
    InitEvent,
    PositionUpdateEvent,
    RaceInfoEvent,
    RaceInfoField,
    StyleDefEvent,
)

_logger = logging.getLogger(__name__)

_Builder = Callable[[str, "re.Match[str] | None"], FeedEvent]


@dataclass(frozen=True)
class _Rule:
    """One dispatch-table entry: a literal prefix or an anchored regex."""

    name: str
    build: _Builder
    prefix: str | None = None
    pattern: re.Pattern[str] | None = None

    def match(self, line: str) -> tuple[bool, re.Match[str] | None]:
        if self.prefix is not None:
            return line.startswith(self.prefix), None
        assert self.pattern is not None  # noqa: S101
        found = self.pattern.match(line)
        return found is not None, found


def _rest(line: str, skip: int) -> str:
    """Everything after the first ``skip`` pipe-separated fields."""
    parts = line.split("|", skip)
    return parts[skip] if len(parts) > skip else ""


def _field(line: str, index: int) -> str:
    parts = line.split("|")
    return parts[index] if len(parts) > index else ""


def _build_init(_line: str, _match: re.Match[str] | None) -> FeedEvent:
    return InitEvent()


def _build_style(line: str, _match: re.Match[str] | None) -> FeedEvent:
    name = _field(line, 1).strip()
    rule = _rest(line, 2)
    if not name or not rule:
        return IgnoredLine(line=line, reason="incomplete style definition")
    background, text = parse_css_rule(rule)
    return StyleDefEvent(name=name, background_color=background, text_color=text)


def _race_info(field: RaceInfoField, *, skip: int) -> _Builder:
    def build(line: str, _match: re.Match[str] | None) -> FeedEvent:
        return RaceInfoEvent(field=field, value=_rest(line, skip))

    return build


def _build_light(line: str, _match: re.Match[str] | None) -> FeedEvent:
    return RaceInfoEvent(field=RaceInfoField.LIGHT, value=_field(line, 1))


def _build_countdown(line: str, _match: re.Match[str] | None) -> FeedEvent:
    # "12.5" reads as 12; text without a leading integer reads as 0.
    return RaceInfoEvent(field=RaceInfoField.COUNTDOWN, value=str(leading_int(_field(line, 2))))


def _build_grid(line: str, _match: re.Match[str] | None) -> FeedEvent:
    payload = _rest(line, 2)
    return GridSnapshotEvent(payload=payload, rows=parse_grid(payload))


def _build_cell(_line: str, match: re.Match[str] | None) -> FeedEvent:
    assert match is not None  # noqa: S101
    row_id, column, css_class, value = match.groups()
    return CellUpdateEvent(row_id=row_id, column=int(column), css_class=css_class, value=value)


def _build_position(_line: str, match: re.Match[str] | None) -> FeedEvent:
    assert match is not None  # noqa: S101
    return PositionUpdateEvent(row_id=match.group(1), position=int(match.group(2)))


def _build_flash(_line: str, match: re.Match[str] | None) -> FeedEvent:
    assert match is not None  # noqa: S101
    return FlashEvent(row_id=match.group(1), flash_kind=match.group(2))


_RULES: tuple[_Rule, ...] = (
    _Rule("init", _build_init, prefix="init|"),
    _Rule("css", _build_style, prefix="css|"),
    _Rule("title1", _race_info(RaceInfoField.TITLE1, skip=2), prefix="title1||"),
    _Rule("title2", _race_info(RaceInfoField.TITLE2, skip=2), prefix="title2||"),
    _Rule("track", _race_info(RaceInfoField.TRACK, skip=2), prefix="track||"),
    _Rule("msg", _race_info(RaceInfoField.MESSAGE, skip=2), prefix="msg||"),
    _Rule("countdown", _build_countdown, prefix="dyn1|countdown|"),
    _Rule("light", _build_light, prefix="light|"),
    _Rule("com", _race_info(RaceInfoField.COMMENTS, skip=2), prefix="com||"),
    _Rule("grid", _build_grid, prefix="grid||"),
    # r42c8|tn|11.125  /  r42c2|sr|  /  r42c2|sr
    _Rule("cell", _build_cell, pattern=re.compile(r"^(r\d+)c(\d+)\|([^|]*)(?:\|(.*))?$")),
    # r42|#|3
    _Rule("position", _build_position, pattern=re.compile(r"^(r\d+)\|#\|(\d+)$")),
    # r42|*|39422|13700  /  r27|*i1|14711
    _Rule("flash", _build_flash, pattern=re.compile(r"^(r\d+)\|\*([^|]*)\|")),
)


class ProtocolDecoder:
    """Stateless line decoder for the live-timing protocol."""

    rules: tuple[_Rule, ...] = _RULES

    def decode_line(self, line: str) -> FeedEvent:
        """Decode one line into an event. Never raises."""
        text = line.rstrip("\r\n")
        for rule in self.rules:
            matched, found = rule.match(text)
            if not matched:
                continue
            try:
                return rule.build(text, found)
            except Exception:
                _logger.debug("Malformed %s line: %.120s", rule.name, text, exc_info=True)
                return IgnoredLine(line=text, reason=f"malformed {rule.name} line")
        return IgnoredLine(line=text)

    def iter_frame(self, frame: str) -> Iterator[FeedEvent]:
        """Yield events for every non-blank line of a socket frame, in order."""
        for line in frame.split("\n"):
            if not line.strip():
                continue
            yield self.decode_line(line)

    def decode_frame(self, frame: str) -> list[FeedEvent]:
        return list(self.iter_frame(frame))


_DEFAULT_DECODER = ProtocolDecoder()


def decode_line(line: str) -> FeedEvent:
    """Module-level shortcut for :meth:`ProtocolDecoder.decode_line`."""
    return _DEFAULT_DECODER.decode_line(line)


def decode_frame(frame: str) -> list[FeedEvent]:
    """Module-level shortcut for :meth:`ProtocolDecoder.decode_frame`."""
    return _DEFAULT_DECODER.decode_frame(frame)
