"""Normalization helpers.

Centralizes tolerant parsing of feed values and placeholder handling.
"""

from __future__ import annotations

import re
from typing import Any

from kartmon._constants import DEFAULT_BACKGROUND_COLOR, DEFAULT_TEXT_COLOR, PLACEHOLDER

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")
_LAP_TIME_RE = re.compile(r"^(?:(?P<minutes>\d+):)?(?P<seconds>\d+(?:\.\d+)?)$")
_BORDER_COLOR_RE = re.compile(r"border-bottom-color:\s*([^;!]+)", re.IGNORECASE)
# ``color:`` must start a declaration, otherwise it would match inside ``border-bottom-color:``.
_TEXT_COLOR_RE = re.compile(r"(?:^|;)\s*color:\s*([^;!]+)", re.IGNORECASE)


def safe_int(value: Any) -> int | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        return None


def leading_int(value: Any) -> int:
    """Integer prefix of ``value`` (``"12.5"`` -> 12); 0 when there is none."""
    if value is None:
        return 0
    match = _LEADING_INT_RE.match(str(value))
    return int(match.group(1)) if match else 0


def safe_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def is_placeholder(value: str | None) -> bool:
    """Return True for cells that carry no usable value (empty or ``-``)."""
    if value is None:
        return True
    text = value.strip()
    return not text or text == PLACEHOLDER


def parse_lap_time_ms(value: str | None) -> int | None:
    """Parse a displayed lap time into integer milliseconds.

    ``"MM:SS.mmm"`` -> ``(MM * 60 + SS.mmm) * 1000``; ``"SS.mmm"`` ->
    ``SS.mmm * 1000``. Placeholders, unparsable text and non-positive times
    return ``None``.
    """
    if is_placeholder(value):
        return None
    assert value is not None  # noqa: S101
    match = _LAP_TIME_RE.match(value.strip())
    if match is None:
        return None
    minutes = int(match.group("minutes") or 0)
    seconds = float(match.group("seconds"))
    millis = round((minutes * 60 + seconds) * 1000)
    if millis <= 0:
        return None
    return millis


def parse_css_rule(rule: str) -> tuple[str, str]:
    """Extract ``(background_color, text_color)`` from a ``css|`` rule body.

    The background comes from ``border-bottom-color`` (the feed's badge
    colour). Missing declarations fall back to a neutral pair.
    """
    border = _BORDER_COLOR_RE.search(rule)
    color = _TEXT_COLOR_RE.search(rule)
    background = border.group(1).strip() if border else DEFAULT_BACKGROUND_COLOR
    text = color.group(1).strip() if color else DEFAULT_TEXT_COLOR
    return background, text
