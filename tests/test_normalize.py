from __future__ import annotations

import pytest

from kartmon.ingestion.normalize import is_placeholder, leading_int, parse_css_rule, parse_lap_time_ms, safe_int


@pytest.mark.parametrize(
    ("display", "expected"),
    [
        ("01:02.345", 62345),
        ("1:04.900", 64900),
        ("11.125", 11125),
        (" 00:41.208 ", 41208),
        ("45", 45000),
    ],
)
def test_lap_time_parsing(display: str, expected: int) -> None:
    assert parse_lap_time_ms(display) == expected


@pytest.mark.parametrize("display", [None, "", "  ", "-", "0.000", "00:00.000", "1 LAP", "01:02:03.4", "abc"])
def test_lap_time_rejects_placeholders_and_garbage(display: str | None) -> None:
    assert parse_lap_time_ms(display) is None


def test_placeholder_detection() -> None:
    assert is_placeholder(None)
    assert is_placeholder(" - ")
    assert not is_placeholder("01:02.345")


def test_safe_int() -> None:
    assert safe_int(" 42 ") == 42
    assert safe_int("4.2") is None
    assert safe_int("") is None
    assert safe_int(None) is None


def test_leading_int() -> None:
    assert leading_int("12.5") == 12
    assert leading_int("-3") == -3
    assert leading_int("x12") == 0
    assert leading_int(None) == 0


def test_css_rule_extracts_badge_colours() -> None:
    rule = "border-bottom-color:#FF0000 !important; color:#000000 !important;"
    assert parse_css_rule(rule) == ("#FF0000", "#000000")


def test_css_rule_text_colour_not_taken_from_border_declaration() -> None:
    background, text = parse_css_rule("border-bottom-color: #00A0E0;")
    assert background == "#00A0E0"
    assert text == "#FFF"


def test_css_rule_defaults() -> None:
    assert parse_css_rule("font-weight: bold") == ("#333", "#FFF")
