"""Fakes and feed markup builders shared by the tests."""

from __future__ import annotations

from collections.abc import Callable


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.callback()


class FakeScheduler:
    """Collects ``call_later``-style requests so tests fire them by hand."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer


def grid_line(*rows: str) -> str:
    return "grid||<tbody>" + "".join(rows) + "</tbody>"


def grid_row(
    row_id: str,
    position: int,
    *,
    kart: str = "",
    kart_class: str = "",
    name: str = "",
    best: str = "",
) -> str:
    return (
        f'<tr data-id="{row_id}" data-pos="{position}">'
        f'<td data-id="{row_id}c3" class="rk">{position}</td>'
        f'<td class="no"><div data-id="{row_id}c4" class="{kart_class}">{kart}</div></td>'
        f'<td data-id="{row_id}c5" class="dr">{name}</td>'
        f'<td data-id="{row_id}c11" class="tb">{best}</td>'
        "</tr>"
    )
