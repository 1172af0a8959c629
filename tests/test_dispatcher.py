from __future__ import annotations

import asyncio
import logging

import pytest

from kartmon.state.stats import LapRecord
from kartmon.storage.gateway import PersistenceDispatcher


class _RecordingGateway:
    """Gateway whose first write for a kart is slow, to expose reordering."""

    def __init__(self, *, slow_first: float = 0.0, fail_on: int | None = None) -> None:
        self.calls: list[tuple[str, str, int]] = []
        self._slow_first = slow_first
        self._fail_on = fail_on
        self._seen: set[str] = set()

    async def upsert_lap(self, track_id, kart_number, kart_class, time_ms, time_display, driver_name) -> None:
        if kart_number not in self._seen:
            self._seen.add(kart_number)
            await asyncio.sleep(self._slow_first)
        if self._fail_on == time_ms:
            raise RuntimeError("write failed")
        self.calls.append(("lap", kart_number, time_ms))

    async def upsert_kart_best(self, track_id, kart_number, kart_class, time_ms, time_display, driver_name) -> None:
        self.calls.append(("best", kart_number, time_ms))


def _record(kart: str, time_ms: int) -> LapRecord:
    return LapRecord(track_id="max60", kart_number=kart, time_ms=time_ms, time_display=str(time_ms))


@pytest.mark.asyncio
async def test_writes_for_one_kart_stay_in_order() -> None:
    gateway = _RecordingGateway(slow_first=0.05)
    dispatcher = PersistenceDispatcher("max60", gateway)

    dispatcher.submit(_record("12", 65250))
    dispatcher.submit(_record("12", 64900))
    assert await dispatcher.drain(timeout=2.0)

    assert gateway.calls == [
        ("lap", "12", 65250),
        ("best", "12", 65250),
        ("lap", "12", 64900),
        ("best", "12", 64900),
    ]
    assert dispatcher.written == 2
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_other_karts_are_not_blocked() -> None:
    gateway = _RecordingGateway(slow_first=0.2)
    dispatcher = PersistenceDispatcher("max60", gateway)

    dispatcher.submit(_record("12", 65250))
    gateway._seen.add("7")  # only kart 12 is slow
    dispatcher.submit(_record("7", 63000))
    await asyncio.sleep(0.05)

    assert ("best", "7", 63000) in gateway.calls
    assert all(kart != "12" for _, kart, _ in gateway.calls)
    await dispatcher.aclose(timeout=2.0)


@pytest.mark.asyncio
async def test_failure_is_logged_and_later_writes_continue(caplog: pytest.LogCaptureFixture) -> None:
    gateway = _RecordingGateway(fail_on=65250)
    dispatcher = PersistenceDispatcher("max60", gateway)

    with caplog.at_level(logging.WARNING, logger="kartmon.storage.gateway"):
        dispatcher.submit(_record("12", 65250))
        dispatcher.submit(_record("12", 64900))
        await dispatcher.drain(timeout=2.0)

    assert dispatcher.failures == 1
    assert dispatcher.written == 1
    assert gateway.calls == [("lap", "12", 64900), ("best", "12", 64900)]
    assert "Persisting lap 65250 for kart #12 failed" in caplog.text


@pytest.mark.asyncio
async def test_aclose_cancels_writes_past_the_timeout() -> None:
    gateway = _RecordingGateway(slow_first=10.0)
    dispatcher = PersistenceDispatcher("max60", gateway)
    dispatcher.submit(_record("12", 65250))

    await dispatcher.aclose(timeout=0.01)

    assert dispatcher.pending == 0
    assert gateway.calls == []

    dispatcher.submit(_record("12", 64900))
    assert dispatcher.pending == 0
