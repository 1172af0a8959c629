from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from kartmon.storage.gateway import PersistenceGateway, SupportsBestLapQuery, SupportsRetention
from kartmon.storage.sqlite import SqliteGateway


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


@pytest.mark.asyncio
async def test_kart_best_upsert_semantics(tmp_path: Path) -> None:
    async with SqliteGateway(tmp_path / "laps.db") as gateway:
        await gateway.upsert_kart_best("max60", "12", "no1", 65250, "01:05.250", "Alice")
        await gateway.upsert_kart_best("max60", "12", None, 66000, "01:06.000", "Bea")
        await gateway.upsert_kart_best("max60", "12", None, 64900, "01:04.900", "Cleo")

        (best,) = await gateway.kart_best_laps("max60")

    assert best.lap_count == 3
    assert best.best_lap_time == 64900
    assert best.best_lap_display == "01:04.900"
    assert best.best_lap_driver == "Cleo"
    assert best.kart_class == "no1"


@pytest.mark.asyncio
async def test_slower_lap_keeps_stored_best(tmp_path: Path) -> None:
    async with SqliteGateway(tmp_path / "laps.db") as gateway:
        await gateway.upsert_kart_best("max60", "12", "no1", 64900, "01:04.900", "Alice")
        await gateway.upsert_kart_best("max60", "12", "no2", 65000, "01:05.000", "Bea")
        (best,) = await gateway.kart_best_laps("max60")

    assert (best.best_lap_time, best.best_lap_driver, best.lap_count) == (64900, "Alice", 2)
    assert best.kart_class == "no2"


@pytest.mark.asyncio
async def test_best_laps_are_per_track_and_sorted(tmp_path: Path) -> None:
    async with SqliteGateway(tmp_path / "laps.db") as gateway:
        await gateway.upsert_kart_best("max60", "12", None, 65000, "01:05.000", "Alice")
        await gateway.upsert_kart_best("max60", "7", None, 63000, "01:03.000", "Bob")
        await gateway.upsert_kart_best("slovakiaring", "12", None, 90000, "01:30.000", "Carl")

        best = await gateway.kart_best_laps("max60")

    assert [row.kart_number for row in best] == ["7", "12"]


@pytest.mark.asyncio
async def test_lap_records_and_retention(tmp_path: Path) -> None:
    clock = _Clock()
    async with SqliteGateway(tmp_path / "laps.db", clock=clock) as gateway:
        await gateway.upsert_lap("max60", "12", "no1", 65250, "01:05.250", "Alice")
        clock.now += timedelta(hours=50)
        await gateway.upsert_lap("max60", "12", None, 64900, "01:04.900", "Alice")
        await gateway.upsert_lap("max60", "7", None, 63000, "01:03.000", "Bob")

        records = await gateway.lap_records("max60", kart_number="12")
        assert [record.time_ms for record in records] == [64900, 65250]
        assert records[1].kart_class == "no1"
        assert records[0].kart_class == ""

        deleted = await gateway.cleanup_older_than(clock.now - timedelta(hours=48))
        assert deleted == 1
        remaining = await gateway.lap_records("max60")

    assert sorted(record.time_ms for record in remaining) == [63000, 64900]


@pytest.mark.asyncio
async def test_data_survives_reopen(tmp_path: Path) -> None:
    path = tmp_path / "laps.db"
    async with SqliteGateway(path) as gateway:
        await gateway.upsert_kart_best("max60", "12", None, 65000, "01:05.000", "Alice")

    async with SqliteGateway(path) as gateway:
        best = await gateway.kart_best_laps("max60")

    assert [row.best_lap_time for row in best] == [65000]


def test_gateway_satisfies_protocols() -> None:
    gateway: PersistenceGateway = SqliteGateway(":memory:")
    assert isinstance(gateway, SupportsBestLapQuery)
    assert isinstance(gateway, SupportsRetention)
