from __future__ import annotations

import logging

import pytest

from kartmon.state.stats import KartBestLap, LapObservation, LapRecord, LapStatsAggregator


def _obs(time: str, *, kart: str = "12", driver: str = "Alice", kart_class: str = "no1") -> LapObservation:
    return LapObservation(kart_number=kart, kart_class=kart_class, time_display=time, driver_name=driver)


def test_first_observation_creates_kart() -> None:
    stats = LapStatsAggregator("max60")
    stat = stats.record(_obs("01:05.250"))

    assert stat is not None
    assert stat.lap_count == 1
    assert stat.best_lap_time_ms == 65250
    assert stat.best_lap_display == "01:05.250"
    assert stat.best_lap_driver == "Alice"
    assert stat.average_lap_time_ms == 65250.0
    assert list(stat.recent_lap_times_ms) == [65250]


def test_consecutive_duplicate_is_not_counted() -> None:
    stats = LapStatsAggregator("max60")
    stats.record(_obs("01:05.250"))
    assert stats.record(_obs("01:05.250")) is None

    stat = stats.get("12")
    assert stat is not None
    assert stat.lap_count == 1


def test_non_consecutive_repeat_is_counted() -> None:
    stats = LapStatsAggregator("max60")
    for time in ("01:05.250", "01:06.000", "01:05.250"):
        stats.record(_obs(time))

    stat = stats.get("12")
    assert stat is not None
    assert stat.lap_count == 3
    assert stat.best_lap_time_ms == 65250
    assert stat.average_lap_time_ms == pytest.approx((65250 + 66000 + 65250) / 3)


def test_best_is_minimum_and_tracks_its_driver() -> None:
    stats = LapStatsAggregator("max60")
    stats.record(_obs("01:05.250", driver="Alice"))
    stats.record(_obs("01:04.900", driver="Bea"))
    stats.record(_obs("01:07.000", driver="Cleo"))

    stat = stats.get("12")
    assert stat is not None
    assert stat.best_lap_time_ms == 64900
    assert stat.best_lap_driver == "Bea"
    assert stat.last_driver == "Cleo"


def test_equal_time_does_not_replace_best_driver() -> None:
    stats = LapStatsAggregator("max60")
    stats.record(_obs("01:05.000", driver="Alice"))
    stats.record(_obs("01:06.000", driver="Bea"))
    stats.record(_obs("01:05.000", driver="Bea"))

    stat = stats.get("12")
    assert stat is not None
    assert stat.best_lap_driver == "Alice"


def test_duplicate_still_refreshes_identity() -> None:
    stats = LapStatsAggregator("max60")
    stats.record(_obs("01:05.250", driver="Alice", kart_class="no1"))
    stats.record(_obs("01:05.250", driver="Bea", kart_class="no2"))

    stat = stats.get("12")
    assert stat is not None
    assert stat.lap_count == 1
    assert stat.kart_class == "no2"
    assert stat.last_driver == "Bea"


@pytest.mark.parametrize("time", ["-", "", "0.000", "n/a"])
def test_unusable_times_are_discarded(time: str) -> None:
    stats = LapStatsAggregator("max60")
    assert stats.record(_obs(time)) is None
    assert "12" not in stats


def test_recent_window_is_bounded() -> None:
    stats = LapStatsAggregator("max60", history_size=3)
    for time in ("61.0", "62.0", "63.0", "64.0"):
        stats.record(_obs(time))

    stat = stats.get("12")
    assert stat is not None
    assert list(stat.recent_lap_times_ms) == [62000, 63000, 64000]
    assert stat.lap_count == 4
    assert stat.average_lap_time_ms == 63000.0
    assert stat.best_lap_time_ms == 61000


def test_only_accepted_observations_reach_sink() -> None:
    records: list[LapRecord] = []
    stats = LapStatsAggregator("max60", sink=records.append)
    stats.record(_obs("01:05.250"))
    stats.record(_obs("01:05.250"))
    stats.record(_obs("-"))
    stats.record(_obs("01:04.900"))

    assert [record.time_ms for record in records] == [65250, 64900]
    assert all(record.track_id == "max60" for record in records)


def test_sink_failure_does_not_break_statistics(caplog: pytest.LogCaptureFixture) -> None:
    def broken(_record: LapRecord) -> None:
        raise RuntimeError("disk on fire")

    stats = LapStatsAggregator("max60", sink=broken)
    with caplog.at_level(logging.WARNING, logger="kartmon.state.stats"):
        stat = stats.record(_obs("01:05.250"))

    assert stat is not None
    assert "Lap sink failed" in caplog.text


def test_ranking_is_fastest_first() -> None:
    stats = LapStatsAggregator("max60")
    stats.record(_obs("01:06.000", kart="7"))
    stats.record(_obs("01:05.000", kart="12"))
    stats.record(_obs("01:07.000", kart="3"))

    assert [stat.kart_number for stat in stats.ranking()] == ["12", "7", "3"]


def test_restore_seeds_only_unknown_karts() -> None:
    stats = LapStatsAggregator("max60")
    stats.record(_obs("01:05.000", kart="12"))

    seeded = stats.restore(
        [
            KartBestLap(track_id="max60", kart_number="12", best_lap_time=60000, best_lap_display="01:00.000"),
            KartBestLap(
                track_id="max60",
                kart_number="7",
                kart_class="no2",
                best_lap_time=63000,
                best_lap_display="01:03.000",
                best_lap_driver="Bob",
                lap_count=9,
            ),
        ]
    )

    assert seeded == 1
    live = stats.get("12")
    assert live is not None
    assert live.best_lap_time_ms == 65000
    restored = stats.get("7")
    assert restored is not None
    assert (restored.lap_count, restored.best_lap_driver, restored.kart_class) == (9, "Bob", "no2")
