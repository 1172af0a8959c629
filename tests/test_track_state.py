from __future__ import annotations

from feedkit import FakeScheduler, grid_line, grid_row

from kartmon.ingestion.decoder import ProtocolDecoder
from kartmon.state.stats import LapRecord
from kartmon.state.track import TrackState


def _feed(state: TrackState, frame: str) -> None:
    for event in ProtocolDecoder().iter_frame(frame):
        state.apply(event)


def test_grid_then_best_lap_update(scheduler: FakeScheduler) -> None:
    records: list[LapRecord] = []
    state = TrackState("max60", schedule=scheduler, lap_sink=records.append)

    _feed(
        state,
        "init|r|\n"
        + grid_line(grid_row("r1", 1, kart="12", kart_class="no1", name="Alice", best="01:05.250"))
        + "\nr1c11|tb|01:04.900\n",
    )

    stat = state.stats.get("12")
    assert stat is not None
    assert stat.lap_count == 2
    assert stat.best_lap_time_ms == 64900
    assert stat.best_lap_driver == "Alice"
    assert [record.time_display for record in records] == ["01:05.250", "01:04.900"]

    row = state.store.get("r1")
    assert row is not None
    assert row.best_lap.value == "01:04.900"


def test_resent_snapshot_does_not_double_count(scheduler: FakeScheduler) -> None:
    state = TrackState("max60", schedule=scheduler)
    frame = grid_line(grid_row("r1", 1, kart="12", name="Alice", best="01:05.250"))
    _feed(state, frame)
    _feed(state, frame)

    stat = state.stats.get("12")
    assert stat is not None
    assert stat.lap_count == 1


def test_init_clears_rows_but_keeps_statistics(scheduler: FakeScheduler) -> None:
    state = TrackState("max60", schedule=scheduler)
    _feed(state, grid_line(grid_row("r1", 1, kart="12", name="Alice", best="01:05.250")))
    _feed(state, "init|r|")

    assert len(state.store) == 0
    assert "12" in state.stats


def test_race_info_styles_and_counters(scheduler: FakeScheduler) -> None:
    state = TrackState("max60", schedule=scheduler)
    _feed(
        state,
        "title1||Endurance\n"
        "title2||Heat 3\n"
        "track||Max60\n"
        "msg||Green flag\n"
        "dyn1|countdown|600\n"
        "light|lg|\n"
        "com||Welcome\n"
        "css|no1|border-bottom-color:#E00000 !important; color:#FFFFFF !important;\n"
        "something unknown\n",
    )

    info = state.race_info
    assert (info.title1, info.title2, info.track, info.message) == ("Endurance", "Heat 3", "Max60", "Green flag")
    assert (info.countdown, info.light, info.comments) == (600, "lg", "Welcome")
    assert state.styles["no1"].background_color == "#E00000"
    assert state.applied_events == 8
    assert state.ignored_lines == 1


def test_updates_before_any_grid_are_dropped(scheduler: FakeScheduler) -> None:
    records: list[LapRecord] = []
    state = TrackState("max60", schedule=scheduler, lap_sink=records.append)
    _feed(state, "r1c11|tb|01:04.900\nr1|#|2\nr1|*|1|2")

    assert len(state.store) == 0
    assert records == []
    assert scheduler.timers == []


def test_snapshot_bundles_everything(scheduler: FakeScheduler) -> None:
    state = TrackState("max60", schedule=scheduler)
    _feed(
        state,
        grid_line(
            grid_row("r1", 2, kart="12", name="Alice", best="01:05.250"),
            grid_row("r2", 1, kart="7", name="Bob", best="01:04.000"),
        )
        + "\ntitle1||Sprint",
    )

    snapshot = state.snapshot()
    assert snapshot.track_id == "max60"
    assert [row.kart_number for row in snapshot.rows] == ["7", "12"]
    assert [stat.kart_number for stat in snapshot.kart_stats] == ["7", "12"]
    assert snapshot.race_info.title1 == "Sprint"


def test_close_cancels_flash_timers(scheduler: FakeScheduler) -> None:
    state = TrackState("max60", schedule=scheduler)
    _feed(state, grid_line(grid_row("r1", 1, kart="12")) + "\nr1|*i1|14711")
    state.close()

    assert scheduler.timers[0].cancelled
