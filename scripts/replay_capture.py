#!/usr/bin/env python3
"""Replay a captured live-timing feed and print the resulting standings.

The capture is a plain text file with one feed line per line, exactly as the
socket delivered them (frames concatenated). Useful for checking decoder
changes against a real session without connecting to a track.

Usage
-----
::

    python scripts/replay_capture.py capture.txt
    python scripts/replay_capture.py capture.txt --track max60 --json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

_src = Path(__file__).resolve().parent.parent / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from kartmon.ingestion.decoder import ProtocolDecoder  # noqa: E402
from kartmon.state.track import TrackState  # noqa: E402


def _format_ms(value: float) -> str:
    minutes, millis = divmod(round(value), 60_000)
    return f"{minutes:02d}:{millis / 1000:06.3f}"


async def replay(path: Path, track_id: str) -> TrackState:
    decoder = ProtocolDecoder()
    state = TrackState(track_id)
    with path.open(encoding="utf-8", errors="replace") as handle:
        for line in handle:
            state.apply(decoder.decode_line(line))
    state.close()
    return state


def main() -> None:
    parser = argparse.ArgumentParser(description="Replay a captured live-timing feed.")
    parser.add_argument("capture", type=Path, help="Captured feed lines")
    parser.add_argument("--track", default="replay", help="Track id to report under")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    if not args.capture.is_file():
        print(f"No such capture: {args.capture}", file=sys.stderr)
        sys.exit(2)

    # The flash timers need a running loop even though nothing waits on them.
    state = asyncio.run(replay(args.capture, args.track))
    snapshot = state.snapshot()

    if args.json_mode:
        print(json.dumps(snapshot.model_dump(mode="json"), indent=2, ensure_ascii=False))
        return

    info = snapshot.race_info
    print(f"{info.title1} {info.title2}".strip() or args.track)
    print(f"events={state.applied_events} ignored={state.ignored_lines} rows={len(snapshot.rows)}")
    print()
    print(f"{'Kart':>5}  {'Best':>9}  {'Avg':>9}  {'Laps':>4}  Driver")
    for stat in snapshot.kart_stats:
        print(
            f"{stat.kart_number:>5}  {stat.best_lap_display:>9}  {_format_ms(stat.average_lap_time_ms):>9}"
            f"  {stat.lap_count:>4}  {stat.best_lap_driver}"
        )


if __name__ == "__main__":
    main()
