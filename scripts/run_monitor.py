#!/usr/bin/env python3
"""Run the live-timing monitor for every configured track.

Usage
-----
Configure through ``KARTMON_*`` environment variables and run::

    export KARTMON_DATABASE_PATH="/var/lib/kartmon/laps.db"
    python scripts/run_monitor.py

Options::

    --track ID          Only monitor this track id (repeatable)
    --database FILE     SQLite file (overrides KARTMON_DATABASE_PATH)
    --no-persistence    Keep lap statistics in memory only
    --verbose, -v       Enable debug logging
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

_src = Path(__file__).resolve().parent.parent / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from kartmon import KartmonConfigError, MonitorConfig, SqliteGateway, TrackSupervisorPool  # noqa: E402

_logger = logging.getLogger("kartmon.run_monitor")


def _build_config(args: argparse.Namespace) -> MonitorConfig:
    overrides: dict[str, object] = {}
    if args.database:
        overrides["database_path"] = args.database
    if args.no_persistence:
        overrides["persistence_enabled"] = False
    config = MonitorConfig.from_env(**overrides)
    if args.track:
        tracks = tuple(config.track(track_id) for track_id in args.track)
        config = MonitorConfig.from_env(**overrides, tracks=tracks)
    return config


async def run(config: MonitorConfig) -> None:
    if not config.persistence_enabled:
        async with TrackSupervisorPool(config) as pool:
            await pool.run_until_signalled()
        return

    async with SqliteGateway(config.database_path) as gateway:
        async with TrackSupervisorPool(config, gateway) as pool:
            await pool.run_until_signalled()


def main() -> None:
    parser = argparse.ArgumentParser(description="Monitor kart live-timing feeds and record lap statistics.")
    parser.add_argument("--track", action="append", help="Only monitor this track id (repeatable)")
    parser.add_argument("--database", help="SQLite file (overrides KARTMON_DATABASE_PATH)")
    parser.add_argument("--no-persistence", action="store_true", help="Keep lap statistics in memory only")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _build_config(args)
    except KartmonConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(2)

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        _logger.info("Interrupted")


if __name__ == "__main__":
    main()
