"""SQLite implementation of the persistence contract.

Blocking ``sqlite3`` calls run in the default executor behind a lock, so the
event loop that decodes the feed is never held up by disk I/O.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar

from kartmon.exceptions import KartmonPersistenceError
from kartmon.state.stats import KartBestLap, LapRecord

_logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS lap_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    track_id TEXT NOT NULL,
    kart_number TEXT NOT NULL,
    kart_class TEXT,
    driver_name TEXT NOT NULL DEFAULT '',
    time_ms INTEGER NOT NULL,
    time_display TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_lap_records_track_kart
    ON lap_records(track_id, kart_number, created_at DESC);

CREATE INDEX IF NOT EXISTS idx_lap_records_created
    ON lap_records(created_at);

CREATE TABLE IF NOT EXISTS kart_best_laps (
    track_id TEXT NOT NULL,
    kart_number TEXT NOT NULL,
    kart_class TEXT,
    best_lap_time INTEGER NOT NULL,
    best_lap_display TEXT NOT NULL,
    best_lap_driver TEXT NOT NULL DEFAULT '',
    lap_count INTEGER NOT NULL DEFAULT 1,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (track_id, kart_number)
);
"""

# Every SET expression reads the pre-update row, so the CASEs see the old best.
_UPSERT_KART_BEST = """
INSERT INTO kart_best_laps (
    track_id, kart_number, kart_class, best_lap_time, best_lap_display,
    best_lap_driver, lap_count, updated_at
) VALUES (?, ?, ?, ?, ?, ?, 1, ?)
ON CONFLICT(track_id, kart_number) DO UPDATE SET
    lap_count = kart_best_laps.lap_count + 1,
    best_lap_display = CASE WHEN excluded.best_lap_time < kart_best_laps.best_lap_time
        THEN excluded.best_lap_display ELSE kart_best_laps.best_lap_display END,
    best_lap_driver = CASE WHEN excluded.best_lap_time < kart_best_laps.best_lap_time
        THEN excluded.best_lap_driver ELSE kart_best_laps.best_lap_driver END,
    best_lap_time = MIN(kart_best_laps.best_lap_time, excluded.best_lap_time),
    kart_class = COALESCE(excluded.kart_class, kart_best_laps.kart_class),
    updated_at = excluded.updated_at
"""


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _to_text(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


class SqliteGateway:
    """Durable lap store backed by a single SQLite file.

    Usage::

        async with SqliteGateway("kartmon.db") as gateway:
            await gateway.upsert_lap("max60", "12", None, 64900, "01:04.900", "Alice")
    """

    def __init__(
        self,
        path: str | Path,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._path = str(path)
        self._clock = clock
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None

    async def __aenter__(self) -> SqliteGateway:
        await self.open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        await self._run(self._open_sync)

    async def close(self) -> None:
        await self._run(self._close_sync)

    def _open_sync(self) -> None:
        if self._conn is not None:
            return
        conn = sqlite3.connect(self._path, timeout=5.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        if self._path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        conn.executescript(_SCHEMA)
        conn.commit()
        self._conn = conn
        _logger.debug("Opened lap database %s", self._path)

    def _close_sync(self) -> None:
        conn = self._conn
        self._conn = None
        if conn is not None:
            conn.close()

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()

        def locked() -> T:
            with self._lock:
                return fn(*args)

        return await loop.run_in_executor(None, locked)

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._open_sync()
        assert self._conn is not None  # noqa: S101
        return self._conn

    # ------------------------------------------------------------------
    # Persistence contract
    # ------------------------------------------------------------------

    async def upsert_lap(
        self,
        track_id: str,
        kart_number: str,
        kart_class: str | None,
        time_ms: int,
        time_display: str,
        driver_name: str,
    ) -> None:
        created_at = _to_text(self._clock())

        def write() -> None:
            conn = self._require_conn()
            try:
                with conn:
                    conn.execute(
                        "INSERT INTO lap_records (track_id, kart_number, kart_class, driver_name,"
                        " time_ms, time_display, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                        (track_id, kart_number, kart_class, driver_name, int(time_ms), time_display, created_at),
                    )
            except sqlite3.Error as exc:
                raise KartmonPersistenceError(
                    f"Failed to store lap {time_display} for kart #{kart_number}: {exc}",
                    track_id=track_id,
                    kart_number=kart_number,
                ) from exc

        await self._run(write)

    async def upsert_kart_best(
        self,
        track_id: str,
        kart_number: str,
        kart_class: str | None,
        time_ms: int,
        time_display: str,
        driver_name: str,
    ) -> None:
        updated_at = _to_text(self._clock())

        def write() -> None:
            conn = self._require_conn()
            try:
                with conn:
                    conn.execute(
                        _UPSERT_KART_BEST,
                        (track_id, kart_number, kart_class, int(time_ms), time_display, driver_name, updated_at),
                    )
            except sqlite3.Error as exc:
                raise KartmonPersistenceError(
                    f"Failed to update best lap for kart #{kart_number}: {exc}",
                    track_id=track_id,
                    kart_number=kart_number,
                ) from exc

        await self._run(write)

    # ------------------------------------------------------------------
    # Queries and maintenance
    # ------------------------------------------------------------------

    async def kart_best_laps(self, track_id: str) -> list[KartBestLap]:
        """Best laps for a track, fastest first."""

        def read() -> list[KartBestLap]:
            rows = self._require_conn().execute(
                "SELECT * FROM kart_best_laps WHERE track_id = ? ORDER BY best_lap_time ASC",
                (track_id,),
            ).fetchall()
            return [
                KartBestLap(
                    track_id=row["track_id"],
                    kart_number=row["kart_number"],
                    kart_class=row["kart_class"] or "",
                    best_lap_time=row["best_lap_time"],
                    best_lap_display=row["best_lap_display"],
                    best_lap_driver=row["best_lap_driver"],
                    lap_count=row["lap_count"],
                    updated_at=datetime.fromisoformat(row["updated_at"]),
                )
                for row in rows
            ]

        return await self._run(read)

    async def lap_records(self, track_id: str, kart_number: str | None = None, limit: int = 50) -> list[LapRecord]:
        """Most recent lap records, newest first."""

        def read() -> list[LapRecord]:
            query = "SELECT * FROM lap_records WHERE track_id = ?"
            params: list[Any] = [track_id]
            if kart_number is not None:
                query += " AND kart_number = ?"
                params.append(kart_number)
            query += " ORDER BY created_at DESC, id DESC LIMIT ?"
            params.append(limit)
            rows = self._require_conn().execute(query, params).fetchall()
            return [
                LapRecord(
                    track_id=row["track_id"],
                    kart_number=row["kart_number"],
                    kart_class=row["kart_class"] or "",
                    driver_name=row["driver_name"],
                    time_ms=row["time_ms"],
                    time_display=row["time_display"],
                    created_at=datetime.fromisoformat(row["created_at"]),
                )
                for row in rows
            ]

        return await self._run(read)

    async def cleanup_older_than(self, cutoff: datetime) -> int:
        """Delete lap records created before ``cutoff``; returns the count."""
        cutoff_text = _to_text(cutoff)

        def delete() -> int:
            conn = self._require_conn()
            with conn:
                cursor = conn.execute("DELETE FROM lap_records WHERE created_at < ?", (cutoff_text,))
            return cursor.rowcount

        deleted = await self._run(delete)
        if deleted:
            _logger.info("Cleanup: deleted %d lap records older than %s", deleted, cutoff_text)
        return deleted
