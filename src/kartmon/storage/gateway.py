"""Persistence contract and per-kart write sequencing.

The live-timing core never talks to a database directly. It hands accepted
laps to a :class:`PersistenceDispatcher`, which calls a
:class:`PersistenceGateway` in the background. Writes for the same kart run
strictly one after another so that the storage-side best-lap comparison is
never overtaken by an older lap; different karts write concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Protocol, runtime_checkable

from kartmon.state.stats import KartBestLap, LapRecord

_logger = logging.getLogger(__name__)


class PersistenceGateway(Protocol):
    """Structural storage interface consumed by the monitor.

    ``upsert_kart_best`` semantics: when no row exists for the kart, create it
    with ``lap_count = 1``; otherwise increment ``lap_count`` and overwrite the
    best-lap fields only when ``time_ms`` is smaller than the stored best.
    """

    async def upsert_lap(
        self,
        track_id: str,
        kart_number: str,
        kart_class: str | None,
        time_ms: int,
        time_display: str,
        driver_name: str,
    ) -> None: ...

    async def upsert_kart_best(
        self,
        track_id: str,
        kart_number: str,
        kart_class: str | None,
        time_ms: int,
        time_display: str,
        driver_name: str,
    ) -> None: ...


@runtime_checkable
class SupportsBestLapQuery(Protocol):
    async def kart_best_laps(self, track_id: str) -> list[KartBestLap]: ...


@runtime_checkable
class SupportsRetention(Protocol):
    async def cleanup_older_than(self, cutoff: datetime) -> int: ...


class PersistenceDispatcher:
    """Fire-and-forget upserts, serialized per kart.

    ``submit`` never blocks and never raises; failures are logged and the
    in-memory statistics stay as they are.
    """

    def __init__(self, track_id: str, gateway: PersistenceGateway) -> None:
        self._track_id = track_id
        self._gateway = gateway
        self._tails: dict[str, asyncio.Task[None]] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False
        self.failures = 0
        self.written = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, record: LapRecord) -> None:
        """Queue both upserts for ``record`` behind earlier writes for its kart."""
        if self._closed:
            _logger.debug("[%s] Dispatcher closed; dropping lap for kart #%s", self._track_id, record.kart_number)
            return

        key = record.kart_number
        previous = self._tails.get(key)
        task = asyncio.get_running_loop().create_task(
            self._write_after(previous, record),
            name=f"kartmon-upsert-{self._track_id}-{key}",
        )
        self._tails[key] = task
        self._tasks.add(task)
        task.add_done_callback(lambda done, k=key: self._forget(k, done))

    def _forget(self, key: str, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if self._tails.get(key) is task:
            self._tails.pop(key, None)

    async def _write_after(self, previous: asyncio.Task[None] | None, record: LapRecord) -> None:
        if previous is not None and not previous.done():
            # ``wait`` (not ``await``) so a failed or cancelled predecessor does not leak here.
            await asyncio.wait({previous})
        try:
            await self._gateway.upsert_lap(
                record.track_id,
                record.kart_number,
                record.kart_class or None,
                record.time_ms,
                record.time_display,
                record.driver_name,
            )
            await self._gateway.upsert_kart_best(
                record.track_id,
                record.kart_number,
                record.kart_class or None,
                record.time_ms,
                record.time_display,
                record.driver_name,
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            self.failures += 1
            _logger.warning(
                "[%s] Persisting lap %s for kart #%s failed",
                self._track_id,
                record.time_display,
                record.kart_number,
                exc_info=True,
            )
            return
        self.written += 1

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for queued writes. Returns False if ``timeout`` expired first."""
        if not self._tasks:
            return True
        _done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        return not pending

    async def aclose(self, timeout: float | None = None) -> None:
        """Stop accepting laps, wait for queued writes, cancel stragglers."""
        self._closed = True
        if await self.drain(timeout):
            return
        stragglers = list(self._tasks)
        _logger.warning("[%s] Cancelling %d unfinished lap writes", self._track_id, len(stragglers))
        for task in stragglers:
            task.cancel()
        await asyncio.gather(*stragglers, return_exceptions=True)
