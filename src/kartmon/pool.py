"""Run one supervisor per configured track."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from datetime import UTC, datetime, timedelta
from typing import Any

import aiohttp

from kartmon.config import MonitorConfig
from kartmon.exceptions import KartmonConfigError
from kartmon.state.track import TrackSnapshot
from kartmon.storage.gateway import PersistenceGateway, SupportsBestLapQuery, SupportsRetention
from kartmon.supervisor import ConnectionSupervisor, SupervisorState

_logger = logging.getLogger(__name__)


class TrackSupervisorPool:
    """Independent supervisors sharing one HTTP session and one gateway.

    A failure on one track never touches another: each supervisor has its own
    socket, state and reconnect schedule.

    Usage::

        async with TrackSupervisorPool(MonitorConfig.from_env(), gateway) as pool:
            await pool.run_until_signalled()
    """

    def __init__(
        self,
        config: MonitorConfig,
        gateway: PersistenceGateway | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._gateway = gateway
        self._external_session = session is not None
        self._http_session = session
        self._supervisors: dict[str, ConnectionSupervisor] = {}
        self._cleanup_task: asyncio.Task[None] | None = None
        self._started = False

    async def __aenter__(self) -> TrackSupervisorPool:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    @property
    def supervisors(self) -> dict[str, ConnectionSupervisor]:
        return dict(self._supervisors)

    def supervisor(self, track_id: str) -> ConnectionSupervisor:
        try:
            return self._supervisors[track_id]
        except KeyError:
            raise KartmonConfigError(f"unknown track {track_id!r}") from None

    def snapshots(self) -> dict[str, TrackSnapshot]:
        return {track_id: sup.state.snapshot() for track_id, sup in self._supervisors.items()}

    def statuses(self) -> dict[str, SupervisorState]:
        return {track_id: sup.status for track_id, sup in self._supervisors.items()}

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()

        for track in self._config.tracks:
            supervisor = ConnectionSupervisor(
                track,
                self._config,
                session=self._http_session,
                gateway=self._gateway,
            )
            self._supervisors[track.id] = supervisor
            await self._restore(supervisor)

        for supervisor in self._supervisors.values():
            supervisor.start()
        _logger.info("Monitoring %d track(s): %s", len(self._supervisors), ", ".join(self._supervisors))

        if (
            self._gateway is not None
            and isinstance(self._gateway, SupportsRetention)
            and self._config.retention_hours > 0
        ):
            self._cleanup_task = asyncio.get_running_loop().create_task(
                self._retention_loop(self._gateway), name="kartmon-retention"
            )

    async def _restore(self, supervisor: ConnectionSupervisor) -> None:
        if self._gateway is None or not isinstance(self._gateway, SupportsBestLapQuery):
            return
        track_id = supervisor.track.id
        try:
            best_laps = await self._gateway.kart_best_laps(track_id)
        except Exception:
            _logger.warning("[%s] Could not load stored best laps", track_id, exc_info=True)
            return
        seeded = supervisor.state.stats.restore(best_laps)
        if seeded:
            _logger.info("[%s] Restored %d kart best laps", track_id, seeded)

    async def _retention_loop(self, gateway: SupportsRetention) -> None:
        while True:
            cutoff = datetime.now(UTC) - timedelta(hours=self._config.retention_hours)
            try:
                await gateway.cleanup_older_than(cutoff)
            except Exception:
                _logger.warning("Retention sweep failed", exc_info=True)
            await asyncio.sleep(self._config.cleanup_interval)

    async def stop(self) -> None:
        """Stop every supervisor; in-flight upserts are drained per track."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None

        if self._supervisors:
            results = await asyncio.gather(
                *(sup.stop() for sup in self._supervisors.values()),
                return_exceptions=True,
            )
            for track_id, result in zip(self._supervisors, results, strict=True):
                if isinstance(result, BaseException):
                    _logger.warning("[%s] Error while stopping: %s", track_id, result)

        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._started = False

    async def run_until_signalled(self) -> None:
        """Block until SIGINT or SIGTERM."""
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except (NotImplementedError, RuntimeError):
                continue
            installed.append(sig)
        try:
            await stop_event.wait()
            _logger.info("Shutdown requested")
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
