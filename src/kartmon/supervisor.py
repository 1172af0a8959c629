"""Per-track feed connection.

A :class:`ConnectionSupervisor` owns one WebSocket to one track's live-timing
endpoint and the :class:`~kartmon.state.track.TrackState` that socket feeds.
Frames are decoded and applied inside the receive loop, line by line, so a
track's state has exactly one writer and lines are applied in arrival order.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from enum import StrEnum

import aiohttp

from kartmon._constants import RECONNECT_BASE_DELAY, RECONNECT_FACTOR, RECONNECT_MAX_DELAY
from kartmon.config import MonitorConfig, TrackConfig
from kartmon.exceptions import KartmonFeedError
from kartmon.ingestion.decoder import ProtocolDecoder
from kartmon.state.events import EventKind
from kartmon.state.track import TrackState
from kartmon.storage.gateway import PersistenceDispatcher, PersistenceGateway

_logger = logging.getLogger(__name__)


class SupervisorState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STOPPED = "stopped"


class ReconnectBackoff:
    """Reconnect delays: base, then ×factor per failure, capped; reset on success.

    >>> backoff = ReconnectBackoff()
    >>> [backoff.next_delay() for _ in range(4)]
    [5.0, 7.5, 11.25, 16.875]
    """

    def __init__(
        self,
        base: float = RECONNECT_BASE_DELAY,
        factor: float = RECONNECT_FACTOR,
        ceiling: float = RECONNECT_MAX_DELAY,
    ) -> None:
        self.base = base
        self.factor = factor
        self.ceiling = ceiling
        self._current = base

    @property
    def current(self) -> float:
        return self._current

    def next_delay(self) -> float:
        """Return the delay for this attempt and grow it for the next one."""
        delay = self._current
        self._current = min(self._current * self.factor, self.ceiling)
        return delay

    def reset(self) -> None:
        self._current = self.base


class ConnectionSupervisor:
    """Connect, decode, apply, reconnect, for a single track.

    Parameters
    ----------
    track : TrackConfig
        The venue to monitor.
    config : MonitorConfig
        Shared runtime settings.
    session : aiohttp.ClientSession, optional
        HTTP session to open the WebSocket with. When omitted the supervisor
        creates and closes its own.
    gateway : PersistenceGateway, optional
        Storage for accepted laps. ``None`` keeps statistics in memory only.
    on_state_change : callable, optional
        Invoked with ``(track_id, state)`` on every transition.
    """

    def __init__(
        self,
        track: TrackConfig,
        config: MonitorConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        gateway: PersistenceGateway | None = None,
        decoder: ProtocolDecoder | None = None,
        on_state_change: Callable[[str, SupervisorState], None] | None = None,
    ) -> None:
        self._track = track
        self._config = config or MonitorConfig(tracks=(track,))
        self._external_session = session is not None
        self._http_session = session
        self._decoder = decoder or ProtocolDecoder()
        self._on_state_change = on_state_change

        self._dispatcher: PersistenceDispatcher | None = None
        if gateway is not None and self._config.persistence_enabled:
            self._dispatcher = PersistenceDispatcher(track.id, gateway)

        self.state = TrackState(
            track.id,
            flash_duration=self._config.flash_duration,
            history_size=self._config.lap_history_size,
            lap_sink=self._dispatcher.submit if self._dispatcher is not None else None,
        )
        self.backoff = ReconnectBackoff(
            base=self._config.reconnect_base_delay,
            factor=self._config.reconnect_factor,
            ceiling=self._config.reconnect_max_delay,
        )

        self._status = SupervisorState.DISCONNECTED
        self._task: asyncio.Task[None] | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._stop_requested = asyncio.Event()
        self._stop_lock = asyncio.Lock()
        self.connect_count = 0
        self.frames_received = 0

    @property
    def track(self) -> TrackConfig:
        return self._track

    @property
    def status(self) -> SupervisorState:
        return self._status

    @property
    def dispatcher(self) -> PersistenceDispatcher | None:
        return self._dispatcher

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _set_status(self, status: SupervisorState) -> None:
        if status == self._status:
            return
        _logger.debug("[%s] %s -> %s", self._track.id, self._status, status)
        self._status = status
        if self._on_state_change is not None:
            try:
                self._on_state_change(self._track.id, status)
            except Exception:
                _logger.debug("[%s] State-change callback failed", self._track.id, exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task[None]:
        """Start the connection loop as a background task."""
        if self._status == SupervisorState.STOPPED:
            raise KartmonFeedError("supervisor already stopped", url=self._track.endpoint_url, track_id=self._track.id)
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self.run(), name=f"kartmon-{self._track.id}")
        return self._task

    async def stop(self) -> None:
        """Stop for good. Safe to call more than once, also concurrently."""
        async with self._stop_lock:
            if self._status == SupervisorState.STOPPED:
                return
            await self._shutdown()

    async def _shutdown(self) -> None:
        self._stop_requested.set()

        ws = self._ws
        if ws is not None and not ws.closed:
            with contextlib.suppress(Exception):
                await ws.close()

        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            try:
                await asyncio.wait_for(task, timeout=self._config.stop_timeout)
            except TimeoutError:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        self.state.close()
        if self._dispatcher is not None:
            await self._dispatcher.aclose(timeout=self._config.drain_timeout)
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._set_status(SupervisorState.STOPPED)
        _logger.info("[%s] Stopped", self._track.id)

    async def run(self) -> None:
        """Connection loop; returns only after :meth:`stop`."""
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()

        while not self._stop_requested.is_set():
            try:
                await self._connect_and_consume()
            except asyncio.CancelledError:
                raise
            except (aiohttp.ClientError, OSError, TimeoutError, KartmonFeedError) as exc:
                _logger.warning("[%s] Connection error: %s", self._track.id, exc)
            except Exception:
                _logger.exception("[%s] Unexpected error in feed loop", self._track.id)
            finally:
                self._ws = None

            if self._stop_requested.is_set():
                break

            delay = self.backoff.next_delay()
            self._set_status(SupervisorState.DISCONNECTED)
            _logger.info("[%s] Disconnected. Reconnecting in %.1fs", self._track.id, delay)
            try:
                await asyncio.wait_for(self._stop_requested.wait(), timeout=delay)
            except TimeoutError:
                continue

    async def _connect_and_consume(self) -> None:
        assert self._http_session is not None  # noqa: S101
        self._set_status(SupervisorState.CONNECTING)
        _logger.info("[%s] Connecting to %s", self._track.id, self._track.endpoint_url)

        async with self._http_session.ws_connect(
            self._track.endpoint_url,
            heartbeat=self._config.heartbeat,
            autoping=True,
        ) as ws:
            self._ws = ws
            if self._stop_requested.is_set():
                return
            if self._config.init_token:
                await ws.send_str(self._config.init_token)
            self.connect_count += 1
            self.backoff.reset()
            self._set_status(SupervisorState.CONNECTED)
            _logger.info("[%s] Connected", self._track.id)

            async for message in ws:
                if message.type == aiohttp.WSMsgType.TEXT:
                    self.feed(message.data)
                elif message.type == aiohttp.WSMsgType.BINARY:
                    self.feed(message.data.decode("utf-8", errors="replace"))
                elif message.type == aiohttp.WSMsgType.ERROR:
                    raise KartmonFeedError(
                        f"WebSocket error: {ws.exception()}",
                        url=self._track.endpoint_url,
                        track_id=self._track.id,
                    )

        if not self._stop_requested.is_set():
            _logger.warning("[%s] Feed closed the connection (code=%s)", self._track.id, ws.close_code)

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def feed(self, frame: str) -> int:
        """Decode and apply one frame; returns the number of events applied.

        Ignored lines are not counted. A line that blows up while being
        applied is logged and skipped; the rest of the frame is still applied.
        """
        self.frames_received += 1
        applied = 0
        for event in self._decoder.iter_frame(frame):
            try:
                self.state.apply(event)
            except Exception:
                _logger.warning("[%s] Failed to apply %s event", self._track.id, event.kind, exc_info=True)
                continue
            if event.kind != EventKind.IGNORED:
                applied += 1
        return applied
