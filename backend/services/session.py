"""
Simulator Sessions
Wires push stream, block reconciler, threshold monitor and alert dispatcher
for each watched simulator.

Flow per session:
    stream frame ─→ reconciler.on_push_event ─┐
    emitter tick ─→ reconciler.on_reading     ├─→ on_block ─→ monitor.evaluate ─→ dispatcher.dispatch
    15 s poll    ─→ reconciler.refresh ───────┘

evaluate + dispatch run under one asyncio.Lock per simulator.
"""

import asyncio
import contextlib
import logging
from typing import Any, Callable, Dict, List, Optional

import websockets

from alerts.dispatcher import AlertDispatcher
from alerts.models import DispatchOutcome
from alerts.monitor import ThresholdMonitor
from core.errors import FetchError
from core.models import Block, HistoryBlock
from core.reconciler import BlockReconciler
from core.window import TimezoneLike, format_window

from .emitter import LoadEmitter
from .ems_client import EmsApiClient
from .stream import ConnectionStatus, ConnectionSupervisor, stream_url

logger = logging.getLogger(__name__)


class SimulatorSession:
    def __init__(
        self,
        simulator_id: str,
        client: EmsApiClient,
        monitor: ThresholdMonitor,
        dispatcher: AlertDispatcher,
        tz: TimezoneLike = "Asia/Kuala_Lumpur",
        stream_base: Optional[str] = None,
        debounce_sec: float = 0.5,
        poll_interval_sec: float = 15.0,
        simulator_name: Optional[str] = None,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.simulator_id = simulator_id
        self.simulator_name = simulator_name
        self.tz = tz
        self.poll_interval_sec = poll_interval_sec

        self._client = client
        self._monitor = monitor
        self._dispatcher = dispatcher
        self._lock = asyncio.Lock()
        self._poll_task: Optional[asyncio.Task] = None
        self._history_task: Optional[asyncio.Task] = None
        self._alerts: List[str] = []
        self._last_outcomes: List[DispatchOutcome] = []
        self._recent_blocks: List[HistoryBlock] = []

        self.reconciler = BlockReconciler(simulator_id, client.fetch_latest_block, tz, debounce_sec)
        self.reconciler.on_block(self.evaluate)
        self.reconciler.on_window_change(self._on_window_change)
        self.reconciler.on_alert(self._alerts.append)

        self.supervisor: Optional[ConnectionSupervisor] = None
        if stream_base:
            self.supervisor = ConnectionSupervisor(stream_url(stream_base, simulator_id), connect)
            self.supervisor.on_event(self.reconciler.on_push_event)

    @property
    def status(self) -> ConnectionStatus:
        if self.supervisor is None:
            return ConnectionStatus()
        return self.supervisor.status

    async def start(self) -> Optional[Block]:
        """Subscribe, pull the first block, start polling"""
        if self.supervisor is not None:
            await self.supervisor.start()

        try:
            await self.reconciler.load_initial()
        except FetchError as e:
            logger.warning("Initial block load failed for %s: %s", self.simulator_id, e)

        if self.poll_interval_sec > 0:
            self._poll_task = asyncio.create_task(
                self.reconciler.poll(self.poll_interval_sec), name=f"poll:{self.simulator_id}"
            )
        logger.info("Session started for %s", self.simulator_id)
        return self.reconciler.block

    async def evaluate(self, block: Block) -> List[DispatchOutcome]:
        """Run thresholds for a block update; serialised per simulator"""
        async with self._lock:
            fired = self._monitor.evaluate(self.simulator_id, block.percent_of_target)
            if not fired:
                return []
            outcomes = await self._dispatcher.dispatch(
                fired, block.percent_of_target, block, self.simulator_name,
            )
            self._last_outcomes = outcomes
            return outcomes

    def attach_emitter(self, emitter: LoadEmitter) -> None:
        """Emitter ticks count as readings: noted, then a debounced refresh"""
        emitter.on_tick(lambda reading: self.reconciler.on_reading(reading.device_ts))

    def _on_window_change(self, new: Block, old: Optional[Block]) -> None:
        """The previous window just closed; reload the closed-block list in the background"""
        logger.info(
            "%s entered window %s",
            self.simulator_id, format_window(new.window_start, new.window_end, self.tz),
        )
        if self._history_task is None or self._history_task.done():
            self._history_task = asyncio.create_task(
                self._refresh_history(), name=f"history:{self.simulator_id}"
            )

    async def _refresh_history(self) -> None:
        try:
            self._recent_blocks = await self._client.fetch_block_history(self.simulator_id)
        except FetchError as e:
            logger.warning("Block history refresh failed for %s: %s", self.simulator_id, e)

    @property
    def recent_blocks(self) -> List[HistoryBlock]:
        return list(self._recent_blocks)

    async def close(self) -> None:
        self.reconciler.close()

        for task in (self._poll_task, self._history_task):
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._poll_task = self._history_task = None

        if self.supervisor is not None:
            await self.supervisor.close()
        logger.info("Session closed for %s", self.simulator_id)

    def to_dict(self) -> Dict[str, Any]:
        block = self.reconciler.block
        window = self.reconciler.current_window()
        return {
            "simulator_id": self.simulator_id,
            "connection": self.status.to_dict(),
            "block": block.to_dict() if block else None,
            "current_window": format_window(window[0], window[1], self.tz) if window else None,
            "alerts": self._alerts[-10:],
            "last_outcomes": [o.to_dict() for o in self._last_outcomes],
            "recent_blocks": [b.model_dump(mode="json") for b in self._recent_blocks],
            "reconciler": self.reconciler.stats(),
        }


class SessionManager:
    """
    Registry of live sessions and emitters, keyed by simulator id.

    One shared monitor and dispatcher serve every session.
    """

    def __init__(
        self,
        client: EmsApiClient,
        monitor: ThresholdMonitor,
        dispatcher: AlertDispatcher,
        tz: TimezoneLike = "Asia/Kuala_Lumpur",
        stream_base: Optional[str] = None,
        debounce_sec: float = 0.5,
        poll_interval_sec: float = 15.0,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self._client = client
        self._monitor = monitor
        self._dispatcher = dispatcher
        self._tz = tz
        self._stream_base = stream_base
        self._debounce_sec = debounce_sec
        self._poll_interval_sec = poll_interval_sec
        self._connect = connect

        self._sessions: Dict[str, SimulatorSession] = {}
        self._emitters: Dict[str, LoadEmitter] = {}

    # ==================== Sessions ====================

    def get(self, simulator_id: str) -> Optional[SimulatorSession]:
        return self._sessions.get(simulator_id)

    def sessions(self) -> List[SimulatorSession]:
        return list(self._sessions.values())

    async def start(self, simulator_id: str, simulator_name: Optional[str] = None) -> SimulatorSession:
        session = self._sessions.get(simulator_id)
        if session is not None:
            return session

        session = SimulatorSession(
            simulator_id,
            self._client,
            self._monitor,
            self._dispatcher,
            tz=self._tz,
            stream_base=self._stream_base,
            debounce_sec=self._debounce_sec,
            poll_interval_sec=self._poll_interval_sec,
            simulator_name=simulator_name,
            connect=self._connect,
        )
        self._sessions[simulator_id] = session
        await session.start()

        emitter = self._emitters.get(simulator_id)
        if emitter is not None:
            session.attach_emitter(emitter)
        return session

    async def stop(self, simulator_id: str) -> bool:
        session = self._sessions.pop(simulator_id, None)
        if session is None:
            return False
        await session.close()
        return True

    async def fetch_block_history(self, simulator_id: str, limit: int = 10) -> List[HistoryBlock]:
        return await self._client.fetch_block_history(simulator_id, limit)

    # ==================== Emitters ====================

    def get_emitter(self, simulator_id: str) -> Optional[LoadEmitter]:
        return self._emitters.get(simulator_id)

    def emitters(self) -> List[LoadEmitter]:
        return list(self._emitters.values())

    async def start_emitter(self, simulator_id: str, simulator_name: Optional[str] = None, **options) -> Dict[str, Any]:
        emitter = self._emitters.get(simulator_id)
        if emitter is not None and emitter.is_running:
            return {"status": "already_running", **emitter.stats.to_dict()}

        emitter = LoadEmitter(
            simulator_id,
            self._client,
            dispatcher=self._dispatcher,
            simulator_name=simulator_name,
            **options,
        )
        self._emitters[simulator_id] = emitter

        session = self._sessions.get(simulator_id)
        if session is not None:
            session.attach_emitter(emitter)
        return await emitter.start()

    async def stop_emitter(self, simulator_id: str) -> Dict[str, Any]:
        emitter = self._emitters.get(simulator_id)
        if emitter is None:
            return {"status": "not_running"}
        return await emitter.stop()

    # ==================== Teardown ====================

    async def close(self) -> None:
        for simulator_id in list(self._emitters):
            await self.stop_emitter(simulator_id)
        for simulator_id in list(self._sessions):
            await self.stop(simulator_id)


_session_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """Get or create the session manager singleton from settings"""
    global _session_manager
    if _session_manager is None:
        from config import get_settings
        from alerts.messages import MessageFormatter
        from db import get_storage
        from .whatsapp import get_whatsapp_client

        settings = get_settings()
        storage = get_storage()
        client = EmsApiClient(
            settings.api_base_url,
            tz=settings.timezone,
            api_key=settings.api_key,
            timeout=settings.request_timeout_sec,
        )
        dispatcher = AlertDispatcher(
            storage,
            get_whatsapp_client(),
            MessageFormatter(default_template=settings.message_template),
            tz=settings.timezone,
        )
        _session_manager = SessionManager(
            client,
            ThresholdMonitor(storage, settings.hysteresis_margin),
            dispatcher,
            tz=settings.timezone,
            stream_base=settings.stream_url if settings.stream_enabled else None,
            debounce_sec=settings.debounce_ms / 1000,
            poll_interval_sec=settings.poll_interval_sec,
        )
    return _session_manager


def reset_session_manager() -> None:
    global _session_manager
    _session_manager = None
