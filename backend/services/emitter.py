"""
Load Emitter
Synthetic power readings posted to the EMS ingest endpoint on a fixed interval.

Modes:
    auto   → base_kw with random volatility
    manual → whatever power was last set with set_power()

Fast-forward advances device time by 30 simulated seconds per real second,
so a whole 30-minute block fills in one real minute.

Usage:
    emitter = LoadEmitter("sim-1", ems_client, mode="auto", base_kw=12.0)
    emitter.on_tick(lambda reading: reconciler.on_reading(reading.device_ts))
    await emitter.start()
    ...
    await emitter.stop()
"""

import asyncio
import contextlib
import inspect
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from alerts.models import NotificationKind, utcnow
from core.errors import FetchError
from core.models import Reading

logger = logging.getLogger(__name__)

INTERVAL_SEC = 1.0
SAMPLE_SECONDS = 30
FAST_FORWARD_MULTIPLIER = 30
MAX_FAILURES = 3

MODES = ("auto", "manual")


@dataclass
class EmitterStats:
    """Emitter statistics"""
    is_running: bool = False
    simulator_id: str = ""
    mode: str = "auto"
    fast_forward: bool = False
    sent_count: int = 0
    consecutive_failures: int = 0
    total_failures: int = 0
    last_sent_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    last_error: Optional[str] = None
    stopped_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "simulator_id": self.simulator_id,
            "mode": self.mode,
            "fast_forward": self.fast_forward,
            "sent_count": self.sent_count,
            "consecutive_failures": self.consecutive_failures,
            "total_failures": self.total_failures,
            "last_sent_at": self.last_sent_at.isoformat() if self.last_sent_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "uptime_seconds": (utcnow() - self.started_at).total_seconds() if self.is_running and self.started_at else 0,
            "last_error": self.last_error,
            "stopped_reason": self.stopped_reason,
        }


class LoadEmitter:
    """
    Posts one reading per interval until stopped.

    Stops itself after MAX_FAILURES consecutive delivery failures.
    """

    def __init__(
        self,
        simulator_id: str,
        client,
        mode: str = "auto",
        base_kw: float = 10.0,
        volatility_pct: float = 10.0,
        fast_forward: bool = False,
        interval_sec: float = INTERVAL_SEC,
        sample_seconds: float = SAMPLE_SECONDS,
        dispatcher=None,
        simulator_name: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if mode not in MODES:
            raise ValueError(f"Unknown emitter mode: {mode}")

        self.simulator_id = simulator_id
        self.mode = mode
        self.base_kw = base_kw
        self.volatility_pct = volatility_pct
        self.power_kw = base_kw
        self.fast_forward = fast_forward
        self.interval_sec = interval_sec
        self.sample_seconds = sample_seconds
        self.simulator_name = simulator_name

        self._client = client
        self._dispatcher = dispatcher
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._simulated_ts: Optional[datetime] = None
        self._tick_callbacks: List[Callable] = []
        self._stats = EmitterStats(simulator_id=simulator_id, mode=mode, fast_forward=fast_forward)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stats(self) -> EmitterStats:
        return self._stats

    def on_tick(self, callback: Callable[[Reading], Any]) -> None:
        """Called after each reading is accepted by the backend"""
        self._tick_callbacks.append(callback)

    def set_power(self, power_kw: float) -> None:
        if power_kw < 0:
            raise ValueError("Power cannot be negative")
        self.power_kw = power_kw

    # ==================== Lifecycle ====================

    async def start(self) -> Dict[str, Any]:
        if self.is_running:
            return {"status": "already_running", **self._stats.to_dict()}

        self._simulated_ts = None
        self._stats = EmitterStats(
            is_running=True,
            simulator_id=self.simulator_id,
            mode=self.mode,
            fast_forward=self.fast_forward,
            started_at=utcnow(),
        )
        self._task = asyncio.create_task(self._run(), name=f"emitter:{self.simulator_id}")
        logger.info("Started %s emitter for %s", self.mode, self.simulator_id)

        await self._announce(NotificationKind.STARTUP)
        return {"status": "started", **self._stats.to_dict()}

    async def stop(self) -> Dict[str, Any]:
        if not self.is_running:
            return {"status": "not_running", **self._stats.to_dict()}

        task, self._task = self._task, None
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

        self._stats.is_running = False
        self._stats.stopped_reason = "stopped"
        logger.info("Stopped emitter for %s after %d readings", self.simulator_id, self._stats.sent_count)

        await self._announce(NotificationKind.SHUTDOWN)
        return {"status": "stopped", **self._stats.to_dict()}

    async def _run(self) -> None:
        while True:
            delivered = await self.send_tick()
            if not delivered and self._stats.consecutive_failures >= MAX_FAILURES:
                self._stats.is_running = False
                self._stats.stopped_reason = "failures"
                logger.error(
                    "Stopped %s emitter for %s after %d consecutive failures",
                    self.mode, self.simulator_id, MAX_FAILURES,
                )
                return
            await asyncio.sleep(self.interval_sec)

    # ==================== Ticks ====================

    def next_reading(self) -> Reading:
        now = self._clock()
        if self.fast_forward:
            if self._simulated_ts is None:
                self._simulated_ts = now
            else:
                self._simulated_ts += timedelta(seconds=self.interval_sec * FAST_FORWARD_MULTIPLIER)
            device_ts = self._simulated_ts
        else:
            device_ts = now

        if self.mode == "auto":
            volatility = max(0.0, min(self.volatility_pct, 100.0)) / 100
            power = max(0.0, self.base_kw * (1 + random.uniform(-volatility, volatility)))
        else:
            power = self.power_kw

        return Reading(power_kw=round(power, 3), sample_seconds=self.sample_seconds, device_ts=device_ts)

    async def send_tick(self) -> bool:
        reading = self.next_reading()
        try:
            await self._client.ingest_readings(self.simulator_id, [reading], self.mode)
        except FetchError as e:
            self._stats.consecutive_failures += 1
            self._stats.total_failures += 1
            self._stats.last_error = str(e)
            if self._stats.consecutive_failures == 1:
                logger.warning("Reading delivery failed for %s: %s", self.simulator_id, e)
            return False

        self._stats.consecutive_failures = 0
        self._stats.sent_count += 1
        self._stats.last_sent_at = reading.device_ts

        for callback in self._tick_callbacks:
            try:
                result = callback(reading)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Tick callback failed for %s", self.simulator_id)
        return True

    async def _announce(self, kind: NotificationKind) -> None:
        if self._dispatcher is None:
            return
        try:
            await self._dispatcher.send_lifecycle(self.simulator_id, kind, self.mode, self.simulator_name)
        except Exception:
            logger.exception("%s notifications failed for %s", kind.value, self.simulator_id)
