"""
Connection Supervisor
Owns the live push subscription of one simulator.

Flow:
1. "connecting": open {stream_base}/api/v1/stream/{simulator_id}
2. "connected": parse each frame into a push event and hand it to subscribers in order
3. "reconnecting" on a refused connect or a drop; wait a capped
   exponential backoff, then back to 1

Usage:
    supervisor = ConnectionSupervisor(url)
    supervisor.on_event(reconciler.on_push_event)
    supervisor.on_status(lambda status: print(status.to_dict()))
    await supervisor.start()
    ...
    await supervisor.close()
"""

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import pydantic
import websockets

from core.models import PingEvent, PushEvent, parse_push_event

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class ConnectionStatus:
    connected: bool = False
    reconnecting: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {"connected": self.connected, "reconnecting": self.reconnecting}


_STATUS_BY_STATE = {
    ConnectionState.DISCONNECTED: ConnectionStatus(False, False),
    ConnectionState.CONNECTING: ConnectionStatus(False, False),
    ConnectionState.CONNECTED: ConnectionStatus(True, False),
    ConnectionState.RECONNECTING: ConnectionStatus(False, True),
}


def stream_url(stream_base: str, simulator_id: str) -> str:
    return f"{stream_base.rstrip('/')}/api/v1/stream/{simulator_id}"


class ConnectionSupervisor:
    """
    Live push subscription with a {connected, reconnecting} status.

    `connect(url)` is awaited once per attempt (websockets.connect by
    default) and must return a connection: an async iterator of text
    frames with an async close(). Refused connects raise OSError.
    """

    def __init__(
        self,
        url: str,
        connect: Callable[..., Any] = websockets.connect,
        initial_backoff_sec: float = 0.5,
        max_backoff_sec: float = 30.0,
    ):
        self.url = url
        self._connect = connect
        self._initial_backoff = initial_backoff_sec
        self._max_backoff = max_backoff_sec
        self._state = ConnectionState.DISCONNECTED
        self._task: Optional[asyncio.Task] = None
        self._ws = None
        self._closed = False

        self._event_callbacks: List[Callable] = []
        self._status_callbacks: List[Callable] = []

        self._stats = {
            "frames_received": 0,
            "frames_malformed": 0,
            "connects": 0,
            "connect_failures": 0,
            "drops": 0,
            "last_frame_at": None,
            "connected_at": None,
        }

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return _STATUS_BY_STATE[self._state]

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def on_event(self, callback: Callable[[PushEvent], Any]) -> None:
        self._event_callbacks.append(callback)

    def on_status(self, callback: Callable[[ConnectionStatus], Any]) -> None:
        self._status_callbacks.append(callback)

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        if self.is_running:
            return
        self._closed = False
        await self._set_state(ConnectionState.CONNECTING)
        self._task = asyncio.create_task(self._run(), name=f"stream:{self.url}")

    async def close(self) -> None:
        """Close the transport and stop the reader; safe to call twice"""
        self._closed = True

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception:
                logger.debug("Error closing stream %s", self.url, exc_info=True)

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await self._set_state(ConnectionState.DISCONNECTED)

    # ==================== Reader ====================

    async def _run(self) -> None:
        failures = 0

        while not self._closed:
            await self._set_state(ConnectionState.CONNECTING)
            try:
                ws = await self._connect(self.url)
            except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
                self._stats["connect_failures"] += 1
                logger.warning("Stream connect failed: %s (%s)", self.url, e)
                await self._set_state(ConnectionState.RECONNECTING)
                await asyncio.sleep(self._backoff(failures))
                failures += 1
                continue

            if self._closed:
                await ws.close()
                break

            failures = 0
            self._ws = ws
            self._stats["connects"] += 1
            self._stats["connected_at"] = datetime.now()
            await self._set_state(ConnectionState.CONNECTED)
            logger.info("Stream connected: %s", self.url)

            try:
                async for frame in ws:
                    await self._handle_frame(frame)
            except (OSError, websockets.ConnectionClosed) as e:
                logger.warning("Stream dropped: %s (%s)", self.url, e)
            finally:
                self._ws = None

            if self._closed:
                break
            self._stats["drops"] += 1
            await self._set_state(ConnectionState.RECONNECTING)
            await asyncio.sleep(self._backoff(0))

    def _backoff(self, failures: int) -> float:
        return min(self._max_backoff, self._initial_backoff * 2 ** min(failures, 16))

    async def _handle_frame(self, frame) -> None:
        self._stats["frames_received"] += 1
        self._stats["last_frame_at"] = datetime.now()

        try:
            event = parse_push_event(frame)
        except pydantic.ValidationError as e:
            self._stats["frames_malformed"] += 1
            logger.warning("Skipping malformed frame on %s: %s", self.url, e.errors()[:1])
            return

        if isinstance(event, PingEvent):
            await self._set_state(ConnectionState.CONNECTED)

        for callback in self._event_callbacks:
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Event callback failed for %s", event.type)

    async def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.debug("Stream %s: %s → %s", self.url, self._state.value, state.value)
        self._state = state

        status = self.status
        for callback in self._status_callbacks:
            try:
                result = callback(status)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Status callback failed")

    def stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "last_frame_at": self._stats["last_frame_at"].isoformat() if self._stats["last_frame_at"] else None,
            "connected_at": self._stats["connected_at"].isoformat() if self._stats["connected_at"] else None,
            "state": self._state.value,
            **self.status.to_dict(),
        }
