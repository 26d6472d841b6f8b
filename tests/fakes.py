"""Test doubles shared across the suite"""

import asyncio
import json
from datetime import datetime, timedelta
from typing import List, Optional

from alerts.models import SendResult
from core.errors import FetchError
from core.models import Block


KL = "Asia/Kuala_Lumpur"


class FakeMessenger:
    """Records every send; pops scripted results, succeeding by default"""

    def __init__(self, results: Optional[List] = None):
        self.results = list(results or [])
        self.sent: List[tuple] = []

    async def send(self, phone_number: str, message: str) -> SendResult:
        self.sent.append((phone_number, message))
        result = self.results.pop(0) if self.results else SendResult(success=True, message_id="msg-1")
        if isinstance(result, Exception):
            raise result
        return result


class FakeFetcher:
    """fetch_latest stand-in with a call counter and optional latency"""

    def __init__(self, blocks: Optional[List] = None, delay: float = 0.0):
        self.blocks = list(blocks or [])
        self.delay = delay
        self.calls = 0
        self.call_times: List[float] = []

    async def __call__(self, simulator_id: str) -> Block:
        self.calls += 1
        self.call_times.append(asyncio.get_running_loop().time())
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.blocks:
            raise FetchError("no block scripted", 503)
        item = self.blocks[0] if len(self.blocks) == 1 else self.blocks.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_block(accumulated: float, target: float = 100.0,
               start: str = "2024-01-01T06:00:00Z", simulator_id: str = "sim-1") -> Block:
    return Block(
        simulator_id=simulator_id,
        window_start=start,
        target_energy=target,
        accumulated_energy=accumulated,
    )


class FakeEmsClient:
    """EmsApiClient stand-in serving one block and recording ingested readings"""

    def __init__(self, block: Optional[Block] = None, history: Optional[List] = None):
        self.block = block
        self.history = list(history or [])
        self.ingested: List[tuple] = []
        self.fetches = 0

    async def fetch_latest_block(self, simulator_id: str) -> Block:
        self.fetches += 1
        if self.block is None:
            raise FetchError("no block", 503)
        return self.block

    async def fetch_block_history(self, simulator_id: str, limit: int = 10) -> List:
        return self.history[:limit]

    async def ingest_readings(self, simulator_id: str, readings: List, mode: str = "auto") -> None:
        self.ingested.append((simulator_id, mode, readings))


class FakeConnection:
    """Yields scripted frames; with hold=True stays open until closed"""

    def __init__(self, frames, hold: bool = False):
        self.frames = list(frames)
        self.hold = hold
        self.closed = False
        self._closed = asyncio.Event()

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        for frame in self.frames:
            yield frame
        if self.hold:
            await self._closed.wait()

    async def close(self):
        self.closed = True
        self._closed.set()


class FakeConnect:
    """websockets.connect stand-in: each await opens the next scripted connection, then refuses"""

    def __init__(self, *connections, error: Optional[Exception] = None):
        self.connections = list(connections)
        self.error = error or ConnectionRefusedError("connection refused")
        self.urls: List[str] = []

    def __call__(self, url: str):
        self.urls.append(url)
        return self._open()

    async def _open(self):
        if not self.connections:
            raise self.error
        return self.connections.pop(0)


def frame(**payload) -> str:
    return json.dumps(payload)


async def wait_until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)
