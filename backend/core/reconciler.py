import asyncio
import inspect
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .errors import FetchError
from .models import (
    AlertEvent,
    Block,
    BlockUpdateEvent,
    PingEvent,
    PushEvent,
    ReadingEvent,
    zero_block,
)
from .window import (
    TimestampLike,
    TimezoneLike,
    current_window_from_reading,
    localize,
    parse_timestamp,
    window_start,
)

logger = logging.getLogger(__name__)

FetchLatest = Callable[[str], Awaitable[Block]]
OnBlockCallback = Callable[[Block], Any]
OnWindowChangeCallback = Callable[[Block, Optional[Block]], Any]
OnAlertCallback = Callable[[str], Any]


class BlockReconciler:
    """
    Owns the current Block of one simulator.

    Merges two sources:
    - push events (reading / block-update / alert-80pct / ping)
    - pull refreshes through the injected fetch_latest collaborator

    Guarantees:
    - accumulated energy never decreases within one window
    - a newer window replaces the block wholesale (fires on_window_change)
    - older windows never overwrite a newer block
    - at most one fetch in flight; concurrent refresh() calls share it
    - reading bursts collapse into one debounced refresh
    """

    def __init__(
        self,
        simulator_id: str,
        fetch_latest: FetchLatest,
        tz: TimezoneLike = "Asia/Kuala_Lumpur",
        debounce_sec: float = 0.5,
    ):
        self.simulator_id = simulator_id
        self._fetch = fetch_latest
        self._tz = tz
        self._debounce_sec = debounce_sec

        self._block: Optional[Block] = None
        self._last_reading_ts: Optional[datetime] = None
        self._debounce: Optional[asyncio.TimerHandle] = None
        self._inflight: Optional[asyncio.Future] = None
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

        self._on_block: List[OnBlockCallback] = []
        self._on_window_change: List[OnWindowChangeCallback] = []
        self._on_alert: List[OnAlertCallback] = []
        self._stats = {
            "push_events": 0,
            "fetches": 0,
            "fetch_errors": 0,
            "ignored_updates": 0,
            "window_changes": 0,
        }

    # =========================================================================
    # Observable state
    # =========================================================================

    @property
    def block(self) -> Optional[Block]:
        return self._block

    @property
    def last_reading_ts(self) -> Optional[datetime]:
        return self._last_reading_ts

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def refresh_pending(self) -> bool:
        return self._debounce is not None

    def current_window(self):
        """Window of the last reading, else of the held block"""
        window = current_window_from_reading(self._last_reading_ts, self._tz)
        if window is None and self._block is not None:
            return self._block.window_start, self._block.window_end
        return window

    def on_block(self, callback: OnBlockCallback) -> None:
        self._on_block.append(callback)

    def on_window_change(self, callback: OnWindowChangeCallback) -> None:
        self._on_window_change.append(callback)

    def on_alert(self, callback: OnAlertCallback) -> None:
        self._on_alert.append(callback)

    # =========================================================================
    # Pull
    # =========================================================================

    async def load_initial(self) -> Block:
        """First pull. Raises FetchError; an existing block is kept on failure."""
        await self.refresh()
        return self._block

    async def refresh(self) -> Optional[Block]:
        """Idempotent pull; joins the in-flight fetch if there is one"""
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._fetch_and_apply())
            self._inflight.add_done_callback(_consume_exception)
        return await asyncio.shield(self._inflight)

    async def _fetch_and_apply(self) -> Optional[Block]:
        try:
            block = await self._fetch(self.simulator_id)
        except FetchError:
            self._stats["fetch_errors"] += 1
            raise
        except Exception as e:
            self._stats["fetch_errors"] += 1
            raise FetchError(f"Failed to load latest block: {e}") from e

        self._stats["fetches"] += 1
        if self._closed:
            # abandoned by teardown
            return None
        await self._apply(block)
        return self._block

    async def poll(self, interval_sec: float) -> None:
        """Refresh every interval regardless of individual failures"""
        while not self._closed:
            await asyncio.sleep(interval_sec)
            if self._closed:
                break
            try:
                await self.refresh()
            except FetchError as e:
                logger.warning("Poll refresh failed for %s: %s", self.simulator_id, e)

    # =========================================================================
    # Push
    # =========================================================================

    async def on_push_event(self, event: PushEvent) -> None:
        if self._closed:
            return
        self._stats["push_events"] += 1

        if isinstance(event, ReadingEvent):
            self.on_reading(event.ts)
        elif isinstance(event, BlockUpdateEvent):
            await self._apply_block_update(event)
        elif isinstance(event, AlertEvent):
            await self._emit(self._on_alert, event.message)
        elif isinstance(event, PingEvent):
            pass
        else:
            raise TypeError(f"Unhandled push event: {event!r}")

    def note_reading(self, ts: TimestampLike) -> None:
        """Record the latest device timestamp (push or emitter source)"""
        self._last_reading_ts = parse_timestamp(ts)

    def on_reading(self, ts: TimestampLike) -> None:
        """A new reading landed upstream: note it and debounce a refresh"""
        if self._closed:
            return
        self.note_reading(ts)
        self._schedule_refresh()

    async def _apply_block_update(self, event: BlockUpdateEvent) -> None:
        current = self._block

        if event.block_start_local is not None:
            start = window_start(localize(event.block_start_local, self._tz), self._tz)
        elif current is not None:
            start = current.window_start
        else:
            window = self.current_window()
            start = window[0] if window else zero_block(self.simulator_id, self._tz).window_start

        # The payload's percent is authoritative; derive target from it.
        # With nothing accumulated any target gives 0%, so keep the known one.
        if event.accumulated_kwh <= 0:
            target = current.target_energy if current else 0.0
        elif event.percent_of_target > 0:
            target = event.accumulated_kwh * 100 / event.percent_of_target
        else:
            target = 0.0

        same_window = current is not None and current.window_start == start
        if event.chart_bins is not None:
            bin_seconds, bins = event.chart_bins.bin_seconds, event.chart_bins.points
        elif same_window:
            bin_seconds, bins = current.bin_seconds, current.bins
        else:
            bin_seconds, bins = (current.bin_seconds if current else 30), []

        incoming = Block(
            simulator_id=self.simulator_id,
            window_start=start,
            target_energy=target,
            accumulated_energy=event.accumulated_kwh,
            bin_seconds=bin_seconds,
            bins=bins,
        )
        await self._apply(incoming, keep_target=event.accumulated_kwh <= 0)

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def _apply(self, incoming: Block, keep_target: bool = True) -> bool:
        current = self._block

        if current is None:
            self._block = incoming
            await self._emit(self._on_block, incoming)
            return True

        if incoming.window_start < current.window_start:
            self._stats["ignored_updates"] += 1
            logger.debug(
                "Ignoring stale window %s for %s (current %s)",
                incoming.window_start, self.simulator_id, current.window_start,
            )
            return False

        if incoming.window_start > current.window_start:
            self._block = incoming
            self._stats["window_changes"] += 1
            logger.info("Block window for %s rolled to %s", self.simulator_id, incoming.window_start)
            await self._emit(self._on_window_change, incoming, current)
            await self._emit(self._on_block, incoming)
            return True

        if incoming.accumulated_energy < current.accumulated_energy:
            self._stats["ignored_updates"] += 1
            logger.debug(
                "Ignoring decreasing energy %.4f < %.4f for %s",
                incoming.accumulated_energy, current.accumulated_energy, self.simulator_id,
            )
            return False

        if keep_target and incoming.target_energy <= 0 and current.target_energy > 0:
            incoming = Block(**{**incoming.model_dump(), "target_energy": current.target_energy})

        self._block = incoming
        await self._emit(self._on_block, incoming)
        return True

    async def _emit(self, callbacks: List[Callable], *args) -> None:
        for callback in callbacks:
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Block callback failed for %s", self.simulator_id)

    # =========================================================================
    # Debounce
    # =========================================================================

    def _schedule_refresh(self) -> None:
        if self._debounce is not None:
            self._debounce.cancel()
        loop = asyncio.get_running_loop()
        self._debounce = loop.call_later(self._debounce_sec, self._fire_debounced)

    def _fire_debounced(self) -> None:
        self._debounce = None
        if self._closed:
            return
        task = asyncio.ensure_future(self._refresh_quietly())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _refresh_quietly(self) -> None:
        try:
            await self.refresh()
        except FetchError as e:
            logger.warning("Debounced refresh failed for %s: %s", self.simulator_id, e)

    # =========================================================================
    # Teardown
    # =========================================================================

    def close(self) -> None:
        """
        Cancel the debounce timer and waiters, drop the block.

        An in-flight fetch is left to finish; its result is discarded.
        """
        self._closed = True
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._block = None

    def stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "simulator_id": self.simulator_id,
            "has_block": self._block is not None,
            "last_reading_ts": self._last_reading_ts.isoformat() if self._last_reading_ts else None,
            "refresh_in_flight": self._inflight is not None and not self._inflight.done(),
        }


def _consume_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()
