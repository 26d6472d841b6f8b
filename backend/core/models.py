"""
Domain Models
The SINGLE SOURCE OF TRUTH for block and push-event formats.

After normalization, the engine only sees these types.
"""

from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from .window import (
    WINDOW,
    TimezoneLike,
    localize,
    parse_timestamp,
    window_start,
)


DEFAULT_BIN_SECONDS = 30


# =============================================================================
# Block: The Current 30-Minute Window
# =============================================================================

class Block(BaseModel):
    """
    Aggregated energy state of one simulator's 30-minute window.

    Invariants (enforced on construction):
        window_end == window_start + 30min
        len(bins) <= 1800 / bin_seconds  (oldest points dropped)
        percent_of_target == accumulated / target * 100, or 0 without target
    """
    simulator_id: str
    window_start: datetime
    window_end: Optional[datetime] = None
    target_energy: float = Field(default=0.0, ge=0)
    accumulated_energy: float = Field(default=0.0, ge=0)
    percent_of_target: float = 0.0
    bin_seconds: float = Field(default=DEFAULT_BIN_SECONDS, gt=0)
    bins: List[float] = Field(default_factory=list)

    @field_validator("window_start", mode="before")
    @classmethod
    def parse_start(cls, v):
        return parse_timestamp(v)

    @model_validator(mode="after")
    def enforce_invariants(self):
        self.window_start = self.window_start.astimezone(timezone.utc)
        self.window_end = self.window_start + WINDOW

        max_bins = int(WINDOW.total_seconds() // self.bin_seconds)
        if len(self.bins) > max_bins:
            self.bins = self.bins[-max_bins:] if max_bins > 0 else []

        if self.target_energy > 0:
            self.percent_of_target = self.accumulated_energy / self.target_energy * 100
        else:
            self.percent_of_target = 0.0
        return self

    def contains(self, ts: datetime) -> bool:
        """Half-open membership: [window_start, window_end)"""
        return self.window_start <= ts < self.window_end

    def to_dict(self) -> dict:
        return {
            "simulator_id": self.simulator_id,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "target_kwh": self.target_energy,
            "accumulated_kwh": round(self.accumulated_energy, 4),
            "percent_of_target": round(self.percent_of_target, 2),
            "chart_bins": {"bin_seconds": self.bin_seconds, "points": self.bins},
        }


class HistoryBlock(BaseModel):
    """A closed block from the backend's history endpoint"""
    window_start: datetime
    target_energy: float = 0.0
    accumulated_energy: float = 0.0
    percent_of_target: float = 0.0


# =============================================================================
# Reading: One Emitted Sample
# =============================================================================

class Reading(BaseModel):
    """One power sample, wire-compatible with the ingest endpoint"""
    power_kw: float = Field(..., ge=0)
    sample_seconds: float = Field(default=DEFAULT_BIN_SECONDS, gt=0)
    device_ts: datetime

    @field_validator("device_ts", mode="before")
    @classmethod
    def parse_device_ts(cls, v):
        return parse_timestamp(v)

    @property
    def energy_kwh(self) -> float:
        return self.power_kw * self.sample_seconds / 3600

    def to_wire(self) -> dict:
        return {
            "power_kw": self.power_kw,
            "sample_seconds": self.sample_seconds,
            "device_ts": self.device_ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        }


# =============================================================================
# Push Events: Closed Tagged Union
# =============================================================================

class ChartBins(BaseModel):
    bin_seconds: float = Field(default=DEFAULT_BIN_SECONDS, gt=0)
    points: List[float] = Field(default_factory=list)


class ReadingEvent(BaseModel):
    type: Literal["reading"]
    ts: datetime


class BlockUpdateEvent(BaseModel):
    type: Literal["block-update"]
    accumulated_kwh: float
    percent_of_target: float
    block_start_local: Optional[datetime] = None
    chart_bins: Optional[ChartBins] = None


class AlertEvent(BaseModel):
    type: Literal["alert-80pct"]
    message: str = ""


class PingEvent(BaseModel):
    type: Literal["ping"]


PushEvent = Annotated[
    Union[ReadingEvent, BlockUpdateEvent, AlertEvent, PingEvent],
    Field(discriminator="type"),
]

_push_event_adapter = TypeAdapter(PushEvent)


def parse_push_event(raw: Union[str, bytes, dict]) -> PushEvent:
    """
    Parse one push frame into its event variant.

    Raises pydantic.ValidationError for unknown types or malformed payloads.
    """
    if isinstance(raw, (str, bytes)):
        return _push_event_adapter.validate_json(raw)
    return _push_event_adapter.validate_python(raw)


# =============================================================================
# Converters: External → Internal
# =============================================================================

def _unwrap(data):
    if isinstance(data, dict) and "data" in data and isinstance(data["data"], (dict, list)):
        return data["data"]
    return data


def zero_block(simulator_id: str, tz: TimezoneLike, now: Optional[datetime] = None) -> Block:
    """Empty block for the window containing now"""
    now = now or datetime.now(timezone.utc)
    return Block(simulator_id=simulator_id, window_start=window_start(now, tz))


def to_block(data: Optional[dict], simulator_id: str, tz: TimezoneLike) -> Block:
    """
    Convert a latest-block payload to Block.

    This is the NORMALIZATION POINT for pulled blocks.

    Handles:
    - {"data": {...}} envelopes
    - block_start_utc / block_start_local variants (naive local values
      are read in tz)
    - missing payloads → zero-valued block for the current window
    """
    data = _unwrap(data)
    if not data:
        return zero_block(simulator_id, tz)

    raw_start = data.get("block_start_utc") or data.get("block_start_local") or data.get("start_ts")
    if isinstance(raw_start, str):
        start = window_start(localize(_parse_local(raw_start), tz), tz)
    elif raw_start:
        start = window_start(raw_start, tz)
    else:
        start = zero_block(simulator_id, tz).window_start

    bins = data.get("chart_bins") or {}
    return Block(
        simulator_id=str(data.get("simulator_id") or simulator_id),
        window_start=start,
        target_energy=float(data.get("target_kwh") or 0),
        accumulated_energy=float(data.get("accumulated_kwh") or 0),
        bin_seconds=float(bins.get("bin_seconds") or DEFAULT_BIN_SECONDS),
        bins=[float(p) for p in bins.get("points") or []],
    )


def to_history_block(data: dict, tz: TimezoneLike) -> HistoryBlock:
    start = _parse_local(data["block_start_local"])
    return HistoryBlock(
        window_start=localize(start, tz).astimezone(timezone.utc),
        target_energy=float(data.get("target_kwh") or 0),
        accumulated_energy=float(data.get("accumulated_kwh") or 0),
        percent_of_target=float(data.get("percent_of_target") or 0),
    )


def to_history_blocks(payload, tz: TimezoneLike) -> List[HistoryBlock]:
    rows = _unwrap(payload) or []
    return [to_history_block(row, tz) for row in rows]


def _parse_local(value: str) -> datetime:
    """ISO parse that keeps naive values naive (callers localize)"""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))
