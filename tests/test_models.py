from datetime import datetime, timezone

import pydantic
import pytest

from core.models import (
    AlertEvent,
    Block,
    BlockUpdateEvent,
    PingEvent,
    ReadingEvent,
    Reading,
    parse_push_event,
    to_block,
    to_history_blocks,
)

from fakes import KL


def test_block_enforces_window_end_and_percent():
    block = Block(simulator_id="sim-1", window_start="2024-01-01T06:00:00Z",
                  target_energy=200, accumulated_energy=50)
    assert block.window_end == datetime(2024, 1, 1, 6, 30, tzinfo=timezone.utc)
    assert block.percent_of_target == pytest.approx(25.0)


def test_block_without_target_reports_zero_percent():
    block = Block(simulator_id="sim-1", window_start="2024-01-01T06:00:00Z", accumulated_energy=12)
    assert block.percent_of_target == 0.0


def test_block_keeps_newest_bins_that_fit():
    block = Block(
        simulator_id="sim-1",
        window_start="2024-01-01T06:00:00Z",
        bin_seconds=300,
        bins=[float(i) for i in range(10)],
    )
    assert block.bins == [4.0, 5.0, 6.0, 7.0, 8.0, 9.0]


def test_to_block_unwraps_envelope_and_reads_local_start():
    payload = {
        "data": {
            "simulator_id": "sim-1",
            "block_start_local": "2024-01-01T14:00:00",
            "target_kwh": 100,
            "accumulated_kwh": 42.5,
            "percent_of_target": 42.5,
            "chart_bins": {"bin_seconds": 30, "points": [1, 2, 3]},
        }
    }
    block = to_block(payload, "sim-1", KL)
    assert block.window_start == datetime(2024, 1, 1, 6, 0, tzinfo=timezone.utc)
    assert block.percent_of_target == pytest.approx(42.5)
    assert block.bins == [1.0, 2.0, 3.0]


def test_to_block_empty_payload_is_zero_block():
    block = to_block(None, "sim-9", KL)
    assert block.simulator_id == "sim-9"
    assert block.accumulated_energy == 0
    assert block.percent_of_target == 0


def test_to_history_blocks_accepts_list_or_envelope():
    rows = [{"block_start_local": "2024-01-01T13:30:00", "target_kwh": 100,
             "accumulated_kwh": 90, "percent_of_target": 90}]
    assert to_history_blocks(rows, KL) == to_history_blocks({"data": rows}, KL)
    assert to_history_blocks(rows, KL)[0].window_start == datetime(2024, 1, 1, 5, 30, tzinfo=timezone.utc)


def test_reading_energy_and_wire_shape():
    reading = Reading(power_kw=12, sample_seconds=30, device_ts="2024-01-01T06:00:00Z")
    assert reading.energy_kwh == pytest.approx(0.1)
    assert reading.to_wire()["device_ts"] == "2024-01-01T06:00:00Z"


@pytest.mark.parametrize("raw, kind", [
    ('{"type": "reading", "ts": "2024-01-01T06:00:00Z"}', ReadingEvent),
    ('{"type": "block-update", "accumulated_kwh": 5, "percent_of_target": 10}', BlockUpdateEvent),
    ({"type": "alert-80pct", "message": "80% reached"}, AlertEvent),
    ({"type": "ping"}, PingEvent),
])
def test_parse_push_event_variants(raw, kind):
    assert isinstance(parse_push_event(raw), kind)


@pytest.mark.parametrize("raw", [
    '{"type": "mystery"}',
    '{"type": "reading"}',
    "not json",
])
def test_parse_push_event_rejects_malformed(raw):
    with pytest.raises(pydantic.ValidationError):
        parse_push_event(raw)
