import asyncio

from alerts.dispatcher import AlertDispatcher
from alerts.manager import TriggerManager
from alerts.models import TriggerState
from alerts.monitor import ThresholdMonitor
from core.models import HistoryBlock
from services.session import SessionManager, SimulatorSession

from fakes import KL, FakeConnect, FakeConnection, FakeEmsClient, frame, make_block, wait_until


def block_update(percent: float) -> str:
    # target 100 kWh, so kWh == percent
    return frame(type="block-update", accumulated_kwh=percent, percent_of_target=percent,
                 block_start_local="2024-01-01T14:00:00")


def test_crossing_the_threshold_sends_exactly_one_alert(storage, messenger, clock):
    trigger = TriggerManager(storage).create_trigger("sim-1", "+60 12-345 6789", 80)
    monitor = ThresholdMonitor(storage)
    dispatcher = AlertDispatcher(storage, messenger, tz=KL, clock=clock)
    connection = FakeConnection([block_update(p) for p in (20, 40, 60, 85, 86)]
                                + [frame(type="alert-80pct", message="80% of target reached")],
                                hold=True)

    async def scenario():
        session = SimulatorSession(
            "sim-1", FakeEmsClient(make_block(0)), monitor, dispatcher, tz=KL,
            stream_base="ws://ems", poll_interval_sec=0, simulator_name="Plant A",
            connect=FakeConnect(connection),
        )
        await session.start()
        await wait_until(lambda: session.to_dict()["alerts"])
        snapshot = session.to_dict()
        await session.close()
        return session, snapshot

    session, snapshot = asyncio.run(scenario())

    [entry] = storage.get_history()
    assert entry.trigger_id == trigger.id
    assert entry.success
    assert entry.actual_percent == 85
    assert len(messenger.sent) == 1
    assert "Plant A" in messenger.sent[0][1]
    assert monitor.state(trigger.id) == TriggerState.FIRED

    assert snapshot["block"]["accumulated_kwh"] == 86
    assert snapshot["connection"] == {"connected": True, "reconnecting": False}
    assert snapshot["current_window"] == "14:00 – 14:30"
    assert [o["trigger_id"] for o in snapshot["last_outcomes"]] == [trigger.id]
    assert connection.closed
    assert session.reconciler.is_closed


def test_session_without_stream_relies_on_pull(storage, messenger, clock):
    TriggerManager(storage).create_trigger("sim-1", "60123456789", 50)
    monitor = ThresholdMonitor(storage)
    dispatcher = AlertDispatcher(storage, messenger, tz=KL, clock=clock)
    client = FakeEmsClient(make_block(55))

    async def scenario():
        session = SimulatorSession("sim-1", client, monitor, dispatcher, tz=KL, poll_interval_sec=0)
        block = await session.start()
        await session.close()
        return session, block

    session, block = asyncio.run(scenario())
    assert block.accumulated_energy == 55
    assert session.supervisor is None
    assert session.status.to_dict() == {"connected": False, "reconnecting": False}
    assert len(storage.get_history()) == 1


def test_failed_initial_load_leaves_session_running(storage, messenger, clock):
    dispatcher = AlertDispatcher(storage, messenger, tz=KL, clock=clock)

    async def scenario():
        session = SimulatorSession("sim-1", FakeEmsClient(), ThresholdMonitor(storage), dispatcher,
                                   tz=KL, poll_interval_sec=0)
        block = await session.start()
        await session.close()
        return block

    assert asyncio.run(scenario()) is None


def test_manager_reuses_sessions_and_feeds_emitter_ticks(storage, messenger, clock):
    client = FakeEmsClient(make_block(10))
    manager = SessionManager(client, ThresholdMonitor(storage),
                             AlertDispatcher(storage, messenger, tz=KL, clock=clock),
                             tz=KL, poll_interval_sec=0)

    async def scenario():
        session = await manager.start("sim-1")
        assert await manager.start("sim-1") is session

        started = await manager.start_emitter("sim-1", mode="manual", interval_sec=0.01, clock=clock)
        await wait_until(lambda: session.reconciler.last_reading_ts is not None)
        again = await manager.start_emitter("sim-1")

        await manager.close()
        return session, started, again

    session, started, again = asyncio.run(scenario())

    assert started["status"] == "started"
    assert again["status"] == "already_running"
    assert session.reconciler.last_reading_ts == clock.now
    assert client.ingested[0][:2] == ("sim-1", "manual")
    assert manager.get("sim-1") is None
    assert not manager.get_emitter("sim-1").is_running


def test_emitter_ticks_trigger_one_debounced_refresh(storage, messenger, clock):
    client = FakeEmsClient(make_block(10))
    manager = SessionManager(client, ThresholdMonitor(storage),
                             AlertDispatcher(storage, messenger, tz=KL, clock=clock),
                             tz=KL, debounce_sec=0.05, poll_interval_sec=0)

    async def scenario():
        await manager.start("sim-1")
        await manager.start_emitter("sim-1", mode="manual", interval_sec=0.01, clock=clock)
        await wait_until(lambda: len(client.ingested) >= 5)
        while_ticking = client.fetches

        await manager.stop_emitter("sim-1")
        await wait_until(lambda: client.fetches > while_ticking)
        await asyncio.sleep(0.15)
        settled = client.fetches

        await manager.close()
        return while_ticking, settled

    while_ticking, settled = asyncio.run(scenario())

    assert while_ticking == 1  # initial load only
    assert settled == 2


def test_window_rollover_reloads_block_history(storage, messenger, clock):
    closed = HistoryBlock(window_start="2024-01-01T06:00:00Z", target_energy=100,
                          accumulated_energy=97, percent_of_target=97)
    client = FakeEmsClient(make_block(0), history=[closed])
    connection = FakeConnection([
        block_update(40),
        frame(type="block-update", accumulated_kwh=5, percent_of_target=5,
              block_start_local="2024-01-01T14:30:00"),
    ], hold=True)

    async def scenario():
        session = SimulatorSession(
            "sim-1", client, ThresholdMonitor(storage),
            AlertDispatcher(storage, messenger, tz=KL, clock=clock), tz=KL,
            stream_base="ws://ems", poll_interval_sec=0, connect=FakeConnect(connection),
        )
        await session.start()
        await wait_until(lambda: session.recent_blocks)
        snapshot = session.to_dict()
        await session.close()
        return snapshot

    snapshot = asyncio.run(scenario())

    assert snapshot["current_window"] == "14:30 – 15:00"
    assert snapshot["block"]["accumulated_kwh"] == 5
    assert [b["accumulated_energy"] for b in snapshot["recent_blocks"]] == [97]
