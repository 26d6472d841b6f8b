from datetime import datetime, timedelta, timezone

from alerts.models import NotificationHistoryEntry, NotificationKind, NotificationSettings, Trigger
from db.sqlite import NotificationStorage


T0 = datetime(2024, 1, 1, 6, 0, tzinfo=timezone.utc)


def trigger(trigger_id="t1", simulator_id="sim-1") -> Trigger:
    return Trigger(id=trigger_id, simulator_id=simulator_id,
                   phone_number="60123456789", threshold_percent=80.0)


def attempt(trigger_obj, sent_at, success=True, kind=NotificationKind.THRESHOLD):
    return NotificationHistoryEntry.for_trigger(trigger_obj, 81.0, success, "boom",
                                                kind=kind, sent_at=sent_at)


def test_settings_default_until_saved(storage):
    assert storage.get_settings() == NotificationSettings()
    storage.save_settings(NotificationSettings(cooldown_minutes=5, max_daily_notifications_per_trigger=3,
                                               enabled_globally=False))
    assert storage.get_settings().max_daily_notifications_per_trigger == 3


def test_count_attempts_is_half_open_and_per_kind(storage):
    t = trigger()
    storage.save_history(attempt(t, T0))
    storage.save_history(attempt(t, T0 + timedelta(hours=1), success=False))
    storage.save_history(attempt(t, T0 + timedelta(hours=2)))
    storage.save_history(attempt(t, T0, kind=NotificationKind.STARTUP))

    assert storage.count_attempts("t1", T0, T0 + timedelta(hours=2)) == 2
    assert storage.count_attempts("t1", T0, T0 + timedelta(hours=2), NotificationKind.STARTUP) == 1
    assert storage.count_attempts("t2", T0, T0 + timedelta(days=1)) == 0


def test_history_is_newest_first_and_keeps_errors(storage):
    t = trigger()
    storage.save_history(attempt(t, T0))
    storage.save_history(attempt(t, T0 + timedelta(minutes=1), success=False))

    newest, oldest = storage.get_history()
    assert newest.sent_at == T0 + timedelta(minutes=1)
    assert newest.error_message == "boom"
    assert oldest.error_message is None


def test_clear_history_by_simulator(storage):
    storage.save_history(attempt(trigger("a", "sim-1"), T0))
    storage.save_history(attempt(trigger("b", "sim-2"), T0))

    assert storage.clear_history("sim-1") == 1
    assert [h.simulator_id for h in storage.get_history()] == ["sim-2"]


def test_evaluation_state_columns_update_independently(storage):
    storage.set_last_fired_percent("t1", 82.5)
    storage.set_last_notification_time("t1", T0)
    storage.set_last_fired_percent("t1", None)

    state = storage.get_evaluation_state("t1")
    assert state.last_fired_at_percent is None
    assert state.last_notification_time == T0


def test_export_import_round_trip_drops_evaluation_state(storage, tmp_path):
    t = trigger()
    storage.save_trigger(t)
    storage.save_history(attempt(t, T0))
    storage.set_last_fired_percent("t1", 90.0)

    other = NotificationStorage(str(tmp_path / "copy.db"))
    other.import_data(storage.export_data())

    assert other.get_trigger("t1").threshold_percent == 80.0
    assert len(other.get_history()) == 1
    assert other.get_last_fired_percent("t1") is None
    assert other.stats() == {"triggers": 1, "active_triggers": 1, "history_entries": 1}
