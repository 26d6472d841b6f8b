import asyncio

import pytest

from alerts.manager import TriggerManager
from alerts.models import TriggerState
from alerts.validation import normalize_phone_number, normalize_threshold, validate_simulator_id
from core.errors import TriggerNotFound, ValidationError
from services.whatsapp import GatewayStatus


class FakeGateway:
    def __init__(self, ready: bool):
        self.ready = ready

    async def status(self) -> GatewayStatus:
        return GatewayStatus(ready=self.ready)


@pytest.fixture
def manager(storage) -> TriggerManager:
    return TriggerManager(storage)


# ==================== Validation ====================

@pytest.mark.parametrize("raw, expected", [
    ("+60 12-345 6789", "60123456789"),
    ("(60) 123456789", "60123456789"),
    ("441234567890", "441234567890"),
])
def test_phone_numbers_normalize_to_digits(raw, expected):
    assert normalize_phone_number(raw) == expected


@pytest.mark.parametrize("raw", ["", None, "12345", "60-12a-3456789", "0001234567890", "1" * 16])
def test_bad_phone_numbers_are_rejected(raw):
    with pytest.raises(ValidationError) as exc:
        normalize_phone_number(raw)
    assert exc.value.code == ValidationError.INVALID_PHONE_NUMBER


@pytest.mark.parametrize("raw", [0.5, 200.1, "abc", None, True, float("nan"), 80.25])
def test_bad_thresholds_are_rejected(raw):
    with pytest.raises(ValidationError):
        normalize_threshold(raw)


def test_threshold_accepts_strings_and_bounds():
    assert normalize_threshold("80.5") == 80.5
    assert normalize_threshold(1) == 1.0
    assert normalize_threshold(200) == 200.0


def test_simulator_id_is_trimmed_and_checked():
    assert validate_simulator_id("  sim_1-a ") == "sim_1-a"
    with pytest.raises(ValidationError):
        validate_simulator_id("sim 1")


# ==================== Triggers ====================

def test_create_normalizes_and_persists(manager, storage):
    trigger = manager.create_trigger("sim-1", "+60 12-345 6789", "80")
    stored = storage.get_trigger(trigger.id)

    assert stored.phone_number == "60123456789"
    assert stored.threshold_percent == 80.0
    assert stored.is_active
    assert trigger.id.startswith("trigger_")


def test_duplicate_active_trigger_is_rejected(manager, storage):
    manager.create_trigger("sim-1", "60123456789", 80)

    with pytest.raises(ValidationError) as exc:
        manager.create_trigger("sim-1", "+60 12 345 6789", 80.0)
    assert exc.value.code == ValidationError.DUPLICATE_TRIGGER

    # an inactive copy is allowed
    manager.create_trigger("sim-1", "60123456789", 80, is_active=False)
    assert len(storage.get_all_triggers()) == 2


def test_invalid_input_writes_nothing(manager, storage):
    with pytest.raises(ValidationError):
        manager.create_trigger("sim-1", "not-a-phone", 80)
    assert storage.get_all_triggers() == []


def test_update_rearms_when_threshold_changes(manager, storage):
    trigger = manager.create_trigger("sim-1", "60123456789", 80)
    storage.set_last_fired_percent(trigger.id, 85.0)

    updated = manager.update_trigger(trigger.id, threshold_percent=90)

    assert updated.threshold_percent == 90.0
    assert updated.updated_at >= trigger.updated_at
    assert manager.evaluation_state(trigger.id).state == TriggerState.ARMED


def test_toggle_keeps_evaluation_state(manager, storage):
    trigger = manager.create_trigger("sim-1", "60123456789", 80)
    storage.set_last_fired_percent(trigger.id, 85.0)

    assert manager.toggle_trigger(trigger.id, False).is_active is False
    assert manager.evaluation_state(trigger.id).last_fired_at_percent == 85.0


def test_update_rejects_unknown_fields_and_duplicates(manager):
    first = manager.create_trigger("sim-1", "60123456789", 80)
    second = manager.create_trigger("sim-1", "60123456789", 90)

    with pytest.raises(ValidationError):
        manager.update_trigger(first.id, colour="red")
    with pytest.raises(ValidationError) as exc:
        manager.update_trigger(second.id, threshold_percent=80)
    assert exc.value.code == ValidationError.DUPLICATE_TRIGGER
    with pytest.raises(ValidationError):
        manager.update_trigger(first.id, is_active="yes")


def test_bulk_toggle_skips_would_be_duplicates(manager):
    manager.create_trigger("sim-1", "60123456789", 80)
    manager.create_trigger("sim-1", "60123456789", 80, is_active=False)
    manager.create_trigger("sim-1", "60198765432", 70, is_active=False)

    toggled = manager.bulk_toggle("sim-1", True)

    assert [t.phone_number for t in toggled] == ["60198765432"]
    assert len(manager.list_triggers("sim-1", active_only=True)) == 2


def test_delete_purges_evaluation_state(manager, storage):
    trigger = manager.create_trigger("sim-1", "60123456789", 80)
    storage.set_last_fired_percent(trigger.id, 85.0)

    manager.delete_trigger(trigger.id)

    assert storage.get_trigger(trigger.id) is None
    assert storage.get_last_fired_percent(trigger.id) is None
    with pytest.raises(TriggerNotFound):
        manager.delete_trigger(trigger.id)
    with pytest.raises(TriggerNotFound):
        manager.get_trigger(trigger.id)


# ==================== Settings & Status ====================

def test_settings_update_is_validated(manager):
    updated = manager.update_settings(cooldown_minutes=30, enabled_globally=False)
    assert updated.cooldown_minutes == 30
    assert updated.max_daily_notifications_per_trigger == 10
    assert manager.get_settings().enabled_globally is False

    for bad in ({"cooldown_minutes": 0}, {"max_daily_notifications_per_trigger": 101},
                {"max_daily_notifications_per_trigger": 2.5}, {"enabled_globally": "no"},
                {"volume": 11}):
        with pytest.raises(ValidationError):
            manager.update_settings(**bad)
    assert manager.get_settings().cooldown_minutes == 30


def test_system_status_reports_gateway_and_counts(storage):
    manager = TriggerManager(storage, FakeGateway(ready=True))
    manager.create_trigger("sim-1", "60123456789", 80)
    manager.create_trigger("sim-1", "60123456789", 90, is_active=False)

    status = asyncio.run(manager.system_status())

    assert status == {
        "whatsapp_ready": True,
        "total_triggers": 2,
        "active_triggers": 1,
        "notifications_enabled": True,
        "recent_notifications": 0,
    }
