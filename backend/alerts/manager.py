"""
Trigger Manager
CRUD for notification triggers and settings, with validation in front of the store.

Nothing is written when validation fails.
"""

import logging
from dataclasses import replace
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from core.errors import TriggerNotFound, ValidationError

from .models import EvaluationState, NotificationHistoryEntry, NotificationSettings, Trigger, utcnow
from .validation import (
    normalize_phone_number,
    normalize_threshold,
    validate_settings_update,
    validate_simulator_id,
)

if TYPE_CHECKING:
    from db.sqlite import NotificationStorage

logger = logging.getLogger(__name__)


class TriggerManager:
    def __init__(self, storage: "NotificationStorage", gateway=None):
        self._storage = storage
        self._gateway = gateway

    # ==================== Triggers ====================

    def create_trigger(
        self,
        simulator_id: str,
        phone_number: str,
        threshold_percent: Any,
        is_active: bool = True,
    ) -> Trigger:
        simulator_id = validate_simulator_id(simulator_id)
        phone_number = normalize_phone_number(phone_number)
        threshold = normalize_threshold(threshold_percent)

        if is_active:
            self._check_duplicate(simulator_id, phone_number, threshold)

        trigger = Trigger(
            id="",
            simulator_id=simulator_id,
            phone_number=phone_number,
            threshold_percent=threshold,
            is_active=is_active,
        )
        self._storage.save_trigger(trigger)
        logger.info("Created trigger %s: %s @ %.1f%% → %s",
                    trigger.id, simulator_id, threshold, phone_number)
        return trigger

    def update_trigger(self, trigger_id: str, **updates) -> Trigger:
        """
        Partial update. Accepts simulator_id, phone_number, threshold_percent
        and is_active. Changing the threshold or phone re-arms the trigger.
        """
        existing = self.get_trigger(trigger_id)

        allowed = {"simulator_id", "phone_number", "threshold_percent", "is_active"}
        unknown = set(updates) - allowed
        if unknown:
            raise ValidationError(f"Unknown trigger fields: {', '.join(sorted(unknown))}", "trigger")

        simulator_id = existing.simulator_id
        if updates.get("simulator_id") is not None:
            simulator_id = validate_simulator_id(updates["simulator_id"])

        phone_number = existing.phone_number
        if updates.get("phone_number") is not None:
            phone_number = normalize_phone_number(updates["phone_number"])

        threshold = existing.threshold_percent
        if updates.get("threshold_percent") is not None:
            threshold = normalize_threshold(updates["threshold_percent"])

        is_active = existing.is_active
        if updates.get("is_active") is not None:
            if not isinstance(updates["is_active"], bool):
                raise ValidationError("is_active must be a boolean", "is_active")
            is_active = updates["is_active"]

        if is_active:
            self._check_duplicate(simulator_id, phone_number, threshold, exclude_id=trigger_id)

        updated = replace(
            existing,
            simulator_id=simulator_id,
            phone_number=phone_number,
            threshold_percent=threshold,
            is_active=is_active,
            updated_at=utcnow(),
        )
        self._storage.save_trigger(updated)

        if (updated.threshold_percent != existing.threshold_percent
                or updated.phone_number != existing.phone_number
                or updated.simulator_id != existing.simulator_id):
            self._storage.clear_evaluation_state(trigger_id)

        logger.info("Updated trigger %s", trigger_id)
        return updated

    def toggle_trigger(self, trigger_id: str, is_active: bool) -> Trigger:
        return self.update_trigger(trigger_id, is_active=is_active)

    def bulk_toggle(self, simulator_id: str, is_active: bool) -> List[Trigger]:
        """
        Toggle every trigger of a simulator.

        When activating, triggers that would duplicate an already active one
        are left inactive.
        """
        toggled = []
        for trigger in self._storage.get_triggers_by_simulator(simulator_id):
            if trigger.is_active == is_active:
                continue
            try:
                toggled.append(self.toggle_trigger(trigger.id, is_active))
            except ValidationError as e:
                logger.warning("Skipped activating trigger %s: %s", trigger.id, e)
        return toggled

    def delete_trigger(self, trigger_id: str) -> None:
        """Delete a trigger and purge its evaluation state"""
        if not self._storage.delete_trigger(trigger_id):
            raise TriggerNotFound(trigger_id)
        logger.info("Deleted trigger %s", trigger_id)

    def get_trigger(self, trigger_id: str) -> Trigger:
        trigger = self._storage.get_trigger(trigger_id)
        if trigger is None:
            raise TriggerNotFound(trigger_id)
        return trigger

    def evaluation_state(self, trigger_id: str) -> EvaluationState:
        return self._storage.get_evaluation_state(trigger_id)

    def list_triggers(self, simulator_id: Optional[str] = None, active_only: bool = False) -> List[Trigger]:
        if simulator_id is None:
            triggers = self._storage.get_all_triggers()
        else:
            triggers = self._storage.get_triggers_by_simulator(simulator_id)
        if active_only:
            triggers = [t for t in triggers if t.is_active]
        return triggers

    def _check_duplicate(
        self,
        simulator_id: str,
        phone_number: str,
        threshold: float,
        exclude_id: Optional[str] = None,
    ) -> None:
        for other in self._storage.get_active_triggers_by_simulator(simulator_id):
            if other.id == exclude_id:
                continue
            if other.phone_number == phone_number and other.threshold_percent == threshold:
                raise ValidationError(
                    "A trigger with the same phone number and threshold already exists for this simulator",
                    "threshold_percent",
                    ValidationError.DUPLICATE_TRIGGER,
                )

    # ==================== Settings ====================

    def get_settings(self) -> NotificationSettings:
        return self._storage.get_settings()

    def update_settings(self, **updates) -> NotificationSettings:
        cleaned = validate_settings_update(updates)
        settings = replace(self._storage.get_settings(), **cleaned)
        self._storage.save_settings(settings)
        logger.info("Updated notification settings: %s", cleaned)
        return settings

    # ==================== History ====================

    def get_history(self, simulator_id: Optional[str] = None, limit: int = 100) -> List[NotificationHistoryEntry]:
        return self._storage.get_history(simulator_id, limit)

    def clear_history(self, simulator_id: Optional[str] = None) -> int:
        removed = self._storage.clear_history(simulator_id)
        logger.info("Cleared %d history entries%s", removed,
                    f" for {simulator_id}" if simulator_id else "")
        return removed

    # ==================== Status ====================

    async def system_status(self) -> Dict[str, Any]:
        """Snapshot for the notifications page header"""
        triggers = self._storage.get_all_triggers()
        since = utcnow() - timedelta(hours=24)
        recent = [h for h in self._storage.get_history(limit=500) if h.sent_at > since]

        whatsapp_ready = False
        if self._gateway is not None:
            status = await self._gateway.status()
            whatsapp_ready = status.ready

        return {
            "whatsapp_ready": whatsapp_ready,
            "total_triggers": len(triggers),
            "active_triggers": sum(1 for t in triggers if t.is_active),
            "notifications_enabled": self._storage.get_settings().enabled_globally,
            "recent_notifications": len(recent),
        }


# Singleton
_manager: Optional[TriggerManager] = None


def get_trigger_manager() -> TriggerManager:
    """Get or create the trigger manager singleton"""
    global _manager
    if _manager is None:
        from db import get_storage
        from services.whatsapp import get_whatsapp_client
        _manager = TriggerManager(get_storage(), get_whatsapp_client())
    return _manager
