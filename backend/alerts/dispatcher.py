"""
Alert Dispatcher
Turns fired triggers into WhatsApp messages under the global notification policy.

Order of checks per candidate trigger:
1. Notifications disabled globally → skip, no history
2. Last successful send within cooldown → skip
3. Attempts today (local day) reached the daily cap → skip
4. Send once, append one history entry, start cooldown on success

Send failures never propagate; they are recorded to history.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from core.errors import DispatchError
from core.models import Block
from core.window import TimezoneLike, resolve_timezone

from .messages import MessageContext, MessageFormatter
from .models import (
    DispatchOutcome,
    NotificationHistoryEntry,
    NotificationKind,
    SendResult,
    SkipReason,
    Trigger,
    utcnow,
)
from .store import NotificationStore

logger = logging.getLogger(__name__)


class Messenger(Protocol):
    async def send(self, phone_number: str, message: str) -> SendResult: ...


class AlertDispatcher:
    def __init__(
        self,
        store: NotificationStore,
        messenger: Messenger,
        formatter: Optional[MessageFormatter] = None,
        tz: TimezoneLike = "Asia/Kuala_Lumpur",
        clock: Callable[[], datetime] = utcnow,
        template_id: Optional[str] = None,
    ):
        self._store = store
        self._messenger = messenger
        self._formatter = formatter or MessageFormatter()
        self._tz = resolve_timezone(tz)
        self._clock = clock
        self.template_id = template_id

        self._stats = {
            "attempted": 0,
            "sent": 0,
            "failed": 0,
            "skipped_disabled": 0,
            "skipped_cooldown": 0,
            "skipped_daily_cap": 0,
        }

    # ==================== Threshold Alerts ====================

    async def dispatch(
        self,
        trigger_ids: Iterable[str],
        current_percent: float,
        block: Optional[Block] = None,
        simulator_name: Optional[str] = None,
    ) -> List[DispatchOutcome]:
        """Dispatch every candidate in order; one outcome per candidate"""
        outcomes = []
        for trigger_id in trigger_ids:
            outcomes.append(
                await self.dispatch_one(trigger_id, current_percent, block, simulator_name)
            )
        return outcomes

    async def dispatch_one(
        self,
        trigger_id: str,
        current_percent: float,
        block: Optional[Block] = None,
        simulator_name: Optional[str] = None,
    ) -> DispatchOutcome:
        settings = self._store.get_settings()
        if not settings.enabled_globally:
            self._stats["skipped_disabled"] += 1
            logger.debug("Notifications disabled; skipping trigger %s", trigger_id)
            return DispatchOutcome(trigger_id, attempted=False, skipped=SkipReason.DISABLED)

        trigger = self._store.get_trigger(trigger_id)
        if trigger is None:
            logger.warning("Trigger %s vanished before dispatch", trigger_id)
            return DispatchOutcome(trigger_id, attempted=False, skipped=SkipReason.MISSING_TRIGGER)

        now = self._clock()

        last_sent = self._store.get_last_notification_time(trigger_id)
        if last_sent is not None and now - last_sent < timedelta(minutes=settings.cooldown_minutes):
            self._stats["skipped_cooldown"] += 1
            logger.info(
                "Trigger %s in cooldown (last sent %s, cooldown %s min)",
                trigger_id, last_sent.isoformat(), settings.cooldown_minutes,
            )
            return DispatchOutcome(trigger_id, attempted=False, skipped=SkipReason.COOLDOWN)

        day_start, day_end = self.local_day(now)
        attempts_today = self._store.count_attempts(trigger_id, day_start, day_end)
        if attempts_today >= settings.max_daily_notifications_per_trigger:
            self._stats["skipped_daily_cap"] += 1
            logger.warning(
                "Trigger %s reached daily cap (%d/%d)",
                trigger_id, attempts_today, settings.max_daily_notifications_per_trigger,
            )
            return DispatchOutcome(trigger_id, attempted=False, skipped=SkipReason.DAILY_CAP)

        context = MessageContext.for_trigger(
            trigger, current_percent, block, simulator_name, tz=self._tz, timestamp=now,
        )
        message = self._formatter.format(context, self.template_id)
        success, error = await self._send(trigger.phone_number, message)

        entry = NotificationHistoryEntry.for_trigger(
            trigger, current_percent, success, error, sent_at=now,
        )
        self._store.save_history(entry)
        self._stats["attempted"] += 1

        if success:
            self._store.set_last_notification_time(trigger_id, now)
            self._stats["sent"] += 1
            logger.info(
                "Alert sent for trigger %s to %s at %.2f%%",
                trigger_id, trigger.phone_number, current_percent,
            )
        else:
            self._stats["failed"] += 1
            logger.warning("Alert failed for trigger %s: %s", trigger_id, entry.error_message)

        return DispatchOutcome(trigger_id, attempted=True, success=success, entry=entry)

    # ==================== Lifecycle ====================

    async def send_lifecycle(
        self,
        simulator_id: str,
        kind: NotificationKind,
        mode: str = "auto",
        simulator_name: Optional[str] = None,
    ) -> List[NotificationHistoryEntry]:
        """
        Announce simulator start/stop to every phone with an active trigger.

        One message per unique phone number, one history entry per trigger.
        Cooldown and the daily cap do not apply.
        """
        triggers = self._store.get_active_triggers_by_simulator(simulator_id)
        if not triggers:
            logger.info("No active triggers for %s; no %s notifications", simulator_id, kind.value)
            return []

        now = self._clock()
        message = self._formatter.format_lifecycle(
            kind, simulator_name or simulator_id, mode, now.astimezone(self._tz),
        )

        by_phone: Dict[str, List[Trigger]] = {}
        for trigger in triggers:
            by_phone.setdefault(trigger.phone_number, []).append(trigger)

        entries = []
        for phone_number, phone_triggers in by_phone.items():
            success, error = await self._send(phone_number, message)
            if not success:
                error = error or f"Failed to send {kind.value} notification"
                logger.warning("%s notification to %s failed: %s", kind.value, phone_number, error)

            for trigger in phone_triggers:
                entry = NotificationHistoryEntry.for_trigger(
                    trigger, 0.0, success, error, kind=kind, sent_at=now,
                )
                self._store.save_history(entry)
                entries.append(entry)

        logger.info(
            "%s notifications for %s sent to %d phone number(s)",
            kind.value, simulator_id, len(by_phone),
        )
        return entries

    # ==================== Helpers ====================

    async def _send(self, phone_number: str, message: str) -> Tuple[bool, Optional[str]]:
        try:
            result = await self._messenger.send(phone_number, message)
        except DispatchError as e:
            return False, str(e) or "Dispatch failed"
        except Exception as e:
            logger.exception("Messenger raised while sending to %s", phone_number)
            return False, f"{type(e).__name__}: {e}"

        if result.success:
            return True, None
        return False, result.error or "Gateway reported failure"

    def local_day(self, now: datetime) -> Tuple[datetime, datetime]:
        """[start, end) of the local calendar day containing now, in UTC"""
        local = now.astimezone(self._tz)
        start = local.replace(hour=0, minute=0, second=0, microsecond=0)
        end = (start + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    def stats(self) -> dict:
        return dict(self._stats)
