import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .models import TriggerState
from .store import NotificationStore

logger = logging.getLogger(__name__)

DEFAULT_HYSTERESIS_MARGIN = 2.0


class ThresholdMonitor:
    """
    Per-trigger Armed → Fired → Armed state machine.

    A trigger fires once when percent reaches its threshold, then stays
    Fired until percent drops more than `hysteresis_margin` points below the
    percent it fired at. Re-arming happens in one call; firing again needs a
    later call. Triggers never share state, even on one simulator.

    Callers must serialize evaluate() per simulator.
    """

    def __init__(self, store: NotificationStore, hysteresis_margin: float = DEFAULT_HYSTERESIS_MARGIN):
        self._store = store
        self.hysteresis_margin = hysteresis_margin
        self._stats = {
            "evaluations": 0,
            "fired": 0,
            "rearmed": 0,
            "held": 0,
            "start_time": datetime.now(),
        }

    def evaluate(self, simulator_id: str, current_percent: float) -> List[str]:
        """Return ids of triggers that fire on this sample"""
        fired: List[str] = []
        self._stats["evaluations"] += 1

        for trigger in self._store.get_active_triggers_by_simulator(simulator_id):
            last_fired = self._store.get_last_fired_percent(trigger.id)

            if last_fired is not None:
                if current_percent < last_fired - self.hysteresis_margin:
                    self._store.set_last_fired_percent(trigger.id, None)
                    self._stats["rearmed"] += 1
                    logger.debug(
                        "Trigger %s re-armed at %.2f%% (fired at %.2f%%)",
                        trigger.id, current_percent, last_fired,
                    )
                else:
                    self._stats["held"] += 1
                continue

            if current_percent >= trigger.threshold_percent:
                self._store.set_last_fired_percent(trigger.id, current_percent)
                self._stats["fired"] += 1
                fired.append(trigger.id)
                logger.info(
                    "Trigger %s fired: %s at %.2f%% (threshold %.1f%%)",
                    trigger.id, simulator_id, current_percent, trigger.threshold_percent,
                )

        return fired

    def state(self, trigger_id: str) -> TriggerState:
        if self._store.get_last_fired_percent(trigger_id) is None:
            return TriggerState.ARMED
        return TriggerState.FIRED

    def rearm(self, trigger_id: str) -> None:
        self._store.set_last_fired_percent(trigger_id, None)

    def last_fired_percent(self, trigger_id: str) -> Optional[float]:
        return self._store.get_last_fired_percent(trigger_id)

    def stats(self) -> Dict[str, Any]:
        uptime = (datetime.now() - self._stats["start_time"]).total_seconds()
        return {
            **{k: v for k, v in self._stats.items() if k != "start_time"},
            "hysteresis_margin": self.hysteresis_margin,
            "uptime_seconds": round(uptime, 2),
        }
