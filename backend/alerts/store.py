"""
Store Contract
What the monitor and dispatcher need from a notification store.

db.sqlite.NotificationStorage is the shipped implementation; tests may
substitute anything that satisfies this protocol.
"""

from datetime import datetime
from typing import List, Optional, Protocol

from .models import NotificationHistoryEntry, NotificationKind, NotificationSettings, Trigger


class NotificationStore(Protocol):
    # Triggers
    def get_trigger(self, trigger_id: str) -> Optional[Trigger]: ...
    def get_active_triggers_by_simulator(self, simulator_id: str) -> List[Trigger]: ...

    # Settings
    def get_settings(self) -> NotificationSettings: ...

    # History (append-only)
    def save_history(self, entry: NotificationHistoryEntry) -> None: ...
    def count_attempts(self, trigger_id: str, since: datetime, until: datetime,
                       kind: NotificationKind = NotificationKind.THRESHOLD) -> int: ...

    # Evaluation state, keyed by trigger id
    def get_last_fired_percent(self, trigger_id: str) -> Optional[float]: ...
    def set_last_fired_percent(self, trigger_id: str, percent: Optional[float]) -> None: ...
    def get_last_notification_time(self, trigger_id: str) -> Optional[datetime]: ...
    def set_last_notification_time(self, trigger_id: str, time: datetime) -> None: ...
