"""
Alert Models
Data structures for triggers, settings, evaluation state and history.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from enum import Enum
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


class NotificationKind(str, Enum):
    """What caused a dispatch attempt"""
    THRESHOLD = "threshold"
    STARTUP = "startup"
    SHUTDOWN = "shutdown"


class TriggerState(str, Enum):
    """Hysteresis state of a trigger"""
    ARMED = "armed"
    FIRED = "fired"


class SkipReason(str, Enum):
    DISABLED = "disabled"
    COOLDOWN = "cooldown"
    DAILY_CAP = "daily_cap"
    MISSING_TRIGGER = "missing_trigger"


@dataclass
class Trigger:
    """
    User-configured WhatsApp threshold rule.

    Example:
        "Message +60123456789 when simulator sim-1 reaches 80% of target"
    """
    id: str
    simulator_id: str
    phone_number: str
    threshold_percent: float
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if not self.id:
            self.id = f"trigger_{uuid.uuid4().hex[:12]}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "simulator_id": self.simulator_id,
            "phone_number": self.phone_number,
            "threshold_percent": self.threshold_percent,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trigger":
        return cls(
            id=data.get("id", ""),
            simulator_id=data["simulator_id"],
            phone_number=data["phone_number"],
            threshold_percent=float(data["threshold_percent"]),
            is_active=bool(data.get("is_active", True)),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            updated_at=_parse_dt(data.get("updated_at")) or utcnow(),
        )


@dataclass
class NotificationSettings:
    """Global dispatch policy (singleton)"""
    cooldown_minutes: float = 15
    max_daily_notifications_per_trigger: int = 10
    enabled_globally: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cooldown_minutes": self.cooldown_minutes,
            "max_daily_notifications_per_trigger": self.max_daily_notifications_per_trigger,
            "enabled_globally": self.enabled_globally,
        }


@dataclass
class EvaluationState:
    """
    Runtime hysteresis/cooldown memory of one trigger.

    Missing state is equivalent to "never fired".
    """
    trigger_id: str
    last_fired_at_percent: Optional[float] = None
    last_notification_time: Optional[datetime] = None

    @property
    def state(self) -> TriggerState:
        return TriggerState.ARMED if self.last_fired_at_percent is None else TriggerState.FIRED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trigger_id": self.trigger_id,
            "state": self.state.value,
            "last_fired_at_percent": self.last_fired_at_percent,
            "last_notification_time": (
                self.last_notification_time.isoformat() if self.last_notification_time else None
            ),
        }


@dataclass
class NotificationHistoryEntry:
    """
    One dispatch attempt. Append-only.

    Failed attempts always carry an error_message.
    """
    id: str
    trigger_id: str
    simulator_id: str
    phone_number: str
    threshold_percent: float
    actual_percent: float
    sent_at: datetime
    success: bool
    error_message: Optional[str] = None
    kind: NotificationKind = NotificationKind.THRESHOLD

    def __post_init__(self):
        if not self.id:
            self.id = f"history_{uuid.uuid4().hex[:12]}"
        if not self.success and not self.error_message:
            self.error_message = "Unknown dispatch failure"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "trigger_id": self.trigger_id,
            "simulator_id": self.simulator_id,
            "phone_number": self.phone_number,
            "threshold_percent": self.threshold_percent,
            "actual_percent": round(self.actual_percent, 2),
            "sent_at": self.sent_at.isoformat(),
            "success": self.success,
            "error_message": self.error_message,
            "kind": self.kind.value,
        }

    @classmethod
    def for_trigger(
        cls,
        trigger: Trigger,
        actual_percent: float,
        success: bool,
        error_message: Optional[str] = None,
        kind: NotificationKind = NotificationKind.THRESHOLD,
        sent_at: Optional[datetime] = None,
    ) -> "NotificationHistoryEntry":
        return cls(
            id="",
            trigger_id=trigger.id,
            simulator_id=trigger.simulator_id,
            phone_number=trigger.phone_number,
            threshold_percent=trigger.threshold_percent,
            actual_percent=actual_percent,
            sent_at=sent_at or utcnow(),
            success=success,
            error_message=None if success else error_message,
            kind=kind,
        )


@dataclass
class DispatchOutcome:
    """Result of handling one candidate trigger"""
    trigger_id: str
    attempted: bool
    success: bool = False
    skipped: Optional[SkipReason] = None
    entry: Optional[NotificationHistoryEntry] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trigger_id": self.trigger_id,
            "attempted": self.attempted,
            "success": self.success,
            "skipped": self.skipped.value if self.skipped else None,
            "entry": self.entry.to_dict() if self.entry else None,
        }


@dataclass
class SendResult:
    """What a messenger reports for one message"""
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None
