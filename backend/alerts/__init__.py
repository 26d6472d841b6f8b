"""
Alert System
WhatsApp threshold alerts driven by percent-of-target updates.

Structure:
    alerts/
    ├── models.py      → Trigger, NotificationSettings, NotificationHistoryEntry, ...
    ├── validation.py  → phone / threshold / settings checks
    ├── store.py       → NotificationStore contract
    ├── monitor.py     → ThresholdMonitor (hysteresis state machine)
    ├── messages.py    → MessageFormatter (alert + lifecycle templates)
    ├── dispatcher.py  → AlertDispatcher (enable flag, cooldown, daily cap, history)
    └── manager.py     → TriggerManager (CRUD + settings)

Usage:
    from alerts import ThresholdMonitor, AlertDispatcher, TriggerManager
    from db import get_storage

    storage = get_storage()
    manager = TriggerManager(storage)
    manager.create_trigger("sim-1", "+60 12-345 6789", 80)

    monitor = ThresholdMonitor(storage)
    dispatcher = AlertDispatcher(storage, whatsapp_client)

    # Called whenever the block's percent of target changes
    fired = monitor.evaluate("sim-1", 85.0)
    outcomes = await dispatcher.dispatch(fired, 85.0, block)
"""

from .models import (
    Trigger,
    NotificationSettings,
    NotificationHistoryEntry,
    EvaluationState,
    DispatchOutcome,
    SendResult,
    NotificationKind,
    TriggerState,
    SkipReason,
)

from .monitor import ThresholdMonitor
from .messages import MessageFormatter, MessageContext, MessageTemplate
from .dispatcher import AlertDispatcher
from .manager import TriggerManager, get_trigger_manager

__all__ = [
    # Models
    "Trigger",
    "NotificationSettings",
    "NotificationHistoryEntry",
    "EvaluationState",
    "DispatchOutcome",
    "SendResult",
    "NotificationKind",
    "TriggerState",
    "SkipReason",
    # Engine
    "ThresholdMonitor",
    "MessageFormatter",
    "MessageContext",
    "MessageTemplate",
    "AlertDispatcher",
    "TriggerManager",
    "get_trigger_manager",
]
