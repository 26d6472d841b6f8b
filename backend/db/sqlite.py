"""
SQLite Storage
Local store for notification triggers, settings, history and
per-trigger evaluation state.

Responsibilities:
- Trigger CRUD
- Append-only notification history
- Settings singleton
- Hysteresis/cooldown state keyed by trigger id

NOT responsible for:
- Validation (done upstream in TriggerManager)
- Dispatch policy (AlertDispatcher handles this)
"""

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from alerts.models import (
    EvaluationState,
    NotificationHistoryEntry,
    NotificationKind,
    NotificationSettings,
    Trigger,
)


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class NotificationStorage:
    """
    SQLite persistence for the alert engine.

    Tables:
        - triggers: Alert rules
        - history: Dispatch attempts (append-only)
        - settings: Single row of dispatch policy
        - evaluation_state: last fired percent / last send time per trigger
    """

    def __init__(self, db_path: str = "data/notifications.db"):
        self.db_path = db_path
        self._ensure_directory()
        self._init_schema()

    def _ensure_directory(self):
        """Create data directory"""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self):
        """Initialize database schema"""
        with sqlite3.connect(self.db_path) as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS triggers (
                    id TEXT PRIMARY KEY,
                    simulator_id TEXT NOT NULL,
                    phone_number TEXT NOT NULL,
                    threshold_percent REAL NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_triggers_simulator
                ON triggers(simulator_id);

                CREATE TABLE IF NOT EXISTS history (
                    id TEXT PRIMARY KEY,
                    trigger_id TEXT NOT NULL,
                    simulator_id TEXT NOT NULL,
                    phone_number TEXT NOT NULL,
                    threshold_percent REAL NOT NULL,
                    actual_percent REAL NOT NULL,
                    sent_at TEXT NOT NULL,
                    success INTEGER NOT NULL,
                    error_message TEXT,
                    kind TEXT NOT NULL DEFAULT 'threshold'
                );

                CREATE INDEX IF NOT EXISTS idx_history_trigger_sent
                ON history(trigger_id, sent_at);

                CREATE TABLE IF NOT EXISTS settings (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    cooldown_minutes REAL NOT NULL,
                    max_daily_notifications_per_trigger INTEGER NOT NULL,
                    enabled_globally INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS evaluation_state (
                    trigger_id TEXT PRIMARY KEY,
                    last_fired_at_percent REAL,
                    last_notification_time TEXT
                );
            """)

    # =========================================================================
    # Triggers
    # =========================================================================

    def save_trigger(self, trigger: Trigger) -> None:
        """Insert or overwrite a trigger"""
        with self._connect() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO triggers
                   (id, simulator_id, phone_number, threshold_percent, is_active, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (trigger.id, trigger.simulator_id, trigger.phone_number,
                 trigger.threshold_percent, int(trigger.is_active),
                 _iso(trigger.created_at), _iso(trigger.updated_at))
            )

    def get_trigger(self, trigger_id: str) -> Optional[Trigger]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM triggers WHERE id = ?", [trigger_id]).fetchone()
        return self._row_to_trigger(row) if row else None

    def get_triggers_by_simulator(self, simulator_id: str) -> List[Trigger]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM triggers WHERE simulator_id = ? ORDER BY created_at",
                [simulator_id]
            ).fetchall()
        return [self._row_to_trigger(r) for r in rows]

    def get_active_triggers_by_simulator(self, simulator_id: str) -> List[Trigger]:
        return [t for t in self.get_triggers_by_simulator(simulator_id) if t.is_active]

    def get_all_triggers(self) -> List[Trigger]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM triggers ORDER BY created_at").fetchall()
        return [self._row_to_trigger(r) for r in rows]

    def delete_trigger(self, trigger_id: str) -> bool:
        """Delete trigger and its evaluation state together"""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM triggers WHERE id = ?", [trigger_id])
            conn.execute("DELETE FROM evaluation_state WHERE trigger_id = ?", [trigger_id])
            return cursor.rowcount > 0

    @staticmethod
    def _row_to_trigger(row: sqlite3.Row) -> Trigger:
        return Trigger(
            id=row["id"],
            simulator_id=row["simulator_id"],
            phone_number=row["phone_number"],
            threshold_percent=row["threshold_percent"],
            is_active=bool(row["is_active"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    # =========================================================================
    # History
    # =========================================================================

    def save_history(self, entry: NotificationHistoryEntry) -> None:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO history
                   (id, trigger_id, simulator_id, phone_number, threshold_percent,
                    actual_percent, sent_at, success, error_message, kind)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (entry.id, entry.trigger_id, entry.simulator_id, entry.phone_number,
                 entry.threshold_percent, entry.actual_percent, _iso(entry.sent_at),
                 int(entry.success), entry.error_message, entry.kind.value)
            )

    def get_history(self, simulator_id: Optional[str] = None, limit: int = 100) -> List[NotificationHistoryEntry]:
        """Newest first"""
        with self._connect() as conn:
            if simulator_id:
                rows = conn.execute(
                    "SELECT * FROM history WHERE simulator_id = ? ORDER BY sent_at DESC LIMIT ?",
                    [simulator_id, limit]
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM history ORDER BY sent_at DESC LIMIT ?", [limit]
                ).fetchall()
        return [self._row_to_history(r) for r in rows]

    def count_attempts(self, trigger_id: str, since: datetime, until: datetime,
                       kind: NotificationKind = NotificationKind.THRESHOLD) -> int:
        """Attempts (successful or not) for a trigger in [since, until)"""
        with self._connect() as conn:
            row = conn.execute(
                """SELECT COUNT(*) FROM history
                   WHERE trigger_id = ? AND kind = ? AND sent_at >= ? AND sent_at < ?""",
                [trigger_id, kind.value, _iso(since), _iso(until)]
            ).fetchone()
        return int(row[0])

    def clear_history(self, simulator_id: Optional[str] = None) -> int:
        with self._connect() as conn:
            if simulator_id:
                cursor = conn.execute("DELETE FROM history WHERE simulator_id = ?", [simulator_id])
            else:
                cursor = conn.execute("DELETE FROM history")
            return cursor.rowcount

    @staticmethod
    def _row_to_history(row: sqlite3.Row) -> NotificationHistoryEntry:
        return NotificationHistoryEntry(
            id=row["id"],
            trigger_id=row["trigger_id"],
            simulator_id=row["simulator_id"],
            phone_number=row["phone_number"],
            threshold_percent=row["threshold_percent"],
            actual_percent=row["actual_percent"],
            sent_at=_dt(row["sent_at"]),
            success=bool(row["success"]),
            error_message=row["error_message"],
            kind=NotificationKind(row["kind"]),
        )

    # =========================================================================
    # Settings
    # =========================================================================

    def get_settings(self) -> NotificationSettings:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM settings WHERE id = 1").fetchone()
        if row is None:
            return NotificationSettings()
        return NotificationSettings(
            cooldown_minutes=row["cooldown_minutes"],
            max_daily_notifications_per_trigger=row["max_daily_notifications_per_trigger"],
            enabled_globally=bool(row["enabled_globally"]),
        )

    def save_settings(self, settings: NotificationSettings) -> None:
        with self._connect() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO settings
                   (id, cooldown_minutes, max_daily_notifications_per_trigger, enabled_globally)
                   VALUES (1, ?, ?, ?)""",
                (settings.cooldown_minutes, settings.max_daily_notifications_per_trigger,
                 int(settings.enabled_globally))
            )

    # =========================================================================
    # Evaluation State
    # =========================================================================

    def get_evaluation_state(self, trigger_id: str) -> EvaluationState:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM evaluation_state WHERE trigger_id = ?", [trigger_id]
            ).fetchone()
        if row is None:
            return EvaluationState(trigger_id=trigger_id)
        return EvaluationState(
            trigger_id=trigger_id,
            last_fired_at_percent=row["last_fired_at_percent"],
            last_notification_time=_dt(row["last_notification_time"]),
        )

    def get_last_fired_percent(self, trigger_id: str) -> Optional[float]:
        return self.get_evaluation_state(trigger_id).last_fired_at_percent

    def set_last_fired_percent(self, trigger_id: str, percent: Optional[float]) -> None:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO evaluation_state (trigger_id, last_fired_at_percent)
                   VALUES (?, ?)
                   ON CONFLICT(trigger_id) DO UPDATE SET last_fired_at_percent = excluded.last_fired_at_percent""",
                [trigger_id, percent]
            )

    def get_last_notification_time(self, trigger_id: str) -> Optional[datetime]:
        return self.get_evaluation_state(trigger_id).last_notification_time

    def set_last_notification_time(self, trigger_id: str, time: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO evaluation_state (trigger_id, last_notification_time)
                   VALUES (?, ?)
                   ON CONFLICT(trigger_id) DO UPDATE SET last_notification_time = excluded.last_notification_time""",
                [trigger_id, _iso(time)]
            )

    def clear_evaluation_state(self, trigger_id: Optional[str] = None) -> None:
        with self._connect() as conn:
            if trigger_id:
                conn.execute("DELETE FROM evaluation_state WHERE trigger_id = ?", [trigger_id])
            else:
                conn.execute("DELETE FROM evaluation_state")

    # =========================================================================
    # Utility
    # =========================================================================

    def export_data(self) -> str:
        """Dump triggers, history and settings as JSON"""
        data = {
            "triggers": [t.to_dict() for t in self.get_all_triggers()],
            "history": [h.to_dict() for h in self.get_history(limit=100000)],
            "settings": self.get_settings().to_dict(),
            "exported_at": datetime.now(timezone.utc).isoformat(),
        }
        return json.dumps(data, indent=2)

    def import_data(self, payload: str) -> None:
        """Load an export_data() dump. Evaluation state starts fresh."""
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid import data: {e}") from e

        for item in data.get("triggers", []):
            self.save_trigger(Trigger.from_dict(item))
        for item in data.get("history", []):
            self.save_history(NotificationHistoryEntry(
                id=item["id"],
                trigger_id=item["trigger_id"],
                simulator_id=item["simulator_id"],
                phone_number=item["phone_number"],
                threshold_percent=float(item["threshold_percent"]),
                actual_percent=float(item["actual_percent"]),
                sent_at=_dt(item["sent_at"]),
                success=bool(item["success"]),
                error_message=item.get("error_message"),
                kind=NotificationKind(item.get("kind", "threshold")),
            ))
        if "settings" in data:
            self.save_settings(NotificationSettings(**data["settings"]))

    def stats(self) -> dict:
        with self._connect() as conn:
            triggers = conn.execute("SELECT COUNT(*) FROM triggers").fetchone()[0]
            active = conn.execute("SELECT COUNT(*) FROM triggers WHERE is_active = 1").fetchone()[0]
            history = conn.execute("SELECT COUNT(*) FROM history").fetchone()[0]
        return {"triggers": triggers, "active_triggers": active, "history_entries": history}


_storage: Optional[NotificationStorage] = None


def get_storage() -> NotificationStorage:
    global _storage
    if _storage is None:
        from config import get_settings
        _storage = NotificationStorage(get_settings().db_path)
    return _storage
