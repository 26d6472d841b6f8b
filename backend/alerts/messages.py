"""
Message Formatter
WhatsApp message templates for threshold alerts and simulator lifecycle events.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from core.models import Block
from core.window import TimezoneLike, resolve_timezone

from .models import NotificationKind, Trigger, utcnow


@dataclass
class MessageTemplate:
    id: str
    name: str
    template: str
    variables: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "template": self.template,
            "variables": list(self.variables),
        }


@dataclass
class MessageContext:
    """Values substituted into a template's {{placeholders}}"""
    simulator_name: str
    simulator_id: str
    current_percentage: float
    threshold_percentage: float
    target_kwh: float
    accumulated_kwh: float
    timestamp: datetime
    phone_number: str
    block_start_time: Optional[str] = None

    @classmethod
    def for_trigger(
        cls,
        trigger: Trigger,
        current_percentage: float,
        block: Optional[Block] = None,
        simulator_name: Optional[str] = None,
        tz: TimezoneLike = "UTC",
        timestamp: Optional[datetime] = None,
    ) -> "MessageContext":
        zone = resolve_timezone(tz)
        block_start = None
        if block is not None:
            block_start = block.window_start.astimezone(zone).strftime("%Y-%m-%d %H:%M")
        return cls(
            simulator_name=simulator_name or trigger.simulator_id,
            simulator_id=trigger.simulator_id,
            current_percentage=current_percentage,
            threshold_percentage=trigger.threshold_percent,
            target_kwh=block.target_energy if block else 0.0,
            accumulated_kwh=block.accumulated_energy if block else 0.0,
            timestamp=(timestamp or utcnow()).astimezone(zone),
            phone_number=trigger.phone_number,
            block_start_time=block_start,
        )


# ==================== Templates ====================

ALERT_VARIABLES = [
    "simulatorName", "simulatorId", "currentPercentage", "thresholdPercentage",
    "targetKwh", "accumulatedKwh", "timestamp", "phoneNumber", "blockStartTime",
]

DEFAULT_TEMPLATES = [
    MessageTemplate(
        id="default",
        name="Default Alert",
        template=(
            "🚨 EMS Alert: {{simulatorName}}\n\n"
            "Current Usage: {{currentPercentage}}% of target\n"
            "Threshold: {{thresholdPercentage}}%\n"
            "Target: {{targetKwh}} kWh\n"
            "Current: {{accumulatedKwh}} kWh\n\n"
            "Time: {{timestamp}}\n\n"
            "Please check your energy consumption and take appropriate action."
        ),
        variables=["simulatorName", "currentPercentage", "thresholdPercentage",
                   "targetKwh", "accumulatedKwh", "timestamp"],
    ),
    MessageTemplate(
        id="simple",
        name="Simple Alert",
        template="⚡ {{simulatorName}}: {{currentPercentage}}% usage (threshold: {{thresholdPercentage}}%)",
        variables=["simulatorName", "currentPercentage", "thresholdPercentage"],
    ),
    MessageTemplate(
        id="detailed",
        name="Detailed Alert",
        template=(
            "🚨 ENERGY ALERT 🚨\n\n"
            "Facility: {{simulatorName}}\n"
            "Alert Time: {{timestamp}}\n\n"
            "USAGE DETAILS:\n"
            "• Current: {{accumulatedKwh}} kWh ({{currentPercentage}}%)\n"
            "• Target: {{targetKwh}} kWh\n"
            "• Threshold: {{thresholdPercentage}}%\n"
            "• Block Start: {{blockStartTime}}\n\n"
            "STATUS: THRESHOLD EXCEEDED\n"
            "Action required to prevent overconsumption."
        ),
        variables=["simulatorName", "timestamp", "accumulatedKwh", "currentPercentage",
                   "targetKwh", "thresholdPercentage", "blockStartTime"],
    ),
    MessageTemplate(
        id="urgent",
        name="Urgent Alert",
        template=(
            "🔴 URGENT: {{simulatorName}} at {{currentPercentage}}%!\n\n"
            "Immediate action required.\n"
            "Target: {{targetKwh}} kWh\n"
            "Current: {{accumulatedKwh}} kWh\n\n"
            "Contact facility manager immediately."
        ),
        variables=["simulatorName", "currentPercentage", "targetKwh", "accumulatedKwh"],
    ),
]

_PLACEHOLDER = re.compile(r"{{(\w+)}}")

MODE_LABELS = {"auto": "Auto Run", "manual": "Manual Run"}


class MessageFormatter:
    def __init__(self, templates: Optional[List[MessageTemplate]] = None, default_template: str = "default"):
        self._templates: Dict[str, MessageTemplate] = {t.id: t for t in DEFAULT_TEMPLATES}
        for template in templates or []:
            self._templates[template.id] = template
        self.default_template = default_template if default_template in self._templates else "default"

    def format(self, context: MessageContext, template_id: Optional[str] = None) -> str:
        """Render a template; unknown ids fall back to the default template"""
        template = self._templates.get(template_id or self.default_template) or self._templates["default"]

        replacements = {
            "simulatorName": context.simulator_name,
            "simulatorId": context.simulator_id,
            "currentPercentage": f"{context.current_percentage:.1f}",
            "thresholdPercentage": f"{context.threshold_percentage:g}",
            "targetKwh": f"{context.target_kwh:.1f}",
            "accumulatedKwh": f"{context.accumulated_kwh:.2f}",
            "timestamp": context.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            "phoneNumber": context.phone_number,
            "blockStartTime": context.block_start_time or "N/A",
        }
        return _PLACEHOLDER.sub(lambda m: replacements.get(m.group(1), m.group(0)), template.template)

    def format_lifecycle(
        self,
        kind: NotificationKind,
        simulator_name: str,
        mode: str = "auto",
        timestamp: Optional[datetime] = None,
    ) -> str:
        when = (timestamp or utcnow()).strftime("%Y-%m-%d %H:%M:%S")
        mode_label = MODE_LABELS.get(mode, mode)

        if kind == NotificationKind.STARTUP:
            return (
                "🚀 EMS Simulator Started!\n\n"
                f"Simulator: {simulator_name}\n"
                f"Mode: {mode_label}\n"
                f"Started: {when}\n\n"
                "Your energy simulator is now running and generating data. "
                "You'll receive threshold alerts as configured.\n\n"
                "Happy monitoring! 📊⚡"
            )
        if kind == NotificationKind.SHUTDOWN:
            return (
                "🛑 EMS Simulator Stopped\n\n"
                f"Simulator: {simulator_name}\n"
                f"Mode: {mode_label}\n"
                f"Stopped: {when}\n\n"
                "No new readings will be generated until the simulator is started again."
            )
        raise ValueError(f"Not a lifecycle notification: {kind}")

    # ==================== Template Management ====================

    def get_templates(self) -> List[MessageTemplate]:
        return list(self._templates.values())

    def add_template(self, template: MessageTemplate) -> None:
        errors = self.validate_template(template.template)
        if errors:
            raise ValueError("; ".join(errors))
        self._templates[template.id] = template

    def remove_template(self, template_id: str) -> bool:
        """Built-in templates cannot be removed"""
        if template_id in {t.id for t in DEFAULT_TEMPLATES}:
            return False
        return self._templates.pop(template_id, None) is not None

    @staticmethod
    def validate_template(template: str) -> List[str]:
        """Return a list of problems; empty means valid"""
        errors = []
        if template.count("{{") != template.count("}}"):
            errors.append("Unmatched template braces")

        invalid = sorted({v for v in _PLACEHOLDER.findall(template) if v not in ALERT_VARIABLES})
        if invalid:
            errors.append(f"Invalid variables: {', '.join(invalid)}")
        return errors
